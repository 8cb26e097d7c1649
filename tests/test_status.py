"""
Test the construction and management of status objects
"""

# Standard
import copy

# Third Party
import pytest

# First Party
import alog

# Local
from template_operator import constants, status
from template_operator.custom_resource import CustomResource
from template_operator.events import EventRecorder
from template_operator.exceptions import ConflictError, PersistenceError, StoreError
from template_operator.status import ConditionStatus, State, StatusManager
from template_operator.test_helpers.helpers import (
    TEST_FIELD_OWNER,
    TEST_INSTANCE_NAME,
    TEST_NAMESPACE,
    MockDeployManager,
    configure_logging,
    setup_cr,
)

configure_logging()

log = alog.use_channel("TEST")

## Helpers #####################################################################


def strip_timestamps(res):
    for entry in res.get("conditions", []):
        entry.pop(status.TIMESTAMP_KEY, None)
    return res


def setup_status_manager(cr_dict=None, **kwargs):
    cr_dict = cr_dict or setup_cr()
    dm = MockDeployManager(resources=[cr_dict], **kwargs)
    manager = StatusManager(dm, EventRecorder(dm, "test-operator"), TEST_FIELD_OWNER)
    return dm, manager


def fetch(dm):
    return CustomResource(dm.get_obj(constants.SAMPLE_KIND, TEST_INSTANCE_NAME))


## make_installation_condition #################################################


def test_make_installation_condition():
    """Make sure the condition carries the fixed reason and message"""
    res = status.make_installation_condition(ConditionStatus.TRUE, 3)
    assert status.TIMESTAMP_KEY in res
    assert strip_timestamps({"conditions": [res]})["conditions"][0] == {
        "type": constants.INSTALLATION_CONDITION,
        "status": "True",
        "reason": constants.INSTALLATION_REASON,
        "message": constants.INSTALLATION_MESSAGE,
        "observedGeneration": 3,
    }


def test_make_installation_condition_explicit_timestamp():
    res = status.make_installation_condition(
        ConditionStatus.UNKNOWN, 1, timestamp="2024-01-01T00:00:00Z"
    )
    assert res[status.TIMESTAMP_KEY] == "2024-01-01T00:00:00Z"


## set_status_condition ########################################################


def test_set_status_condition_append():
    """Make sure a new condition type is appended"""
    other = {"type": "Other", "status": "True"}
    new = status.make_installation_condition(ConditionStatus.TRUE, 1)
    res = status.set_status_condition([other], new)
    assert [cond["type"] for cond in res] == ["Other", constants.INSTALLATION_CONDITION]


def test_set_status_condition_replace_in_place():
    """Make sure an existing condition is replaced without reordering and
    other types are untouched
    """
    conditions = [
        status.make_installation_condition(ConditionStatus.UNKNOWN, 1),
        {"type": "Other", "status": "False"},
    ]
    new = status.make_installation_condition(ConditionStatus.TRUE, 2)
    res = status.set_status_condition(conditions, new)
    assert len(res) == 2
    assert res[0]["status"] == "True"
    assert res[0]["observedGeneration"] == 2
    assert res[1] == {"type": "Other", "status": "False"}


def test_set_status_condition_keeps_timestamp_when_status_unchanged():
    """Make sure the transition time only moves when the status flips"""
    old = status.make_installation_condition(
        ConditionStatus.TRUE, 1, timestamp="2024-01-01T00:00:00Z"
    )
    new = status.make_installation_condition(
        ConditionStatus.TRUE, 2, timestamp="2025-01-01T00:00:00Z"
    )
    res = status.set_status_condition([old], new)
    assert res[0][status.TIMESTAMP_KEY] == "2024-01-01T00:00:00Z"
    assert res[0]["observedGeneration"] == 2


def test_set_status_condition_updates_timestamp_on_flip():
    old = status.make_installation_condition(
        ConditionStatus.TRUE, 1, timestamp="2024-01-01T00:00:00Z"
    )
    new = status.make_installation_condition(
        ConditionStatus.FALSE, 1, timestamp="2025-01-01T00:00:00Z"
    )
    res = status.set_status_condition([old], new)
    assert res[0][status.TIMESTAMP_KEY] == "2025-01-01T00:00:00Z"


def test_set_status_condition_does_not_mutate_input():
    old = status.make_installation_condition(ConditionStatus.TRUE, 1)
    conditions = [old]
    snapshot = copy.deepcopy(conditions)
    status.set_status_condition(
        conditions, status.make_installation_condition(ConditionStatus.FALSE, 1)
    )
    assert conditions == snapshot


def test_find_status_condition():
    cond = status.make_installation_condition(ConditionStatus.TRUE, 1)
    assert status.find_status_condition([cond], constants.INSTALLATION_CONDITION) == cond
    assert status.find_status_condition([cond], "Missing") is None
    assert status.find_status_condition(None, "Missing") is None


## status_changed ##############################################################


def test_status_changed_ignores_timestamps():
    """Make sure a difference in only the timestamp is not a change"""
    old = status.make_status(
        {}, State.READY, ConditionStatus.TRUE, 1
    )
    new = copy.deepcopy(old)
    new["conditions"][0][status.TIMESTAMP_KEY] = "1999-01-01T00:00:00Z"
    assert not status.status_changed(old, new)


@pytest.mark.parametrize(
    "field,value",
    [("status", "False"), ("observedGeneration", 7)],
)
def test_status_changed_condition_fields(field, value):
    old = status.make_status({}, State.READY, ConditionStatus.TRUE, 1)
    new = copy.deepcopy(old)
    new["conditions"][0][field] = value
    assert status.status_changed(old, new)


def test_status_changed_state():
    old = status.make_status({}, State.READY, ConditionStatus.TRUE, 1)
    new = status.make_status(old, State.WARNING, ConditionStatus.TRUE, 1)
    assert status.status_changed(old, new)


def test_status_changed_non_dict():
    assert status.status_changed(None, {})


## make_status #################################################################


def test_make_status_without_condition_keeps_conditions():
    """Make sure moving only the state leaves the conditions untouched"""
    current = status.make_status({}, State.READY, ConditionStatus.TRUE, 1)
    res = status.make_status(current, State.DELETING, None, 2)
    assert res["state"] == "Deleting"
    assert res["conditions"] == current["conditions"]


def test_make_status_preserves_unknown_fields():
    res = status.make_status({"extra": 1}, State.PROCESSING, ConditionStatus.UNKNOWN, 1)
    assert res["extra"] == 1
    assert res["state"] == "Processing"


## StatusManager ###############################################################


def test_status_manager_writes_and_emits_event():
    """Make sure a state change is persisted with the Installation condition
    and a Normal event
    """
    dm, manager = setup_status_manager()
    resource = fetch(dm)
    assert manager.set_status(resource, State.PROCESSING, ConditionStatus.UNKNOWN)

    updated = fetch(dm)
    assert updated.state == "Processing"
    cond = status.find_status_condition(
        updated.status["conditions"], constants.INSTALLATION_CONDITION
    )
    assert cond["status"] == "Unknown"
    assert cond["observedGeneration"] == resource.generation

    events = dm.get_events(TEST_INSTANCE_NAME)
    assert len(events) == 1
    assert events[0]["type"] == "Normal"
    assert events[0]["reason"] == constants.STATUS_UPDATED_REASON
    assert events[0]["message"] == "updating state to Processing"
    assert events[0]["involvedObject"]["namespace"] == TEST_NAMESPACE


def test_status_manager_skips_unchanged():
    """Make sure a write with no meaningful change is skipped and emits no
    event
    """
    dm, manager = setup_status_manager()
    manager.set_status(fetch(dm), State.READY, ConditionStatus.TRUE)
    dm.set_status.reset_mock()
    assert not manager.set_status(fetch(dm), State.READY, ConditionStatus.TRUE)
    dm.set_status.assert_not_called()
    assert len(dm.get_events()) == 1


def test_status_manager_carries_resource_version():
    """Make sure the write is guarded by the fetched resourceVersion"""
    dm, manager = setup_status_manager()
    resource = fetch(dm)
    manager.set_status(resource, State.PROCESSING, ConditionStatus.UNKNOWN)
    assert dm.set_status.call_args.kwargs["resource_version"] == resource.resource_version
    assert dm.set_status.call_args.kwargs["field_manager"] == TEST_FIELD_OWNER


def test_status_manager_stale_write_is_persistence_error():
    """Make sure a write with a stale view is rejected"""
    dm, manager = setup_status_manager()
    stale = fetch(dm)
    manager.set_status(fetch(dm), State.PROCESSING, ConditionStatus.UNKNOWN)
    with pytest.raises(PersistenceError) as exc_info:
        manager.set_status(stale, State.ERROR, ConditionStatus.FALSE)
    assert isinstance(exc_info.value.__cause__, ConflictError)


def test_status_manager_failure_emits_warning():
    """Make sure a failed write emits a Warning event and raises"""
    dm, manager = setup_status_manager(set_status_fail=StoreError("boom"))
    with pytest.raises(PersistenceError):
        manager.set_status(fetch(dm), State.ERROR, ConditionStatus.FALSE)
    events = dm.get_events()
    assert len(events) == 1
    assert events[0]["type"] == "Warning"
    assert events[0]["reason"] == constants.STATUS_UPDATE_FAILED_REASON
    assert events[0]["message"] == "updating state to Error"


def test_status_manager_event_failure_does_not_interrupt():
    """Make sure a failure to post the event is not raised"""
    dm, manager = setup_status_manager(create_event_fail=StoreError("no events"))
    assert manager.set_status(fetch(dm), State.PROCESSING, ConditionStatus.UNKNOWN)
    assert fetch(dm).state == "Processing"
