"""
This module holds the common functionality used to represent the status of the
custom resources handled by the operator.

The status schema is:
{
    "state": one of State,
    "conditions": [
        {
            "type": "Installation",
            "status": "True" | "False" | "Unknown",
            "reason": "Ready",
            "message": "installation is ready and resources can be used",
            "observedGeneration": <metadata.generation>,
            "lastTransitionTime": <ISO-8601 UTC timestamp>,
        },
        ...
    ],
}

Only the Installation condition is managed here. Conditions of any other type
are preserved as-is.
"""

# Standard
from enum import Enum
from typing import List, Optional
import copy

# Third Party
from deepdiff import DeepDiff

# First Party
import alog

# Local
from . import constants
from .events import EventRecorder, EventSeverity
from .exceptions import PersistenceError, StoreError
from .utils import now_timestamp

log = alog.use_channel("STTUS")

## Public ######################################################################

# The key in the condition used for the timestamp
TIMESTAMP_KEY = "lastTransitionTime"


class State(Enum):
    """Lifecycle states of a custom resource"""

    # Never reconciled
    INITIAL = ""

    # Install in progress
    PROCESSING = "Processing"

    # Install complete and healthy
    READY = "Ready"

    # Install complete with a non-fatal issue
    WARNING = "Warning"

    # Last apply or delete pass failed
    ERROR = "Error"

    # Deletion requested; resources are being removed
    DELETING = "Deleting"


class ConditionStatus(Enum):
    """Values for the "status" field of a condition"""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


def make_installation_condition(
    status: ConditionStatus,
    observed_generation: int,
    timestamp: Optional[str] = None,
) -> dict:
    """Construct the Installation condition

    Args:
        status:  ConditionStatus
            The truth value of the condition
        observed_generation:  int
            The metadata.generation of the resource the condition describes
        timestamp:  Optional[str]
            The transition timestamp. Defaults to now.

    Returns:
        condition:  dict
            The condition dict
    """
    return {
        "type": constants.INSTALLATION_CONDITION,
        "status": status.value,
        "reason": constants.INSTALLATION_REASON,
        "message": constants.INSTALLATION_MESSAGE,
        "observedGeneration": observed_generation,
        TIMESTAMP_KEY: timestamp or now_timestamp(),
    }


def find_status_condition(conditions: List[dict], type_name: str) -> Optional[dict]:
    """Get the condition of the given type or None if not present"""
    for condition in conditions or []:
        if condition.get("type") == type_name:
            return condition
    return None


def set_status_condition(conditions: List[dict], new_condition: dict) -> List[dict]:
    """Set a condition into a list of conditions. A condition of the same type
    is replaced in place, otherwise the new condition is appended. The
    transition timestamp of an existing condition is kept unless its status
    flips. The input list is not modified.

    Args:
        conditions:  List[dict]
            The current conditions
        new_condition:  dict
            The condition to set

    Returns:
        conditions:  List[dict]
            The updated conditions
    """
    updated = copy.deepcopy(conditions or [])
    new_condition = copy.deepcopy(new_condition)
    for idx, condition in enumerate(updated):
        if condition.get("type") == new_condition.get("type"):
            if condition.get("status") == new_condition.get("status") and (
                TIMESTAMP_KEY in condition
            ):
                new_condition[TIMESTAMP_KEY] = condition[TIMESTAMP_KEY]
            updated[idx] = new_condition
            return updated
    updated.append(new_condition)
    return updated


def status_changed(current_status: dict, new_status: dict) -> bool:
    """Compare two status objects to determine if there is a meaningful change
    between the current status and the proposed new status. A meaningful change
    is defined as any change besides a timestamp.

    Args:
        current_status:  dict
            The raw status dict from the current CR
        new_status:  dict
            The proposed new status

    Returns:
        status_changed:  bool
            True if there is a meaningful change between the current status and
            the new status
    """
    # Status objects must be dicts
    if not isinstance(current_status, dict) or not isinstance(new_status, dict):
        return True

    # Perform a deep diff, excluding timestamps
    return bool(
        DeepDiff(
            current_status,
            new_status,
            exclude_obj_callback=lambda _, path: path.endswith(f"{TIMESTAMP_KEY}']"),
        )
    )


def make_status(
    current_status: dict,
    state: State,
    condition_status: Optional[ConditionStatus],
    observed_generation: int,
) -> dict:
    """Build the full status dict for a state transition

    Args:
        current_status:  dict
            The status currently held by the resource
        state:  State
            The new state
        condition_status:  Optional[ConditionStatus]
            The new Installation condition status, or None to leave the
            conditions untouched
        observed_generation:  int
            The generation the condition refers to

    Returns:
        status:  dict
            The new status
    """
    new_status = copy.deepcopy(current_status or {})
    new_status["state"] = state.value
    if condition_status is not None:
        new_status["conditions"] = set_status_condition(
            new_status.get("conditions", []),
            make_installation_condition(condition_status, observed_generation),
        )
    return new_status


class StatusManager:
    """The StatusManager persists state transitions of a custom resource and
    emits an event for each one
    """

    def __init__(self, deploy_manager, event_recorder: EventRecorder, field_owner: str):
        """
        Args:
            deploy_manager:  DeployManagerBase
                The store holding the custom resources
            event_recorder:  EventRecorder
                Recorder for the events emitted on every update
            field_owner:  str
                The field manager used for status writes
        """
        self.deploy_manager = deploy_manager
        self.event_recorder = event_recorder
        self.field_owner = field_owner

    def set_status(
        self,
        resource: "CustomResource",
        state: State,
        condition_status: Optional[ConditionStatus] = None,
    ) -> bool:
        """Move the resource to the given state and optionally set the
        Installation condition. The write is skipped when nothing besides a
        timestamp would change.

        Args:
            resource:  CustomResource
                The resource as fetched at the start of this reconcile
            state:  State
                The new state
            condition_status:  Optional[ConditionStatus]
                The new Installation condition status, or None to leave the
                conditions untouched

        Returns:
            changed:  bool
                Whether or not a write was performed

        Raises:
            PersistenceError: The write was rejected by the store
        """
        new_status = make_status(
            resource.status, state, condition_status, resource.generation
        )
        if not status_changed(resource.status, new_status):
            log.debug("Status has not changed for [%s]. No update", resource)
            return False

        log.debug2("Updating status of [%s] to %s", resource, new_status)
        try:
            self.deploy_manager.set_status(
                kind=resource.kind,
                name=resource.name,
                namespace=resource.namespace,
                status=new_status,
                api_version=resource.api_version,
                field_manager=self.field_owner,
                resource_version=resource.resource_version,
            )
        except StoreError as err:
            log.warning("Failed to update status of [%s]: %s", resource, err)
            self.event_recorder.event(
                resource,
                EventSeverity.WARNING,
                constants.STATUS_UPDATE_FAILED_REASON,
                f"updating state to {state.value}",
            )
            raise PersistenceError(
                f"failed to update status of {resource} to {state.value}"
            ) from err

        log.info("Updated state of [%s] to [%s]", resource, state.value)
        self.event_recorder.event(
            resource,
            EventSeverity.NORMAL,
            constants.STATUS_UPDATED_REASON,
            f"updating state to {state.value}",
        )
        return True
