"""
Tests for the ControllerManager
"""

# Standard
from datetime import timedelta
from unittest import mock
import time

# Third Party
import pytest

# Local
from template_operator import constants
from template_operator.exceptions import StoreError
from template_operator.rate_limiter import RateLimiterConfig, template_rate_limiter
from template_operator.reconcile import ReconciliationResult, RequeueDirective
from template_operator.test_helpers.helpers import (
    TEST_INSTANCE_NAME,
    MockDeployManager,
    cr_key,
    make_config_map,
    section_config,
    setup_cr,
    setup_reconcile_manager,
    static_registry,
    write_manifest_dir,
)
from template_operator.watch_manager import ControllerManager, RateLimitingQueue

## Helpers #####################################################################


def make_queue():
    return RateLimitingQueue(
        template_rate_limiter(
            RateLimiterConfig.from_config(
                section_config(
                    burst=100,
                    frequency=100,
                    base_delay_seconds=0.01,
                    max_delay_seconds=0.1,
                )
            )
        )
    )


def setup_controller_manager(dm, queue=None, **kwargs):
    registry = static_registry()
    return ControllerManager(
        setup_reconcile_manager(dm, registry=registry),
        registry,
        dm,
        queue=queue or make_queue(),
        **kwargs,
    )


def sample_cr(path, name=TEST_INSTANCE_NAME, **kwargs):
    return setup_cr(
        name=name, spec={constants.RESOURCE_FILE_PATH_FIELD: str(path)}, **kwargs
    )


def wait_for(condition, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return False


## handle_result ###############################################################


@pytest.mark.parametrize(
    "directive,method",
    [
        (RequeueDirective.backoff(), "add_rate_limited"),
        (RequeueDirective.immediate(), "add"),
    ],
)
def test_handle_result_requeues(directive, method):
    queue = mock.MagicMock()
    manager = setup_controller_manager(MockDeployManager(), queue=queue)
    key = cr_key(setup_cr())
    manager.handle_result(key, ReconciliationResult(directive))
    getattr(queue, method).assert_called_once_with(key)
    queue.forget.assert_not_called()


def test_handle_result_after_interval():
    """Make sure a success resets the key's backoff and waits the interval"""
    queue = mock.MagicMock()
    manager = setup_controller_manager(MockDeployManager(), queue=queue)
    key = cr_key(setup_cr())
    manager.handle_result(
        key, ReconciliationResult(RequeueDirective.after(timedelta(seconds=3)))
    )
    queue.forget.assert_called_once_with(key)
    queue.add_after.assert_called_once_with(key, timedelta(seconds=3))


def test_handle_result_none():
    queue = mock.MagicMock()
    manager = setup_controller_manager(MockDeployManager(), queue=queue)
    key = cr_key(setup_cr())
    manager.handle_result(key, ReconciliationResult(RequeueDirective.none()))
    queue.forget.assert_called_once_with(key)
    queue.add.assert_not_called()
    queue.add_after.assert_not_called()


## resync ######################################################################


@pytest.mark.timeout(5)
def test_resync_queues_every_resource(tmp_path):
    dm = MockDeployManager(
        resources=[
            sample_cr(tmp_path, name="a"),
            sample_cr(tmp_path, name="b"),
            sample_cr(tmp_path, name="c", namespace="other"),
            make_config_map(),
        ]
    )
    manager = setup_controller_manager(dm)
    try:
        manager.resync()
        keys = {manager.queue.get(timeout=1).name for _ in range(3)}
        assert keys == {"a", "b", "c"}
        assert len(manager.queue) == 0
    finally:
        manager.queue.shut_down()


@pytest.mark.timeout(5)
def test_resync_watch_namespace(tmp_path):
    dm = MockDeployManager(
        resources=[
            sample_cr(tmp_path, name="a"),
            sample_cr(tmp_path, name="c", namespace="other"),
        ]
    )
    manager = setup_controller_manager(dm, namespace="other")
    try:
        manager.resync()
        assert len(manager.queue) == 1
        assert manager.queue.get(timeout=1).name == "c"
    finally:
        manager.queue.shut_down()


@pytest.mark.timeout(5)
def test_resync_keeps_backoff(tmp_path):
    """Make sure a key waiting out a delay is not queued early"""
    cr_dict = sample_cr(tmp_path)
    manager = setup_controller_manager(MockDeployManager(resources=[cr_dict]))
    try:
        manager.queue.add_after(cr_key(cr_dict), timedelta(seconds=60))
        manager.resync()
        assert len(manager.queue) == 0
    finally:
        manager.queue.shut_down()


@pytest.mark.timeout(5)
def test_resync_list_failure_is_logged(tmp_path):
    dm = MockDeployManager(filter_fail=StoreError("down"))
    manager = setup_controller_manager(dm)
    try:
        manager.resync()
        assert len(manager.queue) == 0
    finally:
        manager.queue.shut_down()


## process_next ################################################################


@pytest.mark.timeout(10)
def test_process_next_drives_install(tmp_path):
    """Make sure successive passes through the queue install the resource"""
    write_manifest_dir(tmp_path, make_config_map())
    cr_dict = sample_cr(tmp_path)
    dm = MockDeployManager(resources=[cr_dict])
    manager = setup_controller_manager(dm)
    try:
        manager.queue.add(cr_key(cr_dict))
        for _ in range(3):
            assert manager.process_next(timeout=1)
        assert dm.get_obj(constants.SAMPLE_KIND, TEST_INSTANCE_NAME)["status"][
            "state"
        ] == "Ready"
        assert dm.has_obj("ConfigMap", "test-cm")

        # The healthy resource now waits for its steady-state interval
        assert manager.queue.is_waiting(cr_key(cr_dict))
        assert not manager.process_next(timeout=0.05)
    finally:
        manager.queue.shut_down()


@pytest.mark.timeout(10)
def test_process_next_backs_off_failures(tmp_path):
    """Make sure a failing key is retried with a growing backoff"""
    cr_dict = sample_cr(tmp_path / "missing")
    dm = MockDeployManager(resources=[cr_dict])
    manager = setup_controller_manager(dm)
    key = cr_key(cr_dict)
    try:
        manager.queue.add(key)
        for _ in range(5):
            assert manager.process_next(timeout=2)
        assert manager.queue.num_requeues(key) >= 2
    finally:
        manager.queue.shut_down()


@pytest.mark.timeout(5)
def test_process_next_shut_down():
    manager = setup_controller_manager(MockDeployManager())
    manager.queue.shut_down()
    assert not manager.process_next(timeout=1)


## start / stop ################################################################


@pytest.mark.timeout(20)
def test_start_stop(tmp_path):
    """Make sure the running manager discovers and installs resources"""
    write_manifest_dir(tmp_path, make_config_map())
    dm = MockDeployManager(
        resources=[sample_cr(tmp_path, name="a"), sample_cr(tmp_path, name="b")]
    )
    manager = setup_controller_manager(
        dm, workers=2, resync_period=timedelta(seconds=0.1)
    )
    manager.start()
    try:
        assert wait_for(
            lambda: all(
                (dm.get_obj(constants.SAMPLE_KIND, name) or {})
                .get("status", {})
                .get("state")
                == "Ready"
                for name in ["a", "b"]
            )
        )
    finally:
        manager.stop()
    assert manager.queue.shutting_down
