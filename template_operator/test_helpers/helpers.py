"""
This module holds common helper functions for making testing easy
"""

# Standard
from contextlib import contextmanager
from datetime import timedelta
from typing import List, Optional
from unittest import mock
import copy
import inspect
import os
import threading

# Third Party
import yaml

# First Party
import aconfig
import alog

# Local
from template_operator import constants
from template_operator.config import library_config as config_detail_dict
from template_operator.custom_resource import ResourceKey
from template_operator.deploy_manager.dry_run_deploy_manager import (
    DryRunDeployManager,
)
from template_operator.reconcile import ReconcileManager, RequeueType
from template_operator.registry import ResourceRegistry
from template_operator.renderer import StaticDirectoryRenderer

log = alog.use_channel("TEST")


def configure_logging():
    alog.configure(
        os.environ.get("LOG_LEVEL", "off"),
        os.environ.get("LOG_FILTERS", ""),
        formatter="json"
        if os.environ.get("LOG_JSON", "").lower() == "true"
        else "pretty",
        thread_id=os.environ.get("LOG_THREAD_ID", "").lower() == "true",
    )


configure_logging()

TEST_INSTANCE_NAME = "test-instance"
TEST_NAMESPACE = "test"
TEST_FINALIZER = "sample.kyma-project.io/finalizer"
TEST_FIELD_OWNER = "sample.kyma-project.io/owner"


def setup_cr(
    kind=constants.SAMPLE_KIND,
    api_version=constants.API_VERSION,
    name=TEST_INSTANCE_NAME,
    namespace=TEST_NAMESPACE,
    spec=None,
    status=None,
    finalizers=None,
    **kwargs,
) -> dict:
    """Build a custom resource manifest"""
    cr_dict = kwargs or {}
    cr_dict.setdefault("kind", kind)
    cr_dict.setdefault("apiVersion", api_version)
    cr_dict.setdefault("metadata", {}).setdefault("name", name)
    cr_dict["metadata"].setdefault("namespace", namespace)
    if finalizers is not None:
        cr_dict["metadata"]["finalizers"] = list(finalizers)
    cr_dict.setdefault("spec", {}).update(copy.deepcopy(spec or {}))
    if status is not None:
        cr_dict["status"] = copy.deepcopy(status)
    return cr_dict


def cr_key(cr_dict: dict) -> ResourceKey:
    return ResourceKey.from_resource(cr_dict)


def make_config_map(name="test-cm", namespace=TEST_NAMESPACE, data=None) -> dict:
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": name, "namespace": namespace},
        "data": data or {"foo": "bar"},
    }


def write_manifest_dir(dir_path, *objects, fname="manifest.yaml") -> str:
    """Write the objects as a multi-document manifest into dir_path and return
    the directory as a str
    """
    dir_path = str(dir_path)
    os.makedirs(dir_path, exist_ok=True)
    with open(os.path.join(dir_path, fname), "w", encoding="utf-8") as handle:
        yaml.safe_dump_all(list(objects), handle)
    return dir_path


@contextmanager
def library_config(**config_overrides):
    """This context manager sets library config values temporarily and reverts
    them on completion
    """
    # Override the configs and hang onto the old values
    old_vals = {}
    for key, val in config_overrides.items():
        if key in config_detail_dict:
            old_vals[key] = config_detail_dict[key]
        config_detail_dict[key] = val

    # Yield to the context
    try:
        yield

    # Revert to the old values
    finally:
        for key in config_overrides:
            if key in old_vals:
                config_detail_dict[key] = old_vals[key]
            else:
                del config_detail_dict[key]


def get_failable_method(fail_flag, method, failure_return=None):
    log.debug4(
        "Setting up failable mock of [%s] with fail flag: %s", str(method), fail_flag
    )

    def failable_method(*args, **kwargs):
        if isinstance(fail_flag, Exception) or (
            inspect.isclass(fail_flag) and issubclass(fail_flag, Exception)
        ):
            log.debug4("Raising in failable mock")
            raise fail_flag
        if callable(fail_flag):
            log.debug4("Calling callable fail flag")
            res = fail_flag(*args, **kwargs)
            if res is not None:
                return res
        elif fail_flag == "assert":
            raise AssertionError(f"You told me to fail {method}!")
        elif fail_flag:
            return failure_return
        res = method(*args, **kwargs)
        log.debug4("Passthrough res: %s", res)
        return res

    return failable_method


class FailWhen:
    """Helper callable that raises for calls whose first argument matches"""

    def __init__(self, predicate, exc):
        self.predicate = predicate
        self.exc = exc

    def __call__(self, *args, **kwargs):
        target = args[0] if args else kwargs.get("resource_definition")
        if self.predicate(target):
            raise self.exc
        return None


class MockDeployManager(DryRunDeployManager):
    """The MockDeployManager wraps a standard DryRunDeployManager and adds
    configuration options to simulate failures in each of its operations.
    A fail flag may be an exception (raised), a callable (called with the
    operation's arguments), or "assert".
    """

    def __init__(
        self,
        apply_fail=False,
        delete_fail=False,
        get_state_fail=False,
        filter_fail=False,
        set_status_fail=False,
        create_event_fail=False,
        auto_enable=True,
        resources=None,
        **kwargs,
    ):
        super().__init__(resources, **kwargs)
        self.apply_fail = apply_fail
        self.delete_fail = delete_fail
        self.get_state_fail = get_state_fail
        self.filter_fail = filter_fail
        self.set_status_fail = set_status_fail
        self.create_event_fail = create_event_fail

        # If auto-enabling, turn the mocks on now
        if auto_enable:
            self.enable_mocks()

    def enable_mocks(self):
        """Turn the mocks on"""
        self.apply = mock.Mock(
            side_effect=get_failable_method(self.apply_fail, super().apply)
        )
        self.delete = mock.Mock(
            side_effect=get_failable_method(self.delete_fail, super().delete)
        )
        self.get_object_current_state = mock.Mock(
            side_effect=get_failable_method(
                self.get_state_fail, super().get_object_current_state
            )
        )
        self.filter_objects_current_state = mock.Mock(
            side_effect=get_failable_method(
                self.filter_fail, super().filter_objects_current_state, []
            )
        )
        self.set_status = mock.Mock(
            side_effect=get_failable_method(self.set_status_fail, super().set_status)
        )
        self.create_event = mock.Mock(
            side_effect=get_failable_method(
                self.create_event_fail, super().create_event
            )
        )

    def get_obj(self, kind, name, namespace=TEST_NAMESPACE, api_version=None):
        return DryRunDeployManager.get_object_current_state(
            self, kind, name, namespace, api_version
        )

    def has_obj(self, *args, **kwargs):
        return self.get_obj(*args, **kwargs) is not None


class FakeClock:
    """Manually advanced monotonic clock"""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self._lock = threading.Lock()

    def __call__(self) -> float:
        with self._lock:
            return self.now

    def advance(self, seconds: float):
        with self._lock:
            self.now += seconds


def static_registry(api_version=constants.API_VERSION, kind=constants.SAMPLE_KIND):
    """Registry with only the static directory kind"""
    registry = ResourceRegistry()
    registry.register(api_version, kind, StaticDirectoryRenderer())
    return registry


def setup_reconcile_manager(
    deploy_manager,
    registry: Optional[ResourceRegistry] = None,
    **kwargs,
) -> ReconcileManager:
    kwargs.setdefault("finalizer", TEST_FINALIZER)
    kwargs.setdefault("field_owner", TEST_FIELD_OWNER)
    kwargs.setdefault("final_state", "Ready")
    kwargs.setdefault("requeue_after", timedelta(seconds=3))
    return ReconcileManager(
        registry or static_registry(),
        deploy_manager,
        **kwargs,
    )


def reconcile_until_settled(reconcile_manager, key, max_passes=10) -> List:
    """Run reconcile passes while the directive asks for an immediate requeue
    and return every directive
    """
    directives = []
    for _ in range(max_passes):
        directive = reconcile_manager.reconcile(key)
        directives.append(directive)
        if directive.type != RequeueType.IMMEDIATE:
            return directives
    raise AssertionError(f"Reconcile of {key} did not settle: {directives}")


def section_config(**values) -> aconfig.Config:
    return aconfig.Config(values, override_env_vars=False)
