"""
The ReconcileManager runs a single reconcile pass for one custom resource. It
owns the finalizer lifecycle, turns a deletion request into the Deleting state,
and dispatches on the resource's state to the handler that moves it forward.
Every pass performs at most one write to the custom resource itself and
returns a directive telling the caller when to run the next pass.
"""

# Standard
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Callable, Dict, Optional
import uuid

# First Party
import alog

# Local
from . import config
from .apply import ApplyPipeline
from .custom_resource import CustomResource, ResourceKey
from .events import EventRecorder
from .exceptions import (
    AggregateApplyError,
    ConfigError,
    PersistenceError,
    RenderError,
    StoreError,
    assert_config,
)
from .log_format import reconcile_context
from .registry import ResourceRegistry
from .status import ConditionStatus, State, StatusManager
from .utils import add_finalizer_manifest, remove_finalizer_manifest

log = alog.use_channel("RECON")


## Data models #################################################################


class RequeueType(Enum):
    """When the next pass for a key should run"""

    # Do not requeue
    NONE = "none"

    # Requeue right away without touching the key's backoff
    IMMEDIATE = "immediate"

    # Requeue after the rate limiter's delay for the key
    BACKOFF = "backoff"

    # Requeue after a fixed interval and reset the key's backoff
    AFTER_INTERVAL = "after_interval"


@dataclass
class RequeueDirective:
    """The result of a pass as seen by the work queue"""

    type: RequeueType = RequeueType.NONE
    requeue_after: Optional[timedelta] = None

    @classmethod
    def none(cls) -> "RequeueDirective":
        return cls(RequeueType.NONE)

    @classmethod
    def immediate(cls) -> "RequeueDirective":
        return cls(RequeueType.IMMEDIATE)

    @classmethod
    def backoff(cls) -> "RequeueDirective":
        return cls(RequeueType.BACKOFF)

    @classmethod
    def after(cls, interval: timedelta) -> "RequeueDirective":
        return cls(RequeueType.AFTER_INTERVAL, interval)


@dataclass
class ReconciliationResult:
    """ReconciliationResult is the result of a safe reconcile"""

    # What the work queue should do with the key
    directive: RequeueDirective = field(default_factory=RequeueDirective.none)
    # The error raised by the pass, if any
    exception: Optional[Exception] = None

    @property
    def requeue(self) -> bool:
        return self.directive.type != RequeueType.NONE


## ReconcileManager ############################################################


class ReconcileManager:
    """This class runs reconciles for every kind in its registry against the
    store behind its DeployManager
    """

    def __init__(  # pylint: disable=too-many-arguments
        self,
        registry: ResourceRegistry,
        deploy_manager,
        finalizer: Optional[str] = None,
        field_owner: Optional[str] = None,
        final_state: Optional[str] = None,
        requeue_after: Optional[timedelta] = None,
        apply_pipeline: Optional[ApplyPipeline] = None,
        event_recorder: Optional[EventRecorder] = None,
    ):
        """The constructor wires the collaborators used by every reconcile and
        checks that the configuration is valid. Any argument left as None falls
        back to the library config.

        Args:
            registry:  ResourceRegistry
                The kinds handled and their renderers
            deploy_manager:  DeployManagerBase
                The store holding the custom resources and their objects
            finalizer:  Optional[str]
                Finalizer guarding deletion
            field_owner:  Optional[str]
                Field manager for every write
            final_state:  Optional[str]
                State written after a successful install
            requeue_after:  Optional[timedelta]
                Steady-state interval between re-applies
            apply_pipeline:  Optional[ApplyPipeline]
                Pipeline to use instead of one built from the registry
            event_recorder:  Optional[EventRecorder]
                Recorder to use instead of one built on the deploy_manager
        """
        self.registry = registry
        self.deploy_manager = deploy_manager
        self.finalizer = finalizer or config.finalizer
        self.field_owner = field_owner or config.field_owner
        self.requeue_after = (
            requeue_after
            if requeue_after is not None
            else timedelta(seconds=float(config.requeue_after_seconds))
        )

        final_state_name = final_state if final_state is not None else config.final_state
        try:
            self.final_state = State(final_state_name)
        except ValueError as err:
            raise ConfigError(f"Unknown final state [{final_state_name}]") from err
        assert_config(
            self.final_state not in (State.DELETING, State.INITIAL),
            f"Final state may not be [{final_state_name}]",
        )

        self.apply_pipeline = apply_pipeline or ApplyPipeline(
            registry, deploy_manager, field_owner=self.field_owner
        )
        self.status_manager = StatusManager(
            deploy_manager,
            event_recorder or EventRecorder(deploy_manager, config.operator_name),
            self.field_owner,
        )

        self._handlers: Dict[State, Callable[[CustomResource], RequeueDirective]] = {
            State.INITIAL: self._handle_initial,
            State.PROCESSING: self._handle_processing,
            State.ERROR: self._handle_processing,
            State.DELETING: self._handle_deleting,
            State.READY: self._handle_terminal,
            State.WARNING: self._handle_terminal,
        }
        missing = set(State) - set(self._handlers)
        assert not missing, f"No handler for states {missing}"

    ## Reconciliation ##########################################################

    def reconcile(self, key: ResourceKey) -> RequeueDirective:
        """Run a single reconcile pass for the resource with the given key

        Args:
            key:  ResourceKey
                The identity of the custom resource

        Returns:
            directive:  RequeueDirective
                When the next pass should run

        Raises:
            StoreError: The resource could not be fetched
            PersistenceError: A write to the resource itself failed
        """
        with reconcile_context(key, str(uuid.uuid4())):
            log.debug("Reconciling [%s]", key)

            # Fetch. A resource that is gone needs nothing more.
            definition = self.deploy_manager.get_object_current_state(
                kind=key.kind,
                name=key.name,
                namespace=key.namespace,
                api_version=key.api_version,
            )
            if definition is None:
                log.info("[%s] not found, nothing to do", key)
                return RequeueDirective.none()
            resource = CustomResource(definition)

            # Deletion requested: record it before anything else happens
            if resource.is_deleting and resource.parsed_state != State.DELETING:
                log.info("Deletion requested for [%s]", resource)
                self.status_manager.set_status(resource, State.DELETING)
                return RequeueDirective.immediate()

            # The finalizer is recorded in its own pass before anything is
            # applied
            if self.finalizer not in resource.finalizers:
                if resource.is_deleting:
                    log.debug("[%s] deleting without finalizer, nothing to do", resource)
                    return RequeueDirective.none()
                self._write_metadata(
                    add_finalizer_manifest(resource.definition, self.finalizer)
                )
                return RequeueDirective.immediate()

            state = resource.parsed_state
            if state is None:
                log.warning("[%s] has unknown state [%s]", resource, resource.state)
                return RequeueDirective.none()
            log.debug2("Dispatching [%s] in state [%s]", resource, state.value)
            return self._handlers[state](resource)

    def safe_reconcile(self, key: ResourceKey) -> ReconciliationResult:
        """
        This function calls out to reconcile but catches any errors thrown. The
        errors are reported in the result and paired with a backoff requeue.

        Args:
            key:  ResourceKey
                The identity of the custom resource

        Returns:
            reconcile_result:  ReconciliationResult
                The result of the reconcile
        """
        try:
            return ReconciliationResult(directive=self.reconcile(key))

        # Capture all generic exceptions
        except Exception as exc:  # pylint: disable=broad-except
            if getattr(exc, "is_fatal_error", False):
                log.error("Fatal error reconciling [%s]: %s", key, exc, exc_info=True)
            else:
                log.warning(
                    "Handling caught error in reconcile of [%s]: %s",
                    key,
                    exc,
                    exc_info=True,
                )
            return ReconciliationResult(
                directive=RequeueDirective.backoff(), exception=exc
            )

    ## State Handlers ##########################################################

    def _handle_initial(self, resource: CustomResource) -> RequeueDirective:
        self.status_manager.set_status(
            resource, State.PROCESSING, ConditionStatus.UNKNOWN
        )
        return RequeueDirective.immediate()

    def _handle_processing(self, resource: CustomResource) -> RequeueDirective:
        """Install from Processing or retry from Error"""
        try:
            self.apply_pipeline.apply(resource)
        except (RenderError, AggregateApplyError) as err:
            return self._transition_to_error(resource, err)

        self.status_manager.set_status(
            resource, self.final_state, ConditionStatus.TRUE
        )
        return RequeueDirective.after(self.requeue_after)

    def _handle_terminal(self, resource: CustomResource) -> RequeueDirective:
        """Re-apply to correct drift. The status is only written if it no
        longer matches, e.g. after the final state or generation changed.
        """
        return self._handle_processing(resource)

    def _handle_deleting(self, resource: CustomResource) -> RequeueDirective:
        try:
            objects = self.apply_pipeline.render(resource).objects
        except (RenderError, ConfigError) as err:
            log.warning(
                "Could not render [%s] for deletion, removing nothing: %s",
                resource,
                err,
            )
            objects = []

        try:
            self.apply_pipeline.delete(objects)
        except AggregateApplyError as err:
            return self._transition_to_error(resource, err)

        log.info("Removed %d objects of [%s], releasing finalizer", len(objects), resource)
        self._write_metadata(
            remove_finalizer_manifest(resource.definition, self.finalizer)
        )
        return RequeueDirective.none()

    ## Implementation ##########################################################

    def _transition_to_error(
        self, resource: CustomResource, err: Exception
    ) -> RequeueDirective:
        log.warning("Reconcile of [%s] failed: %s", resource, err)
        self.status_manager.set_status(resource, State.ERROR, ConditionStatus.FALSE)
        return RequeueDirective.backoff()

    def _write_metadata(self, manifest: dict):
        """Apply a metadata-only manifest to the custom resource"""
        try:
            self.deploy_manager.apply(
                manifest, field_manager=self.field_owner, force_conflicts=True
            )
        except StoreError as err:
            raise PersistenceError(
                f"failed to update metadata of {manifest['kind']}/{manifest['metadata']['name']}"
            ) from err
