"""
The ApplyPipeline installs and removes the rendered objects of a custom
resource. Every object is attempted; failures are collected and raised together
once the whole set has been processed.
"""

# Standard
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Callable, List, Optional, Tuple
import threading

# First Party
import alog

# Local
from . import config
from .exceptions import AggregateApplyError, AlreadyExistsError, NotFoundError, StoreError
from .registry import ResourceRegistry
from .renderer import RenderedSet
from .utils import resource_identifiers

log = alog.use_channel("APPLY")


class ApplyPipeline:
    """Renders a custom resource and upserts or deletes its objects"""

    def __init__(
        self,
        registry: ResourceRegistry,
        deploy_manager,
        field_owner: Optional[str] = None,
        threads: Optional[int] = None,
    ):
        """
        Args:
            registry:  ResourceRegistry
                Source of the renderer for each kind
            deploy_manager:  DeployManagerBase
                The store to apply to
            field_owner:  Optional[str]
                The field manager that owns applied fields. Defaults to
                config.field_owner.
            threads:  Optional[int]
                Number of concurrent applies. 0 applies in order on the calling
                thread. Defaults to config.apply.threads.
        """
        self.registry = registry
        self.deploy_manager = deploy_manager
        self.field_owner = field_owner or config.field_owner
        self.threads = threads if threads is not None else config.apply.threads

    def render(self, resource) -> RenderedSet:
        """Render the objects of a custom resource

        Raises:
            RenderError: The renderer could not produce the objects
        """
        rendered = self.registry.get_renderer(resource).render(resource)
        for blob in rendered.raw_blobs:
            log.debug2("Skipping unparsed fragment for [%s]: %s", resource, blob)
        log.debug(
            "Rendered %d objects and %d raw blobs for [%s]",
            len(rendered.objects),
            len(rendered.raw_blobs),
            resource,
        )
        return rendered

    def apply(self, resource) -> RenderedSet:
        """Render and upsert every object of the custom resource

        Args:
            resource:  CustomResource
                The resource to install

        Returns:
            rendered:  RenderedSet
                The objects that were applied

        Raises:
            RenderError: The render failed, nothing was applied
            AggregateApplyError: One or more objects failed to apply
        """
        rendered = self.render(resource)
        self._run_all(rendered.objects, self._apply_one)
        return rendered

    def delete(self, objects: List[dict]):
        """Delete every object. Objects that are already gone count as deleted.

        Raises:
            AggregateApplyError: One or more objects failed to delete
        """
        self._run_all(objects, self._delete_one)

    ## Implementation ##########################################################

    def _apply_one(self, obj: dict):
        log.debug2("Applying [%s]", resource_identifiers(obj))
        try:
            self.deploy_manager.apply(
                obj, field_manager=self.field_owner, force_conflicts=True
            )
        except AlreadyExistsError:
            log.debug2("[%s] already exists", resource_identifiers(obj))

    def _delete_one(self, obj: dict):
        log.debug2("Deleting [%s]", resource_identifiers(obj))
        try:
            self.deploy_manager.delete(obj)
        except NotFoundError:
            log.debug2("[%s] already deleted", resource_identifiers(obj))

    def _run_all(self, objects: List[dict], operation: Callable[[dict], None]):
        """Run the operation on every object and raise the collected store
        errors in object order
        """
        errors: List[Tuple[int, StoreError]] = []
        errors_lock = threading.Lock()

        def run_one(idx: int, obj: dict):
            try:
                operation(obj)
            except StoreError as err:
                log.warning("Failed on [%s]: %s", resource_identifiers(obj), err)
                with errors_lock:
                    errors.append((idx, err))

        pool_type = ThreadPoolExecutor if self.threads > 0 else NonThreadPoolExecutor
        pool = pool_type(max_workers=max(self.threads, 1))
        try:
            futures = [pool.submit(run_one, idx, obj) for idx, obj in enumerate(objects)]
            for future in futures:
                future.result()
        finally:
            pool.shutdown()

        if errors:
            raise AggregateApplyError([err for _, err in sorted(errors, key=lambda e: e[0])])


class NonThreadPoolExecutor(Executor):
    """This "pool" implements the Executor interfaces, but runs without any
    threads
    """

    def __init__(self, *_, **__):
        """Swallow constructor args so that it can match ThreadPoolExecutor"""
        super().__init__()

    @staticmethod
    def submit(fn: Callable, /, *args, **kwargs):
        """Run the function immediately and return a pre-completed Future"""
        fut = Future()
        fut.set_result(fn(*args, **kwargs))
        return fut

    @staticmethod
    def shutdown(*_, **__):
        """Nothing to do since this is not a real pool"""
