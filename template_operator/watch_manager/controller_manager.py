"""
The ControllerManager feeds custom resource keys to the ReconcileManager. A
resync thread periodically lists every registered kind and queues each key,
and a pool of worker threads reconciles keys and turns each result's directive
into the matching work queue operation.
"""

# Standard
from datetime import timedelta
from typing import List, Optional
import threading

# First Party
import alog

# Local
from .. import config
from ..custom_resource import ResourceKey
from ..exceptions import StoreError
from ..rate_limiter import RateLimiterConfig, template_rate_limiter
from ..reconcile import ReconcileManager, ReconciliationResult, RequeueType
from ..registry import ResourceRegistry
from .work_queue import RateLimitingQueue

log = alog.use_channel("CTRLM")

# Seconds a worker blocks on the queue before checking for shutdown
WORKER_POLL_SECONDS = 1.0


class ControllerManager:  # pylint: disable=too-many-instance-attributes
    """Runs the reconcile loop for every kind in a registry"""

    def __init__(  # pylint: disable=too-many-arguments
        self,
        reconcile_manager: ReconcileManager,
        registry: ResourceRegistry,
        deploy_manager,
        queue: Optional[RateLimitingQueue] = None,
        workers: Optional[int] = None,
        resync_period: Optional[timedelta] = None,
        namespace: Optional[str] = None,
    ):
        """
        Args:
            reconcile_manager:  ReconcileManager
                Runs each reconcile pass
            registry:  ResourceRegistry
                The kinds to list on every resync
            deploy_manager:  DeployManagerBase
                The store to list from
            queue:  Optional[RateLimitingQueue]
                Work queue. Defaults to one built from config.rate_limiter.
            workers:  Optional[int]
                Number of worker threads. Defaults to
                config.max_concurrent_reconciles.
            resync_period:  Optional[timedelta]
                Interval between listings. Defaults to
                config.resync_period_seconds.
            namespace:  Optional[str]
                Only reconcile resources in this namespace. Defaults to
                config.watch_namespace.
        """
        self.reconcile_manager = reconcile_manager
        self.registry = registry
        self.deploy_manager = deploy_manager
        self.queue = queue or RateLimitingQueue(
            template_rate_limiter(RateLimiterConfig.from_config(config.rate_limiter))
        )
        self.workers = workers or config.max_concurrent_reconciles
        self.resync_period = (
            resync_period
            if resync_period is not None
            else timedelta(seconds=float(config.resync_period_seconds))
        )
        self.namespace = namespace if namespace is not None else config.watch_namespace

        self._shutdown = threading.Event()
        self._threads: List[threading.Thread] = []

    ## Lifecycle ###############################################################

    def start(self):
        """Start the resync thread and the workers"""
        log.info(
            "Starting %d workers for %s",
            self.workers,
            [f"{entry.api_version}/{entry.kind}" for entry in self.registry],
        )
        self._threads = [
            threading.Thread(target=self._run_resync, name="resync", daemon=True)
        ] + [
            threading.Thread(target=self._run_worker, name=f"worker_{idx}", daemon=True)
            for idx in range(self.workers)
        ]
        for thread in self._threads:
            thread.start()

    def stop(self):
        """Stop all threads and wait for in-flight reconciles to finish"""
        log.info("Stopping controller manager")
        self._shutdown.set()
        self.queue.shut_down()
        for thread in self._threads:
            thread.join()
        self._threads = []

    def wait(self):
        """Block until stop() is called from another thread or a signal"""
        self._shutdown.wait()

    ## Work ####################################################################

    def resync(self):
        """Queue the key of every resource of every registered kind. Keys that
        are waiting out a delay are left alone so their backoff is kept.
        """
        for entry in self.registry:
            try:
                resources = self.deploy_manager.filter_objects_current_state(
                    kind=entry.kind,
                    namespace=self.namespace,
                    api_version=entry.api_version,
                )
            except StoreError as err:
                log.warning("Failed to list %s/%s: %s", entry.api_version, entry.kind, err)
                continue
            for resource in resources:
                key = ResourceKey.from_resource(resource)
                if not self.queue.is_waiting(key):
                    self.queue.add(key)

    def process_next(self, timeout: Optional[float] = None) -> bool:
        """Reconcile the next key from the queue

        Args:
            timeout:  Optional[float]
                Seconds to wait for a key

        Returns:
            processed:  bool
                False if no key arrived before the timeout or the queue is
                shutting down
        """
        key = self.queue.get(timeout=timeout)
        if key is None:
            return False
        try:
            self.handle_result(key, self.reconcile_manager.safe_reconcile(key))
        finally:
            self.queue.done(key)
        return True

    def handle_result(self, key: ResourceKey, result: ReconciliationResult):
        """Translate a reconcile result into a work queue operation"""
        directive = result.directive
        log.debug2("[%s] finished with %s", key, directive)
        if directive.type == RequeueType.BACKOFF:
            self.queue.add_rate_limited(key)
        elif directive.type == RequeueType.AFTER_INTERVAL:
            self.queue.forget(key)
            self.queue.add_after(key, directive.requeue_after)
        elif directive.type == RequeueType.IMMEDIATE:
            self.queue.add(key)
        else:
            self.queue.forget(key)

    ## Implementation ##########################################################

    def _run_resync(self):
        while not self._shutdown.is_set():
            self.resync()
            self._shutdown.wait(self.resync_period.total_seconds())

    def _run_worker(self):
        while not self._shutdown.is_set():
            self.process_next(timeout=WORKER_POLL_SECONDS)
