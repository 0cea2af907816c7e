"""Main controller logic for the VirtualRouter controller."""

import logging
import threading
from typing import Any, List, Optional

from kubernetes import client
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from .config import (
    CRD_GROUP,
    CRD_VERSION,
    CRD_PLURAL,
    DEFAULT_WORKERS,
    RESYNC_PERIOD_SECONDS,
)
from .ensurer import ResourceEnsurer
from .events import EventRecorder
from .informer import Informer, wait_for_cache_sync
from .meta import get_meta, meta_namespace_key
from .owners import resolve_owner_key
from .reconciler import ReconcileError, VirtualRouterReconciler
from .workqueue import RateLimitingQueue

# urllib3 errors are connection failures the API client raises unwrapped
RETRYABLE_ERRORS = (ApiException, HTTPError, ReconcileError)

logger = logging.getLogger(__name__)


def virtual_router_informer(custom_api, namespace: str = "", resync_period: float = RESYNC_PERIOD_SECONDS) -> Informer:
    """Informer over VirtualRouter objects in one namespace, or all of them."""
    if namespace:
        return Informer(
            "VirtualRouter",
            custom_api.list_namespaced_custom_object,
            resync_period=resync_period,
            group=CRD_GROUP,
            version=CRD_VERSION,
            namespace=namespace,
            plural=CRD_PLURAL,
        )
    return Informer(
        "VirtualRouter",
        custom_api.list_cluster_custom_object,
        resync_period=resync_period,
        group=CRD_GROUP,
        version=CRD_VERSION,
        plural=CRD_PLURAL,
    )


def deployment_informer(apps_api, resync_period: float = RESYNC_PERIOD_SECONDS) -> Informer:
    # Managed Deployments live in per-router namespaces, so watch them all
    return Informer(
        "Deployment",
        apps_api.list_deployment_for_all_namespaces,
        resync_period=resync_period,
    )


class VirtualRouterController:
    """
    Controller that watches VirtualRouter objects and the Deployments they
    own, and reconciles each router through a rate-limited work queue.
    """

    def __init__(
        self,
        namespace: str = "",
        resync_period: float = RESYNC_PERIOD_SECONDS,
        use_status_subresource: bool = True,
        core_api=None,
        apps_api=None,
        rbac_api=None,
        custom_api=None,
        virtual_routers: Optional[Informer] = None,
        deployments: Optional[Informer] = None,
        recorder: Optional[EventRecorder] = None,
        workqueue: Optional[RateLimitingQueue] = None,
    ):
        """
        Initialize the controller.

        Args:
            namespace: Namespace to watch for VirtualRouters ("" for all namespaces)
            resync_period: Seconds between informer resyncs
            use_status_subresource: Write status via the status subresource
        """
        self.namespace = namespace
        self.core_api = core_api or client.CoreV1Api()
        self.apps_api = apps_api or client.AppsV1Api()
        self.rbac_api = rbac_api or client.RbacAuthorizationV1Api()
        self.custom_api = custom_api or client.CustomObjectsApi()

        self.virtual_routers = virtual_routers or virtual_router_informer(self.custom_api, namespace, resync_period)
        self.deployments = deployments or deployment_informer(self.apps_api, resync_period)
        self.recorder = recorder or EventRecorder(self.core_api)
        self.workqueue = workqueue or RateLimitingQueue(name="VirtualRouters")

        self.reconciler = VirtualRouterReconciler(
            virtual_routers=self.virtual_routers.cache,
            deployments=self.deployments.cache,
            recorder=self.recorder,
            ensurer=ResourceEnsurer(self.core_api, self.rbac_api),
            apps_api=self.apps_api,
            custom_api=self.custom_api,
            use_status_subresource=use_status_subresource,
        )

        self._stop_event = threading.Event()
        self._crash: Optional[BaseException] = None

        logger.info("Setting up event handlers")
        self.virtual_routers.add_event_handler(
            on_add=self.enqueue_virtual_router,
            on_update=lambda old, new: self.enqueue_virtual_router(new),
        )
        self.deployments.add_event_handler(
            on_add=self.handle_object,
            on_update=self.handle_deployment_update,
            on_delete=self.handle_object,
        )

    def enqueue_virtual_router(self, obj: Any) -> None:
        """Put a VirtualRouter's ``namespace/name`` key on the work queue."""
        try:
            key = meta_namespace_key(obj)
        except ValueError as e:
            logger.error(f"Cannot enqueue VirtualRouter: {e}")
            return
        self.workqueue.add(key)

    def handle_deployment_update(self, old: Any, new: Any) -> None:
        # Resyncs re-deliver unchanged Deployments; distinct versions always differ in resourceVersion
        if get_meta(old, "resource_version") == get_meta(new, "resource_version"):
            return
        self.handle_object(new)

    def handle_object(self, obj: Any) -> None:
        """Enqueue the VirtualRouter that controls ``obj``, if there is one."""
        key = resolve_owner_key(obj, self.virtual_routers.cache)
        if key is not None:
            self.workqueue.add(key)

    def process_next_work_item(self) -> bool:
        """
        Take one key off the work queue and sync it.

        Returns:
            False once the queue is shut down and drained, True otherwise
        """
        key, shutdown = self.workqueue.get()
        if shutdown:
            return False

        try:
            if not isinstance(key, str):
                self.workqueue.forget(key)
                logger.error(f"Expected string in work queue but got {key!r}")
                return True

            try:
                self.reconciler.sync(key)
            except RETRYABLE_ERRORS as e:
                self.workqueue.add_rate_limited(key)
                logger.error(f"Error syncing {key!r}: {e}, requeuing")
                return True

            self.workqueue.forget(key)
            logger.info(f"Successfully synced {key!r}")
            return True
        finally:
            self.workqueue.done(key)

    def run_worker(self) -> None:
        """Process work items until the queue shuts down."""
        try:
            while self.process_next_work_item():
                pass
        except Exception as e:
            logger.exception("Unhandled error in worker, stopping controller")
            if self._crash is None:
                self._crash = e
            self._stop_event.set()

    def run(self, workers: int = DEFAULT_WORKERS, stop_event: Optional[threading.Event] = None) -> None:
        """
        Run the controller until ``stop_event`` is set.

        Starts the informers, waits for their caches to sync, then starts
        ``workers`` worker threads. On stop the work queue is shut down and
        the workers finish their current items before this returns.

        Raises:
            RuntimeError: if the caches never synced before stop
            Exception: the first unexpected error raised by a worker
        """
        if stop_event is not None:
            self._stop_event = stop_event
        stop_event = self._stop_event

        logger.info("Starting VirtualRouter controller")
        informers = [self.virtual_routers, self.deployments]
        for informer in informers:
            threading.Thread(
                target=informer.run,
                args=(stop_event,),
                name=f"{informer.name}-informer",
                daemon=True,
            ).start()
        self.recorder.start()

        threads: List[threading.Thread] = []
        try:
            logger.info("Waiting for informer caches to sync")
            if not wait_for_cache_sync(stop_event, *informers):
                raise RuntimeError("failed to wait for caches to sync")

            logger.info("Starting workers")
            for i in range(workers):
                thread = threading.Thread(target=self.run_worker, name=f"worker-{i}", daemon=True)
                thread.start()
                threads.append(thread)

            logger.info("Started workers")
            stop_event.wait()
            logger.info("Shutting down workers")
        finally:
            self.workqueue.shut_down()
            for thread in threads:
                thread.join()
            for informer in informers:
                informer.stop()
            self.recorder.stop()

        if self._crash is not None:
            raise self._crash

    def stop(self) -> None:
        """Stop the controller."""
        logger.info("Stopping controller...")
        self._stop_event.set()
