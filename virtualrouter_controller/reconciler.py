"""Reconciliation logic for the VirtualRouter controller."""

import copy
import logging
from typing import Any

from kubernetes import client
from kubernetes.client.rest import ApiException

from .config import (
    CRD_GROUP,
    CRD_VERSION,
    CRD_PLURAL,
    ERR_RESOURCE_EXISTS,
    MESSAGE_RESOURCE_EXISTS,
    MESSAGE_RESOURCE_SYNCED,
    SUCCESS_SYNCED,
)
from .ensurer import ResourceEnsurer
from .events import EVENT_TYPE_NORMAL, EVENT_TYPE_WARNING
from .informer import ObjectCache
from .meta import is_controlled_by, split_meta_namespace_key
from .resources import new_deployment
from .virtual_router import VirtualRouter

logger = logging.getLogger(__name__)


class ReconcileError(Exception):
    """A sync failed in a way worth retrying."""


class ResourceConflictError(ReconcileError):
    """A managed object name is taken by an object this controller does not own."""


class VirtualRouterReconciler:
    """Converges the objects managed for a VirtualRouter toward its spec."""

    def __init__(
        self,
        virtual_routers: ObjectCache,
        deployments: ObjectCache,
        recorder,
        ensurer: ResourceEnsurer = None,
        apps_api=None,
        custom_api=None,
        use_status_subresource: bool = True,
    ):
        """
        Initialize the reconciler.

        Args:
            virtual_routers: Informer cache of VirtualRouter objects
            deployments: Informer cache of Deployments
            recorder: EventRecorder used for user-visible events
            ensurer: ResourceEnsurer for the supporting objects
            apps_api: AppsV1Api used to write Deployments
            custom_api: CustomObjectsApi used to write VirtualRouter status
            use_status_subresource: Write status through the status
                subresource instead of updating the whole object
        """
        self.virtual_routers = virtual_routers
        self.deployments = deployments
        self.recorder = recorder
        self.ensurer = ensurer or ResourceEnsurer()
        self.apps_api = apps_api or client.AppsV1Api()
        self.custom_api = custom_api or client.CustomObjectsApi()
        self.use_status_subresource = use_status_subresource

    def sync(self, key: str) -> None:
        """
        Compare the actual state with the desired, and converge the two.

        Returns quietly for states no retry can fix (bad key, deleted
        router, missing deployment name). Anything else that goes wrong
        raises, and the caller requeues the key.

        Raises:
            ApiException: a read or write against the API server failed
            ResourceConflictError: the Deployment name is taken by a foreign object
        """
        try:
            namespace, name = split_meta_namespace_key(key)
        except ValueError:
            logger.error(f"Invalid resource key: {key}")
            return

        crd_object = self.virtual_routers.get(namespace, name)
        if crd_object is None:
            logger.info(f"VirtualRouter {key!r} in work queue no longer exists")
            return
        virtual_router = VirtualRouter.from_crd(crd_object)

        if not virtual_router.deployment_name:
            # A later update to the router queues it again
            logger.error(f"{key}: deployment name must be specified")
            return

        target_namespace = virtual_router.private_namespace
        self.ensurer.ensure_all(target_namespace, virtual_router)

        deployment = self._ensure_deployment(target_namespace, virtual_router)

        self.update_status(virtual_router, deployment)

        self.recorder.event(virtual_router, EVENT_TYPE_NORMAL, SUCCESS_SYNCED, MESSAGE_RESOURCE_SYNCED)

    def _ensure_deployment(self, namespace: str, virtual_router: VirtualRouter) -> Any:
        deployment_name = virtual_router.deployment_name
        deployment = self.deployments.get(namespace, deployment_name)

        if deployment is None:
            logger.info(f"Creating Deployment {namespace}/{deployment_name}")
            try:
                deployment = self.apps_api.create_namespaced_deployment(
                    namespace=namespace,
                    body=new_deployment(namespace, virtual_router),
                )
            except ApiException as e:
                if e.status != 409:
                    raise
                # Not in the cache yet; check who owns the live object
                logger.info(f"Deployment {namespace}/{deployment_name} already exists, reading it")
                deployment = self.apps_api.read_namespaced_deployment(name=deployment_name, namespace=namespace)

        if not is_controlled_by(deployment, virtual_router.uid):
            msg = MESSAGE_RESOURCE_EXISTS.format(name=deployment_name)
            self.recorder.event(virtual_router, EVENT_TYPE_WARNING, ERR_RESOURCE_EXISTS, msg)
            raise ResourceConflictError(msg)

        current_replicas = deployment.spec.replicas if deployment.spec else None
        if virtual_router.replicas is not None and virtual_router.replicas != current_replicas:
            logger.debug(
                f"VirtualRouter {virtual_router.name} replicas: {virtual_router.replicas}, "
                f"deployment replicas: {current_replicas}"
            )
            deployment = self.apps_api.replace_namespaced_deployment(
                name=deployment_name,
                namespace=namespace,
                body=new_deployment(namespace, virtual_router),
            )

        return deployment

    def update_status(self, virtual_router: VirtualRouter, deployment: Any) -> bool:
        """
        Mirror the Deployment's available replicas into the router status.

        The cached object is never modified; a deep copy is written back.

        Returns:
            True if a write was made, False if the status was already current
        """
        status = deployment.status
        available = (status.available_replicas if status else None) or 0
        if virtual_router.available_replicas == available:
            return False

        updated = copy.deepcopy(virtual_router.raw)
        updated["status"] = dict(updated.get("status") or {}, availableReplicas=available)

        if self.use_status_subresource:
            self.custom_api.replace_namespaced_custom_object_status(
                group=CRD_GROUP,
                version=CRD_VERSION,
                namespace=virtual_router.namespace,
                plural=CRD_PLURAL,
                name=virtual_router.name,
                body=updated,
            )
        else:
            self.custom_api.replace_namespaced_custom_object(
                group=CRD_GROUP,
                version=CRD_VERSION,
                namespace=virtual_router.namespace,
                plural=CRD_PLURAL,
                name=virtual_router.name,
                body=updated,
            )
        logger.debug(f"Updated status for VirtualRouter {virtual_router.key}: availableReplicas={available}")
        return True
