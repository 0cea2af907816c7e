"""Create-if-absent handling for each VirtualRouter's supporting objects."""

import logging
from typing import Any, Callable

from kubernetes import client
from kubernetes.client.rest import ApiException

from .config import ROLE_BINDING_NAME, ROLE_NAME, SERVICE_ACCOUNT_NAME
from .resources import new_namespace, new_role, new_role_binding, new_service_account
from .virtual_router import VirtualRouter

logger = logging.getLogger(__name__)


class ResourceEnsurer:
    """
    Makes sure the namespace, service account, role and role binding of a
    VirtualRouter exist.

    Objects are created once and never updated afterwards, so manual edits
    to them are left alone.
    """

    def __init__(self, core_api=None, rbac_api=None):
        self.core_api = core_api or client.CoreV1Api()
        self.rbac_api = rbac_api or client.RbacAuthorizationV1Api()

    def ensure(self, kind: str, read: Callable[[], Any], create: Callable[[], Any]) -> bool:
        """
        Read an object and create it when the read says 404.

        Args:
            kind: Object kind, for logging
            read: Reads the object, raising ApiException when absent
            create: Creates the object

        Returns:
            True if the object was created, False if it already existed

        Raises:
            ApiException: on any read error other than 404, or a failed create
        """
        try:
            read()
            return False
        except ApiException as e:
            if e.status != 404:
                logger.error(f"Error reading {kind}: {e}")
                raise

        try:
            create()
        except ApiException as e:
            logger.error(f"Error creating {kind}: {e}")
            raise
        logger.info(f"Created {kind}")
        return True

    def ensure_namespace(self, namespace: str, virtual_router: VirtualRouter) -> bool:
        return self.ensure(
            f"Namespace {namespace}",
            lambda: self.core_api.read_namespace(name=namespace),
            lambda: self.core_api.create_namespace(body=new_namespace(namespace, virtual_router)),
        )

    def ensure_service_account(self, namespace: str, virtual_router: VirtualRouter) -> bool:
        return self.ensure(
            f"ServiceAccount {namespace}/{SERVICE_ACCOUNT_NAME}",
            lambda: self.core_api.read_namespaced_service_account(name=SERVICE_ACCOUNT_NAME, namespace=namespace),
            lambda: self.core_api.create_namespaced_service_account(
                namespace=namespace, body=new_service_account(namespace, virtual_router)
            ),
        )

    def ensure_role(self, namespace: str, virtual_router: VirtualRouter) -> bool:
        return self.ensure(
            f"Role {namespace}/{ROLE_NAME}",
            lambda: self.rbac_api.read_namespaced_role(name=ROLE_NAME, namespace=namespace),
            lambda: self.rbac_api.create_namespaced_role(
                namespace=namespace, body=new_role(namespace, virtual_router)
            ),
        )

    def ensure_role_binding(self, namespace: str, virtual_router: VirtualRouter) -> bool:
        return self.ensure(
            f"RoleBinding {namespace}/{ROLE_BINDING_NAME}",
            lambda: self.rbac_api.read_namespaced_role_binding(name=ROLE_BINDING_NAME, namespace=namespace),
            lambda: self.rbac_api.create_namespaced_role_binding(
                namespace=namespace, body=new_role_binding(namespace, virtual_router)
            ),
        )

    def ensure_all(self, namespace: str, virtual_router: VirtualRouter) -> None:
        """Ensure every supporting object, in dependency order. Stops at the first failure."""
        self.ensure_namespace(namespace, virtual_router)
        self.ensure_service_account(namespace, virtual_router)
        self.ensure_role(namespace, virtual_router)
        self.ensure_role_binding(namespace, virtual_router)
