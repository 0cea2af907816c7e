"""Desired state of the objects managed for each VirtualRouter."""

import copy
from typing import Dict, List

from kubernetes import client

from .config import (
    CRD_API_VERSION,
    CRD_GROUP,
    CRD_KIND,
    NETWORK_GROUP_NAME,
    ROLE_BINDING_NAME,
    ROLE_NAME,
    SERVICE_ACCOUNT_NAME,
    VIRTUALROUTER_DAEMON_FINALIZER,
    VIRTUALROUTER_LABEL,
)
from .virtual_router import VirtualRouter

# Capabilities the router daemon needs to program interfaces and netfilter
ROUTER_CAPABILITIES = ["NET_RAW", "NET_ADMIN", "SYS_ADMIN"]


def owner_reference(virtual_router: VirtualRouter) -> client.V1OwnerReference:
    """Controller owner reference pointing back at the VirtualRouter."""
    return client.V1OwnerReference(
        api_version=CRD_API_VERSION,
        kind=CRD_KIND,
        name=virtual_router.name,
        uid=virtual_router.uid,
        controller=True,
        block_owner_deletion=True,
    )


def _object_meta(name: str, namespace: str, virtual_router: VirtualRouter) -> client.V1ObjectMeta:
    return client.V1ObjectMeta(
        name=name,
        namespace=namespace or None,
        owner_references=[owner_reference(virtual_router)],
    )


def workload_labels() -> Dict[str, str]:
    return {"app": VIRTUALROUTER_LABEL}


def new_namespace(namespace: str, virtual_router: VirtualRouter) -> client.V1Namespace:
    return client.V1Namespace(
        api_version="v1",
        kind="Namespace",
        metadata=_object_meta(namespace, "", virtual_router),
    )


def new_service_account(namespace: str, virtual_router: VirtualRouter) -> client.V1ServiceAccount:
    return client.V1ServiceAccount(
        api_version="v1",
        kind="ServiceAccount",
        metadata=_object_meta(SERVICE_ACCOUNT_NAME, namespace, virtual_router),
    )


def role_rules() -> List[client.V1PolicyRule]:
    return [
        client.V1PolicyRule(
            api_groups=[CRD_GROUP],
            resources=["natrules", "firewallrules", "loadbalancerrules"],
            verbs=["get", "list", "watch", "create", "update", "patch", "delete"],
        ),
        client.V1PolicyRule(
            api_groups=[NETWORK_GROUP_NAME],
            resources=["vpns"],
            verbs=["get", "list", "watch"],
        ),
    ]


def new_role(namespace: str, virtual_router: VirtualRouter) -> client.V1Role:
    return client.V1Role(
        api_version="rbac.authorization.k8s.io/v1",
        kind="Role",
        metadata=_object_meta(ROLE_NAME, namespace, virtual_router),
        rules=role_rules(),
    )


def new_role_binding(namespace: str, virtual_router: VirtualRouter) -> client.V1RoleBinding:
    return client.V1RoleBinding(
        api_version="rbac.authorization.k8s.io/v1",
        kind="RoleBinding",
        metadata=_object_meta(ROLE_BINDING_NAME, namespace, virtual_router),
        role_ref=client.V1RoleRef(
            api_group="rbac.authorization.k8s.io",
            kind="Role",
            name=ROLE_NAME,
        ),
        subjects=[
            client.RbacV1Subject(
                kind="ServiceAccount",
                name=SERVICE_ACCOUNT_NAME,
                namespace=namespace,
            )
        ],
    )


def new_deployment(namespace: str, virtual_router: VirtualRouter) -> client.V1Deployment:
    """
    Project a VirtualRouter onto the Deployment that runs its router daemon.

    Pure: the same inputs always give an equal Deployment, so the create
    and update paths send identical specs.

    Args:
        namespace: Private namespace the Deployment lives in
        virtual_router: Parsed VirtualRouter

    Returns:
        V1Deployment with a controller owner reference to the router
    """
    labels = workload_labels()

    container = client.V1Container(
        name=virtual_router.name,
        image=virtual_router.image,
        image_pull_policy="Always",
        env=[client.V1EnvVar(name="POD_NAMESPACE", value=namespace)],
        security_context=client.V1SecurityContext(
            capabilities=client.V1Capabilities(add=list(ROUTER_CAPABILITIES)),
            privileged=True,
        ),
    )

    pod_template = client.V1PodTemplateSpec(
        metadata=client.V1ObjectMeta(
            labels=dict(labels),
            annotations={
                "customresourceName": virtual_router.name,
                "customresourceNamespace": virtual_router.namespace,
            },
            finalizers=[VIRTUALROUTER_DAEMON_FINALIZER],
        ),
        spec=client.V1PodSpec(
            # Opaque pass-through; the API client serializes the dict as-is
            affinity=copy.deepcopy(virtual_router.affinity),
            service_account_name=SERVICE_ACCOUNT_NAME,
            node_selector=dict(virtual_router.node_selector),
            containers=[container],
        ),
    )

    return client.V1Deployment(
        api_version="apps/v1",
        kind="Deployment",
        metadata=_object_meta(virtual_router.deployment_name, namespace, virtual_router),
        spec=client.V1DeploymentSpec(
            replicas=virtual_router.replicas,
            selector=client.V1LabelSelector(match_labels=dict(labels)),
            template=pod_template,
        ),
    )
