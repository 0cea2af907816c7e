import copy
import itertools
from typing import Any, Dict, List, Optional, Tuple

import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException

from virtualrouter_controller.ensurer import ResourceEnsurer
from virtualrouter_controller.informer import ObjectCache
from virtualrouter_controller.reconciler import VirtualRouterReconciler
from virtualrouter_controller.resources import new_deployment
from virtualrouter_controller.virtual_router import VirtualRouter


def make_virtual_router(
    name: str = "r1",
    namespace: str = "default",
    deployment_name: str = "d1",
    replicas: Optional[int] = 2,
    image: str = "img:v1",
    uid: Optional[str] = None,
    **spec_extra,
) -> Dict[str, Any]:
    spec = {"deploymentName": deployment_name, "image": image}
    if replicas is not None:
        spec["replicas"] = replicas
    spec.update(spec_extra)
    return {
        "apiVersion": "tmax.io/v1",
        "kind": "VirtualRouter",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "uid": uid or f"uid-{name}",
            "resourceVersion": "1",
        },
        "spec": spec,
    }


def make_deployment(
    namespace: str,
    name: str,
    replicas: int = 2,
    owner: Optional[Dict[str, Any]] = None,
    available_replicas: Optional[int] = None,
) -> client.V1Deployment:
    """A Deployment as the cache would hold it, owned by ``owner`` when given."""
    if owner is not None:
        router = VirtualRouter.from_crd(owner)
        router.replicas = replicas
        deployment = new_deployment(namespace, router)
    else:
        deployment = client.V1Deployment(
            metadata=client.V1ObjectMeta(name=name, namespace=namespace),
            spec=client.V1DeploymentSpec(
                replicas=replicas,
                selector=client.V1LabelSelector(match_labels={"app": "other"}),
                template=client.V1PodTemplateSpec(),
            ),
        )
    deployment.metadata.uid = f"uid-{namespace}-{name}"
    deployment.metadata.resource_version = "1"
    deployment.status = client.V1DeploymentStatus(available_replicas=available_replicas)
    return deployment


def _not_found(what: str) -> ApiException:
    return ApiException(status=404, reason=f"{what} not found")


class FakeCluster:
    """
    In-memory stand-in for the API groups the controller talks to.

    Writes are recorded in ``writes`` as (verb, kind, namespace, name) and
    land in the same caches the reconciler reads, as the watch would.
    """

    def __init__(self):
        self.objects: Dict[Tuple[str, str, str], Any] = {}
        self.virtual_routers = ObjectCache()
        self.deployments = ObjectCache()
        self.writes: List[Tuple[str, str, str, str]] = []
        self.events: List[client.CoreV1Event] = []
        self.errors: Dict[str, Exception] = {}
        self._versions = itertools.count(100)

    def _fail(self, method: str) -> None:
        if method in self.errors:
            raise self.errors[method]

    def _read(self, kind: str, namespace: str, name: str) -> Any:
        obj = self.objects.get((kind, namespace, name))
        if obj is None:
            raise _not_found(f"{kind} {namespace}/{name}")
        return obj

    def _create(self, kind: str, namespace: str, body: Any) -> Any:
        name = body.metadata.name
        if (kind, namespace, name) in self.objects:
            raise ApiException(status=409, reason="AlreadyExists")
        obj = copy.deepcopy(body)
        obj.metadata.uid = f"uid-{kind}-{name}"
        obj.metadata.resource_version = str(next(self._versions))
        self.objects[(kind, namespace, name)] = obj
        self.writes.append(("create", kind, namespace, name))
        return obj

    # Seeding helpers

    def add_virtual_router(self, crd_object: Dict[str, Any]) -> None:
        self.virtual_routers.add_or_update(crd_object)

    def add_object(self, kind: str, namespace: str, obj: Any) -> None:
        self.objects[(kind, namespace, obj.metadata.name)] = obj
        if kind == "Deployment":
            self.deployments.add_or_update(obj)

    def seed_supporting_objects(self, namespace: str) -> None:
        for kind, name in (
            ("Namespace", namespace),
            ("ServiceAccount", "virtualrouter-sa"),
            ("Role", "virtualrouter-role"),
            ("RoleBinding", "virtualrouter-rb"),
        ):
            key_namespace = "" if kind == "Namespace" else namespace
            self.objects[(kind, key_namespace, name)] = client.V1ObjectMeta(name=name)

    def writes_of(self, kind: str) -> List[Tuple[str, str, str, str]]:
        return [write for write in self.writes if write[1] == kind]

    # CoreV1Api

    def read_namespace(self, name):
        self._fail("read_namespace")
        return self._read("Namespace", "", name)

    def create_namespace(self, body):
        self._fail("create_namespace")
        return self._create("Namespace", "", body)

    def read_namespaced_service_account(self, name, namespace):
        self._fail("read_namespaced_service_account")
        return self._read("ServiceAccount", namespace, name)

    def create_namespaced_service_account(self, namespace, body):
        self._fail("create_namespaced_service_account")
        return self._create("ServiceAccount", namespace, body)

    def create_namespaced_event(self, namespace, body):
        self.events.append(body)
        return body

    # RbacAuthorizationV1Api

    def read_namespaced_role(self, name, namespace):
        self._fail("read_namespaced_role")
        return self._read("Role", namespace, name)

    def create_namespaced_role(self, namespace, body):
        self._fail("create_namespaced_role")
        return self._create("Role", namespace, body)

    def read_namespaced_role_binding(self, name, namespace):
        self._fail("read_namespaced_role_binding")
        return self._read("RoleBinding", namespace, name)

    def create_namespaced_role_binding(self, namespace, body):
        self._fail("create_namespaced_role_binding")
        return self._create("RoleBinding", namespace, body)

    # AppsV1Api

    def list_deployment_for_all_namespaces(self, **kwargs):
        return client.V1DeploymentList(
            items=self.deployments.get_all(),
            metadata=client.V1ListMeta(resource_version="1"),
        )

    def read_namespaced_deployment(self, name, namespace):
        self._fail("read_namespaced_deployment")
        return self._read("Deployment", namespace, name)

    def create_namespaced_deployment(self, namespace, body):
        self._fail("create_namespaced_deployment")
        deployment = self._create("Deployment", namespace, body)
        deployment.status = client.V1DeploymentStatus(available_replicas=deployment.spec.replicas)
        self.deployments.add_or_update(deployment)
        return deployment

    def replace_namespaced_deployment(self, name, namespace, body):
        self._fail("replace_namespaced_deployment")
        current = self._read("Deployment", namespace, name)
        deployment = copy.deepcopy(body)
        deployment.metadata.uid = current.metadata.uid
        deployment.metadata.resource_version = str(next(self._versions))
        deployment.status = current.status
        self.objects[("Deployment", namespace, name)] = deployment
        self.deployments.add_or_update(deployment)
        self.writes.append(("replace", "Deployment", namespace, name))
        return deployment

    # CustomObjectsApi

    def list_cluster_custom_object(self, group, version, plural, **kwargs):
        return {"items": self.virtual_routers.get_all(), "metadata": {"resourceVersion": "1"}}

    def list_namespaced_custom_object(self, group, version, namespace, plural, **kwargs):
        items = [obj for obj in self.virtual_routers.get_all() if obj["metadata"]["namespace"] == namespace]
        return {"items": items, "metadata": {"resourceVersion": "1"}}

    def _replace_virtual_router(self, verb, namespace, name, body):
        self._fail(verb)
        stored = copy.deepcopy(body)
        stored["metadata"]["resourceVersion"] = str(next(self._versions))
        self.virtual_routers.add_or_update(stored)
        self.writes.append((verb, "VirtualRouter", namespace, name))
        return stored

    def replace_namespaced_custom_object_status(self, group, version, namespace, plural, name, body):
        return self._replace_virtual_router("replace_status", namespace, name, body)

    def replace_namespaced_custom_object(self, group, version, namespace, plural, name, body):
        return self._replace_virtual_router("replace", namespace, name, body)


class RecordingRecorder:
    def __init__(self):
        self.events: List[Tuple[str, str, str, str]] = []

    def event(self, subject, event_type, reason, message):
        self.events.append((subject.key, event_type, reason, message))

    def start(self):
        pass

    def stop(self):
        pass


@pytest.fixture
def cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def recorder() -> RecordingRecorder:
    return RecordingRecorder()


@pytest.fixture
def reconciler(cluster, recorder) -> VirtualRouterReconciler:
    return VirtualRouterReconciler(
        virtual_routers=cluster.virtual_routers,
        deployments=cluster.deployments,
        recorder=recorder,
        ensurer=ResourceEnsurer(core_api=cluster, rbac_api=cluster),
        apps_api=cluster,
        custom_api=cluster,
    )
