"""Helpers for reading object metadata and building object keys.

Objects arrive in two shapes: typed models from the core API groups
(``V1Deployment`` and friends, with snake_case attributes) and plain dicts
from ``CustomObjectsApi`` (camelCase keys). Everything here accepts both.
"""

from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from kubernetes import client

_DICT_FIELDS = {
    "name": "name",
    "namespace": "namespace",
    "uid": "uid",
    "resource_version": "resourceVersion",
    "owner_references": "ownerReferences",
}


@dataclass(frozen=True)
class DeletedFinalStateUnknown:
    """
    Placeholder delivered to delete handlers when an object disappeared
    from a relist without its delete event being observed. ``obj`` is the
    last state the cache knew about.
    """
    key: str
    obj: Any


def get_meta(obj: Any, field: str) -> Any:
    """Read a metadata field from a typed model or a dict object."""
    if isinstance(obj, dict):
        return (obj.get("metadata") or {}).get(_DICT_FIELDS[field])
    metadata = getattr(obj, "metadata", None)
    if metadata is None:
        return None
    return getattr(metadata, field, None)


def meta_namespace_key(obj: Any) -> str:
    """
    Build the ``namespace/name`` key for an object.

    Cluster-scoped objects get just ``name``. Tombstones yield the key
    they were recorded under.

    Raises:
        ValueError: if the object has no name
    """
    if isinstance(obj, DeletedFinalStateUnknown):
        return obj.key

    name = get_meta(obj, "name")
    if not name:
        raise ValueError(f"object has no name: {obj!r}")
    namespace = get_meta(obj, "namespace")
    if namespace:
        return f"{namespace}/{name}"
    return name


def split_meta_namespace_key(key: str) -> Tuple[str, str]:
    """
    Split a ``namespace/name`` key.

    Returns:
        (namespace, name); namespace is "" for cluster-scoped keys

    Raises:
        ValueError: if the key has more than one separator or an empty name
    """
    parts = key.split("/")
    if len(parts) == 1 and parts[0]:
        return "", parts[0]
    if len(parts) == 2 and parts[1]:
        return parts[0], parts[1]
    raise ValueError(f"unexpected key format: {key!r}")


def _to_owner_reference(ref: Any) -> client.V1OwnerReference:
    if isinstance(ref, client.V1OwnerReference):
        return ref
    return client.V1OwnerReference(
        api_version=ref.get("apiVersion"),
        kind=ref.get("kind"),
        name=ref.get("name"),
        uid=ref.get("uid"),
        controller=ref.get("controller"),
        block_owner_deletion=ref.get("blockOwnerDeletion"),
    )


def owner_references(obj: Any) -> List[client.V1OwnerReference]:
    return [_to_owner_reference(ref) for ref in get_meta(obj, "owner_references") or []]


def get_controller_of(obj: Any) -> Optional[client.V1OwnerReference]:
    """Return the owner reference marked as controller, if any."""
    for ref in owner_references(obj):
        if ref.controller:
            return ref
    return None


def is_controlled_by(obj: Any, owner_uid: Optional[str]) -> bool:
    ref = get_controller_of(obj)
    return ref is not None and owner_uid is not None and ref.uid == owner_uid
