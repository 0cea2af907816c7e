"""Resolve managed objects back to the VirtualRouter that owns them."""

import logging
from typing import Any, Optional

from .config import CRD_KIND
from .informer import ObjectCache
from .meta import DeletedFinalStateUnknown, get_controller_of, get_meta, meta_namespace_key

logger = logging.getLogger(__name__)


def unwrap_tombstone(obj: Any) -> Any:
    """Return the last known state for a tombstone, or the object itself."""
    if isinstance(obj, DeletedFinalStateUnknown):
        logger.debug(f"Recovered deleted object {obj.key!r} from tombstone")
        return obj.obj
    return obj


def resolve_owner_key(obj: Any, virtual_routers: ObjectCache) -> Optional[str]:
    """
    Find the key of the VirtualRouter controlling ``obj``.

    The controller owner reference is matched by name in the object's own
    namespace first, then by UID across all cached VirtualRouters, since
    managed objects live in a private namespace named after their router.

    Args:
        obj: Changed object, possibly a tombstone
        virtual_routers: Cache of VirtualRouter objects

    Returns:
        ``namespace/name`` of the owning VirtualRouter, or None when the
        object has no VirtualRouter controller or the owner is gone
    """
    obj = unwrap_tombstone(obj)
    name = get_meta(obj, "name")
    logger.debug(f"Processing object: {name}")

    owner_ref = get_controller_of(obj)
    if owner_ref is None or owner_ref.kind != CRD_KIND:
        return None

    owner = virtual_routers.get(get_meta(obj, "namespace") or "", owner_ref.name)
    if owner is None or get_meta(owner, "uid") != owner_ref.uid:
        owner = virtual_routers.get_by_uid(owner_ref.uid) if owner_ref.uid else None

    if owner is None:
        logger.debug(f"Ignoring orphaned object {name!r} of virtualRouter {owner_ref.name!r}")
        return None
    return meta_namespace_key(owner)
