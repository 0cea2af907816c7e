"""Parsed view of a VirtualRouter custom resource."""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


def _node_selector_map(node_selector: Any) -> Dict[str, str]:
    """
    Normalize a node selector to a key -> value mapping.

    The CRD accepts either a mapping or a list of ``{key, value}`` pairs.
    """
    if not node_selector:
        return {}
    if isinstance(node_selector, dict):
        return {str(k): str(v) for k, v in node_selector.items()}
    return {str(entry["key"]): str(entry.get("value", "")) for entry in node_selector}


@dataclass
class VirtualRouter:
    """Parsed VirtualRouter specification."""
    name: str
    namespace: str
    uid: Optional[str] = None
    resource_version: Optional[str] = None
    deployment_name: str = ""
    replicas: Optional[int] = None
    image: str = ""
    node_selector: Dict[str, str] = field(default_factory=dict)
    affinity: Optional[Dict[str, Any]] = None
    available_replicas: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_crd(cls, crd_object: Dict[str, Any]) -> "VirtualRouter":
        """Create VirtualRouter from CRD object."""
        metadata = crd_object.get("metadata", {})
        spec = crd_object.get("spec") or {}
        status = crd_object.get("status") or {}

        replicas = spec.get("replicas")
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", "default"),
            uid=metadata.get("uid"),
            resource_version=metadata.get("resourceVersion"),
            deployment_name=spec.get("deploymentName") or "",
            replicas=int(replicas) if replicas is not None else None,
            image=spec.get("image") or "",
            node_selector=_node_selector_map(spec.get("nodeSelector")),
            affinity=spec.get("affinity"),
            available_replicas=status.get("availableReplicas"),
            raw=crd_object,
        )

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @property
    def private_namespace(self) -> str:
        """Namespace holding this router's managed objects, named after the router."""
        return self.name
