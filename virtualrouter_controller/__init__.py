"""VirtualRouter controller: reconciles VirtualRouter objects into router Deployments."""

from .controller import VirtualRouterController
from .reconciler import ReconcileError, ResourceConflictError, VirtualRouterReconciler
from .workqueue import RateLimitingQueue

__all__ = [
    "VirtualRouterController",
    "VirtualRouterReconciler",
    "ReconcileError",
    "ResourceConflictError",
    "RateLimitingQueue",
]
