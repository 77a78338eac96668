"""MCPServer reconcile pipeline."""

from src.reconciler.driver import ReconcileDriver, ReconcileOutcome
from src.reconciler.normalizer import NormalizedSpec, normalize
from src.reconciler.renderer import render
from src.reconciler.resolver import ResolvedRefs, resolve_references
from src.reconciler.retry import RetryPolicy
from src.reconciler.transport import TransportPlan, select_transport

__all__ = [
    "NormalizedSpec",
    "ReconcileDriver",
    "ReconcileOutcome",
    "ResolvedRefs",
    "RetryPolicy",
    "TransportPlan",
    "normalize",
    "render",
    "resolve_references",
    "select_transport",
]
