"""MCPServer controller.

Handles reconciliation of MCPServer resources. Responsible for:
- Running the reconcile pipeline on create, update, resume and on a timer
- Writing conditions and observedGeneration through the status subresource
- Requeueing objects whose references or child writes have not settled
"""

import asyncio
from typing import Any

import kopf

from src.config import get_settings
from src.models.crds import GROUP, PLURAL, VERSION
from src.reconciler.conditions import CONDITION_CHAIN
from src.reconciler.driver import ReconcileDriver, ReconcileOutcome
from src.utils.k8s_client import get_k8s_client
from src.utils.metrics import (
    RECONCILIATION_DURATION,
    RECONCILIATION_TOTAL,
    forget_conditions,
    record_conditions,
)


def get_driver() -> ReconcileDriver:
    """Build a driver over the shared cluster client."""
    settings = get_settings()
    return ReconcileDriver(
        get_k8s_client(),
        retry_policy=settings.retry_policy,
        adapter_image=settings.adapter_image,
    )


def _status_changed(body: dict[str, Any], outcome: ReconcileOutcome) -> bool:
    status = body.get("status") or {}
    return (
        status.get("conditions") != outcome.conditions
        or status.get("observedGeneration") != outcome.observed_generation
    )


async def _reconcile(
    *,
    body: dict[str, Any],
    name: str,
    namespace: str,
    logger: kopf.Logger,
    patch: kopf.Patch,
    trigger: str,
) -> None:
    """Run one reconcile pass and write its status."""
    logger.info(f"Reconciling MCPServer {namespace}/{name} ({trigger})")

    with RECONCILIATION_DURATION.labels(controller="mcpserver").time():
        try:
            outcome = await asyncio.to_thread(get_driver().reconcile, dict(body))
        except Exception:
            RECONCILIATION_TOTAL.labels(controller="mcpserver", result="error").inc()
            raise

    if _status_changed(body, outcome):
        patch.status["conditions"] = outcome.conditions
        patch.status["observedGeneration"] = outcome.observed_generation
    record_conditions(namespace, name, outcome.conditions)

    logger.info(
        f"MCPServer {namespace}/{name}: ready={outcome.ready}, "
        f"writes={outcome.writes}, generation={outcome.observed_generation}"
    )

    if outcome.requeue:
        RECONCILIATION_TOTAL.labels(controller="mcpserver", result="requeue").inc()
        raise kopf.TemporaryError(outcome.message, delay=get_settings().requeue_delay)
    RECONCILIATION_TOTAL.labels(controller="mcpserver", result="success").inc()


@kopf.on.create(GROUP, VERSION, PLURAL)
@kopf.on.update(GROUP, VERSION, PLURAL)  # type: ignore[arg-type]
@kopf.on.resume(GROUP, VERSION, PLURAL)  # type: ignore[arg-type]
async def reconcile_mcpserver(
    *,
    body: dict[str, Any],
    name: str,
    namespace: str,
    logger: kopf.Logger,
    patch: kopf.Patch,
    reason: str = "change",
    **_: object,
) -> None:
    """Reconcile an MCPServer resource.

    Args:
        body: The full resource body.
        name: The MCPServer name.
        namespace: The MCPServer namespace.
        logger: The kopf logger.
        patch: The kopf patch object.
        reason: The kopf cause (create, update, resume).
        **_: Additional kwargs from kopf.
    """
    await _reconcile(
        body=body, name=name, namespace=namespace, logger=logger, patch=patch, trigger=str(reason)
    )


@kopf.timer(GROUP, VERSION, PLURAL, interval=get_settings().resync_interval, idle=10)
async def resync_mcpserver(
    *,
    body: dict[str, Any],
    name: str,
    namespace: str,
    logger: kopf.Logger,
    patch: kopf.Patch,
    **_: object,
) -> None:
    """Periodically re-run the pipeline to undo drift and refresh readiness."""
    await _reconcile(
        body=body, name=name, namespace=namespace, logger=logger, patch=patch, trigger="resync"
    )


@kopf.on.delete(GROUP, VERSION, PLURAL, optional=True)  # type: ignore[arg-type]
async def delete_mcpserver(
    *,
    name: str,
    namespace: str,
    logger: kopf.Logger,
    **_: object,
) -> None:
    """Handle MCPServer deletion.

    Args:
        name: The MCPServer name.
        namespace: The MCPServer namespace.
        logger: The kopf logger.
        **_: Additional kwargs from kopf.
    """
    logger.info(f"Deleting MCPServer {namespace}/{name}")
    forget_conditions(namespace, name, CONDITION_CHAIN)
    # Owner references handle cleanup automatically
