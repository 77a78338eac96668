"""Reconcile driver.

Runs one reconcile pass for an MCPServer: normalize, resolve references,
select the transport, render, apply the children, and fold the outcome into
the condition chain. Every write is derived from what is observed at write
time, so re-running a pass (or running it over a stale cache) converges on
the same children without extra writes.
"""

import copy
import hashlib
import json
import logging
import time
from collections.abc import Callable
from typing import Any, Protocol

from kubernetes.client.exceptions import ApiException
from kubernetes.utils import parse_quantity
from pydantic import BaseModel

from src.models.crds import OwnerReference
from src.reconciler.conditions import FALSE, TRUE, aggregate
from src.reconciler.errors import (
    REASON_ACCEPTED,
    REASON_PODS_NOT_READY,
    REASON_PROGRAMMED,
    REASON_READY,
    REASON_REFERENCE_LOOKUP_FAILED,
    REASON_RESOLVED_REFS,
    ApplyFailure,
    ReferenceFailure,
    TransientClusterError,
    ValidationFailure,
)
from src.reconciler.normalizer import normalize
from src.reconciler.renderer import APPLY_ORDER, common_labels, render
from src.reconciler.resolver import resolve_references
from src.reconciler.retry import RetryPolicy
from src.reconciler.transport import ANNOTATION_PREFIX, DEFAULT_ADAPTER_IMAGE, select_transport
from src.utils.metrics import CHILD_RESOURCE_WRITES

logger = logging.getLogger(__name__)

SPEC_HASH_ANNOTATION = f"{ANNOTATION_PREFIX}/spec-hash"


class ClusterAPI(Protocol):
    """The cluster operations the driver needs (see ``K8sClient``)."""

    def get_resource(self, kind: str, name: str, namespace: str) -> dict[str, Any] | None: ...

    def create_resource(
        self, kind: str, namespace: str, body: dict[str, Any]
    ) -> dict[str, Any]: ...

    def replace_resource(
        self, kind: str, name: str, namespace: str, body: dict[str, Any]
    ) -> dict[str, Any]: ...

    def delete_resource(self, kind: str, name: str, namespace: str) -> bool: ...

    def list_resources(
        self, kind: str, namespace: str, label_selector: dict[str, Any]
    ) -> list[dict[str, Any]]: ...


class ReconcileOutcome(BaseModel):
    """Result of one reconcile pass."""

    conditions: list[dict[str, Any]]
    observed_generation: int
    writes: int = 0
    ready: bool = False
    requeue: bool = False
    message: str = ""

    @property
    def status(self) -> dict[str, Any]:
        """The status subresource content for this outcome."""
        return {
            "conditions": self.conditions,
            "observedGeneration": self.observed_generation,
        }


# Fields holding resource quantities, which the API server stores in
# canonical form ("0.5" comes back as "500m").
QUANTITY_FIELDS = frozenset({"limits", "requests", "sizeLimit"})


def same_quantity(desired: Any, observed: Any) -> bool:
    try:
        return bool(parse_quantity(desired) == parse_quantity(observed))
    except (ArithmeticError, TypeError, ValueError):
        return False


def is_subset(desired: Any, observed: Any, quantities: bool = False) -> bool:
    """Check that every field set in ``desired`` has the same value in ``observed``.

    Fields only present in ``observed`` (server defaults, status, ...) are
    ignored. An empty list or dict in ``desired`` matches an absent field.
    Values under ``QUANTITY_FIELDS`` are compared as parsed quantities.
    """
    if isinstance(desired, dict):
        if not isinstance(observed, dict):
            return not desired and observed is None
        for key, value in desired.items():
            if key not in observed:
                if value in ({}, [], None):
                    continue
                return False
            if not is_subset(value, observed[key], quantities or key in QUANTITY_FIELDS):
                return False
        return True
    if isinstance(desired, list):
        if not isinstance(observed, list):
            return not desired and observed is None
        if len(desired) != len(observed):
            return False
        return all(
            is_subset(d, o, quantities) for d, o in zip(desired, observed, strict=True)
        )
    if desired == observed:
        return True
    return quantities and same_quantity(desired, observed)


def spec_hash(manifest: dict[str, Any]) -> str:
    """Stable digest of a rendered manifest."""
    payload = json.dumps(manifest, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode()).hexdigest()[:20]


def with_spec_hash(manifest: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``manifest`` annotated with its own digest.

    The digest catches fields removed from the desired state, which a subset
    comparison alone cannot see.
    """
    annotated = copy.deepcopy(manifest)
    metadata = annotated["metadata"]
    metadata["annotations"] = {
        **metadata.get("annotations", {}),
        SPEC_HASH_ANNOTATION: spec_hash(manifest),
    }
    return annotated


def controller_uid(obj: dict[str, Any]) -> str | None:
    for ref in obj.get("metadata", {}).get("ownerReferences") or []:
        if ref.get("controller"):
            return ref.get("uid")
    return None


def needs_update(desired: dict[str, Any], observed: dict[str, Any]) -> bool:
    return not is_subset(
        {k: v for k, v in desired.items() if k not in ("apiVersion", "kind")}, observed
    )


def build_update(desired: dict[str, Any], observed: dict[str, Any]) -> dict[str, Any]:
    """Prepare a replace body from the desired manifest and the observed object.

    Carries the observed resourceVersion for optimistic concurrency, keeps
    annotations owned by other writers, and keeps a Service's allocated
    cluster IPs.
    """
    body = copy.deepcopy(desired)
    observed_meta = observed.get("metadata", {})
    metadata = body["metadata"]
    metadata["resourceVersion"] = observed_meta.get("resourceVersion")

    foreign = {
        key: value
        for key, value in (observed_meta.get("annotations") or {}).items()
        if not key.startswith(f"{ANNOTATION_PREFIX}/")
    }
    if foreign:
        metadata["annotations"] = {**foreign, **metadata.get("annotations", {})}

    if body["kind"] == "Service":
        observed_spec = observed.get("spec", {})
        for field in ("clusterIP", "clusterIPs"):
            if observed_spec.get(field):
                body["spec"][field] = observed_spec[field]
    return body


def deployment_ready(deployment: dict[str, Any] | None, replicas: int) -> tuple[bool, str]:
    """Check whether a Deployment has its desired replicas available.

    Returns:
        ``(ready, message)``.
    """
    if deployment is None:
        return False, "Deployment not found"
    status = deployment.get("status") or {}
    generation = deployment.get("metadata", {}).get("generation")
    observed_generation = status.get("observedGeneration")
    if generation is not None and (observed_generation or 0) < generation:
        return False, "Deployment rollout has not been observed yet"
    available = status.get("availableReplicas") or 0
    updated = status.get("updatedReplicas") or 0
    if replicas > 0 and (available < replicas or updated < replicas):
        return False, f"{available}/{replicas} replicas available"
    return True, f"{available}/{replicas} replicas available"


class ReconcileDriver:
    """Runs reconcile passes against a cluster.

    Holds no per-object state, one driver serves every MCPServer.
    """

    def __init__(
        self,
        cluster: ClusterAPI,
        retry_policy: RetryPolicy | None = None,
        adapter_image: str = DEFAULT_ADAPTER_IMAGE,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._cluster = cluster
        self._retry = retry_policy or RetryPolicy()
        self._adapter_image = adapter_image
        self._sleep = sleep

    def reconcile(self, body: dict[str, Any], now: str | None = None) -> ReconcileOutcome:
        """Run one reconcile pass for an MCPServer.

        Args:
            body: The full MCPServer object as last observed.
            now: Timestamp override for condition transitions (tests).

        Returns:
            The outcome, including the status to write back.
        """
        metadata = body.get("metadata", {})
        name = metadata["name"]
        namespace = metadata["namespace"]
        generation = metadata.get("generation") or 0
        existing = (body.get("status") or {}).get("conditions") or []

        results: list[tuple[str, str, str]] = []
        writes = 0

        def finish(ready: bool = False, requeue: bool = False) -> ReconcileOutcome:
            conditions = aggregate(existing, generation, results, now=now)
            return ReconcileOutcome(
                conditions=conditions.to_list(),
                observed_generation=generation,
                writes=writes,
                ready=ready,
                requeue=requeue,
                message=results[-1][2] if results else "",
            )

        try:
            spec = normalize(body.get("spec") or {})
        except ValidationFailure as e:
            logger.info("MCPServer %s/%s rejected: %s", namespace, name, e.message)
            results.append((FALSE, e.reason, e.message))
            return finish()
        results.append((TRUE, REASON_ACCEPTED, "MCPServer configuration is valid"))

        try:
            refs = self._retry.call(
                lambda: resolve_references(spec, namespace, self._cluster),
                description=f"resolving references of {namespace}/{name}",
                sleep=self._sleep,
            )
            plan = select_transport(spec, refs, self._adapter_image)
        except ReferenceFailure as e:
            logger.info("MCPServer %s/%s has unresolved references: %s", namespace, name, e.message)
            results.append((FALSE, e.reason, e.message))
            return finish(requeue=True)
        except (TransientClusterError, ApiException, TimeoutError, ConnectionError) as e:
            results.append(
                (FALSE, REASON_REFERENCE_LOOKUP_FAILED, f"Could not read references: {e}")
            )
            return finish(requeue=True)
        results.append((TRUE, REASON_RESOLVED_REFS, "All references resolved"))

        owner = OwnerReference.for_mcpserver(body)
        desired = render(name, namespace, spec, refs, plan, owner)
        current: dict[str, dict[str, Any]] = {}
        try:
            for manifest in desired:
                written, obj = self._apply(namespace, manifest, owner)
                writes += written
                current[manifest["kind"]] = obj
            writes += self._prune(name, namespace, owner, desired)
        except ApplyFailure as e:
            logger.warning("MCPServer %s/%s not programmed: %s", namespace, name, e.message)
            results.append((FALSE, e.reason, e.message))
            return finish(requeue=True)
        results.append(
            (TRUE, REASON_PROGRAMMED, f"{len(desired)} child resources applied")
        )

        ready, message = deployment_ready(current.get("Deployment"), spec.replicas)
        if ready:
            results.append((TRUE, REASON_READY, message))
        else:
            results.append((FALSE, REASON_PODS_NOT_READY, message))
        return finish(ready=ready)

    def _apply(
        self, namespace: str, manifest: dict[str, Any], owner: OwnerReference
    ) -> tuple[int, dict[str, Any]]:
        """Create or update one child so it matches ``manifest``.

        Returns:
            ``(writes, current object)``.

        Raises:
            ApplyFailure: If the write keeps failing or is rejected.
        """
        kind = manifest["kind"]
        name = manifest["metadata"]["name"]
        desired = with_spec_hash(manifest)

        def attempt() -> tuple[str | None, dict[str, Any]]:
            observed = self._cluster.get_resource(kind, name, namespace)
            if observed is None:
                return "create", self._cluster.create_resource(kind, namespace, desired)
            uid = controller_uid(observed)
            if uid is not None and uid != owner.uid:
                raise ApplyFailure(
                    kind, f"{kind} {namespace}/{name} exists and is controlled by another owner"
                )
            if not needs_update(desired, observed):
                return None, observed
            body = build_update(desired, observed)
            return "update", self._cluster.replace_resource(kind, name, namespace, body)

        try:
            action, obj = self._retry.call(
                attempt, description=f"applying {kind} {namespace}/{name}", sleep=self._sleep
            )
        except ApplyFailure:
            raise
        except ApiException as e:
            raise ApplyFailure(
                kind, f"Failed to apply {kind} {namespace}/{name}: {e.status} {e.reason}"
            ) from e
        except (TransientClusterError, TimeoutError, ConnectionError) as e:
            raise ApplyFailure(kind, f"Failed to apply {kind} {namespace}/{name}: {e}") from e

        if action is None:
            return 0, obj
        logger.info("%s %s %s/%s", action.capitalize() + "d", kind, namespace, name)
        CHILD_RESOURCE_WRITES.labels(kind=kind, action=action).inc()
        return 1, obj

    def _prune(
        self,
        name: str,
        namespace: str,
        owner: OwnerReference,
        desired: list[dict[str, Any]],
    ) -> int:
        """Delete children this MCPServer controls but no longer wants.

        Only objects whose controller owner reference is this MCPServer are
        touched.
        """
        wanted = {(m["kind"], m["metadata"]["name"]) for m in desired}
        selector = {"matchLabels": common_labels(name)}
        deleted = 0
        for kind in APPLY_ORDER:
            try:
                observed = self._retry.call(
                    lambda kind=kind: self._cluster.list_resources(kind, namespace, selector),
                    description=f"listing {kind} children of {namespace}/{name}",
                    sleep=self._sleep,
                )
                for obj in observed:
                    child = obj["metadata"]["name"]
                    if (kind, child) in wanted or controller_uid(obj) != owner.uid:
                        continue
                    removed = self._retry.call(
                        lambda kind=kind, child=child: self._cluster.delete_resource(
                            kind, child, namespace
                        ),
                        description=f"deleting {kind} {namespace}/{child}",
                        sleep=self._sleep,
                    )
                    if removed:
                        logger.info("Deleted %s %s/%s", kind, namespace, child)
                        CHILD_RESOURCE_WRITES.labels(kind=kind, action="delete").inc()
                        deleted += 1
            except (ApiException, TransientClusterError, TimeoutError, ConnectionError) as e:
                raise ApplyFailure(
                    kind, f"Failed to clean up {kind} children of {namespace}/{name}: {e}"
                ) from e
        return deleted
