"""Status conditions for MCPServer.

The four known condition types form a chain:
Accepted -> ResolvedRefs -> Programmed -> Ready. A stage is only evaluated
when the one before it is True; the ones after a failed stage are reported
as Unknown for the same generation instead of keeping an older verdict.
"""

from collections import OrderedDict
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from src.models.crds import Condition
from src.reconciler.errors import REASON_PENDING

ACCEPTED = "Accepted"
RESOLVED_REFS = "ResolvedRefs"
PROGRAMMED = "Programmed"
READY = "Ready"

CONDITION_CHAIN = (ACCEPTED, RESOLVED_REFS, PROGRAMMED, READY)
MAX_CONDITIONS = 8

TRUE = "True"
FALSE = "False"
UNKNOWN = "Unknown"


def _now() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


class ConditionSet:
    """Conditions keyed by type, rendered as a bounded list.

    ``lastTransitionTime`` only moves when a condition's status changes.
    Condition types written by other controllers are kept after the known
    ones as long as the list stays within ``MAX_CONDITIONS``.
    """

    def __init__(self, existing: Iterable[dict[str, Any]] = ()) -> None:
        self._conditions: OrderedDict[str, Condition] = OrderedDict()
        for raw in existing:
            condition = Condition.model_validate(raw)
            self._conditions[condition.type] = condition

    def get(self, condition_type: str) -> Condition | None:
        return self._conditions.get(condition_type)

    def set(
        self,
        condition_type: str,
        status: str,
        reason: str,
        message: str,
        generation: int,
        now: str | None = None,
    ) -> Condition:
        """Set a condition, keeping its transition time if the status is unchanged."""
        previous = self._conditions.get(condition_type)
        if previous is not None and previous.status == status and previous.lastTransitionTime:
            transition_time = previous.lastTransitionTime
        else:
            transition_time = now or _now()
        condition = Condition(
            type=condition_type,
            status=status,
            reason=reason,
            message=message,
            observedGeneration=generation,
            lastTransitionTime=transition_time,
        )
        self._conditions[condition_type] = condition
        return condition

    def is_true(self, condition_type: str) -> bool:
        condition = self._conditions.get(condition_type)
        return condition is not None and condition.status == TRUE

    def to_list(self) -> list[dict[str, Any]]:
        known = [self._conditions[t] for t in CONDITION_CHAIN if t in self._conditions]
        foreign = [c for t, c in self._conditions.items() if t not in CONDITION_CHAIN]
        return [c.model_dump() for c in (known + foreign)[:MAX_CONDITIONS]]


def aggregate(
    existing: Iterable[dict[str, Any]],
    generation: int,
    results: list[tuple[str, str, str]],
    now: str | None = None,
) -> ConditionSet:
    """Fold the outcome of a reconcile pass into the condition chain.

    Args:
        existing: Conditions currently on the object.
        generation: The generation reconciled in this pass.
        results: ``(status, reason, message)`` for each stage that was
            evaluated, in chain order. Evaluation stops at the first stage
            that is not True; a shorter list leaves the remaining stages
            Unknown.
        now: Timestamp override (tests).

    Returns:
        The updated condition set; every known condition carries ``generation``.
    """
    conditions = ConditionSet(existing)
    blocked_by: str | None = None
    for index, condition_type in enumerate(CONDITION_CHAIN):
        if blocked_by is None and index < len(results):
            status, reason, message = results[index]
            conditions.set(condition_type, status, reason, message, generation, now)
            if status != TRUE:
                blocked_by = condition_type
            continue
        if blocked_by is None:
            message = f"Not evaluated for generation {generation}"
        else:
            message = f"Waiting for {blocked_by} to become True"
        conditions.set(condition_type, UNKNOWN, REASON_PENDING, message, generation, now)
    return conditions
