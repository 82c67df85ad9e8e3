"""
approval_engines.conditions -- Pure conditional routing for approval steps.

Responsibility:
    Evaluate a step's conditions against a document payload and decide
    whether the step is skipped, auto-satisfied, or awaits approvers (and
    which role, if a ``route_to_role`` condition redirects it).

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel domain types and exceptions.

Invariants enforced:
    - Deterministic ordering: conditions are evaluated by ``condition_order``;
      the first condition that holds decides the step.  Lower order wins.
    - ``require`` semantics: a holding ``require`` makes the step mandatory
      and stops evaluation; if the step has ``require`` conditions and none
      hold, the step is skipped.
    - Missing field paths: ``eq`` / ``neq`` / ``in`` evaluate to False.
      Ordering operators raise ConditionEvaluationError rather than guess.

Failure modes:
    - ConditionEvaluationError for ordering operators on a missing path or
      on values that cannot be ordered against each other.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from approval_engines.tracer import traced_engine
from approval_kernel.domain.workflow import (
    ORDERING_OPERATORS,
    Condition,
    ConditionAction,
    ConditionOperator,
    Step,
)
from approval_kernel.exceptions import ConditionEvaluationError


class RoutingOutcome(str, Enum):
    AWAIT = "await"
    SKIP = "skip"
    AUTO_APPROVE = "auto_approve"


@dataclass(frozen=True)
class StepRouting:
    """Decision for one step against one payload."""

    outcome: RoutingOutcome
    route_role: str | None = None
    matched_condition: Condition | None = None
    reason: str = ""


class _Missing:
    def __repr__(self) -> str:
        return "<missing>"


MISSING = _Missing()


def resolve_field(field_path: str, payload: dict[str, Any]) -> Any:
    """Resolve a dotted path against the payload; MISSING if any segment is absent.

    ``lines.0.amount`` indexes into lists by position.
    """
    current: Any = payload
    for part in field_path.split("."):
        if isinstance(current, dict):
            if part not in current:
                return MISSING
            current = current[part]
        elif isinstance(current, (list, tuple)) and part.isdigit():
            index = int(part)
            if index >= len(current):
                return MISSING
            current = current[index]
        else:
            return MISSING
    return current


def _as_decimal(value: Any) -> Decimal | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            number = Decimal(value.strip())
        except InvalidOperation:
            return None
        return number if number.is_finite() else None
    return None


def _equals(actual: Any, expected: Any) -> bool:
    a, b = _as_decimal(actual), _as_decimal(expected)
    if a is not None and b is not None:
        return a == b
    return actual == expected


def _compare(condition: Condition, actual: Any) -> bool:
    expected = condition.value
    a, b = _as_decimal(actual), _as_decimal(expected)
    if a is None or b is None:
        if isinstance(actual, str) and isinstance(expected, str):
            a, b = actual, expected
        else:
            raise ConditionEvaluationError(
                condition.field_path,
                condition.operator.value,
                f"cannot order {actual!r} against {expected!r}",
            )

    op = condition.operator
    if op == ConditionOperator.LT:
        return a < b
    if op == ConditionOperator.LTE:
        return a <= b
    if op == ConditionOperator.GT:
        return a > b
    return a >= b


def evaluate_condition(condition: Condition, payload: dict[str, Any]) -> bool:
    """True if the condition's predicate holds for ``payload``."""
    actual = resolve_field(condition.field_path, payload)
    op = condition.operator

    if actual is MISSING:
        if op in ORDERING_OPERATORS:
            raise ConditionEvaluationError(
                condition.field_path, op.value, "field path not present in document",
            )
        return False

    if op == ConditionOperator.EQ:
        return _equals(actual, condition.value)
    if op == ConditionOperator.NEQ:
        return not _equals(actual, condition.value)
    if op == ConditionOperator.IN:
        candidates = condition.value
        if not isinstance(candidates, (list, tuple, set, frozenset)):
            candidates = (candidates,)
        return any(_equals(actual, c) for c in candidates)
    return _compare(condition, actual)


@traced_engine("condition_routing", "1.0", fingerprint_fields=("step", "payload"))
def route_step(*, step: Step, payload: dict[str, Any]) -> StepRouting:
    """Decide how ``step`` is entered for ``payload``.

    Raises:
        ConditionEvaluationError: an ordering condition could not be
            evaluated before any condition decided the step.
    """
    has_require = False

    for condition in step.conditions:
        if condition.action == ConditionAction.REQUIRE:
            has_require = True

        if not evaluate_condition(condition, payload):
            continue

        if condition.action == ConditionAction.REQUIRE:
            return StepRouting(
                RoutingOutcome.AWAIT,
                matched_condition=condition,
                reason=f"required by {condition.field_path} {condition.operator.value}",
            )
        if condition.action == ConditionAction.SKIP:
            return StepRouting(
                RoutingOutcome.SKIP,
                matched_condition=condition,
                reason=f"skipped by {condition.field_path} {condition.operator.value}",
            )
        if condition.action == ConditionAction.APPROVE:
            return StepRouting(
                RoutingOutcome.AUTO_APPROVE,
                matched_condition=condition,
                reason=f"auto-approved by {condition.field_path} {condition.operator.value}",
            )
        return StepRouting(
            RoutingOutcome.AWAIT,
            route_role=condition.route_to_role,
            matched_condition=condition,
            reason=f"routed to role {condition.route_to_role}",
        )

    if has_require:
        return StepRouting(RoutingOutcome.SKIP, reason="no require condition holds")
    return StepRouting(RoutingOutcome.AWAIT, reason="no condition matched")
