"""
Workflow definition types (``approval_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects describing a configured approval workflow: the workflow
itself, its ordered steps, each step's conditions and approver specs.  Also
the snapshot codec used to pin an in-flight request to the exact workflow
graph that was active at submission.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports from
``db/``, ``models/``, ``services/`` or outer layers.

Invariants enforced
-------------------
* Steps are ordered by ``step_order``; conditions by ``condition_order``.
  ``Workflow.__post_init__`` and ``Step.__post_init__`` normalise ordering so
  every consumer sees the same sequence.
* A snapshot round-trip is lossless: ``workflow_from_snapshot(
  workflow_to_snapshot(w)) == w``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any
from uuid import UUID


class ApprovalType(str, Enum):
    """Consensus rule for a step."""

    ANY = "any"
    ALL = "all"
    PERCENTAGE = "percentage"


class EscalationAction(str, Enum):
    """What happens when a step's deadline passes."""

    AUTO_APPROVE = "auto_approve"
    AUTO_REJECT = "auto_reject"
    ESCALATE_TO_ROLE = "escalate_to_role"
    NOTIFY_ONLY = "notify_only"


class ConditionOperator(str, Enum):
    EQ = "eq"
    NEQ = "neq"
    LT = "lt"
    LTE = "lte"
    GT = "gt"
    GTE = "gte"
    IN = "in"


# Operators that need an ordered comparison and cannot fall back to False.
ORDERING_OPERATORS: frozenset[ConditionOperator] = frozenset({
    ConditionOperator.LT,
    ConditionOperator.LTE,
    ConditionOperator.GT,
    ConditionOperator.GTE,
})


class ConditionAction(str, Enum):
    REQUIRE = "require"
    APPROVE = "approve"
    SKIP = "skip"
    ROUTE_TO_ROLE = "route_to_role"


class ApproverType(str, Enum):
    ROLE = "role"
    USER = "user"
    DYNAMIC = "dynamic"


@dataclass(frozen=True)
class Condition:
    """A routing predicate attached to a step.

    ``route_to_role`` is only meaningful when ``action`` is ROUTE_TO_ROLE.
    """

    field_path: str
    operator: ConditionOperator
    value: Any
    action: ConditionAction
    condition_order: int = 0
    route_to_role: str | None = None
    condition_id: UUID | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "operator", ConditionOperator(self.operator))
        object.__setattr__(self, "action", ConditionAction(self.action))


@dataclass(frozen=True)
class ApproverSpec:
    """Tagged approver reference: role name, user id, or dynamic rule key."""

    approver_type: ApproverType
    approver_value: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "approver_type", ApproverType(self.approver_type))


@dataclass(frozen=True)
class Step:
    """One ordered stage of a workflow."""

    step_id: UUID
    step_order: int
    step_name: str
    approval_type: ApprovalType = ApprovalType.ANY
    required_percentage: int | None = None
    can_skip: bool = False
    timeout_hours: int | None = None
    escalation_action: EscalationAction = EscalationAction.NOTIFY_ONLY
    escalation_role: str | None = None
    conditions: tuple[Condition, ...] = ()
    approvers: tuple[ApproverSpec, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "approval_type", ApprovalType(self.approval_type))
        object.__setattr__(
            self, "escalation_action", EscalationAction(self.escalation_action),
        )
        object.__setattr__(
            self,
            "conditions",
            tuple(sorted(self.conditions, key=lambda c: c.condition_order)),
        )
        object.__setattr__(self, "approvers", tuple(self.approvers))


@dataclass(frozen=True)
class Workflow:
    """A versioned approval policy for one document type."""

    workflow_id: UUID
    entity_type: str
    name: str
    version: int
    is_active: bool
    steps: tuple[Step, ...] = ()
    description: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "steps", tuple(sorted(self.steps, key=lambda s: s.step_order)),
        )

    @property
    def first_step(self) -> Step | None:
        return self.steps[0] if self.steps else None

    def step_by_id(self, step_id: UUID) -> Step | None:
        for step in self.steps:
            if step.step_id == step_id:
                return step
        return None

    def steps_after(self, step_order: int) -> tuple[Step, ...]:
        """Steps strictly after ``step_order``, in order."""
        return tuple(s for s in self.steps if s.step_order > step_order)


# =========================================================================
# Snapshot codec
# =========================================================================


def workflow_to_snapshot(workflow: Workflow) -> dict[str, Any]:
    """Serialize a workflow into a JSON-safe dict for storage on a request."""
    return {
        "workflow_id": str(workflow.workflow_id),
        "entity_type": workflow.entity_type,
        "name": workflow.name,
        "version": workflow.version,
        "is_active": workflow.is_active,
        "description": workflow.description,
        "steps": [
            {
                "step_id": str(step.step_id),
                "step_order": step.step_order,
                "step_name": step.step_name,
                "approval_type": step.approval_type.value,
                "required_percentage": step.required_percentage,
                "can_skip": step.can_skip,
                "timeout_hours": step.timeout_hours,
                "escalation_action": step.escalation_action.value,
                "escalation_role": step.escalation_role,
                "conditions": [
                    {
                        "condition_id": (
                            str(c.condition_id) if c.condition_id else None
                        ),
                        "field_path": c.field_path,
                        "operator": c.operator.value,
                        "value": c.value,
                        "action": c.action.value,
                        "condition_order": c.condition_order,
                        "route_to_role": c.route_to_role,
                    }
                    for c in step.conditions
                ],
                "approvers": [
                    {
                        "approver_type": a.approver_type.value,
                        "approver_value": a.approver_value,
                    }
                    for a in step.approvers
                ],
            }
            for step in workflow.steps
        ],
    }


def workflow_from_snapshot(data: dict[str, Any]) -> Workflow:
    """Rebuild the pinned workflow graph from a request snapshot."""
    steps = []
    for s in data["steps"]:
        steps.append(Step(
            step_id=UUID(s["step_id"]),
            step_order=s["step_order"],
            step_name=s["step_name"],
            approval_type=ApprovalType(s["approval_type"]),
            required_percentage=s.get("required_percentage"),
            can_skip=s.get("can_skip", False),
            timeout_hours=s.get("timeout_hours"),
            escalation_action=EscalationAction(s["escalation_action"]),
            escalation_role=s.get("escalation_role"),
            conditions=tuple(
                Condition(
                    field_path=c["field_path"],
                    operator=ConditionOperator(c["operator"]),
                    value=c["value"],
                    action=ConditionAction(c["action"]),
                    condition_order=c["condition_order"],
                    route_to_role=c.get("route_to_role"),
                    condition_id=(
                        UUID(c["condition_id"]) if c.get("condition_id") else None
                    ),
                )
                for c in s.get("conditions", ())
            ),
            approvers=tuple(
                ApproverSpec(
                    approver_type=ApproverType(a["approver_type"]),
                    approver_value=a["approver_value"],
                )
                for a in s.get("approvers", ())
            ),
        ))
    return Workflow(
        workflow_id=UUID(data["workflow_id"]),
        entity_type=data["entity_type"],
        name=data["name"],
        version=data["version"],
        is_active=data.get("is_active", True),
        steps=tuple(steps),
        description=data.get("description"),
    )
