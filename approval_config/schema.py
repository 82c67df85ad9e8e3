"""
Approval configuration schema.

Human-authored, reviewable source artifacts: workflow templates and
segregation-of-duties rule seeds.  YAML files are parsed into these types
by the loader and turned into live rows by the installer.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from approval_kernel.domain.sod import RiskLevel
from approval_kernel.domain.workflow import (
    ApprovalType,
    ApproverType,
    ConditionAction,
    ConditionOperator,
    EscalationAction,
)

# ---------------------------------------------------------------------------
# Workflow templates
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConditionDef:
    field_path: str
    operator: ConditionOperator
    value: Any
    action: ConditionAction
    route_to_role: str | None = None


@dataclass(frozen=True)
class ApproverDef:
    approver_type: ApproverType
    approver_value: str


@dataclass(frozen=True)
class StepDef:
    """One step of a template.  ``step_order`` defaults to list position."""

    step_order: int
    step_name: str
    approval_type: ApprovalType = ApprovalType.ANY
    required_percentage: int | None = None
    can_skip: bool = False
    timeout_hours: int | None = None
    escalation_action: EscalationAction = EscalationAction.NOTIFY_ONLY
    escalation_role: str | None = None
    conditions: tuple[ConditionDef, ...] = ()
    approvers: tuple[ApproverDef, ...] = ()


@dataclass(frozen=True)
class WorkflowTemplateDef:
    """A named, reusable workflow shape not yet bound to a document type."""

    template_id: str
    name: str
    description: str = ""
    steps: tuple[StepDef, ...] = ()

    @property
    def is_conditional(self) -> bool:
        return any(step.conditions for step in self.steps)


# ---------------------------------------------------------------------------
# Segregation of duties
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SoDRuleDef:
    role_a: str
    role_b: str
    conflict_name: str
    risk_level: RiskLevel
    is_blocking: bool = True
    description: str | None = None
