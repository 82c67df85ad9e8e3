"""Small builders shared by the test modules."""

from uuid import UUID, uuid4

from approval_kernel.domain.workflow import (
    ApprovalType,
    ApproverSpec,
    ApproverType,
    Condition,
    ConditionAction,
    ConditionOperator,
    EscalationAction,
    Step,
)


def role(name: str) -> ApproverSpec:
    return ApproverSpec(ApproverType.ROLE, name)


def user(user_id: UUID) -> ApproverSpec:
    return ApproverSpec(ApproverType.USER, str(user_id))


def dynamic(rule_key: str) -> ApproverSpec:
    return ApproverSpec(ApproverType.DYNAMIC, rule_key)


def cond(field_path, operator, value, action, order=0, route_to_role=None) -> Condition:
    return Condition(
        field_path=field_path,
        operator=ConditionOperator(operator),
        value=value,
        action=ConditionAction(action),
        condition_order=order,
        route_to_role=route_to_role,
    )


def make_step(
    *,
    step_order=1,
    approval_type=ApprovalType.ANY,
    required_percentage=None,
    conditions=(),
    approvers=(),
    timeout_hours=None,
    escalation_action=EscalationAction.NOTIFY_ONLY,
    escalation_role=None,
    can_skip=False,
) -> Step:
    """In-memory Step for engine tests (no database)."""
    return Step(
        step_id=uuid4(),
        step_order=step_order,
        step_name=f"Step {step_order}",
        approval_type=approval_type,
        required_percentage=required_percentage,
        can_skip=can_skip,
        timeout_hours=timeout_hours,
        escalation_action=escalation_action,
        escalation_role=escalation_role,
        conditions=tuple(conditions),
        approvers=tuple(approvers),
    )
