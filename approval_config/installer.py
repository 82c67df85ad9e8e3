"""
Template and seed installation (``approval_config.installer``).

Turns parsed templates and SoD seeds into live rows through the kernel
services, so every write is audited exactly like an administrator's edit.
"""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from approval_config.schema import SoDRuleDef, WorkflowTemplateDef
from approval_kernel.domain.sod import SoDRule
from approval_kernel.domain.workflow import ApproverSpec, Condition, Workflow
from approval_kernel.logging_config import get_logger
from approval_kernel.services.sod_checker import SoDChecker
from approval_kernel.services.workflow_registry import WorkflowRegistry

logger = get_logger("config.installer")


def install_workflow(
    registry: WorkflowRegistry,
    template: WorkflowTemplateDef,
    entity_type: str,
    actor_id: UUID,
    *,
    name: str | None = None,
    activate: bool = False,
) -> Workflow:
    """Create a workflow for ``entity_type`` shaped like ``template``.

    The workflow is created inactive; ``activate=True`` activates it
    afterwards, deactivating whatever was active for the type.
    """
    workflow = registry.create_workflow(
        entity_type=entity_type,
        name=name or template.name,
        actor_id=actor_id,
        description=template.description or None,
    )
    for step in template.steps:
        registry.add_step(
            workflow.workflow_id,
            actor_id,
            step_order=step.step_order,
            step_name=step.step_name,
            approval_type=step.approval_type,
            required_percentage=step.required_percentage,
            can_skip=step.can_skip,
            timeout_hours=step.timeout_hours,
            escalation_action=step.escalation_action,
            escalation_role=step.escalation_role,
            conditions=[
                Condition(
                    field_path=c.field_path,
                    operator=c.operator,
                    value=c.value,
                    action=c.action,
                    condition_order=position,
                    route_to_role=c.route_to_role,
                )
                for position, c in enumerate(step.conditions, 1)
            ],
            approvers=[
                ApproverSpec(a.approver_type, a.approver_value) for a in step.approvers
            ],
        )
    if activate:
        registry.activate(workflow.workflow_id, actor_id)

    logger.info(
        "workflow_template_installed",
        extra={
            "template_id": template.template_id,
            "entity_type": entity_type,
            "workflow_id": str(workflow.workflow_id),
            "activated": activate,
        },
    )
    return registry.get_workflow(workflow.workflow_id)


def install_sod_rules(
    checker: SoDChecker,
    rules: Iterable[SoDRuleDef],
    actor_id: UUID,
) -> list[SoDRule]:
    """Create each rule; pairs that already exist are left as they are."""
    installed = [
        checker.add_rule(
            role_a=r.role_a,
            role_b=r.role_b,
            conflict_name=r.conflict_name,
            risk_level=r.risk_level,
            actor_id=actor_id,
            is_blocking=r.is_blocking,
            description=r.description,
        )
        for r in rules
    ]
    logger.info("sod_rules_installed", extra={"rule_count": len(installed)})
    return installed
