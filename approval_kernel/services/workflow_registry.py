"""
approval_kernel.services.workflow_registry -- Workflow configuration store.

Responsibility:
    Stores workflow definitions (steps, conditions, approver specs), resolves
    the active workflow for a document type, and applies administrative
    edits.  Every structural edit bumps the workflow ``version``.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - One active workflow per entity_type.  Activation deactivates the prior
      active workflow and activates the new one inside one savepoint; the
      partial unique index turns a concurrent activation into
      WorkflowActivationConflictError instead of two active workflows.
    - step_order is unique within a workflow (service check + DB constraint).
    - A step cannot be removed while a pending request sits on it.
    - Step / condition / approver definitions are validated before storage.

Failure modes:
    - NoActiveWorkflowError from resolve_workflow().
    - WorkflowNotFoundError for unknown workflow or step ids.
    - StepOrderCollisionError, InvalidWorkflowDefinitionError, StepInUseError.
    - WorkflowActivationConflictError on a lost activation race.

Audit relevance:
    WORKFLOW_CREATED / UPDATED / ACTIVATED / DEACTIVATED / DELETED events
    carry the version before and after each edit.
"""

from __future__ import annotations

from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.workflow import (
    ApprovalType,
    ApproverSpec,
    ApproverType,
    Condition,
    ConditionAction,
    ConditionOperator,
    EscalationAction,
    Step,
    Workflow,
)
from approval_kernel.exceptions import (
    InvalidWorkflowDefinitionError,
    NoActiveWorkflowError,
    StepInUseError,
    StepOrderCollisionError,
    WorkflowActivationConflictError,
    WorkflowNotFoundError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.approval import ApprovalRequestModel
from approval_kernel.models.audit_event import AuditAction
from approval_kernel.models.workflow import (
    StepApproverModel,
    StepConditionModel,
    WorkflowModel,
    WorkflowStepModel,
)
from approval_kernel.services.auditor_service import AuditorService

logger = get_logger("services.workflow_registry")

_STEP_FIELDS = frozenset({
    "step_order",
    "step_name",
    "approval_type",
    "required_percentage",
    "can_skip",
    "timeout_hours",
    "escalation_action",
    "escalation_role",
})


class WorkflowRegistry:
    """
    Stores and resolves approval workflows.

    Contract:
        ``resolve_workflow(entity_type)`` returns the single active workflow
        with steps ordered by ``step_order`` and conditions by
        ``condition_order``.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT affect in-flight requests; they carry their own snapshot.
    """

    def __init__(
        self,
        session: Session,
        auditor: AuditorService,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._auditor = auditor
        self._clock = clock or SystemClock()

    # =========================================================================
    # Queries
    # =========================================================================

    def resolve_workflow(self, entity_type: str) -> Workflow:
        """The active workflow for ``entity_type``.

        Raises:
            NoActiveWorkflowError: none is configured.
        """
        model = self._session.execute(
            select(WorkflowModel).where(
                WorkflowModel.entity_type == entity_type,
                WorkflowModel.is_active.is_(True),
            )
        ).scalar_one_or_none()

        if model is None:
            raise NoActiveWorkflowError(entity_type)
        return model.to_dto()

    def get_workflow(self, workflow_id: UUID) -> Workflow:
        return self._load_workflow(workflow_id).to_dto()

    def list_workflows(self, entity_type: str | None = None) -> list[Workflow]:
        stmt = select(WorkflowModel).order_by(WorkflowModel.entity_type, WorkflowModel.name)
        if entity_type is not None:
            stmt = stmt.where(WorkflowModel.entity_type == entity_type)
        return [m.to_dto() for m in self._session.execute(stmt).scalars().all()]

    # =========================================================================
    # Workflow lifecycle
    # =========================================================================

    def create_workflow(
        self,
        entity_type: str,
        name: str,
        actor_id: UUID,
        description: str | None = None,
        is_active: bool = False,
    ) -> Workflow:
        """Create a workflow (inactive unless ``is_active``)."""
        if not entity_type or not entity_type.strip():
            raise InvalidWorkflowDefinitionError("entity_type is required", "entity_type")
        if not name or not name.strip():
            raise InvalidWorkflowDefinitionError("name is required", "name")

        now = self._clock.now()
        model = WorkflowModel(
            entity_type=entity_type,
            name=name,
            description=description,
            is_active=False,
            version=1,
            created_at=now,
            updated_at=now,
            created_by_id=actor_id,
        )
        self._session.add(model)
        self._session.flush()

        self._auditor.record(
            entity_type="Workflow",
            entity_id=model.id,
            action=AuditAction.WORKFLOW_CREATED,
            actor_id=actor_id,
            payload={"entity_type": entity_type, "name": name, "version": 1},
        )
        logger.info(
            "workflow_created",
            extra={"workflow_id": str(model.id), "entity_type": entity_type, "workflow_name": name},
        )

        if is_active:
            return self.activate(model.id, actor_id)
        return model.to_dto()

    def update_workflow(
        self,
        workflow_id: UUID,
        actor_id: UUID,
        name: str | None = None,
        description: str | None = None,
    ) -> Workflow:
        model = self._load_workflow(workflow_id)
        changes: dict[str, str | None] = {}
        if name is not None:
            if not name.strip():
                raise InvalidWorkflowDefinitionError("name is required", "name")
            model.name = name
            changes["name"] = name
        if description is not None:
            model.description = description
            changes["description"] = description
        self._bump(model, actor_id, "workflow_updated", changes)
        return model.to_dto()

    def activate(self, workflow_id: UUID, actor_id: UUID) -> Workflow:
        """Make ``workflow_id`` the only active workflow for its entity_type.

        Raises:
            WorkflowActivationConflictError: a concurrent activation won.
        """
        model = self._load_workflow(workflow_id)
        if model.is_active:
            return model.to_dto()

        now = self._clock.now()
        previous_ids = list(self._session.execute(
            select(WorkflowModel.id).where(
                WorkflowModel.entity_type == model.entity_type,
                WorkflowModel.is_active.is_(True),
                WorkflowModel.id != model.id,
            )
        ).scalars().all())

        savepoint = self._session.begin_nested()
        try:
            if previous_ids:
                self._session.execute(
                    update(WorkflowModel)
                    .where(WorkflowModel.id.in_(previous_ids))
                    .values(is_active=False, updated_at=now, updated_by_id=actor_id)
                )
            model.is_active = True
            model.updated_at = now
            model.updated_by_id = actor_id
            self._session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            logger.warning(
                "workflow_activation_conflict",
                extra={"workflow_id": str(workflow_id), "entity_type": model.entity_type},
            )
            raise WorkflowActivationConflictError(model.entity_type)

        for prev_id in previous_ids:
            self._auditor.record(
                entity_type="Workflow",
                entity_id=prev_id,
                action=AuditAction.WORKFLOW_DEACTIVATED,
                actor_id=actor_id,
                payload={"superseded_by": str(model.id), "entity_type": model.entity_type},
            )
        self._auditor.record(
            entity_type="Workflow",
            entity_id=model.id,
            action=AuditAction.WORKFLOW_ACTIVATED,
            actor_id=actor_id,
            payload={
                "entity_type": model.entity_type,
                "version": model.version,
                "deactivated": [str(p) for p in previous_ids],
            },
        )
        logger.info(
            "workflow_activated",
            extra={
                "workflow_id": str(model.id),
                "entity_type": model.entity_type,
                "deactivated_count": len(previous_ids),
            },
        )
        return model.to_dto()

    def deactivate(self, workflow_id: UUID, actor_id: UUID) -> Workflow:
        model = self._load_workflow(workflow_id)
        if not model.is_active:
            return model.to_dto()
        model.is_active = False
        model.updated_at = self._clock.now()
        model.updated_by_id = actor_id
        self._session.flush()
        self._auditor.record(
            entity_type="Workflow",
            entity_id=model.id,
            action=AuditAction.WORKFLOW_DEACTIVATED,
            actor_id=actor_id,
            payload={"entity_type": model.entity_type, "version": model.version},
        )
        logger.info("workflow_deactivated", extra={"workflow_id": str(model.id)})
        return model.to_dto()

    def delete_workflow(self, workflow_id: UUID, actor_id: UUID) -> None:
        """Delete an inactive workflow and its steps."""
        model = self._load_workflow(workflow_id)
        if model.is_active:
            raise InvalidWorkflowDefinitionError(
                "an active workflow cannot be deleted; deactivate it first",
            )
        self._session.delete(model)
        self._session.flush()
        self._auditor.record(
            entity_type="Workflow",
            entity_id=workflow_id,
            action=AuditAction.WORKFLOW_DELETED,
            actor_id=actor_id,
            payload={"entity_type": model.entity_type, "name": model.name},
        )

    # =========================================================================
    # Steps
    # =========================================================================

    def add_step(
        self,
        workflow_id: UUID,
        actor_id: UUID,
        *,
        step_order: int,
        step_name: str,
        approval_type: ApprovalType | str = ApprovalType.ANY,
        required_percentage: int | None = None,
        can_skip: bool = False,
        timeout_hours: int | None = None,
        escalation_action: EscalationAction | str = EscalationAction.NOTIFY_ONLY,
        escalation_role: str | None = None,
        conditions: Sequence[Condition] = (),
        approvers: Sequence[ApproverSpec] = (),
    ) -> Step:
        model = self._load_workflow(workflow_id)
        fields = _validate_step_fields(
            step_order=step_order,
            step_name=step_name,
            approval_type=approval_type,
            required_percentage=required_percentage,
            can_skip=can_skip,
            timeout_hours=timeout_hours,
            escalation_action=escalation_action,
            escalation_role=escalation_role,
        )
        if any(s.step_order == step_order for s in model.steps):
            raise StepOrderCollisionError(str(workflow_id), step_order)

        step = WorkflowStepModel(**fields)
        step.conditions = [_condition_model(c, i) for i, c in enumerate(_validate_conditions(conditions))]
        step.approvers = [_approver_model(a) for a in _validate_approvers(approvers)]
        model.steps.append(step)

        try:
            self._flush_steps(model)
        except IntegrityError:
            raise StepOrderCollisionError(str(workflow_id), step_order)
        self._bump(model, actor_id, "step_added", {"step_id": str(step.id), "step_order": step_order})
        return step.to_dto()

    def update_step(self, step_id: UUID, actor_id: UUID, **changes) -> Step:
        """Update scalar step fields (order, name, consensus, escalation)."""
        unknown = set(changes) - _STEP_FIELDS
        if unknown:
            raise InvalidWorkflowDefinitionError(
                f"unknown step field(s): {', '.join(sorted(unknown))}",
            )
        step = self._load_step(step_id)
        merged = {name: getattr(step, name) for name in _STEP_FIELDS}
        merged.update(changes)
        fields = _validate_step_fields(**merged)

        workflow = step.workflow
        if fields["step_order"] != step.step_order and any(
            s.step_order == fields["step_order"] for s in workflow.steps if s.id != step.id
        ):
            raise StepOrderCollisionError(str(workflow.id), fields["step_order"])

        for name, value in fields.items():
            setattr(step, name, value)
        try:
            self._flush_steps(workflow)
        except IntegrityError:
            raise StepOrderCollisionError(str(workflow.id), fields["step_order"])
        self._bump(workflow, actor_id, "step_updated", {"step_id": str(step_id), **{
            k: (v.value if hasattr(v, "value") else v) for k, v in changes.items()
        }})
        return step.to_dto()

    def remove_step(self, step_id: UUID, actor_id: UUID) -> None:
        """Remove a step.

        Raises:
            StepInUseError: pending requests are currently at this step.
        """
        step = self._load_step(step_id)
        pending = self._session.execute(
            select(func.count()).select_from(ApprovalRequestModel).where(
                ApprovalRequestModel.current_step_id == step_id,
                ApprovalRequestModel.status == "pending",
            )
        ).scalar_one()
        if pending:
            raise StepInUseError(str(step_id), pending)

        workflow = step.workflow
        workflow.steps.remove(step)
        self._session.flush()
        self._bump(workflow, actor_id, "step_removed", {"step_id": str(step_id)})

    def set_conditions(
        self,
        step_id: UUID,
        conditions: Sequence[Condition],
        actor_id: UUID,
    ) -> Step:
        """Replace a step's conditions.  Order defaults to list position."""
        step = self._load_step(step_id)
        validated = _validate_conditions(conditions)
        step.conditions = [_condition_model(c, i) for i, c in enumerate(validated)]
        self._session.flush()
        self._bump(step.workflow, actor_id, "conditions_replaced", {
            "step_id": str(step_id), "condition_count": len(validated),
        })
        return step.to_dto()

    def set_approvers(
        self,
        step_id: UUID,
        approvers: Sequence[ApproverSpec],
        actor_id: UUID,
    ) -> Step:
        step = self._load_step(step_id)
        validated = _validate_approvers(approvers)
        step.approvers = [_approver_model(a) for a in validated]
        self._session.flush()
        self._bump(step.workflow, actor_id, "approvers_replaced", {
            "step_id": str(step_id), "approver_count": len(validated),
        })
        return step.to_dto()

    # =========================================================================
    # Internal
    # =========================================================================

    def _flush_steps(self, workflow: WorkflowModel) -> None:
        savepoint = self._session.begin_nested()
        try:
            self._session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            self._session.expire(workflow, ["steps"])
            raise

    def _bump(
        self,
        model: WorkflowModel,
        actor_id: UUID,
        change: str,
        details: dict,
    ) -> None:
        before = model.version
        model.version = before + 1
        model.updated_at = self._clock.now()
        model.updated_by_id = actor_id
        self._session.flush()
        self._auditor.record(
            entity_type="Workflow",
            entity_id=model.id,
            action=AuditAction.WORKFLOW_UPDATED,
            actor_id=actor_id,
            payload={
                "change": change,
                "version_before": before,
                "version_after": model.version,
                **details,
            },
        )
        logger.info(
            "workflow_updated",
            extra={"workflow_id": str(model.id), "change": change, "version": model.version},
        )

    def _load_workflow(self, workflow_id: UUID) -> WorkflowModel:
        model = self._session.get(WorkflowModel, workflow_id)
        if model is None:
            raise WorkflowNotFoundError(str(workflow_id))
        return model

    def _load_step(self, step_id: UUID) -> WorkflowStepModel:
        step = self._session.get(WorkflowStepModel, step_id)
        if step is None:
            raise WorkflowNotFoundError(str(step_id))
        return step


# =============================================================================
# Validation helpers
# =============================================================================


def _validate_step_fields(
    *,
    step_order: int,
    step_name: str,
    approval_type,
    required_percentage: int | None,
    can_skip: bool,
    timeout_hours: int | None,
    escalation_action,
    escalation_role: str | None,
) -> dict:
    try:
        approval_type = ApprovalType(approval_type)
    except ValueError:
        raise InvalidWorkflowDefinitionError(
            f"unknown approval_type {approval_type!r}", "approval_type",
        )
    try:
        escalation_action = EscalationAction(escalation_action)
    except ValueError:
        raise InvalidWorkflowDefinitionError(
            f"unknown escalation_action {escalation_action!r}", "escalation_action",
        )

    if not isinstance(step_order, int) or step_order < 1:
        raise InvalidWorkflowDefinitionError("step_order must be a positive integer", "step_order")
    if not step_name or not step_name.strip():
        raise InvalidWorkflowDefinitionError("step_name is required", "step_name")

    if approval_type == ApprovalType.PERCENTAGE:
        if required_percentage is None or not 1 <= required_percentage <= 100:
            raise InvalidWorkflowDefinitionError(
                "percentage steps need required_percentage between 1 and 100",
                "required_percentage",
            )
    else:
        required_percentage = None

    if timeout_hours is not None and timeout_hours <= 0:
        raise InvalidWorkflowDefinitionError("timeout_hours must be positive", "timeout_hours")
    if escalation_action == EscalationAction.ESCALATE_TO_ROLE and not escalation_role:
        raise InvalidWorkflowDefinitionError(
            "escalate_to_role needs an escalation_role", "escalation_role",
        )

    return {
        "step_order": step_order,
        "step_name": step_name,
        "approval_type": approval_type.value,
        "required_percentage": required_percentage,
        "can_skip": bool(can_skip),
        "timeout_hours": timeout_hours,
        "escalation_action": escalation_action.value,
        "escalation_role": escalation_role,
    }


def _validate_conditions(conditions: Sequence[Condition]) -> list[Condition]:
    for c in conditions:
        if not c.field_path or not c.field_path.strip():
            raise InvalidWorkflowDefinitionError("condition field_path is required", "field_path")
        if c.action == ConditionAction.ROUTE_TO_ROLE and not c.route_to_role:
            raise InvalidWorkflowDefinitionError(
                "route_to_role conditions need a route_to_role", "route_to_role",
            )
        if c.operator == ConditionOperator.IN and not isinstance(c.value, (list, tuple)):
            raise InvalidWorkflowDefinitionError("'in' conditions need a list value", "value")
    return list(conditions)


def _validate_approvers(approvers: Sequence[ApproverSpec]) -> list[ApproverSpec]:
    for a in approvers:
        if not a.approver_value:
            raise InvalidWorkflowDefinitionError("approver_value is required", "approver_value")
        if a.approver_type == ApproverType.USER:
            try:
                UUID(str(a.approver_value))
            except ValueError:
                raise InvalidWorkflowDefinitionError(
                    f"user approver {a.approver_value!r} is not a valid id", "approver_value",
                )
    return list(approvers)


def _condition_model(condition: Condition, position: int) -> StepConditionModel:
    value = list(condition.value) if isinstance(condition.value, tuple) else condition.value
    return StepConditionModel(
        field_path=condition.field_path,
        operator=condition.operator.value,
        value=value,
        action=condition.action.value,
        route_to_role=condition.route_to_role,
        condition_order=(
            condition.condition_order if condition.condition_order else position
        ),
    )


def _approver_model(approver: ApproverSpec) -> StepApproverModel:
    return StepApproverModel(
        approver_type=approver.approver_type.value,
        approver_value=str(approver.approver_value),
    )
