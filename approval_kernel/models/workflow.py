"""
Module: approval_kernel.models.workflow
Responsibility: ORM persistence for workflow configuration: workflows,
    steps, step conditions and step approver specs.
Architecture position: Kernel > Models.  May import from db/ and domain/
    value objects only.

Invariants enforced:
    - At most one active workflow per entity_type: partial UNIQUE index on
      entity_type WHERE is_active.  Concurrent activations collide at the
      database, not in application code.
    - step_order is unique within a workflow: UNIQUE(workflow_id, step_order).
    - Valid enum values for approval_type / escalation_action / operator /
      action / approver_type via CHECK constraints.

Failure modes:
    - IntegrityError on a second active workflow for the same entity_type.
    - IntegrityError on a step_order collision.

Audit relevance:
    Workflow configuration is versioned: every structural edit bumps
    ``version`` and is audited via AuditorService.  In-flight requests keep
    their own snapshot, so edits never reroute a pending document.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import Base, TrackedBase, UUIDString
from approval_kernel.domain.workflow import (
    ApproverSpec,
    Condition,
    Step,
    Workflow,
)


class WorkflowModel(TrackedBase):
    """Persistent approval workflow for one document type."""

    __tablename__ = "approval_workflows"

    __table_args__ = (
        Index(
            "uq_approval_workflows_one_active",
            "entity_type",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
        Index("ix_approval_workflows_entity_type", "entity_type"),
    )

    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    steps: Mapped[list["WorkflowStepModel"]] = relationship(
        "WorkflowStepModel",
        back_populates="workflow",
        order_by="WorkflowStepModel.step_order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<Workflow {self.name} entity_type={self.entity_type} "
            f"v{self.version} active={self.is_active}>"
        )

    def to_dto(self) -> Workflow:
        return Workflow(
            workflow_id=self.id,
            entity_type=self.entity_type,
            name=self.name,
            version=self.version,
            is_active=self.is_active,
            steps=tuple(s.to_dto() for s in self.steps),
            description=self.description,
        )


class WorkflowStepModel(Base):
    """One ordered stage of a workflow."""

    __tablename__ = "approval_workflow_steps"

    __table_args__ = (
        UniqueConstraint(
            "workflow_id", "step_order",
            name="uq_approval_workflow_steps_order",
        ),
        CheckConstraint(
            "approval_type IN ('any', 'all', 'percentage')",
            name="ck_approval_workflow_steps_approval_type",
        ),
        CheckConstraint(
            "escalation_action IN ('auto_approve', 'auto_reject', "
            "'escalate_to_role', 'notify_only')",
            name="ck_approval_workflow_steps_escalation_action",
        ),
        CheckConstraint(
            "required_percentage IS NULL OR "
            "(required_percentage >= 1 AND required_percentage <= 100)",
            name="ck_approval_workflow_steps_percentage_range",
        ),
    )

    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_workflows.id", ondelete="CASCADE"),
        nullable=False,
    )
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    step_name: Mapped[str] = mapped_column(String(200), nullable=False)
    approval_type: Mapped[str] = mapped_column(String(20), nullable=False, default="any")
    required_percentage: Mapped[int | None] = mapped_column(Integer, nullable=True)
    can_skip: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    timeout_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    escalation_action: Mapped[str] = mapped_column(
        String(30), nullable=False, default="notify_only",
    )
    escalation_role: Mapped[str | None] = mapped_column(String(100), nullable=True)

    workflow: Mapped[WorkflowModel] = relationship(
        "WorkflowModel", back_populates="steps",
    )
    conditions: Mapped[list["StepConditionModel"]] = relationship(
        "StepConditionModel",
        back_populates="step",
        order_by="StepConditionModel.condition_order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    approvers: Mapped[list["StepApproverModel"]] = relationship(
        "StepApproverModel",
        back_populates="step",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<WorkflowStep {self.step_order}:{self.step_name} {self.approval_type}>"

    def to_dto(self) -> Step:
        return Step(
            step_id=self.id,
            step_order=self.step_order,
            step_name=self.step_name,
            approval_type=self.approval_type,
            required_percentage=self.required_percentage,
            can_skip=self.can_skip,
            timeout_hours=self.timeout_hours,
            escalation_action=self.escalation_action,
            escalation_role=self.escalation_role,
            conditions=tuple(c.to_dto() for c in self.conditions),
            approvers=tuple(a.to_dto() for a in self.approvers),
        )


class StepConditionModel(Base):
    """Routing predicate evaluated against the document payload."""

    __tablename__ = "approval_step_conditions"

    __table_args__ = (
        CheckConstraint(
            "operator IN ('eq', 'neq', 'lt', 'lte', 'gt', 'gte', 'in')",
            name="ck_approval_step_conditions_operator",
        ),
        CheckConstraint(
            "action IN ('require', 'approve', 'skip', 'route_to_role')",
            name="ck_approval_step_conditions_action",
        ),
        Index("ix_approval_step_conditions_step", "step_id", "condition_order"),
    )

    step_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_workflow_steps.id", ondelete="CASCADE"),
        nullable=False,
    )
    field_path: Mapped[str] = mapped_column(String(200), nullable=False)
    operator: Mapped[str] = mapped_column(String(10), nullable=False)
    value: Mapped[Any] = mapped_column(JSON, nullable=True)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    route_to_role: Mapped[str | None] = mapped_column(String(100), nullable=True)
    condition_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    step: Mapped[WorkflowStepModel] = relationship(
        "WorkflowStepModel", back_populates="conditions",
    )

    def to_dto(self) -> Condition:
        return Condition(
            field_path=self.field_path,
            operator=self.operator,
            value=self.value,
            action=self.action,
            condition_order=self.condition_order,
            route_to_role=self.route_to_role,
            condition_id=self.id,
        )


class StepApproverModel(Base):
    """Approver spec: role name, user id, or dynamic rule key."""

    __tablename__ = "approval_step_approvers"

    __table_args__ = (
        CheckConstraint(
            "approver_type IN ('role', 'user', 'dynamic')",
            name="ck_approval_step_approvers_type",
        ),
        Index("ix_approval_step_approvers_step", "step_id"),
    )

    step_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_workflow_steps.id", ondelete="CASCADE"),
        nullable=False,
    )
    approver_type: Mapped[str] = mapped_column(String(20), nullable=False)
    approver_value: Mapped[str] = mapped_column(String(200), nullable=False)

    step: Mapped[WorkflowStepModel] = relationship(
        "WorkflowStepModel", back_populates="approvers",
    )

    def to_dto(self) -> ApproverSpec:
        return ApproverSpec(
            approver_type=self.approver_type,
            approver_value=self.approver_value,
        )
