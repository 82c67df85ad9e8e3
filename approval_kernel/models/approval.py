"""
Module: approval_kernel.models.approval
Responsibility: ORM persistence for approval requests, their action
    history, and side effects awaiting reconciliation.

Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - One pending request per document: partial UNIQUE index on
      (entity_type, entity_id) WHERE status = 'pending'.  Two concurrent
      submissions race at the database; the loser gets IntegrityError.
    - Optimistic step cursor: ``version`` is the mapper's version_id_col.
      Every UPDATE is keyed on (id, version); a concurrent writer that
      advanced the cursor first leaves the loser with StaleDataError.
    - Decision idempotence: partial UNIQUE index on
      (request_id, step_id, actor_id, action) for approve/reject.
    - Actions are append-only (ORM listeners).
    - Terminal requests are frozen (ORM listener).

Failure modes:
    - IntegrityError on duplicate pending request or replayed decision.
    - StaleDataError on a lost optimistic race.
    - ImmutabilityViolationError on action UPDATE/DELETE, or on any UPDATE
      of a request that was already terminal.

Audit relevance:
    The action table is the request's history; the request row carries the
    workflow snapshot it was pinned to and a tamper-evidence hash.
"""

from __future__ import annotations

from datetime import datetime
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
    event,
    inspect,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UUIDString
from approval_kernel.db.types import UTCDateTime
from approval_kernel.domain.approval import (
    TERMINAL_APPROVAL_STATUSES,
    ActionType,
    ApprovalActionRecord,
    ApprovalRequest,
    ApprovalStatus,
)
from approval_kernel.exceptions import ImmutabilityViolationError

_TERMINAL_VALUES = frozenset(s.value for s in TERMINAL_APPROVAL_STATUSES)


class ApprovalRequestModel(Base):
    """Persistent approval request.

    Contract:
        Mutated only by the approval engine.  Terminal statuses cannot be
        changed once set.

    Guarantees:
        - workflow_snapshot / workflow_version are write-once.
        - snapshot_hash is write-once.
        - No duplicate pending requests per document.
    """

    __tablename__ = "approval_requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'cancelled')",
            name="ck_approval_requests_valid_status",
        ),
        Index(
            "uq_approval_requests_one_pending",
            "entity_type", "entity_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index(
            "ix_approval_requests_entity_status",
            "entity_type", "entity_id", "status",
        ),
        # Escalation sweep
        Index("ix_approval_requests_deadline", "status", "step_deadline_at"),
        Index("ix_approval_requests_submitter", "submitted_by", "status"),
    )

    workflow_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    workflow_version: Mapped[int] = mapped_column(Integer, nullable=False)
    workflow_snapshot: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    entity_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    document_payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    current_step_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    current_step_order: Mapped[int | None] = mapped_column(Integer, nullable=True)
    current_approvers: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    submitted_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    step_entered_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    step_deadline_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    escalation_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    escalated_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    # Set once escalate_to_role has re-routed the current step.
    step_rerouted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_activity_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    snapshot_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<ApprovalRequest {self.id} {self.entity_type}/{self.entity_id} "
            f"status={self.status} step={self.current_step_order} v{self.version}>"
        )

    def to_dto(self) -> ApprovalRequest:
        """Convert ORM model to frozen domain DTO."""
        return ApprovalRequest(
            request_id=self.id,
            workflow_id=self.workflow_id,
            workflow_version=self.workflow_version,
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            entity_number=self.entity_number,
            status=ApprovalStatus(self.status),
            current_step_id=self.current_step_id,
            current_step_order=self.current_step_order,
            submitted_by=self.submitted_by,
            submitted_at=self.submitted_at,
            completed_at=self.completed_at,
            current_approvers=tuple(UUID(a) for a in self.current_approvers or ()),
            step_entered_at=self.step_entered_at,
            step_deadline_at=self.step_deadline_at,
            escalation_count=self.escalation_count,
            escalated_at=self.escalated_at,
            step_rerouted=self.step_rerouted,
            version=self.version,
            snapshot_hash=self.snapshot_hash,
            document_payload=dict(self.document_payload or {}),
        )


class ApprovalActionModel(Base):
    """Persistent approval action. Append-only."""

    __tablename__ = "approval_actions"

    __table_args__ = (
        CheckConstraint(
            "action IN ('approve', 'reject', 'delegate', 'comment')",
            name="ck_approval_actions_valid_action",
        ),
        Index(
            "uq_approval_actions_one_decision",
            "request_id", "step_id", "actor_id", "action",
            unique=True,
            postgresql_where=text("action IN ('approve', 'reject')"),
            sqlite_where=text("action IN ('approve', 'reject')"),
        ),
        UniqueConstraint(
            "request_id", "sequence",
            name="uq_approval_actions_sequence",
        ),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_requests.id"),
        nullable=False,
    )
    # Position in the request history, 1-based.
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    step_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    delegated_to: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    acted_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<ApprovalAction {self.action} by {self.actor_id} on step {self.step_id}>"

    def to_dto(self) -> ApprovalActionRecord:
        return ApprovalActionRecord(
            action_id=self.id,
            request_id=self.request_id,
            step_id=self.step_id,
            actor_id=self.actor_id,
            action=ActionType(self.action),
            comment=self.comment,
            delegated_to=self.delegated_to,
            acted_at=self.acted_at,
            is_system=self.is_system,
        )


class PendingSideEffectModel(Base):
    """A status sync or notification that exhausted its retries.

    Re-driven by SideEffectService.reconcile_pending().
    """

    __tablename__ = "approval_pending_side_effects"

    __table_args__ = (
        CheckConstraint(
            "kind IN ('status_sync', 'notification')",
            name="ck_approval_pending_side_effects_kind",
        ),
        CheckConstraint(
            "status IN ('pending', 'resolved')",
            name="ck_approval_pending_side_effects_status",
        ),
        Index("ix_approval_pending_side_effects_due", "status", "next_attempt_at"),
    )

    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    request_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    next_attempt_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def __repr__(self) -> str:
        return f"<PendingSideEffect {self.kind} request={self.request_id} {self.status}>"


# =============================================================================
# ORM-level immutability
# =============================================================================


@event.listens_for(ApprovalActionModel, "before_update")
def prevent_action_update(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="ApprovalAction",
        entity_id=str(target.id),
        reason="Approval actions are immutable -- cannot modify",
    )


@event.listens_for(ApprovalActionModel, "before_delete")
def prevent_action_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="ApprovalAction",
        entity_id=str(target.id),
        reason="Approval actions are immutable -- cannot delete",
    )


@event.listens_for(ApprovalRequestModel, "before_update")
def prevent_terminal_request_update(mapper, connection, target):
    """A request that was terminal before this flush may not change."""
    history = inspect(target).attrs.status.history
    previous = history.deleted[0] if history.deleted else target.status
    if previous in _TERMINAL_VALUES:
        raise ImmutabilityViolationError(
            entity_type="ApprovalRequest",
            entity_id=str(target.id),
            reason=f"Request is already {previous} -- cannot modify",
        )


@event.listens_for(ApprovalRequestModel, "before_delete")
def prevent_request_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="ApprovalRequest",
        entity_id=str(target.id),
        reason="Approval requests cannot be deleted",
    )
