"""
Module: approval_kernel.models.audit_event
Responsibility: ORM persistence for the tamper-evident audit hash chain.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Audit records are append-only; no UPDATE or DELETE (ORM listeners).
    - Hash chain integrity: hash = H(entity_type | entity_id | action |
      payload_hash | prev_hash).  Validated by AuditorService.
    - seq is monotonically increasing, allocated by SequenceService.

Audit relevance:
    AuditEvent IS the audit sink.  Every request state transition, workflow
    edit, role grant and side-effect failure produces one event carrying
    actor, timestamp and before/after status.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Index, String, event
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UUIDString
from approval_kernel.db.types import UTCDateTime
from approval_kernel.exceptions import ImmutabilityViolationError


class AuditAction(str, Enum):
    """Types of auditable actions."""

    # Request lifecycle
    APPROVAL_REQUESTED = "approval_requested"
    STEP_ENTERED = "approval_step_entered"
    STEP_SKIPPED = "approval_step_skipped"
    STEP_AUTO_SATISFIED = "approval_step_auto_satisfied"
    ACTION_RECORDED = "approval_action_recorded"
    STEP_ADVANCED = "approval_step_advanced"
    ESCALATED = "approval_escalated"
    APPROVED = "approval_approved"
    REJECTED = "approval_rejected"
    CANCELLED = "approval_cancelled"
    ROUTING_HALTED = "approval_routing_halted"
    TAMPER_DETECTED = "approval_tamper_detected"

    # Workflow administration
    WORKFLOW_CREATED = "workflow_created"
    WORKFLOW_UPDATED = "workflow_updated"
    WORKFLOW_ACTIVATED = "workflow_activated"
    WORKFLOW_DEACTIVATED = "workflow_deactivated"
    WORKFLOW_DELETED = "workflow_deleted"

    # Roles and SoD
    ROLE_GRANTED = "role_granted"
    ROLE_REVOKED = "role_revoked"
    SOD_CONFLICT_BLOCKED = "sod_conflict_blocked"
    SOD_RULE_CREATED = "sod_rule_created"

    # Side effects
    SIDE_EFFECT_FAILED = "side_effect_failed"
    SIDE_EFFECT_RECONCILED = "side_effect_reconciled"


class AuditEvent(Base):
    """
    Audit event with hash chain for tamper evidence.

    Guarantees:
        - seq is globally unique and monotonically increasing.
        - prev_hash is None only for the genesis event.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    # "ApprovalRequest", "Workflow", "UserRole", ...
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    action: Mapped[str] = mapped_column(String(50), nullable=False)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEvent {self.action} on {self.entity_type}:{self.entity_id}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None


@event.listens_for(AuditEvent, "before_update")
def prevent_audit_update(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="AuditEvent",
        entity_id=str(target.id),
        reason="Audit events are append-only -- cannot modify",
    )


@event.listens_for(AuditEvent, "before_delete")
def prevent_audit_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="AuditEvent",
        entity_id=str(target.id),
        reason="Audit events are append-only -- cannot delete",
    )
