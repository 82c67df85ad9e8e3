"""
Approval request domain types (``approval_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for approval requests: the request lifecycle state
machine, action records, and the intents the engine emits towards its
collaborators (status sync commands, notify intents).

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  May import only
from ``domain/workflow`` and ``domain/clock``.

Invariants enforced
-------------------
* Lifecycle state machine -- ``APPROVAL_TRANSITIONS`` defines the only
  valid status transitions.  Terminal states have no outgoing edges.
* Workflow snapshot -- ``ApprovalRequest`` carries ``workflow_version`` and
  the step cursor of the graph pinned at creation.
* Tamper evidence -- ``snapshot_hash`` is a SHA-256 computed at creation,
  verified on every load.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

# Actor recorded on system-initiated actions (escalation, auto-approval).
SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000001")


# =========================================================================
# Approval Status Lifecycle
# =========================================================================


class ApprovalStatus(str, Enum):
    """Approval request lifecycle states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


APPROVAL_TRANSITIONS: dict[ApprovalStatus, frozenset[ApprovalStatus]] = {
    ApprovalStatus.PENDING: frozenset({
        ApprovalStatus.APPROVED,
        ApprovalStatus.REJECTED,
        ApprovalStatus.CANCELLED,
    }),
    ApprovalStatus.APPROVED: frozenset(),
    ApprovalStatus.REJECTED: frozenset(),
    ApprovalStatus.CANCELLED: frozenset(),
}

TERMINAL_APPROVAL_STATUSES: frozenset[ApprovalStatus] = frozenset({
    ApprovalStatus.APPROVED,
    ApprovalStatus.REJECTED,
    ApprovalStatus.CANCELLED,
})


class ActionType(str, Enum):
    """Decision types recorded against a step."""

    APPROVE = "approve"
    REJECT = "reject"
    DELEGATE = "delegate"
    COMMENT = "comment"


# Actions that may only be recorded once per (request, step, actor).
DECISION_ACTIONS: frozenset[ActionType] = frozenset({
    ActionType.APPROVE,
    ActionType.REJECT,
})


# =========================================================================
# Request and Action Records
# =========================================================================


@dataclass(frozen=True)
class ApprovalActionRecord:
    """Record of a single action on a request. Immutable."""

    action_id: UUID
    request_id: UUID
    step_id: UUID | None
    actor_id: UUID
    action: ActionType
    comment: str | None = None
    delegated_to: UUID | None = None
    acted_at: datetime | None = None
    is_system: bool = False


@dataclass(frozen=True)
class ApprovalRequest:
    """Snapshot of an approval request as stored.

    ``current_approvers`` is the resolved approver set of the current step
    after delegation substitution; it is empty when the request is terminal.
    """

    request_id: UUID
    workflow_id: UUID
    workflow_version: int
    entity_type: str
    entity_id: UUID
    entity_number: str | None
    status: ApprovalStatus
    current_step_id: UUID | None
    current_step_order: int | None
    submitted_by: UUID
    submitted_at: datetime
    completed_at: datetime | None = None
    current_approvers: tuple[UUID, ...] = ()
    step_entered_at: datetime | None = None
    step_deadline_at: datetime | None = None
    escalation_count: int = 0
    escalated_at: datetime | None = None
    step_rerouted: bool = False
    version: int = 1
    snapshot_hash: str | None = None
    document_payload: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_APPROVAL_STATUSES


# =========================================================================
# Collaborator intents
# =========================================================================


@dataclass(frozen=True)
class StatusSyncCommand:
    """Input for Document Status Sync on a terminal approved/rejected outcome."""

    entity_type: str
    entity_id: UUID
    status: ApprovalStatus
    actor_id: UUID
    comment: str | None = None


class NotificationEvent(str, Enum):
    STEP_ENTERED = "approval_step_entered"
    ESCALATED = "approval_escalated"
    APPROVED = "approval_approved"
    REJECTED = "approval_rejected"
    CANCELLED = "approval_cancelled"


@dataclass(frozen=True)
class NotifyIntent:
    """A request to notify a set of identities.  Delivery is external."""

    event_type: NotificationEvent
    recipients: frozenset[UUID]
    request_id: UUID
    entity_type: str
    entity_id: UUID
    entity_number: str | None = None
    step_id: UUID | None = None
    title: str = ""
    message: str = ""


class SideEffectKind(str, Enum):
    STATUS_SYNC = "status_sync"
    NOTIFICATION = "notification"


ENTITY_LABELS: dict[str, str] = {
    "purchase_requisition": "Purchase Requisition",
    "purchase_order": "Purchase Order",
    "supplier_registration": "Supplier Registration",
    "goods_receipt": "Goods Receipt",
}


def entity_label(entity_type: str) -> str:
    """Human label for a document type, falling back to the raw key."""
    return ENTITY_LABELS.get(entity_type, entity_type)
