"""
Pure domain layer.

Value objects and protocols with NO dependencies on SQLAlchemy, the
database, or I/O.  All domain objects are immutable.
"""

from approval_kernel.domain.approval import (
    APPROVAL_TRANSITIONS,
    DECISION_ACTIONS,
    SYSTEM_ACTOR_ID,
    TERMINAL_APPROVAL_STATUSES,
    ActionType,
    ApprovalActionRecord,
    ApprovalRequest,
    ApprovalStatus,
    NotificationEvent,
    NotifyIntent,
    StatusSyncCommand,
)
from approval_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from approval_kernel.domain.ports import DocumentStatusSync, NotificationDispatcher, RoleStore
from approval_kernel.domain.sod import ConflictCheckResult, RiskLevel, SoDConflict, SoDRule
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

__all__ = [
    "APPROVAL_TRANSITIONS",
    "DECISION_ACTIONS",
    "SYSTEM_ACTOR_ID",
    "TERMINAL_APPROVAL_STATUSES",
    "ActionType",
    "ApprovalActionRecord",
    "ApprovalRequest",
    "ApprovalStatus",
    "NotificationEvent",
    "NotifyIntent",
    "StatusSyncCommand",
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "DocumentStatusSync",
    "NotificationDispatcher",
    "RoleStore",
    "ConflictCheckResult",
    "RiskLevel",
    "SoDConflict",
    "SoDRule",
    "ApprovalType",
    "ApproverSpec",
    "ApproverType",
    "Condition",
    "ConditionAction",
    "ConditionOperator",
    "EscalationAction",
    "Step",
    "Workflow",
]
