"""
approval_services -- Orchestration above the approval kernel.

Composes kernel services with the pure engines: the request engine, the
escalation sweep, the SoD-gated role grants, and the default collaborator
adapters.  Build everything through ``ApprovalOrchestrator``.
"""

from approval_services.approval_engine import ApprovalEngine
from approval_services.document_status import (
    DOCUMENT_STATUS_MAP,
    DocumentStatusRouter,
    sql_table_updater,
)
from approval_services.escalation_scheduler import EscalationScheduler, SweepResult
from approval_services.notifications import LoggingNotificationDispatcher, NotificationOutbox
from approval_services.orchestrator import ApprovalOrchestrator
from approval_services.sod_authority import RoleGrantResult, RoleGrantService

__all__ = [
    "ApprovalEngine",
    "ApprovalOrchestrator",
    "DOCUMENT_STATUS_MAP",
    "DocumentStatusRouter",
    "EscalationScheduler",
    "LoggingNotificationDispatcher",
    "NotificationOutbox",
    "RoleGrantResult",
    "RoleGrantService",
    "SweepResult",
    "sql_table_updater",
]
