"""Services for the approval kernel (write side)."""

from approval_kernel.services.approval_service import ApprovalService
from approval_kernel.services.approver_resolution import (
    ApproverResolver,
    ResolutionContext,
)
from approval_kernel.services.auditor_service import AuditorService
from approval_kernel.services.role_store import (
    RoleAssignmentService,
    SqlRoleStore,
    StaticRoleStore,
)
from approval_kernel.services.sequence_service import SequenceService
from approval_kernel.services.side_effect_service import (
    PendingSideEffect,
    ReconcileResult,
    SideEffectService,
)
from approval_kernel.services.sod_checker import SoDChecker
from approval_kernel.services.workflow_registry import WorkflowRegistry

__all__ = [
    "ApprovalService",
    "ApproverResolver",
    "AuditorService",
    "PendingSideEffect",
    "ReconcileResult",
    "ResolutionContext",
    "RoleAssignmentService",
    "SequenceService",
    "SideEffectService",
    "SoDChecker",
    "SqlRoleStore",
    "StaticRoleStore",
    "WorkflowRegistry",
]
