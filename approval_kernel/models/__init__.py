"""ORM models for the approval kernel."""

from approval_kernel.models.approval import (
    ApprovalActionModel,
    ApprovalRequestModel,
    PendingSideEffectModel,
)
from approval_kernel.models.audit_event import AuditAction, AuditEvent
from approval_kernel.models.sequence import SequenceCounter
from approval_kernel.models.sod import SoDRuleModel, UserProfileModel, UserRoleModel
from approval_kernel.models.workflow import (
    StepApproverModel,
    StepConditionModel,
    WorkflowModel,
    WorkflowStepModel,
)

__all__ = [
    "ApprovalActionModel",
    "ApprovalRequestModel",
    "PendingSideEffectModel",
    "AuditAction",
    "AuditEvent",
    "SequenceCounter",
    "SoDRuleModel",
    "UserProfileModel",
    "UserRoleModel",
    "StepApproverModel",
    "StepConditionModel",
    "WorkflowModel",
    "WorkflowStepModel",
]
