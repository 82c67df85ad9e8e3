"""
Typed Exception Hierarchy for the Approval Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Approval routing decides who may release money and goods.  Callers must be
able to tell a misconfigured workflow from an unauthorized actor from a lost
race without parsing message strings:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example - RIGHT way:
    try:
        engine.act(request_id, actor_id, ActionType.APPROVE, step_id=step_id)
    except StaleStepTokenError:
        request = engine.get_request(request_id)  # re-fetch, then retry
    except NotAnApproverError as e:
        api_response(code=e.code, actor=e.actor_id)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ApprovalKernelError (base)
    |
    +-- ConfigurationError              -> surfaced to administrators
    |   +-- NoActiveWorkflowError
    |   +-- WorkflowNotFoundError
    |   +-- StepOrderCollisionError
    |   +-- InvalidWorkflowDefinitionError
    |   +-- ConditionEvaluationError
    |   +-- StepInUseError
    |   +-- TemplateNotFoundError
    |
    +-- AuthorizationError              -> rejected at the action boundary
    |   +-- NotAnApproverError
    |   +-- StepNotSkippableError
    |
    +-- RequestStateError
    |   +-- ApprovalNotFoundError
    |   +-- InvalidStepContextError
    |   +-- ApprovalAlreadyResolvedError
    |   +-- InvalidApprovalTransitionError
    |   +-- InvalidActionError
    |
    +-- ConcurrencyError                -> re-fetch and retry
    |   +-- StaleStepTokenError
    |   +-- DuplicatePendingRequestError
    |   +-- WorkflowActivationConflictError
    |
    +-- UnresolvedApproverError         -> step escalates immediately
    |   +-- UnresolvedDynamicApproverError
    |
    +-- SideEffectFailure               -> asynchronous, logged and retried
    |   +-- StatusSyncError
    |   +-- NotificationDispatchError
    |
    +-- SoDError
    |   +-- BlockingSoDConflictError
    |
    +-- IntegrityViolationError
        +-- ImmutabilityViolationError
        +-- TamperDetectedError
        +-- AuditChainBrokenError

===============================================================================
DESIGN DECISIONS
===============================================================================

1. Codes are class attributes so they can be read without instantiation
   (API documentation, static analysis).

2. SideEffectFailure is the only category that never propagates out of a
   terminal transition.  The approval decision is the source of truth; a
   failed status sync is stored as a pending side effect and re-driven.

3. UnresolvedApproverError is caught by the engine itself at step entry
   and converted into the step's escalation action.
"""

from __future__ import annotations


class ApprovalKernelError(Exception):
    """
    Base exception for all approval kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "APPROVAL_KERNEL_ERROR"


# Configuration errors


class ConfigurationError(ApprovalKernelError):
    """Base exception for workflow configuration problems."""

    code: str = "CONFIGURATION_ERROR"


class NoActiveWorkflowError(ConfigurationError):
    """No active workflow is configured for a document type."""

    code: str = "NO_ACTIVE_WORKFLOW"

    def __init__(self, entity_type: str):
        self.entity_type = entity_type
        super().__init__(f"No active approval workflow for entity type '{entity_type}'")


class WorkflowNotFoundError(ConfigurationError):
    """Workflow (or one of its steps) does not exist."""

    code: str = "WORKFLOW_NOT_FOUND"

    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Approval workflow not found: {workflow_id}")


class StepOrderCollisionError(ConfigurationError):
    """Two steps of one workflow share the same step_order."""

    code: str = "STEP_ORDER_COLLISION"

    def __init__(self, workflow_id: str, step_order: int):
        self.workflow_id = workflow_id
        self.step_order = step_order
        super().__init__(
            f"Workflow {workflow_id} already has a step with order {step_order}"
        )


class InvalidWorkflowDefinitionError(ConfigurationError):
    """A workflow, step, condition or approver definition is malformed."""

    code: str = "INVALID_WORKFLOW_DEFINITION"

    def __init__(self, reason: str, field: str | None = None):
        self.reason = reason
        self.field = field
        super().__init__(f"Invalid workflow definition: {reason}")


class ConditionEvaluationError(ConfigurationError):
    """
    A condition could not be evaluated against the document payload.

    Raised for ordering operators (lt/lte/gt/gte) when the field path is
    missing or the values are not comparable.  The step stays pending.
    """

    code: str = "CONDITION_EVALUATION_FAILED"

    def __init__(self, field_path: str, operator: str, reason: str):
        self.field_path = field_path
        self.operator = operator
        self.reason = reason
        super().__init__(
            f"Cannot evaluate condition '{field_path} {operator}': {reason}"
        )


class StepInUseError(ConfigurationError):
    """A step cannot be removed while pending requests sit on it."""

    code: str = "STEP_IN_USE"

    def __init__(self, step_id: str, pending_count: int):
        self.step_id = step_id
        self.pending_count = pending_count
        super().__init__(
            f"Cannot remove step {step_id}: {pending_count} pending approval "
            "request(s) are currently at this step"
        )


class TemplateNotFoundError(ConfigurationError):
    """No shipped workflow template with this name."""

    code: str = "TEMPLATE_NOT_FOUND"

    def __init__(self, template_name: str):
        self.template_name = template_name
        super().__init__(f"Workflow template not found: {template_name}")


# Authorization errors


class AuthorizationError(ApprovalKernelError):
    """Base exception for actors acting outside their eligibility."""

    code: str = "AUTHORIZATION_ERROR"


class NotAnApproverError(AuthorizationError):
    """Actor is not in the resolved approver set of the current step."""

    code: str = "NOT_AN_APPROVER"

    def __init__(self, request_id: str, step_id: str, actor_id: str):
        self.request_id = request_id
        self.step_id = step_id
        self.actor_id = actor_id
        super().__init__(
            f"Actor {actor_id} is not an approver for step {step_id} "
            f"of request {request_id}"
        )


class StepNotSkippableError(AuthorizationError):
    """Administrative skip attempted on a step without can_skip."""

    code: str = "STEP_NOT_SKIPPABLE"

    def __init__(self, step_id: str):
        self.step_id = step_id
        super().__init__(f"Step {step_id} is not configured as skippable")


# Request state errors


class RequestStateError(ApprovalKernelError):
    """Base exception for operations invalid in the request's state."""

    code: str = "REQUEST_STATE_ERROR"


class ApprovalNotFoundError(RequestStateError):
    """Approval request with given ID was not found."""

    code: str = "APPROVAL_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Approval request not found: {request_id}")


class InvalidStepContextError(RequestStateError):
    """
    Action targets a step other than the current one, or the request is
    already terminal.
    """

    code: str = "INVALID_STEP_CONTEXT"

    def __init__(self, request_id: str, reason: str):
        self.request_id = request_id
        self.reason = reason
        super().__init__(f"Invalid step context for request {request_id}: {reason}")


class ApprovalAlreadyResolvedError(RequestStateError):
    """Request is terminal and can no longer change."""

    code: str = "APPROVAL_ALREADY_RESOLVED"

    def __init__(self, request_id: str, status: str):
        self.request_id = request_id
        self.status = status
        super().__init__(f"Approval request {request_id} is already {status}")


class InvalidApprovalTransitionError(RequestStateError):
    """Status transition not permitted by the lifecycle state machine."""

    code: str = "INVALID_APPROVAL_TRANSITION"

    def __init__(self, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid approval transition: {from_status} -> {to_status}")


class InvalidActionError(RequestStateError):
    """Action payload is inconsistent (e.g. delegate without target)."""

    code: str = "INVALID_ACTION"

    def __init__(self, action: str, reason: str):
        self.action = action
        self.reason = reason
        super().__init__(f"Invalid {action} action: {reason}")


# Concurrency-related exceptions


class ConcurrencyError(ApprovalKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class StaleStepTokenError(ConcurrencyError):
    """
    Optimistic version token no longer matches the stored request.

    The caller must re-fetch the request and may safely retry.
    """

    code: str = "STALE_STEP_TOKEN"

    def __init__(self, request_id: str, expected_version: int | None = None):
        self.request_id = request_id
        self.expected_version = expected_version
        super().__init__(
            f"Approval request {request_id} was modified by another transaction"
        )


class DuplicatePendingRequestError(ConcurrencyError):
    """A pending request already exists for this document."""

    code: str = "DUPLICATE_PENDING_REQUEST"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"A pending approval request already exists for {entity_type} {entity_id}"
        )


class WorkflowActivationConflictError(ConcurrencyError):
    """Concurrent activation of two workflows for the same entity type."""

    code: str = "WORKFLOW_ACTIVATION_CONFLICT"

    def __init__(self, entity_type: str):
        self.entity_type = entity_type
        super().__init__(
            f"Concurrent workflow activation detected for entity type '{entity_type}'"
        )


# Approver resolution


class UnresolvedApproverError(ApprovalKernelError):
    """Approver resolution produced no identity for a step."""

    code: str = "UNRESOLVED_APPROVER"

    def __init__(self, step_id: str, reason: str):
        self.step_id = step_id
        self.reason = reason
        super().__init__(f"No approver could be resolved for step {step_id}: {reason}")


class UnresolvedDynamicApproverError(UnresolvedApproverError):
    """A dynamic approver rule could not produce an identity."""

    code: str = "UNRESOLVED_DYNAMIC_APPROVER"

    def __init__(self, step_id: str, rule_key: str, reason: str):
        self.rule_key = rule_key
        super().__init__(step_id, f"dynamic rule '{rule_key}': {reason}")


# Side effects


class SideEffectFailure(ApprovalKernelError):
    """
    A collaborator call after a committed decision failed.

    Never reverses the terminal state; logged and retried out-of-band.
    """

    code: str = "SIDE_EFFECT_FAILURE"


class StatusSyncError(SideEffectFailure):
    """Document Status Sync collaborator rejected or failed the update."""

    code: str = "STATUS_SYNC_FAILED"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Status sync failed for {entity_type} {entity_id}: {reason}"
        )


class NotificationDispatchError(SideEffectFailure):
    """Notification collaborator could not accept a notify intent."""

    code: str = "NOTIFICATION_DISPATCH_FAILED"

    def __init__(self, event_type: str, reason: str):
        self.event_type = event_type
        self.reason = reason
        super().__init__(f"Notification dispatch failed for {event_type}: {reason}")


# Segregation of duties


class SoDError(ApprovalKernelError):
    """Base exception for segregation-of-duties violations."""

    code: str = "SOD_ERROR"


class BlockingSoDConflictError(SoDError):
    """Granting the role would create at least one blocking SoD conflict."""

    code: str = "SOD_BLOCKING_CONFLICT"

    def __init__(self, user_id: str, role: str, conflict_names: tuple[str, ...]):
        self.user_id = user_id
        self.role = role
        self.conflict_names = conflict_names
        super().__init__(
            f"Granting role '{role}' to {user_id} is blocked by SoD rule(s): "
            + ", ".join(conflict_names)
        )


# Integrity


class IntegrityViolationError(ApprovalKernelError):
    """Base exception for tampering or immutability violations."""

    code: str = "INTEGRITY_VIOLATION"


class ImmutabilityViolationError(IntegrityViolationError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class TamperDetectedError(IntegrityViolationError):
    """Stored request hash does not match its recomputed value."""

    code: str = "TAMPER_DETECTED"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Approval request {request_id} failed tamper verification")


class AuditChainBrokenError(IntegrityViolationError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at event {audit_event_id}: "
            f"expected {expected_hash}, got {actual_hash}"
        )
