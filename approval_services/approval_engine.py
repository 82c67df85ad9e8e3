"""
approval_services.approval_engine -- Approval request engine.

Responsibility:
    Submits documents for approval and drives each request through its
    pinned workflow: condition routing on step entry, approver resolution,
    action handling (approve / reject / delegate / comment), consensus,
    escalation firing, administrative skip and cancellation, and the
    terminal side effects (Document Status Sync, notifications).

Architecture position:
    Services -- thin coordinator.  Routing, consensus and escalation rules
    are delegated to the pure engines in ``approval_engines``; persistence
    to the kernel ApprovalService; approver lookup to ApproverResolver;
    collaborator calls to SideEffectService.

Invariants enforced:
    - Step cursor only moves forward; a step is never revisited.
    - Every mutating flow first claims the request (optimistic version
      token), so two concurrent actions cannot both advance a step or both
      invoke Document Status Sync.
    - A ``skip`` step never has approvers resolved and never accepts
      actions: the cursor never lands on it.
    - Replayed approve / reject from the same actor on the same step is a
      no-op that returns the current request.
    - Cancellation is terminal and never syncs an approved/rejected status.
    - An ordering condition that cannot be evaluated while advancing halts
      the request on its current step and raises an operational alert.

Failure modes:
    - NoActiveWorkflowError, ConditionEvaluationError from submit().
    - InvalidStepContextError, NotAnApproverError, InvalidActionError,
      StaleStepTokenError from act().
    - StepNotSkippableError from skip_step().
    - SideEffectFailure never escapes: failed side effects are parked.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from approval_engines.conditions import RoutingOutcome, StepRouting, route_step
from approval_engines.consensus import evaluate_consensus
from approval_engines.escalation import (
    EscalationOutcome,
    compute_deadline,
    is_due,
    plan_escalation,
)
from approval_kernel.domain.approval import (
    DECISION_ACTIONS,
    SYSTEM_ACTOR_ID,
    ActionType,
    ApprovalRequest,
    ApprovalStatus,
    NotificationEvent,
    NotifyIntent,
    StatusSyncCommand,
    entity_label,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.ports import RoleStore
from approval_kernel.domain.workflow import Step, Workflow
from approval_kernel.exceptions import (
    ApprovalAlreadyResolvedError,
    ConditionEvaluationError,
    InvalidActionError,
    InvalidStepContextError,
    NotAnApproverError,
    StaleStepTokenError,
    StepNotSkippableError,
    UnresolvedApproverError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.audit_event import AuditAction
from approval_kernel.services.approval_service import ApprovalService
from approval_kernel.services.approver_resolution import ApproverResolver, ResolutionContext
from approval_kernel.services.auditor_service import AuditorService
from approval_kernel.services.side_effect_service import SideEffectService
from approval_kernel.services.workflow_registry import WorkflowRegistry
from approval_kernel.utils.hashing import to_json_safe

logger = get_logger("services.approval_engine")

_TERMINAL_EVENTS = {
    ApprovalStatus.APPROVED: NotificationEvent.APPROVED,
    ApprovalStatus.REJECTED: NotificationEvent.REJECTED,
    ApprovalStatus.CANCELLED: NotificationEvent.CANCELLED,
}


@dataclass(frozen=True)
class _PassedStep:
    step: Step
    routing: StepRouting


@dataclass(frozen=True)
class _EntryPlan:
    """Where the cursor lands after leaving a step, computed before any write."""

    passed: tuple[_PassedStep, ...]
    target: Step | None
    approvers: frozenset[UUID] = frozenset()
    unresolved: str | None = None


def _token(request: ApprovalRequest, expected_version: int | None) -> int:
    """The caller's token, or else the version this call read."""
    return expected_version if expected_version is not None else request.version


class ApprovalEngine:
    """
    Drives approval requests through their pinned workflows.

    Contract:
        Every public method returns the request as stored after the call.
        The caller owns the transaction: nothing here commits.

    Non-goals:
        - Does NOT own documents; terminal outcomes reach them only through
          Document Status Sync.
        - Does NOT deliver notifications; it emits notify intents.
    """

    def __init__(
        self,
        *,
        requests: ApprovalService,
        registry: WorkflowRegistry,
        resolver: ApproverResolver,
        role_store: RoleStore,
        side_effects: SideEffectService,
        auditor: AuditorService,
        clock: Clock | None = None,
        admin_role: str = "admin",
        system_actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> None:
        self._requests = requests
        self._registry = registry
        self._resolver = resolver
        self._role_store = role_store
        self._side_effects = side_effects
        self._auditor = auditor
        self._clock = clock or SystemClock()
        self._admin_role = admin_role
        self._system_actor_id = system_actor_id

    # =========================================================================
    # Submission
    # =========================================================================

    def submit(
        self,
        entity_type: str,
        entity_id: UUID,
        submitted_by: UUID,
        document_payload: dict[str, Any] | None = None,
        entity_number: str | None = None,
    ) -> ApprovalRequest:
        """Create a request for a document and route it onto its first step.

        Raises:
            NoActiveWorkflowError: no workflow governs ``entity_type``.
            ConditionEvaluationError: a first-step ordering condition could
                not be evaluated; the submission is blocked.
            DuplicatePendingRequestError: the document already has a
                pending request.
        """
        start = time.monotonic()
        with LogContext.bind(
            entity_type=entity_type, entity_id=entity_id, actor_id=submitted_by,
        ):
            workflow = self._registry.resolve_workflow(entity_type)
            payload = to_json_safe(document_payload or {})
            context = ResolutionContext(
                submitted_by=submitted_by,
                entity_type=entity_type,
                entity_id=entity_id,
                document_payload=payload,
            )
            plan = self._plan_entry(workflow, 0, context)

            request = self._requests.create_request(
                workflow=workflow,
                entity_type=entity_type,
                entity_id=entity_id,
                submitted_by=submitted_by,
                document_payload=payload,
                entity_number=entity_number,
            )
            with LogContext.bind(request_id=request.request_id):
                result = self._apply_entry(
                    request.request_id, workflow, plan, context, actor_id=submitted_by,
                )
                logger.info(
                    "approval_submitted",
                    extra={
                        "status": result.status.value,
                        "step_order": result.current_step_order,
                        "workflow_version": workflow.version,
                        "duration_ms": round((time.monotonic() - start) * 1000, 2),
                    },
                )
                return result

    # =========================================================================
    # Actions
    # =========================================================================

    def act(
        self,
        request_id: UUID,
        actor_id: UUID,
        action: ActionType | str,
        *,
        step_id: UUID,
        comment: str | None = None,
        delegated_to: UUID | None = None,
        expected_version: int | None = None,
    ) -> ApprovalRequest:
        """Apply one approver action to the request's current step.

        Raises:
            InvalidStepContextError: the request is terminal or ``step_id``
                is not its current step.
            NotAnApproverError: the actor is neither a resolved approver
                nor an administrator, or delegates without being a
                resolved approver.
            InvalidActionError: unknown action, a malformed delegation, or
                a delegation after the actor already approved the step.
            StaleStepTokenError: ``expected_version`` (or, when omitted, the
                version read at the start of the call) is stale.
        """
        try:
            action = ActionType(action)
        except ValueError:
            raise InvalidActionError(str(action), "unknown action type")

        with LogContext.bind(request_id=request_id, actor_id=actor_id):
            request = self._requests.get_request(request_id)
            if request.is_terminal:
                raise InvalidStepContextError(
                    str(request_id), f"request is already {request.status.value}",
                )
            if request.current_step_id is None or step_id != request.current_step_id:
                raise InvalidStepContextError(
                    str(request_id),
                    f"action targets step {step_id}, current step is {request.current_step_id}",
                )

            eligible = actor_id in request.current_approvers or self._is_admin(actor_id)
            if action == ActionType.COMMENT:
                eligible = eligible or actor_id == request.submitted_by
            if not eligible:
                logger.warning(
                    "approval_action_unauthorized",
                    extra={"action": action.value, "step_id": str(step_id)},
                )
                raise NotAnApproverError(str(request_id), str(step_id), str(actor_id))

            if action in DECISION_ACTIONS and self._requests.find_decision(
                request_id, step_id, actor_id, action,
            ) is not None:
                logger.info(
                    "approval_action_replayed",
                    extra={"action": action.value, "step_id": str(step_id)},
                )
                return request

            if action == ActionType.DELEGATE:
                if delegated_to is None:
                    raise InvalidActionError(action.value, "delegated_to is required")
                if delegated_to == actor_id:
                    raise InvalidActionError(action.value, "cannot delegate to oneself")
                if actor_id not in request.current_approvers:
                    raise NotAnApproverError(str(request_id), str(step_id), str(actor_id))
                if actor_id in self._requests.approving_actors(request_id, step_id):
                    raise InvalidActionError(action.value, "actor has already approved this step")

            self._requests.claim(request_id, _token(request, expected_version))
            self._requests.record_action(
                request_id,
                step_id=step_id,
                actor_id=actor_id,
                action=action,
                comment=comment,
                delegated_to=delegated_to,
            )

            if action == ActionType.REJECT:
                return self._finish(request_id, ApprovalStatus.REJECTED, actor_id, comment)
            if action == ActionType.COMMENT:
                return self._requests.get_request(request_id)

            workflow = self._requests.get_pinned_workflow(request_id)
            step = workflow.step_by_id(step_id)
            if action == ActionType.DELEGATE:
                return self._delegate(request, step, actor_id, delegated_to)
            return self._after_approval(request, workflow, step, actor_id)

    def _delegate(
        self,
        request: ApprovalRequest,
        step: Step,
        actor_id: UUID,
        delegated_to: UUID,
    ) -> ApprovalRequest:
        approvers = (frozenset(request.current_approvers) - {actor_id}) | {delegated_to}
        updated = self._requests.replace_approvers(request.request_id, approvers)
        logger.info(
            "approval_delegated",
            extra={"step_id": str(step.step_id), "delegated_to": str(delegated_to)},
        )
        self._notify(
            NotificationEvent.STEP_ENTERED,
            updated,
            {delegated_to},
            step=step,
            title="Approval Delegated",
            message=(
                f"{self._describe(updated)} has been delegated to you "
                f"at step '{step.step_name}'"
            ),
        )
        return updated

    def _after_approval(
        self,
        request: ApprovalRequest,
        workflow: Workflow,
        step: Step,
        actor_id: UUID,
    ) -> ApprovalRequest:
        consensus = evaluate_consensus(
            approval_type=step.approval_type,
            required_percentage=step.required_percentage,
            resolved_approvers=frozenset(request.current_approvers),
            approving_actors=self._requests.approving_actors(request.request_id, step.step_id),
        )
        logger.info(
            "approval_consensus_evaluated",
            extra={
                "step_id": str(step.step_id),
                "approval_type": step.approval_type.value,
                "approvals": consensus.approvals,
                "required": consensus.required,
                "satisfied": consensus.satisfied,
            },
        )
        if not consensus.satisfied:
            return self._requests.get_request(request.request_id)
        return self._advance(request.request_id, workflow, step.step_order, actor_id)

    # =========================================================================
    # Administrative operations
    # =========================================================================

    def cancel(
        self,
        request_id: UUID,
        actor_id: UUID,
        *,
        reason: str | None = None,
        expected_version: int | None = None,
    ) -> ApprovalRequest:
        """Cancel a pending request (submitter or administrator).

        Cancellation is terminal and does not invoke Document Status Sync.
        """
        with LogContext.bind(request_id=request_id, actor_id=actor_id):
            request = self._requests.get_request(request_id)
            if request.is_terminal:
                raise ApprovalAlreadyResolvedError(str(request_id), request.status.value)
            if actor_id != request.submitted_by and not self._is_admin(actor_id):
                raise NotAnApproverError(
                    str(request_id), str(request.current_step_id), str(actor_id),
                )
            self._requests.claim(request_id, _token(request, expected_version))
            return self._finish(
                request_id,
                ApprovalStatus.CANCELLED,
                actor_id,
                reason,
                also_notify=frozenset(request.current_approvers),
            )

    def skip_step(
        self,
        request_id: UUID,
        actor_id: UUID,
        *,
        step_id: UUID,
        reason: str | None = None,
        expected_version: int | None = None,
    ) -> ApprovalRequest:
        """Administratively skip the current step if it is flagged ``can_skip``."""
        with LogContext.bind(request_id=request_id, actor_id=actor_id):
            request = self._requests.get_request(request_id)
            if request.is_terminal or step_id != request.current_step_id:
                raise InvalidStepContextError(
                    str(request_id), f"step {step_id} is not the current step",
                )
            if not self._is_admin(actor_id):
                raise NotAnApproverError(str(request_id), str(step_id), str(actor_id))

            workflow = self._requests.get_pinned_workflow(request_id)
            step = workflow.step_by_id(step_id)
            if not step.can_skip:
                raise StepNotSkippableError(str(step_id))

            self._requests.claim(request_id, _token(request, expected_version))
            self._auditor.record(
                entity_type="ApprovalRequest",
                entity_id=request_id,
                action=AuditAction.STEP_SKIPPED,
                actor_id=actor_id,
                payload={
                    "step_id": str(step_id),
                    "administrative": True,
                    "reason": reason,
                },
            )
            logger.info("approval_step_skipped_by_admin", extra={"step_id": str(step_id)})
            return self._advance(request_id, workflow, step.step_order, actor_id)

    def get_request(self, request_id: UUID) -> ApprovalRequest:
        """Load a request, verifying its tamper-evidence hash."""
        return self._requests.get_request(request_id)

    # =========================================================================
    # Escalation
    # =========================================================================

    def fire_escalation(
        self,
        request_id: UUID,
        *,
        expected_version: int | None = None,
        as_of: datetime | None = None,
    ) -> EscalationOutcome | None:
        """Apply the current step's escalation action if its deadline passed.

        Returns None when the step is not due.

        Raises:
            StaleStepTokenError: the request moved since ``expected_version``
                was read (a human action won); the escalation is discarded.
        """
        as_of = as_of or self._clock.now()
        with LogContext.bind(request_id=request_id, actor_id=self._system_actor_id):
            request = self._requests.get_request(request_id)
            if request.is_terminal:
                raise StaleStepTokenError(str(request_id), expected_version)
            if not is_due(request.step_deadline_at, as_of):
                return None

            self._requests.claim(request_id, _token(request, expected_version))
            workflow = self._requests.get_pinned_workflow(request_id)
            step = workflow.step_by_id(request.current_step_id)
            plan = plan_escalation(
                step=step, already_rerouted=request.step_rerouted, as_of=as_of,
            )
            logger.info(
                "escalation_fired",
                extra={"step_id": str(step.step_id), "outcome": plan.outcome.value},
            )

            if plan.outcome == EscalationOutcome.AUTO_APPROVE:
                self._requests.record_escalation(
                    request_id,
                    actor_id=self._system_actor_id,
                    outcome=plan.outcome.value,
                    new_deadline=None,
                )
                self._auto_approve(request_id, workflow, step, plan.reason)
            elif plan.outcome == EscalationOutcome.AUTO_REJECT:
                self._requests.record_escalation(
                    request_id,
                    actor_id=self._system_actor_id,
                    outcome=plan.outcome.value,
                    new_deadline=None,
                )
                self._auto_reject(request_id, step, plan.reason)
            elif plan.outcome == EscalationOutcome.REROUTE:
                self._reroute(request_id, step, plan.escalation_role, plan.new_deadline)
            else:
                updated = self._requests.record_escalation(
                    request_id,
                    actor_id=self._system_actor_id,
                    outcome=plan.outcome.value,
                    new_deadline=plan.new_deadline,
                )
                self._notify_escalated(updated, step, frozenset(updated.current_approvers))
            return plan.outcome

    def _reroute(
        self,
        request_id: UUID,
        step: Step,
        role: str,
        new_deadline: datetime | None,
    ) -> None:
        holders = self._resolver.resolve_role(role)
        if not holders:
            logger.error(
                "escalation_role_unresolved",
                extra={"step_id": str(step.step_id), "escalation_role": role},
            )
            updated = self._requests.record_escalation(
                request_id,
                actor_id=self._system_actor_id,
                outcome=EscalationOutcome.NOTIFY.value,
                new_deadline=new_deadline,
                rerouted=True,
            )
            self._notify_escalated(updated, step, frozenset(updated.current_approvers))
            return

        updated = self._requests.record_escalation(
            request_id,
            actor_id=self._system_actor_id,
            outcome=EscalationOutcome.REROUTE.value,
            new_deadline=new_deadline,
            approvers=holders,
            rerouted=True,
        )
        self._notify_escalated(updated, step, holders)

    def _auto_approve(
        self,
        request_id: UUID,
        workflow: Workflow,
        step: Step,
        reason: str,
    ) -> ApprovalRequest:
        if self._requests.find_decision(
            request_id, step.step_id, self._system_actor_id, ActionType.APPROVE,
        ) is None:
            self._requests.record_action(
                request_id,
                step_id=step.step_id,
                actor_id=self._system_actor_id,
                action=ActionType.APPROVE,
                comment=reason,
                is_system=True,
            )
        self._auditor.record(
            entity_type="ApprovalRequest",
            entity_id=request_id,
            action=AuditAction.STEP_AUTO_SATISFIED,
            actor_id=self._system_actor_id,
            payload={"step_id": str(step.step_id), "reason": reason},
        )
        return self._advance(request_id, workflow, step.step_order, self._system_actor_id)

    def _auto_reject(self, request_id: UUID, step: Step, reason: str) -> ApprovalRequest:
        self._requests.record_action(
            request_id,
            step_id=step.step_id,
            actor_id=self._system_actor_id,
            action=ActionType.REJECT,
            comment=reason,
            is_system=True,
        )
        return self._finish(request_id, ApprovalStatus.REJECTED, self._system_actor_id, reason)

    # =========================================================================
    # Routing
    # =========================================================================

    def _plan_entry(
        self,
        workflow: Workflow,
        after_order: int,
        context: ResolutionContext,
    ) -> _EntryPlan:
        """Walk the steps after ``after_order`` until one awaits approvers.

        Raises:
            ConditionEvaluationError: from any step's conditions.
        """
        passed: list[_PassedStep] = []
        for step in workflow.steps_after(after_order):
            routing = route_step(step=step, payload=context.document_payload)
            if routing.outcome != RoutingOutcome.AWAIT:
                passed.append(_PassedStep(step, routing))
                continue
            try:
                approvers = self._resolver.resolve(step, context, route_role=routing.route_role)
            except UnresolvedApproverError as exc:
                return _EntryPlan(tuple(passed), step, unresolved=str(exc))
            return _EntryPlan(tuple(passed), step, approvers=approvers)
        return _EntryPlan(tuple(passed), None)

    def _advance(
        self,
        request_id: UUID,
        workflow: Workflow,
        after_order: int,
        actor_id: UUID,
    ) -> ApprovalRequest:
        request = self._requests.get_request(request_id)
        context = self._context(request)
        try:
            plan = self._plan_entry(workflow, after_order, context)
        except ConditionEvaluationError as exc:
            return self._requests.halt(request_id, reason=str(exc), actor_id=actor_id)
        return self._apply_entry(request_id, workflow, plan, context, actor_id=actor_id)

    def _apply_entry(
        self,
        request_id: UUID,
        workflow: Workflow,
        plan: _EntryPlan,
        context: ResolutionContext,
        *,
        actor_id: UUID,
    ) -> ApprovalRequest:
        for passed in plan.passed:
            self._record_passed(request_id, passed)

        if plan.target is None:
            return self._finish(
                request_id, ApprovalStatus.APPROVED, actor_id, "all steps satisfied",
            )

        step = plan.target
        if plan.unresolved is not None:
            return self._enter_unresolved(request_id, workflow, step, plan.unresolved, actor_id)

        deadline = compute_deadline(self._clock.now(), step.timeout_hours)
        request = self._requests.enter_step(
            request_id,
            step=step,
            approvers=plan.approvers,
            deadline=deadline,
            actor_id=actor_id,
        )
        self._notify(
            NotificationEvent.STEP_ENTERED,
            request,
            plan.approvers,
            step=step,
            title="Approval Required",
            message=f"{self._describe(request)} awaits your approval at step '{step.step_name}'",
        )
        return request

    def _record_passed(self, request_id: UUID, passed: _PassedStep) -> None:
        step, routing = passed.step, passed.routing
        if routing.outcome == RoutingOutcome.SKIP:
            self._auditor.record(
                entity_type="ApprovalRequest",
                entity_id=request_id,
                action=AuditAction.STEP_SKIPPED,
                actor_id=self._system_actor_id,
                payload={"step_id": str(step.step_id), "reason": routing.reason},
            )
            logger.info(
                "approval_step_skipped",
                extra={"step_order": step.step_order, "reason": routing.reason},
            )
            return

        self._requests.record_action(
            request_id,
            step_id=step.step_id,
            actor_id=self._system_actor_id,
            action=ActionType.APPROVE,
            comment=routing.reason,
            is_system=True,
        )
        self._auditor.record(
            entity_type="ApprovalRequest",
            entity_id=request_id,
            action=AuditAction.STEP_AUTO_SATISFIED,
            actor_id=self._system_actor_id,
            payload={"step_id": str(step.step_id), "reason": routing.reason},
        )
        logger.info(
            "approval_step_auto_satisfied",
            extra={"step_order": step.step_order, "reason": routing.reason},
        )

    def _enter_unresolved(
        self,
        request_id: UUID,
        workflow: Workflow,
        step: Step,
        reason: str,
        actor_id: UUID,
    ) -> ApprovalRequest:
        """Enter a step nobody can be resolved for and escalate at once."""
        logger.error(
            "approver_unresolved",
            extra={"step_id": str(step.step_id), "step_order": step.step_order, "reason": reason},
        )
        now = self._clock.now()
        self._requests.enter_step(
            request_id,
            step=step,
            approvers=frozenset(),
            deadline=None,
            actor_id=actor_id,
        )
        plan = plan_escalation(step=step, already_rerouted=False, as_of=now)

        if plan.outcome == EscalationOutcome.AUTO_APPROVE:
            self._requests.record_escalation(
                request_id,
                actor_id=self._system_actor_id,
                outcome=plan.outcome.value,
                new_deadline=None,
            )
            return self._auto_approve(request_id, workflow, step, f"unresolved approvers: {reason}")
        if plan.outcome == EscalationOutcome.AUTO_REJECT:
            self._requests.record_escalation(
                request_id,
                actor_id=self._system_actor_id,
                outcome=plan.outcome.value,
                new_deadline=None,
            )
            return self._auto_reject(request_id, step, f"unresolved approvers: {reason}")
        if plan.outcome == EscalationOutcome.REROUTE:
            self._reroute(request_id, step, plan.escalation_role, plan.new_deadline)
            return self._requests.get_request(request_id)

        updated = self._requests.record_escalation(
            request_id,
            actor_id=self._system_actor_id,
            outcome=plan.outcome.value,
            new_deadline=plan.new_deadline,
        )
        self._notify_escalated(updated, step, frozenset())
        return updated

    # =========================================================================
    # Terminal outcomes and notifications
    # =========================================================================

    def _finish(
        self,
        request_id: UUID,
        status: ApprovalStatus,
        actor_id: UUID,
        comment: str | None,
        also_notify: frozenset[UUID] = frozenset(),
    ) -> ApprovalRequest:
        request = self._requests.resolve(request_id, status, actor_id=actor_id, comment=comment)

        if status in (ApprovalStatus.APPROVED, ApprovalStatus.REJECTED):
            self._side_effects.sync_status(
                request_id,
                StatusSyncCommand(
                    entity_type=request.entity_type,
                    entity_id=request.entity_id,
                    status=status,
                    actor_id=actor_id,
                    comment=comment,
                ),
            )

        self._notify(
            _TERMINAL_EVENTS[status],
            request,
            {request.submitted_by} | set(also_notify),
            title=f"Request {status.value.capitalize()}",
            message=f"{self._describe(request)} has been {status.value}",
        )
        return request

    def _notify_escalated(
        self,
        request: ApprovalRequest,
        step: Step,
        approvers: frozenset[UUID],
    ) -> None:
        self._notify(
            NotificationEvent.ESCALATED,
            request,
            {request.submitted_by} | set(approvers),
            step=step,
            title="Approval Delayed",
            message=(
                f"{self._describe(request)} has been pending at step "
                f"'{step.step_name}' beyond its deadline"
            ),
        )

    def _notify(
        self,
        event: NotificationEvent,
        request: ApprovalRequest,
        recipients: set[UUID] | frozenset[UUID],
        *,
        step: Step | None = None,
        title: str = "",
        message: str = "",
    ) -> None:
        self._side_effects.notify(NotifyIntent(
            event_type=event,
            recipients=frozenset(recipients),
            request_id=request.request_id,
            entity_type=request.entity_type,
            entity_id=request.entity_id,
            entity_number=request.entity_number,
            step_id=step.step_id if step else None,
            title=title,
            message=message,
        ))

    # =========================================================================
    # Helpers
    # =========================================================================

    def _is_admin(self, actor_id: UUID) -> bool:
        return self._admin_role in self._role_store.get_roles(actor_id)

    @staticmethod
    def _context(request: ApprovalRequest) -> ResolutionContext:
        return ResolutionContext(
            submitted_by=request.submitted_by,
            entity_type=request.entity_type,
            entity_id=request.entity_id,
            document_payload=request.document_payload,
        )

    @staticmethod
    def _describe(request: ApprovalRequest) -> str:
        return f"{entity_label(request.entity_type)} {request.entity_number or 'N/A'}"
