"""
approval_kernel.services.approval_service -- Approval request persistence.

Responsibility:
    Creates approval requests pinned to a workflow snapshot, appends
    actions, moves the step cursor, and records terminal outcomes.  Every
    mutation is audited.  Routing decisions (which step comes next, whether
    consensus is met) are made by the caller, the approval engine in
    ``approval_services``.

Architecture position:
    Kernel > Services.  May import from domain/, models/, utils/.

Invariants enforced:
    - One pending request per (entity_type, entity_id): the insert runs in
      a savepoint against a partial unique index, never read-then-write.
    - Optimistic step cursor: every mutation touches the request row, so
      the UPDATE is keyed on (id, version).  A caller passing
      ``expected_version`` is checked against the stored version first.
    - Workflow pinning: the resolved workflow graph is snapshotted onto the
      request and never re-read from the registry.
    - Tamper evidence: a SHA-256 over the write-once fields is stored at
      creation and verified on every load.
    - Lifecycle: only APPROVAL_TRANSITIONS edges are allowed; terminal
      requests are frozen (ORM listener).

Failure modes:
    - DuplicatePendingRequestError on a second pending request.
    - StaleStepTokenError on a version mismatch or a lost UPDATE race.
    - ApprovalNotFoundError, ApprovalAlreadyResolvedError,
      InvalidApprovalTransitionError, TamperDetectedError.

Audit relevance:
    APPROVAL_REQUESTED, STEP_ENTERED, ACTION_RECORDED, ESCALATED and the
    terminal APPROVED / REJECTED / CANCELLED events each carry the actor
    and the status before and after.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from approval_kernel.domain.approval import (
    APPROVAL_TRANSITIONS,
    DECISION_ACTIONS,
    ActionType,
    ApprovalActionRecord,
    ApprovalRequest,
    ApprovalStatus,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.workflow import (
    Step,
    Workflow,
    workflow_from_snapshot,
    workflow_to_snapshot,
)
from approval_kernel.exceptions import (
    ApprovalAlreadyResolvedError,
    ApprovalNotFoundError,
    DuplicatePendingRequestError,
    InvalidApprovalTransitionError,
    StaleStepTokenError,
    TamperDetectedError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.approval import ApprovalActionModel, ApprovalRequestModel
from approval_kernel.models.audit_event import AuditAction
from approval_kernel.services.auditor_service import AuditorService
from approval_kernel.utils.hashing import hash_request_snapshot, to_json_safe

logger = get_logger("services.approval")

_TERMINAL_AUDIT = {
    ApprovalStatus.APPROVED: AuditAction.APPROVED,
    ApprovalStatus.REJECTED: AuditAction.REJECTED,
    ApprovalStatus.CANCELLED: AuditAction.CANCELLED,
}

_UNCHANGED: Any = object()


def _snapshot_hash(model: ApprovalRequestModel) -> str:
    return hash_request_snapshot(
        request_id=model.id,
        workflow_id=model.workflow_id,
        workflow_version=model.workflow_version,
        entity_type=model.entity_type,
        entity_id=model.entity_id,
        submitted_by=model.submitted_by,
        workflow_snapshot=model.workflow_snapshot,
        document_payload=model.document_payload,
    )


class ApprovalService:
    """
    Persistence for approval requests and their action history.

    Contract:
        Each mutating method loads the request, checks the optional
        ``expected_version``, applies one change, flushes, and audits it.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT evaluate conditions, consensus or escalation.
    """

    def __init__(
        self,
        session: Session,
        auditor: AuditorService,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._auditor = auditor
        self._clock = clock or SystemClock()

    # =========================================================================
    # Creation
    # =========================================================================

    def create_request(
        self,
        *,
        workflow: Workflow,
        entity_type: str,
        entity_id: UUID,
        submitted_by: UUID,
        document_payload: dict[str, Any] | None = None,
        entity_number: str | None = None,
    ) -> ApprovalRequest:
        """Insert a pending request pinned to ``workflow``.

        Raises:
            DuplicatePendingRequestError: a pending request already exists
                for the document.
        """
        now = self._clock.now()
        model = ApprovalRequestModel(
            id=uuid4(),
            workflow_id=workflow.workflow_id,
            workflow_version=workflow.version,
            workflow_snapshot=to_json_safe(workflow_to_snapshot(workflow)),
            entity_type=entity_type,
            entity_id=entity_id,
            entity_number=entity_number,
            document_payload=to_json_safe(document_payload or {}),
            status=ApprovalStatus.PENDING.value,
            current_step_id=None,
            current_step_order=None,
            current_approvers=[],
            submitted_by=submitted_by,
            submitted_at=now,
            escalation_count=0,
            step_rerouted=False,
            last_activity_at=now,
        )
        model.snapshot_hash = _snapshot_hash(model)

        savepoint = self._session.begin_nested()
        try:
            self._session.add(model)
            self._session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            logger.warning(
                "approval_request_duplicate_pending",
                extra={"entity_type": entity_type, "entity_id": str(entity_id)},
            )
            raise DuplicatePendingRequestError(entity_type, str(entity_id))

        self._auditor.record(
            entity_type="ApprovalRequest",
            entity_id=model.id,
            action=AuditAction.APPROVAL_REQUESTED,
            actor_id=submitted_by,
            payload={
                "document_type": entity_type,
                "document_id": str(entity_id),
                "workflow_id": str(workflow.workflow_id),
                "workflow_version": workflow.version,
                "status_before": None,
                "status_after": ApprovalStatus.PENDING.value,
            },
        )
        logger.info(
            "approval_request_created",
            extra={
                "request_id": str(model.id),
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "workflow_version": workflow.version,
            },
        )
        return model.to_dto()

    # =========================================================================
    # Reads
    # =========================================================================

    def get_request(self, request_id: UUID, *, verify: bool = True) -> ApprovalRequest:
        return self._load(request_id, verify=verify).to_dto()

    def get_pinned_workflow(self, request_id: UUID) -> Workflow:
        """The workflow graph the request was pinned to at creation."""
        return workflow_from_snapshot(self._load(request_id).workflow_snapshot)

    def get_actions(
        self,
        request_id: UUID,
        step_id: UUID | None = None,
    ) -> list[ApprovalActionRecord]:
        stmt = (
            select(ApprovalActionModel)
            .where(ApprovalActionModel.request_id == request_id)
            .order_by(ApprovalActionModel.sequence)
        )
        if step_id is not None:
            stmt = stmt.where(ApprovalActionModel.step_id == step_id)
        return [m.to_dto() for m in self._session.execute(stmt).scalars().all()]

    def approving_actors(self, request_id: UUID, step_id: UUID) -> frozenset[UUID]:
        """Distinct identities that approved ``step_id``."""
        rows = self._session.execute(
            select(ApprovalActionModel.actor_id).where(
                ApprovalActionModel.request_id == request_id,
                ApprovalActionModel.step_id == step_id,
                ApprovalActionModel.action == ActionType.APPROVE.value,
            )
        ).scalars().all()
        return frozenset(rows)

    def find_decision(
        self,
        request_id: UUID,
        step_id: UUID,
        actor_id: UUID,
        action: ActionType,
    ) -> ApprovalActionRecord | None:
        model = self._session.execute(
            select(ApprovalActionModel).where(
                ApprovalActionModel.request_id == request_id,
                ApprovalActionModel.step_id == step_id,
                ApprovalActionModel.actor_id == actor_id,
                ApprovalActionModel.action == ActionType(action).value,
            )
        ).scalars().first()
        return model.to_dto() if model is not None else None

    def find_due(self, as_of: datetime, limit: int = 100) -> list[ApprovalRequest]:
        """Pending requests whose step deadline is at or before ``as_of``."""
        models = self._session.execute(
            select(ApprovalRequestModel)
            .where(
                ApprovalRequestModel.status == ApprovalStatus.PENDING.value,
                ApprovalRequestModel.step_deadline_at.is_not(None),
                ApprovalRequestModel.step_deadline_at <= as_of,
            )
            .order_by(ApprovalRequestModel.step_deadline_at)
            .limit(limit)
        ).scalars().all()
        return [m.to_dto() for m in models]

    # =========================================================================
    # Mutations
    # =========================================================================

    def claim(self, request_id: UUID, expected_version: int | None = None) -> ApprovalRequest:
        """Check the token and bump the version.

        Once claimed, the row is written by this transaction; a concurrent
        writer holding the old version fails with StaleStepTokenError.
        """
        model = self._load_pending(request_id, expected_version)
        self._touch(model)
        self._flush(model, expected_version)
        return model.to_dto()

    def halt(self, request_id: UUID, *, reason: str, actor_id: UUID) -> ApprovalRequest:
        """Stop routing: the request stays pending on its current step.

        The step deadline is cleared so the escalation sweep leaves the
        request alone until an administrator intervenes.
        """
        model = self._load_pending(request_id, None)
        model.step_deadline_at = None
        self._touch(model)
        self._flush(model, None)

        self._auditor.record(
            entity_type="ApprovalRequest",
            entity_id=request_id,
            action=AuditAction.ROUTING_HALTED,
            actor_id=actor_id,
            payload={
                "step_id": str(model.current_step_id) if model.current_step_id else None,
                "reason": reason,
            },
        )
        logger.critical(
            "approval_routing_halted",
            extra={
                "request_id": str(request_id),
                "step_order": model.current_step_order,
                "reason": reason,
            },
        )
        return model.to_dto()

    def record_action(
        self,
        request_id: UUID,
        *,
        step_id: UUID | None,
        actor_id: UUID,
        action: ActionType,
        comment: str | None = None,
        delegated_to: UUID | None = None,
        is_system: bool = False,
        expected_version: int | None = None,
    ) -> ApprovalActionRecord:
        """Append an action and touch the request's version."""
        action = ActionType(action)
        model = self._load_pending(request_id, expected_version)
        self._touch(model)
        self._flush(model, expected_version)

        sequence = self._session.execute(
            select(func.count()).select_from(ApprovalActionModel).where(
                ApprovalActionModel.request_id == request_id,
            )
        ).scalar_one() + 1
        action_model = ApprovalActionModel(
            request_id=request_id,
            sequence=sequence,
            step_id=step_id,
            actor_id=actor_id,
            action=action.value,
            comment=comment,
            delegated_to=delegated_to,
            acted_at=self._clock.now(),
            is_system=is_system,
        )
        savepoint = self._session.begin_nested()
        try:
            self._session.add(action_model)
            self._session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            # A concurrent writer appended first (sequence or decision index).
            raise StaleStepTokenError(str(request_id), expected_version)

        self._auditor.record(
            entity_type="ApprovalRequest",
            entity_id=request_id,
            action=AuditAction.ACTION_RECORDED,
            actor_id=actor_id,
            payload={
                "action": action.value,
                "step_id": str(step_id) if step_id else None,
                "delegated_to": str(delegated_to) if delegated_to else None,
                "is_system": is_system,
                "sequence": sequence,
            },
        )
        log = logger.debug if action not in DECISION_ACTIONS else logger.info
        log(
            "approval_action_recorded",
            extra={
                "request_id": str(request_id),
                "action": action.value,
                "actor_id": str(actor_id),
                "step_id": str(step_id) if step_id else None,
            },
        )
        return action_model.to_dto()

    def enter_step(
        self,
        request_id: UUID,
        *,
        step: Step,
        approvers: frozenset[UUID],
        deadline: datetime | None,
        actor_id: UUID,
        rerouted: bool = False,
        expected_version: int | None = None,
    ) -> ApprovalRequest:
        """Move the cursor onto ``step`` with its resolved approver set."""
        model = self._load_pending(request_id, expected_version)
        previous_order = model.current_step_order
        now = self._clock.now()

        model.current_step_id = step.step_id
        model.current_step_order = step.step_order
        model.current_approvers = sorted(str(a) for a in approvers)
        model.step_entered_at = now
        model.step_deadline_at = deadline
        model.step_rerouted = rerouted
        self._touch(model)
        self._flush(model, expected_version)

        self._auditor.record(
            entity_type="ApprovalRequest",
            entity_id=request_id,
            action=AuditAction.STEP_ENTERED,
            actor_id=actor_id,
            payload={
                "step_id": str(step.step_id),
                "step_order_before": previous_order,
                "step_order_after": step.step_order,
                "approver_count": len(approvers),
                "deadline": deadline.isoformat() if deadline else None,
            },
        )
        logger.info(
            "approval_step_advanced",
            extra={
                "request_id": str(request_id),
                "step_order_before": previous_order,
                "step_order_after": step.step_order,
                "approver_count": len(approvers),
            },
        )
        return model.to_dto()

    def replace_approvers(
        self,
        request_id: UUID,
        approvers: frozenset[UUID],
        *,
        expected_version: int | None = None,
    ) -> ApprovalRequest:
        """Swap the current step's approver set (delegation)."""
        model = self._load_pending(request_id, expected_version)
        model.current_approvers = sorted(str(a) for a in approvers)
        self._touch(model)
        self._flush(model, expected_version)
        return model.to_dto()

    def record_escalation(
        self,
        request_id: UUID,
        *,
        actor_id: UUID,
        outcome: str,
        new_deadline: datetime | None,
        approvers: frozenset[UUID] | None = None,
        rerouted: bool = _UNCHANGED,
        expected_version: int | None = None,
    ) -> ApprovalRequest:
        """Bookkeeping for an escalation that leaves the request pending."""
        model = self._load_pending(request_id, expected_version)
        now = self._clock.now()
        model.escalation_count += 1
        model.escalated_at = now
        model.step_deadline_at = new_deadline
        if approvers is not None:
            model.current_approvers = sorted(str(a) for a in approvers)
        if rerouted is not _UNCHANGED:
            model.step_rerouted = rerouted
        self._touch(model)
        self._flush(model, expected_version)

        self._auditor.record(
            entity_type="ApprovalRequest",
            entity_id=request_id,
            action=AuditAction.ESCALATED,
            actor_id=actor_id,
            payload={
                "outcome": outcome,
                "step_id": str(model.current_step_id) if model.current_step_id else None,
                "escalation_count": model.escalation_count,
                "new_deadline": new_deadline.isoformat() if new_deadline else None,
            },
        )
        logger.info(
            "approval_escalated",
            extra={
                "request_id": str(request_id),
                "outcome": outcome,
                "escalation_count": model.escalation_count,
            },
        )
        return model.to_dto()

    def resolve(
        self,
        request_id: UUID,
        status: ApprovalStatus,
        *,
        actor_id: UUID,
        comment: str | None = None,
        expected_version: int | None = None,
    ) -> ApprovalRequest:
        """Move a pending request to a terminal status.

        Raises:
            ApprovalAlreadyResolvedError: the request is already terminal.
            InvalidApprovalTransitionError: ``status`` is not a valid target.
        """
        status = ApprovalStatus(status)
        model = self._load(request_id)
        current = ApprovalStatus(model.status)
        if current != ApprovalStatus.PENDING:
            raise ApprovalAlreadyResolvedError(str(request_id), current.value)
        if status not in APPROVAL_TRANSITIONS[current]:
            raise InvalidApprovalTransitionError(current.value, status.value)
        self._check_version(model, expected_version)

        step_id = model.current_step_id
        model.status = status.value
        model.completed_at = self._clock.now()
        model.current_approvers = []
        model.step_deadline_at = None
        self._touch(model)
        self._flush(model, expected_version)

        self._auditor.record(
            entity_type="ApprovalRequest",
            entity_id=request_id,
            action=_TERMINAL_AUDIT[status],
            actor_id=actor_id,
            payload={
                "status_before": current.value,
                "status_after": status.value,
                "step_id": str(step_id) if step_id else None,
                "comment": comment,
            },
        )
        logger.info(
            f"approval_request_{status.value}",
            extra={
                "request_id": str(request_id),
                "entity_type": model.entity_type,
                "entity_id": str(model.entity_id),
                "actor_id": str(actor_id),
            },
        )
        return model.to_dto()

    # =========================================================================
    # Internal
    # =========================================================================

    def _load(self, request_id: UUID, *, verify: bool = True) -> ApprovalRequestModel:
        model = self._session.execute(
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.id == request_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            raise ApprovalNotFoundError(str(request_id))
        if verify and model.snapshot_hash != _snapshot_hash(model):
            logger.critical(
                "approval_request_tamper_detected",
                extra={"request_id": str(request_id)},
            )
            raise TamperDetectedError(str(request_id))
        return model

    def _load_pending(
        self,
        request_id: UUID,
        expected_version: int | None,
    ) -> ApprovalRequestModel:
        model = self._load(request_id)
        if model.status != ApprovalStatus.PENDING.value:
            raise ApprovalAlreadyResolvedError(str(request_id), model.status)
        self._check_version(model, expected_version)
        return model

    def _check_version(self, model: ApprovalRequestModel, expected_version: int | None) -> None:
        if expected_version is not None and model.version != expected_version:
            logger.info(
                "approval_request_stale_token",
                extra={
                    "request_id": str(model.id),
                    "expected_version": expected_version,
                    "actual_version": model.version,
                },
            )
            raise StaleStepTokenError(str(model.id), expected_version)

    def _touch(self, model: ApprovalRequestModel) -> None:
        # Forces an UPDATE (and a version bump) even when no column changed.
        model.last_activity_at = self._clock.now()
        flag_modified(model, "last_activity_at")

    def _flush(self, model: ApprovalRequestModel, expected_version: int | None) -> None:
        try:
            self._session.flush()
        except StaleDataError:
            logger.info(
                "approval_request_lost_race",
                extra={"request_id": str(model.id)},
            )
            raise StaleStepTokenError(str(model.id), expected_version)
