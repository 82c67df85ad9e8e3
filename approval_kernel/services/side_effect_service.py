"""
approval_kernel.services.side_effect_service -- Bounded-retry side effects.

Responsibility:
    Runs the collaborator calls that follow an engine decision (Document
    Status Sync, notification dispatch) with bounded retry.  A call that
    exhausts its attempts is stored as a pending side effect, alerted, and
    audited; ``reconcile_pending()`` re-drives stored effects later.

Architecture position:
    Kernel > Services.  Talks to collaborators only through the
    DocumentStatusSync and NotificationDispatcher protocols.

Invariants enforced:
    - A failed side effect never propagates to the caller: the approval
      decision is the source of truth and is never rolled back by it.
    - Each attempt runs inside a savepoint, so a collaborator that writes
      through the same session cannot leave half an update behind.
    - Inline retries run back to back: the caller usually holds the claimed
      request row, so no backoff is slept inside its transaction.  Backoff
      spaces the ``reconcile_pending()`` re-drives instead.
    - No failure is silently dropped: every exhausted effect becomes a
      PendingSideEffectModel row plus an ERROR log and a SIDE_EFFECT_FAILED
      audit event.

Failure modes:
    - None raised.  Collaborator exceptions are captured into the pending
      row's ``last_error``.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_kernel.domain.approval import (
    SYSTEM_ACTOR_ID,
    ApprovalStatus,
    NotificationEvent,
    NotifyIntent,
    SideEffectKind,
    StatusSyncCommand,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.ports import DocumentStatusSync, NotificationDispatcher
from approval_kernel.logging_config import get_logger
from approval_kernel.models.approval import PendingSideEffectModel
from approval_kernel.models.audit_event import AuditAction
from approval_kernel.services.auditor_service import AuditorService

logger = get_logger("services.side_effects")


@dataclass(frozen=True)
class PendingSideEffect:
    effect_id: UUID
    kind: SideEffectKind
    request_id: UUID
    payload: dict[str, Any]
    attempts: int
    last_error: str | None
    created_at: datetime
    next_attempt_at: datetime


@dataclass(frozen=True)
class ReconcileResult:
    resolved: int
    still_pending: int

    @property
    def examined(self) -> int:
        return self.resolved + self.still_pending


def _command_payload(command: StatusSyncCommand) -> dict[str, Any]:
    return {
        "entity_type": command.entity_type,
        "entity_id": str(command.entity_id),
        "status": command.status.value,
        "actor_id": str(command.actor_id),
        "comment": command.comment,
    }


def _command_from_payload(payload: dict[str, Any]) -> StatusSyncCommand:
    return StatusSyncCommand(
        entity_type=payload["entity_type"],
        entity_id=UUID(payload["entity_id"]),
        status=ApprovalStatus(payload["status"]),
        actor_id=UUID(payload["actor_id"]),
        comment=payload.get("comment"),
    )


def _intent_payload(intent: NotifyIntent) -> dict[str, Any]:
    return {
        "event_type": intent.event_type.value,
        "recipients": sorted(str(r) for r in intent.recipients),
        "request_id": str(intent.request_id),
        "entity_type": intent.entity_type,
        "entity_id": str(intent.entity_id),
        "entity_number": intent.entity_number,
        "step_id": str(intent.step_id) if intent.step_id else None,
        "title": intent.title,
        "message": intent.message,
    }


def _intent_from_payload(payload: dict[str, Any]) -> NotifyIntent:
    return NotifyIntent(
        event_type=NotificationEvent(payload["event_type"]),
        recipients=frozenset(UUID(r) for r in payload["recipients"]),
        request_id=UUID(payload["request_id"]),
        entity_type=payload["entity_type"],
        entity_id=UUID(payload["entity_id"]),
        entity_number=payload.get("entity_number"),
        step_id=UUID(payload["step_id"]) if payload.get("step_id") else None,
        title=payload.get("title", ""),
        message=payload.get("message", ""),
    )


class SideEffectService:
    """
    Runs collaborator calls with bounded retry and durable fallback.

    Contract:
        ``sync_status`` and ``notify`` return True on success and False
        when the effect was parked for reconciliation.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT deliver notifications itself.
    """

    def __init__(
        self,
        session: Session,
        auditor: AuditorService,
        clock: Clock | None = None,
        *,
        status_sync: DocumentStatusSync | None = None,
        notifier: NotificationDispatcher | None = None,
        status_sync_max_attempts: int = 3,
        notification_max_attempts: int = 2,
        retry_backoff_seconds: float = 0.0,
        system_actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> None:
        self._session = session
        self._auditor = auditor
        self._clock = clock or SystemClock()
        self._status_sync = status_sync
        self._notifier = notifier
        self._max_attempts = {
            SideEffectKind.STATUS_SYNC: max(1, status_sync_max_attempts),
            SideEffectKind.NOTIFICATION: max(1, notification_max_attempts),
        }
        self._backoff = retry_backoff_seconds
        self._system_actor_id = system_actor_id

    # =========================================================================
    # Effects
    # =========================================================================

    def sync_status(self, request_id: UUID, command: StatusSyncCommand) -> bool:
        """Propagate a terminal outcome to the owning document."""
        if self._status_sync is None:
            logger.warning(
                "status_sync_not_configured",
                extra={"request_id": str(request_id), "entity_type": command.entity_type},
            )
            return self._park(
                SideEffectKind.STATUS_SYNC, request_id, _command_payload(command),
                attempts=0, error="no status sync collaborator configured",
            )
        sync = self._status_sync
        return self._run(
            SideEffectKind.STATUS_SYNC,
            request_id,
            _command_payload(command),
            lambda: sync.sync(command),
        )

    def notify(self, intent: NotifyIntent) -> bool:
        """Hand a notify intent to the dispatcher.  No recipients, no call."""
        if not intent.recipients:
            return True
        if self._notifier is None:
            logger.debug(
                "notification_dispatcher_not_configured",
                extra={"event_type": intent.event_type.value},
            )
            return True
        notifier = self._notifier
        return self._run(
            SideEffectKind.NOTIFICATION,
            intent.request_id,
            _intent_payload(intent),
            lambda: notifier.dispatch(intent),
        )

    # =========================================================================
    # Reconciliation
    # =========================================================================

    def list_pending(self, limit: int | None = None) -> list[PendingSideEffect]:
        stmt = (
            select(PendingSideEffectModel)
            .where(PendingSideEffectModel.status == "pending")
            .order_by(PendingSideEffectModel.created_at)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return [
            PendingSideEffect(
                effect_id=m.id,
                kind=SideEffectKind(m.kind),
                request_id=m.request_id,
                payload=dict(m.payload),
                attempts=m.attempts,
                last_error=m.last_error,
                created_at=m.created_at,
                next_attempt_at=m.next_attempt_at,
            )
            for m in self._session.execute(stmt).scalars().all()
        ]

    def reconcile_pending(self, limit: int = 100) -> ReconcileResult:
        """Re-drive each stored side effect whose backoff has elapsed, once."""
        now = self._clock.now()
        models = self._session.execute(
            select(PendingSideEffectModel)
            .where(
                PendingSideEffectModel.status == "pending",
                PendingSideEffectModel.next_attempt_at <= now,
            )
            .order_by(PendingSideEffectModel.next_attempt_at)
            .limit(limit)
        ).scalars().all()

        resolved = 0
        for model in models:
            call = self._call_for(model)
            error = None
            if call is None:
                error = f"no collaborator configured for {model.kind}"
            else:
                error = self._attempt(call)

            model.attempts += 1
            if error is None:
                model.status = "resolved"
                model.resolved_at = self._clock.now()
                model.last_error = None
                resolved += 1
                self._auditor.record(
                    entity_type="ApprovalRequest",
                    entity_id=model.request_id,
                    action=AuditAction.SIDE_EFFECT_RECONCILED,
                    actor_id=self._system_actor_id,
                    payload={"kind": model.kind, "effect_id": str(model.id)},
                )
                logger.info(
                    "side_effect_reconciled",
                    extra={"effect_id": str(model.id), "kind": model.kind},
                )
            else:
                model.last_error = error
                model.next_attempt_at = now + self._delay(model.attempts)
                logger.error(
                    "side_effect_still_failing",
                    extra={
                        "effect_id": str(model.id),
                        "kind": model.kind,
                        "attempts": model.attempts,
                        "error": error,
                    },
                )
        self._session.flush()

        return ReconcileResult(resolved=resolved, still_pending=len(models) - resolved)

    # =========================================================================
    # Internal
    # =========================================================================

    def _call_for(self, model: PendingSideEffectModel) -> Callable[[], None] | None:
        kind = SideEffectKind(model.kind)
        if kind == SideEffectKind.STATUS_SYNC:
            if self._status_sync is None:
                return None
            sync, command = self._status_sync, _command_from_payload(model.payload)
            return lambda: sync.sync(command)
        if self._notifier is None:
            return None
        notifier, intent = self._notifier, _intent_from_payload(model.payload)
        return lambda: notifier.dispatch(intent)

    def _delay(self, attempts: int) -> timedelta:
        return timedelta(seconds=self._backoff * attempts)

    def _attempt(self, call: Callable[[], None]) -> str | None:
        """One savepoint-guarded attempt.  Returns the error text on failure."""
        try:
            with self._session.begin_nested():
                call()
        except Exception as exc:
            logger.warning(
                "side_effect_attempt_failed",
                extra={"error_type": type(exc).__name__, "error": str(exc)},
                exc_info=True,
            )
            return f"{type(exc).__name__}: {exc}"
        return None

    def _run(
        self,
        kind: SideEffectKind,
        request_id: UUID,
        payload: dict[str, Any],
        call: Callable[[], None],
    ) -> bool:
        max_attempts = self._max_attempts[kind]
        error = None
        for attempt in range(1, max_attempts + 1):
            error = self._attempt(call)
            if error is None:
                logger.debug(
                    "side_effect_delivered",
                    extra={"kind": kind.value, "request_id": str(request_id), "attempt": attempt},
                )
                return True

        return self._park(kind, request_id, payload, attempts=max_attempts, error=error)

    def _park(
        self,
        kind: SideEffectKind,
        request_id: UUID,
        payload: dict[str, Any],
        *,
        attempts: int,
        error: str | None,
    ) -> bool:
        now = self._clock.now()
        model = PendingSideEffectModel(
            kind=kind.value,
            request_id=request_id,
            payload=payload,
            attempts=attempts,
            last_error=error,
            status="pending",
            created_at=now,
            next_attempt_at=now + self._delay(attempts),
        )
        self._session.add(model)
        self._session.flush()

        self._auditor.record(
            entity_type="ApprovalRequest",
            entity_id=request_id,
            action=AuditAction.SIDE_EFFECT_FAILED,
            actor_id=self._system_actor_id,
            payload={"kind": kind.value, "attempts": attempts, "error": error},
        )
        logger.error(
            f"{kind.value}_failed",
            extra={
                "request_id": str(request_id),
                "effect_id": str(model.id),
                "attempts": attempts,
                "error": error,
            },
        )
        return False
