"""
AuditorService -- append-only, hash-chained history of approval activity.

Every submission, routing decision, reviewer action, workflow edit and
role change is written as one ``AuditEvent``.  Each event's hash covers
its own content plus the hash of the event before it, so rewriting any
stored event breaks every hash after it.

The service flushes but never commits; the caller's unit of work owns
the transaction, which keeps an approval transition and its audit row
atomic.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.exceptions import AuditChainBrokenError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.audit_event import AuditAction, AuditEvent
from approval_kernel.services.sequence_service import SequenceService
from approval_kernel.utils.hashing import hash_audit_event, hash_payload, to_json_safe

logger = get_logger("services.auditor")


@dataclass(frozen=True)
class AuditTraceEntry:
    seq: int
    action: AuditAction
    occurred_at: datetime
    actor_id: UUID
    payload: dict[str, Any]
    hash: str


@dataclass(frozen=True)
class AuditTrace:
    """Audit events for one entity, oldest first."""

    entity_type: str
    entity_id: UUID
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return not self.entries

    @property
    def actions(self) -> tuple[AuditAction, ...]:
        return tuple(e.action for e in self.entries)

    @property
    def last_action(self) -> AuditAction | None:
        return self.entries[-1].action if self.entries else None


def _expected_hash(event: AuditEvent) -> str:
    return hash_audit_event(
        entity_type=event.entity_type,
        entity_id=str(event.entity_id),
        action=event.action,
        payload_hash=event.payload_hash,
        prev_hash=event.prev_hash,
    )


def _check_links(events: Iterable[AuditEvent]) -> int:
    """Walk events in seq order; return how many were checked."""
    previous: str | None = None
    count = 0
    for event in events:
        if event.prev_hash != previous:
            logger.critical("audit_chain_broken", extra={"seq": event.seq, "reason": "link"})
            raise AuditChainBrokenError(str(event.id), str(previous), str(event.prev_hash))
        recomputed = _expected_hash(event)
        if event.hash != recomputed:
            logger.critical("audit_chain_broken", extra={"seq": event.seq, "reason": "content"})
            raise AuditChainBrokenError(str(event.id), recomputed, event.hash)
        previous = event.hash
        count += 1
    return count


class AuditorService:
    """Writes and verifies the approval audit chain."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence = SequenceService(session)

    def _chain_head(self) -> str | None:
        return self._session.execute(
            select(AuditEvent.hash).order_by(AuditEvent.seq.desc()).limit(1)
        ).scalar_one_or_none()

    def record(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """Append one event linked to the current head of the chain.

        ``payload`` is normalised to JSON-safe values before hashing, so
        Decimals, UUIDs and datetimes hash the same way they are stored.
        """
        action = AuditAction(action)
        body = to_json_safe(payload or {})
        body_hash = hash_payload(body)
        prev_hash = self._chain_head()

        event = AuditEvent(
            seq=self._sequence.next_value(SequenceService.AUDIT_EVENT),
            entity_type=entity_type,
            entity_id=entity_id,
            action=action.value,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            payload=body,
            payload_hash=body_hash,
            prev_hash=prev_hash,
            hash=hash_audit_event(
                entity_type=entity_type,
                entity_id=str(entity_id),
                action=action.value,
                payload_hash=body_hash,
                prev_hash=prev_hash,
            ),
        )
        self._session.add(event)
        self._session.flush()

        logger.debug(
            "audit_event_recorded",
            extra={"audited_type": entity_type, "audit_action": action.value, "seq": event.seq},
        )
        return event

    def validate_chain(self) -> bool:
        """Recompute every hash and link from the first event.

        Raises:
            AuditChainBrokenError: an event's content or its link to the
                previous event does not match what was stored.
        """
        events = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq)
        ).scalars()
        checked = _check_links(events)
        logger.info("audit_chain_valid", extra={"event_count": checked})
        return True

    def get_trace(self, entity_type: str, entity_id: UUID) -> AuditTrace:
        events = self._session.execute(
            select(AuditEvent)
            .where(AuditEvent.entity_type == entity_type, AuditEvent.entity_id == entity_id)
            .order_by(AuditEvent.seq)
        ).scalars()

        return AuditTrace(
            entity_type=entity_type,
            entity_id=entity_id,
            entries=tuple(
                AuditTraceEntry(
                    seq=event.seq,
                    action=AuditAction(event.action),
                    occurred_at=event.occurred_at,
                    actor_id=event.actor_id,
                    payload=event.payload or {},
                    hash=event.hash,
                )
                for event in events
            ),
        )
