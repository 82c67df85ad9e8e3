"""
approval_services.escalation_scheduler -- Durable escalation sweep.

Responsibility:
    Periodic job that finds pending requests whose step deadline has
    passed and fires each one's escalation action through the engine.
    Deadlines are persisted on the request, so a restart loses nothing.

Architecture position:
    Services -- background entry point.  The caller (cron, worker loop)
    owns the session and commits after ``sweep()`` returns.

Invariants enforced:
    - Each item runs in its own savepoint: one failing item never undoes
      the others.
    - Idempotent against the step cursor: each item carries the version it
      was selected at; if a human action moved the request in between, the
      engine raises StaleStepTokenError and the item is discarded.

Failure modes:
    - None raised for individual items.  Kernel errors are logged and
      counted in ``SweepResult.failed``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from approval_engines.escalation import EscalationOutcome
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.exceptions import ApprovalKernelError, StaleStepTokenError
from approval_kernel.logging_config import get_logger
from approval_kernel.services.approval_service import ApprovalService
from approval_services.approval_engine import ApprovalEngine

logger = get_logger("services.escalation_scheduler")


@dataclass(frozen=True)
class SweepResult:
    as_of: datetime
    fired: dict[UUID, EscalationOutcome] = field(default_factory=dict)
    discarded: tuple[UUID, ...] = ()
    failed: tuple[UUID, ...] = ()

    @property
    def examined(self) -> int:
        return len(self.fired) + len(self.discarded) + len(self.failed)


class EscalationScheduler:
    """Sweeps due requests and fires their escalation actions."""

    def __init__(
        self,
        session: Session,
        engine: ApprovalEngine,
        requests: ApprovalService,
        clock: Clock | None = None,
        batch_size: int = 100,
    ) -> None:
        self._session = session
        self._engine = engine
        self._requests = requests
        self._clock = clock or SystemClock()
        self._batch_size = batch_size

    def sweep(self, as_of: datetime | None = None) -> SweepResult:
        """Fire every escalation due at ``as_of`` (default: now)."""
        as_of = as_of or self._clock.now()
        due = self._requests.find_due(as_of, limit=self._batch_size)

        fired: dict[UUID, EscalationOutcome] = {}
        discarded: list[UUID] = []
        failed: list[UUID] = []

        for request in due:
            try:
                with self._session.begin_nested():
                    outcome = self._engine.fire_escalation(
                        request.request_id,
                        expected_version=request.version,
                        as_of=as_of,
                    )
            except StaleStepTokenError:
                discarded.append(request.request_id)
                logger.info(
                    "escalation_discarded_stale",
                    extra={
                        "request_id": str(request.request_id),
                        "expected_version": request.version,
                    },
                )
                continue
            except ApprovalKernelError as exc:
                failed.append(request.request_id)
                logger.error(
                    "escalation_failed",
                    extra={
                        "request_id": str(request.request_id),
                        "error_code": exc.code,
                        "error": str(exc),
                    },
                    exc_info=True,
                )
                continue

            if outcome is not None:
                fired[request.request_id] = outcome

        logger.info(
            "escalation_sweep_completed",
            extra={
                "as_of": as_of.isoformat(),
                "due": len(due),
                "fired": len(fired),
                "discarded": len(discarded),
                "failed": len(failed),
            },
        )
        return SweepResult(
            as_of=as_of,
            fired=fired,
            discarded=tuple(discarded),
            failed=tuple(failed),
        )
