"""
SequenceService -- gap-tolerant, strictly increasing counters.

The audit chain orders events by ``seq``.  Values come from a named row in
``sequence_counters`` locked with ``SELECT ... FOR UPDATE`` so two writers
never draw the same number; nothing is derived from ``MAX(seq)``.  A
rolled-back transaction can leave a gap, which the chain tolerates.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from approval_kernel.logging_config import get_logger
from approval_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    AUDIT_EVENT = "audit_event"

    def __init__(self, session: Session):
        self._session = session

    def _locked(self, name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _create(self, name: str) -> SequenceCounter:
        """Insert the counter at zero; a concurrent creator wins the race."""
        try:
            with self._session.begin_nested():
                counter = SequenceCounter(name=name, current_value=0)
                self._session.add(counter)
                self._session.flush()
            return counter
        except IntegrityError:
            logger.debug("sequence_create_raced", extra={"sequence_name": name})
            counter = self._locked(name)
            if counter is None:
                raise
            return counter

    def next_value(self, name: str) -> int:
        """Increment and return the named counter (first value is 1)."""
        counter = self._locked(name) or self._create(name)
        counter.current_value += 1
        self._session.flush()
        return counter.current_value

    def current_value(self, name: str) -> int | None:
        return self._session.execute(
            select(SequenceCounter.current_value).where(SequenceCounter.name == name)
        ).scalar_one_or_none()
