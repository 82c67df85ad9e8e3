"""
approval_services.notifications -- Notify-intent dispatchers.

The engine emits NotifyIntents; delivery is somebody else's job.  These
adapters either log the intent or queue it in an outbox that a delivery
worker drains.
"""

from __future__ import annotations

import threading

from approval_kernel.domain.approval import NotificationEvent, NotifyIntent
from approval_kernel.logging_config import get_logger

logger = get_logger("services.notifications")


class LoggingNotificationDispatcher:
    """Writes each intent to the structured log."""

    def dispatch(self, intent: NotifyIntent) -> None:
        logger.info(
            "notification_dispatched",
            extra={
                "event_type": intent.event_type.value,
                "request_id": str(intent.request_id),
                "recipients": sorted(str(r) for r in intent.recipients),
                "title": intent.title,
            },
        )


class NotificationOutbox:
    """In-process queue of intents awaiting delivery."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._intents: list[NotifyIntent] = []

    def dispatch(self, intent: NotifyIntent) -> None:
        with self._lock:
            self._intents.append(intent)

    def pending(self, event_type: NotificationEvent | None = None) -> list[NotifyIntent]:
        with self._lock:
            if event_type is None:
                return list(self._intents)
            return [i for i in self._intents if i.event_type == event_type]

    def drain(self) -> list[NotifyIntent]:
        """Remove and return every queued intent."""
        with self._lock:
            drained, self._intents = self._intents, []
        return drained

    def __len__(self) -> int:
        with self._lock:
            return len(self._intents)
