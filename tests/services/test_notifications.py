"""Tests for the notify-intent dispatchers."""

from uuid import uuid4

import pytest

from approval_kernel.domain.approval import NotificationEvent, NotifyIntent
from approval_services.notifications import LoggingNotificationDispatcher, NotificationOutbox


def intent(event_type=NotificationEvent.STEP_ENTERED, recipients=None):
    return NotifyIntent(
        event_type=event_type,
        recipients=frozenset(recipients or {uuid4()}),
        request_id=uuid4(),
        entity_type="purchase_order",
        entity_id=uuid4(),
        title="Purchase Order awaiting approval",
    )


class TestLoggingDispatcher:

    def test_logs_intent(self, captured_logs):
        a, b = uuid4(), uuid4()
        sent = intent(recipients={a, b})

        LoggingNotificationDispatcher().dispatch(sent)

        record = next(r for r in captured_logs() if r["message"] == "notification_dispatched")
        assert record["event_type"] == "approval_step_entered"
        assert record["request_id"] == str(sent.request_id)
        assert record["recipients"] == sorted([str(a), str(b)])


class TestOutbox:

    @pytest.fixture
    def outbox(self):
        box = NotificationOutbox()
        box.dispatch(intent())
        box.dispatch(intent(NotificationEvent.APPROVED))
        box.dispatch(intent())
        return box

    def test_filter_by_event(self, outbox):
        assert len(outbox.pending()) == 3
        assert len(outbox.pending(NotificationEvent.STEP_ENTERED)) == 2
        assert outbox.pending(NotificationEvent.CANCELLED) == []

    def test_drain_empties(self, outbox):
        drained = outbox.drain()

        assert [i.event_type for i in drained] == [
            NotificationEvent.STEP_ENTERED,
            NotificationEvent.APPROVED,
            NotificationEvent.STEP_ENTERED,
        ]
        assert len(outbox) == 0
