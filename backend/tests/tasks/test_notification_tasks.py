# backend/tests/tasks/test_notification_tasks.py
"""Tests for the outbox Celery tasks, called directly without a broker."""

from unittest.mock import MagicMock

import pytest

from spacebook.models.event_outbox import EventOutboxStatus
from spacebook.repositories.event_outbox_repository import EventOutboxRepository
from spacebook.services.notification_provider import (
    NotificationProviderPermanentError,
    NotificationProviderTemporaryError,
)
from spacebook.services.notification_service import NotificationEvent
from spacebook.tasks import notification_tasks


@pytest.fixture(autouse=True)
def task_sessions(monkeypatch, session_factory):
    monkeypatch.setattr(notification_tasks, "SessionLocal", session_factory)


@pytest.fixture
def outbox_event(db):
    event = EventOutboxRepository(db).enqueue(
        event_type="booking.confirmed",
        aggregate_id="booking-1",
        payload={"booking_id": "booking-1"},
        idempotency_key="booking.confirmed:booking-1:renter",
    )
    db.commit()
    return event


def _reload(session_factory, event_id):
    with session_factory() as session:
        return EventOutboxRepository(session).get_by_id(event_id)


def _alerts(session_factory, event_id):
    with session_factory() as session:
        return EventOutboxRepository(session).list_by_aggregate(event_id)


class TestDeliverEvent:
    def test_successful_delivery_marks_sent(self, session_factory, outbox_event):
        provider = MagicMock()

        delivered = notification_tasks.deliver_event(outbox_event.id, provider=provider)

        assert delivered == outbox_event.id
        provider.send.assert_called_once_with(
            event_type="booking.confirmed",
            payload={"booking_id": "booking-1"},
            idempotency_key="booking.confirmed:booking-1:renter",
        )
        row = _reload(session_factory, outbox_event.id)
        assert row.status == EventOutboxStatus.SENT.value
        assert row.attempt_count == 1

    def test_temporary_failure_schedules_a_retry(self, session_factory, outbox_event):
        provider = MagicMock()
        provider.send.side_effect = NotificationProviderTemporaryError("503")

        with pytest.raises(NotificationProviderTemporaryError):
            notification_tasks.deliver_event(outbox_event.id, provider=provider)

        row = _reload(session_factory, outbox_event.id)
        assert row.status == EventOutboxStatus.PENDING.value
        assert row.attempt_count == 1
        assert row.last_error == "503"
        assert row.next_attempt_at > outbox_event.next_attempt_at

    def test_permanent_failure_is_terminal(self, session_factory, outbox_event):
        provider = MagicMock()
        provider.send.side_effect = NotificationProviderPermanentError("rejected")

        with pytest.raises(NotificationProviderPermanentError):
            notification_tasks.deliver_event(outbox_event.id, provider=provider)

        assert _reload(session_factory, outbox_event.id).status == EventOutboxStatus.FAILED.value
        alerts = _alerts(session_factory, outbox_event.id)
        assert len(alerts) == 1
        assert alerts[0].payload["alert"] == notification_tasks.UNDELIVERABLE_ALERT
        assert alerts[0].payload["booking_id"] == "booking-1"
        assert alerts[0].payload["error"] == "rejected"

    def test_last_attempt_is_terminal(self, db, session_factory, outbox_event):
        outbox_event.attempt_count = notification_tasks.MAX_DELIVERY_ATTEMPTS - 1
        db.commit()
        provider = MagicMock()
        provider.send.side_effect = NotificationProviderTemporaryError("503")

        with pytest.raises(NotificationProviderTemporaryError):
            notification_tasks.deliver_event(outbox_event.id, provider=provider)

        assert _reload(session_factory, outbox_event.id).status == EventOutboxStatus.FAILED.value

    def test_failed_operator_alert_raises_no_further_alert(self, db, session_factory):
        alert = EventOutboxRepository(db).enqueue(
            event_type=NotificationEvent.OPS_ALERT,
            aggregate_id="booking-1",
            payload={"alert": "refund_failed"},
            idempotency_key="ops.alert:refund_failed:booking-1",
        )
        db.commit()
        provider = MagicMock()
        provider.send.side_effect = NotificationProviderPermanentError("rejected")

        with pytest.raises(NotificationProviderPermanentError):
            notification_tasks.deliver_event(alert.id, provider=provider)

        assert _reload(session_factory, alert.id).status == EventOutboxStatus.FAILED.value
        assert _alerts(session_factory, alert.id) == []

    def test_already_sent_event_is_not_redelivered(self, db, session_factory, outbox_event):
        EventOutboxRepository(db).mark_sent(outbox_event.id, 1)
        db.commit()
        provider = MagicMock()

        assert notification_tasks.deliver_event(outbox_event.id, provider=provider) is None
        provider.send.assert_not_called()

    def test_missing_event_is_skipped(self):
        provider = MagicMock()

        assert notification_tasks.deliver_event("missing", provider=provider) is None
        provider.send.assert_not_called()


def test_dispatch_pending_schedules_due_events(monkeypatch, outbox_event):
    apply_async = MagicMock()
    monkeypatch.setattr(notification_tasks.deliver_event, "apply_async", apply_async)

    scheduled = notification_tasks.dispatch_pending()

    assert scheduled == 1
    apply_async.assert_called_once_with((outbox_event.id,), queue="notifications")


@pytest.mark.parametrize("attempt,expected", [(1, 30), (3, 600), (9, 7200)])
def test_backoff_schedule(attempt, expected):
    assert notification_tasks._next_backoff(attempt) == expected
