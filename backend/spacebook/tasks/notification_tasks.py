# backend/spacebook/tasks/notification_tasks.py
"""
Celery tasks that drain the notification outbox.

`outbox.dispatch_pending` runs on beat and fans due rows out to
`outbox.deliver_event`. Each delivery attempt ends one of three ways:

- sent: the row is marked sent
- temporary provider error: the row is rescheduled with backoff and the task retried
- rejected by the provider, or out of attempts: the row is dead-lettered as
  failed and an ``notification_undeliverable`` operator alert is queued so the
  party can be contacted by hand

Booking and payment state are never touched from here.
"""

from __future__ import annotations

from contextlib import contextmanager
from time import monotonic
from typing import Any, Iterator, Optional

from celery.app.task import Task  # noqa: F401 - used for type hints
from celery.utils.log import get_task_logger
from sqlalchemy.orm import Session

from spacebook.core.config import settings
from spacebook.database import SessionLocal
from spacebook.models.event_outbox import EventOutbox, EventOutboxStatus
from spacebook.monitoring.prometheus_metrics import PrometheusMetrics
from spacebook.repositories.event_outbox_repository import EventOutboxRepository
from spacebook.services.notification_provider import (
    NotificationProvider,
    NotificationProviderPermanentError,
)
from spacebook.services.notification_service import NotificationEvent, NotificationService
from spacebook.tasks.celery_app import celery_app

logger = get_task_logger(__name__)

MAX_DELIVERY_ATTEMPTS = settings.outbox_max_attempts
UNDELIVERABLE_ALERT = "notification_undeliverable"


def _next_backoff(attempt_number: int) -> int:
    """Retry delay after the given attempt (1-indexed); the last step repeats."""
    schedule = settings.outbox_backoff_seconds
    return schedule[max(0, min(attempt_number - 1, len(schedule) - 1))]


@contextmanager
def _session_scope() -> Iterator[Session]:
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _dead_letter(session: Session, event: EventOutbox, error: str) -> None:
    # Operator alerts are never alerted on themselves
    if event.event_type == NotificationEvent.OPS_ALERT:
        logger.error("Operator alert %s could not be delivered: %s", event.id, error)
        return
    NotificationService(session).ops_alert(
        UNDELIVERABLE_ALERT,
        event.id,
        event_type=event.event_type,
        booking_id=event.aggregate_id,
        recipient_role=(event.payload or {}).get("recipient_role"),
        error=error,
    )


@celery_app.task(name="outbox.dispatch_pending", max_retries=0, queue="notifications")
def dispatch_pending() -> int:
    """Schedule delivery of every due outbox row. Returns the number scheduled."""
    with _session_scope() as session:
        due = EventOutboxRepository(session).fetch_pending(limit=settings.outbox_batch_size)
        for event in due:
            deliver_event.apply_async((event.id,), queue="notifications")
    if due:
        logger.info("Scheduled %s outbox events for delivery", len(due))
    return len(due)


@celery_app.task(
    name="outbox.deliver_event",
    bind=True,
    max_retries=MAX_DELIVERY_ATTEMPTS,
    queue="notifications",
)
def deliver_event(
    self: "Task[Any, Any]",
    event_id: str,
    provider: Optional[NotificationProvider] = None,
) -> Optional[str]:
    """
    Deliver one outbox row.

    The row is re-read on every attempt, so a retry always sends the stored
    payload, and a row that is no longer pending (delivered by an overlapping
    dispatch, or dead-lettered) is left alone.
    """
    provider = provider or NotificationProvider()
    with _session_scope() as session:
        repo = EventOutboxRepository(session)
        event = repo.get_by_id(event_id)
        if event is None:
            logger.warning("Outbox event %s missing; skipping", event_id)
            return None
        if event.status != EventOutboxStatus.PENDING.value:
            logger.info("Outbox event %s is already %s; skipping", event_id, event.status)
            return None

        attempt = event.attempt_count + 1
        PrometheusMetrics.record_notification_attempt(event.event_type)
        start = monotonic()
        try:
            provider.send(
                event_type=event.event_type,
                payload=event.payload,
                idempotency_key=event.idempotency_key,
            )
        except Exception as exc:
            PrometheusMetrics.observe_notification_dispatch(event.event_type, monotonic() - start)
            rejected = isinstance(exc, NotificationProviderPermanentError)
            if rejected or attempt >= MAX_DELIVERY_ATTEMPTS:
                repo.mark_failed(
                    event.id,
                    attempt_count=attempt,
                    backoff_seconds=0,
                    error=str(exc),
                    terminal=True,
                )
                _dead_letter(session, event, str(exc))
                session.commit()
                PrometheusMetrics.record_notification_outcome(event.event_type, "failed")
                logger.error(
                    "Outbox event %s type=%s dead-lettered after %s attempts (%s): %s",
                    event.id,
                    event.event_type,
                    attempt,
                    "rejected" if rejected else "exhausted",
                    exc,
                )
                raise
            backoff = _next_backoff(attempt)
            repo.mark_failed(
                event.id, attempt_count=attempt, backoff_seconds=backoff, error=str(exc)
            )
            logger.warning(
                "Outbox event %s attempt %s failed; retrying in %ss: %s",
                event.id,
                attempt,
                backoff,
                exc,
            )
            retry_exc = exc
        else:
            repo.mark_sent(event.id, attempt)
            PrometheusMetrics.observe_notification_dispatch(event.event_type, monotonic() - start)
            PrometheusMetrics.record_notification_outcome(event.event_type, "sent")
            logger.info("Delivered outbox event %s type=%s", event.id, event.event_type)
            return event.id

    # The rescheduled row is committed before the retry is raised
    raise self.retry(countdown=backoff, exc=retry_exc)
