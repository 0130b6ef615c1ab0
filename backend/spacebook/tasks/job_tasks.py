# backend/spacebook/tasks/job_tasks.py
"""
Scheduled maintenance jobs.

Both jobs are also reachable through the internal jobs endpoints, which call
the same services synchronously.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterator

from celery.utils.log import get_task_logger
from sqlalchemy.orm import Session

from spacebook.core.exceptions import GatewayException
from spacebook.database import SessionLocal
from spacebook.services.dependencies import build_services
from spacebook.tasks.celery_app import celery_app

logger = get_task_logger(__name__)


@contextmanager
def _session_scope() -> Iterator[Session]:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@celery_app.task(name="jobs.booking_notifications", max_retries=0, queue="maintenance")
def run_booking_notifications() -> Dict[str, int]:
    """Release stale holds, auto-cancel, and send reminders and review requests."""
    with _session_scope() as session:
        result = build_services(session).booking_job.run()
    logger.info("Booking notification job: %s", result.to_dict())
    return result.to_dict()


@celery_app.task(
    name="jobs.revenue_reconciliation",
    bind=True,
    max_retries=3,
    default_retry_delay=300,
    queue="maintenance",
)
def reconcile_revenue(self: Any) -> Dict[str, Any]:
    """Re-derive cumulative revenue from the gateway and re-check the tax latch."""
    with _session_scope() as session:
        try:
            config = build_services(session).revenue.reconcile_from_gateway()
        except GatewayException as exc:
            logger.warning("Revenue reconciliation failed, retrying: %s", exc.message)
            raise self.retry(exc=exc)
        return {
            "revenue_cents": config.revenue_cents,
            "tax_mode": config.tax_mode,
            "threshold_cents": config.threshold_cents,
        }
