# backend/spacebook/tasks/beat_schedule.py
"""
Celery Beat schedule configuration for Spacebook.
"""

from datetime import timedelta
from typing import Any, Dict

from celery.schedules import crontab

CELERYBEAT_SCHEDULE: Dict[str, Dict[str, Any]] = {
    # Notification outbox - pick up anything committed since the last sweep
    "dispatch-notification-outbox": {
        "task": "outbox.dispatch_pending",
        "schedule": timedelta(seconds=30),
        "options": {"queue": "notifications", "expires": 25},
    },
    # Reminders, review requests, auto-cancel and unpaid release
    "booking-notifications": {
        "task": "jobs.booking_notifications",
        "schedule": crontab(minute="*/15"),
        "options": {"queue": "maintenance", "expires": 600},
    },
    # Re-derive cumulative revenue from the gateway
    "revenue-reconciliation": {
        "task": "jobs.revenue_reconciliation",
        "schedule": crontab(hour=4, minute=15),
        "options": {"queue": "maintenance"},
    },
}


def get_beat_schedule() -> Dict[str, Dict[str, Any]]:
    """Return a copy of the beat schedule."""
    return {name: dict(entry) for name, entry in CELERYBEAT_SCHEDULE.items()}
