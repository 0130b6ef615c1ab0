# backend/spacebook/tasks/__init__.py
"""
Celery tasks package for Spacebook.

- Notification outbox dispatch and delivery
- Booking sweep (reminders, review requests, auto-cancel, unpaid release)
- Revenue reconciliation against the gateway
"""
