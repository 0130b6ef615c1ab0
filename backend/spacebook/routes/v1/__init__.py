# backend/spacebook/routes/v1/__init__.py
"""
API v1 routes.

Mounted under /api/v1 by spacebook.main.
"""

from . import admin, bookings, internal_jobs, payments, webhooks_stripe

__all__ = ["admin", "bookings", "internal_jobs", "payments", "webhooks_stripe"]
