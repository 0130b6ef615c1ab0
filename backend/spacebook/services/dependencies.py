# backend/spacebook/services/dependencies.py
"""
Composition root for the settlement services.

Routes, Celery tasks and tests all build their services here so each request
or task gets one consistent graph sharing a session, a Stripe client and a
clock.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session
import stripe

from .availability_checker import AvailabilityChecker
from .booking_notification_job import BookingNotificationJob
from .booking_service import BookingService
from .notification_service import NotificationService
from .pricing_service import PriceCalculator
from .refund_policy_engine import RefundPolicyEngine
from .revenue_threshold_monitor import RevenueThresholdMonitor
from .stripe_service import StripeService
from .webhook_reconciler import WebhookReconciler


@dataclass
class SettlementServices:
    notifications: NotificationService
    availability: AvailabilityChecker
    stripe: StripeService
    refunds: RefundPolicyEngine
    bookings: BookingService
    revenue: RevenueThresholdMonitor
    webhooks: WebhookReconciler
    booking_job: BookingNotificationJob


def build_services(
    db: Session,
    *,
    stripe_client: Optional[stripe.StripeClient] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> SettlementServices:
    """
    Wire every settlement service around one session.

    ``stripe_client`` defaults to a client built from settings on first use.
    """
    notifications = NotificationService(db)
    availability = AvailabilityChecker(db)
    gateway = StripeService(db, stripe_client)
    refunds = RefundPolicyEngine(db, gateway, notification_service=notifications, clock=clock)
    bookings = BookingService(
        db,
        availability_checker=availability,
        price_calculator=PriceCalculator(),
        notification_service=notifications,
        refund_policy_engine=refunds,
        clock=clock,
    )
    gateway.booking_service = bookings
    revenue = RevenueThresholdMonitor(db, gateway)
    webhooks = WebhookReconciler(
        db,
        gateway=gateway,
        booking_service=bookings,
        revenue_monitor=revenue,
        notification_service=notifications,
    )
    return SettlementServices(
        notifications=notifications,
        availability=availability,
        stripe=gateway,
        refunds=refunds,
        bookings=bookings,
        revenue=revenue,
        webhooks=webhooks,
        booking_job=BookingNotificationJob(db, bookings, clock=clock),
    )
