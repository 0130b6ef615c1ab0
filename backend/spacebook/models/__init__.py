# backend/spacebook/models/__init__.py
"""
SQLAlchemy models for the Spacebook booking engine.

Importing this package registers every table on ``Base.metadata``.
"""

from .booking import Booking, BookingStatus, PaymentStatus
from .event_outbox import EventOutbox, EventOutboxStatus, NotificationDelivery
from .payment import ChargeRefundState, PaymentRecord, PaymentRecordStatus
from .property import HostPayoutAccount, Property, PropertyStatus
from .revenue import RevenueEntryType, RevenueLedgerEntry, TaxConfig, TaxMode
from .webhook_event import WebhookEvent, WebhookEventStatus

__all__ = [
    "Booking",
    "BookingStatus",
    "ChargeRefundState",
    "EventOutbox",
    "EventOutboxStatus",
    "HostPayoutAccount",
    "NotificationDelivery",
    "PaymentRecord",
    "PaymentRecordStatus",
    "PaymentStatus",
    "Property",
    "PropertyStatus",
    "RevenueEntryType",
    "RevenueLedgerEntry",
    "TaxConfig",
    "TaxMode",
    "WebhookEvent",
    "WebhookEventStatus",
]
