# backend/spacebook/services/notification_service.py
"""
Booking notification enqueueing.

Every method writes an outbox row in the caller's open transaction; nothing is
sent here. The Celery dispatcher delivers rows after commit, so a rolled back
transition never produces a message and a delivery failure never touches
booking or payment state.
"""

from __future__ import annotations

from typing import Any, Optional

from sqlalchemy.orm import Session

from ..models.booking import Booking
from ..repositories.event_outbox_repository import EventOutboxRepository
from ..repositories.factory import RepositoryFactory
from .base import BaseService

RENTER = "renter"
HOST = "host"


class NotificationEvent:
    BOOKING_REQUESTED = "booking.requested"
    BOOKING_PAID = "booking.paid"
    BOOKING_AWAITING_APPROVAL = "booking.awaiting_approval"
    BOOKING_CONFIRMED = "booking.confirmed"
    BOOKING_CANCELLED = "booking.cancelled"
    BOOKING_AUTO_CANCELLED = "booking.auto_cancelled"
    BOOKING_RELEASED = "booking.released"
    BOOKING_REMINDER = "booking.reminder"
    REVIEW_REQUEST = "booking.review_request"
    PAYMENT_RECEIPT = "payment.receipt"
    REFUND_ISSUED = "payment.refund_issued"
    OPS_ALERT = "ops.alert"


class RefundOutcome:
    FULL = "full_refund"
    HOST_DISCRETION = "host_discretion"
    NOT_PAID = "not_paid"


def booking_payload(booking: Booking, **extra: Any) -> dict[str, Any]:
    """Structured payload shared by booking notifications."""
    payload: dict[str, Any] = {
        "booking_id": booking.id,
        "property_id": booking.property_id,
        "renter_id": booking.renter_id,
        "host_id": booking.host_id,
        "start_at": booking.start_at.isoformat(),
        "end_at": booking.end_at.isoformat(),
        "status": booking.status,
        "payment_status": booking.payment_status,
        "currency": booking.currency,
        "base_amount": str(booking.base_amount),
        "service_fee": str(booking.service_fee),
        "host_fee": str(booking.host_fee),
        "total_amount": str(booking.total_amount),
        "host_payout": str(booking.base_amount - booking.host_fee),
    }
    payload.update(extra)
    return payload


class NotificationService(BaseService):
    """Writes booking and payment notifications to the outbox."""

    def __init__(self, db: Session, outbox_repository: Optional[EventOutboxRepository] = None):
        super().__init__(db)
        self.outbox = outbox_repository or RepositoryFactory.create_event_outbox_repository(db)

    def _enqueue(
        self,
        event_type: str,
        booking: Booking,
        recipient: str,
        key_suffix: str = "",
        **extra: Any,
    ) -> None:
        recipient_id = booking.renter_id if recipient == RENTER else booking.host_id
        key = f"{event_type}:{booking.id}:{recipient}"
        if key_suffix:
            key = f"{key}:{key_suffix}"
        self.outbox.enqueue(
            event_type=event_type,
            aggregate_id=booking.id,
            payload=booking_payload(
                booking, recipient_role=recipient, recipient_id=recipient_id, **extra
            ),
            idempotency_key=key,
        )

    def booking_requested(self, booking: Booking) -> None:
        self._enqueue(NotificationEvent.BOOKING_REQUESTED, booking, RENTER)
        self._enqueue(NotificationEvent.BOOKING_REQUESTED, booking, HOST)

    def payment_completed(self, booking: Booking, *, awaiting_approval: bool) -> None:
        self._enqueue(NotificationEvent.PAYMENT_RECEIPT, booking, RENTER)
        if awaiting_approval:
            self._enqueue(NotificationEvent.BOOKING_AWAITING_APPROVAL, booking, HOST)
        else:
            self._enqueue(NotificationEvent.BOOKING_PAID, booking, HOST)

    def booking_confirmed(self, booking: Booking) -> None:
        self._enqueue(NotificationEvent.BOOKING_CONFIRMED, booking, RENTER)

    def booking_cancelled(
        self, booking: Booking, *, cancelled_by_role: str, refund_outcome: str
    ) -> None:
        counterparty = HOST if cancelled_by_role == RENTER else RENTER
        self._enqueue(
            NotificationEvent.BOOKING_CANCELLED,
            booking,
            counterparty,
            cancelled_by=cancelled_by_role,
            refund_outcome=refund_outcome,
        )

    def booking_auto_cancelled(self, booking: Booking, *, refund_outcome: str) -> None:
        for recipient in (RENTER, HOST):
            self._enqueue(
                NotificationEvent.BOOKING_AUTO_CANCELLED,
                booking,
                recipient,
                refund_outcome=refund_outcome,
            )

    def booking_released(self, booking: Booking) -> None:
        self._enqueue(NotificationEvent.BOOKING_RELEASED, booking, RENTER)

    def refund_issued(self, booking: Booking, *, refund_id: Optional[str]) -> None:
        self._enqueue(NotificationEvent.REFUND_ISSUED, booking, RENTER, refund_id=refund_id)

    def reminder(self, booking: Booking, recipient: str) -> None:
        self._enqueue(NotificationEvent.BOOKING_REMINDER, booking, recipient)

    def review_request(self, booking: Booking, recipient: str) -> None:
        self._enqueue(NotificationEvent.REVIEW_REQUEST, booking, recipient)

    def ops_alert(self, alert: str, aggregate_id: str, **details: Any) -> None:
        """Operator-facing alert (refund failures, integrity problems)."""
        self.outbox.enqueue(
            event_type=NotificationEvent.OPS_ALERT,
            aggregate_id=aggregate_id,
            payload={"alert": alert, "aggregate_id": aggregate_id, **details},
            idempotency_key=f"{NotificationEvent.OPS_ALERT}:{alert}:{aggregate_id}",
        )
