# backend/spacebook/models/booking.py
"""
Booking model for the Spacebook marketplace.

A booking reserves a property for the half-open window ``[start_at, end_at)``.
Amounts are snapshotted from the property's rates when the booking is
created. Bookings are never deleted; cancellation is a status.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from ..core.exceptions import InvalidPaymentTransitionException
from ..database import Base
from .types import TimestampMixin, UTCDateTime


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class PaymentStatus(str, Enum):
    """Settlement state of the booking's charge."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


# Statuses that hold the property's calendar
ACTIVE_BOOKING_STATUSES = (BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    BookingStatus.PENDING.value: frozenset(
        {BookingStatus.CONFIRMED.value, BookingStatus.CANCELLED.value}
    ),
    BookingStatus.CONFIRMED.value: frozenset(
        {BookingStatus.COMPLETED.value, BookingStatus.CANCELLED.value}
    ),
    BookingStatus.CANCELLED.value: frozenset(),
    BookingStatus.COMPLETED.value: frozenset(),
}

# failed is terminal for the attempt; a new intent starts again from pending
PAYMENT_STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    PaymentStatus.PENDING.value: frozenset(
        {PaymentStatus.COMPLETED.value, PaymentStatus.FAILED.value}
    ),
    PaymentStatus.FAILED.value: frozenset(
        {PaymentStatus.PENDING.value, PaymentStatus.COMPLETED.value}
    ),
    PaymentStatus.COMPLETED.value: frozenset({PaymentStatus.REFUNDED.value}),
    PaymentStatus.REFUNDED.value: frozenset(),
}


class Booking(TimestampMixin, Base):
    """Reservation of a property by a renter."""

    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(
        String(26), primary_key=True, default=lambda: str(ulid.ULID())
    )
    property_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("properties.id"), nullable=False
    )
    renter_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    host_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)

    start_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    end_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    total_hours: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    # Price snapshot
    base_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    service_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    host_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="cad")

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BookingStatus.PENDING.value, index=True
    )
    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.PENDING.value
    )
    payment_intent_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, unique=True, comment="Current Stripe payment intent"
    )
    # Bumped whenever the amount changes so a fresh intent is issued
    intent_generation: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    special_requests: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    vehicle_info: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    confirmed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    cancelled_by_id: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Scheduled notification bookkeeping
    reminder_renter_sent_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), nullable=True
    )
    reminder_host_sent_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), nullable=True
    )
    review_request_renter_sent_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), nullable=True
    )
    review_request_host_sent_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), nullable=True
    )

    __table_args__ = (
        CheckConstraint("end_at > start_at", name="ck_bookings_window_positive"),
        Index("ix_bookings_property_window", "property_id", "start_at", "end_at"),
        Index("ix_bookings_status_start", "status", "start_at"),
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_BOOKING_STATUSES

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.COMPLETED.value

    def can_transition_to(self, target: str) -> bool:
        return target in ALLOWED_TRANSITIONS.get(self.status, frozenset())

    def can_transition_payment_to(self, target: str) -> bool:
        if target == self.payment_status:
            return True
        return target in PAYMENT_STATUS_TRANSITIONS.get(self.payment_status, frozenset())

    def move_payment_to(self, target: str) -> None:
        """Set payment_status, refusing moves the transition table does not allow."""
        if not self.can_transition_payment_to(target):
            raise InvalidPaymentTransitionException(self.payment_status, target, booking_id=self.id)
        self.payment_status = target

    def overlaps(self, start_at: datetime, end_at: datetime) -> bool:
        """Half-open overlap test; touching endpoints do not overlap."""
        return self.start_at < end_at and start_at < self.end_at

    def is_party(self, user_id: str) -> bool:
        return user_id in (self.renter_id, self.host_id)

    def __repr__(self) -> str:
        return f"<Booking {self.id} property={self.property_id} status={self.status}>"
