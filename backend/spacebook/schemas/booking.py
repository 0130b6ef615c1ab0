# backend/spacebook/schemas/booking.py
"""
Booking request and response schemas.

Requests never carry amounts: prices are always derived server-side from the
property's stored rates.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from pydantic import Field, field_validator, model_validator

from ._strict_base import StrictModel, StrictRequestModel


def _require_aware_utc(value: datetime) -> datetime:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError("datetime must include a timezone offset")
    return value.astimezone(timezone.utc)


class BookingWindow(StrictRequestModel):
    start_at: datetime = Field(..., description="Inclusive start (ISO 8601 with offset)")
    end_at: datetime = Field(..., description="Exclusive end (ISO 8601 with offset)")

    @field_validator("start_at", "end_at")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return _require_aware_utc(value)

    @model_validator(mode="after")
    def _ordered(self) -> "BookingWindow":
        if self.end_at <= self.start_at:
            raise ValueError("end_at must be after start_at")
        return self


class BookingCreate(BookingWindow):
    property_id: str = Field(..., min_length=1, max_length=26)
    special_requests: Optional[str] = Field(None, max_length=2000)
    vehicle_info: Optional[str] = Field(None, max_length=500)


class BookingReschedule(BookingWindow):
    pass


class BookingCancel(StrictRequestModel):
    reason: Optional[str] = Field(None, max_length=1000)


class BookingResponse(StrictModel):
    id: str
    property_id: str
    renter_id: str
    host_id: str
    start_at: datetime
    end_at: datetime
    total_hours: Decimal
    base_amount: Decimal
    service_fee: Decimal
    host_fee: Decimal
    total_amount: Decimal
    currency: str
    status: str
    payment_status: str
    payment_intent_id: Optional[str] = None
    special_requests: Optional[str] = None
    vehicle_info: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None


class CancellationResponse(StrictModel):
    booking: BookingResponse
    refund_outcome: str = Field(..., description="full_refund, host_discretion or not_paid")
    refund_status: str = Field(..., description="refunded, failed, manual or skipped")


class ConflictingBooking(StrictModel):
    booking_id: str
    start_at: datetime
    end_at: datetime
    status: str


class AvailabilityResponse(StrictModel):
    property_id: str
    start_at: datetime
    end_at: datetime
    available: bool
    conflicts: List[ConflictingBooking] = Field(default_factory=list)


class PriceQuoteResponse(StrictModel):
    property_id: str
    base_amount: Decimal
    booker_fee: Decimal
    host_fee: Decimal
    total_amount: Decimal
    host_payout: Decimal
    total_hours: Decimal
    tier: str
