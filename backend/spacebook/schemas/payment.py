# backend/spacebook/schemas/payment.py
"""Payment, webhook, job and tax configuration schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import Field

from ._strict_base import StrictModel, StrictRequestModel


class CreatePaymentIntentRequest(StrictRequestModel):
    booking_id: str = Field(..., min_length=1, max_length=26)


class PaymentIntentResponse(StrictModel):
    payment_intent_id: str
    client_secret: Optional[str] = None
    amount_cents: int
    currency: str
    destination_charge: bool = Field(
        ..., description="True when the host's share is transferred with the charge"
    )


class ConfirmPaymentRequest(StrictRequestModel):
    payment_intent_id: str = Field(..., min_length=1, max_length=255)


class ConfirmPaymentResponse(StrictModel):
    booking_id: str
    status: str
    payment_status: str
    already_finalized: bool
    awaiting_approval: bool


class PaymentRecordResponse(StrictModel):
    id: str
    booking_id: str
    amount: Decimal
    currency: str
    stripe_payment_intent_id: str
    status: str
    stripe_refund_id: Optional[str] = None
    created_at: Optional[datetime] = None


class WebhookResponse(StrictModel):
    status: str
    event_type: str
    event_id: str


class BookingJobResponse(StrictModel):
    released: int
    auto_cancelled: int
    reminders_sent: int
    review_requests_sent: int
    errors: int


class TaxConfigResponse(StrictModel):
    tax_mode: str
    revenue_cents: int
    threshold_cents: int
    tax_effective_at: Optional[datetime] = None
    revenue_last_synced_at: Optional[datetime] = None


class WebhookEventResponse(StrictModel):
    id: str
    source: str
    event_id: str
    event_type: str
    status: str
    processing_error: Optional[str] = None
    related_entity_type: Optional[str] = None
    related_entity_id: Optional[str] = None
    received_at: datetime
    processed_at: Optional[datetime] = None
