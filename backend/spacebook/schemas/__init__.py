# backend/spacebook/schemas/__init__.py
"""Request and response schemas."""

from .booking import (
    AvailabilityResponse,
    BookingCancel,
    BookingCreate,
    BookingReschedule,
    BookingResponse,
    CancellationResponse,
    PriceQuoteResponse,
)
from .payment import (
    BookingJobResponse,
    ConfirmPaymentRequest,
    ConfirmPaymentResponse,
    CreatePaymentIntentRequest,
    PaymentIntentResponse,
    PaymentRecordResponse,
    TaxConfigResponse,
    WebhookEventResponse,
    WebhookResponse,
)

__all__ = [
    "AvailabilityResponse",
    "BookingCancel",
    "BookingCreate",
    "BookingJobResponse",
    "BookingReschedule",
    "BookingResponse",
    "CancellationResponse",
    "ConfirmPaymentRequest",
    "ConfirmPaymentResponse",
    "CreatePaymentIntentRequest",
    "PaymentIntentResponse",
    "PaymentRecordResponse",
    "PriceQuoteResponse",
    "TaxConfigResponse",
    "WebhookEventResponse",
    "WebhookResponse",
]
