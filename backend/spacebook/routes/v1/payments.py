# backend/spacebook/routes/v1/payments.py
"""
Payment routes - API v1

Endpoints:
    POST /intent - Issue the payment intent for a PENDING booking
    POST /confirm - Finalize a booking after the renter's payment succeeded
    GET /history - Payment records for bookings the caller is party to
"""

from typing import List

from fastapi import APIRouter, Depends, Query

from ...api.dependencies import CurrentUser, get_current_user, get_services
from ...schemas.payment import (
    ConfirmPaymentRequest,
    ConfirmPaymentResponse,
    CreatePaymentIntentRequest,
    PaymentIntentResponse,
    PaymentRecordResponse,
)
from ...services.dependencies import SettlementServices

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/intent", response_model=PaymentIntentResponse)
def create_payment_intent(
    payload: CreatePaymentIntentRequest,
    services: SettlementServices = Depends(get_services),
    current_user: CurrentUser = Depends(get_current_user),
) -> PaymentIntentResponse:
    result = services.stripe.create_payment_intent(payload.booking_id, current_user.id)
    return PaymentIntentResponse(
        payment_intent_id=result.payment_intent_id,
        client_secret=result.client_secret,
        amount_cents=result.amount_cents,
        currency=result.currency,
        destination_charge=result.destination_charge,
    )


@router.post("/confirm", response_model=ConfirmPaymentResponse)
def confirm_payment(
    payload: ConfirmPaymentRequest,
    services: SettlementServices = Depends(get_services),
    current_user: CurrentUser = Depends(get_current_user),
) -> ConfirmPaymentResponse:
    result = services.stripe.confirm_payment(payload.payment_intent_id, current_user.id)
    return ConfirmPaymentResponse(
        booking_id=result.booking.id,
        status=result.booking.status,
        payment_status=result.booking.payment_status,
        already_finalized=result.already_finalized,
        awaiting_approval=result.awaiting_approval,
    )


@router.get("/history", response_model=List[PaymentRecordResponse])
def payment_history(
    limit: int = Query(50, ge=1, le=100),
    services: SettlementServices = Depends(get_services),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[PaymentRecordResponse]:
    records = services.bookings.payment_repository.list_history_for_user(
        current_user.id, limit=limit
    )
    return [PaymentRecordResponse.model_validate(r) for r in records]
