# backend/spacebook/routes/v1/bookings.py
"""
Booking routes - API v1

Versioned booking endpoints under /api/v1/bookings.
All business logic delegated to BookingService.

Endpoints:
    GET /availability - Check whether a window is free
    GET /price-quote - Price a window from the property's stored rates
    GET / - List the caller's bookings (as renter or host)
    POST / - Create a PENDING booking
    GET /{booking_id} - Booking details (parties only)
    POST /{booking_id}/reschedule - Move an unpaid PENDING booking
    POST /{booking_id}/approve - Host approval of a paid booking
    POST /{booking_id}/complete - Mark a CONFIRMED booking as completed (host)
    POST /{booking_id}/cancel - Cancel and settle the refund
"""

from datetime import datetime
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.params import Path

from ...api.dependencies import CurrentUser, get_current_user, get_services
from ...core.exceptions import ForbiddenException, NotFoundException, ValidationException
from ...models.booking import BookingStatus
from ...schemas.booking import (
    AvailabilityResponse,
    BookingCancel,
    BookingCreate,
    BookingReschedule,
    BookingResponse,
    CancellationResponse,
    ConflictingBooking,
    PriceQuoteResponse,
)
from ...services.dependencies import SettlementServices

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["bookings"])

BOOKING_ID = Path(..., min_length=1, max_length=26, description="Booking ULID")


def _window(start_at: datetime, end_at: datetime) -> tuple[datetime, datetime]:
    if start_at.tzinfo is None or end_at.tzinfo is None:
        raise ValidationException("start_at and end_at must include a timezone offset")
    if end_at <= start_at:
        raise ValidationException("End time must be after start time")
    return start_at, end_at


@router.get("/availability", response_model=AvailabilityResponse)
def check_availability(
    property_id: str = Query(..., min_length=1, max_length=26),
    start_at: datetime = Query(...),
    end_at: datetime = Query(...),
    services: SettlementServices = Depends(get_services),
    current_user: CurrentUser = Depends(get_current_user),
) -> AvailabilityResponse:
    start_at, end_at = _window(start_at, end_at)
    result = services.availability.check_availability(property_id, start_at, end_at)
    return AvailabilityResponse(
        property_id=property_id,
        start_at=start_at,
        end_at=end_at,
        available=result.is_available,
        conflicts=[
            ConflictingBooking(
                booking_id=b.id, start_at=b.start_at, end_at=b.end_at, status=b.status
            )
            for b in result.conflicting_bookings
        ],
    )


@router.get("/price-quote", response_model=PriceQuoteResponse)
def price_quote(
    property_id: str = Query(..., min_length=1, max_length=26),
    start_at: datetime = Query(...),
    end_at: datetime = Query(...),
    services: SettlementServices = Depends(get_services),
    current_user: CurrentUser = Depends(get_current_user),
) -> PriceQuoteResponse:
    start_at, end_at = _window(start_at, end_at)
    prop = services.bookings.property_repository.get_by_id(property_id)
    if prop is None:
        raise NotFoundException("Property not found", details={"property_id": property_id})
    pricing = services.bookings.price_calculator.price(prop, start_at, end_at)
    return PriceQuoteResponse(
        property_id=property_id,
        base_amount=pricing.base_amount,
        booker_fee=pricing.booker_fee,
        host_fee=pricing.host_fee,
        total_amount=pricing.total_amount,
        host_payout=pricing.host_payout,
        total_hours=pricing.total_hours,
        tier=pricing.tier,
    )


@router.get("", response_model=List[BookingResponse])
def list_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    services: SettlementServices = Depends(get_services),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[BookingResponse]:
    bookings = services.bookings.list_bookings_for_user(
        current_user.id,
        status=status_filter.value if status_filter else None,
        limit=limit,
        offset=offset,
    )
    return [BookingResponse.model_validate(b) for b in bookings]


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    payload: BookingCreate,
    services: SettlementServices = Depends(get_services),
    current_user: CurrentUser = Depends(get_current_user),
) -> BookingResponse:
    booking = services.bookings.create_booking(current_user.id, payload)
    return BookingResponse.model_validate(booking)


@router.get("/{booking_id}", response_model=BookingResponse)
def get_booking(
    booking_id: str = BOOKING_ID,
    services: SettlementServices = Depends(get_services),
    current_user: CurrentUser = Depends(get_current_user),
) -> BookingResponse:
    booking = services.bookings.get_booking_for_party(booking_id, current_user.id)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/reschedule", response_model=BookingResponse)
def reschedule_booking(
    payload: BookingReschedule,
    booking_id: str = BOOKING_ID,
    services: SettlementServices = Depends(get_services),
    current_user: CurrentUser = Depends(get_current_user),
) -> BookingResponse:
    booking = services.bookings.reschedule_booking(
        booking_id, current_user.id, payload.start_at, payload.end_at
    )
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/approve", response_model=BookingResponse)
def approve_booking(
    booking_id: str = BOOKING_ID,
    services: SettlementServices = Depends(get_services),
    current_user: CurrentUser = Depends(get_current_user),
) -> BookingResponse:
    booking = services.bookings.approve_booking(booking_id, current_user.id)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/complete", response_model=BookingResponse)
def complete_booking(
    booking_id: str = BOOKING_ID,
    services: SettlementServices = Depends(get_services),
    current_user: CurrentUser = Depends(get_current_user),
) -> BookingResponse:
    booking = services.bookings.get_booking(booking_id)
    if booking.host_id != current_user.id and not current_user.is_admin:
        raise ForbiddenException("Only the host can complete this booking")
    booking = services.bookings.complete_booking(booking_id)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/cancel", response_model=CancellationResponse)
def cancel_booking(
    payload: Optional[BookingCancel] = None,
    booking_id: str = BOOKING_ID,
    services: SettlementServices = Depends(get_services),
    current_user: CurrentUser = Depends(get_current_user),
) -> CancellationResponse:
    result = services.bookings.cancel_booking(
        booking_id, current_user.id, reason=payload.reason if payload else None
    )
    logger.info(
        "Cancellation of %s settled: %s/%s", booking_id, result.refund_outcome, result.refund_status
    )
    return CancellationResponse(
        booking=BookingResponse.model_validate(result.booking),
        refund_outcome=str(result.refund_outcome),
        refund_status=result.refund_status,
    )
