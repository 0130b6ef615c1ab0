# backend/spacebook/services/booking_service.py
"""
Booking Service for the Spacebook booking engine.

Owns the booking state machine:

    PENDING -> CONFIRMED -> COMPLETED
    PENDING -> CANCELLED
    CONFIRMED -> CANCELLED

A booking is always created PENDING with payment_status=pending. A confirmed
capture either confirms it or, when the property requires approval, leaves it
PENDING until the host approves. COMPLETED and CANCELLED are terminal.

Cancellation runs in phases: the status transition commits first, then any
refund is attempted against the gateway with no transaction open, and the
refund outcome is written in a second transaction. A failed refund never
reverts a cancellation.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import TYPE_CHECKING, Callable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import (
    BookingConflictException,
    BusinessRuleException,
    ForbiddenException,
    InvalidStateTransitionException,
    NotFoundException,
    PaymentIntegrityException,
    ValidationException,
)
from ..models.booking import (
    ACTIVE_BOOKING_STATUSES,
    Booking,
    BookingStatus,
    PaymentStatus,
)
from ..models.property import Property
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.booking_repository import BookingRepository
from ..repositories.factory import RepositoryFactory
from ..repositories.payment_repository import PaymentRepository
from ..repositories.property_repository import PropertyRepository
from ..schemas.booking import BookingCreate
from .availability_checker import AvailabilityChecker
from .base import BaseService
from .notification_service import HOST, RENTER, NotificationService, RefundOutcome
from .pricing_service import PriceCalculator, to_cents

if TYPE_CHECKING:
    from .refund_policy_engine import RefundPolicyEngine, RefundResult

logger = logging.getLogger(__name__)

OVERLAP_CONSTRAINT = "bookings_no_overlap_per_property"
SYSTEM = "system"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class FinalizeResult:
    """Outcome of applying a confirmed capture to a booking."""

    booking: Booking
    already_finalized: bool = False
    awaiting_approval: bool = False
    # Money was captured for a booking that can no longer be honoured
    refund_required: bool = False
    conflict: bool = False


@dataclass
class CancellationResult:
    booking: Booking
    refund_outcome: str
    refund_status: str


class BookingService(BaseService):
    """
    Service layer for booking operations.

    Collaborators are injected by the composition root; defaults are built
    from the session for scripts and tests.
    """

    def __init__(
        self,
        db: Session,
        *,
        availability_checker: Optional[AvailabilityChecker] = None,
        price_calculator: Optional[PriceCalculator] = None,
        notification_service: Optional[NotificationService] = None,
        refund_policy_engine: Optional["RefundPolicyEngine"] = None,
        booking_repository: Optional[BookingRepository] = None,
        property_repository: Optional[PropertyRepository] = None,
        payment_repository: Optional[PaymentRepository] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(db)
        self.repository = booking_repository or RepositoryFactory.create_booking_repository(db)
        self.property_repository = (
            property_repository or RepositoryFactory.create_property_repository(db)
        )
        self.payment_repository = (
            payment_repository or RepositoryFactory.create_payment_repository(db)
        )
        self.availability = availability_checker or AvailabilityChecker(db, self.repository)
        self.price_calculator = price_calculator or PriceCalculator()
        self.notifications = notification_service or NotificationService(db)
        self._refund_policy_engine = refund_policy_engine
        self._now = clock or _utcnow

    @property
    def refund_policy_engine(self) -> "RefundPolicyEngine":
        if self._refund_policy_engine is None:
            from .refund_policy_engine import RefundPolicyEngine

            self._refund_policy_engine = RefundPolicyEngine(
                self.db, notification_service=self.notifications, clock=self._now
            )
        return self._refund_policy_engine

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.repository.get_by_id(booking_id)
        if booking is None:
            raise NotFoundException("Booking not found", details={"booking_id": booking_id})
        return booking

    def get_booking_for_party(self, booking_id: str, caller_id: str) -> Booking:
        booking = self.get_booking(booking_id)
        if not booking.is_party(caller_id):
            raise ForbiddenException("You are not a party to this booking")
        return booking

    def list_bookings_for_user(
        self, user_id: str, *, status: Optional[str] = None, limit: int = 50, offset: int = 0
    ) -> List[Booking]:
        return self.repository.list_for_user(user_id, status=status, limit=limit, offset=offset)

    # ------------------------------------------------------------------ #
    # Creation
    # ------------------------------------------------------------------ #

    def _validate_window(
        self, prop: Property, start_at: datetime, end_at: datetime, now: datetime
    ) -> None:
        if end_at <= start_at:
            raise ValidationException("End time must be after start time")
        if start_at < now:
            raise ValidationException("Cannot book a time in the past")

        hours = (end_at - start_at).total_seconds() / 3600
        min_hours = prop.min_booking_hours or 1
        max_days = prop.max_booking_days or 30
        if hours < min_hours:
            raise ValidationException(
                f"Minimum booking duration is {min_hours} hour(s)",
                details={"min_booking_hours": min_hours},
            )
        if hours > max_days * 24:
            raise ValidationException(
                f"Maximum booking duration is {max_days} day(s)",
                details={"max_booking_days": max_days},
            )

    def _resolve_integrity_conflict(self, exc: IntegrityError) -> bool:
        """True when the IntegrityError came from the per-property overlap constraint."""
        orig = getattr(exc, "orig", None)
        diag = getattr(orig, "diag", None)
        constraint_name = getattr(diag, "constraint_name", "") if diag is not None else ""
        if constraint_name == OVERLAP_CONSTRAINT:
            return True
        return OVERLAP_CONSTRAINT in str(orig or exc)

    @BaseService.measure_operation("create_booking")
    def create_booking(self, renter_id: str, data: BookingCreate) -> Booking:
        """
        Create a PENDING booking for ``renter_id``.

        The property row is locked for the whole transaction so the
        availability check and the insert cannot interleave with another
        request for the same property; the overlap exclusion constraint
        backs this up at the database level.

        Raises:
            NotFoundException, ValidationException, ForbiddenException,
            BookingConflictException, NoPricingConfiguredException
        """
        now = self._now()
        try:
            with self.transaction():
                prop = self.property_repository.lock_for_booking(data.property_id)
                if prop is None:
                    raise NotFoundException(
                        "Property not found", details={"property_id": data.property_id}
                    )
                if not prop.is_bookable:
                    raise BusinessRuleException("This space is not available for booking")
                if prop.host_id == renter_id:
                    raise ForbiddenException("You cannot book your own space")

                self._validate_window(prop, data.start_at, data.end_at, now)
                self.availability.ensure_available(prop.id, data.start_at, data.end_at)
                pricing = self.price_calculator.price(prop, data.start_at, data.end_at)

                try:
                    booking = self.repository.create_booking(
                        property_id=prop.id,
                        renter_id=renter_id,
                        host_id=prop.host_id,
                        start_at=data.start_at,
                        end_at=data.end_at,
                        total_hours=pricing.total_hours,
                        base_amount=pricing.base_amount,
                        service_fee=pricing.booker_fee,
                        host_fee=pricing.host_fee,
                        total_amount=pricing.total_amount,
                        currency=settings.stripe_currency,
                        status=BookingStatus.PENDING.value,
                        payment_status=PaymentStatus.PENDING.value,
                        special_requests=data.special_requests,
                        vehicle_info=data.vehicle_info,
                    )
                except IntegrityError as exc:
                    if self._resolve_integrity_conflict(exc):
                        raise BookingConflictException() from exc
                    raise
                self.notifications.booking_requested(booking)
        except BookingConflictException:
            prometheus_metrics.record_booking_conflict("create")
            raise

        self.logger.info(
            "Created booking %s for property %s (%s - %s) total=%s",
            booking.id,
            booking.property_id,
            booking.start_at.isoformat(),
            booking.end_at.isoformat(),
            booking.total_amount,
        )
        return booking

    @BaseService.measure_operation("reschedule_booking")
    def reschedule_booking(
        self, booking_id: str, renter_id: str, start_at: datetime, end_at: datetime
    ) -> Booking:
        """
        Move an unpaid PENDING booking to a new window.

        The booking is re-priced and its payment intent is dropped, so the
        renter must request a fresh intent for the new amount.
        """
        now = self._now()
        try:
            with self.transaction():
                booking = self.repository.get_by_id(booking_id, for_update=True)
                if booking is None:
                    raise NotFoundException("Booking not found", details={"booking_id": booking_id})
                if booking.renter_id != renter_id:
                    raise ForbiddenException("Only the renter can reschedule a booking")
                if booking.status != BookingStatus.PENDING.value:
                    raise InvalidStateTransitionException(
                        booking.status, "rescheduled", booking_id=booking.id
                    )
                if booking.payment_status not in (
                    PaymentStatus.PENDING.value,
                    PaymentStatus.FAILED.value,
                ):
                    raise BusinessRuleException("Paid bookings cannot be rescheduled")

                prop = self.property_repository.lock_for_booking(booking.property_id)
                if prop is None:
                    raise NotFoundException("Property not found")
                self._validate_window(prop, start_at, end_at, now)
                self.availability.ensure_available(
                    prop.id, start_at, end_at, exclude_booking_id=booking.id
                )
                pricing = self.price_calculator.price(prop, start_at, end_at)

                booking.start_at = start_at
                booking.end_at = end_at
                booking.total_hours = pricing.total_hours
                booking.base_amount = pricing.base_amount
                booking.service_fee = pricing.booker_fee
                booking.host_fee = pricing.host_fee
                booking.total_amount = pricing.total_amount
                booking.payment_intent_id = None
                booking.move_payment_to(PaymentStatus.PENDING.value)
                booking.intent_generation = (booking.intent_generation or 0) + 1
                try:
                    self.repository.flush()
                except Exception as exc:
                    cause = exc.__cause__
                    if isinstance(cause, IntegrityError) and self._resolve_integrity_conflict(
                        cause
                    ):
                        raise BookingConflictException() from exc
                    raise
        except BookingConflictException:
            prometheus_metrics.record_booking_conflict("reschedule")
            raise
        return booking

    # ------------------------------------------------------------------ #
    # Payment settlement
    # ------------------------------------------------------------------ #

    def _load_for_payment(self, payment_intent_id: str, booking_id: Optional[str]) -> Booking:
        booking = self.repository.get_by_payment_intent_id(payment_intent_id, for_update=True)
        if booking is not None:
            if booking_id and booking.id != booking_id:
                raise PaymentIntegrityException(
                    "Payment intent metadata points at a different booking",
                    details={
                        "payment_intent_id": payment_intent_id,
                        "booking_id": booking.id,
                        "metadata_booking_id": booking_id,
                    },
                )
            return booking

        if booking_id:
            candidate = self.repository.get_by_id(booking_id, for_update=True)
            if candidate is not None:
                # Metadata is only an audit hint; the intent must be the one we issued
                raise PaymentIntegrityException(
                    "Payment intent is not the booking's current intent",
                    details={
                        "payment_intent_id": payment_intent_id,
                        "booking_id": booking_id,
                        "current_payment_intent_id": candidate.payment_intent_id,
                    },
                )
        raise NotFoundException(
            "No booking for payment intent", details={"payment_intent_id": payment_intent_id}
        )

    def apply_captured_payment(
        self,
        *,
        payment_intent_id: str,
        amount_cents: int,
        currency: str,
        charge_id: Optional[str] = None,
        booking_id: Optional[str] = None,
    ) -> FinalizeResult:
        """
        Apply a confirmed capture inside the caller's transaction.

        Idempotent: a booking already completed or refunded is returned as-is.
        The captured amount must equal the stored total exactly.

        Raises:
            NotFoundException: no booking owns the intent
            PaymentIntegrityException: amount, currency or ownership mismatch
        """
        booking = self._load_for_payment(payment_intent_id, booking_id)

        if booking.payment_status in (PaymentStatus.COMPLETED.value, PaymentStatus.REFUNDED.value):
            self.logger.info(
                "Payment for booking %s already finalized (%s)",
                booking.id,
                booking.payment_status,
            )
            return FinalizeResult(booking=booking, already_finalized=True)

        expected_cents = to_cents(booking.total_amount)
        if int(amount_cents) != expected_cents or currency.lower() != booking.currency.lower():
            self.logger.error(
                "Payment integrity failure for booking %s: captured %s %s, expected %s %s",
                booking.id,
                amount_cents,
                currency,
                expected_cents,
                booking.currency,
            )
            raise PaymentIntegrityException(
                "Captured amount does not match the booking total",
                details={
                    "booking_id": booking.id,
                    "payment_intent_id": payment_intent_id,
                    "captured_cents": int(amount_cents),
                    "expected_cents": expected_cents,
                    "captured_currency": currency,
                    "expected_currency": booking.currency,
                },
            )

        self.payment_repository.record_payment(
            booking_id=booking.id,
            amount=booking.total_amount,
            currency=booking.currency,
            payment_intent_id=payment_intent_id,
            charge_id=charge_id,
        )
        booking.move_payment_to(PaymentStatus.COMPLETED.value)

        if booking.status not in ACTIVE_BOOKING_STATUSES:
            self.logger.warning(
                "Captured payment %s for booking %s in status %s; refunding",
                payment_intent_id,
                booking.id,
                booking.status,
            )
            self.notifications.ops_alert(
                "payment_captured_for_inactive_booking",
                booking.id,
                payment_intent_id=payment_intent_id,
                booking_status=booking.status,
            )
            self.repository.flush()
            return FinalizeResult(booking=booking, refund_required=True)

        result = self.availability.check_availability(
            booking.property_id, booking.start_at, booking.end_at, exclude_booking_id=booking.id
        )
        if result.has_conflict:
            prometheus_metrics.record_booking_conflict("finalize")
            self.logger.error(
                "Booking %s overlaps %s at payment finalization; cancelling and refunding",
                booking.id,
                [b.id for b in result.conflicting_bookings],
            )
            now = self._now()
            booking.status = BookingStatus.CANCELLED.value
            booking.cancelled_at = now
            booking.cancellation_reason = "Window no longer available at payment confirmation"
            self.notifications.ops_alert(
                "booking_conflict_at_finalize",
                booking.id,
                conflicting_booking_ids=[b.id for b in result.conflicting_bookings],
            )
            self.repository.flush()
            return FinalizeResult(booking=booking, refund_required=True, conflict=True)

        prop = self.property_repository.get_by_id(booking.property_id)
        awaiting_approval = bool(prop and prop.require_approval)
        if not awaiting_approval and booking.status == BookingStatus.PENDING.value:
            booking.status = BookingStatus.CONFIRMED.value
            booking.confirmed_at = self._now()
        self.repository.flush()
        self.notifications.payment_completed(booking, awaiting_approval=awaiting_approval)

        self.logger.info(
            "Finalized payment %s for booking %s (status=%s)",
            payment_intent_id,
            booking.id,
            booking.status,
        )
        return FinalizeResult(booking=booking, awaiting_approval=awaiting_approval)

    @BaseService.measure_operation("finalize_payment")
    def finalize_payment(
        self,
        *,
        payment_intent_id: str,
        amount_cents: int,
        currency: str,
        charge_id: Optional[str] = None,
        booking_id: Optional[str] = None,
    ) -> FinalizeResult:
        """Committing variant of :meth:`apply_captured_payment`."""
        with self.transaction():
            result = self.apply_captured_payment(
                payment_intent_id=payment_intent_id,
                amount_cents=amount_cents,
                currency=currency,
                charge_id=charge_id,
                booking_id=booking_id,
            )
        self.settle_after_finalize(result)
        return result

    def settle_after_finalize(self, result: FinalizeResult) -> None:
        """Refund captures that could not be honoured. Runs after commit."""
        if result.refund_required:
            self.refund_policy_engine.process_cancellation(
                result.booking.id, cancelled_by_role=SYSTEM, force_full_refund=True
            )

    def mark_payment_failed(self, payment_intent_id: str) -> Optional[Booking]:
        """
        Record a failed capture attempt inside the caller's transaction.

        Only a pending payment moves to failed; booking status is untouched.
        """
        booking = self.repository.get_by_payment_intent_id(payment_intent_id, for_update=True)
        if booking is None:
            self.logger.warning("Payment failure for unknown intent %s", payment_intent_id)
            return None
        if booking.payment_status != PaymentStatus.PENDING.value:
            self.logger.info(
                "Ignoring payment failure for booking %s in payment status %s",
                booking.id,
                booking.payment_status,
            )
            return booking
        booking.move_payment_to(PaymentStatus.FAILED.value)
        self.repository.flush()
        return booking

    # ------------------------------------------------------------------ #
    # Transitions
    # ------------------------------------------------------------------ #

    @BaseService.measure_operation("approve_booking")
    def approve_booking(self, booking_id: str, host_id: str) -> Booking:
        """Host approval of a paid PENDING booking."""
        with self.transaction():
            booking = self.repository.get_by_id(booking_id, for_update=True)
            if booking is None:
                raise NotFoundException("Booking not found", details={"booking_id": booking_id})
            if booking.host_id != host_id:
                raise ForbiddenException("Only the host can approve this booking")
            if booking.status != BookingStatus.PENDING.value or not booking.is_paid:
                raise InvalidStateTransitionException(
                    booking.status, BookingStatus.CONFIRMED.value, booking_id=booking.id
                )
            moved = self.repository.transition_status(
                booking.id,
                expected_statuses=[BookingStatus.PENDING.value],
                values={"status": BookingStatus.CONFIRMED.value, "confirmed_at": self._now()},
            )
            if not moved:
                raise InvalidStateTransitionException(
                    booking.status, BookingStatus.CONFIRMED.value, booking_id=booking.id
                )
            self.notifications.booking_confirmed(booking)
        return booking

    @BaseService.measure_operation("complete_booking")
    def complete_booking(self, booking_id: str) -> Booking:
        """Stay ended: CONFIRMED -> COMPLETED."""
        with self.transaction():
            booking = self.get_booking(booking_id)
            if not booking.can_transition_to(BookingStatus.COMPLETED.value):
                raise InvalidStateTransitionException(
                    booking.status, BookingStatus.COMPLETED.value, booking_id=booking.id
                )
            moved = self.repository.transition_status(
                booking.id,
                expected_statuses=[BookingStatus.CONFIRMED.value],
                values={"status": BookingStatus.COMPLETED.value, "completed_at": self._now()},
            )
            if not moved:
                raise InvalidStateTransitionException(
                    booking.status, BookingStatus.COMPLETED.value, booking_id=booking.id
                )
        return booking

    def _commit_cancellation(
        self,
        booking_id: str,
        *,
        cancelled_by_id: Optional[str],
        role: str,
        reason: Optional[str],
        released: bool = False,
    ) -> tuple[Booking, bool]:
        """Phase 1: move to CANCELLED and commit. Returns (booking, was_paid)."""
        with self.transaction():
            booking = self.repository.get_by_id(booking_id, for_update=True)
            if booking is None:
                raise NotFoundException("Booking not found", details={"booking_id": booking_id})
            if not booking.can_transition_to(BookingStatus.CANCELLED.value):
                raise InvalidStateTransitionException(
                    booking.status, BookingStatus.CANCELLED.value, booking_id=booking.id
                )
            moved = self.repository.transition_status(
                booking.id,
                expected_statuses=ACTIVE_BOOKING_STATUSES,
                values={
                    "status": BookingStatus.CANCELLED.value,
                    "cancelled_at": self._now(),
                    "cancelled_by_id": cancelled_by_id,
                    "cancellation_reason": reason,
                },
            )
            if not moved:
                self.db.refresh(booking)
                raise InvalidStateTransitionException(
                    booking.status, BookingStatus.CANCELLED.value, booking_id=booking.id
                )
            # A capture may have committed after the read above
            self.db.refresh(booking)
            was_paid = booking.is_paid
            if not was_paid:
                if released:
                    self.notifications.booking_released(booking)
                elif role == SYSTEM:
                    self.notifications.booking_auto_cancelled(
                        booking, refund_outcome=RefundOutcome.NOT_PAID
                    )
                else:
                    self.notifications.booking_cancelled(
                        booking, cancelled_by_role=role, refund_outcome=RefundOutcome.NOT_PAID
                    )
        return booking, was_paid

    def _refund_after_cancel(
        self, booking: Booking, role: str, force_full_refund: bool
    ) -> "RefundResult":
        """Phase 2 and 3: gateway refund outside any transaction, then record it."""
        return self.refund_policy_engine.process_cancellation(
            booking.id, cancelled_by_role=role, force_full_refund=force_full_refund
        )

    @BaseService.measure_operation("cancel_booking")
    def cancel_booking(
        self, booking_id: str, caller_id: str, reason: Optional[str] = None
    ) -> CancellationResult:
        """
        Cancel a booking on behalf of its renter or host.

        Refund eligibility is decided after the cancellation has committed.
        """
        booking = self.get_booking(booking_id)
        if booking.renter_id == caller_id:
            role = RENTER
        elif booking.host_id == caller_id:
            role = HOST
        else:
            raise ForbiddenException("You are not a party to this booking")

        booking, was_paid = self._commit_cancellation(
            booking_id, cancelled_by_id=caller_id, role=role, reason=reason
        )
        self.logger.info("Booking %s cancelled by %s", booking.id, role)
        if not was_paid:
            return CancellationResult(booking, RefundOutcome.NOT_PAID, "skipped")

        refund = self._refund_after_cancel(booking, role, force_full_refund=False)
        return CancellationResult(booking, refund.outcome, refund.status)

    def cancel_by_system(
        self, booking_id: str, reason: str, *, released: bool = False
    ) -> CancellationResult:
        """
        Cancel on behalf of the platform (auto-cancel, unpaid release).

        A paid booking always gets a full refund. ``released`` marks an unpaid
        hold that expired, which only the renter hears about.
        """
        booking, was_paid = self._commit_cancellation(
            booking_id, cancelled_by_id=None, role=SYSTEM, reason=reason, released=released
        )
        if not was_paid:
            return CancellationResult(booking, RefundOutcome.NOT_PAID, "skipped")
        refund = self._refund_after_cancel(booking, SYSTEM, force_full_refund=True)
        return CancellationResult(booking, refund.outcome, refund.status)

    # ------------------------------------------------------------------ #
    # Scheduled job helpers
    # ------------------------------------------------------------------ #

    def pending_bookings_to_auto_cancel(self) -> List[Booking]:
        cutoff = self._now() + timedelta(hours=settings.pending_auto_cancel_hours)
        return self.repository.find_pending_starting_before(cutoff)

    def unpaid_bookings_to_release(self) -> List[Booking]:
        cutoff = self._now() - timedelta(minutes=settings.unpaid_pending_ttl_minutes)
        return self.repository.find_unpaid_pending_created_before(cutoff)
