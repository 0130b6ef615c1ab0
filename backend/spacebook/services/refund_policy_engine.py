# backend/spacebook/services/refund_policy_engine.py
"""Refund policy evaluation and execution for cancelled bookings."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import GatewayException, NotFoundException
from ..models.booking import Booking, BookingStatus, PaymentStatus
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.booking_repository import BookingRepository
from ..repositories.factory import RepositoryFactory
from ..repositories.payment_repository import PaymentRepository
from .base import BaseService
from .notification_service import NotificationService, RefundOutcome
from .pricing_service import to_cents

if TYPE_CHECKING:
    from .stripe_service import StripeService

SYSTEM = "system"


@dataclass(frozen=True)
class RefundDecision:
    eligible: bool
    automatic: bool = False
    hours_until_start: float = 0.0
    amount_cents: int = 0
    reason: Optional[str] = None

    def to_payload(self) -> dict[str, object]:
        return {
            "eligible": self.eligible,
            "automatic": self.automatic,
            "hours_until_start": round(self.hours_until_start, 2),
            "amount_cents": int(self.amount_cents),
            "reason": self.reason,
        }


@dataclass
class RefundResult:
    booking_id: str
    status: str
    outcome: str
    refund_id: Optional[str] = None
    decision: Optional[RefundDecision] = None


class RefundPolicyEngine(BaseService):
    """
    Decides whether a cancellation is refunded automatically and carries it out.

    Cancellations at least ``refund_window_hours`` before start get a full
    automatic refund of the captured total. Closer cancellations are left to
    the host's discretion and never touch the gateway. System cancellations
    always refund in full.
    """

    def __init__(
        self,
        db: Session,
        gateway: Optional["StripeService"] = None,
        *,
        notification_service: Optional[NotificationService] = None,
        booking_repository: Optional[BookingRepository] = None,
        payment_repository: Optional[PaymentRepository] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(db)
        self._gateway = gateway
        self.notifications = notification_service or NotificationService(db)
        self.booking_repository = (
            booking_repository or RepositoryFactory.create_booking_repository(db)
        )
        self.payment_repository = (
            payment_repository or RepositoryFactory.create_payment_repository(db)
        )
        self._now = clock or (lambda: datetime.now(timezone.utc))

    @property
    def gateway(self) -> "StripeService":
        if self._gateway is None:
            from .stripe_service import StripeService

            self._gateway = StripeService(self.db)
        return self._gateway

    def evaluate(
        self, booking: Booking, now: datetime, force_full_refund: bool = False
    ) -> RefundDecision:
        """Pure policy decision; reads only the booking and the clock."""
        hours_until_start = (booking.start_at - now).total_seconds() / 3600

        if booking.payment_status != PaymentStatus.COMPLETED.value:
            return RefundDecision(
                eligible=False,
                hours_until_start=hours_until_start,
                reason=f"payment_{booking.payment_status}",
            )
        if booking.status == BookingStatus.COMPLETED.value:
            return RefundDecision(
                eligible=False, hours_until_start=hours_until_start, reason="booking_completed"
            )

        amount_cents = to_cents(booking.total_amount)
        if force_full_refund:
            return RefundDecision(
                eligible=True,
                automatic=True,
                hours_until_start=hours_until_start,
                amount_cents=amount_cents,
                reason="system_cancellation",
            )
        if hours_until_start >= settings.refund_window_hours:
            return RefundDecision(
                eligible=True,
                automatic=True,
                hours_until_start=hours_until_start,
                amount_cents=amount_cents,
                reason="outside_refund_window",
            )
        return RefundDecision(
            eligible=True,
            automatic=False,
            hours_until_start=hours_until_start,
            amount_cents=amount_cents,
            reason="inside_refund_window",
        )

    def _notify_cancellation(self, booking: Booking, role: str, outcome: str) -> None:
        if role == SYSTEM:
            self.notifications.booking_auto_cancelled(booking, refund_outcome=outcome)
        else:
            self.notifications.booking_cancelled(
                booking, cancelled_by_role=role, refund_outcome=outcome
            )

    @BaseService.measure_operation("process_cancellation_refund")
    def process_cancellation(
        self,
        booking_id: str,
        *,
        cancelled_by_role: str,
        now: Optional[datetime] = None,
        force_full_refund: bool = False,
        notify: bool = True,
    ) -> RefundResult:
        """
        Apply the refund policy to a booking whose cancellation already committed.

        The gateway call happens with no transaction open. Its outcome is
        recorded afterwards in a short transaction of its own; a gateway
        failure leaves the booking CANCELLED with payment still completed and
        raises an operator alert.
        """
        now = now or self._now()
        with self.transaction():
            booking = self.booking_repository.get_by_id(booking_id)
            if booking is None:
                raise NotFoundException("Booking not found", details={"booking_id": booking_id})
            decision = self.evaluate(booking, now, force_full_refund=force_full_refund)
            payment_intent_id = booking.payment_intent_id

            if not decision.eligible:
                outcome = (
                    RefundOutcome.FULL
                    if booking.payment_status == PaymentStatus.REFUNDED.value
                    else RefundOutcome.NOT_PAID
                )
                return RefundResult(booking.id, "skipped", outcome, decision=decision)

            if not decision.automatic:
                if notify:
                    self._notify_cancellation(
                        booking, cancelled_by_role, RefundOutcome.HOST_DISCRETION
                    )
                prometheus_metrics.record_refund("manual")
                self.logger.info(
                    "Booking %s cancelled %.1fh before start; refund left to host",
                    booking.id,
                    decision.hours_until_start,
                )
                return RefundResult(
                    booking.id, "manual", RefundOutcome.HOST_DISCRETION, decision=decision
                )

        try:
            refund = self.gateway.create_refund(
                payment_intent_id=payment_intent_id,
                amount_cents=decision.amount_cents,
                idempotency_key=f"booking:{booking_id}:cancel-refund",
                metadata={"booking_id": booking_id, "cancelled_by": cancelled_by_role},
            )
        except GatewayException as exc:
            self.logger.error(
                "Refund failed for booking %s (intent %s): %s",
                booking_id,
                payment_intent_id,
                exc.message,
            )
            with self.transaction():
                self.notifications.ops_alert(
                    "refund_failed",
                    booking_id,
                    payment_intent_id=payment_intent_id,
                    amount_cents=decision.amount_cents,
                    error=exc.message,
                )
                if notify:
                    self._notify_cancellation(booking, cancelled_by_role, RefundOutcome.FULL)
            prometheus_metrics.record_refund("failed")
            return RefundResult(booking_id, "failed", RefundOutcome.FULL, decision=decision)

        refund_id = _refund_id(refund)
        with self.transaction():
            locked = self.booking_repository.get_by_id(booking_id, for_update=True)
            if locked is None:
                raise NotFoundException("Booking not found", details={"booking_id": booking_id})
            if locked.payment_status == PaymentStatus.COMPLETED.value:
                locked.move_payment_to(PaymentStatus.REFUNDED.value)
            record = self.payment_repository.get_for_booking(booking_id)
            if record is not None:
                self.payment_repository.mark_refunded(record, refund_id)
            self.booking_repository.flush()
            if notify:
                self._notify_cancellation(locked, cancelled_by_role, RefundOutcome.FULL)
                self.notifications.refund_issued(locked, refund_id=refund_id)

        prometheus_metrics.record_refund("refunded")
        self.logger.info(
            "Refunded %s cents for booking %s (refund %s, requested by %s)",
            decision.amount_cents,
            booking_id,
            refund_id,
            cancelled_by_role,
        )
        return RefundResult(
            booking_id, "refunded", RefundOutcome.FULL, refund_id=refund_id, decision=decision
        )


def _refund_id(refund: Any) -> Optional[str]:
    if isinstance(refund, dict):
        return refund.get("id")
    return getattr(refund, "id", None)
