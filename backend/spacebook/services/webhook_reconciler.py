# backend/spacebook/services/webhook_reconciler.py
"""
Stripe webhook reconciliation.

Each delivery is verified, then applied in a single transaction that first
claims the event id in the ``webhook_events`` ledger. The unique key on that
ledger is the only mutual exclusion between concurrent deliveries of the same
event: the loser of the insert sees a duplicate and does nothing.

Domain failures (unknown booking, amount mismatch) are recorded on the ledger
as ``failed`` with an operator alert and acknowledged, so Stripe stops
redelivering an event that can never apply. Persistence failures roll back the
whole transaction, ledger row included, and surface as a 500 so Stripe
redelivers later.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.exceptions import DomainException, ValidationException
from ..models.booking import PaymentStatus
from ..models.payment import PaymentRecordStatus
from ..models.webhook_event import WebhookEventStatus
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .booking_service import BookingService, FinalizeResult
from .notification_service import NotificationService
from .revenue_threshold_monitor import RevenueThresholdMonitor
from .stripe_service import StripeService, stripe_field

logger = logging.getLogger(__name__)

STRIPE_SOURCE = "stripe"

# (outcome, related entity type, related entity id, finalize result)
HandlerResult = Tuple[str, Optional[str], Optional[str], Optional[FinalizeResult]]


@dataclass
class WebhookResult:
    status: str
    event_type: str
    event_id: str


class WebhookReconciler(BaseService):
    """Applies verified Stripe events to bookings, payouts and revenue."""

    def __init__(
        self,
        db: Session,
        *,
        gateway: StripeService,
        booking_service: BookingService,
        revenue_monitor: RevenueThresholdMonitor,
        notification_service: Optional[NotificationService] = None,
    ):
        super().__init__(db)
        self.gateway = gateway
        self.booking_service = booking_service
        self.revenue_monitor = revenue_monitor
        self.notifications = notification_service or booking_service.notifications
        self.webhook_repository = RepositoryFactory.create_webhook_event_repository(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.payout_account_repository = RepositoryFactory.create_payout_account_repository(db)
        self._handlers: Dict[str, Callable[[str, Dict[str, Any]], HandlerResult]] = {
            "payment_intent.succeeded": self._handle_payment_succeeded,
            "payment_intent.payment_failed": self._handle_payment_failed,
            "charge.refunded": self._handle_charge_refunded,
            "account.updated": self._handle_account_updated,
        }

    @BaseService.measure_operation("process_webhook")
    def process(self, payload: bytes, signature: Optional[str]) -> WebhookResult:
        """
        Verify and apply one webhook delivery.

        Raises:
            WebhookSignatureException: bad or missing signature (nothing recorded)
            ValidationException: malformed body (nothing recorded)
            RepositoryException: persistence failure (nothing recorded)
        """
        event = self.gateway.verify_webhook_signature(payload, signature)
        event_id = str(event["id"])
        event_type = str(event["type"])
        data = event.get("data") or {}
        obj = data.get("object") if isinstance(data, dict) else None
        if not isinstance(obj, dict):
            raise ValidationException("Webhook payload has no data object")

        try:
            status, finalize = self._apply(event_id, event_type, event, obj)
        except DomainException as exc:
            status = self._record_failure(event_id, event_type, event, exc)
            finalize = None

        if finalize is not None:
            self.booking_service.settle_after_finalize(finalize)

        prometheus_metrics.record_webhook_event(event_type, status)
        self.logger.info(f"Webhook {event_id} ({event_type}) -> {status}")
        return WebhookResult(status=status, event_type=event_type, event_id=event_id)

    def _apply(
        self, event_id: str, event_type: str, event: Dict[str, Any], obj: Dict[str, Any]
    ) -> Tuple[str, Optional[FinalizeResult]]:
        with self.transaction():
            ledger = self.webhook_repository.claim(
                source=STRIPE_SOURCE, event_id=event_id, event_type=event_type, payload=event
            )
            if ledger is None:
                return "duplicate", None

            handler = self._handlers.get(event_type)
            if handler is None:
                self.webhook_repository.mark_processed(
                    ledger, status=WebhookEventStatus.IGNORED.value
                )
                return WebhookEventStatus.IGNORED.value, None

            outcome, entity_type, entity_id, finalize = handler(event_id, obj)
            self.webhook_repository.mark_processed(
                ledger,
                status=outcome,
                related_entity_type=entity_type,
                related_entity_id=entity_id,
            )
        return outcome, finalize

    def _record_failure(
        self, event_id: str, event_type: str, event: Dict[str, Any], exc: DomainException
    ) -> str:
        """Handler side effects were rolled back; keep the ledger row as failed."""
        self.logger.error(f"Webhook {event_id} ({event_type}) failed: {exc.code}: {exc.message}")
        with self.transaction():
            ledger = self.webhook_repository.claim(
                source=STRIPE_SOURCE, event_id=event_id, event_type=event_type, payload=event
            )
            if ledger is None:
                return "duplicate"
            self.webhook_repository.mark_failed(ledger, f"{exc.code}: {exc.message}")
            self.notifications.ops_alert(
                "webhook_processing_failed",
                event_id,
                event_type=event_type,
                code=exc.code,
                message=exc.message,
                details=exc.details,
            )
        return WebhookEventStatus.FAILED.value

    # ------------------------------------------------------------------ #
    # Handlers
    # ------------------------------------------------------------------ #

    def _handle_payment_succeeded(self, event_id: str, intent: Dict[str, Any]) -> HandlerResult:
        payment_intent_id = intent.get("id")
        if not payment_intent_id:
            raise ValidationException("payment_intent.succeeded without an intent id")
        amount_cents = int(intent.get("amount_received") or intent.get("amount") or 0)
        currency = str(intent.get("currency") or "")
        charge = intent.get("latest_charge")
        charge_id = stripe_field(charge, "id") if isinstance(charge, dict) else charge
        metadata = intent.get("metadata") or {}

        result = self.booking_service.apply_captured_payment(
            payment_intent_id=payment_intent_id,
            amount_cents=amount_cents,
            currency=currency,
            charge_id=charge_id,
            booking_id=metadata.get("booking_id"),
        )
        self.revenue_monitor.record_charge(
            event_id=event_id, charge_id=charge_id, amount_cents=amount_cents, currency=currency
        )
        return WebhookEventStatus.PROCESSED.value, "booking", result.booking.id, result

    def _handle_payment_failed(self, event_id: str, intent: Dict[str, Any]) -> HandlerResult:
        booking = self.booking_service.mark_payment_failed(str(intent.get("id") or ""))
        if booking is None:
            return WebhookEventStatus.IGNORED.value, None, None, None
        return WebhookEventStatus.PROCESSED.value, "booking", booking.id, None

    def _handle_charge_refunded(self, event_id: str, charge: Dict[str, Any]) -> HandlerResult:
        charge_id = charge.get("id")
        if not charge_id:
            raise ValidationException("charge.refunded without a charge id")

        delta = self.revenue_monitor.record_refund(
            event_id=event_id,
            charge_id=charge_id,
            cumulative_refunded_cents=int(charge.get("amount_refunded") or 0),
            currency=str(charge.get("currency") or ""),
        )

        record = self.payment_repository.get_by_charge_id(charge_id)
        if record is None and charge.get("payment_intent"):
            record = self.payment_repository.get_by_payment_intent_id(charge["payment_intent"])
        if record is None:
            return WebhookEventStatus.PROCESSED.value, "charge", charge_id, None

        if charge.get("refunded"):
            if record.status != PaymentRecordStatus.REFUNDED.value:
                self.payment_repository.mark_refunded(record, _latest_refund_id(charge))
            booking = self.booking_repository.get_by_id(record.booking_id, for_update=True)
            if booking is not None and booking.payment_status == PaymentStatus.COMPLETED.value:
                booking.move_payment_to(PaymentStatus.REFUNDED.value)
                self.booking_repository.flush()
        self.logger.info(f"Charge {charge_id} refund applied (delta {delta})")
        return WebhookEventStatus.PROCESSED.value, "booking", record.booking_id, None

    def _handle_account_updated(self, event_id: str, account: Dict[str, Any]) -> HandlerResult:
        account_id = account.get("id")
        ready = bool(
            account.get("charges_enabled")
            and account.get("payouts_enabled")
            and account.get("details_submitted")
        )
        updated = self.payout_account_repository.set_payouts_ready(str(account_id or ""), ready)
        if updated is None:
            self.logger.info(f"account.updated for unknown payout account {account_id}")
            return WebhookEventStatus.IGNORED.value, None, None, None
        return WebhookEventStatus.PROCESSED.value, "host_payout_account", updated.id, None


def _latest_refund_id(charge: Dict[str, Any]) -> Optional[str]:
    refunds = charge.get("refunds") or {}
    data = refunds.get("data") if isinstance(refunds, dict) else None
    if data:
        return data[0].get("id")
    return None
