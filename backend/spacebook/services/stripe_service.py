# backend/spacebook/services/stripe_service.py
"""
Stripe integration for booking payments.

Every call goes through an injected ``stripe.StripeClient`` configured with
``max_network_retries=0`` and a bounded HTTP timeout. The gateway is never
retried synchronously; refunds and intents carry idempotency keys so a
repeated request from our side cannot double-charge or double-refund.

Payment intent metadata is written for audit only. Bookings are always
resolved through the intent id stored locally.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
import json
import logging
from typing import TYPE_CHECKING, Any, Dict, Iterator, Optional

from sqlalchemy.orm import Session
import stripe

from ..core.config import settings
from ..core.exceptions import (
    BookingConflictException,
    BusinessRuleException,
    ForbiddenException,
    GatewayException,
    InvalidStateTransitionException,
    NotFoundException,
    ServiceException,
    ValidationException,
    WebhookSignatureException,
)
from ..models.booking import BookingStatus, PaymentStatus
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .pricing_service import to_cents

if TYPE_CHECKING:
    from .booking_service import BookingService, FinalizeResult

logger = logging.getLogger(__name__)


def build_stripe_client() -> stripe.StripeClient:
    """Create the process-wide Stripe client from settings."""
    secret = settings.stripe_secret_key.get_secret_value()
    if not secret:
        raise ServiceException(
            "Stripe service not configured. Please check STRIPE_SECRET_KEY environment variable."
        )
    return stripe.StripeClient(
        secret,
        max_network_retries=0,
        http_client=stripe.RequestsClient(timeout=settings.stripe_timeout_seconds),
    )


@lru_cache(maxsize=1)
def get_shared_stripe_client() -> stripe.StripeClient:
    """Process-wide client; an unconfigured key raises on every call."""
    return build_stripe_client()


def stripe_field(obj: Any, key: str, default: Any = None) -> Any:
    """Read a field from a Stripe object or a plain dict."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


@dataclass
class PaymentIntentResult:
    payment_intent_id: str
    client_secret: Optional[str]
    amount_cents: int
    currency: str
    destination_charge: bool


class StripeService(BaseService):
    """
    Payment gateway adapter.

    Handles payment intent issuance, capture confirmation, refunds, charge
    listing and webhook signature verification.
    """

    def __init__(
        self,
        db: Session,
        client: Optional[stripe.StripeClient] = None,
        *,
        booking_service: Optional["BookingService"] = None,
    ):
        super().__init__(db)
        self._client = client
        self._booking_service = booking_service
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.payout_account_repository = RepositoryFactory.create_payout_account_repository(db)

    @property
    def client(self) -> stripe.StripeClient:
        if self._client is None:
            self._client = get_shared_stripe_client()
        return self._client

    @property
    def booking_service(self) -> "BookingService":
        if self._booking_service is None:
            from .booking_service import BookingService
            from .refund_policy_engine import RefundPolicyEngine

            self._booking_service = BookingService(
                self.db, refund_policy_engine=RefundPolicyEngine(self.db, self)
            )
        return self._booking_service

    @booking_service.setter
    def booking_service(self, service: "BookingService") -> None:
        self._booking_service = service

    # --------------------------------------------------------------------- #
    # Payment intents
    # --------------------------------------------------------------------- #

    @BaseService.measure_operation("stripe_create_payment_intent")
    def create_payment_intent(self, booking_id: str, caller_id: str) -> PaymentIntentResult:
        """
        Issue (or re-issue) the payment intent for a PENDING booking.

        The amount comes from the stored booking total, never from the
        request. The idempotency key is scoped to the booking's intent
        generation, so repeated calls return the same intent until the
        booking is rescheduled.

        Raises:
            NotFoundException, ForbiddenException, InvalidStateTransitionException,
            BusinessRuleException, GatewayException
        """
        with self.transaction():
            booking = self.booking_repository.get_by_id(booking_id)
            if booking is None:
                raise NotFoundException("Booking not found", details={"booking_id": booking_id})
            if booking.renter_id != caller_id:
                raise ForbiddenException("Only the renter can pay for this booking")
            if booking.status != BookingStatus.PENDING.value:
                raise InvalidStateTransitionException(
                    booking.status, "payment", booking_id=booking.id
                )
            if booking.payment_status not in (
                PaymentStatus.PENDING.value,
                PaymentStatus.FAILED.value,
            ):
                raise BusinessRuleException(
                    "This booking has already been paid",
                    details={"payment_status": booking.payment_status},
                )

            amount_cents = to_cents(booking.total_amount)
            generation = booking.intent_generation or 0
            params: Dict[str, Any] = {
                "amount": amount_cents,
                "currency": booking.currency,
                "automatic_payment_methods": {"enabled": True},
                "transfer_group": f"booking:{booking.id}",
                "metadata": {
                    "booking_id": booking.id,
                    "renter_id": booking.renter_id,
                    "host_id": booking.host_id,
                    "property_id": booking.property_id,
                    "base_amount": str(booking.base_amount),
                    "service_fee": str(booking.service_fee),
                    "host_fee": str(booking.host_fee),
                    "total_amount": str(booking.total_amount),
                },
            }
            account = self.payout_account_repository.get_by_host_id(booking.host_id)
            destination_charge = bool(account and account.payouts_ready)
            if destination_charge:
                params["application_fee_amount"] = to_cents(booking.service_fee) + to_cents(
                    booking.host_fee
                )
                params["transfer_data"] = {"destination": account.stripe_account_id}
            else:
                self.logger.info(
                    "Host %s has no ready payout account; booking %s settles to platform",
                    booking.host_id,
                    booking.id,
                )

        try:
            intent = self.client.payment_intents.create(
                params=params,
                options={"idempotency_key": f"booking:{booking_id}:intent:{generation}"},
            )
        except stripe.StripeError as e:
            self.logger.error(f"Stripe error creating payment intent: {str(e)}")
            raise GatewayException(
                f"Failed to create payment intent: {str(e)}",
                details={"booking_id": booking_id},
            ) from e

        intent_id = stripe_field(intent, "id")
        with self.transaction():
            moved = self.booking_repository.get_by_id(booking_id, for_update=True)
            if moved is None or (moved.intent_generation or 0) != generation:
                raise BookingConflictException(
                    "Booking changed while the payment was being prepared",
                    details={"booking_id": booking_id},
                )
            moved.payment_intent_id = intent_id
            if moved.payment_status == PaymentStatus.FAILED.value:
                moved.move_payment_to(PaymentStatus.PENDING.value)
            self.booking_repository.flush()

        self.logger.info(f"Created payment intent {intent_id} for booking {booking_id}")
        return PaymentIntentResult(
            payment_intent_id=intent_id,
            client_secret=stripe_field(intent, "client_secret"),
            amount_cents=amount_cents,
            currency=params["currency"],
            destination_charge=destination_charge,
        )

    @BaseService.measure_operation("stripe_confirm_payment")
    def confirm_payment(self, payment_intent_id: str, caller_id: str) -> "FinalizeResult":
        """
        Client-driven confirmation after the renter completes payment.

        The intent is re-fetched from Stripe; nothing in the request is
        trusted beyond its id.
        """
        try:
            intent = self.client.payment_intents.retrieve(payment_intent_id)
        except stripe.InvalidRequestError as e:
            raise NotFoundException(
                "Payment intent not found", details={"payment_intent_id": payment_intent_id}
            ) from e
        except stripe.StripeError as e:
            self.logger.error(f"Stripe error retrieving payment intent: {str(e)}")
            raise GatewayException(f"Failed to retrieve payment intent: {str(e)}") from e

        status = stripe_field(intent, "status")
        if status != "succeeded":
            raise BusinessRuleException(
                "Payment has not succeeded",
                details={"payment_intent_id": payment_intent_id, "status": status},
            )
        metadata = stripe_field(intent, "metadata") or {}
        if stripe_field(metadata, "renter_id") != caller_id:
            raise ForbiddenException("This payment does not belong to you")

        amount_cents = stripe_field(intent, "amount_received") or stripe_field(intent, "amount")
        result = self.booking_service.finalize_payment(
            payment_intent_id=payment_intent_id,
            amount_cents=int(amount_cents or 0),
            currency=str(stripe_field(intent, "currency") or ""),
            charge_id=_latest_charge_id(intent),
            booking_id=stripe_field(metadata, "booking_id"),
        )
        if result.conflict:
            raise BookingConflictException(
                "The space was taken before your payment completed; you have been refunded",
                details={"booking_id": result.booking.id},
            )
        return result

    # --------------------------------------------------------------------- #
    # Refunds and charges
    # --------------------------------------------------------------------- #

    @BaseService.measure_operation("stripe_create_refund")
    def create_refund(
        self,
        *,
        payment_intent_id: Optional[str],
        amount_cents: int,
        idempotency_key: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> Any:
        """Single refund attempt; failures surface as GatewayException."""
        if not payment_intent_id:
            raise GatewayException("Cannot refund a booking without a payment intent")
        try:
            refund = self.client.refunds.create(
                params={
                    "payment_intent": payment_intent_id,
                    "amount": int(amount_cents),
                    "reason": "requested_by_customer",
                    "metadata": metadata or {},
                },
                options={"idempotency_key": idempotency_key},
            )
        except stripe.StripeError as e:
            raise GatewayException(
                f"Failed to create refund: {str(e)}",
                details={"payment_intent_id": payment_intent_id, "amount_cents": amount_cents},
            ) from e
        self.logger.info(f"Created refund {stripe_field(refund, 'id')} for {payment_intent_id}")
        return refund

    def list_charges_since(self, created_gte: datetime) -> Iterator[Any]:
        """Iterate every charge created at or after ``created_gte``, across pages."""
        try:
            page = self.client.charges.list(
                params={"created": {"gte": int(created_gte.timestamp())}, "limit": 100}
            )
            yield from page.auto_paging_iter()
        except stripe.StripeError as e:
            self.logger.error(f"Stripe error listing charges: {str(e)}")
            raise GatewayException(f"Failed to list charges: {str(e)}") from e

    # --------------------------------------------------------------------- #
    # Webhooks
    # --------------------------------------------------------------------- #

    def verify_webhook_signature(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify the Stripe signature over the raw body and return the parsed event.

        Raises:
            WebhookSignatureException: missing or invalid signature
            ValidationException: body is not a JSON event
        """
        webhook_secret = settings.stripe_webhook_secret.get_secret_value()
        if not webhook_secret:
            raise ServiceException("Webhook secret not configured")
        if not signature:
            raise WebhookSignatureException("Missing Stripe-Signature header")

        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ValidationException("Webhook payload is not valid UTF-8") from e

        try:
            stripe.WebhookSignature.verify_header(
                body, signature, webhook_secret, settings.stripe_webhook_tolerance_seconds
            )
        except stripe.SignatureVerificationError as e:
            self.logger.warning(f"Invalid webhook signature: {str(e)}")
            raise WebhookSignatureException() from e

        try:
            event = json.loads(body)
        except ValueError as e:
            raise ValidationException("Invalid webhook payload") from e
        if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
            raise ValidationException("Webhook payload is missing id or type")
        return event


def _latest_charge_id(intent: Any) -> Optional[str]:
    charge = stripe_field(intent, "latest_charge")
    if charge is None:
        return None
    if isinstance(charge, str):
        return charge
    return stripe_field(charge, "id")
