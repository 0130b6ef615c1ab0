# backend/tests/unit/services/test_webhook_reconciler.py
"""
Tests for Stripe webhook reconciliation.

Events are signed with the configured webhook secret and go through the same
verification path as production deliveries.
"""

import pytest

from spacebook.core.config import settings
from spacebook.core.exceptions import WebhookSignatureException
from spacebook.models.booking import BookingStatus, PaymentStatus
from spacebook.models.payment import PaymentRecordStatus
from spacebook.models.webhook_event import WebhookEvent, WebhookEventStatus
from spacebook.services.notification_service import NotificationEvent
from tests.helpers import sign_webhook, webhook_body


def deliver(services, event_id, event_type, obj, secret=None):
    secret = secret or settings.stripe_webhook_secret.get_secret_value()
    body = webhook_body(event_id, event_type, obj)
    return services.webhooks.process(body.encode(), sign_webhook(body, secret))


def succeeded(booking, amount=3150, intent_id="pi_1", charge_id="ch_1"):
    return {
        "id": intent_id,
        "object": "payment_intent",
        "amount": amount,
        "amount_received": amount,
        "currency": "cad",
        "latest_charge": charge_id,
        "metadata": {"booking_id": booking.id},
    }


def refunded(amount_refunded, fully=False, charge_id="ch_1"):
    charge = {
        "id": charge_id,
        "object": "charge",
        "amount": 3150,
        "amount_refunded": amount_refunded,
        "currency": "cad",
        "payment_intent": "pi_1",
        "refunded": fully,
    }
    if fully:
        charge["refunds"] = {"data": [{"id": "re_1"}]}
    return charge


def ledger(services, event_id):
    return services.webhooks.webhook_repository.get_by_event_id("stripe", event_id)


def revenue(services):
    return services.revenue.get_tax_config().revenue_cents


class TestPaymentSucceeded:
    def test_confirms_booking_and_counts_revenue(self, services, make_booking):
        booking = make_booking(payment_intent_id="pi_1")

        result = deliver(services, "evt_1", "payment_intent.succeeded", succeeded(booking))

        assert result.status == WebhookEventStatus.PROCESSED.value
        assert booking.status == BookingStatus.CONFIRMED.value
        assert booking.payment_status == PaymentStatus.COMPLETED.value
        row = ledger(services, "evt_1")
        assert row.status == WebhookEventStatus.PROCESSED.value
        assert (row.related_entity_type, row.related_entity_id) == ("booking", booking.id)
        assert revenue(services) == 3150

    def test_redelivery_is_a_duplicate(self, services, db, make_booking):
        booking = make_booking(payment_intent_id="pi_1")
        deliver(services, "evt_1", "payment_intent.succeeded", succeeded(booking))

        again = deliver(services, "evt_1", "payment_intent.succeeded", succeeded(booking))

        assert again.status == "duplicate"
        assert revenue(services) == 3150
        assert db.query(WebhookEvent).count() == 1

    def test_second_event_for_same_capture_is_idempotent(self, services, make_booking):
        booking = make_booking(payment_intent_id="pi_1")
        deliver(services, "evt_1", "payment_intent.succeeded", succeeded(booking))

        result = deliver(services, "evt_1b", "payment_intent.succeeded", succeeded(booking))

        assert result.status == WebhookEventStatus.PROCESSED.value
        assert booking.status == BookingStatus.CONFIRMED.value
        assert len(services.bookings.payment_repository.find_by(booking_id=booking.id)) == 1

    def test_amount_mismatch_is_recorded_as_failed(self, services, make_booking):
        booking = make_booking(payment_intent_id="pi_1")

        result = deliver(
            services, "evt_bad", "payment_intent.succeeded", succeeded(booking, amount=100)
        )

        assert result.status == WebhookEventStatus.FAILED.value
        assert booking.status == BookingStatus.PENDING.value
        assert booking.payment_status == PaymentStatus.PENDING.value
        row = ledger(services, "evt_bad")
        assert row.status == WebhookEventStatus.FAILED.value
        assert row.processing_error.startswith("PAYMENT_INTEGRITY")
        assert revenue(services) == 0
        alerts = services.notifications.outbox.list_by_aggregate("evt_bad")
        assert [a.event_type for a in alerts] == [NotificationEvent.OPS_ALERT]

    def test_failed_event_is_not_retried_on_redelivery(self, services, make_booking):
        booking = make_booking(payment_intent_id="pi_1")
        deliver(services, "evt_bad", "payment_intent.succeeded", succeeded(booking, amount=100))

        again = deliver(
            services, "evt_bad", "payment_intent.succeeded", succeeded(booking, amount=100)
        )

        assert again.status == "duplicate"

    def test_unknown_intent_is_recorded_as_failed(self, services, make_booking):
        booking = make_booking()

        result = deliver(
            services, "evt_2", "payment_intent.succeeded", succeeded(booking, intent_id="pi_x")
        )

        assert result.status == WebhookEventStatus.FAILED.value


class TestPaymentFailed:
    def test_marks_pending_payment_failed(self, services, make_booking):
        booking = make_booking(payment_intent_id="pi_1")

        result = deliver(services, "evt_f", "payment_intent.payment_failed", {"id": "pi_1"})

        assert result.status == WebhookEventStatus.PROCESSED.value
        assert booking.payment_status == PaymentStatus.FAILED.value
        assert booking.status == BookingStatus.PENDING.value

    def test_unknown_intent_is_ignored(self, services):
        result = deliver(services, "evt_f", "payment_intent.payment_failed", {"id": "pi_none"})

        assert result.status == WebhookEventStatus.IGNORED.value


class TestChargeRefunded:
    @pytest.fixture
    def paid_booking(self, services, make_booking):
        booking = make_booking(payment_intent_id="pi_1")
        deliver(services, "evt_paid", "payment_intent.succeeded", succeeded(booking))
        return booking

    def test_partial_then_full_refund(self, services, paid_booking):
        deliver(services, "evt_r1", "charge.refunded", refunded(1000))

        assert revenue(services) == 2150
        assert paid_booking.payment_status == PaymentStatus.COMPLETED.value

        deliver(services, "evt_r2", "charge.refunded", refunded(3150, fully=True))

        assert revenue(services) == 0
        assert paid_booking.payment_status == PaymentStatus.REFUNDED.value
        record = services.bookings.payment_repository.get_by_charge_id("ch_1")
        assert record.status == PaymentRecordStatus.REFUNDED.value
        assert record.stripe_refund_id == "re_1"

    def test_out_of_order_refund_events_do_not_double_count(self, services, paid_booking):
        deliver(services, "evt_r2", "charge.refunded", refunded(3150, fully=True))

        deliver(services, "evt_r1", "charge.refunded", refunded(1000))

        assert revenue(services) == 0

    def test_refund_for_unknown_charge_still_moves_revenue(self, services, paid_booking):
        result = deliver(services, "evt_r", "charge.refunded", refunded(500, charge_id="ch_other"))

        assert result.status == WebhookEventStatus.PROCESSED.value
        assert revenue(services) == 2650


class TestAccountUpdated:
    def test_ready_account(self, services, db, payout_account):
        payout_account.payouts_ready = False
        db.commit()

        deliver(
            services,
            "evt_a",
            "account.updated",
            {
                "id": "acct_host_1",
                "charges_enabled": True,
                "payouts_enabled": True,
                "details_submitted": True,
            },
        )

        assert payout_account.payouts_ready is True

    def test_disabled_payouts(self, services, payout_account):
        deliver(
            services,
            "evt_a",
            "account.updated",
            {"id": "acct_host_1", "charges_enabled": True, "payouts_enabled": False},
        )

        assert payout_account.payouts_ready is False

    def test_unknown_account_is_ignored(self, services):
        result = deliver(services, "evt_a", "account.updated", {"id": "acct_unknown"})

        assert result.status == WebhookEventStatus.IGNORED.value


def test_unhandled_event_type_is_acknowledged(services):
    result = deliver(services, "evt_x", "customer.created", {"id": "cus_1"})

    assert result.status == WebhookEventStatus.IGNORED.value
    assert ledger(services, "evt_x").status == WebhookEventStatus.IGNORED.value


def test_bad_signature_records_nothing(services, db):
    with pytest.raises(WebhookSignatureException):
        deliver(services, "evt_1", "payment_intent.succeeded", {"id": "pi_1"}, secret="whsec_no")

    assert db.query(WebhookEvent).count() == 0
