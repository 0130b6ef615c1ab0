# backend/tests/unit/services/test_booking_service.py
"""
Tests for BookingService: creation, rescheduling, payment finalization and
the state machine transitions.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import update
import stripe

from spacebook.core.exceptions import (
    BookingConflictException,
    BusinessRuleException,
    ForbiddenException,
    InvalidStateTransitionException,
    NotFoundException,
    PaymentIntegrityException,
    ValidationException,
)
from spacebook.models.booking import Booking, BookingStatus, PaymentStatus
from spacebook.models.payment import PaymentRecordStatus
from spacebook.schemas.booking import BookingCreate
from spacebook.services.notification_service import NotificationEvent, RefundOutcome
from tests.helpers import NOW, new_id


def _events(services, booking_id):
    return [
        (row.event_type, row.payload.get("recipient_role"))
        for row in services.notifications.outbox.list_by_aggregate(booking_id)
    ]


def _request(property_id, start=None, hours=3):
    start = start or NOW + timedelta(days=2)
    return BookingCreate(
        property_id=property_id, start_at=start, end_at=start + timedelta(hours=hours)
    )


class TestCreateBooking:
    def test_creates_pending_booking_with_price_snapshot(self, services, property_, renter_id):
        booking = services.bookings.create_booking(renter_id, _request(property_.id))

        assert booking.status == BookingStatus.PENDING.value
        assert booking.payment_status == PaymentStatus.PENDING.value
        assert booking.host_id == property_.host_id
        assert booking.base_amount == Decimal("30.00")
        assert booking.service_fee == Decimal("1.50")
        assert booking.host_fee == Decimal("1.50")
        assert booking.total_amount == Decimal("31.50")

    def test_notifies_both_parties(self, services, property_, renter_id):
        booking = services.bookings.create_booking(renter_id, _request(property_.id))

        assert sorted(_events(services, booking.id)) == [
            (NotificationEvent.BOOKING_REQUESTED, "host"),
            (NotificationEvent.BOOKING_REQUESTED, "renter"),
        ]

    def test_overlapping_request_is_rejected(self, services, property_, renter_id):
        first = services.bookings.create_booking(renter_id, _request(property_.id))

        with pytest.raises(BookingConflictException):
            services.bookings.create_booking(
                new_id(), _request(property_.id, start=first.start_at + timedelta(hours=1))
            )

    def test_back_to_back_bookings_are_allowed(self, services, property_, renter_id):
        first = services.bookings.create_booking(renter_id, _request(property_.id))

        second = services.bookings.create_booking(
            new_id(), _request(property_.id, start=first.end_at)
        )

        assert second.start_at == first.end_at

    def test_host_cannot_book_own_space(self, services, property_):
        with pytest.raises(ForbiddenException):
            services.bookings.create_booking(property_.host_id, _request(property_.id))

    def test_past_start_is_rejected(self, services, property_, renter_id):
        with pytest.raises(ValidationException):
            services.bookings.create_booking(
                renter_id, _request(property_.id, start=NOW - timedelta(hours=1))
            )

    def test_minimum_duration_is_enforced(self, services, make_property, renter_id):
        prop = make_property(min_booking_hours=2)

        with pytest.raises(ValidationException) as exc_info:
            services.bookings.create_booking(renter_id, _request(prop.id, hours=1))

        assert exc_info.value.details == {"min_booking_hours": 2}

    def test_maximum_duration_is_enforced(self, services, make_property, renter_id):
        prop = make_property(max_booking_days=1)

        with pytest.raises(ValidationException):
            services.bookings.create_booking(renter_id, _request(prop.id, hours=25))

    def test_unavailable_property_is_rejected(self, services, make_property, renter_id):
        prop = make_property(is_available=False)

        with pytest.raises(BusinessRuleException):
            services.bookings.create_booking(renter_id, _request(prop.id))

    def test_unknown_property(self, services, renter_id):
        with pytest.raises(NotFoundException):
            services.bookings.create_booking(renter_id, _request(new_id()))


class TestReschedule:
    def test_reprices_and_drops_the_intent(self, services, make_booking, renter_id):
        booking = make_booking(payment_intent_id="pi_old")
        new_start = booking.start_at + timedelta(days=1)

        moved = services.bookings.reschedule_booking(
            booking.id, renter_id, new_start, new_start + timedelta(hours=5)
        )

        assert moved.start_at == new_start
        assert moved.base_amount == Decimal("50.00")
        assert moved.total_amount == Decimal("52.50")
        assert moved.payment_intent_id is None
        assert moved.intent_generation == 1

    def test_paid_booking_cannot_be_rescheduled(self, services, make_booking, renter_id):
        booking = make_booking(payment_status=PaymentStatus.COMPLETED.value)

        with pytest.raises(BusinessRuleException):
            services.bookings.reschedule_booking(
                booking.id, renter_id, booking.start_at, booking.end_at + timedelta(hours=1)
            )

    def test_only_renter_can_reschedule(self, services, make_booking):
        booking = make_booking()

        with pytest.raises(ForbiddenException):
            services.bookings.reschedule_booking(
                booking.id, booking.host_id, booking.start_at, booking.end_at
            )

    def test_cannot_move_onto_another_booking(self, services, make_booking, renter_id):
        booking = make_booking()
        other = make_booking(start_at=booking.end_at + timedelta(hours=2), renter_id=new_id())

        with pytest.raises(BookingConflictException):
            services.bookings.reschedule_booking(
                booking.id, renter_id, other.start_at, other.end_at
            )

    def test_own_window_never_conflicts(self, services, make_booking, renter_id):
        booking = make_booking()

        moved = services.bookings.reschedule_booking(
            booking.id, renter_id, booking.start_at + timedelta(hours=1), booking.end_at
        )

        assert moved.total_hours == Decimal("2.00")


class TestFinalizePayment:
    def test_confirms_booking_and_records_payment(self, services, make_booking):
        booking = make_booking(payment_intent_id="pi_1")

        result = services.bookings.finalize_payment(
            payment_intent_id="pi_1", amount_cents=3150, currency="cad", charge_id="ch_1"
        )

        assert not result.already_finalized
        assert booking.status == BookingStatus.CONFIRMED.value
        assert booking.payment_status == PaymentStatus.COMPLETED.value
        assert booking.confirmed_at is not None
        record = services.bookings.payment_repository.get_for_booking(booking.id)
        assert record.stripe_charge_id == "ch_1"
        assert record.status == PaymentRecordStatus.COMPLETED.value

    def test_repeated_confirmation_is_a_no_op(self, services, make_booking):
        make_booking(payment_intent_id="pi_1")
        services.bookings.finalize_payment(
            payment_intent_id="pi_1", amount_cents=3150, currency="cad"
        )

        again = services.bookings.finalize_payment(
            payment_intent_id="pi_1", amount_cents=3150, currency="cad"
        )

        assert again.already_finalized

    def test_approval_properties_stay_pending(self, services, make_property, make_booking):
        prop = make_property(require_approval=True)
        booking = make_booking(property_id=prop.id, host_id=prop.host_id, payment_intent_id="pi_1")

        result = services.bookings.finalize_payment(
            payment_intent_id="pi_1", amount_cents=3150, currency="cad"
        )

        assert result.awaiting_approval
        assert booking.status == BookingStatus.PENDING.value
        assert booking.payment_status == PaymentStatus.COMPLETED.value
        assert (NotificationEvent.BOOKING_AWAITING_APPROVAL, "host") in _events(
            services, booking.id
        )

    @pytest.mark.parametrize("amount,currency", [(3100, "cad"), (3150, "usd")])
    def test_amount_mismatch_is_fatal(self, services, make_booking, amount, currency):
        booking = make_booking(payment_intent_id="pi_1")

        with pytest.raises(PaymentIntegrityException):
            services.bookings.finalize_payment(
                payment_intent_id="pi_1", amount_cents=amount, currency=currency
            )

        assert booking.status == BookingStatus.PENDING.value
        assert booking.payment_status == PaymentStatus.PENDING.value
        assert services.bookings.payment_repository.get_for_booking(booking.id) is None

    def test_metadata_pointing_elsewhere_is_rejected(self, services, make_booking):
        make_booking(payment_intent_id="pi_1")
        other = make_booking(start_at=NOW + timedelta(days=9))

        with pytest.raises(PaymentIntegrityException):
            services.bookings.finalize_payment(
                payment_intent_id="pi_1", amount_cents=3150, currency="cad", booking_id=other.id
            )

    def test_stale_intent_is_not_trusted(self, services, make_booking):
        booking = make_booking(payment_intent_id="pi_current")

        with pytest.raises(PaymentIntegrityException):
            services.bookings.finalize_payment(
                payment_intent_id="pi_stale",
                amount_cents=3150,
                currency="cad",
                booking_id=booking.id,
            )

    def test_unknown_intent(self, services):
        with pytest.raises(NotFoundException):
            services.bookings.finalize_payment(
                payment_intent_id="pi_nobody", amount_cents=3150, currency="cad"
            )

    def test_conflict_at_finalize_cancels_and_refunds(
        self, services, make_booking, stripe_client
    ):
        booking = make_booking(payment_intent_id="pi_late")
        make_booking(
            start_at=booking.start_at + timedelta(hours=1),
            renter_id=new_id(),
            status=BookingStatus.CONFIRMED.value,
            payment_status=PaymentStatus.COMPLETED.value,
        )

        result = services.bookings.finalize_payment(
            payment_intent_id="pi_late", amount_cents=3150, currency="cad"
        )

        assert result.conflict
        assert booking.status == BookingStatus.CANCELLED.value
        assert booking.payment_status == PaymentStatus.REFUNDED.value
        kwargs = stripe_client.refunds.create.call_args.kwargs
        assert kwargs["params"]["payment_intent"] == "pi_late"
        assert kwargs["params"]["amount"] == 3150
        event_types = [event for event, _ in _events(services, booking.id)]
        assert NotificationEvent.OPS_ALERT in event_types
        assert NotificationEvent.REFUND_ISSUED in event_types

    def test_capture_for_cancelled_booking_is_refunded(
        self, services, make_booking, stripe_client
    ):
        booking = make_booking(payment_intent_id="pi_1", status=BookingStatus.CANCELLED.value)

        result = services.bookings.finalize_payment(
            payment_intent_id="pi_1", amount_cents=3150, currency="cad"
        )

        assert result.refund_required
        assert booking.status == BookingStatus.CANCELLED.value
        assert booking.payment_status == PaymentStatus.REFUNDED.value
        stripe_client.refunds.create.assert_called_once()


class TestPaymentFailed:
    def test_pending_payment_moves_to_failed(self, services, make_booking, db):
        booking = make_booking(payment_intent_id="pi_1")

        services.bookings.mark_payment_failed("pi_1")
        db.commit()

        assert booking.payment_status == PaymentStatus.FAILED.value
        assert booking.status == BookingStatus.PENDING.value

    def test_completed_payment_is_untouched(self, services, make_booking):
        booking = make_booking(
            payment_intent_id="pi_1", payment_status=PaymentStatus.COMPLETED.value
        )

        services.bookings.mark_payment_failed("pi_1")

        assert booking.payment_status == PaymentStatus.COMPLETED.value

    def test_unknown_intent_returns_none(self, services):
        assert services.bookings.mark_payment_failed("pi_unknown") is None


class TestTransitions:
    def test_host_approves_paid_booking(self, services, make_booking):
        booking = make_booking(payment_status=PaymentStatus.COMPLETED.value)

        approved = services.bookings.approve_booking(booking.id, booking.host_id)

        assert approved.status == BookingStatus.CONFIRMED.value
        assert approved.confirmed_at is not None

    def test_only_host_can_approve(self, services, make_booking, renter_id):
        booking = make_booking(payment_status=PaymentStatus.COMPLETED.value)

        with pytest.raises(ForbiddenException):
            services.bookings.approve_booking(booking.id, renter_id)

    def test_unpaid_booking_cannot_be_approved(self, services, make_booking):
        booking = make_booking()

        with pytest.raises(InvalidStateTransitionException):
            services.bookings.approve_booking(booking.id, booking.host_id)

    def test_complete_confirmed_booking(self, services, make_booking):
        booking = make_booking(status=BookingStatus.CONFIRMED.value)

        completed = services.bookings.complete_booking(booking.id)

        assert completed.status == BookingStatus.COMPLETED.value
        assert completed.completed_at is not None

    def test_pending_booking_cannot_complete(self, services, make_booking):
        booking = make_booking()

        with pytest.raises(InvalidStateTransitionException):
            services.bookings.complete_booking(booking.id)


class TestCancelBooking:
    def test_unpaid_cancellation_skips_refund(
        self, services, make_booking, renter_id, stripe_client
    ):
        booking = make_booking()

        result = services.bookings.cancel_booking(booking.id, renter_id, reason="Plans changed")

        assert result.booking.status == BookingStatus.CANCELLED.value
        assert result.booking.cancellation_reason == "Plans changed"
        assert result.booking.cancelled_by_id == renter_id
        assert result.refund_outcome == RefundOutcome.NOT_PAID
        assert result.refund_status == "skipped"
        stripe_client.refunds.create.assert_not_called()
        assert (NotificationEvent.BOOKING_CANCELLED, "host") in _events(services, booking.id)

    def test_early_paid_cancellation_refunds_in_full(
        self, services, make_booking, renter_id, stripe_client
    ):
        booking = make_booking(
            payment_intent_id="pi_1",
            payment_status=PaymentStatus.COMPLETED.value,
            status=BookingStatus.CONFIRMED.value,
        )

        result = services.bookings.cancel_booking(booking.id, renter_id)

        assert result.refund_outcome == RefundOutcome.FULL
        assert result.refund_status == "refunded"
        assert booking.payment_status == PaymentStatus.REFUNDED.value
        options = stripe_client.refunds.create.call_args.kwargs["options"]
        assert options == {"idempotency_key": f"booking:{booking.id}:cancel-refund"}

    def test_late_paid_cancellation_leaves_refund_to_host(
        self, services, make_booking, renter_id, stripe_client
    ):
        booking = make_booking(
            start_at=NOW + timedelta(hours=5),
            payment_intent_id="pi_1",
            payment_status=PaymentStatus.COMPLETED.value,
            status=BookingStatus.CONFIRMED.value,
        )

        result = services.bookings.cancel_booking(booking.id, renter_id)

        assert result.refund_outcome == RefundOutcome.HOST_DISCRETION
        assert booking.payment_status == PaymentStatus.COMPLETED.value
        stripe_client.refunds.create.assert_not_called()

    def test_refund_failure_keeps_cancellation(
        self, services, make_booking, renter_id, stripe_client
    ):
        stripe_client.refunds.create.side_effect = stripe.StripeError("card network down")
        booking = make_booking(
            payment_intent_id="pi_1",
            payment_status=PaymentStatus.COMPLETED.value,
            status=BookingStatus.CONFIRMED.value,
        )

        result = services.bookings.cancel_booking(booking.id, renter_id)

        assert result.refund_status == "failed"
        assert booking.status == BookingStatus.CANCELLED.value
        assert booking.payment_status == PaymentStatus.COMPLETED.value
        alerts = [
            row.payload["alert"]
            for row in services.notifications.outbox.list_by_aggregate(booking.id)
            if row.event_type == NotificationEvent.OPS_ALERT
        ]
        assert alerts == ["refund_failed"]

    def test_capture_committed_during_cancel_is_refunded(
        self, services, make_booking, renter_id, stripe_client, db, monkeypatch
    ):
        booking = make_booking(payment_intent_id="pi_1")
        repository = services.bookings.repository
        original = repository.transition_status

        def capture_lands_first(booking_id, **kwargs):
            db.execute(
                update(Booking)
                .where(Booking.id == booking_id)
                .values(
                    payment_status=PaymentStatus.COMPLETED.value,
                    status=BookingStatus.CONFIRMED.value,
                )
                .execution_options(synchronize_session=False)
            )
            return original(booking_id, **kwargs)

        monkeypatch.setattr(repository, "transition_status", capture_lands_first)

        result = services.bookings.cancel_booking(booking.id, renter_id)

        assert result.refund_status == "refunded"
        assert result.refund_outcome == RefundOutcome.FULL
        assert stripe_client.refunds.create.call_count == 1
        db.refresh(booking)
        assert booking.status == BookingStatus.CANCELLED.value
        assert booking.payment_status == PaymentStatus.REFUNDED.value

    def test_outsider_cannot_cancel(self, services, make_booking):
        booking = make_booking()

        with pytest.raises(ForbiddenException):
            services.bookings.cancel_booking(booking.id, new_id())

    def test_terminal_booking_cannot_be_cancelled(self, services, make_booking, renter_id):
        booking = make_booking(status=BookingStatus.COMPLETED.value)

        with pytest.raises(InvalidStateTransitionException):
            services.bookings.cancel_booking(booking.id, renter_id)

    def test_system_release_only_tells_the_renter(self, services, make_booking):
        booking = make_booking()

        services.bookings.cancel_by_system(booking.id, "Payment not completed", released=True)

        assert _events(services, booking.id)[-1] == (NotificationEvent.BOOKING_RELEASED, "renter")
