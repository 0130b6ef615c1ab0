# backend/tests/unit/services/test_booking_notification_job.py
"""Tests for the periodic booking sweep."""

from datetime import timedelta

from spacebook.models.booking import BookingStatus, PaymentStatus
from spacebook.services.booking_notification_job import AUTO_CANCEL_REASON, RELEASE_REASON
from spacebook.services.notification_service import NotificationEvent
from tests.helpers import NOW


def _event_types(services, booking_id):
    return [row.event_type for row in services.notifications.outbox.list_by_aggregate(booking_id)]


class TestBookingNotificationJob:
    def test_releases_stale_unpaid_holds(self, services, make_booking):
        stale = make_booking(created_at=NOW - timedelta(hours=2))
        fresh = make_booking(start_at=NOW + timedelta(days=5), created_at=NOW)

        result = services.booking_job.run()

        assert result.released == 1
        assert stale.status == BookingStatus.CANCELLED.value
        assert stale.cancellation_reason == RELEASE_REASON
        assert fresh.status == BookingStatus.PENDING.value
        assert _event_types(services, stale.id) == [NotificationEvent.BOOKING_RELEASED]

    def test_auto_cancels_paid_pending_booking_about_to_start(
        self, services, make_booking, stripe_client
    ):
        booking = make_booking(
            start_at=NOW + timedelta(hours=2),
            created_at=NOW,
            payment_intent_id="pi_1",
            payment_status=PaymentStatus.COMPLETED.value,
        )

        result = services.booking_job.run()

        assert result.auto_cancelled == 1
        assert booking.status == BookingStatus.CANCELLED.value
        assert booking.cancellation_reason == AUTO_CANCEL_REASON
        assert booking.payment_status == PaymentStatus.REFUNDED.value
        assert stripe_client.refunds.create.call_args.kwargs["params"]["amount"] == 3150

    def test_reminders_are_sent_once(self, services, make_booking):
        booking = make_booking(
            start_at=NOW + timedelta(hours=12),
            created_at=NOW - timedelta(days=2),
            status=BookingStatus.CONFIRMED.value,
            payment_status=PaymentStatus.COMPLETED.value,
        )

        first = services.booking_job.run()
        second = services.booking_job.run()

        assert first.reminders_sent == 2
        assert second.reminders_sent == 0
        assert booking.reminder_renter_sent_at == NOW
        assert booking.reminder_host_sent_at == NOW
        assert _event_types(services, booking.id).count(NotificationEvent.BOOKING_REMINDER) == 2

    def test_review_requests_follow_the_stay(self, services, make_booking, clock):
        booking = make_booking(
            start_at=NOW - timedelta(hours=30),
            created_at=NOW - timedelta(days=3),
            status=BookingStatus.COMPLETED.value,
            payment_status=PaymentStatus.COMPLETED.value,
        )

        result = services.booking_job.run()

        assert result.review_requests_sent == 2
        assert booking.review_request_renter_sent_at == clock()

    def test_recent_stays_wait_for_the_delay(self, services, make_booking):
        make_booking(
            start_at=NOW - timedelta(hours=5),
            created_at=NOW - timedelta(days=1),
            status=BookingStatus.COMPLETED.value,
            payment_status=PaymentStatus.COMPLETED.value,
        )

        assert services.booking_job.run().review_requests_sent == 0

    def test_result_serializes(self, services):
        assert services.booking_job.run().to_dict() == {
            "released": 0,
            "auto_cancelled": 0,
            "reminders_sent": 0,
            "review_requests_sent": 0,
            "errors": 0,
        }
