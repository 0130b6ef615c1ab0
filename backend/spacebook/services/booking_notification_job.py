# backend/spacebook/services/booking_notification_job.py
"""
Periodic booking sweep run by Celery beat and the internal jobs endpoint.

One pass:
- releases unpaid PENDING holds older than the payment TTL
- auto-cancels PENDING bookings about to start (full refund when paid)
- enqueues reminders for CONFIRMED bookings starting soon
- enqueues review requests once a stay has ended

Each booking is handled in its own transaction, so one bad row never blocks
the rest of the sweep. Sent flags make reminders and review requests
at-most-once per recipient.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import DomainException, InvalidStateTransitionException
from ..models.booking import Booking
from .base import BaseService
from .booking_service import BookingService
from .notification_service import HOST, RENTER

AUTO_CANCEL_REASON = "Not confirmed before the start time"
RELEASE_REASON = "Payment not completed in time"


@dataclass
class BookingNotificationJobResult:
    released: int = 0
    auto_cancelled: int = 0
    reminders_sent: int = 0
    review_requests_sent: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class BookingNotificationJob(BaseService):
    def __init__(
        self,
        db: Session,
        booking_service: BookingService,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(db)
        self.booking_service = booking_service
        self.repository = booking_service.repository
        self.notifications = booking_service.notifications
        self._now = clock or (lambda: datetime.now(timezone.utc))

    @BaseService.measure_operation("booking_notification_job")
    def run(self) -> BookingNotificationJobResult:
        now = self._now()
        result = BookingNotificationJobResult()
        self._release_unpaid(result)
        self._auto_cancel_pending(result)
        self._send_reminders(now, result)
        self._send_review_requests(now, result)
        self.logger.info("Booking notification job finished: %s", result.to_dict())
        return result

    def _cancel(self, booking_id: str, reason: str, released: bool) -> bool:
        try:
            self.booking_service.cancel_by_system(booking_id, reason, released=released)
        except InvalidStateTransitionException:
            # Cancelled or confirmed by someone else since the scan
            return False
        return True

    def _release_unpaid(self, result: BookingNotificationJobResult) -> None:
        for booking in self.booking_service.unpaid_bookings_to_release():
            try:
                if self._cancel(booking.id, RELEASE_REASON, released=True):
                    result.released += 1
            except DomainException as exc:
                result.errors += 1
                self.logger.error("Failed to release booking %s: %s", booking.id, exc.message)

    def _auto_cancel_pending(self, result: BookingNotificationJobResult) -> None:
        for booking in self.booking_service.pending_bookings_to_auto_cancel():
            try:
                if self._cancel(booking.id, AUTO_CANCEL_REASON, released=False):
                    result.auto_cancelled += 1
            except DomainException as exc:
                result.errors += 1
                self.logger.error(
                    "Failed to auto-cancel booking %s: %s", booking.id, exc.message
                )

    def _send_reminders(self, now: datetime, result: BookingNotificationJobResult) -> None:
        window_end = now + timedelta(hours=settings.reminder_window_hours)
        for booking in self.repository.find_confirmed_starting_between(now, window_end):
            with self.transaction():
                result.reminders_sent += self._flag_and_notify(
                    booking, now, "reminder", self.notifications.reminder
                )

    def _send_review_requests(self, now: datetime, result: BookingNotificationJobResult) -> None:
        cutoff = now - timedelta(hours=settings.review_request_delay_hours)
        for booking in self.repository.find_ended_before_without_review_request(cutoff):
            with self.transaction():
                result.review_requests_sent += self._flag_and_notify(
                    booking, now, "review_request", self.notifications.review_request
                )

    def _flag_and_notify(
        self,
        booking: Booking,
        now: datetime,
        kind: str,
        notify: Callable[[Booking, str], None],
    ) -> int:
        sent = 0
        for recipient in (RENTER, HOST):
            flag = f"{kind}_{recipient}_sent_at"
            if getattr(booking, flag) is not None:
                continue
            notify(booking, recipient)
            setattr(booking, flag, now)
            sent += 1
        self.repository.flush()
        return sent
