# backend/spacebook/repositories/booking_repository.py
"""
Booking Repository for the Spacebook booking engine.

Data access for bookings: overlap queries used by availability checks,
row locking for finalize/cancel, guarded status updates and the scans
driving the scheduled notification job.
"""

from datetime import datetime
import logging
from typing import Any, Iterable, List, Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.booking import ACTIVE_BOOKING_STATUSES, Booking, BookingStatus, PaymentStatus
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class BookingRepository(BaseRepository[Booking]):
    """Repository for booking data access."""

    def __init__(self, db: Session):
        super().__init__(db, Booking)

    def create_booking(self, **kwargs: Any) -> Booking:
        """
        Insert a booking and flush.

        IntegrityError is re-raised untouched so the service can map the
        overlap exclusion constraint to a booking conflict.
        """
        booking = Booking(**kwargs)
        self.db.add(booking)
        try:
            self.db.flush()
        except IntegrityError:
            raise
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating booking: {str(e)}")
            raise RepositoryException(f"Failed to create booking: {str(e)}") from e
        return booking

    def get_by_payment_intent_id(
        self, payment_intent_id: str, *, for_update: bool = False
    ) -> Optional[Booking]:
        try:
            query = self._build_query().filter(Booking.payment_intent_id == payment_intent_id)
            if for_update and self.is_postgres:
                query = query.with_for_update()
            return query.first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading booking for intent {payment_intent_id}: {str(e)}")
            raise RepositoryException(f"Failed to load booking: {str(e)}")

    def find_overlapping(
        self,
        property_id: str,
        start_at: datetime,
        end_at: datetime,
        *,
        exclude_booking_id: Optional[str] = None,
    ) -> List[Booking]:
        """
        Active bookings of a property intersecting ``[start_at, end_at)``.

        Uses strict inequalities so back-to-back windows do not conflict.
        """
        query = self._build_query().filter(
            Booking.property_id == property_id,
            Booking.status.in_(ACTIVE_BOOKING_STATUSES),
            Booking.start_at < end_at,
            Booking.end_at > start_at,
        )
        if exclude_booking_id:
            query = query.filter(Booking.id != exclude_booking_id)
        return self._execute_query(query.order_by(Booking.start_at.asc()))

    def list_for_user(
        self, user_id: str, *, status: Optional[str] = None, limit: int = 50, offset: int = 0
    ) -> List[Booking]:
        query = self._build_query().filter(
            or_(Booking.renter_id == user_id, Booking.host_id == user_id)
        )
        if status:
            query = query.filter(Booking.status == status)
        query = query.order_by(Booking.start_at.desc()).offset(offset).limit(limit)
        return self._execute_query(query)

    def transition_status(
        self,
        booking_id: str,
        *,
        expected_statuses: Iterable[str],
        values: dict[str, Any],
    ) -> bool:
        """
        Conditional ``UPDATE ... WHERE status IN (...)``.

        Returns False when another writer moved the booking first.
        """
        try:
            result = self.db.execute(
                update(Booking)
                .where(Booking.id == booking_id)
                .where(Booking.status.in_(list(expected_statuses)))
                .values(**values)
                .execution_options(synchronize_session="fetch")
            )
            self.db.flush()
            return bool(result.rowcount)
        except SQLAlchemyError as e:
            self.logger.error(f"Error transitioning booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to update booking: {str(e)}") from e

    # Scheduled job scans

    def find_confirmed_starting_between(
        self, window_start: datetime, window_end: datetime
    ) -> List[Booking]:
        query = self._build_query().filter(
            Booking.status == BookingStatus.CONFIRMED.value,
            Booking.start_at > window_start,
            Booking.start_at <= window_end,
            or_(
                Booking.reminder_renter_sent_at.is_(None),
                Booking.reminder_host_sent_at.is_(None),
            ),
        )
        return self._execute_query(query)

    def find_ended_before_without_review_request(self, cutoff: datetime) -> List[Booking]:
        query = self._build_query().filter(
            Booking.status.in_([BookingStatus.CONFIRMED.value, BookingStatus.COMPLETED.value]),
            Booking.end_at <= cutoff,
            or_(
                Booking.review_request_renter_sent_at.is_(None),
                Booking.review_request_host_sent_at.is_(None),
            ),
        )
        return self._execute_query(query)

    def find_pending_starting_before(self, cutoff: datetime) -> List[Booking]:
        query = self._build_query().filter(
            Booking.status == BookingStatus.PENDING.value,
            Booking.start_at <= cutoff,
        )
        return self._execute_query(query)

    def find_unpaid_pending_created_before(self, cutoff: datetime) -> List[Booking]:
        query = self._build_query().filter(
            Booking.status == BookingStatus.PENDING.value,
            Booking.payment_status.in_([PaymentStatus.PENDING.value, PaymentStatus.FAILED.value]),
            Booking.created_at <= cutoff,
        )
        return self._execute_query(query)
