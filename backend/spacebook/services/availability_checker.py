# backend/spacebook/services/availability_checker.py
"""
Availability checking for property bookings.

Two windows conflict when ``start_a < end_b and start_b < end_a``; back-to-back
bookings share an endpoint and do not conflict. Only PENDING and CONFIRMED
bookings hold the calendar.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.exceptions import BookingConflictException, ValidationException
from ..models.booking import Booking
from ..repositories.booking_repository import BookingRepository
from ..repositories.factory import RepositoryFactory
from .base import BaseService


@dataclass
class AvailabilityResult:
    has_conflict: bool
    conflicting_bookings: List[Booking] = field(default_factory=list)

    @property
    def is_available(self) -> bool:
        return not self.has_conflict

    def to_details(self) -> dict:
        return {
            "conflicting_bookings": [
                {
                    "booking_id": b.id,
                    "start_at": b.start_at.isoformat(),
                    "end_at": b.end_at.isoformat(),
                    "status": b.status,
                }
                for b in self.conflicting_bookings
            ]
        }


class AvailabilityChecker(BaseService):
    """Detects interval overlaps against a property's active bookings."""

    def __init__(self, db: Session, repository: Optional[BookingRepository] = None):
        super().__init__(db)
        self.repository = repository or RepositoryFactory.create_booking_repository(db)

    @BaseService.measure_operation("check_availability")
    def check_availability(
        self,
        property_id: str,
        start_at: datetime,
        end_at: datetime,
        exclude_booking_id: Optional[str] = None,
    ) -> AvailabilityResult:
        """
        Return the active bookings of ``property_id`` overlapping ``[start_at, end_at)``.

        ``exclude_booking_id`` drops one booking from consideration, so a
        booking being rescheduled or finalized never conflicts with itself.
        """
        if end_at <= start_at:
            raise ValidationException("End time must be after start time")

        candidates = self.repository.find_overlapping(
            property_id, start_at, end_at, exclude_booking_id=exclude_booking_id
        )
        conflicts = [
            b for b in candidates if b.id != exclude_booking_id and b.overlaps(start_at, end_at)
        ]
        return AvailabilityResult(has_conflict=bool(conflicts), conflicting_bookings=conflicts)

    def ensure_available(
        self,
        property_id: str,
        start_at: datetime,
        end_at: datetime,
        exclude_booking_id: Optional[str] = None,
    ) -> None:
        """Raise BookingConflictException when the window is taken."""
        result = self.check_availability(
            property_id, start_at, end_at, exclude_booking_id=exclude_booking_id
        )
        if result.has_conflict:
            raise BookingConflictException(details=result.to_details())
