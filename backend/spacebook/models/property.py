# backend/spacebook/models/property.py
"""
Read-side models for listings and host payout accounts.

Listing management and host onboarding own these rows; the booking engine
reads them (and row-locks a property while creating a booking) but only
writes the payout readiness flag reported by the gateway.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from ..database import Base
from .types import TimestampMixin


class PropertyStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class Property(TimestampMixin, Base):
    """A bookable space with its canonical rate tiers."""

    __tablename__ = "properties"

    id: Mapped[str] = mapped_column(
        String(26), primary_key=True, default=lambda: str(ulid.ULID())
    )
    host_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    hourly_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    daily_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    weekly_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    monthly_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    # Total fee, split evenly between booker and host
    service_fee_percentage: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2), nullable=True, default=Decimal("10")
    )

    require_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    min_booking_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    max_booking_days: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PropertyStatus.ACTIVE.value
    )

    @property
    def is_bookable(self) -> bool:
        return self.status == PropertyStatus.ACTIVE.value and bool(self.is_available)

    def __repr__(self) -> str:
        return f"<Property {self.id} host={self.host_id} status={self.status}>"


class HostPayoutAccount(TimestampMixin, Base):
    """Connected payout account for a host."""

    __tablename__ = "host_payout_accounts"

    id: Mapped[str] = mapped_column(
        String(26), primary_key=True, default=lambda: str(ulid.ULID())
    )
    host_id: Mapped[str] = mapped_column(String(26), nullable=False, unique=True)
    stripe_account_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    payouts_ready: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
