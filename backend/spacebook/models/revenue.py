# backend/spacebook/models/revenue.py
"""
Cumulative revenue tracking.

RevenueLedgerEntry is append-only and keyed by the gateway event id, so each
event moves the counter at most once. TaxConfig is a single row holding the
running total and the one-way tax mode latch.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from ..database import Base
from .types import TimestampMixin, UTCDateTime

TAX_CONFIG_ID = "default"


class TaxMode(str, Enum):
    OFF = "off"
    ON = "on"


class RevenueEntryType(str, Enum):
    CHARGE = "charge"
    REFUND = "refund"


class RevenueLedgerEntry(TimestampMixin, Base):
    """Signed revenue movement caused by one gateway event."""

    __tablename__ = "revenue_ledger_entries"

    id: Mapped[str] = mapped_column(
        String(26), primary_key=True, default=lambda: str(ulid.ULID())
    )
    event_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    stripe_charge_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True
    )
    entry_type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount_delta_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)


class TaxConfig(TimestampMixin, Base):
    """Singleton row with cumulative revenue and the tax mode latch."""

    __tablename__ = "tax_config"

    id: Mapped[str] = mapped_column(String(20), primary_key=True, default=TAX_CONFIG_ID)
    tax_mode: Mapped[str] = mapped_column(String(10), nullable=False, default=TaxMode.OFF.value)
    revenue_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    threshold_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    tax_effective_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    revenue_last_synced_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), nullable=True
    )

    @property
    def is_on(self) -> bool:
        return self.tax_mode == TaxMode.ON.value
