# backend/spacebook/models/payment.py
"""
Payment settlement models.

PaymentRecord is written once when a capture is confirmed; afterwards only its
status and refund reference change. ChargeRefundState remembers the last
cumulative refunded amount reported for each charge so refund notifications
can be turned into deltas.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import BigInteger, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from ..database import Base
from .types import TimestampMixin


class PaymentRecordStatus(str, Enum):
    COMPLETED = "completed"
    REFUNDED = "refunded"


class PaymentRecord(TimestampMixin, Base):
    """Settled charge for a booking."""

    __tablename__ = "payment_records"

    id: Mapped[str] = mapped_column(
        String(26), primary_key=True, default=lambda: str(ulid.ULID())
    )
    booking_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("bookings.id"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    stripe_payment_intent_id: Mapped[str] = mapped_column(
        String(255), nullable=False, unique=True
    )
    stripe_charge_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentRecordStatus.COMPLETED.value
    )
    stripe_refund_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<PaymentRecord {self.id} booking={self.booking_id} status={self.status}>"


class ChargeRefundState(TimestampMixin, Base):
    """Last known cumulative refunded amount for a charge."""

    __tablename__ = "charge_refund_states"

    stripe_charge_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    amount_refunded_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
