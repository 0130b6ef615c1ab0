# backend/spacebook/repositories/payment_repository.py
"""
Payment Repository

Persistence for settled charges and per-charge refund watermarks.
"""

from typing import List, Optional

from sqlalchemy.orm import Session

from ..models.booking import Booking
from ..models.payment import ChargeRefundState, PaymentRecord, PaymentRecordStatus
from .base_repository import BaseRepository


class PaymentRepository(BaseRepository[PaymentRecord]):
    """Repository for PaymentRecord rows."""

    def __init__(self, db: Session):
        super().__init__(db, PaymentRecord)

    def get_by_payment_intent_id(self, payment_intent_id: str) -> Optional[PaymentRecord]:
        return self.find_one_by(stripe_payment_intent_id=payment_intent_id)

    def get_by_charge_id(self, charge_id: str) -> Optional[PaymentRecord]:
        return self.find_one_by(stripe_charge_id=charge_id)

    def get_for_booking(self, booking_id: str) -> Optional[PaymentRecord]:
        query = (
            self._build_query()
            .filter(PaymentRecord.booking_id == booking_id)
            .order_by(PaymentRecord.created_at.desc())
        )
        rows = self._execute_query(query.limit(1))
        return rows[0] if rows else None

    def record_payment(
        self,
        *,
        booking_id: str,
        amount,
        currency: str,
        payment_intent_id: str,
        charge_id: Optional[str],
    ) -> PaymentRecord:
        """Write the capture record once; repeated calls return the existing row."""
        existing = self.get_by_payment_intent_id(payment_intent_id)
        if existing is not None:
            if charge_id and not existing.stripe_charge_id:
                existing.stripe_charge_id = charge_id
                self.flush()
            return existing
        return self.create(
            booking_id=booking_id,
            amount=amount,
            currency=currency,
            stripe_payment_intent_id=payment_intent_id,
            stripe_charge_id=charge_id,
            status=PaymentRecordStatus.COMPLETED.value,
        )

    def mark_refunded(self, record: PaymentRecord, refund_id: Optional[str]) -> PaymentRecord:
        record.status = PaymentRecordStatus.REFUNDED.value
        if refund_id:
            record.stripe_refund_id = refund_id
        self.flush()
        return record

    def list_history_for_user(self, user_id: str, limit: int = 50) -> List[PaymentRecord]:
        query = (
            self._build_query()
            .join(Booking, Booking.id == PaymentRecord.booking_id)
            .filter((Booking.renter_id == user_id) | (Booking.host_id == user_id))
            .order_by(PaymentRecord.created_at.desc())
            .limit(limit)
        )
        return self._execute_query(query)


class ChargeRefundStateRepository(BaseRepository[ChargeRefundState]):
    """Cumulative refunded watermark per charge."""

    def __init__(self, db: Session):
        super().__init__(db, ChargeRefundState)

    def get_for_update(self, charge_id: str) -> ChargeRefundState:
        """Return the watermark row (created at zero when absent), locked on PostgreSQL."""
        self._insert_if_absent(
            {"stripe_charge_id": charge_id, "amount_refunded_cents": 0},
            ["stripe_charge_id"],
        )
        query = self._build_query().filter(ChargeRefundState.stripe_charge_id == charge_id)
        if self.is_postgres:
            query = query.with_for_update()
        state = query.populate_existing().one()
        return state
