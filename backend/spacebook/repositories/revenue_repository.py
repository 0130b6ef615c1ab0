# backend/spacebook/repositories/revenue_repository.py
"""
Revenue Repository

Append-only revenue ledger keyed by gateway event id, plus the TaxConfig
singleton row.
"""

from typing import Optional

from sqlalchemy.orm import Session
import ulid

from ..models.revenue import TAX_CONFIG_ID, RevenueLedgerEntry, TaxConfig, TaxMode
from .base_repository import BaseRepository


class RevenueLedgerRepository(BaseRepository[RevenueLedgerEntry]):
    """Repository for revenue ledger entries."""

    def __init__(self, db: Session):
        super().__init__(db, RevenueLedgerEntry)

    def append_once(
        self,
        *,
        event_id: str,
        charge_id: Optional[str],
        entry_type: str,
        amount_delta_cents: int,
        currency: str,
    ) -> bool:
        """Append an entry unless this event id was already recorded."""
        return self._insert_if_absent(
            {
                "id": str(ulid.ULID()),
                "event_id": event_id,
                "stripe_charge_id": charge_id,
                "entry_type": entry_type,
                "amount_delta_cents": amount_delta_cents,
                "currency": currency,
            },
            ["event_id"],
        )


class TaxConfigRepository(BaseRepository[TaxConfig]):
    """Repository for the TaxConfig singleton."""

    def __init__(self, db: Session):
        super().__init__(db, TaxConfig)

    def get_or_create_for_update(self, threshold_cents: int) -> TaxConfig:
        """
        Return the singleton locked for update, seeding it on first use.

        All revenue writers serialize on this row.
        """
        self._insert_if_absent(
            {
                "id": TAX_CONFIG_ID,
                "tax_mode": TaxMode.OFF.value,
                "revenue_cents": 0,
                "threshold_cents": threshold_cents,
            },
            ["id"],
        )
        query = self._build_query().filter(TaxConfig.id == TAX_CONFIG_ID)
        if self.is_postgres:
            query = query.with_for_update()
        return query.populate_existing().one()
