# backend/spacebook/repositories/property_repository.py
"""Read access to listings and host payout accounts."""

from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.property import HostPayoutAccount, Property
from .base_repository import BaseRepository


class PropertyRepository(BaseRepository[Property]):
    """Repository for property lookups."""

    def __init__(self, db: Session):
        super().__init__(db, Property)

    def lock_for_booking(self, property_id: str) -> Optional[Property]:
        """
        Load the property holding ``SELECT ... FOR UPDATE`` until commit.

        Serializes concurrent booking attempts for the same property so the
        availability check and the insert see a stable calendar.
        """
        return self.get_by_id(property_id, for_update=True)


class HostPayoutAccountRepository(BaseRepository[HostPayoutAccount]):
    """Repository for connected payout accounts."""

    def __init__(self, db: Session):
        super().__init__(db, HostPayoutAccount)

    def get_by_host_id(self, host_id: str) -> Optional[HostPayoutAccount]:
        return self.find_one_by(host_id=host_id)

    def get_by_stripe_account_id(self, stripe_account_id: str) -> Optional[HostPayoutAccount]:
        return self.find_one_by(stripe_account_id=stripe_account_id)

    def set_payouts_ready(self, stripe_account_id: str, ready: bool) -> Optional[HostPayoutAccount]:
        try:
            account = self.get_by_stripe_account_id(stripe_account_id)
            if account is None:
                return None
            account.payouts_ready = ready
            self.db.flush()
            return account
        except SQLAlchemyError as e:
            self.logger.error(f"Error updating payout account {stripe_account_id}: {str(e)}")
            raise RepositoryException(f"Failed to update payout account: {str(e)}") from e
