# backend/spacebook/repositories/factory.py
"""
Repository Factory for the Spacebook booking engine.

Provides centralized creation of repository instances,
ensuring consistent initialization and dependency injection.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

# Avoid circular imports
if TYPE_CHECKING:
    from .booking_repository import BookingRepository
    from .event_outbox_repository import EventOutboxRepository
    from .payment_repository import ChargeRefundStateRepository, PaymentRepository
    from .property_repository import HostPayoutAccountRepository, PropertyRepository
    from .revenue_repository import RevenueLedgerRepository, TaxConfigRepository
    from .webhook_event_repository import WebhookEventRepository


class RepositoryFactory:
    """
    Factory class for creating repository instances.

    Centralizes repository creation to ensure consistent initialization
    and makes it easy to swap implementations if needed.
    """

    @staticmethod
    def create_booking_repository(db: Session) -> "BookingRepository":
        """Create repository for booking operations."""
        from .booking_repository import BookingRepository

        return BookingRepository(db)

    @staticmethod
    def create_property_repository(db: Session) -> "PropertyRepository":
        """Create repository for property lookups."""
        from .property_repository import PropertyRepository

        return PropertyRepository(db)

    @staticmethod
    def create_payout_account_repository(db: Session) -> "HostPayoutAccountRepository":
        """Create repository for host payout accounts."""
        from .property_repository import HostPayoutAccountRepository

        return HostPayoutAccountRepository(db)

    @staticmethod
    def create_payment_repository(db: Session) -> "PaymentRepository":
        """Create repository for payment records."""
        from .payment_repository import PaymentRepository

        return PaymentRepository(db)

    @staticmethod
    def create_charge_refund_state_repository(db: Session) -> "ChargeRefundStateRepository":
        """Create repository for per-charge refund watermarks."""
        from .payment_repository import ChargeRefundStateRepository

        return ChargeRefundStateRepository(db)

    @staticmethod
    def create_revenue_ledger_repository(db: Session) -> "RevenueLedgerRepository":
        """Create repository for revenue ledger entries."""
        from .revenue_repository import RevenueLedgerRepository

        return RevenueLedgerRepository(db)

    @staticmethod
    def create_tax_config_repository(db: Session) -> "TaxConfigRepository":
        """Create repository for the tax config singleton."""
        from .revenue_repository import TaxConfigRepository

        return TaxConfigRepository(db)

    @staticmethod
    def create_webhook_event_repository(db: Session) -> "WebhookEventRepository":
        """Create repository for the webhook event ledger."""
        from .webhook_event_repository import WebhookEventRepository

        return WebhookEventRepository(db)

    @staticmethod
    def create_event_outbox_repository(db: Session) -> "EventOutboxRepository":
        """Create repository for the notification outbox."""
        from .event_outbox_repository import EventOutboxRepository

        return EventOutboxRepository(db)
