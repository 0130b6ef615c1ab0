# backend/spacebook/services/revenue_threshold_monitor.py
"""
Cumulative revenue tracking against the small-supplier tax threshold.

Incremental updates come from webhook events and are keyed by event id in the
revenue ledger, so a redelivered event never moves the counter twice. A
periodic reconciliation re-derives the total from the gateway.

Tax mode is a one-way latch: it turns on the first time revenue reaches the
threshold and stays on even if refunds or reconciliation later bring the
total back below it.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..models.revenue import RevenueEntryType, TaxConfig, TaxMode
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .stripe_service import StripeService, stripe_field


class RevenueThresholdMonitor(BaseService):
    """Maintains TaxConfig.revenue_cents and the tax mode latch."""

    def __init__(
        self,
        db: Session,
        gateway: Optional[StripeService] = None,
        *,
        threshold_cents: Optional[int] = None,
        currency: Optional[str] = None,
    ):
        super().__init__(db)
        self._gateway = gateway
        self.threshold_cents = (
            threshold_cents
            if threshold_cents is not None
            else settings.small_supplier_threshold_cents
        )
        self.currency = (currency or settings.revenue_currency).lower()
        self.ledger_repository = RepositoryFactory.create_revenue_ledger_repository(db)
        self.tax_config_repository = RepositoryFactory.create_tax_config_repository(db)
        self.refund_state_repository = RepositoryFactory.create_charge_refund_state_repository(
            db
        )

    @property
    def gateway(self) -> StripeService:
        if self._gateway is None:
            self._gateway = StripeService(self.db)
        return self._gateway

    def _counts(self, currency: Optional[str]) -> bool:
        return (currency or "").lower() == self.currency

    def _latch(self, config: TaxConfig, now: datetime) -> None:
        if config.tax_mode == TaxMode.OFF.value and config.revenue_cents >= config.threshold_cents:
            config.tax_mode = TaxMode.ON.value
            config.tax_effective_at = now
            self.logger.warning(
                "Revenue %s reached threshold %s; tax mode switched on",
                config.revenue_cents,
                config.threshold_cents,
            )

    def apply_delta(self, delta_cents: int, now: Optional[datetime] = None) -> TaxConfig:
        """
        Add a signed amount to the counter inside the caller's transaction.

        The counter never goes below zero.
        """
        now = now or datetime.now(timezone.utc)
        config = self.tax_config_repository.get_or_create_for_update(self.threshold_cents)
        config.revenue_cents = max(0, int(config.revenue_cents or 0) + int(delta_cents))
        self._latch(config, now)
        self.tax_config_repository.flush()
        prometheus_metrics.set_revenue_cents(config.revenue_cents)
        return config

    def record_charge(
        self, *, event_id: str, charge_id: Optional[str], amount_cents: int, currency: str
    ) -> bool:
        """Count a succeeded charge once per event id. Returns True when applied."""
        if not self._counts(currency) or amount_cents <= 0:
            return False
        appended = self.ledger_repository.append_once(
            event_id=event_id,
            charge_id=charge_id,
            entry_type=RevenueEntryType.CHARGE.value,
            amount_delta_cents=int(amount_cents),
            currency=self.currency,
        )
        if appended:
            self.apply_delta(int(amount_cents))
        return appended

    def record_refund(
        self,
        *,
        event_id: str,
        charge_id: str,
        cumulative_refunded_cents: int,
        currency: str,
    ) -> int:
        """
        Subtract the newly refunded part of a charge.

        Refund events carry the cumulative refunded amount, so the delta is
        taken against the last amount seen for the charge. Stale or
        out-of-order deliveries produce a non-positive delta and do nothing.
        Returns the delta applied.
        """
        state = self.refund_state_repository.get_for_update(charge_id)
        delta = int(cumulative_refunded_cents) - int(state.amount_refunded_cents or 0)
        if delta <= 0:
            self.logger.info(
                "Ignoring stale refund event %s for charge %s (cumulative %s, seen %s)",
                event_id,
                charge_id,
                cumulative_refunded_cents,
                state.amount_refunded_cents,
            )
            return 0
        state.amount_refunded_cents = int(cumulative_refunded_cents)
        self.refund_state_repository.flush()

        if not self._counts(currency):
            return 0
        appended = self.ledger_repository.append_once(
            event_id=event_id,
            charge_id=charge_id,
            entry_type=RevenueEntryType.REFUND.value,
            amount_delta_cents=-delta,
            currency=self.currency,
        )
        if not appended:
            return 0
        self.apply_delta(-delta)
        return delta

    @BaseService.measure_operation("reconcile_revenue")
    def reconcile_from_gateway(self, now: Optional[datetime] = None) -> TaxConfig:
        """
        Recompute net revenue from the gateway's charges over the lookback window.

        The listing happens before any row is locked; the overwrite itself is
        one short transaction.
        """
        now = now or datetime.now(timezone.utc)
        since = now - timedelta(days=settings.revenue_lookback_days)
        total = 0
        counted = 0
        for charge in self.gateway.list_charges_since(since):
            if stripe_field(charge, "status") != "succeeded":
                continue
            if not self._counts(stripe_field(charge, "currency")):
                continue
            amount = int(stripe_field(charge, "amount") or 0)
            total += amount - int(stripe_field(charge, "amount_refunded") or 0)
            counted += 1

        with self.transaction():
            config = self.tax_config_repository.get_or_create_for_update(self.threshold_cents)
            previous = config.revenue_cents
            config.revenue_cents = max(0, total)
            config.revenue_last_synced_at = now
            self._latch(config, now)
            self.tax_config_repository.flush()

        prometheus_metrics.set_revenue_cents(config.revenue_cents)
        self.logger.info(
            "Revenue reconciled from %s charges: %s -> %s (tax mode %s)",
            counted,
            previous,
            config.revenue_cents,
            config.tax_mode,
        )
        return config

    def get_tax_config(self) -> TaxConfig:
        with self.transaction():
            config = self.tax_config_repository.get_or_create_for_update(self.threshold_cents)
        return config
