# backend/tests/unit/services/test_revenue_threshold_monitor.py
"""Tests for cumulative revenue tracking and the tax mode latch."""

from unittest.mock import MagicMock

import pytest

from spacebook.models.revenue import TaxMode
from spacebook.services.revenue_threshold_monitor import RevenueThresholdMonitor
from tests.helpers import NOW


@pytest.fixture
def gateway():
    return MagicMock(name="StripeService")


@pytest.fixture
def monitor(db, gateway):
    return RevenueThresholdMonitor(db, gateway, threshold_cents=10_000, currency="CAD")


def charge(amount, refunded=0, status="succeeded", currency="cad"):
    return {
        "id": f"ch_{amount}_{refunded}",
        "status": status,
        "currency": currency,
        "amount": amount,
        "amount_refunded": refunded,
    }


class TestIncrementalUpdates:
    def test_charges_accumulate(self, db, monitor):
        monitor.record_charge(event_id="evt_1", charge_id="ch_1", amount_cents=4000, currency="cad")
        monitor.record_charge(event_id="evt_2", charge_id="ch_2", amount_cents=3000, currency="cad")
        db.commit()

        config = monitor.get_tax_config()
        assert config.revenue_cents == 7000
        assert config.tax_mode == TaxMode.OFF.value

    def test_same_event_counts_once(self, db, monitor):
        first = monitor.record_charge(
            event_id="evt_1", charge_id="ch_1", amount_cents=4000, currency="cad"
        )
        second = monitor.record_charge(
            event_id="evt_1", charge_id="ch_1", amount_cents=4000, currency="cad"
        )
        db.commit()

        assert (first, second) == (True, False)
        assert monitor.get_tax_config().revenue_cents == 4000

    def test_other_currencies_are_not_counted(self, db, monitor):
        applied = monitor.record_charge(
            event_id="evt_1", charge_id="ch_1", amount_cents=4000, currency="usd"
        )
        db.commit()

        assert not applied
        assert monitor.get_tax_config().revenue_cents == 0

    def test_crossing_the_threshold_latches_tax_mode(self, db, monitor):
        monitor.record_charge(
            event_id="evt_1", charge_id="ch_1", amount_cents=10_000, currency="cad"
        )
        db.commit()

        config = monitor.get_tax_config()
        assert config.tax_mode == TaxMode.ON.value
        assert config.tax_effective_at is not None

    def test_refunds_never_unlatch(self, db, monitor):
        monitor.record_charge(
            event_id="evt_1", charge_id="ch_1", amount_cents=12_000, currency="cad"
        )
        delta = monitor.record_refund(
            event_id="evt_2", charge_id="ch_1", cumulative_refunded_cents=5000, currency="cad"
        )
        db.commit()

        config = monitor.get_tax_config()
        assert delta == 5000
        assert config.revenue_cents == 7000
        assert config.tax_mode == TaxMode.ON.value

    def test_stale_refund_is_ignored(self, db, monitor):
        monitor.record_charge(event_id="evt_1", charge_id="ch_1", amount_cents=5000, currency="cad")
        monitor.record_refund(
            event_id="evt_2", charge_id="ch_1", cumulative_refunded_cents=3000, currency="cad"
        )
        delta = monitor.record_refund(
            event_id="evt_3", charge_id="ch_1", cumulative_refunded_cents=1000, currency="cad"
        )
        db.commit()

        assert delta == 0
        assert monitor.get_tax_config().revenue_cents == 2000

    def test_counter_never_goes_negative(self, db, monitor):
        config = monitor.apply_delta(-500)
        db.commit()

        assert config.revenue_cents == 0


class TestReconcile:
    def test_recomputes_net_revenue_from_charges(self, monitor, gateway):
        gateway.list_charges_since.return_value = [
            charge(5000),
            charge(4000, refunded=1000),
            charge(9000, status="failed"),
            charge(7000, currency="usd"),
        ]

        config = monitor.reconcile_from_gateway(now=NOW)

        assert config.revenue_cents == 8000
        assert config.revenue_last_synced_at == NOW
        assert config.tax_mode == TaxMode.OFF.value

    def test_lookback_window_is_passed_to_the_gateway(self, monitor, gateway):
        gateway.list_charges_since.return_value = []

        monitor.reconcile_from_gateway(now=NOW)

        (since,), _ = gateway.list_charges_since.call_args
        assert (NOW - since).days == 120

    def test_reconcile_can_latch(self, monitor, gateway):
        gateway.list_charges_since.return_value = [charge(6000), charge(6000)]

        config = monitor.reconcile_from_gateway(now=NOW)

        assert config.tax_mode == TaxMode.ON.value
        assert config.tax_effective_at == NOW

    def test_lower_total_keeps_tax_on(self, db, monitor, gateway):
        monitor.record_charge(
            event_id="evt_1", charge_id="ch_1", amount_cents=15_000, currency="cad"
        )
        db.commit()
        gateway.list_charges_since.return_value = [charge(2000)]

        config = monitor.reconcile_from_gateway(now=NOW)

        assert config.revenue_cents == 2000
        assert config.tax_mode == TaxMode.ON.value
