# backend/spacebook/services/pricing_service.py
"""
Booking price computation.

``calculate_booking_pricing`` is pure: the same rates and window always give
the same amounts. Money is Decimal rounded half-up to cents after every step,
so the booker fee, host fee and total agree with what the gateway charges.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
import math
from typing import Optional

from ..core.config import settings
from ..core.exceptions import NoPricingConfiguredException, ValidationException
from ..models.property import Property

CENT = Decimal("0.01")
HUNDRED = Decimal("100")
SECONDS_PER_HOUR = Decimal("3600")


def round2(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(amount: Decimal) -> int:
    """Convert a 2dp amount to integer minor units."""
    return int((round2(amount) * HUNDRED).to_integral_value(rounding=ROUND_HALF_UP))


def _as_decimal(value: object) -> Optional[Decimal]:
    if value is None:
        return None
    return value if isinstance(value, Decimal) else Decimal(str(value))


@dataclass(frozen=True)
class RateCard:
    """Canonical rate tiers of a property."""

    hourly_rate: Optional[Decimal] = None
    daily_rate: Optional[Decimal] = None
    weekly_rate: Optional[Decimal] = None
    monthly_rate: Optional[Decimal] = None
    fee_percentage: Optional[Decimal] = None

    @classmethod
    def from_property(cls, prop: Property) -> "RateCard":
        return cls(
            hourly_rate=_as_decimal(prop.hourly_rate),
            daily_rate=_as_decimal(prop.daily_rate),
            weekly_rate=_as_decimal(prop.weekly_rate),
            monthly_rate=_as_decimal(prop.monthly_rate),
            fee_percentage=_as_decimal(prop.service_fee_percentage),
        )


@dataclass(frozen=True)
class BookingPricing:
    base_amount: Decimal
    booker_fee: Decimal
    host_fee: Decimal
    total_amount: Decimal
    host_payout: Decimal
    total_hours: Decimal
    total_days: int
    tier: str

    @property
    def total_cents(self) -> int:
        return to_cents(self.total_amount)

    @property
    def platform_fee_cents(self) -> int:
        return to_cents(self.booker_fee) + to_cents(self.host_fee)

    def to_payload(self) -> dict[str, str]:
        return {
            "base_amount": str(self.base_amount),
            "booker_fee": str(self.booker_fee),
            "host_fee": str(self.host_fee),
            "total_amount": str(self.total_amount),
            "host_payout": str(self.host_payout),
        }


def calculate_total_hours(start_at: datetime, end_at: datetime) -> Decimal:
    seconds = Decimal(str((end_at - start_at).total_seconds()))
    return seconds / SECONDS_PER_HOUR


def calculate_booking_pricing(
    rates: RateCard,
    start_at: datetime,
    end_at: datetime,
    *,
    default_fee_percentage: Optional[Decimal] = None,
) -> BookingPricing:
    """
    Price a booking window.

    Tier order: hourly (under 24h), daily, weekly (7+ days), monthly
    (30+ days), then hourly as a fallback for long stays without a matching
    tier. The fee percentage is split evenly between booker and host.

    Raises:
        ValidationException: if the window is empty or reversed
        NoPricingConfiguredException: if no rate applies
    """
    if end_at <= start_at:
        raise ValidationException("End time must be after start time")

    hours = calculate_total_hours(start_at, end_at)
    days = math.ceil(hours / 24)

    if rates.hourly_rate is not None and hours < 24:
        tier, base = "hourly", rates.hourly_rate * hours
    elif rates.daily_rate is not None and days >= 1:
        tier, base = "daily", rates.daily_rate * days
    elif rates.weekly_rate is not None and days >= 7:
        tier, base = "weekly", rates.weekly_rate * math.ceil(days / 7)
    elif rates.monthly_rate is not None and days >= 30:
        tier, base = "monthly", rates.monthly_rate * math.ceil(days / 30)
    elif rates.hourly_rate is not None:
        tier, base = "hourly", rates.hourly_rate * hours
    else:
        raise NoPricingConfiguredException()

    base = round2(base)
    fee_pct = rates.fee_percentage
    if fee_pct is None:
        fee_pct = (
            default_fee_percentage
            if default_fee_percentage is not None
            else Decimal(str(settings.default_fee_percentage))
        )
    half_pct = fee_pct / 2
    booker_fee = round2(base * half_pct / HUNDRED)
    host_fee = round2(base * half_pct / HUNDRED)
    total = round2(base + booker_fee)

    return BookingPricing(
        base_amount=base,
        booker_fee=booker_fee,
        host_fee=host_fee,
        total_amount=total,
        host_payout=round2(base - host_fee),
        total_hours=round2(hours),
        total_days=days,
        tier=tier,
    )


class PriceCalculator:
    """Prices bookings from a property's stored rates."""

    def __init__(self, default_fee_percentage: Optional[Decimal] = None):
        self.default_fee_percentage = (
            default_fee_percentage
            if default_fee_percentage is not None
            else Decimal(str(settings.default_fee_percentage))
        )

    def price(self, prop: Property, start_at: datetime, end_at: datetime) -> BookingPricing:
        try:
            return calculate_booking_pricing(
                RateCard.from_property(prop),
                start_at,
                end_at,
                default_fee_percentage=self.default_fee_percentage,
            )
        except NoPricingConfiguredException:
            raise NoPricingConfiguredException(prop.id)
