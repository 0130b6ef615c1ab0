# backend/tests/conftest.py
"""
Pytest configuration.

Every test gets a fresh in-memory SQLite database and a session with
expire_on_commit=False, matching the application's SessionLocal. The Stripe
client is always a MagicMock; nothing talks to the network.
"""

import os

# Secrets must be in the environment before spacebook.core.config is imported
os.environ.setdefault("SECRET_KEY", "test-jwt-secret")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_not_used")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("CRON_SECRET", "cron-test-secret")

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Iterator, Optional
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from spacebook.database import Base
import spacebook.models  # noqa: F401 - registers tables
from spacebook.models.booking import Booking, BookingStatus, PaymentStatus
from spacebook.models.property import HostPayoutAccount, Property
from spacebook.services.dependencies import SettlementServices, build_services
from tests.helpers import NOW, FrozenClock, new_id


@pytest.fixture
def session_factory() -> Iterator[sessionmaker]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory: sessionmaker) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def stripe_client() -> MagicMock:
    client = MagicMock(name="StripeClient")
    client.payment_intents.create.return_value = {
        "id": "pi_test_1",
        "client_secret": "pi_test_1_secret",
        "status": "requires_payment_method",
    }
    client.refunds.create.return_value = {"id": "re_test_1", "status": "succeeded"}
    return client


@pytest.fixture
def services(db: Session, stripe_client: MagicMock, clock: FrozenClock) -> SettlementServices:
    return build_services(db, stripe_client=stripe_client, clock=clock)


@pytest.fixture
def host_id() -> str:
    return new_id()


@pytest.fixture
def renter_id() -> str:
    return new_id()


@pytest.fixture
def make_property(db: Session, host_id: str) -> Callable[..., Property]:
    def _make(**overrides: Any) -> Property:
        values: dict[str, Any] = {
            "host_id": host_id,
            "title": "Covered parking near the station",
            "hourly_rate": Decimal("10.00"),
            "daily_rate": Decimal("60.00"),
            "service_fee_percentage": Decimal("10"),
            "min_booking_hours": 1,
            "max_booking_days": 30,
        }
        values.update(overrides)
        prop = Property(**values)
        db.add(prop)
        db.commit()
        return prop

    return _make


@pytest.fixture
def property_(make_property: Callable[..., Property]) -> Property:
    return make_property()


@pytest.fixture
def make_booking(db: Session, property_: Property, renter_id: str) -> Callable[..., Booking]:
    """Insert a booking row directly, bypassing the service rules."""

    def _make(
        start_at: Optional[datetime] = None,
        hours: int = 3,
        **overrides: Any,
    ) -> Booking:
        start_at = start_at or NOW + timedelta(days=3)
        values: dict[str, Any] = {
            "property_id": property_.id,
            "renter_id": renter_id,
            "host_id": property_.host_id,
            "start_at": start_at,
            "end_at": start_at + timedelta(hours=hours),
            "total_hours": Decimal(hours),
            "base_amount": Decimal("30.00"),
            "service_fee": Decimal("1.50"),
            "host_fee": Decimal("1.50"),
            "total_amount": Decimal("31.50"),
            "currency": "cad",
            "status": BookingStatus.PENDING.value,
            "payment_status": PaymentStatus.PENDING.value,
        }
        values.update(overrides)
        booking = Booking(**values)
        db.add(booking)
        db.commit()
        return booking

    return _make


@pytest.fixture
def payout_account(db: Session, host_id: str) -> HostPayoutAccount:
    account = HostPayoutAccount(
        host_id=host_id, stripe_account_id="acct_host_1", payouts_ready=True
    )
    db.add(account)
    db.commit()
    return account
