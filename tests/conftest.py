import asyncio
import sys
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest
import sqlalchemy as sa
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.domain.bookings import db_models as booking_db_models  # noqa: F401
from app.domain.checkout import db_models as checkout_db_models  # noqa: F401
from app.domain.checkout.gateway import GatewayCheckout
from app.domain.errors import PaymentGatewayUnavailable
from app.domain.promos import db_models as promo_db_models
from app.domain.resources import db_models as resource_db_models
from app.infra.db import Base, get_db_session
from app.infra.slot_locks import InMemorySlotLocks
from app.main import app
from app.settings import settings

# 2030-01-07 is a Monday
BOOKING_DATE = date(2030, 1, 7)
START_OF_TEST = datetime(2030, 1, 6, 12, 0, tzinfo=timezone.utc)
CALLBACK_TOKEN = "gateway-test-token"

RESTORED_SETTINGS = (
    "admin_basic_username",
    "admin_basic_password",
    "payment_callback_secret",
    "stripe_secret_key",
    "stripe_webhook_secret",
    "service_fee_rate",
    "tax_rate",
    "price_tolerance",
    "hold_ttl_minutes",
    "slot_lock_wait_seconds",
    "testing",
    "app_env",
    "metrics_enabled",
    "metrics_token",
)


class MutableClock:
    def __init__(self, start: datetime = START_OF_TEST) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeGateway:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[dict] = []

    async def create_checkout(self, *, session_id, amount_minor, currency, split, metadata):
        self.calls.append(
            {
                "session_id": session_id,
                "amount_minor": amount_minor,
                "currency": currency,
                "split": split,
                "metadata": metadata,
            }
        )
        if self.fail:
            raise PaymentGatewayUnavailable("Payment gateway is down")
        return GatewayCheckout(url=f"https://pay.test/{session_id}", gateway_session_id=f"gw_{session_id}")


async def seed_reference_data(conn) -> None:
    await conn.execute(
        sa.insert(resource_db_models.Venue),
        [
            {
                "venue_id": "venue-1",
                "name": "Riverside Arena",
                "hourly_rate": Decimal("1000"),
                "sport_pricing": {"Cricket": 1200, "Squash": "free", "Hockey": -50},
                "allow_external_coaches": True,
                "is_active": True,
            },
            {
                "venue_id": "venue-2",
                "name": "Members Club",
                "hourly_rate": Decimal("800"),
                "sport_pricing": {},
                "allow_external_coaches": False,
                "is_active": True,
            },
            {
                "venue_id": "venue-closed",
                "name": "Old Ground",
                "hourly_rate": Decimal("500"),
                "sport_pricing": {},
                "allow_external_coaches": True,
                "is_active": False,
            },
        ],
    )
    await conn.execute(
        sa.insert(resource_db_models.Coach),
        [
            {
                "coach_id": "coach-1",
                "name": "Asha",
                "hourly_rate": Decimal("500"),
                "sport_pricing": {},
                "home_venue_id": "venue-1",
                "availability": [],
                "is_active": True,
            },
            {
                "coach_id": "coach-2",
                "name": "Vikram",
                "hourly_rate": Decimal("700"),
                "sport_pricing": {"Tennis": 900},
                "home_venue_id": None,
                "availability": [{"day_of_week": 0, "start_time": "09:00", "end_time": "12:00"}],
                "is_active": True,
            },
        ],
    )
    await conn.execute(
        sa.insert(promo_db_models.PromoCode),
        [
            {
                "promo_id": "promo-1",
                "code": "SAVE10",
                "description": "10% off",
                "discount_type": "PERCENTAGE",
                "discount_value": Decimal("10"),
                "tiers": [],
                "applicable_to": "ALL",
                "is_active": True,
            }
        ],
    )


async def _reset(engine) -> None:
    async with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            await conn.execute(table.delete())
        await seed_reference_data(conn)


@pytest.fixture(scope="session")
def test_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())
    yield engine
    asyncio.run(engine.dispose())


@pytest.fixture(scope="session")
def async_session_maker(test_engine):
    return async_sessionmaker(test_engine, expire_on_commit=False)


@pytest.fixture()
def file_session_maker(tmp_path):
    """Session factory on a file-backed database, for tests that race separate connections."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'race.db'}")

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await _reset(engine)

    asyncio.run(init_models())
    yield async_sessionmaker(engine, expire_on_commit=False)
    asyncio.run(engine.dispose())


@pytest.fixture(autouse=True)
def restore_settings():
    original = {name: getattr(settings, name) for name in RESTORED_SETTINGS}
    yield
    for name, value in original.items():
        setattr(settings, name, value)


@pytest.fixture(autouse=True)
def enable_test_mode():
    settings.testing = True
    settings.app_env = "dev"
    settings.payment_callback_secret = CALLBACK_TOKEN
    app.state.slot_locks = InMemorySlotLocks(wait_seconds=settings.slot_lock_wait_seconds)
    app.state.payment_gateway = None
    app.state.stripe_client = None
    app.state.clock = None
    yield


@pytest.fixture(autouse=True)
def clean_database(test_engine):
    asyncio.run(_reset(test_engine))
    yield


@pytest.fixture()
def clock():
    clock = MutableClock()
    app.state.clock = clock
    return clock


@pytest.fixture()
def fake_gateway():
    gateway = FakeGateway()
    app.state.payment_gateway = gateway
    return gateway


@pytest.fixture()
def client(async_session_maker):
    async def override_db_session():
        async with async_session_maker() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_db_session
    original_factory = getattr(app.state, "db_session_factory", None)
    app.state.db_session_factory = async_session_maker
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    app.state.db_session_factory = original_factory


def booking_payload(**overrides) -> dict:
    payload = {
        "venue_id": "venue-1",
        "sport": "Cricket",
        "date": BOOKING_DATE.isoformat(),
        "start_time": "09:00",
        "end_time": "11:00",
    }
    payload.update(overrides)
    return {key: value for key, value in payload.items() if value is not None}


def at(hour: int, minute: int = 0) -> time:
    return time(hour=hour, minute=minute)
