"""Pytest configuration and fixtures for testing."""

import asyncio
import os
from datetime import datetime, timedelta
from decimal import Decimal
from typing import AsyncGenerator, List, Optional

# Settings are read at import time; point them at a throwaway database
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./qrpay_test.db")
os.environ.setdefault("ORACLE_REFRESH_ENABLED", "false")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from qrpay.main import app
from qrpay.database import Base, get_db
from qrpay.api.deps import get_clock, get_notifier, get_price_oracle
from qrpay.core.events import EventBus
from qrpay.models.merchant import Merchant
from qrpay.services.merchant_service import create_merchant
from qrpay.services.price_oracle_service import PriceOracleService
from qrpay.services.session_service import PaymentSessionService
from qrpay.services.settlement_notifier import SettlementNotice
from qrpay.services.transaction_service import TransactionProcessor

MERCHANT_WALLET = "0x049d36570d4e46f48e99674bd3fcc84644ddd6b96f7c741b1562b82f9e004dc7"


class FakeClock:
    """Settable clock returning naive UTC datetimes."""

    def __init__(self, start: datetime = datetime(2026, 3, 2, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeUpstream:
    """Oracle upstream returning a configurable rate."""

    oracle_address = "0x0fake0racle"

    def __init__(self, rate=Decimal("1300")):
        self.rate = rate
        self.error: Optional[Exception] = None
        self.delay: float = 0
        self.calls = 0

    async def fetch_rate(self):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.rate


class RecordingNotifier:
    def __init__(self):
        self.notices: List[SettlementNotice] = []

    async def notify(self, notice: SettlementNotice) -> None:
        self.notices.append(notice)


@pytest.fixture
async def engine(tmp_path):
    """File-backed SQLite database per test, so sessions really run concurrently."""
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'qrpay.db'}",
        echo=False,
        connect_args={"timeout": 30},
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def price_oracle(upstream, clock, session_factory) -> PriceOracleService:
    return PriceOracleService(
        upstream,
        cache_ttl_seconds=30,
        timeout_seconds=0.5,
        fallback_rate=Decimal("1000"),
        clock=clock,
        session_factory=session_factory,
    )


@pytest.fixture
def sessions(price_oracle, clock, bus) -> PaymentSessionService:
    return PaymentSessionService(price_oracle, clock=clock, ttl_seconds=1800, bus=bus)


@pytest.fixture
def processor(sessions, price_oracle, notifier, clock, bus) -> TransactionProcessor:
    return TransactionProcessor(
        sessions,
        price_oracle,
        notifier,
        clock=clock,
        required_confirmations=1,
        bus=bus,
    )


@pytest.fixture
async def merchant(db: AsyncSession) -> Merchant:
    return await create_merchant(db, name="Cafe Tortoni", wallet_address=MERCHANT_WALLET)


@pytest.fixture
async def client(session_factory, price_oracle, notifier, clock) -> AsyncGenerator[AsyncClient, None]:
    """
    Create test client with database and service dependency overrides.
    """
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_price_oracle] = lambda: price_oracle
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_clock] = lambda: clock

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
async def api_merchant(client: AsyncClient) -> dict:
    """
    Register a merchant through the API.

    Returns:
        Merchant data
    """
    response = await client.post(
        "/api/merchants",
        json={"name": "Cafe Tortoni", "wallet_address": MERCHANT_WALLET}
    )
    assert response.status_code == 201
    return response.json()
