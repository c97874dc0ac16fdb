"""
Pytest configuration and fixtures.

Store-backed tests run against an in-memory SQLite database (aiosqlite) with
foreign keys enforced; outbound HTTP goes through ``httpx.MockTransport``.
"""
import os
import uuid
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Callable

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Settings are read lazily by get_settings(); give them something to read
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("ENCRYPTION_KEY", "test-encryption-key-0123456789abcdef")

from loop_backend.config import Settings  # noqa: E402
from loop_backend.core.vault import CredentialVault  # noqa: E402
from loop_backend.core.webhook_dispatcher import WebhookDispatcher  # noqa: E402
from loop_backend.database.models import Base, Merchant, Order  # noqa: E402

TEST_ENCRYPTION_KEY = "test-encryption-key-0123456789abcdef"
FIXED_NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


def as_naive_utc(value: datetime) -> datetime:
    """Normalize a datetime for comparison (SQLite drops tzinfo on the way back)."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        database_url="sqlite+aiosqlite://",
        encryption_key=TEST_ENCRYPTION_KEY,
        app_name="loop-worker-backend-test",
        app_env="test",
        log_level="DEBUG",
    )


@pytest.fixture
def vault() -> CredentialVault:
    """Vault keyed with the test secret."""
    return CredentialVault(TEST_ENCRYPTION_KEY)


@pytest_asyncio.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, Any]:
    """Create an in-memory database with the full schema."""
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database."""
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def test_db(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, Any]:
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def merchant(session_factory: async_sessionmaker[AsyncSession]) -> Merchant:
    """A merchant with a webhook endpoint and signing secret."""
    async with session_factory() as session:
        merchant = Merchant(
            id=uuid.uuid4(),
            name="Acme Store",
            email="payments@acme.test",
            password_hash="not-a-real-hash",
            webhook_url="https://merchant.test/webhooks",
            webhook_secret="whsec_test_secret",
        )
        session.add(merchant)
        await session.commit()
    return merchant


@pytest_asyncio.fixture
async def order(session_factory: async_sessionmaker[AsyncSession], merchant: Merchant) -> Order:
    """A pending order of 2500 minor units."""
    async with session_factory() as session:
        order = Order(
            id=uuid.uuid4(),
            merchant_id=merchant.id,
            external_id="order_ext_123",
            amount=2500,
            currency="USD",
            status="pending",
            processor="stripe",
            order_metadata={"cart_id": "cart_42"},
        )
        session.add(order)
        await session.commit()
    return order


def make_dispatcher(
    handler: Callable[[httpx.Request], httpx.Response],
    settings: Settings,
    now: datetime = FIXED_NOW,
) -> WebhookDispatcher:
    """Dispatcher whose HTTP calls go to ``handler`` and whose clock is frozen."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WebhookDispatcher(http_client=client, settings=settings, clock=lambda: now)
