"""
Pytest Configuration and Centralized Fixtures.

Provides reusable fixtures for testing:
- A SQLite database per test (aiosqlite) with the full schema
- Sessions, seeded channel catalog and accounts in various states
- Builders for listing inputs
- API client with database and provider overrides
"""

import os
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any
from uuid import UUID, uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

# Set required environment variables BEFORE importing app modules
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("TRACING_ENABLED", "false")
os.environ.setdefault("LOG_FORMAT", "console")
os.environ.setdefault("STRIPE_API_KEY", "sk_test_fake_key")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_fake_secret")

from listing_engine.api.dependencies import get_generation_provider
from listing_engine.db.models import Account, Base, Channel
from listing_engine.db.session import get_read_db, get_write_db
from listing_engine.exceptions import GenerationProviderError
from listing_engine.models.api import ListingStatus, SubscriptionStatus
from listing_engine.models.domain import ChannelOverrideInput, ImageInput, ListingInput
from listing_engine.services.channel_catalog import DEFAULT_CHANNELS, channel_row
from listing_engine.services.generation_provider import GenerationRequest, GenerationResult
from listing_engine.services.plan_catalog import get_plan

# ============================================================================
# Database Fixtures
# ============================================================================


def _sqlite_url(path: Path) -> str:
    return f"sqlite+aiosqlite:///{path}"


async def _create_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@pytest.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite engine with the full schema."""
    db_engine = create_async_engine(_sqlite_url(tmp_path / "test.db"))
    await _create_schema(db_engine)
    yield db_engine
    await db_engine.dispose()


@pytest.fixture
async def serialized_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """
    SQLite engine whose transactions start with BEGIN IMMEDIATE.

    Concurrent writers queue on the database lock instead of failing with
    "database is locked", so many sessions can race on one account.
    """
    db_engine = create_async_engine(
        _sqlite_url(tmp_path / "concurrent.db"),
        connect_args={"timeout": 30},
    )

    @event.listens_for(db_engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(db_engine.sync_engine, "begin")
    def _begin_immediate(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    await _create_schema(db_engine)
    yield db_engine
    await db_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """A session on the test database."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def seeded_channels(session_factory: async_sessionmaker[AsyncSession]) -> None:
    """Default marketplace channels in the catalog."""
    async with session_factory() as session:
        session.add_all(Channel(**channel_row(definition)) for definition in DEFAULT_CHANNELS)
        await session.commit()


# ============================================================================
# Account Fixtures
# ============================================================================


AccountFactory = Callable[..., Awaitable[UUID]]


@pytest.fixture
def make_account(session_factory: async_sessionmaker[AsyncSession]) -> AccountFactory:
    """Factory inserting an account row and returning its id."""

    async def _make(
        plan_id: str = "free",
        credits_used: int = 0,
        credits_limit: int | None = None,
        created_days_ago: float = 0,
        subscription_status: SubscriptionStatus = SubscriptionStatus.TRIALING,
        stripe_subscription_id: str | None = None,
    ) -> UUID:
        account_id = uuid4()
        now = datetime.now(UTC)
        async with session_factory() as session:
            session.add(
                Account(
                    id=account_id,
                    plan_id=plan_id,
                    credits_used=credits_used,
                    credits_limit=(
                        credits_limit if credits_limit is not None else get_plan(plan_id).credits
                    ),
                    subscription_status=subscription_status,
                    stripe_subscription_id=stripe_subscription_id,
                    account_created_at=now - timedelta(days=created_days_ago),
                    updated_at=now,
                )
            )
            await session.commit()
        return account_id

    return _make


@pytest.fixture
async def account_id(make_account: AccountFactory) -> UUID:
    """A fresh free-plan account on day one of its trial."""
    return await make_account()


# ============================================================================
# Listing Builders
# ============================================================================


def build_listing(
    title: str = "Handmade Ceramic Coffee Mug with Speckled Glaze",
    description: str = "A wheel-thrown stoneware mug. " * 10,
    price: float | None = 28.0,
    images: tuple[str | ImageInput, ...] = ("a.png",),
    channels: tuple[ChannelOverrideInput, ...] = (),
    listing_id: UUID | None = None,
    status: ListingStatus = ListingStatus.DRAFT,
    **extra: Any,
) -> ListingInput:
    """ListingInput with sensible defaults; strings become unpositioned images."""
    base: dict[str, Any] = {"title": title, "description": description, **extra}
    if price is not None:
        base["price"] = price
    return ListingInput(
        status=status,
        base_data=base,
        images=tuple(i if isinstance(i, ImageInput) else ImageInput(url=i) for i in images),
        channels=channels,
        listing_id=listing_id,
    )


@pytest.fixture
def listing_builder() -> Callable[..., ListingInput]:
    """Expose build_listing as a fixture."""
    return build_listing


# ============================================================================
# API Client Fixtures
# ============================================================================


class FakeGenerationProvider:
    """Generation provider that records requests and can be told to fail."""

    def __init__(self) -> None:
        self.requests: list[GenerationRequest] = []
        self.fail = False

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        self.requests.append(request)
        if self.fail:
            raise GenerationProviderError("upstream unavailable")
        return GenerationResult(
            action_type=request.action_type,
            payload={"url": f"https://cdn.example.com/{request.action_type.value}.png"},
        )


@pytest.fixture
def fake_provider() -> FakeGenerationProvider:
    """Generation provider double."""
    return FakeGenerationProvider()


@pytest.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    seeded_channels: None,
    fake_provider: FakeGenerationProvider,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with database and provider overridden."""
    from listing_engine.main import app

    async def _db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_write_db] = _db
    app.dependency_overrides[get_read_db] = _db
    app.dependency_overrides[get_generation_provider] = lambda: fake_provider

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http

    app.dependency_overrides.clear()
