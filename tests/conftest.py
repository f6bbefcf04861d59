# Shared pytest configuration and fixtures for all test types
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from slowapi import Limiter
from slowapi.util import get_remote_address
from unittest.mock import patch

from packages.billing.calculations import ONE_MONTH

# Create test limiter with no limits and in-memory storage
test_limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],
    storage_uri="memory://",
)

# Patch the limiter before importing the app so decorators use test limiter
with patch("common.providers.rate_limiter.limiter.limiter", test_limiter):
    from api.main import app

from common.db.base import Base
from common.db.session import get_db, get_db_readonly
from packages.auth.dependencies import get_current_active_user
from packages.auth.models.domain.authenticated_user import AuthenticatedUser
from packages.billing.models.database import (
    CouponCodeEntity,
    SubscriptionEntity,
    TierEntity,
)
from packages.billing.models.domain.coupon import CouponCode
from packages.billing.models.domain.enums import (
    BillingCycle,
    PaymentProvider,
    SubscriptionStatus,
)
from packages.billing.models.domain.subscription import Subscription
from packages.billing.models.domain.tier import Tier

# Test database URL
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEST_USER_ID = 1001

TIER_SEEDS = [
    dict(id=1, name="free", display_name="Free", display_order=1,
         monthly_price=Decimal("0"), yearly_price=Decimal("0"),
         token_limit=50_000, resource_access_limit=2,
         requires_scope_selection=False, max_scope_selections=None,
         referral_points_awarded=0, referral_points_cost=0),
    dict(id=2, name="student_lite", display_name="Student Lite", display_order=2,
         monthly_price=Decimal("8"), yearly_price=Decimal("80"),
         token_limit=250_000, resource_access_limit=None,
         requires_scope_selection=True, max_scope_selections=1,
         referral_points_awarded=100, referral_points_cost=1000),
    dict(id=3, name="student", display_name="Student", display_order=3,
         monthly_price=Decimal("15"), yearly_price=Decimal("150"),
         token_limit=500_000, resource_access_limit=None,
         requires_scope_selection=True, max_scope_selections=3,
         referral_points_awarded=150, referral_points_cost=1500),
    dict(id=4, name="pro", display_name="Pro", display_order=4,
         monthly_price=Decimal("25"), yearly_price=Decimal("250"),
         token_limit=None, resource_access_limit=None,
         requires_scope_selection=False, max_scope_selections=None,
         referral_points_awarded=250, referral_points_cost=2500),
]  # fmt: skip


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create test database engine and initialize schema.

    pysqlite/aiosqlite manage BEGIN themselves and break SAVEPOINT; take
    over transaction start so nested transactions behave like Postgres.
    """
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def test_connection(test_engine):
    """Create test connection with outer transaction for rollback isolation."""
    async with test_engine.connect() as connection:
        trans = await connection.begin()
        yield connection
        await trans.rollback()


@pytest_asyncio.fixture(scope="function")
async def test_session_factory(test_connection):
    """Create session factory bound to test connection.

    Using join_transaction_mode="create_savepoint" so every transaction()
    commits into a savepoint of the outer test transaction.
    """
    return async_sessionmaker(
        bind=test_connection,
        class_=AsyncSession,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )


@pytest_asyncio.fixture(scope="function")
async def test_db(test_session_factory):
    """Create a test database session."""
    async with test_session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function", autouse=True)
async def patch_lazy_sessions(test_session_factory, monkeypatch):
    """
    Patch session factories to use test database.

    This allows real transaction() and get_session() to run with proper
    commit/rollback/ContextVar semantics while using the test database.
    """
    monkeypatch.setattr("common.db.scoped.AsyncSessionLocal", test_session_factory)
    monkeypatch.setattr(
        "common.db.scoped.AsyncSessionLocalReadonly", test_session_factory
    )


@pytest_asyncio.fixture(scope="function")
async def tiers(test_session_factory) -> dict[str, Tier]:
    """Seed the tier catalog. Returns tiers by name."""
    async with test_session_factory() as session:
        entities = [TierEntity(**seed) for seed in TIER_SEEDS]
        session.add_all(entities)
        await session.flush()
        for entity in entities:
            await session.refresh(entity)
        await session.commit()
        return {e.name: Tier.model_validate(e) for e in entities}


@pytest_asyncio.fixture(scope="function")
async def make_subscription(test_session_factory, tiers):
    """Insert a subscription row directly, bypassing the services."""

    async def _make(
        user_id: int = TEST_USER_ID,
        tier: str = "free",
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
        billing_cycle: BillingCycle = BillingCycle.MONTHLY,
        payment_provider: Optional[PaymentProvider] = None,
        period_start_date: Optional[datetime] = None,
        period_end_date: Optional[datetime] = None,
        **overrides,
    ) -> Subscription:
        start = period_start_date or datetime.now(timezone.utc)
        values = dict(
            user_id=user_id,
            tier_id=tiers[tier].id,
            status=status.value,
            billing_cycle=billing_cycle.value,
            payment_provider=(
                payment_provider
                or (PaymentProvider.FREE if tier == "free" else PaymentProvider.STRIPE)
            ).value,
            is_recurring=True,
            period_start_date=start,
            period_end_date=period_end_date or start + ONE_MONTH,
            accessed_resource_ids=[],
        )
        values.update(overrides)
        async with test_session_factory() as session:
            entity = SubscriptionEntity(**values)
            session.add(entity)
            await session.flush()
            await session.refresh(entity)
            await session.commit()
            return Subscription.model_validate(entity)

    return _make


@pytest_asyncio.fixture(scope="function")
async def concurrent_db(tmp_path, monkeypatch) -> dict[str, Tier]:
    """
    File-backed database for tests that run sessions concurrently.

    The shared in-memory connection only supports strictly nested sessions.
    Here every session gets its own connection and every transaction starts
    with BEGIN IMMEDIATE, so SQLite serialises writers the way the advisory
    lock does on Postgres. Returns the seeded tiers by name.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}",
        connect_args={"timeout": 30},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(
        bind=engine, class_=AsyncSession, expire_on_commit=False
    )
    async with factory() as session:
        entities = [TierEntity(**seed) for seed in TIER_SEEDS]
        session.add_all(entities)
        await session.flush()
        for entity in entities:
            await session.refresh(entity)
        await session.commit()
        seeded = {e.name: Tier.model_validate(e) for e in entities}

    monkeypatch.setattr("common.db.scoped.AsyncSessionLocal", factory)
    monkeypatch.setattr("common.db.scoped.AsyncSessionLocalReadonly", factory)
    yield seeded
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def make_coupon(test_session_factory):
    """Insert a coupon code row."""

    async def _make(code: str = "WELCOME10", **overrides) -> CouponCode:
        values = dict(
            code=code.upper(),
            discount_percentage=10,
            valid_from=utc(2020, 1, 1),
            valid_until=None,
            max_uses=None,
            current_uses=0,
            is_active=True,
            applicable_tier_ids=[],
            applicable_billing_cycles=[],
        )
        values.update(overrides)
        async with test_session_factory() as session:
            entity = CouponCodeEntity(**values)
            session.add(entity)
            await session.flush()
            await session.refresh(entity)
            await session.commit()
            return CouponCode.model_validate(entity)

    return _make


@pytest_asyncio.fixture(scope="function")
async def test_user() -> AuthenticatedUser:
    return AuthenticatedUser(user_id=TEST_USER_ID, provider_user_id="firebase-uid-1001")


@pytest_asyncio.fixture(scope="function")
async def client(test_db: AsyncSession, test_user):
    """Create a test client authenticated as ``test_user``."""

    def override_get_db():
        try:
            yield test_db
        finally:
            pass

    def override_get_current_active_user():
        return test_user

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_db_readonly] = override_get_db
    app.dependency_overrides[get_current_active_user] = override_get_current_active_user

    try:
        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://test"
        ) as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()
