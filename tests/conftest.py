# Shared pytest configuration and fixtures for all test types
import pytest_asyncio
from datetime import datetime, timezone
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from api.main import app
from common.db.base import Base
from packages.billing.models.database import (
    PlanEntity,
    SubscriptionEntity,
    UsageMetricEntity,
    UsageTierEntity,
)
from packages.billing.models.domain.enums import (
    AggregationType,
    BillingCycle,
    SubscriptionStatus,
    TierKind,
)
from packages.billing.models.domain.plan import Plan
from packages.billing.models.domain.subscription import Subscription
from packages.billing.models.domain.usage import UsageMetric

# Test database URL
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

PERIOD_START = datetime(2026, 1, 1, tzinfo=timezone.utc)
PERIOD_END = datetime(2026, 2, 1, tzinfo=timezone.utc)


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create test database engine and initialize schema."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)
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

    Using join_transaction_mode="create_savepoint" so nested transaction()
    calls create savepoints instead of real nested transactions.
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
async def client():
    """Create a test client."""
    try:
        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://test"
        ) as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def sample_metric(test_db: AsyncSession):
    """Create a summed API-call metric with a two-band unit tier table."""
    metric = UsageMetricEntity(
        name="api_calls", aggregation_type=AggregationType.SUM.value
    )
    test_db.add(metric)
    await test_db.commit()
    await test_db.refresh(metric)

    test_db.add_all(
        [
            UsageTierEntity(
                metric_id=metric.id,
                min=0,
                max=100,
                kind=TierKind.UNIT.value,
                unit_price=10,
            ),
            UsageTierEntity(
                metric_id=metric.id,
                min=100,
                max=500,
                kind=TierKind.UNIT.value,
                unit_price=8,
            ),
        ]
    )
    await test_db.commit()
    return UsageMetric.model_validate(metric)


@pytest_asyncio.fixture(scope="function")
async def sample_plan(test_db: AsyncSession, sample_metric):
    """Create a 9000/month plan billing the sample metric."""
    plan = PlanEntity(
        name="Starter",
        price=9000,
        billing_cycle=BillingCycle.MONTHLY.value,
        usage_limits={"api_calls": 500},
        metric_ids=[sample_metric.id],
        active=True,
    )
    test_db.add(plan)
    await test_db.commit()
    await test_db.refresh(plan)
    return Plan.model_validate(plan)


@pytest_asyncio.fixture(scope="function")
async def upgrade_plan(test_db: AsyncSession):
    """Create a 15000/month plan."""
    plan = PlanEntity(
        name="Growth",
        price=15000,
        billing_cycle=BillingCycle.MONTHLY.value,
        usage_limits={},
        metric_ids=[],
        active=True,
    )
    test_db.add(plan)
    await test_db.commit()
    await test_db.refresh(plan)
    return Plan.model_validate(plan)


@pytest_asyncio.fixture(scope="function")
async def sample_subscription(test_db: AsyncSession, sample_plan):
    """Create an active subscription whose January period is due on Feb 1st."""
    subscription = SubscriptionEntity(
        owner_id=1,
        plan_id=sample_plan.id,
        status=SubscriptionStatus.ACTIVE.value,
        current_period_start=PERIOD_START,
        current_period_end=PERIOD_END,
        payment_method_id="pm_primary",
        fallback_payment_method_id="pm_fallback",
        external_customer_id="cus_test123",
        failed_payment_count=0,
        cancel_at_period_end=False,
        version=1,
    )
    test_db.add(subscription)
    await test_db.commit()
    await test_db.refresh(subscription)
    return Subscription.model_validate(subscription)
