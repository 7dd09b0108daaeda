import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from common.providers.locking.memory_lock import InMemoryLock
from packages.billing.models.domain.payments import ChargeResult, ChargeStatus
from packages.billing.providers.payment.interface import PaymentGatewayInterface
from packages.billing.providers.store.sql_store import SqlBillingStore
from packages.billing.providers.tax.flat_rate_tax import FlatRateTaxEngine
from packages.billing.services.billing_cycle_service import BillingCycleOrchestrator
from packages.billing.services.payment_retry_service import PaymentRetryCoordinator


def succeeding_charge(**kwargs):
    return ChargeResult(
        status=ChargeStatus.SUCCEEDED, external_id=f"pi_{kwargs['idempotency_key']}"
    )


@pytest.fixture
def mock_gateway():
    """Create a mock payment gateway whose charges succeed."""
    gateway = AsyncMock(spec=PaymentGatewayInterface)
    gateway.create_charge = AsyncMock(side_effect=succeeding_charge)
    gateway.create_invoice = AsyncMock(return_value="in_test")
    gateway.refund = AsyncMock(return_value="re_test")
    gateway.parse_webhook = MagicMock()
    gateway.health_check = AsyncMock(return_value=True)
    return gateway


@pytest.fixture
def tax_engine():
    return FlatRateTaxEngine(default_rate_bps=0, jurisdiction_rates_bps={})


@pytest.fixture
def billing_store():
    return SqlBillingStore()


@pytest.fixture
def lock_provider():
    return InMemoryLock()


@pytest.fixture
def recorded_sleeps():
    """Sleep replacement that records requested delays instead of waiting."""
    delays = []

    async def sleep(delay: float) -> None:
        delays.append(delay)

    sleep.delays = delays
    return sleep


@pytest.fixture
def payments(billing_store, mock_gateway):
    return PaymentRetryCoordinator(store=billing_store, gateway=mock_gateway)


@pytest.fixture
def orchestrator(billing_store, mock_gateway, tax_engine, lock_provider, recorded_sleeps):
    return BillingCycleOrchestrator(
        store=billing_store,
        gateway=mock_gateway,
        tax_engine=tax_engine,
        lock_provider=lock_provider,
        sleep=recorded_sleeps,
    )


@pytest.fixture
def mock_lock_provider():
    """Create a mock lock provider instance for testing."""
    lock = AsyncMock()
    lock.acquire_lock = AsyncMock(return_value="test-lock-token")
    lock.acquire_lock_with_retry = AsyncMock(return_value="test-lock-token")
    lock.release_lock = AsyncMock(return_value=True)
    lock.extend_lock = AsyncMock(return_value=True)
    lock.is_locked = AsyncMock(return_value=False)
    lock.connect = AsyncMock(return_value=True)
    lock.disconnect = AsyncMock(return_value=None)
    return lock


@pytest.fixture
def mock_span():
    """Create a mock span instance for testing telemetry."""
    span = MagicMock()
    span.__enter__ = MagicMock(return_value=span)
    span.__exit__ = MagicMock(return_value=None)
    span.__aenter__ = AsyncMock(return_value=span)
    span.__aexit__ = AsyncMock(return_value=None)
    return span


@pytest.fixture
def mock_start_span(mock_span):
    """Create a mock start_span function that returns mock_span."""
    with patch(
        "common.core.otel_axiom_exporter.axiom_tracer.start_as_current_span",
        return_value=mock_span,
    ) as mock:
        yield mock
