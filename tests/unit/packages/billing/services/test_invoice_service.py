"""
Unit tests for InvoiceAssembler.

Tests invoice assembly with a mocked gateway; invoices are persisted to
the test database unless a test swaps in a mocked store.
"""

import pytest
from decimal import Decimal
from unittest.mock import AsyncMock, patch

from packages.billing.exceptions import (
    ConsistencyError,
    TaxComputationError,
    ValidationError,
)
from packages.billing.models.domain.enums import (
    InvoiceItemKind,
    InvoiceStatus,
    SubscriptionStatus,
)
from packages.billing.models.domain.invoice import Invoice, OneTimeChargeCreateModel
from packages.billing.models.domain.plan import Plan
from packages.billing.models.domain.subscription import Subscription
from packages.billing.models.domain.usage import UsageCharge
from packages.billing.providers.store.interface import BillingStoreInterface
from packages.billing.providers.tax.flat_rate_tax import FlatRateTaxEngine
from packages.billing.providers.tax.interface import TaxEngineInterface
from packages.billing.services.invoice_service import InvoiceAssembler
from tests.conftest import PERIOD_END, PERIOD_START


def usage_charge(metric_id: int, amount: int) -> UsageCharge:
    return UsageCharge(
        metric_id=metric_id, metric_name="api_calls", usage=Decimal(150), amount=amount
    )


@pytest.fixture
def assembler(billing_store, mock_gateway, tax_engine):
    return InvoiceAssembler(store=billing_store, gateway=mock_gateway, tax_engine=tax_engine)


@patch("common.core.otel_axiom_exporter.axiom_tracer.start_as_current_span")
class TestAssemble:
    """Tests for invoice assembly."""

    @pytest.mark.asyncio
    async def test_assemble_invoice(
        self,
        mock_start_span,
        assembler,
        mock_gateway,
        sample_subscription,
        sample_plan,
        sample_metric,
    ):
        invoice = await assembler.assemble(
            sample_subscription, sample_plan, [usage_charge(sample_metric.id, 1400)]
        )

        assert invoice.id is not None
        assert invoice.status == InvoiceStatus.OPEN
        assert invoice.period_key == sample_subscription.period_key
        assert invoice.period_start == PERIOD_START
        assert invoice.period_end == PERIOD_END
        assert invoice.subtotal == 10400
        assert invoice.tax == 0
        assert invoice.total == 10400
        assert invoice.amount_due == 10400
        assert invoice.external_invoice_id == "in_test"
        assert [item.kind for item in invoice.items] == [
            InvoiceItemKind.SUBSCRIPTION,
            InvoiceItemKind.USAGE,
        ]

        kwargs = mock_gateway.create_invoice.call_args.kwargs
        assert kwargs["idempotency_key"] == (
            f"{sample_subscription.id}:{sample_subscription.period_key}:invoice"
        )
        assert kwargs["customer_id"] == "cus_test123"

    @pytest.mark.asyncio
    async def test_zero_usage_lines_are_dropped(
        self, mock_start_span, assembler, sample_subscription, sample_plan, sample_metric
    ):
        invoice = await assembler.assemble(
            sample_subscription, sample_plan, [usage_charge(sample_metric.id, 0)]
        )

        assert len(invoice.items) == 1
        assert invoice.subtotal == sample_plan.price

    @pytest.mark.asyncio
    async def test_assemble_is_idempotent_per_period(
        self, mock_start_span, assembler, mock_gateway, sample_subscription, sample_plan
    ):
        first = await assembler.assemble(sample_subscription, sample_plan, [])
        second = await assembler.assemble(sample_subscription, sample_plan, [])

        assert first.id == second.id
        mock_gateway.create_invoice.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_jurisdiction_tax(
        self, mock_start_span, billing_store, mock_gateway, sample_subscription, sample_plan
    ):
        assembler = InvoiceAssembler(
            store=billing_store,
            gateway=mock_gateway,
            tax_engine=FlatRateTaxEngine(
                default_rate_bps=0, jurisdiction_rates_bps={"DE": 1900}
            ),
        )
        subscription = sample_subscription.model_copy(update={"tax_jurisdiction": "DE"})

        invoice = await assembler.assemble(subscription, sample_plan, [])

        assert invoice.tax == 1710
        assert invoice.total == 10710

    @pytest.mark.asyncio
    async def test_one_time_charges_are_consumed(
        self, mock_start_span, assembler, billing_store, sample_subscription, sample_plan
    ):
        await billing_store.add_one_time_charge(
            OneTimeChargeCreateModel(
                subscription_id=sample_subscription.id,
                description="Credit for unused time",
                amount=-2000,
            )
        )

        invoice = await assembler.assemble(sample_subscription, sample_plan, [])

        assert invoice.subtotal == 7000
        assert invoice.items[-1].kind == InvoiceItemKind.ONE_TIME
        assert await billing_store.get_pending_one_time_charges(sample_subscription.id) == []

    @pytest.mark.asyncio
    async def test_credit_larger_than_total_carries_remainder_forward(
        self, mock_start_span, assembler, billing_store, sample_subscription, sample_plan
    ):
        await billing_store.add_one_time_charge(
            OneTimeChargeCreateModel(
                subscription_id=sample_subscription.id,
                description="Credit",
                amount=-12000,
            )
        )

        invoice = await assembler.assemble(sample_subscription, sample_plan, [])

        assert invoice.total == -3000
        assert invoice.amount_due == 0

        pending = await billing_store.get_pending_one_time_charges(sample_subscription.id)
        assert [charge.amount for charge in pending] == [-3000]
        assert pending[0].invoice_id is None
        assert invoice.period_key in pending[0].description

    @pytest.mark.asyncio
    async def test_tax_failure_leaves_gateway_untouched(
        self, mock_start_span, billing_store, mock_gateway, sample_subscription, sample_plan
    ):
        failing_tax = AsyncMock(spec=TaxEngineInterface)
        failing_tax.compute_tax.side_effect = RuntimeError("tax service down")
        assembler = InvoiceAssembler(
            store=billing_store, gateway=mock_gateway, tax_engine=failing_tax
        )

        with pytest.raises(TaxComputationError):
            await assembler.assemble(sample_subscription, sample_plan, [])

        mock_gateway.create_invoice.assert_not_awaited()
        assert await billing_store.get_invoice_by_period_key(
            sample_subscription.period_key
        ) is None

    @pytest.mark.asyncio
    async def test_negative_tax_rejected(
        self, mock_start_span, billing_store, mock_gateway, sample_subscription, sample_plan
    ):
        bad_tax = AsyncMock(spec=TaxEngineInterface)
        bad_tax.compute_tax.return_value = -1
        assembler = InvoiceAssembler(
            store=billing_store, gateway=mock_gateway, tax_engine=bad_tax
        )

        with pytest.raises(TaxComputationError):
            await assembler.assemble(sample_subscription, sample_plan, [])

        mock_gateway.create_invoice.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_new_invoice_after_void(
        self, mock_start_span, assembler, mock_gateway, sample_subscription, sample_plan
    ):
        first = await assembler.assemble(sample_subscription, sample_plan, [])
        await assembler.void(first)

        second = await assembler.assemble(sample_subscription, sample_plan, [])

        assert second.id != first.id
        assert second.status == InvoiceStatus.OPEN
        assert mock_gateway.create_invoice.await_count == 2


@patch("common.core.otel_axiom_exporter.axiom_tracer.start_as_current_span")
class TestPersistReconciliation:
    """Local persist failures after the gateway invoice exists."""

    @pytest.fixture
    def subscription(self):
        return Subscription(
            id=1,
            owner_id=1,
            plan_id=1,
            status=SubscriptionStatus.ACTIVE,
            current_period_start=PERIOD_START,
            current_period_end=PERIOD_END,
            external_customer_id="cus_test123",
        )

    @pytest.fixture
    def plan(self):
        return Plan(id=1, name="Starter", price=9000, billing_cycle="monthly")

    @pytest.fixture
    def mock_store(self):
        store = AsyncMock(spec=BillingStoreInterface)
        store.get_invoice_by_period_key.return_value = None
        store.get_pending_one_time_charges.return_value = []
        return store

    @pytest.mark.asyncio
    async def test_persist_retries_then_raises(
        self, mock_start_span, mock_store, mock_gateway, tax_engine, subscription, plan
    ):
        mock_store.create_invoice.side_effect = RuntimeError("connection lost")
        assembler = InvoiceAssembler(
            store=mock_store, gateway=mock_gateway, tax_engine=tax_engine
        )

        with pytest.raises(ConsistencyError) as exc_info:
            await assembler.assemble(subscription, plan, [])

        assert exc_info.value.external_id == "in_test"
        assert exc_info.value.period_key == subscription.period_key
        assert mock_store.create_invoice.await_count == assembler.persist_attempts
        mock_gateway.create_invoice.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_persist_reconciles_with_concurrent_writer(
        self, mock_start_span, mock_store, mock_gateway, tax_engine, subscription, plan
    ):
        existing = Invoice(
            id=42,
            subscription_id=1,
            period_key=subscription.period_key,
            period_start=PERIOD_START,
            period_end=PERIOD_END,
            subtotal=9000,
            tax=0,
            total=9000,
            amount_due=9000,
            status=InvoiceStatus.OPEN,
            external_invoice_id="in_test",
        )
        mock_store.get_invoice_by_period_key.side_effect = [None, existing]
        mock_store.create_invoice.side_effect = ConsistencyError("duplicate period")
        assembler = InvoiceAssembler(
            store=mock_store, gateway=mock_gateway, tax_engine=tax_engine
        )

        invoice = await assembler.assemble(subscription, plan, [])

        assert invoice.id == 42
        mock_store.create_invoice.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_persist_succeeds_on_retry(
        self, mock_start_span, mock_store, mock_gateway, tax_engine, subscription, plan
    ):
        stored = Invoice(
            id=7,
            subscription_id=1,
            period_key=subscription.period_key,
            period_start=PERIOD_START,
            period_end=PERIOD_END,
            subtotal=9000,
            tax=0,
            total=9000,
            amount_due=9000,
            status=InvoiceStatus.OPEN,
        )
        mock_store.create_invoice.side_effect = [RuntimeError("timeout"), stored]
        assembler = InvoiceAssembler(
            store=mock_store, gateway=mock_gateway, tax_engine=tax_engine
        )

        invoice = await assembler.assemble(subscription, plan, [])

        assert invoice.id == 7
        assert mock_store.create_invoice.await_count == 2

    @pytest.mark.asyncio
    async def test_negative_plan_price_rejected(
        self, mock_start_span, mock_store, mock_gateway, tax_engine, subscription, plan
    ):
        assembler = InvoiceAssembler(
            store=mock_store, gateway=mock_gateway, tax_engine=tax_engine
        )

        with pytest.raises(ValidationError):
            await assembler.assemble(subscription, plan.model_copy(update={"price": -1}), [])


@patch("common.core.otel_axiom_exporter.axiom_tracer.start_as_current_span")
class TestSettlement:
    @pytest.mark.asyncio
    async def test_mark_paid(
        self, mock_start_span, assembler, sample_subscription, sample_plan
    ):
        invoice = await assembler.assemble(sample_subscription, sample_plan, [])

        paid = await assembler.mark_paid(invoice)

        assert paid.status == InvoiceStatus.PAID
        assert paid.paid_at is not None

    @pytest.mark.asyncio
    async def test_void_paid_invoice_rejected(
        self, mock_start_span, assembler, sample_subscription, sample_plan
    ):
        invoice = await assembler.assemble(sample_subscription, sample_plan, [])
        paid = await assembler.mark_paid(invoice)

        with pytest.raises(ValidationError):
            await assembler.void(paid)

    @pytest.mark.asyncio
    async def test_pay_void_invoice_rejected(
        self, mock_start_span, assembler, sample_subscription, sample_plan
    ):
        invoice = await assembler.assemble(sample_subscription, sample_plan, [])
        voided = await assembler.void(invoice)

        with pytest.raises(ValidationError):
            await assembler.mark_paid(voided)
