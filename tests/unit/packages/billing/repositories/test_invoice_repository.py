"""
Unit tests for invoice, transaction and webhook event persistence.
"""

import pytest

from packages.billing.exceptions import ConsistencyError
from packages.billing.models.domain.enums import (
    InvoiceStatus,
    TransactionKind,
    TransactionStatus,
)
from packages.billing.models.domain.invoice import (
    InvoiceCreateModel,
    OneTimeChargeCreateModel,
)
from packages.billing.models.domain.transaction import (
    TransactionCreateModel,
    TransactionUpdateModel,
)
from packages.billing.repositories.invoice_repository import (
    InvoiceRepository,
    OneTimeChargeRepository,
)
from packages.billing.repositories.transaction_repository import TransactionRepository
from packages.billing.repositories.webhook_event_repository import (
    ProcessedWebhookEventRepository,
)
from tests.conftest import PERIOD_END, PERIOD_START


def invoice_for(subscription, external_id="in_1") -> InvoiceCreateModel:
    return InvoiceCreateModel(
        subscription_id=subscription.id,
        period_key=subscription.period_key,
        period_start=PERIOD_START,
        period_end=PERIOD_END,
        items=[{"kind": "subscription", "description": "Starter", "amount": 9000}],
        subtotal=9000,
        tax=0,
        total=9000,
        amount_due=9000,
        external_invoice_id=external_id,
    )


def charge_for(subscription, key, status=TransactionStatus.PENDING, kind=None):
    return TransactionCreateModel(
        subscription_id=subscription.id,
        amount=9000,
        status=status,
        kind=kind or TransactionKind.SUBSCRIPTION_CHARGE,
        idempotency_key=key,
        period_key=subscription.period_key,
    )


@pytest.mark.asyncio
class TestInvoiceRepository:
    """Tests for InvoiceRepository."""

    async def test_get_by_period_key(self, test_db, sample_subscription):
        repo = InvoiceRepository(test_db)
        created = await repo.create(invoice_for(sample_subscription))

        invoice = await repo.get_by_period_key(sample_subscription.period_key)

        assert invoice.id == created.id
        assert invoice.status == InvoiceStatus.OPEN
        assert invoice.items[0].amount == 9000

    async def test_void_invoice_frees_period(self, test_db, sample_subscription):
        repo = InvoiceRepository(test_db)
        first = await repo.create(invoice_for(sample_subscription))
        await repo.set_status(first.id, InvoiceStatus.VOID)

        assert await repo.get_by_period_key(sample_subscription.period_key) is None

        second = await repo.create(invoice_for(sample_subscription, external_id="in_2"))
        current = await repo.get_by_period_key(sample_subscription.period_key)
        assert current.id == second.id

    async def test_get_latest_open(self, test_db, sample_subscription):
        repo = InvoiceRepository(test_db)
        created = await repo.create(invoice_for(sample_subscription))

        assert (await repo.get_latest_open(sample_subscription.id)).id == created.id

        await repo.set_status(created.id, InvoiceStatus.PAID, paid_at=PERIOD_END)
        assert await repo.get_latest_open(sample_subscription.id) is None

    async def test_get_by_external_id(self, test_db, sample_subscription):
        repo = InvoiceRepository(test_db)
        created = await repo.create(invoice_for(sample_subscription, external_id="in_x"))

        assert (await repo.get_by_external_id("in_x")).id == created.id
        assert await repo.get_by_external_id("in_missing") is None

    async def test_one_time_charges_marked_invoiced(self, test_db, sample_subscription):
        invoices = InvoiceRepository(test_db)
        charges = OneTimeChargeRepository(test_db)
        charge = await charges.create(
            OneTimeChargeCreateModel(
                subscription_id=sample_subscription.id,
                description="Setup fee",
                amount=500,
            )
        )
        invoice = await invoices.create(invoice_for(sample_subscription))

        await charges.mark_invoiced([charge.id], invoice.id)

        assert await charges.get_pending(sample_subscription.id) == []


@pytest.mark.asyncio
class TestDuplicateInvoiceThroughStore:
    async def test_second_open_invoice_for_period_rejected(
        self, billing_store, sample_subscription
    ):
        await billing_store.create_invoice(invoice_for(sample_subscription))

        with pytest.raises(ConsistencyError) as exc_info:
            await billing_store.create_invoice(
                invoice_for(sample_subscription, external_id="in_dup")
            )

        assert exc_info.value.period_key == sample_subscription.period_key


@pytest.mark.asyncio
class TestTransactionRepository:
    async def test_lookup_by_keys(self, test_db, sample_subscription):
        repo = TransactionRepository(test_db)
        created = await repo.create(charge_for(sample_subscription, "k1"))
        await repo.update(created.id, TransactionUpdateModel(external_id="pi_1"))

        assert (await repo.get_by_idempotency_key("k1")).id == created.id
        assert (await repo.get_by_external_id("pi_1")).id == created.id
        assert await repo.get_by_idempotency_key("missing") is None

    async def test_completed_charge_ignores_failures_and_refunds(
        self, test_db, sample_subscription
    ):
        repo = TransactionRepository(test_db)
        await repo.create(
            charge_for(sample_subscription, "k1", status=TransactionStatus.FAILED)
        )
        await repo.create(
            charge_for(
                sample_subscription,
                "k1:refund",
                status=TransactionStatus.COMPLETED,
                kind=TransactionKind.REFUND,
            )
        )

        assert (
            await repo.get_completed_charge(
                sample_subscription.id, sample_subscription.period_key
            )
            is None
        )

        retry = await repo.create(
            charge_for(
                sample_subscription,
                "k2",
                status=TransactionStatus.COMPLETED,
                kind=TransactionKind.RETRY_ATTEMPT,
            )
        )
        completed = await repo.get_completed_charge(
            sample_subscription.id, sample_subscription.period_key
        )
        assert completed.id == retry.id


@pytest.mark.asyncio
class TestProcessedWebhookEventRepository:
    async def test_record_once(self, test_db):
        repo = ProcessedWebhookEventRepository(test_db)

        assert await repo.exists("evt_1") is False
        assert await repo.record("evt_1", "invoice.paid") is True
        assert await repo.record("evt_1", "invoice.paid") is False
        assert await repo.exists("evt_1") is True
