"""
SQLAlchemy implementation of the billing store.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError

from common.core.otel_axiom_exporter import get_logger, trace_span
from common.db.context import readonly
from common.db.scoped import transaction
from packages.billing.exceptions import ConsistencyError
from packages.billing.models.domain.enums import InvoiceStatus
from packages.billing.models.domain.invoice import (
    Invoice,
    InvoiceCreateModel,
    OneTimeCharge,
    OneTimeChargeCreateModel,
)
from packages.billing.models.domain.plan import Plan, PlanCreateModel
from packages.billing.models.domain.subscription import (
    Subscription,
    SubscriptionCreateModel,
    SubscriptionUpdateModel,
)
from packages.billing.models.domain.transaction import (
    Transaction,
    TransactionCreateModel,
    TransactionUpdateModel,
)
from packages.billing.models.domain.usage import (
    UsageMetric,
    UsageMetricCreateModel,
    UsageRecord,
    UsageRecordCreateModel,
    UsageTier,
    UsageTierCreateModel,
)
from packages.billing.providers.store.interface import BillingStoreInterface
from packages.billing.repositories import (
    InvoiceRepository,
    OneTimeChargeRepository,
    PlanRepository,
    ProcessedWebhookEventRepository,
    SubscriptionRepository,
    TransactionRepository,
    UsageMetricRepository,
    UsageRecordRepository,
    UsageTierRepository,
)

logger = get_logger(__name__)


class SqlBillingStore(BillingStoreInterface):
    """
    Billing store over the SQL repositories.

    Every call runs in its own short-lived session; only multi-row writes
    share a transaction.
    """

    def __init__(self):
        self.subscriptions = SubscriptionRepository()
        self.plans = PlanRepository()
        self.metrics = UsageMetricRepository()
        self.tiers = UsageTierRepository()
        self.records = UsageRecordRepository()
        self.invoices = InvoiceRepository()
        self.one_time_charges = OneTimeChargeRepository()
        self.transactions = TransactionRepository()
        self.webhook_events = ProcessedWebhookEventRepository()

    # Subscriptions

    async def get_subscription(self, subscription_id: int) -> Optional[Subscription]:
        return await self.subscriptions.get(subscription_id)

    @readonly
    async def list_due_subscriptions(
        self, now: datetime, limit: int = 500
    ) -> list[Subscription]:
        return await self.subscriptions.get_due(now, limit=limit)

    @readonly
    async def list_past_due_subscriptions(self, limit: int = 500) -> list[Subscription]:
        return await self.subscriptions.get_past_due(limit=limit)

    async def create_subscription(
        self, create_model: SubscriptionCreateModel
    ) -> Subscription:
        return await self.subscriptions.create(create_model)

    async def update_subscription(
        self,
        subscription_id: int,
        expected_version: int,
        update_model: SubscriptionUpdateModel,
    ) -> Subscription:
        return await self.subscriptions.compare_and_swap(
            subscription_id, expected_version, update_model
        )

    # Plans

    async def get_plan(self, plan_id: int) -> Optional[Plan]:
        return await self.plans.get(plan_id)

    async def create_plan(self, create_model: PlanCreateModel) -> Plan:
        return await self.plans.create(create_model)

    # Metering

    async def get_metrics(self, metric_ids: list[int]) -> list[UsageMetric]:
        return await self.metrics.get_by_ids(metric_ids)

    async def create_metric(self, create_model: UsageMetricCreateModel) -> UsageMetric:
        return await self.metrics.create(create_model)

    async def get_tiers(self, metric_id: int) -> list[UsageTier]:
        return await self.tiers.get_for_metric(metric_id)

    async def replace_tiers(
        self, metric_id: int, tiers: list[UsageTierCreateModel]
    ) -> list[UsageTier]:
        async with transaction():
            return await self.tiers.replace_for_metric(metric_id, tiers)

    async def get_usage_records(
        self,
        subscription_id: int,
        start: datetime,
        end: datetime,
        metric_id: Optional[int] = None,
    ) -> list[UsageRecord]:
        return await self.records.get_for_period(
            subscription_id, start, end, metric_id=metric_id
        )

    async def append_usage_record(
        self, create_model: UsageRecordCreateModel
    ) -> UsageRecord:
        return await self.records.create(create_model)

    # Invoices

    async def get_invoice(self, invoice_id: int) -> Optional[Invoice]:
        return await self.invoices.get(invoice_id)

    async def get_invoice_by_period_key(self, period_key: str) -> Optional[Invoice]:
        return await self.invoices.get_by_period_key(period_key)

    async def get_invoice_by_external_id(
        self, external_invoice_id: str
    ) -> Optional[Invoice]:
        return await self.invoices.get_by_external_id(external_invoice_id)

    async def get_open_invoice(self, subscription_id: int) -> Optional[Invoice]:
        return await self.invoices.get_latest_open(subscription_id)

    @trace_span
    async def create_invoice(
        self,
        create_model: InvoiceCreateModel,
        one_time_charge_ids: Optional[list[int]] = None,
        carry_forward: Optional[OneTimeChargeCreateModel] = None,
    ) -> Invoice:
        try:
            async with transaction():
                invoice = await self.invoices.create(create_model)
                await self.one_time_charges.mark_invoiced(
                    one_time_charge_ids or [], invoice.id
                )
                if carry_forward is not None:
                    await self.one_time_charges.create(carry_forward)
                return invoice
        except IntegrityError as e:
            logger.warning(
                f"Invoice for period {create_model.period_key} already exists",
                extra={"period_key": create_model.period_key, "error": str(e)},
            )
            raise ConsistencyError(
                "Invoice already exists for period",
                period_key=create_model.period_key,
                external_id=create_model.external_invoice_id,
            )

    async def set_invoice_status(
        self,
        invoice_id: int,
        status: InvoiceStatus,
        paid_at: Optional[datetime] = None,
    ) -> Invoice:
        return await self.invoices.set_status(invoice_id, status, paid_at=paid_at)

    async def get_pending_one_time_charges(
        self, subscription_id: int
    ) -> list[OneTimeCharge]:
        return await self.one_time_charges.get_pending(subscription_id)

    async def add_one_time_charge(
        self, create_model: OneTimeChargeCreateModel
    ) -> OneTimeCharge:
        return await self.one_time_charges.create(create_model)

    # Transactions

    async def create_transaction(
        self, create_model: TransactionCreateModel
    ) -> Transaction:
        return await self.transactions.create(create_model)

    async def update_transaction(
        self, transaction_id: int, update_model: TransactionUpdateModel
    ) -> Transaction:
        return await self.transactions.update(transaction_id, update_model)

    async def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        return await self.transactions.get(transaction_id)

    async def get_transaction_by_idempotency_key(
        self, idempotency_key: str
    ) -> Optional[Transaction]:
        return await self.transactions.get_by_idempotency_key(idempotency_key)

    async def get_transaction_by_external_id(
        self, external_id: str
    ) -> Optional[Transaction]:
        return await self.transactions.get_by_external_id(external_id)

    async def get_completed_charge(
        self, subscription_id: int, period_key: str
    ) -> Optional[Transaction]:
        return await self.transactions.get_completed_charge(subscription_id, period_key)

    @readonly
    async def list_transactions(self, subscription_id: int) -> list[Transaction]:
        return await self.transactions.get_for_subscription(subscription_id)

    # Webhooks

    async def is_webhook_event_processed(self, external_id: str) -> bool:
        return await self.webhook_events.exists(external_id)

    async def record_webhook_event(self, external_id: str, event_type: str) -> bool:
        return await self.webhook_events.record(external_id, event_type)
