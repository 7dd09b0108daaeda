"""
Interface for the billing persistence store.

The billing services only talk to storage through this interface, so the
SQL implementation can be swapped for an in-memory one in tests.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

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


class BillingStoreInterface(ABC):
    """Abstract interface for billing persistence."""

    # Subscriptions

    @abstractmethod
    async def get_subscription(self, subscription_id: int) -> Optional[Subscription]:
        pass

    @abstractmethod
    async def list_due_subscriptions(
        self, now: datetime, limit: int = 500
    ) -> list[Subscription]:
        """Renewable or cancelling subscriptions whose period ended by now."""
        pass

    @abstractmethod
    async def list_past_due_subscriptions(self, limit: int = 500) -> list[Subscription]:
        pass

    @abstractmethod
    async def create_subscription(
        self, create_model: SubscriptionCreateModel
    ) -> Subscription:
        pass

    @abstractmethod
    async def update_subscription(
        self,
        subscription_id: int,
        expected_version: int,
        update_model: SubscriptionUpdateModel,
    ) -> Subscription:
        """
        Compare-and-swap write; bumps the version.

        Raises:
            StaleVersionError: The stored version differs from expected_version
        """
        pass

    # Plans

    @abstractmethod
    async def get_plan(self, plan_id: int) -> Optional[Plan]:
        pass

    @abstractmethod
    async def create_plan(self, create_model: PlanCreateModel) -> Plan:
        pass

    # Metering

    @abstractmethod
    async def get_metrics(self, metric_ids: list[int]) -> list[UsageMetric]:
        pass

    @abstractmethod
    async def create_metric(self, create_model: UsageMetricCreateModel) -> UsageMetric:
        pass

    @abstractmethod
    async def get_tiers(self, metric_id: int) -> list[UsageTier]:
        """Tier table for a metric, ascending by min."""
        pass

    @abstractmethod
    async def replace_tiers(
        self, metric_id: int, tiers: list[UsageTierCreateModel]
    ) -> list[UsageTier]:
        pass

    @abstractmethod
    async def get_usage_records(
        self,
        subscription_id: int,
        start: datetime,
        end: datetime,
        metric_id: Optional[int] = None,
    ) -> list[UsageRecord]:
        """Records in [start, end), oldest first."""
        pass

    @abstractmethod
    async def append_usage_record(
        self, create_model: UsageRecordCreateModel
    ) -> UsageRecord:
        pass

    # Invoices

    @abstractmethod
    async def get_invoice(self, invoice_id: int) -> Optional[Invoice]:
        pass

    @abstractmethod
    async def get_invoice_by_period_key(self, period_key: str) -> Optional[Invoice]:
        """The non-void invoice for a period, if any."""
        pass

    @abstractmethod
    async def get_invoice_by_external_id(
        self, external_invoice_id: str
    ) -> Optional[Invoice]:
        pass

    @abstractmethod
    async def get_open_invoice(self, subscription_id: int) -> Optional[Invoice]:
        """Most recent open invoice of a subscription."""
        pass

    @abstractmethod
    async def create_invoice(
        self,
        create_model: InvoiceCreateModel,
        one_time_charge_ids: Optional[list[int]] = None,
        carry_forward: Optional[OneTimeChargeCreateModel] = None,
    ) -> Invoice:
        """
        Persist an invoice and link the consumed one-time charges atomically.

        carry_forward is a credit left over by this invoice, stored as a
        pending one-time charge in the same transaction.

        Raises:
            ConsistencyError: A non-void invoice already exists for the period
        """
        pass

    @abstractmethod
    async def set_invoice_status(
        self,
        invoice_id: int,
        status: InvoiceStatus,
        paid_at: Optional[datetime] = None,
    ) -> Invoice:
        pass

    @abstractmethod
    async def get_pending_one_time_charges(
        self, subscription_id: int
    ) -> list[OneTimeCharge]:
        pass

    @abstractmethod
    async def add_one_time_charge(
        self, create_model: OneTimeChargeCreateModel
    ) -> OneTimeCharge:
        pass

    # Transactions

    @abstractmethod
    async def create_transaction(
        self, create_model: TransactionCreateModel
    ) -> Transaction:
        pass

    @abstractmethod
    async def update_transaction(
        self, transaction_id: int, update_model: TransactionUpdateModel
    ) -> Transaction:
        pass

    @abstractmethod
    async def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def get_transaction_by_idempotency_key(
        self, idempotency_key: str
    ) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def get_transaction_by_external_id(
        self, external_id: str
    ) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def get_completed_charge(
        self, subscription_id: int, period_key: str
    ) -> Optional[Transaction]:
        """The completed renewal charge of a period, if any."""
        pass

    @abstractmethod
    async def list_transactions(self, subscription_id: int) -> list[Transaction]:
        pass

    # Webhooks

    @abstractmethod
    async def is_webhook_event_processed(self, external_id: str) -> bool:
        pass

    @abstractmethod
    async def record_webhook_event(self, external_id: str, event_type: str) -> bool:
        """
        Mark a webhook event processed.

        Returns:
            False if the event had already been recorded
        """
        pass
