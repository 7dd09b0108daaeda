"""Billing repositories."""

from packages.billing.repositories.plan_repository import PlanRepository
from packages.billing.repositories.subscription_repository import SubscriptionRepository
from packages.billing.repositories.usage_repository import (
    UsageMetricRepository,
    UsageRecordRepository,
    UsageTierRepository,
)
from packages.billing.repositories.invoice_repository import (
    InvoiceRepository,
    OneTimeChargeRepository,
)
from packages.billing.repositories.transaction_repository import TransactionRepository
from packages.billing.repositories.webhook_event_repository import (
    ProcessedWebhookEventRepository,
)

__all__ = [
    "PlanRepository",
    "SubscriptionRepository",
    "UsageMetricRepository",
    "UsageRecordRepository",
    "UsageTierRepository",
    "InvoiceRepository",
    "OneTimeChargeRepository",
    "TransactionRepository",
    "ProcessedWebhookEventRepository",
]
