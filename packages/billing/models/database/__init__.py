"""Database models for billing."""

from packages.billing.models.database.plan import PlanEntity
from packages.billing.models.database.subscription import SubscriptionEntity
from packages.billing.models.database.usage import (
    UsageMetricEntity,
    UsageRecordEntity,
    UsageTierEntity,
)
from packages.billing.models.database.invoice import InvoiceEntity, OneTimeChargeEntity
from packages.billing.models.database.transaction import TransactionEntity
from packages.billing.models.database.webhook_event import ProcessedWebhookEventEntity

__all__ = [
    "PlanEntity",
    "SubscriptionEntity",
    "UsageMetricEntity",
    "UsageRecordEntity",
    "UsageTierEntity",
    "InvoiceEntity",
    "OneTimeChargeEntity",
    "TransactionEntity",
    "ProcessedWebhookEventEntity",
]
