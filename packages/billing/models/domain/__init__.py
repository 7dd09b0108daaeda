"""Domain models for billing."""

from packages.billing.models.domain.enums import (
    AggregationType,
    BillingCycle,
    ChargePurpose,
    FailureClass,
    InvoiceItemKind,
    InvoiceStatus,
    OverflowPolicy,
    SubscriptionStatus,
    TierKind,
    TransactionKind,
    TransactionStatus,
)
from packages.billing.models.domain.plan import Plan, PlanCreateModel
from packages.billing.models.domain.subscription import (
    CancellationOptions,
    Subscription,
    SubscriptionCreateModel,
    SubscriptionUpdateModel,
    build_period_key,
)
from packages.billing.models.domain.usage import (
    MetricSummary,
    TierBreakdown,
    UsageCharge,
    UsageMetric,
    UsageMetricCreateModel,
    UsageRecord,
    UsageRecordCreateModel,
    UsageTier,
    UsageTierCreateModel,
)
from packages.billing.models.domain.invoice import (
    Invoice,
    InvoiceCreateModel,
    InvoiceItem,
    OneTimeCharge,
    OneTimeChargeCreateModel,
)
from packages.billing.models.domain.transaction import (
    Transaction,
    TransactionCreateModel,
    TransactionUpdateModel,
)
from packages.billing.models.domain.payments import (
    ChargeResult,
    ChargeStatus,
    CollectionResult,
    RetryPolicy,
)
from packages.billing.models.domain.proration import ProrationResult
from packages.billing.models.domain.results import (
    BillingRunSummary,
    PlanChangeOutcome,
    RenewalOutcome,
    RenewalOutcomeType,
)
from packages.billing.models.domain.webhooks import (
    GatewayEventType,
    GatewayWebhookEvent,
    ProcessedWebhookEvent,
    WebhookProcessingResult,
)

__all__ = [
    # Enums
    "AggregationType",
    "BillingCycle",
    "ChargePurpose",
    "FailureClass",
    "InvoiceItemKind",
    "InvoiceStatus",
    "OverflowPolicy",
    "SubscriptionStatus",
    "TierKind",
    "TransactionKind",
    "TransactionStatus",
    # Plans
    "Plan",
    "PlanCreateModel",
    # Subscriptions
    "CancellationOptions",
    "Subscription",
    "SubscriptionCreateModel",
    "SubscriptionUpdateModel",
    "build_period_key",
    # Usage
    "MetricSummary",
    "TierBreakdown",
    "UsageCharge",
    "UsageMetric",
    "UsageMetricCreateModel",
    "UsageRecord",
    "UsageRecordCreateModel",
    "UsageTier",
    "UsageTierCreateModel",
    # Invoices
    "Invoice",
    "InvoiceCreateModel",
    "InvoiceItem",
    "OneTimeCharge",
    "OneTimeChargeCreateModel",
    # Transactions
    "Transaction",
    "TransactionCreateModel",
    "TransactionUpdateModel",
    # Payments
    "ChargeResult",
    "ChargeStatus",
    "CollectionResult",
    "RetryPolicy",
    "ProrationResult",
    # Results
    "BillingRunSummary",
    "PlanChangeOutcome",
    "RenewalOutcome",
    "RenewalOutcomeType",
    # Webhooks
    "GatewayEventType",
    "GatewayWebhookEvent",
    "ProcessedWebhookEvent",
    "WebhookProcessingResult",
]
