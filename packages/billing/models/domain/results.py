"""
Outcome models returned by the billing cycle orchestrator.
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field

from packages.billing.models.domain.enums import FailureClass, SubscriptionStatus
from packages.billing.models.domain.proration import ProrationResult
from packages.billing.models.domain.subscription import Subscription


class RenewalOutcomeType(str, Enum):
    RENEWED = "renewed"
    FAILED = "failed"
    PENDING = "pending"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"
    EXHAUSTED = "exhausted"


class RenewalOutcome(BaseModel):
    subscription_id: int
    outcome: RenewalOutcomeType
    status: Optional[SubscriptionStatus] = None
    invoice_id: Optional[int] = None
    transaction_id: Optional[int] = None
    failure_class: Optional[FailureClass] = None
    reason: Optional[str] = None


class BillingRunSummary(BaseModel):
    """Counts for one renewal or dunning batch."""

    processed: int = 0
    renewed: int = 0
    failed: int = 0
    pending: int = 0
    skipped: int = 0
    cancelled: int = 0
    exhausted: int = 0
    errors: list[str] = Field(default_factory=list)

    def record(self, outcome: RenewalOutcome) -> None:
        self.processed += 1
        if outcome.outcome == RenewalOutcomeType.RENEWED:
            self.renewed += 1
        elif outcome.outcome == RenewalOutcomeType.FAILED:
            self.failed += 1
        elif outcome.outcome == RenewalOutcomeType.PENDING:
            self.pending += 1
        elif outcome.outcome == RenewalOutcomeType.CANCELLED:
            self.cancelled += 1
        elif outcome.outcome == RenewalOutcomeType.EXHAUSTED:
            self.exhausted += 1
        else:
            self.skipped += 1

    def record_error(self, subscription_id: int, error: Exception) -> None:
        self.processed += 1
        self.errors.append(f"subscription {subscription_id}: {error}")


class PlanChangeOutcome(BaseModel):
    subscription: Subscription
    proration: ProrationResult
    transaction_id: Optional[int] = None
    credit_charge_id: Optional[int] = None
