"""
Domain models for subscriptions.
"""

from datetime import timedelta
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from packages.billing.models.domain.common import UtcDatetime, ensure_utc
from packages.billing.models.domain.enums import FailureClass, SubscriptionStatus


def build_period_key(subscription_id: int, period_start) -> str:
    """Deterministic identifier of one billing period of a subscription."""
    return f"{subscription_id}:{ensure_utc(period_start).isoformat()}"


class Subscription(BaseModel):
    """
    Subscription aggregate root for a billing period.

    Mutated only by the billing cycle orchestrator, always through a
    version compare-and-swap.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int
    owner_id: int
    plan_id: int
    status: SubscriptionStatus

    # Billing cycle
    current_period_start: UtcDatetime
    current_period_end: UtcDatetime

    # Payment collection
    payment_method_id: Optional[str] = None
    fallback_payment_method_id: Optional[str] = None
    external_customer_id: Optional[str] = None
    tax_jurisdiction: Optional[str] = None
    failed_payment_count: int = 0
    last_failure_reason: Optional[FailureClass] = None
    failed_payment_method_id: Optional[str] = None

    # Cancellation
    cancel_at_period_end: bool = False
    cancelled_at: Optional[UtcDatetime] = None

    version: int = 1

    created_at: Optional[UtcDatetime] = None
    updated_at: Optional[UtcDatetime] = None

    @property
    def period_key(self) -> str:
        return build_period_key(self.id, self.current_period_start)

    def is_due(self, now) -> bool:
        """Check whether the current period has ended."""
        return self.current_period_end <= ensure_utc(now)

    def days_until_renewal(self, now) -> int:
        delta: timedelta = self.current_period_end - ensure_utc(now)
        return max(0, delta.days)

    def dunning_suppressed(self) -> bool:
        """
        An expired card is not retried on a timer; dunning resumes once the
        payment method differs from the one that failed.
        """
        return (
            self.last_failure_reason == FailureClass.CARD_EXPIRED
            and self.payment_method_id == self.failed_payment_method_id
        )


class SubscriptionCreateModel(BaseModel):
    """Model for creating a new subscription."""

    model_config = ConfigDict(use_enum_values=True)

    owner_id: int
    plan_id: int
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    current_period_start: UtcDatetime
    current_period_end: UtcDatetime
    payment_method_id: Optional[str] = None
    fallback_payment_method_id: Optional[str] = None
    external_customer_id: Optional[str] = None
    tax_jurisdiction: Optional[str] = None


class SubscriptionUpdateModel(BaseModel):
    """
    Partial subscription update, applied with compare-and-swap on version.

    Only fields explicitly set are written.
    """

    model_config = ConfigDict(use_enum_values=True, validate_assignment=True)

    plan_id: Optional[int] = None
    status: Optional[SubscriptionStatus] = None

    current_period_start: Optional[UtcDatetime] = None
    current_period_end: Optional[UtcDatetime] = None

    payment_method_id: Optional[str] = None
    fallback_payment_method_id: Optional[str] = None
    failed_payment_count: Optional[int] = Field(default=None, ge=0)
    last_failure_reason: Optional[FailureClass] = None
    failed_payment_method_id: Optional[str] = None

    cancel_at_period_end: Optional[bool] = None
    cancelled_at: Optional[UtcDatetime] = None


class CancellationOptions(BaseModel):
    immediate: bool = False
    reason: Optional[str] = None
