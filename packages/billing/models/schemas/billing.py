"""
API schemas for billing operations.

Request and response models for billing endpoints.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from packages.billing.models.domain.enums import (
    FailureClass,
    SubscriptionStatus,
    TransactionKind,
    TransactionStatus,
)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Run Schemas
# ============================================================================


class RunRequest(BaseModel):
    """Trigger a renewal or dunning run. Defaults to the current time."""

    now: Optional[datetime] = None


class BillingRunResponse(_CamelModel):
    processed: int
    renewed: int
    failed: int
    pending: int
    skipped: int
    cancelled: int
    exhausted: int
    errors: list[str] = Field(default_factory=list)


class RenewalOutcomeResponse(_CamelModel):
    subscription_id: int
    outcome: str
    status: Optional[SubscriptionStatus] = None
    invoice_id: Optional[int] = None
    transaction_id: Optional[int] = None
    failure_class: Optional[FailureClass] = None
    reason: Optional[str] = None


# ============================================================================
# Subscription Schemas
# ============================================================================


class SubscriptionResponse(_CamelModel):
    """Current subscription state."""

    id: int
    owner_id: int
    plan_id: int
    status: SubscriptionStatus
    current_period_start: datetime
    current_period_end: datetime
    cancel_at_period_end: bool
    cancelled_at: Optional[datetime] = None
    failed_payment_count: int
    last_failure_reason: Optional[FailureClass] = None
    days_until_renewal: int = Field(..., description="Whole days left in the period")
    version: int


class PlanChangeRequest(BaseModel):
    new_plan_id: int
    now: Optional[datetime] = None


class PlanChangeResponse(_CamelModel):
    subscription: SubscriptionResponse
    credit: int = Field(..., description="Unused value of the old plan")
    amount_due: int = Field(..., description="Charged now for the new plan")
    over_credit: int = Field(..., description="Credit carried to the next invoice")
    remaining_days: int
    days_in_period: int
    transaction_id: Optional[int] = None
    credit_charge_id: Optional[int] = None


class CancelRequest(BaseModel):
    immediate: bool = False
    reason: Optional[str] = None


class PaymentMethodRequest(BaseModel):
    payment_method_id: str = Field(..., min_length=1)
    fallback_payment_method_id: Optional[str] = None


# ============================================================================
# Usage Schemas
# ============================================================================


class UsageRecordRequest(BaseModel):
    metric_id: int
    value: Decimal = Field(..., ge=0)
    timestamp: Optional[datetime] = None
    metadata: Optional[dict[str, Any]] = None


class UsageRecordResponse(_CamelModel):
    id: int
    subscription_id: int
    metric_id: int
    value: Decimal
    timestamp: datetime


# ============================================================================
# Transaction Schemas
# ============================================================================


class TransactionResponse(_CamelModel):
    id: int
    subscription_id: int
    invoice_id: Optional[int] = None
    kind: TransactionKind
    status: TransactionStatus
    amount: int
    idempotency_key: str
    external_id: Optional[str] = None
    payment_method_id: Optional[str] = None
    period_key: Optional[str] = None
    attempt_number: int
    failure_reason: Optional[FailureClass] = None
    created_at: Optional[datetime] = None
