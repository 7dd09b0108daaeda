"""
Domain models for usage metering and tiered pricing.
"""

from decimal import Decimal
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field

from packages.billing.models.domain.common import UtcDatetime
from packages.billing.models.domain.enums import AggregationType, TierKind


class UsageMetric(BaseModel):
    """A billable metric and how its records aggregate."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    aggregation_type: AggregationType


class UsageMetricCreateModel(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    name: str
    aggregation_type: AggregationType = AggregationType.SUM


class UsageRecord(BaseModel):
    """
    Individual usage record. Append-only.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int
    subscription_id: int
    metric_id: int
    value: Decimal = Field(ge=0)
    timestamp: UtcDatetime
    record_metadata: dict[str, Any] = Field(default_factory=dict)


class UsageRecordCreateModel(BaseModel):
    subscription_id: int
    metric_id: int
    value: Decimal = Field(ge=0)
    timestamp: UtcDatetime
    record_metadata: dict[str, Any] = Field(default_factory=dict)


class UsageTier(BaseModel):
    """
    One band of a metric's pricing table.

    A max of None marks the open-ended last tier. Only the rate fields that
    belong to the tier's kind are read.
    """

    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    metric_id: int
    min: int = Field(ge=0)
    max: Optional[int] = None
    kind: TierKind = TierKind.UNIT
    unit_price: Optional[int] = None
    flat_price: Optional[int] = None
    package_size: Optional[int] = None
    package_price: Optional[int] = None


class UsageTierCreateModel(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    metric_id: int
    min: int = Field(ge=0)
    max: Optional[int] = None
    kind: TierKind = TierKind.UNIT
    unit_price: Optional[int] = None
    flat_price: Optional[int] = None
    package_size: Optional[int] = None
    package_price: Optional[int] = None


class TierBreakdown(BaseModel):
    """Charge contributed by one tier."""

    min: int
    max: Optional[int] = None
    usage: Decimal
    rate: int  # unit_price, flat_price or package_price depending on kind
    amount: int
    overflow: bool = False


class UsageCharge(BaseModel):
    """Priced usage of one metric for one period."""

    metric_id: int
    metric_name: Optional[str] = None
    usage: Decimal
    amount: int
    tiers: list[TierBreakdown] = Field(default_factory=list)


class MetricSummary(BaseModel):
    """Aggregate view of a metric's records over a period."""

    metric_id: int
    metric_name: str
    aggregation_type: AggregationType
    value: Decimal
    record_count: int
    first_recorded_at: Optional[UtcDatetime] = None
    last_recorded_at: Optional[UtcDatetime] = None
