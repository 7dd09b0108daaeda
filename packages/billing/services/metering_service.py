"""
Usage metering: aggregation of usage records and tiered charge computation.

Aggregation and pricing are pure; only the calculate/track helpers touch
the billing store.
"""

import math
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from common.core.config import settings
from common.core.otel_axiom_exporter import trace_span, get_logger
from packages.billing.exceptions import EmptyUsageError, ValidationError
from packages.billing.models.domain.common import utcnow
from packages.billing.models.domain.enums import (
    AggregationType,
    OverflowPolicy,
    TierKind,
)
from packages.billing.models.domain.plan import Plan
from packages.billing.models.domain.subscription import Subscription
from packages.billing.models.domain.usage import (
    MetricSummary,
    TierBreakdown,
    UsageCharge,
    UsageMetric,
    UsageRecord,
    UsageRecordCreateModel,
    UsageTier,
)
from packages.billing.providers.store.factory import get_billing_store
from packages.billing.providers.store.interface import BillingStoreInterface

logger = get_logger(__name__)

_ZERO = Decimal(0)


def to_minor_units(value: Decimal) -> int:
    """Round half-up to whole minor currency units."""
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def aggregate_usage(
    aggregation_type: AggregationType,
    records: list[UsageRecord],
    empty_default: Optional[Decimal] = None,
) -> Decimal:
    """
    Collapse a metric's records into one billable quantity.

    Raises:
        EmptyUsageError: max/average/last over no records without a default
    """
    if not records:
        if aggregation_type == AggregationType.SUM:
            return _ZERO
        if empty_default is not None:
            return Decimal(empty_default)
        raise EmptyUsageError(
            f"No usage records to compute {aggregation_type.value} aggregate"
        )

    values = [Decimal(record.value) for record in records]

    if aggregation_type == AggregationType.SUM:
        return sum(values, _ZERO)
    if aggregation_type == AggregationType.MAX:
        return max(values)
    if aggregation_type == AggregationType.AVERAGE:
        return sum(values, _ZERO) / len(values)
    if aggregation_type == AggregationType.LAST:
        # Stable on ties: the later-appended record wins
        last = max(enumerate(records), key=lambda pair: (pair[1].timestamp, pair[0]))
        return Decimal(last[1].value)

    raise ValidationError(f"Unknown aggregation type: {aggregation_type}")


def validate_tiers(tiers: list[UsageTier]) -> None:
    """
    Check a tier table is well formed.

    Tables must start at 0, be sorted, contiguous and non-overlapping, with
    only the last tier allowed to be open-ended. Each tier must carry the
    rate fields its kind needs.

    Raises:
        ValidationError: The table is malformed
    """
    if not tiers:
        raise ValidationError("Tier table is empty")

    if tiers[0].min != 0:
        raise ValidationError(f"First tier must start at 0, starts at {tiers[0].min}")

    for index, tier in enumerate(tiers):
        is_last = index == len(tiers) - 1

        if tier.max is None:
            if not is_last:
                raise ValidationError(
                    f"Only the last tier may be open-ended (tier {index})"
                )
        elif tier.min >= tier.max:
            raise ValidationError(
                f"Tier {index} has min {tier.min} >= max {tier.max}"
            )

        if not is_last and tiers[index + 1].min != tier.max:
            raise ValidationError(
                f"Tiers {index} and {index + 1} are not contiguous "
                f"({tier.max} -> {tiers[index + 1].min})"
            )

        _validate_rate_fields(tier, index)


def _validate_rate_fields(tier: UsageTier, index: int) -> None:
    if tier.kind == TierKind.UNIT:
        if tier.unit_price is None or tier.unit_price < 0:
            raise ValidationError(f"Unit tier {index} needs a non-negative unit_price")
    elif tier.kind == TierKind.FLAT:
        if tier.flat_price is None or tier.flat_price < 0:
            raise ValidationError(f"Flat tier {index} needs a non-negative flat_price")
    elif tier.kind == TierKind.PACKAGE:
        if not tier.package_size or tier.package_size <= 0:
            raise ValidationError(f"Package tier {index} needs a positive package_size")
        if tier.package_price is None or tier.package_price < 0:
            raise ValidationError(
                f"Package tier {index} needs a non-negative package_price"
            )


def price_in_tier(tier: UsageTier, usage: Decimal) -> tuple[int, int]:
    """Return (amount, rate) for usage falling inside one tier."""
    if tier.kind == TierKind.UNIT:
        return to_minor_units(usage * tier.unit_price), tier.unit_price
    if tier.kind == TierKind.FLAT:
        return (tier.flat_price if usage > 0 else 0), tier.flat_price
    packages = math.ceil(usage / Decimal(tier.package_size))
    return packages * tier.package_price, tier.package_price


def price_tiers(
    usage: Decimal,
    tiers: list[UsageTier],
    overflow_policy: OverflowPolicy = OverflowPolicy.EXTEND_LAST_TIER,
) -> list[TierBreakdown]:
    """
    Walk the (validated) tier table and price usage band by band.

    Usage above the last bounded tier is billed with that tier's rule as an
    extra line flagged overflow, or rejected under OverflowPolicy.REJECT.
    """
    breakdown: list[TierBreakdown] = []
    remaining = Decimal(usage)

    for tier in tiers:
        if remaining <= 0:
            break

        if tier.max is None:
            usage_in_tier = remaining
        else:
            usage_in_tier = min(remaining, Decimal(tier.max - tier.min))

        if usage_in_tier == 0:
            continue

        amount, rate = price_in_tier(tier, usage_in_tier)
        breakdown.append(
            TierBreakdown(
                min=tier.min,
                max=tier.max,
                usage=usage_in_tier,
                rate=rate,
                amount=amount,
            )
        )
        remaining -= usage_in_tier

    if remaining > 0:
        last = tiers[-1]
        if overflow_policy == OverflowPolicy.REJECT:
            raise ValidationError(
                f"Usage {usage} exceeds the last tier max {last.max}"
            )

        amount, rate = price_in_tier(last, remaining)
        breakdown.append(
            TierBreakdown(
                min=last.max,
                max=None,
                usage=remaining,
                rate=rate,
                amount=amount,
                overflow=True,
            )
        )
        logger.warning(
            f"Usage {usage} overflows last tier max {last.max}; billed at last tier rate",
            extra={"metric_id": last.metric_id, "overflow_usage": str(remaining)},
        )

    return breakdown


class UsageMeteringEngine:
    """Service for usage metering and tiered pricing."""

    def __init__(
        self,
        store: Optional[BillingStoreInterface] = None,
        overflow_policy: Optional[OverflowPolicy] = None,
    ):
        self.store = store or get_billing_store()
        self.overflow_policy = OverflowPolicy(
            overflow_policy or settings.usage_overflow_policy
        )

    def compute_charge(
        self,
        metric: UsageMetric,
        records: list[UsageRecord],
        tiers: list[UsageTier],
        empty_default: Optional[Decimal] = None,
    ) -> UsageCharge:
        """
        Aggregate a metric's records and price them against its tier table.

        Raises:
            ValidationError: Malformed tier table, or overflow under REJECT
            EmptyUsageError: No records for a non-sum metric and no default
        """
        ordered = sorted(tiers, key=lambda tier: tier.min)
        validate_tiers(ordered)

        usage = aggregate_usage(metric.aggregation_type, records, empty_default)
        breakdown = price_tiers(usage, ordered, self.overflow_policy)

        return UsageCharge(
            metric_id=metric.id,
            metric_name=metric.name,
            usage=usage,
            amount=sum(line.amount for line in breakdown),
            tiers=breakdown,
        )

    @trace_span
    async def calculate_usage(
        self,
        subscription: Subscription,
        plan: Plan,
        period_start: datetime,
        period_end: datetime,
    ) -> list[UsageCharge]:
        """
        Price every metric billed on the plan for one period.

        A metric with no records in the period bills nothing.
        """
        if not plan.metric_ids:
            return []

        metrics = await self.store.get_metrics(plan.metric_ids)
        records = await self.store.get_usage_records(
            subscription.id, period_start, period_end
        )

        charges = []
        for metric in metrics:
            metric_records = [r for r in records if r.metric_id == metric.id]
            tiers = await self.store.get_tiers(metric.id)
            charge = self.compute_charge(
                metric, metric_records, tiers, empty_default=_ZERO
            )
            charges.append(charge)

        logger.info(
            f"Calculated usage for subscription {subscription.id}: "
            f"{sum(c.amount for c in charges)} across {len(charges)} metrics",
            extra={
                "subscription_id": subscription.id,
                "record_count": len(records),
            },
        )
        return charges

    @trace_span
    async def get_metric_summary(
        self,
        subscription_id: int,
        metric: UsageMetric,
        period_start: datetime,
        period_end: datetime,
    ) -> MetricSummary:
        records = await self.store.get_usage_records(
            subscription_id, period_start, period_end, metric_id=metric.id
        )
        value = aggregate_usage(metric.aggregation_type, records, empty_default=_ZERO)

        return MetricSummary(
            metric_id=metric.id,
            metric_name=metric.name,
            aggregation_type=metric.aggregation_type,
            value=value,
            record_count=len(records),
            first_recorded_at=min((r.timestamp for r in records), default=None),
            last_recorded_at=max((r.timestamp for r in records), default=None),
        )

    @trace_span
    async def track_usage(
        self,
        subscription_id: int,
        metric_id: int,
        value: Decimal,
        timestamp: Optional[datetime] = None,
        metadata: Optional[dict] = None,
    ) -> UsageRecord:
        """Append a usage record."""
        if Decimal(value) < 0:
            raise ValidationError(f"Usage value must be non-negative, got {value}")

        record = await self.store.append_usage_record(
            UsageRecordCreateModel(
                subscription_id=subscription_id,
                metric_id=metric_id,
                value=value,
                timestamp=timestamp or utcnow(),
                record_metadata=metadata or {},
            )
        )

        logger.info(
            f"Tracked usage record {record.id} (value={value})",
            extra={
                "record_id": record.id,
                "subscription_id": subscription_id,
                "metric_id": metric_id,
            },
        )
        return record
