"""
Unit tests for the usage repositories.

Tests database operations for metrics, tiers and usage records without
mocking the database.
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from packages.billing.repositories.usage_repository import (
    UsageMetricRepository,
    UsageRecordRepository,
    UsageTierRepository,
)
from packages.billing.models.domain.enums import TierKind
from packages.billing.models.domain.usage import (
    UsageRecordCreateModel,
    UsageTierCreateModel,
)
from tests.conftest import PERIOD_END, PERIOD_START


@pytest.mark.asyncio
class TestUsageRecordRepository:
    """Tests for UsageRecordRepository."""

    async def test_create_usage_record(self, test_db, sample_subscription, sample_metric):
        repo = UsageRecordRepository(test_db)

        record = await repo.create(
            UsageRecordCreateModel(
                subscription_id=sample_subscription.id,
                metric_id=sample_metric.id,
                value=Decimal("2.5"),
                timestamp=PERIOD_START + timedelta(days=1),
                record_metadata={"source": "api"},
            )
        )

        assert record.id is not None
        assert record.value == Decimal("2.5")
        assert record.record_metadata == {"source": "api"}

    async def test_get_for_period_is_half_open(
        self, test_db, sample_subscription, sample_metric
    ):
        repo = UsageRecordRepository(test_db)
        for timestamp in (
            PERIOD_START - timedelta(seconds=1),
            PERIOD_START,
            PERIOD_END - timedelta(seconds=1),
            PERIOD_END,
        ):
            await repo.create(
                UsageRecordCreateModel(
                    subscription_id=sample_subscription.id,
                    metric_id=sample_metric.id,
                    value=Decimal(1),
                    timestamp=timestamp,
                )
            )

        records = await repo.get_for_period(
            sample_subscription.id, PERIOD_START, PERIOD_END
        )

        assert [r.timestamp for r in records] == [
            PERIOD_START,
            PERIOD_END - timedelta(seconds=1),
        ]

    async def test_get_for_period_filters_metric(
        self, test_db, sample_subscription, sample_metric
    ):
        repo = UsageRecordRepository(test_db)
        await repo.create(
            UsageRecordCreateModel(
                subscription_id=sample_subscription.id,
                metric_id=sample_metric.id,
                value=Decimal(3),
                timestamp=PERIOD_START + timedelta(hours=1),
            )
        )

        matching = await repo.get_for_period(
            sample_subscription.id, PERIOD_START, PERIOD_END, metric_id=sample_metric.id
        )
        other = await repo.get_for_period(
            sample_subscription.id, PERIOD_START, PERIOD_END, metric_id=sample_metric.id + 1
        )

        assert len(matching) == 1
        assert other == []


@pytest.mark.asyncio
class TestUsageTierRepository:
    async def test_get_for_metric_sorted(self, test_db, sample_metric):
        repo = UsageTierRepository(test_db)

        tiers = await repo.get_for_metric(sample_metric.id)

        assert [(t.min, t.max) for t in tiers] == [(0, 100), (100, 500)]
        assert tiers[0].kind == TierKind.UNIT

    async def test_replace_for_metric(self, test_db, sample_metric):
        repo = UsageTierRepository(test_db)

        tiers = await repo.replace_for_metric(
            sample_metric.id,
            [
                UsageTierCreateModel(
                    metric_id=sample_metric.id,
                    min=0,
                    max=None,
                    kind=TierKind.PACKAGE,
                    package_size=1000,
                    package_price=500,
                )
            ],
        )

        assert len(tiers) == 1
        assert tiers[0].kind == TierKind.PACKAGE
        assert tiers[0].max is None


@pytest.mark.asyncio
class TestUsageMetricRepository:
    async def test_get_by_name(self, test_db, sample_metric):
        repo = UsageMetricRepository(test_db)

        metric = await repo.get_by_name("api_calls")

        assert metric.id == sample_metric.id
        assert await repo.get_by_name("storage_gb") is None
