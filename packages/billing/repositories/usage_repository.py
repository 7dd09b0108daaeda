"""
Repositories for usage metrics, pricing tiers and usage records.
"""

from typing import Optional
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete

from common.repositories.base import BaseRepository
from packages.billing.models.database.usage import (
    UsageMetricEntity,
    UsageRecordEntity,
    UsageTierEntity,
)
from packages.billing.models.domain.usage import (
    UsageMetric,
    UsageRecord,
    UsageTier,
    UsageTierCreateModel,
)
from common.core.otel_axiom_exporter import trace_span


class UsageMetricRepository(BaseRepository[UsageMetricEntity, UsageMetric]):
    def __init__(self, db_session: Optional[AsyncSession] = None):
        super().__init__(UsageMetricEntity, UsageMetric, db_session)

    @trace_span
    async def get_by_name(self, name: str) -> Optional[UsageMetric]:
        return await self._fetch_one(
            select(UsageMetricEntity).where(UsageMetricEntity.name == name)
        )


class UsageTierRepository(BaseRepository[UsageTierEntity, UsageTier]):
    def __init__(self, db_session: Optional[AsyncSession] = None):
        super().__init__(UsageTierEntity, UsageTier, db_session)

    @trace_span
    async def get_for_metric(self, metric_id: int) -> list[UsageTier]:
        """Get a metric's tier table in ascending order."""
        return await self._fetch_all(
            select(UsageTierEntity)
            .where(UsageTierEntity.metric_id == metric_id)
            .order_by(UsageTierEntity.min)
        )

    @trace_span
    async def replace_for_metric(
        self, metric_id: int, tiers: list[UsageTierCreateModel]
    ) -> list[UsageTier]:
        """Swap a metric's whole tier table in one session."""
        async with self._get_session() as session:
            await session.execute(
                delete(UsageTierEntity).where(UsageTierEntity.metric_id == metric_id)
            )
            session.add_all([UsageTierEntity(**tier.model_dump()) for tier in tiers])
            await session.flush()
        return await self.get_for_metric(metric_id)


class UsageRecordRepository(BaseRepository[UsageRecordEntity, UsageRecord]):
    """Repository for append-only usage records."""

    def __init__(self, db_session: Optional[AsyncSession] = None):
        super().__init__(UsageRecordEntity, UsageRecord, db_session)

    @trace_span
    async def get_for_period(
        self,
        subscription_id: int,
        start_date: datetime,
        end_date: datetime,
        metric_id: Optional[int] = None,
    ) -> list[UsageRecord]:
        """Get records in [start_date, end_date), oldest first."""
        query = select(UsageRecordEntity).where(
            UsageRecordEntity.subscription_id == subscription_id,
            UsageRecordEntity.timestamp >= start_date,
            UsageRecordEntity.timestamp < end_date,
        )
        if metric_id is not None:
            query = query.where(UsageRecordEntity.metric_id == metric_id)

        return await self._fetch_all(
            query.order_by(UsageRecordEntity.timestamp, UsageRecordEntity.id)
        )
