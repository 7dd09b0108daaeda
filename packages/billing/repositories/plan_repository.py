"""
Repository for plans.
"""

from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from common.repositories.base import BaseRepository
from packages.billing.models.database.plan import PlanEntity
from packages.billing.models.domain.plan import Plan
from common.core.otel_axiom_exporter import trace_span


class PlanRepository(BaseRepository[PlanEntity, Plan]):
    def __init__(self, db_session: Optional[AsyncSession] = None):
        super().__init__(PlanEntity, Plan, db_session)

    @trace_span
    async def get_active(self) -> list[Plan]:
        """Plans open to new subscriptions, cheapest first."""
        return await self._fetch_all(
            select(PlanEntity)
            .where(PlanEntity.active.is_(True))
            .order_by(PlanEntity.price, PlanEntity.id)
        )
