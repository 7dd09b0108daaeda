"""
Repository for subscription management.
"""

from typing import Optional
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update

from common.repositories.base import BaseRepository
from packages.billing.exceptions import StaleVersionError
from packages.billing.models.database.subscription import SubscriptionEntity
from packages.billing.models.domain.subscription import (
    Subscription,
    SubscriptionUpdateModel,
)
from packages.billing.models.domain.enums import SubscriptionStatus
from common.core.otel_axiom_exporter import trace_span

_DUE_STATUSES = [
    SubscriptionStatus.TRIALING.value,
    SubscriptionStatus.ACTIVE.value,
    SubscriptionStatus.CANCELLING.value,
]


class SubscriptionRepository(BaseRepository[SubscriptionEntity, Subscription]):
    """Repository for subscriptions. All writes are version compare-and-swap."""

    def __init__(self, db_session: Optional[AsyncSession] = None):
        super().__init__(SubscriptionEntity, Subscription, db_session)

    @trace_span
    async def get_due(self, now: datetime, limit: int = 500) -> list[Subscription]:
        """
        Get subscriptions whose period has ended and that the renewal tick
        must look at: renewable ones and those set to cancel at period end.
        """
        return await self._fetch_all(
            select(SubscriptionEntity)
            .where(
                SubscriptionEntity.status.in_(_DUE_STATUSES),
                SubscriptionEntity.current_period_end <= now,
            )
            .order_by(SubscriptionEntity.current_period_end, SubscriptionEntity.id)
            .limit(limit)
        )

    @trace_span
    async def get_past_due(self, limit: int = 500) -> list[Subscription]:
        return await self._fetch_all(
            select(SubscriptionEntity)
            .where(SubscriptionEntity.status == SubscriptionStatus.PAST_DUE.value)
            .order_by(SubscriptionEntity.id)
            .limit(limit)
        )

    @trace_span
    async def compare_and_swap(
        self,
        subscription_id: int,
        expected_version: int,
        update_model: SubscriptionUpdateModel,
    ) -> Subscription:
        """
        Apply update_model only if the row is still at expected_version.

        The version is bumped on every successful write, including an empty
        update (used to claim a subscription).

        Raises:
            StaleVersionError: Another writer got there first
        """
        data = update_model.model_dump(exclude_unset=True)
        data["version"] = expected_version + 1

        async with self._get_session() as session:
            result = await session.execute(
                update(SubscriptionEntity)
                .where(
                    SubscriptionEntity.id == subscription_id,
                    SubscriptionEntity.version == expected_version,
                )
                .values(data)
            )
            if result.rowcount != 1:
                raise StaleVersionError(subscription_id, expected_version)
            await session.flush()

        updated = await self.get(subscription_id)
        if updated is None:
            raise StaleVersionError(subscription_id, expected_version)
        return updated
