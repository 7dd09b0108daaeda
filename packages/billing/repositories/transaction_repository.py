"""
Repository for payment transactions.
"""

from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from common.repositories.base import BaseRepository
from packages.billing.models.database.transaction import TransactionEntity
from packages.billing.models.domain.transaction import Transaction
from packages.billing.models.domain.enums import TransactionKind, TransactionStatus
from common.core.otel_axiom_exporter import trace_span

_CHARGE_KINDS = [
    TransactionKind.SUBSCRIPTION_CHARGE.value,
    TransactionKind.RETRY_ATTEMPT.value,
]


class TransactionRepository(BaseRepository[TransactionEntity, Transaction]):
    def __init__(self, db_session: Optional[AsyncSession] = None):
        super().__init__(TransactionEntity, Transaction, db_session)

    @trace_span
    async def get_by_idempotency_key(self, idempotency_key: str) -> Optional[Transaction]:
        return await self._fetch_one(
            select(TransactionEntity).where(
                TransactionEntity.idempotency_key == idempotency_key
            )
        )

    @trace_span
    async def get_by_external_id(self, external_id: str) -> Optional[Transaction]:
        return await self._fetch_one(
            select(TransactionEntity)
            .where(TransactionEntity.external_id == external_id)
            .order_by(TransactionEntity.id)
        )

    @trace_span
    async def get_completed_charge(
        self, subscription_id: int, period_key: str
    ) -> Optional[Transaction]:
        """
        Get the completed charge (first attempt or retry) for a period.
        """
        return await self._fetch_one(
            select(TransactionEntity)
            .where(
                TransactionEntity.subscription_id == subscription_id,
                TransactionEntity.period_key == period_key,
                TransactionEntity.status == TransactionStatus.COMPLETED.value,
                TransactionEntity.kind.in_(_CHARGE_KINDS),
            )
            .order_by(TransactionEntity.id)
            .limit(1)
        )

    @trace_span
    async def get_for_subscription(
        self, subscription_id: int, limit: int = 100, offset: int = 0
    ) -> list[Transaction]:
        """Newest first."""
        return await self._fetch_all(
            select(TransactionEntity)
            .where(TransactionEntity.subscription_id == subscription_id)
            .order_by(TransactionEntity.id.desc())
            .limit(limit)
            .offset(offset)
        )
