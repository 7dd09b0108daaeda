"""
Repository for processed webhook events.
"""

from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from common.repositories.base import BaseRepository
from packages.billing.models.database.webhook_event import ProcessedWebhookEventEntity
from packages.billing.models.domain.webhooks import ProcessedWebhookEvent
from common.core.otel_axiom_exporter import get_logger, trace_span

logger = get_logger(__name__)


class ProcessedWebhookEventRepository(
    BaseRepository[ProcessedWebhookEventEntity, ProcessedWebhookEvent]
):
    def __init__(self, db_session: Optional[AsyncSession] = None):
        super().__init__(
            ProcessedWebhookEventEntity, ProcessedWebhookEvent, db_session
        )

    @trace_span
    async def exists(self, external_id: str) -> bool:
        async with self._get_session() as session:
            result = await session.execute(
                select(ProcessedWebhookEventEntity.id).where(
                    ProcessedWebhookEventEntity.external_id == external_id
                )
            )
            return result.scalar_one_or_none() is not None

    @trace_span
    async def record(self, external_id: str, event_type: str) -> bool:
        """
        Record an event as processed.

        Returns False when another delivery already recorded it.
        """
        if await self.exists(external_id):
            return False

        try:
            async with self._get_session() as session:
                session.add(
                    ProcessedWebhookEventEntity(
                        external_id=external_id, event_type=event_type
                    )
                )
                await session.flush()
        except IntegrityError:
            logger.info(f"Webhook event {external_id} recorded concurrently")
            return False
        return True
