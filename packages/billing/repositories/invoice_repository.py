"""
Repositories for invoices and one-time charges.
"""

from typing import Optional
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update

from common.repositories.base import BaseRepository
from packages.billing.models.database.invoice import InvoiceEntity, OneTimeChargeEntity
from packages.billing.models.domain.invoice import Invoice, OneTimeCharge
from packages.billing.models.domain.enums import InvoiceStatus
from common.core.otel_axiom_exporter import trace_span


class InvoiceRepository(BaseRepository[InvoiceEntity, Invoice]):
    def __init__(self, db_session: Optional[AsyncSession] = None):
        super().__init__(InvoiceEntity, Invoice, db_session)

    @trace_span
    async def get_by_period_key(self, period_key: str) -> Optional[Invoice]:
        """Get the non-void invoice for a period, if any."""
        return await self._fetch_one(
            select(InvoiceEntity).where(
                InvoiceEntity.period_key == period_key,
                InvoiceEntity.status != InvoiceStatus.VOID.value,
            )
        )

    @trace_span
    async def get_latest_open(self, subscription_id: int) -> Optional[Invoice]:
        return await self._fetch_one(
            select(InvoiceEntity)
            .where(
                InvoiceEntity.subscription_id == subscription_id,
                InvoiceEntity.status == InvoiceStatus.OPEN.value,
            )
            .order_by(InvoiceEntity.period_start.desc(), InvoiceEntity.id.desc())
            .limit(1)
        )

    @trace_span
    async def get_by_external_id(self, external_invoice_id: str) -> Optional[Invoice]:
        return await self._fetch_one(
            select(InvoiceEntity).where(
                InvoiceEntity.external_invoice_id == external_invoice_id
            )
        )

    @trace_span
    async def set_status(
        self,
        invoice_id: int,
        status: InvoiceStatus,
        paid_at: Optional[datetime] = None,
    ) -> Optional[Invoice]:
        values = {"status": status.value}
        if paid_at is not None:
            values["paid_at"] = paid_at

        async with self._get_session() as session:
            await session.execute(
                update(InvoiceEntity).where(InvoiceEntity.id == invoice_id).values(values)
            )
            await session.flush()
        return await self.get(invoice_id)


class OneTimeChargeRepository(BaseRepository[OneTimeChargeEntity, OneTimeCharge]):
    def __init__(self, db_session: Optional[AsyncSession] = None):
        super().__init__(OneTimeChargeEntity, OneTimeCharge, db_session)

    @trace_span
    async def get_pending(self, subscription_id: int) -> list[OneTimeCharge]:
        """Charges and credits not yet carried onto an invoice, oldest first."""
        return await self._fetch_all(
            select(OneTimeChargeEntity)
            .where(
                OneTimeChargeEntity.subscription_id == subscription_id,
                OneTimeChargeEntity.invoice_id.is_(None),
            )
            .order_by(OneTimeChargeEntity.id)
        )

    @trace_span
    async def mark_invoiced(self, charge_ids: list[int], invoice_id: int) -> None:
        if not charge_ids:
            return

        async with self._get_session() as session:
            await session.execute(
                update(OneTimeChargeEntity)
                .where(OneTimeChargeEntity.id.in_(charge_ids))
                .values(invoice_id=invoice_id)
            )
