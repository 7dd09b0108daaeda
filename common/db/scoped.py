"""
Operation-scoped database sessions.

Sessions are acquired lazily and released as soon as an operation finishes,
so no connection is held while the billing core waits on the payment gateway
or sleeps between retry attempts.

Usage:
    # Single operation - acquires and releases immediately
    async with get_session() as session:
        result = await session.get(SubscriptionEntity, id)

    # Several writes that must land together
    async with transaction():
        await invoice_repo.create(invoice)
        await one_time_charge_repo.mark_invoiced(ids, invoice.id)
"""

import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from common.core.otel_axiom_exporter import get_logger
from common.db.session import AsyncSessionLocal, AsyncSessionLocalReadonly
from common.db.context import (
    get_current_session,
    set_current_session,
    reset_current_session,
    is_readonly_forced,
)

logger = get_logger(__name__)


@asynccontextmanager
async def _owned_session(
    readonly: bool, label: str, publish: bool
) -> AsyncGenerator[AsyncSession, None]:
    """
    Open a session this scope owns: commit on success unless readonly,
    roll back and re-raise on error. With publish, the session is visible
    to get_session() calls made inside the scope.
    """
    factory = AsyncSessionLocalReadonly if readonly else AsyncSessionLocal
    start = time.perf_counter()
    async with factory() as session:
        logger.debug(
            f"{label} session acquire: {(time.perf_counter() - start) * 1000:.2f}ms, readonly={readonly}"
        )
        token = set_current_session(session, readonly=readonly) if publish else None
        try:
            yield session
            if not readonly:
                await session.commit()
        except Exception as e:
            logger.error(f"{label} rollback due to: {e}")
            await session.rollback()
            raise
        finally:
            if token is not None:
                reset_current_session(token, readonly=readonly)


@asynccontextmanager
async def transaction(readonly: bool = False) -> AsyncGenerator[AsyncSession, None]:
    """
    Explicit transaction boundary. Always opens a fresh session; every
    repository call inside joins it and commits or rolls back with it.
    """
    async with _owned_session(
        readonly or is_readonly_forced(), "Transaction", publish=True
    ) as session:
        yield session


@asynccontextmanager
async def get_session(readonly: bool = False) -> AsyncGenerator[AsyncSession, None]:
    """
    Session for a single DB operation.

    Joins the enclosing transaction() when there is one (which then owns
    commit and rollback); otherwise opens, commits and releases its own.
    """
    effective_readonly = readonly or is_readonly_forced()
    existing = get_current_session(readonly=effective_readonly)
    if existing:
        yield existing
        return

    async with _owned_session(effective_readonly, "Operation", publish=False) as session:
        yield session
