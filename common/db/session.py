from uuid import uuid4

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy import pool, text
from common.core.config import settings
from common.core.otel_axiom_exporter import get_logger

logger = get_logger(__name__)

ASYNC_DATABASE_URL = settings.database_url.replace(
    "postgresql://", "postgresql+asyncpg://"
)


def _engine_kwargs() -> dict:
    """
    Pool settings per process role.

    The scheduler runs with db_use_nullpool and opens a connection per
    operation; the API keeps a bounded pool for concurrent requests.
    """
    kwargs = {
        "echo": settings.debug,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
        # Unique names keep asyncpg's statement cache safe behind pgbouncer
        "connect_args": {
            "prepared_statement_name_func": lambda: f"__asyncpg_{uuid4()}__",
        },
    }
    if settings.db_use_nullpool:
        logger.info("Database: NullPool (worker mode)")
        kwargs["poolclass"] = pool.NullPool
    else:
        logger.info(
            f"Database: pool_size={settings.db_pool_size}, max_overflow={settings.db_pool_overflow}"
        )
        kwargs["pool_size"] = settings.db_pool_size
        kwargs["max_overflow"] = settings.db_pool_overflow
    return kwargs


engine = create_async_engine(ASYNC_DATABASE_URL, **_engine_kwargs())
AsyncSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)

# Read traffic (due scans, transaction history) shares the primary for now
AsyncSessionLocalReadonly = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


async def init_db():
    """Fail fast when the database is unreachable. Alembic owns the schema."""
    async with engine.connect() as connection:
        await connection.execute(text("SELECT 1"))
