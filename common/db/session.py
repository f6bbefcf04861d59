from uuid import uuid4

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy import pool
from common.core.config import settings
from common.core.otel_axiom_exporter import get_logger

logger = get_logger(__name__)

# Replace postgresql:// with postgresql+asyncpg:// for async support
ASYNC_DATABASE_URL = settings.database_url.replace(
    "postgresql://", "postgresql+asyncpg://"
)


def _engine_kwargs() -> dict:
    """
    Engine options for the current process type.

    NullPool (db_use_nullpool=True): new connection per operation, used by the
    lifecycle scheduler worker. Pooled otherwise (API pods).
    """
    kwargs = {
        "echo": settings.debug,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
        "connect_args": {
            "prepared_statement_name_func": lambda: f"__asyncpg_{uuid4()}__",
        },
    }
    if settings.db_use_nullpool:
        logger.info("Using NullPool - no connection pooling (worker mode)")
        kwargs["poolclass"] = pool.NullPool
    else:
        logger.info(
            f"Using connection pooling - pool_size={settings.db_pool_size}, max_overflow={settings.db_pool_overflow}"
        )
        kwargs["pool_size"] = settings.db_pool_size
        kwargs["max_overflow"] = settings.db_pool_overflow
    return kwargs


engine = create_async_engine(ASYNC_DATABASE_URL, **_engine_kwargs())
AsyncSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)

# Access-policy reads go through this factory so a replica can be swapped in
AsyncSessionLocalReadonly = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


async def get_db():
    """Request-scoped session that commits on success."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.error(f"Rolling back due to error {e}")
            await session.rollback()
            raise


async def get_db_readonly():
    """Readonly request-scoped session, never commits."""
    async with AsyncSessionLocalReadonly() as session:
        try:
            yield session
        except Exception as e:
            logger.error(f"Error in readonly session: {e}")
            await session.rollback()
            raise
