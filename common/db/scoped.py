"""
Operation-scoped database sessions.

Usage:
    # Single operation - acquires, commits and releases immediately
    async with get_session() as session:
        result = await session.get(Model, id)

    # Several operations sharing one session and one commit
    async with transaction():
        await repo.acquire_user_lock(user_id)
        await repo.transition(...)
        await repo.create_active(...)
"""

import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from common.core.otel_axiom_exporter import get_logger
from common.db.session import AsyncSessionLocal, AsyncSessionLocalReadonly
from common.db.context import (
    get_current_session,
    set_current_session,
    reset_current_session,
    is_readonly_forced,
)

logger = get_logger(__name__)


def _session_factory(readonly: bool) -> async_sessionmaker:
    # Looked up at call time so tests can swap the module-level factories
    return AsyncSessionLocalReadonly if readonly else AsyncSessionLocal


@asynccontextmanager
async def _scoped_session(
    readonly: bool, label: str
) -> AsyncGenerator[AsyncSession, None]:
    start = time.perf_counter()
    async with _session_factory(readonly)() as session:
        logger.debug(
            f"{label} session acquire: {(time.perf_counter() - start) * 1000:.2f}ms, readonly={readonly}"
        )
        try:
            yield session
            if not readonly:
                await session.commit()
        except Exception as e:
            logger.error(f"{label} rollback due to: {e}")
            await session.rollback()
            raise


@asynccontextmanager
async def transaction(readonly: bool = False) -> AsyncGenerator[AsyncSession, None]:
    """
    Explicit transaction boundary.

    All repository calls inside share one session. Commits on success (unless
    readonly), rolls back and re-raises on exception.
    """
    effective_readonly = readonly or is_readonly_forced()
    async with _scoped_session(effective_readonly, "Transaction") as session:
        token = set_current_session(session, readonly=effective_readonly)
        try:
            yield session
        finally:
            reset_current_session(token, readonly=effective_readonly)


@asynccontextmanager
async def get_session(readonly: bool = False) -> AsyncGenerator[AsyncSession, None]:
    """
    Session for a single repository operation.

    Reuses the enclosing transaction's session when there is one, otherwise
    acquires a fresh session that commits and releases on exit.
    """
    effective_readonly = readonly or is_readonly_forced()
    existing = get_current_session(readonly=effective_readonly)

    if existing:
        yield existing
        return

    async with _scoped_session(effective_readonly, "Operation") as session:
        yield session


@asynccontextmanager
async def ensure_transaction() -> AsyncGenerator[AsyncSession, None]:
    """
    Join the enclosing write transaction, or open one.

    For service methods that run standalone and also as a step inside a
    larger transaction (e.g. coupon application during payment ingest).
    """
    existing = get_current_session(readonly=False)
    if existing is not None and not is_readonly_forced():
        yield existing
        return

    async with transaction() as session:
        yield session
