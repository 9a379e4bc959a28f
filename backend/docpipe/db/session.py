"""
Database session management.

Two entry points, both transactional:

  get_db()        FastAPI dependency; one session per request. The transaction
                  commits when the route returns and rolls back if it raises.

  get_admin_db()  async context manager for service-owned units of work.
                  The job store opens one per optimistic-update attempt so a
                  lost race can be retried against a freshly read row.
"""

from __future__ import annotations

import logging
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import AsyncGenerator, Callable

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from docpipe.core.config import settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

engine: AsyncEngine = create_async_engine(
    settings.database_url,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=True,          # detect stale connections before use
    pool_recycle=3600,           # recycle connections every hour
    echo=settings.db_echo_sql,
)

# expire_on_commit=False keeps ORM objects usable after commit
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

# Type of get_admin_db and of the fakes tests inject in its place
SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


# ---------------------------------------------------------------------------
# FastAPI dependency
# ---------------------------------------------------------------------------

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that yields a request-scoped session.

    Usage in a route:
        @router.get("/processing/jobs")
        async def list_jobs(db: AsyncSession = Depends(get_db)): ...
    """
    async with AsyncSessionLocal() as session:
        async with session.begin():
            yield session
            # Transaction commits automatically on context exit (begin() block)


# ---------------------------------------------------------------------------
# Service-owned unit of work
# ---------------------------------------------------------------------------

@asynccontextmanager
async def get_admin_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Session wrapped in its own transaction, independent of any request.

    Used by the job store (optimistic updates) and by callbacks whose stage
    transition must commit together with the document artifact it carries.
    """
    async with AsyncSessionLocal() as session:
        async with session.begin():
            yield session


# ---------------------------------------------------------------------------
# Health check helper
# ---------------------------------------------------------------------------

async def check_db_health() -> dict:
    """Ping the database; used by /ready."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        logger.error("DB health check failed: %s", exc)
        return {"status": "error", "detail": str(exc)}
