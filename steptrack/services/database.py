"""asyncpg pool shared by the PostgreSQL step store and the health probe.

The lifespan opens it only when ``STORAGE_BACKEND=postgres``.  Each per-user
step transaction holds one pooled connection for its ``SELECT ... FOR UPDATE``
lock, so ``DATABASE_POOL_MAX_SIZE`` caps how many users reconcile at once.
"""

from __future__ import annotations

import logging

import asyncpg

from steptrack.config import Settings, get_settings

logger = logging.getLogger("steptrack.db")

# Module-level connection pool, initialized once at app startup
_pool: asyncpg.Pool | None = None


async def init_pool(settings: Settings | None = None) -> asyncpg.Pool:
    """Open the pool from the DATABASE_* settings and remember it for get_pool()."""
    global _pool
    s = settings or get_settings()
    _pool = await asyncpg.create_pool(
        s.database_url,
        min_size=s.database_pool_min_size,
        max_size=s.database_pool_max_size,
        command_timeout=30,
    )
    logger.info(
        "Database pool initialized (min=%d, max=%d)",
        s.database_pool_min_size,
        s.database_pool_max_size,
    )
    return _pool


async def close_pool() -> None:
    """Close the pool on shutdown; a no-op when storage is in memory."""
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")


def get_pool() -> asyncpg.Pool:
    """Return the open pool; the health probe calls this to run SELECT 1."""
    if _pool is None:
        raise RuntimeError("Database pool not initialized; call init_pool() first")
    return _pool
