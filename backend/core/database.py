"""
Async PostgreSQL connection pool module for snapshot persistence.

This module provides an async PostgreSQL connection pool using asyncpg. The pool
backs the PostgresSnapshotStore (one JSON blob per newsletter) and the user
newsletter registry. Persistence is optional: when DATABASE_URL is not set the
pool is never created and the application falls back to an in-memory store.

Key Components:
- Global connection pool singleton (_pool)
- init_db(): Initialize the connection pool at application startup
- get_db_pool(): Get the pool instance (initializes if needed)
- close_db(): Gracefully close the pool at application shutdown
- SCHEMA_DDL: Idempotent table definitions applied on first init

Connection Pool Configuration:
- min_size: 1 (minimum idle connections kept in pool)
- max_size: 5 (maximum connections in pool)
- command_timeout: 30 seconds (query timeout)

Usage:
    # At application startup (in FastAPI lifespan)
    pool = await init_db()

    # In services
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow("SELECT payload FROM newsletter_snapshot WHERE newsletter_id = $1", key)

    # At application shutdown
    await close_db()
"""

import logging
from typing import Optional

import asyncpg
from asyncpg import Pool

from backend.core.config import get_settings


logger = logging.getLogger(__name__)


# =============================================================================
# Schema
# =============================================================================

SCHEMA_DDL: str = """
CREATE TABLE IF NOT EXISTS newsletter_snapshot (
    newsletter_id TEXT PRIMARY KEY,
    payload JSONB NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS newsletter_config (
    slug TEXT PRIMARY KEY,
    publication_id TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""


# =============================================================================
# Global Pool Singleton
# =============================================================================

# None until init_db() is called with a configured DATABASE_URL
_pool: Optional[Pool] = None


# =============================================================================
# Pool Lifecycle Functions
# =============================================================================

def is_db_configured() -> bool:
    """Return True when a DATABASE_URL is available."""
    return bool(get_settings().database_url)


async def init_db() -> Optional[Pool]:
    """
    Initialize the database connection pool and ensure the schema exists.

    Idempotent: if the pool is already initialized the existing pool is
    returned. Returns None without connecting when DATABASE_URL is unset.

    Returns:
        Optional[Pool]: The asyncpg connection pool instance, or None.

    Raises:
        asyncpg.PostgresError: If connection to the database fails.
        OSError: If the database host is unreachable.
    """
    global _pool

    if _pool is None:
        settings = get_settings()
        if not settings.database_url:
            logger.info("DATABASE_URL not set; snapshot persistence is in-memory")
            return None

        _pool = await asyncpg.create_pool(
            dsn=settings.database_url,
            min_size=1,
            max_size=5,
            command_timeout=30,
        )
        async with _pool.acquire() as conn:
            await conn.execute(SCHEMA_DDL)

    return _pool


async def get_db_pool() -> Pool:
    """
    Get the database connection pool, initializing if needed.

    Returns:
        Pool: The asyncpg connection pool instance.

    Raises:
        RuntimeError: If DATABASE_URL is not configured.
        asyncpg.PostgresError: If connection to the database fails during lazy init.
    """
    pool = await init_db()
    if pool is None:
        raise RuntimeError("DATABASE_URL is not configured")
    return pool


async def close_db() -> None:
    """
    Close the database connection pool gracefully.

    Idempotent: calling it when the pool is not initialized has no effect.
    Subsequent calls to get_db_pool() create a new pool.
    """
    global _pool

    if _pool is not None:
        await _pool.close()
        _pool = None
