"""
FastAPI dependency injection module for the Newsletter Pulse backend.

This module provides the reusable FastAPI dependencies that bind endpoint
handlers to configuration, persistence, the analytics sessions and the
upstream API client. Endpoints never construct these themselves, so tests
can swap any of them through `app.dependency_overrides`.

Key Dependencies Provided:
- get_settings_dependency: Returns the cached Settings singleton
- get_snapshot_store: Postgres-backed store when DATABASE_URL is set,
  otherwise the process-wide in-memory store
- get_session_registry: Process-wide SessionRegistry (one AnalyticsSession
  per newsletter id)
- get_newsletter_registry: Slug -> publication id resolution
- get_beehiiv_client: Upstream client, closed when the request finishes

Usage Examples:
    @router.get("/analytics/{newsletter}/summary")
    async def summary(
        newsletter: str,
        sessions: SessionRegistryDep,
    ) -> SummaryResponse:
        session = await sessions.get(newsletter)
        return await session.summary()

See Also:
    - backend/core/config.py: Settings management and environment variables
    - backend/core/database.py: Connection pool lifecycle management
    - backend/api/*.py: Endpoint handlers using these dependencies
"""

from typing import AsyncGenerator, Annotated, Optional

from fastapi import Depends

from backend.core.config import Settings, get_settings
from backend.core.database import get_db_pool, is_db_configured
from backend.models import DateRangePreset
from backend.services.beehiiv_client import BeehiivClient
from backend.services.newsletter_registry import NewsletterRegistry
from backend.services.session import SessionRegistry
from backend.services.snapshot_store import (
    MemorySnapshotStore,
    PostgresSnapshotStore,
    SnapshotStore,
)


# =============================================================================
# Process-wide State
# =============================================================================

# Used when no DATABASE_URL is configured; lives for the process lifetime
_memory_store: Optional[MemorySnapshotStore] = None

# Created on first use, bound to the store of that request
_session_registry: Optional[SessionRegistry] = None


def reset_state() -> None:
    """Forget the in-memory store and every cached session."""
    global _memory_store, _session_registry
    _memory_store = None
    _session_registry = None


# =============================================================================
# Settings Dependency
# =============================================================================

def get_settings_dependency() -> Settings:
    """
    Return the Settings singleton instance.

    Thin wrapper around get_settings() so tests can override it:

        app.dependency_overrides[get_settings_dependency] = lambda: test_settings
    """
    return get_settings()


SettingsDep = Annotated[Settings, Depends(get_settings_dependency)]


# =============================================================================
# Persistence Dependencies
# =============================================================================

async def get_snapshot_store() -> SnapshotStore:
    """
    Snapshot store for the current configuration.

    Returns:
        SnapshotStore: PostgresSnapshotStore over the shared pool when
            DATABASE_URL is set, otherwise the in-memory store.

    Raises:
        asyncpg.PostgresError: If connection to the database fails.
    """
    global _memory_store

    if is_db_configured():
        return PostgresSnapshotStore(await get_db_pool())

    if _memory_store is None:
        _memory_store = MemorySnapshotStore()
    return _memory_store


SnapshotStoreDep = Annotated[SnapshotStore, Depends(get_snapshot_store)]


async def get_session_registry(
    settings: SettingsDep,
    store: SnapshotStoreDep,
) -> SessionRegistry:
    """
    Return the process-wide SessionRegistry, creating it on first use.

    New sessions start on the DEFAULT_DATE_RANGE preset.
    """
    global _session_registry

    if _session_registry is None:
        _session_registry = SessionRegistry(store, DateRangePreset(settings.default_date_range))
    return _session_registry


SessionRegistryDep = Annotated[SessionRegistry, Depends(get_session_registry)]


async def get_newsletter_registry(
    settings: SettingsDep,
    store: SnapshotStoreDep,
) -> NewsletterRegistry:
    return NewsletterRegistry(settings, store)


NewsletterRegistryDep = Annotated[NewsletterRegistry, Depends(get_newsletter_registry)]


# =============================================================================
# Upstream Client Dependency
# =============================================================================

async def get_beehiiv_client(settings: SettingsDep) -> AsyncGenerator[BeehiivClient, None]:
    """
    Yield an upstream API client configured from settings.

    The underlying HTTP connection pool is closed when the endpoint
    completes, whether or not it raised.
    """
    client = BeehiivClient.from_settings(settings)
    try:
        yield client
    finally:
        await client.close()


BeehiivClientDep = Annotated[BeehiivClient, Depends(get_beehiiv_client)]
