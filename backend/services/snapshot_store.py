"""
Snapshot Store

Persists one JSON blob per newsletter id (posts, growth, audience, warnings,
last-updated time), replaced wholesale on every re-import or re-sync, plus
the user-added entries of the newsletter registry.

Implementations:
- PostgresSnapshotStore: asyncpg pool, JSONB payloads, ON CONFLICT upserts
- MemorySnapshotStore: process-local dict of serialized JSON strings, so
  the serialize / deserialize path is the same as with Postgres

Blobs carry a `version` tag. Unversioned blobs (the pre-versioning format)
are migrated on load; blobs from a newer version are rejected.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from asyncpg import Pool

from backend.models import (
    SNAPSHOT_VERSION,
    IngestionResult,
    Snapshot,
    SourceKind,
)

# Configure module logger
logger = logging.getLogger(__name__)


class SnapshotVersionError(ValueError):
    """A persisted snapshot was written by a newer schema version."""


# =============================================================================
# Serialization
# =============================================================================


def snapshot_from_result(newsletter_id: str, result: IngestionResult) -> Snapshot:
    return Snapshot(
        version=SNAPSHOT_VERSION,
        newsletterId=newsletter_id,
        kind=result.kind,
        posts=result.posts,
        growth=result.growth,
        audience=result.audience,
        warnings=result.warnings,
        lastUpdated=result.lastUpdated,
    )


def result_from_snapshot(snapshot: Snapshot) -> IngestionResult:
    return IngestionResult(
        kind=snapshot.kind,
        success=True,
        posts=snapshot.posts,
        growth=snapshot.growth,
        audience=snapshot.audience,
        warnings=snapshot.warnings,
        lastUpdated=snapshot.lastUpdated,
    )


def serialize_snapshot(snapshot: Snapshot) -> str:
    """JSON text; timestamps are ISO-8601 with microseconds and UTC offset."""
    return snapshot.model_dump_json()


def _migrate(data: Dict[str, Any], newsletter_id: Optional[str]) -> Dict[str, Any]:
    version = data.get('version')
    if version is None:
        # Pre-versioning blobs hold only the record arrays and lastUpdated
        data = dict(data)
        data['version'] = SNAPSHOT_VERSION
        data.setdefault('newsletterId', newsletter_id or 'unknown')
        data.setdefault('kind', SourceKind.MULTI_SHEET.value)
        return data
    if version > SNAPSHOT_VERSION:
        raise SnapshotVersionError(
            f"Snapshot version {version} is newer than supported version {SNAPSHOT_VERSION}"
        )
    return data


def deserialize_snapshot(payload: str, newsletter_id: Optional[str] = None) -> Snapshot:
    """
    Rebuild a Snapshot from JSON text.

    Raises:
        SnapshotVersionError: The blob was written by a newer version
        pydantic.ValidationError: The blob does not match the schema
    """
    data = json.loads(payload)
    return Snapshot.model_validate(_migrate(data, newsletter_id))


# =============================================================================
# Store Interface
# =============================================================================


class SnapshotStore(ABC):
    """Key-value persistence for snapshots and registry entries."""

    @abstractmethod
    async def load(self, newsletter_id: str) -> Optional[Snapshot]:
        """The stored snapshot, or None."""

    @abstractmethod
    async def save(self, snapshot: Snapshot) -> None:
        """Store a snapshot, replacing any previous one for its id."""

    @abstractmethod
    async def delete(self, newsletter_id: str) -> bool:
        """Remove a snapshot; True if one existed."""

    @abstractmethod
    async def list_ids(self) -> List[str]:
        """Newsletter ids with a stored snapshot, sorted."""

    @abstractmethod
    async def load_newsletters(self) -> Dict[str, str]:
        """User-registered slug -> publication id."""

    @abstractmethod
    async def save_newsletter(self, slug: str, pub_id: str) -> None:
        """Register or replace a slug."""

    @abstractmethod
    async def delete_newsletter(self, slug: str) -> bool:
        """Unregister a slug; True if it existed."""


# =============================================================================
# In-Memory Store
# =============================================================================


class MemorySnapshotStore(SnapshotStore):
    """Process-lifetime store used when no DATABASE_URL is configured."""

    def __init__(self) -> None:
        self._snapshots: Dict[str, str] = {}
        self._newsletters: Dict[str, str] = {}

    async def load(self, newsletter_id: str) -> Optional[Snapshot]:
        payload = self._snapshots.get(newsletter_id)
        if payload is None:
            return None
        return deserialize_snapshot(payload, newsletter_id)

    async def save(self, snapshot: Snapshot) -> None:
        self._snapshots[snapshot.newsletterId] = serialize_snapshot(snapshot)

    async def delete(self, newsletter_id: str) -> bool:
        return self._snapshots.pop(newsletter_id, None) is not None

    async def list_ids(self) -> List[str]:
        return sorted(self._snapshots)

    async def load_newsletters(self) -> Dict[str, str]:
        return dict(self._newsletters)

    async def save_newsletter(self, slug: str, pub_id: str) -> None:
        self._newsletters[slug] = pub_id

    async def delete_newsletter(self, slug: str) -> bool:
        return self._newsletters.pop(slug, None) is not None


# =============================================================================
# PostgreSQL Store
# =============================================================================


class PostgresSnapshotStore(SnapshotStore):
    """
    Snapshot store backed by the shared asyncpg pool.

    Tables (created by backend.core.database.init_db):
    - newsletter_snapshot(newsletter_id PK, payload JSONB, updated_at)
    - newsletter_config(slug PK, publication_id, created_at)
    """

    def __init__(self, pool: Pool) -> None:
        self.pool = pool

    async def load(self, newsletter_id: str) -> Optional[Snapshot]:
        async with self.pool.acquire() as conn:
            payload = await conn.fetchval(
                "SELECT payload::text FROM newsletter_snapshot WHERE newsletter_id = $1",
                newsletter_id,
            )
        if payload is None:
            return None
        return deserialize_snapshot(payload, newsletter_id)

    async def save(self, snapshot: Snapshot) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO newsletter_snapshot (newsletter_id, payload, updated_at)
                VALUES ($1, $2::jsonb, now())
                ON CONFLICT (newsletter_id)
                DO UPDATE SET payload = EXCLUDED.payload, updated_at = now()
                """,
                snapshot.newsletterId,
                serialize_snapshot(snapshot),
            )
        logger.info(f"Saved snapshot for {snapshot.newsletterId} ({len(snapshot.posts)} posts)")

    async def delete(self, newsletter_id: str) -> bool:
        async with self.pool.acquire() as conn:
            status = await conn.execute(
                "DELETE FROM newsletter_snapshot WHERE newsletter_id = $1",
                newsletter_id,
            )
        return status.endswith(' 1')

    async def list_ids(self) -> List[str]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT newsletter_id FROM newsletter_snapshot ORDER BY newsletter_id"
            )
        return [row['newsletter_id'] for row in rows]

    async def load_newsletters(self) -> Dict[str, str]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT slug, publication_id FROM newsletter_config ORDER BY slug"
            )
        return {row['slug']: row['publication_id'] for row in rows}

    async def save_newsletter(self, slug: str, pub_id: str) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO newsletter_config (slug, publication_id)
                VALUES ($1, $2)
                ON CONFLICT (slug) DO UPDATE SET publication_id = EXCLUDED.publication_id
                """,
                slug,
                pub_id,
            )

    async def delete_newsletter(self, slug: str) -> bool:
        async with self.pool.acquire() as conn:
            status = await conn.execute("DELETE FROM newsletter_config WHERE slug = $1", slug)
        return status.endswith(' 1')
