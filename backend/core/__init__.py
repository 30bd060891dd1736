"""
Core infrastructure package for the Newsletter Pulse backend.

Provides:
- Configuration management via pydantic-settings
- Optional async PostgreSQL connectivity via asyncpg
- The ingestion error taxonomy

This module re-exports key components from submodules so other modules can
write:

    from backend.core import get_settings, init_db, UpstreamHTTPError

Components Re-exported:
    Settings: Pydantic settings class with all configuration parameters
    get_settings: Function returning the cached Settings singleton
    init_db / close_db / get_db_pool: Database pool lifecycle
    is_db_configured: Whether DATABASE_URL is set
    IngestionError and subclasses: Terminal ingestion failures

FastAPI dependencies live in backend.core.dependencies and are imported
from there directly; they depend on the service layer, which itself
imports this package.
"""

# =============================================================================
# Re-exports from backend.core.config
# =============================================================================
from backend.core.config import Settings, get_settings

# =============================================================================
# Re-exports from backend.core.database
# =============================================================================
from backend.core.database import init_db, close_db, get_db_pool, is_db_configured

# =============================================================================
# Re-exports from backend.core.exceptions
# =============================================================================
from backend.core.exceptions import (
    PARTIAL_FETCH_FAILURE,
    IngestionError,
    EmptyInput,
    MissingRequiredColumn,
    UnparseableFile,
    UpstreamHTTPError,
    UnknownNewsletter,
)

__all__ = [
    # Configuration management (from config.py)
    'Settings',
    'get_settings',
    # Database pool lifecycle (from database.py)
    'init_db',
    'close_db',
    'get_db_pool',
    'is_db_configured',
    # Error taxonomy (from exceptions.py)
    'PARTIAL_FETCH_FAILURE',
    'IngestionError',
    'EmptyInput',
    'MissingRequiredColumn',
    'UnparseableFile',
    'UpstreamHTTPError',
    'UnknownNewsletter',
]
