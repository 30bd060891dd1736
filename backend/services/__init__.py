"""
Backend Services Module

Business logic for the Newsletter Pulse analytics pipeline. Everything
except the API client, the snapshot store and the session is a pure
function of its inputs.

Services:
- normalizer: Alias-tolerant header matching and scalar coercion
- ingestion: Bulk-text (CSV) and multi-sheet (workbook) adapters, plus the
  ingest() facade that turns terminal errors into failure results
- beehiiv_client: Paginated listing and batched per-post stats fetches
- api_sync: Transforms upstream posts into Posts, growth and audience rows
- aggregation: Weighted (ratio-of-sums) aggregate statistics
- date_filter: Inclusive window filter, month-snapped variant, presets
- bucketing: Day / ISO-week / month buckets, series and sparklines
- smart_insights: Baselines, trend, acceleration, anomalies, rankings and
  the headline insight
- deltas: First-half vs second-half indicators for the KPI cards
- snapshot_store: Versioned JSON persistence (Postgres or in-memory)
- newsletter_registry: Slug prefix -> publication id
- session: Per-newsletter state with generation-token replacement

All services are consumed by the API layer (backend/api/).
"""

# =============================================================================
# Ingestion Exports
# =============================================================================

from backend.services.ingestion import (
    ingest,
    ingest_upload,
    parse_bulk_text,
    parse_workbook,
    parse_workbook_sheets,
)
from backend.services.api_sync import ingest_api, sync_publication
from backend.services.beehiiv_client import BeehiivClient, PostListing

# =============================================================================
# Pipeline Exports
# =============================================================================

from backend.services.aggregation import aggregate, aggregate_metric
from backend.services.date_filter import filter_by_date, filter_month_snapped, resolve_window
from backend.services.bucketing import (
    bucket,
    bucket_audience,
    bucket_growth,
    has_weekly_granularity,
    series,
    sparkline,
)
from backend.services.smart_insights import (
    calculate_all_baselines,
    calculate_baseline,
    calculate_trend,
    detect_acceleration,
    detect_anomalies,
    generate_primary_insight,
    performance_extremes,
    performance_highlights,
    rank_posts,
)
from backend.services.deltas import delta, delta_set, latest_subscribers, subscriber_delta

# =============================================================================
# State Exports
# =============================================================================

from backend.services.snapshot_store import (
    MemorySnapshotStore,
    PostgresSnapshotStore,
    SnapshotStore,
    SnapshotVersionError,
)
from backend.services.newsletter_registry import NewsletterConfigError, NewsletterRegistry
from backend.services.session import AnalyticsSession, NoDataError, SessionRegistry

__all__ = [
    # ----- Ingestion -----
    'ingest',
    'ingest_upload',
    'parse_bulk_text',
    'parse_workbook',
    'parse_workbook_sheets',
    'ingest_api',
    'sync_publication',
    'BeehiivClient',
    'PostListing',
    # ----- Pipeline -----
    'aggregate',
    'aggregate_metric',
    'filter_by_date',
    'filter_month_snapped',
    'resolve_window',
    'bucket',
    'bucket_audience',
    'bucket_growth',
    'has_weekly_granularity',
    'series',
    'sparkline',
    'calculate_all_baselines',
    'calculate_baseline',
    'calculate_trend',
    'detect_acceleration',
    'detect_anomalies',
    'generate_primary_insight',
    'performance_extremes',
    'performance_highlights',
    'rank_posts',
    'delta',
    'delta_set',
    'latest_subscribers',
    'subscriber_delta',
    # ----- State -----
    'MemorySnapshotStore',
    'PostgresSnapshotStore',
    'SnapshotStore',
    'SnapshotVersionError',
    'NewsletterConfigError',
    'NewsletterRegistry',
    'AnalyticsSession',
    'NoDataError',
    'SessionRegistry',
]
