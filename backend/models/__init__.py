"""
Package initialization file for backend models.

This module exports all Pydantic schemas and enumerations from schemas.py and enums.py,
making them importable from backend.models directly.

Usage:
    from backend.models import (
        Post,
        AggregateResult,
        Granularity,
        MetricName,
        # ... etc
    )
"""

# =============================================================================
# Enums
# =============================================================================

from backend.models.enums import (
    SourceKind,
    StatsSource,
    Granularity,
    MetricName,
    SortOrder,
    TrendDirection,
    TrendStrength,
    AccelerationStatus,
    AnomalyType,
    DeltaDirection,
    InsightType,
    DateRangePreset,
)


# =============================================================================
# Schemas
# =============================================================================

from backend.models.schemas import (
    SNAPSHOT_VERSION,
    # Canonical records
    Post,
    AudienceSnapshot,
    GrowthBucket,
    # Ingestion
    IngestionErrorDetail,
    IngestionResult,
    # Aggregation and bucketing
    AggregateResult,
    Bucket,
    GrowthPeriod,
    AudiencePeriod,
    MetricSeries,
    # Insight engine
    Baseline,
    TrendResult,
    AccelerationResult,
    AnomalyResult,
    RankedPost,
    PerformanceExtremes,
    Insight,
    PerformanceHighlights,
    # Deltas
    DeltaResult,
    DeltaSet,
    # Persistence
    Snapshot,
    # Registry
    NewsletterCreate,
    NewsletterEntry,
    NewsletterListResponse,
    # API payloads
    DateWindow,
    SummaryResponse,
    InsightsResponse,
)


__all__ = [
    "SourceKind",
    "StatsSource",
    "Granularity",
    "MetricName",
    "SortOrder",
    "TrendDirection",
    "TrendStrength",
    "AccelerationStatus",
    "AnomalyType",
    "DeltaDirection",
    "InsightType",
    "DateRangePreset",
    "SNAPSHOT_VERSION",
    "Post",
    "AudienceSnapshot",
    "GrowthBucket",
    "IngestionErrorDetail",
    "IngestionResult",
    "AggregateResult",
    "Bucket",
    "GrowthPeriod",
    "AudiencePeriod",
    "MetricSeries",
    "Baseline",
    "TrendResult",
    "AccelerationResult",
    "AnomalyResult",
    "RankedPost",
    "PerformanceExtremes",
    "Insight",
    "PerformanceHighlights",
    "DeltaResult",
    "DeltaSet",
    "Snapshot",
    "NewsletterCreate",
    "NewsletterEntry",
    "NewsletterListResponse",
    "DateWindow",
    "SummaryResponse",
    "InsightsResponse",
]
