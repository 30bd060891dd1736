"""
Pydantic models for the Newsletter Pulse backend.

This module provides type-safe data validation and serialization for the
canonical record model and every result shape produced by the pipeline:

- Canonical records: Post, AudienceSnapshot, GrowthBucket
- Ingestion: IngestionErrorDetail, IngestionResult (tagged by SourceKind)
- Aggregation and bucketing: AggregateResult, Bucket, GrowthPeriod,
  AudiencePeriod, MetricSeries
- Insight engine: Baseline, TrendResult, AccelerationResult, AnomalyResult,
  RankedPost, PerformanceExtremes, Insight, PerformanceHighlights
- Deltas: DeltaResult, DeltaSet
- Persistence: Snapshot (versioned)
- Registry: NewsletterEntry, NewsletterCreate
- API payloads: SummaryResponse, InsightsResponse

Field names are camelCase to match the JSON contract consumed by the
presentation layer. Timestamps are timezone-aware datetimes serialized as
ISO-8601 with microseconds, so a snapshot round-trip is lossless.

All models use Pydantic v2 syntax.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, ConfigDict

from backend.models.enums import (
    SourceKind,
    StatsSource,
    Granularity,
    MetricName,
    TrendDirection,
    TrendStrength,
    AccelerationStatus,
    AnomalyType,
    DeltaDirection,
    InsightType,
)


SNAPSHOT_VERSION: int = 1


# =============================================================================
# Canonical Records
# =============================================================================


class Post(BaseModel):
    """
    One sent newsletter edition / campaign.

    Counts default to 0 when absent from the source; rates are 0-100
    percentages and stay None when the source has no usable value.
    `date` is always a timezone-aware timestamp once past ingestion.
    """
    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "date": "2024-03-05T12:00:00Z",
                "title": "Issue #42",
                "sent": 1200,
                "delivered": 1180,
                "totalOpens": 900,
                "uniqueOpens": 610,
                "openRate": 51.69,
                "uniqueClicks": 74,
                "ctr": 12.13,
                "verifiedClicks": 60,
                "verifiedCtr": 9.84,
                "unsubscribed": 3,
                "unsubscribeRate": 0.25,
                "deliveryRate": 98.33,
                "contentTags": "ai, policy",
                "postId": "post_00000000",
                "statsSource": "post",
            }
        }
    )

    date: datetime = Field(..., description="Publish timestamp (UTC)")
    title: str = Field(default="Untitled", description="Subject or title")
    sent: int = Field(default=0, ge=0, description="Recipients")
    delivered: int = Field(default=0, ge=0, description="Delivered emails")
    totalOpens: int = Field(default=0, ge=0, description="Total opens")
    uniqueOpens: int = Field(default=0, ge=0, description="Unique opens")
    openRate: Optional[float] = Field(default=None, description="Open rate (0-100)")
    uniqueClicks: int = Field(default=0, ge=0, description="Unique clicks")
    ctr: Optional[float] = Field(default=None, description="Click-through rate (0-100)")
    verifiedClicks: int = Field(default=0, ge=0, description="Bot-filtered unique clicks")
    verifiedCtr: Optional[float] = Field(
        default=None,
        description="Verified click-through rate (0-100)"
    )
    unsubscribed: int = Field(default=0, ge=0, description="Unsubscribes")
    unsubscribeRate: Optional[float] = Field(
        default=None,
        description="Unsubscribe rate (0-100)"
    )
    deliveryRate: Optional[float] = Field(default=None, description="Delivery rate (0-100)")
    contentTags: Optional[str] = Field(default=None, description="Comma-separated tags")
    postId: Optional[str] = Field(default=None, description="Upstream post identifier")
    statsSource: StatsSource = Field(
        default=StatsSource.EXPORT,
        description="Where the statistics on this record came from"
    )


class AudienceSnapshot(BaseModel):
    """One reading of the total active subscriber count."""
    model_config = ConfigDict(frozen=True)

    date: datetime = Field(..., description="Reading timestamp (UTC)")
    activeSubscribers: int = Field(..., ge=0, description="Active subscribers")


class GrowthBucket(BaseModel):
    """One calendar month of subscriber flow."""
    model_config = ConfigDict(frozen=True)

    date: datetime = Field(..., description="Month start (UTC)")
    subscribed: int = Field(default=0, description="New subscribers")
    unsubscribed: int = Field(default=0, description="Unsubscribes")
    net: int = Field(default=0, description="Net subscriber change")


# =============================================================================
# Ingestion
# =============================================================================


class IngestionErrorDetail(BaseModel):
    """A terminal ingestion failure as reported to the caller."""
    code: str = Field(..., description="Error taxonomy code, e.g. MissingRequiredColumn")
    message: str = Field(..., description="Human-readable message")
    statusCode: Optional[int] = Field(
        default=None,
        description="HTTP status for upstream failures"
    )


class IngestionResult(BaseModel):
    """
    Uniform output of all three ingestion adapters.

    Downstream consumers never branch on `kind`; it is kept for provenance.
    A terminal failure has success=False, a non-empty `errors` list and
    empty record arrays. `growth`/`audience` are None for adapters that do
    not produce them.
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "kind": "multiSheet",
                "success": True,
                "posts": [],
                "growth": [],
                "audience": None,
                "warnings": [
                    'Missing "current subscribers" tab: Hero metric unavailable'
                ],
                "errors": [],
                "lastUpdated": "2024-03-06T09:00:00Z",
            }
        }
    )

    kind: SourceKind = Field(..., description="Adapter that produced the data")
    success: bool = Field(default=True, description="False on terminal failure")
    posts: List[Post] = Field(default_factory=list)
    growth: Optional[List[GrowthBucket]] = Field(default=None)
    audience: Optional[List[AudienceSnapshot]] = Field(default=None)
    warnings: List[str] = Field(default_factory=list, description="Non-fatal problems")
    errors: List[IngestionErrorDetail] = Field(default_factory=list)
    lastUpdated: Optional[datetime] = Field(default=None)


# =============================================================================
# Aggregation and Bucketing
# =============================================================================


class AggregateResult(BaseModel):
    """
    Summary statistics over a Post collection.

    Rates are weighted: ratios of summed counts, never means of per-post
    rates. Each rate is None when its denominator is 0.
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "sent": 5200,
                "delivered": 5000,
                "totalOpens": 3100,
                "uniqueOpens": 2200,
                "uniqueClicks": 300,
                "verifiedClicks": 240,
                "unsubscribed": 12,
                "count": 4,
                "openRate": 44.0,
                "ctr": 13.64,
                "verifiedCtr": 10.91,
                "deliveryRate": 96.15,
                "avgUniqueClicks": 75.0,
                "avgVerifiedClicks": 60.0,
            }
        }
    )

    sent: int = 0
    delivered: int = 0
    totalOpens: int = 0
    uniqueOpens: int = 0
    uniqueClicks: int = 0
    verifiedClicks: int = 0
    unsubscribed: int = 0
    count: int = 0
    openRate: Optional[float] = Field(default=None, description="uniqueOpens / delivered x 100")
    ctr: Optional[float] = Field(default=None, description="uniqueClicks / uniqueOpens x 100")
    verifiedCtr: Optional[float] = Field(
        default=None,
        description="verifiedClicks / uniqueOpens x 100"
    )
    deliveryRate: Optional[float] = Field(default=None, description="delivered / sent x 100")
    avgUniqueClicks: Optional[float] = Field(default=None, description="uniqueClicks / count")
    avgVerifiedClicks: Optional[float] = Field(
        default=None,
        description="verifiedClicks / count"
    )


class Bucket(BaseModel):
    """A time-windowed group of posts with its weighted aggregate."""
    key: str = Field(..., description="Sortable key: YYYY-MM-DD, YYYY-W## or YYYY-MM")
    label: str = Field(..., description="Display label")
    start: datetime = Field(..., description="Bucket start (UTC)")
    records: List[Post] = Field(default_factory=list)
    aggregate: AggregateResult = Field(default_factory=AggregateResult)


class GrowthPeriod(BaseModel):
    """Subscriber flow summed over one bucket period."""
    key: str
    label: str
    start: datetime
    subscribed: int = 0
    unsubscribed: int = 0
    net: int = 0


class AudiencePeriod(BaseModel):
    """The last audience reading within one bucket period."""
    key: str
    label: str
    start: datetime
    activeSubscribers: int = 0


class MetricSeries(BaseModel):
    """Chart-ready series: one value per bucket, None where undefined."""
    metric: MetricName
    granularity: Granularity
    labels: List[str] = Field(default_factory=list)
    values: List[Optional[float]] = Field(default_factory=list)


# =============================================================================
# Insight / Trend Engine
# =============================================================================


class Baseline(BaseModel):
    """Trailing-window averages per metric; None where nothing qualifies."""
    period: int = Field(..., description="Window length in days")
    dataPoints: int = Field(..., ge=0, description="Posts inside the window")
    values: Dict[str, Optional[float]] = Field(
        default_factory=dict,
        description="Metric name -> mean of non-null, non-zero values"
    )


class TrendResult(BaseModel):
    """Normalized least-squares slope of a value sequence."""
    slope: float = Field(..., description="Slope as a percentage of the mean")
    direction: TrendDirection
    strength: TrendStrength


class AccelerationResult(BaseModel):
    """Recent (last 7) vs historical (positions -30..-7) slope comparison."""
    recentSlope: float
    historicalSlope: float
    acceleration: float
    status: AccelerationStatus


class AnomalyResult(BaseModel):
    """
    A post whose metric value deviates from the set mean.

    Flagged when |z| exceeds the configured threshold (default 1.5).
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "post": {"date": "2024-03-05T12:00:00Z", "title": "Issue #42"},
                "value": 21.4,
                "zScore": 2.3,
                "type": "high",
                "deviation": 62.1,
            }
        }
    )

    post: Post
    value: float
    zScore: float
    type: AnomalyType
    deviation: Optional[float] = Field(
        default=None,
        description="Percent deviation from the mean; None when the mean is 0"
    )


class RankedPost(BaseModel):
    """A post with its 1-based rank by a metric."""
    rank: int = Field(..., ge=1)
    value: float
    post: Post


class PerformanceExtremes(BaseModel):
    """Top-K (best first) and bottom-K (worst first) posts by a metric."""
    metric: MetricName
    top: List[RankedPost] = Field(default_factory=list)
    bottom: List[RankedPost] = Field(default_factory=list)


class Insight(BaseModel):
    """A natural-language insight with its selection priority."""
    type: InsightType
    text: str
    priority: float = 0.0


class PerformanceHighlights(BaseModel):
    """Best and worst post by CTR plus the CTR acceleration status."""
    best: Optional[RankedPost] = None
    worst: Optional[RankedPost] = None
    acceleration: Optional[AccelerationResult] = None


# =============================================================================
# Deltas
# =============================================================================


class DeltaResult(BaseModel):
    """
    Change between the first and second half of a window.

    `value` is a percentage of the first half for rate metrics and a raw
    difference for count metrics (isAbsolute=True).
    """
    value: Optional[float] = None
    direction: DeltaDirection = DeltaDirection.NEUTRAL
    isAbsolute: bool = False


class DeltaSet(BaseModel):
    """The deltas shown on the dashboard KPI cards."""
    openRate: DeltaResult = Field(default_factory=DeltaResult)
    ctr: DeltaResult = Field(default_factory=DeltaResult)
    verifiedCtr: DeltaResult = Field(default_factory=DeltaResult)
    deliveryRate: DeltaResult = Field(default_factory=DeltaResult)
    uniqueClicks: DeltaResult = Field(default_factory=DeltaResult)
    verifiedClicks: DeltaResult = Field(default_factory=DeltaResult)
    activeSubscribers: DeltaResult = Field(default_factory=DeltaResult)


# =============================================================================
# Persistence
# =============================================================================


class Snapshot(BaseModel):
    """
    Persisted form of one newsletter's dataset.

    `version` tags the schema so older blobs can be migrated and newer
    blobs are rejected instead of misread.
    """
    version: int = Field(default=SNAPSHOT_VERSION)
    newsletterId: str
    kind: SourceKind
    posts: List[Post] = Field(default_factory=list)
    growth: Optional[List[GrowthBucket]] = None
    audience: Optional[List[AudienceSnapshot]] = None
    warnings: List[str] = Field(default_factory=list)
    lastUpdated: Optional[datetime] = None


# =============================================================================
# Newsletter Registry
# =============================================================================


class NewsletterCreate(BaseModel):
    """Request body for registering a newsletter slug."""
    model_config = ConfigDict(str_strip_whitespace=True)

    slug: str = Field(..., min_length=1, description="Newsletter slug prefix")
    pubId: str = Field(..., min_length=1, description="Upstream publication id")


class NewsletterEntry(BaseModel):
    """A registry entry as listed to clients; the id is masked."""
    slug: str
    pubId: str = Field(..., description="Masked publication id (*** + last 6)")
    hasPubId: bool = False
    isDefault: bool = False


class NewsletterListResponse(BaseModel):
    newsletters: List[NewsletterEntry] = Field(default_factory=list)


# =============================================================================
# API Payloads
# =============================================================================


class DateWindow(BaseModel):
    """Resolved date window; both ends None means unfiltered."""
    start: Optional[datetime] = None
    end: Optional[datetime] = None


class SummaryResponse(BaseModel):
    """KPI payload for one newsletter and date window."""
    newsletterId: str
    window: DateWindow
    aggregate: AggregateResult
    deltas: DeltaSet
    latestSubscribers: Optional[int] = None
    sparklines: Dict[str, List[Optional[float]]] = Field(
        default_factory=dict,
        description="KPI metric -> trailing bucket values (activeSubscribers from audience)"
    )
    lastUpdated: Optional[datetime] = None
    kind: SourceKind
    warnings: List[str] = Field(default_factory=list)


class InsightsResponse(BaseModel):
    """Insight engine payload for one newsletter, metric and date window."""
    newsletterId: str
    metric: MetricName
    baselines: Dict[str, Optional[Baseline]] = Field(
        default_factory=dict,
        description="'7d' / '30d' / '90d' -> baseline, None when the window is empty"
    )
    trend: TrendResult
    acceleration: Optional[AccelerationResult] = None
    anomalies: List[AnomalyResult] = Field(default_factory=list)
    extremes: PerformanceExtremes
    primaryInsight: Insight
    highlights: PerformanceHighlights
