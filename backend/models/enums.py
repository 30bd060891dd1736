"""
Enumeration definitions for the Newsletter Pulse backend.

All enums inherit from both `str` and `Enum` to ensure JSON serialization
compatibility with Pydantic models, enabling automatic serialization and
deserialization in API responses and persisted snapshots.
"""

from enum import Enum


class SourceKind(str, Enum):
    """
    Tag of the ingestion adapter that produced a dataset.

    - bulkText: Delimited text export (one row per post)
    - multiSheet: Workbook export with posts / growth / audience sheets
    - apiSync: Paginated upstream API sync
    """
    BULK_TEXT = "bulkText"
    MULTI_SHEET = "multiSheet"
    API_SYNC = "apiSync"


class StatsSource(str, Enum):
    """
    Provenance of a Post's statistics.

    - export: Read from a file export
    - post: Per-post statistics fetched from the upstream API
    - publicationAverage: Backfilled from publication-level averages
      (an approximation, not a measurement)
    """
    EXPORT = "export"
    POST = "post"
    PUBLICATION_AVERAGE = "publicationAverage"


class Granularity(str, Enum):
    """Period used by the bucketer."""
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


class MetricName(str, Enum):
    """
    Post metrics the pipeline can aggregate, rank, and trend.

    Rate metrics are 0-100 percentages; everything else is a count.
    """
    OPEN_RATE = "openRate"
    CTR = "ctr"
    VERIFIED_CTR = "verifiedCtr"
    DELIVERY_RATE = "deliveryRate"
    UNSUBSCRIBE_RATE = "unsubscribeRate"
    SENT = "sent"
    DELIVERED = "delivered"
    TOTAL_OPENS = "totalOpens"
    UNIQUE_OPENS = "uniqueOpens"
    UNIQUE_CLICKS = "uniqueClicks"
    VERIFIED_CLICKS = "verifiedClicks"
    UNSUBSCRIBED = "unsubscribed"

    @property
    def is_rate(self) -> bool:
        return self in (
            MetricName.OPEN_RATE,
            MetricName.CTR,
            MetricName.VERIFIED_CTR,
            MetricName.DELIVERY_RATE,
            MetricName.UNSUBSCRIBE_RATE,
        )


class SortOrder(str, Enum):
    DESC = "desc"
    ASC = "asc"


class TrendDirection(str, Enum):
    """Direction of a normalized least-squares slope (+/-1% threshold)."""
    UP = "up"
    DOWN = "down"
    NEUTRAL = "neutral"


class TrendStrength(str, Enum):
    """
    Magnitude class of a normalized slope.

    - none: Fewer than two values, no trend computed
    - weak: |slope| <= 2%
    - moderate: 2% < |slope| <= 5%
    - strong: |slope| > 5%
    """
    NONE = "none"
    WEAK = "weak"
    MODERATE = "moderate"
    STRONG = "strong"


class AccelerationStatus(str, Enum):
    """Recent-vs-historical slope comparison (+/-1 threshold)."""
    ACCELERATING = "accelerating"
    DECELERATING = "decelerating"
    STEADY = "steady"


class AnomalyType(str, Enum):
    """Side of the mean an anomalous value falls on."""
    HIGH = "high"
    LOW = "low"


class DeltaDirection(str, Enum):
    """Sign of a delta; an exact zero difference is neutral."""
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class InsightType(str, Enum):
    """Tone of a generated natural-language insight."""
    POSITIVE = "positive"
    WARNING = "warning"
    INFO = "info"
    NEUTRAL = "neutral"


class DateRangePreset(str, Enum):
    """
    Named date windows offered by the dashboard.

    - 30d / 90d: Trailing windows ending now
    - all: No filtering
    - custom: Explicit start/end supplied by the caller
    """
    LAST_30_DAYS = "30d"
    LAST_90_DAYS = "90d"
    ALL = "all"
    CUSTOM = "custom"
