"""
Smart Insights Engine - Newsletter Performance Intelligence

Layered on the Aggregator and Bucketer outputs; every function is pure and
takes the posts it analyses plus an explicit reference time where one matters.

1. BASELINES - trailing 7/30/90-day means per metric, ignoring null and zero
   entries; None when no post falls in the window
2. TREND - ordinary least-squares slope over an ordered value sequence,
   normalized by the sequence mean to a percentage slope
   - direction: up > +1%, down < -1%, otherwise neutral
   - strength: strong > 5%, moderate > 2%, otherwise weak
3. ACCELERATION - slope of the last 7 values minus the slope of positions
   -30..-7; accelerating > +1, decelerating < -1, otherwise steady
4. ANOMALY DETECTION - z-score of each post against the full-set mean and
   population standard deviation, flagged when |z| > threshold (1.5)
5. RANKING - 1-based rank by a metric; extremes are top-K and bottom-K
6. PRIMARY INSIGHT - highest-priority candidate among:
   - latest edition CTR vs 30-day baseline (> 15%), priority = |deviation|
   - latest edition open rate vs 30-day baseline (> 10%), priority = |deviation|
   - strong CTR trend over the last 7 editions, priority 20
   - best CTR among the last 30 editions, priority 10
   falling back to a neutral dataset-size description

Divisions by zero yield None, never NaN or infinity.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from backend.models import (
    AccelerationResult,
    AccelerationStatus,
    AnomalyResult,
    AnomalyType,
    Baseline,
    Insight,
    InsightType,
    MetricName,
    PerformanceExtremes,
    PerformanceHighlights,
    Post,
    RankedPost,
    SortOrder,
    TrendDirection,
    TrendResult,
    TrendStrength,
)
from backend.services.date_filter import as_utc


# =============================================================================
# Thresholds
# =============================================================================

BASELINE_PERIODS: Tuple[int, ...] = (7, 30, 90)

BASELINE_METRICS: Tuple[MetricName, ...] = (
    MetricName.OPEN_RATE,
    MetricName.CTR,
    MetricName.VERIFIED_CTR,
    MetricName.DELIVERY_RATE,
    MetricName.UNIQUE_CLICKS,
    MetricName.DELIVERED,
)

TREND_DIRECTION_THRESHOLD: float = 1.0
TREND_MODERATE_THRESHOLD: float = 2.0
TREND_STRONG_THRESHOLD: float = 5.0

ACCELERATION_MIN_POSTS: int = 14
ACCELERATION_RECENT_POINTS: int = 7
ACCELERATION_HISTORY_POINTS: int = 30
ACCELERATION_THRESHOLD: float = 1.0

ANOMALY_MIN_POSTS: int = 5
DEFAULT_ANOMALY_THRESHOLD: float = 1.5

CTR_DEVIATION_THRESHOLD: float = 15.0
OPEN_RATE_DEVIATION_THRESHOLD: float = 10.0
TREND_INSIGHT_PRIORITY: float = 20.0
BEST_PERFORMER_PRIORITY: float = 10.0
BEST_PERFORMER_WINDOW: int = 30
BEST_PERFORMER_MIN_POSTS: int = 5
TITLE_MAX_LENGTH: int = 40


# =============================================================================
# Statistical Helper Functions
# =============================================================================


def mean(values: Sequence[float]) -> Optional[float]:
    """Arithmetic mean, or None for an empty sequence."""
    if not values:
        return None
    return float(np.mean(np.array(values, dtype=np.float64)))


def std_dev(values: Sequence[float]) -> float:
    """Population standard deviation (ddof=0); 0 for fewer than 2 values."""
    if len(values) < 2:
        return 0.0
    return float(np.std(np.array(values, dtype=np.float64)))


def _metric(post: Post, metric: MetricName) -> Optional[float]:
    value = getattr(post, metric.value)
    return None if value is None else float(value)


def _truthy_values(posts: Sequence[Post], metric: MetricName) -> List[float]:
    # Zero is treated as "no data" alongside None
    return [v for v in (_metric(p, metric) for p in posts) if v]


def _truncate(text: str, max_length: int = TITLE_MAX_LENGTH) -> str:
    if not text:
        return ''
    return text[:max_length] + '...' if len(text) > max_length else text


# =============================================================================
# Baselines
# =============================================================================


def calculate_baseline(
    posts: Sequence[Post],
    days: int = 30,
    as_of: Optional[datetime] = None,
) -> Optional[Baseline]:
    """
    Trailing-window means for the baseline metrics.

    Posts dated on or after `as_of - days` qualify. Null and zero values
    are ignored per metric; a metric with nothing left is None. Returns None
    when no post falls inside the window at all.
    """
    as_of = as_utc(as_of) if as_of is not None else datetime.now(timezone.utc)
    cutoff = as_of - timedelta(days=days)
    recent = [p for p in posts if as_utc(p.date) >= cutoff]
    if not recent:
        return None

    return Baseline(
        period=days,
        dataPoints=len(recent),
        values={metric.value: mean(_truthy_values(recent, metric)) for metric in BASELINE_METRICS},
    )


def calculate_all_baselines(
    posts: Sequence[Post],
    as_of: Optional[datetime] = None,
) -> Dict[str, Optional[Baseline]]:
    """Baselines keyed '7d', '30d' and '90d'."""
    return {f"{days}d": calculate_baseline(posts, days, as_of) for days in BASELINE_PERIODS}


# =============================================================================
# Trend and Acceleration
# =============================================================================


def calculate_trend(values: Sequence[float]) -> TrendResult:
    """
    Least-squares slope over index positions, as a percentage of the mean.

    Fewer than two values yields slope 0, neutral, strength 'none'. A zero
    mean yields a normalized slope of 0.
    """
    if len(values) < 2:
        return TrendResult(slope=0.0, direction=TrendDirection.NEUTRAL, strength=TrendStrength.NONE)

    y = np.array(values, dtype=np.float64)
    x = np.arange(len(y), dtype=np.float64)
    x_centered = x - x.mean()
    slope = float(np.sum(x_centered * (y - y.mean())) / np.sum(x_centered ** 2))
    avg = float(y.mean())
    normalized = slope / avg * 100 if avg != 0 else 0.0

    if normalized > TREND_DIRECTION_THRESHOLD:
        direction = TrendDirection.UP
    elif normalized < -TREND_DIRECTION_THRESHOLD:
        direction = TrendDirection.DOWN
    else:
        direction = TrendDirection.NEUTRAL

    magnitude = abs(normalized)
    if magnitude > TREND_STRONG_THRESHOLD:
        strength = TrendStrength.STRONG
    elif magnitude > TREND_MODERATE_THRESHOLD:
        strength = TrendStrength.MODERATE
    else:
        strength = TrendStrength.WEAK

    return TrendResult(slope=normalized, direction=direction, strength=strength)


def detect_acceleration(
    posts: Sequence[Post],
    metric: MetricName = MetricName.CTR,
) -> Optional[AccelerationResult]:
    """
    Compare the trend of the last 7 values with that of positions -30..-7.

    Returns None for fewer than 14 posts. Null and zero values are dropped
    before slicing.
    """
    if len(posts) < ACCELERATION_MIN_POSTS:
        return None

    values = _truthy_values(posts, metric)
    recent = calculate_trend(values[-ACCELERATION_RECENT_POINTS:])
    historical = calculate_trend(values[-ACCELERATION_HISTORY_POINTS:-ACCELERATION_RECENT_POINTS])
    acceleration = recent.slope - historical.slope

    if acceleration > ACCELERATION_THRESHOLD:
        status = AccelerationStatus.ACCELERATING
    elif acceleration < -ACCELERATION_THRESHOLD:
        status = AccelerationStatus.DECELERATING
    else:
        status = AccelerationStatus.STEADY

    return AccelerationResult(
        recentSlope=recent.slope,
        historicalSlope=historical.slope,
        acceleration=acceleration,
        status=status,
    )


# =============================================================================
# Anomaly Detection
# =============================================================================


def detect_anomalies(
    posts: Sequence[Post],
    metric: MetricName = MetricName.CTR,
    threshold: float = DEFAULT_ANOMALY_THRESHOLD,
) -> List[AnomalyResult]:
    """
    Flag posts whose metric lies more than `threshold` standard deviations
    from the mean of all non-null values.

    Fewer than 5 posts, or zero spread, flags nothing.
    """
    if len(posts) < ANOMALY_MIN_POSTS:
        return []

    values = [v for v in (_metric(p, metric) for p in posts) if v is not None]
    avg = mean(values)
    std = std_dev(values)
    if avg is None or std == 0:
        return []

    anomalies: List[AnomalyResult] = []
    for post in posts:
        value = _metric(post, metric)
        if value is None:
            continue
        z = (value - avg) / std
        if abs(z) <= threshold:
            continue
        anomalies.append(AnomalyResult(
            post=post,
            value=value,
            zScore=z,
            type=AnomalyType.HIGH if z > 0 else AnomalyType.LOW,
            deviation=round((value - avg) / avg * 100, 1) if avg != 0 else None,
        ))
    return anomalies


# =============================================================================
# Ranking
# =============================================================================


def rank_posts(
    posts: Sequence[Post],
    metric: MetricName = MetricName.CTR,
    order: SortOrder = SortOrder.DESC,
) -> List[RankedPost]:
    """Posts with a value for `metric`, sorted and ranked from 1."""
    valued = [(p, _metric(p, metric)) for p in posts]
    valued = [(p, v) for p, v in valued if v is not None]
    valued.sort(key=lambda item: item[1], reverse=(order == SortOrder.DESC))
    return [RankedPost(rank=i + 1, value=v, post=p) for i, (p, v) in enumerate(valued)]


def performance_extremes(
    posts: Sequence[Post],
    metric: MetricName = MetricName.CTR,
    count: int = 3,
) -> PerformanceExtremes:
    """
    Top `count` posts (best first) and bottom `count` posts (worst first).

    With fewer than 2 x count ranked posts the two lists overlap.
    """
    ranked = rank_posts(posts, metric, SortOrder.DESC)
    return PerformanceExtremes(
        metric=metric,
        top=ranked[:count],
        bottom=list(reversed(ranked[-count:])) if count > 0 else [],
    )


def performance_highlights(posts: Sequence[Post]) -> PerformanceHighlights:
    """Best and worst post by CTR, with the CTR acceleration status."""
    extremes = performance_extremes(posts, MetricName.CTR, 1)
    return PerformanceHighlights(
        best=extremes.top[0] if extremes.top else None,
        worst=extremes.bottom[0] if extremes.bottom else None,
        acceleration=detect_acceleration(posts, MetricName.CTR),
    )


# =============================================================================
# Primary Insight
# =============================================================================


def _deviation_insight(
    latest: Optional[float],
    baseline: Optional[float],
    threshold: float,
    above: str,
    below: str,
) -> Optional[Insight]:
    if latest is None or not baseline or baseline <= 0:
        return None
    diff = (latest - baseline) / baseline * 100
    if abs(diff) <= threshold:
        return None
    template = above if diff > 0 else below
    return Insight(
        type=InsightType.POSITIVE if diff > 0 else InsightType.WARNING,
        text=template.format(pct=f"{abs(diff):.0f}"),
        priority=abs(diff),
    )


def generate_primary_insight(
    posts: Sequence[Post],
    baselines: Optional[Dict[str, Optional[Baseline]]] = None,
    as_of: Optional[datetime] = None,
) -> Insight:
    """
    Pick the single most notable insight for the dashboard header.

    Args:
        posts: Posts sorted oldest to newest
        baselines: Output of calculate_all_baselines; computed when omitted
        as_of: Reference time for baselines computed here
    """
    if not posts:
        return Insight(type=InsightType.NEUTRAL, text='Import data to see insights', priority=0.0)

    if baselines is None:
        baselines = calculate_all_baselines(posts, as_of)
    baseline_30d = baselines.get('30d')
    latest = posts[-1]
    candidates: List[Insight] = []

    if baseline_30d is not None:
        for candidate in (
            _deviation_insight(
                latest.ctr,
                baseline_30d.values.get(MetricName.CTR.value),
                CTR_DEVIATION_THRESHOLD,
                'Latest edition CTR is {pct}% above your 30-day average',
                'Latest edition CTR is {pct}% below your 30-day average',
            ),
            _deviation_insight(
                latest.openRate,
                baseline_30d.values.get(MetricName.OPEN_RATE.value),
                OPEN_RATE_DEVIATION_THRESHOLD,
                'Open rate trending {pct}% higher than usual',
                'Open rate is {pct}% lower than your baseline',
            ),
        ):
            if candidate is not None:
                candidates.append(candidate)

    ctr_values = [p.ctr for p in posts[-7:] if p.ctr is not None]
    if len(ctr_values) >= 2:
        trend = calculate_trend(ctr_values)
        if trend.strength == TrendStrength.STRONG:
            rising = trend.direction == TrendDirection.UP
            candidates.append(Insight(
                type=InsightType.POSITIVE if rising else InsightType.WARNING,
                text=(
                    'CTR is trending strongly upward over the past week'
                    if rising else 'CTR has been declining over the past week'
                ),
                priority=TREND_INSIGHT_PRIORITY,
            ))

    if len(posts) >= BEST_PERFORMER_MIN_POSTS:
        extremes = performance_extremes(posts[-BEST_PERFORMER_WINDOW:], MetricName.CTR, 1)
        if extremes.top:
            best = extremes.top[0]
            candidates.append(Insight(
                type=InsightType.INFO,
                text=f'"{_truncate(best.post.title)}" had the best CTR this month at {best.value:.1f}%',
                priority=BEST_PERFORMER_PRIORITY,
            ))

    if candidates:
        # stable sort keeps generation order among equal priorities
        candidates.sort(key=lambda insight: insight.priority, reverse=True)
        return candidates[0]

    recent_count = baseline_30d.dataPoints if baseline_30d is not None else 0
    return Insight(
        type=InsightType.NEUTRAL,
        text=f"Analyzing {len(posts)} editions with {recent_count} in the last 30 days",
        priority=0.0,
    )
