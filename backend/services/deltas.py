"""
Delta Calculator

"vs previous period" indicators for the KPI cards.

The comparison is an in-sample split: the chronologically sorted window is
cut at floor(n / 2), each half is aggregated with the weighted Aggregator,
and the second half is compared with the first. It is not a comparison
with the window preceding the current one.

- Rate metrics: (second - first) / first x 100; value None when the first
  half has no rate (or a zero rate)
- Count metrics: raw difference, isAbsolute=True
- Direction follows the sign of (second - first), missing values counting
  as 0; an exact zero difference is neutral

Active subscribers are compared as earliest vs latest audience reading,
since audience snapshots are not split into halves.
"""

from typing import Optional, Sequence

from backend.models import (
    AudienceSnapshot,
    DeltaDirection,
    DeltaResult,
    DeltaSet,
    MetricName,
    Post,
)
from backend.services.aggregation import aggregate, aggregate_metric
from backend.services.date_filter import as_utc


def _direction(diff: float) -> DeltaDirection:
    if diff > 0:
        return DeltaDirection.POSITIVE
    if diff < 0:
        return DeltaDirection.NEGATIVE
    return DeltaDirection.NEUTRAL


def compare(first: Optional[float], second: Optional[float], is_absolute: bool = False) -> DeltaResult:
    """Delta of two values; percentage of `first` unless is_absolute."""
    diff = (second or 0) - (first or 0)
    if is_absolute:
        value: Optional[float] = diff
    else:
        value = diff / first * 100 if first else None
    return DeltaResult(value=value, direction=_direction(diff), isAbsolute=is_absolute)


def delta(posts: Sequence[Post], metric: MetricName) -> DeltaResult:
    """
    Second half vs first half of the sorted posts for one metric.

    Example:
        >>> delta(posts, MetricName.CTR).direction
        <DeltaDirection.POSITIVE: 'positive'>
    """
    ordered = sorted(posts, key=lambda p: as_utc(p.date))
    midpoint = len(ordered) // 2
    first = aggregate_metric(aggregate(ordered[:midpoint]), metric)
    second = aggregate_metric(aggregate(ordered[midpoint:]), metric)
    return compare(first, second, is_absolute=not metric.is_rate)


def latest_subscribers(audience: Optional[Sequence[AudienceSnapshot]]) -> Optional[int]:
    """Active subscribers of the max-dated snapshot, or None without data."""
    if not audience:
        return None
    return max(audience, key=lambda snap: as_utc(snap.date)).activeSubscribers


def subscriber_delta(audience: Optional[Sequence[AudienceSnapshot]]) -> DeltaResult:
    """Latest vs earliest audience reading, as a percentage of the earliest."""
    if not audience:
        return DeltaResult()
    ordered = sorted(audience, key=lambda snap: as_utc(snap.date))
    return compare(ordered[0].activeSubscribers, ordered[-1].activeSubscribers)


def delta_set(
    posts: Sequence[Post],
    audience: Optional[Sequence[AudienceSnapshot]] = None,
) -> DeltaSet:
    """All KPI card deltas for one window."""
    return DeltaSet(
        openRate=delta(posts, MetricName.OPEN_RATE),
        ctr=delta(posts, MetricName.CTR),
        verifiedCtr=delta(posts, MetricName.VERIFIED_CTR),
        deliveryRate=delta(posts, MetricName.DELIVERY_RATE),
        uniqueClicks=delta(posts, MetricName.UNIQUE_CLICKS),
        verifiedClicks=delta(posts, MetricName.VERIFIED_CLICKS),
        activeSubscribers=subscriber_delta(audience),
    )
