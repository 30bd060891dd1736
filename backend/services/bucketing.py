"""
Period Bucketer

Groups time-stamped records into day / week / month buckets with
calendar-correct boundaries.

Bucket keys sort lexically in time order:
- day:   YYYY-MM-DD, label "Mon D"
- week:  ISO-8601 year-week YYYY-W## (weeks start Monday, week 1 holds
         Jan 4), label = that week's Monday as "Mon D". The week holding
         Jan 1 may belong to the previous ISO year.
- month: YYYY-MM, label = short month name, plus the year when the
         buckets span more than one year

Every post bucket carries the weighted aggregate of its own records, so
chart and sparkline rate values are never means of per-post rates.

Growth buckets sum subscribed, |unsubscribed| and net per period; audience
buckets keep the last reading per period. A weekly view of monthly-sampled
growth data falls back to months (see has_weekly_granularity).
"""

from datetime import date as DateType, datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from backend.models import (
    AudiencePeriod,
    AudienceSnapshot,
    Bucket,
    Granularity,
    GrowthBucket,
    GrowthPeriod,
    MetricName,
    MetricSeries,
    Post,
)
from backend.services.aggregation import aggregate, aggregate_metric
from backend.services.date_filter import as_utc


T = TypeVar('T')

MONTHS: Tuple[str, ...] = (
    'Jan', 'Feb', 'Mar', 'Apr', 'May', 'Jun',
    'Jul', 'Aug', 'Sep', 'Oct', 'Nov', 'Dec',
)

# Records per day of span above which data is treated as finer than monthly
WEEKLY_DENSITY_DAYS: int = 20

SPARKLINE_POINTS: Dict[Granularity, int] = {
    Granularity.DAY: 12,
    Granularity.WEEK: 16,
    Granularity.MONTH: 12,
}


# =============================================================================
# Period Keys
# =============================================================================


def _midnight(day: DateType) -> datetime:
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)


def _day_label(day: DateType) -> str:
    return f"{MONTHS[day.month - 1]} {day.day}"


def iso_week_key(moment: datetime) -> str:
    """
    ISO year-week key for a timestamp's UTC calendar day.

    Example:
        >>> iso_week_key(datetime(2018, 1, 1, 12, tzinfo=timezone.utc))
        '2018-W01'
        >>> iso_week_key(datetime(2021, 1, 1, 12, tzinfo=timezone.utc))
        '2020-W53'
    """
    year, week, _ = as_utc(moment).date().isocalendar()
    return f"{year}-W{week:02d}"


def iso_week_monday(key: str) -> DateType:
    """The Monday that starts the ISO week named by a YYYY-W## key."""
    year, week = key.split('-W')
    jan4 = DateType(int(year), 1, 4)
    return jan4 - timedelta(days=jan4.isoweekday() - 1) + timedelta(weeks=int(week) - 1)


def period_key(moment: datetime, granularity: Granularity) -> Tuple[str, datetime]:
    """(sortable key, period start) for a timestamp."""
    day = as_utc(moment).date()
    if granularity == Granularity.DAY:
        return day.isoformat(), _midnight(day)
    if granularity == Granularity.WEEK:
        key = iso_week_key(moment)
        return key, _midnight(iso_week_monday(key))
    return f"{day.year}-{day.month:02d}", _midnight(day.replace(day=1))


def _labels(starts: Sequence[datetime], granularity: Granularity) -> List[str]:
    if granularity != Granularity.MONTH:
        return [_day_label(start.date()) for start in starts]
    spans_years = len({start.year for start in starts}) > 1
    return [
        f"{MONTHS[start.month - 1]} {start.year}" if spans_years else MONTHS[start.month - 1]
        for start in starts
    ]


def _group(records: Iterable[T], granularity: Granularity) -> List[Tuple[str, datetime, List[T]]]:
    """Group records by period, sorted by key; records inside a period keep date order."""
    groups: Dict[str, Tuple[datetime, List[T]]] = {}
    for record in sorted(records, key=lambda r: as_utc(r.date)):
        key, start = period_key(record.date, granularity)
        if key not in groups:
            groups[key] = (start, [])
        groups[key][1].append(record)
    return [(key, groups[key][0], groups[key][1]) for key in sorted(groups)]


# =============================================================================
# Bucketers
# =============================================================================


def bucket(posts: Iterable[Post], granularity: Granularity) -> List[Bucket]:
    """
    Group posts into buckets sorted ascending by start, each with its
    weighted aggregate.
    """
    groups = _group(posts, granularity)
    labels = _labels([start for _, start, _ in groups], granularity)
    return [
        Bucket(key=key, label=label, start=start, records=records, aggregate=aggregate(records))
        for (key, start, records), label in zip(groups, labels)
    ]


def has_weekly_granularity(records: Sequence) -> bool:
    """
    Whether records are dense enough for a meaningful weekly view.

    Monthly-sampled data yields about one record per 30 days; weekly
    bucketing of it would only relabel the monthly bars. Requires more than
    one record per 20 days of span.
    """
    if len(records) < 2:
        return False
    moments = sorted(as_utc(record.date) for record in records)
    span_days = (moments[-1] - moments[0]).total_seconds() / 86400
    return len(records) > span_days / WEEKLY_DENSITY_DAYS


def bucket_growth(growth: Iterable[GrowthBucket], granularity: Granularity) -> List[GrowthPeriod]:
    """
    Sum subscriber flow per period.

    Unsubscribes are summed as absolute values (some exports sign them
    negative). A weekly request on monthly-sampled rows returns months.
    """
    rows = list(growth)
    if granularity == Granularity.WEEK and not has_weekly_granularity(rows):
        granularity = Granularity.MONTH

    groups = _group(rows, granularity)
    labels = _labels([start for _, start, _ in groups], granularity)
    return [
        GrowthPeriod(
            key=key,
            label=label,
            start=start,
            subscribed=sum(row.subscribed for row in records),
            unsubscribed=sum(abs(row.unsubscribed) for row in records),
            net=sum(row.net for row in records),
        )
        for (key, start, records), label in zip(groups, labels)
    ]


def bucket_audience(audience: Iterable[AudienceSnapshot], granularity: Granularity) -> List[AudiencePeriod]:
    """Last audience reading per period."""
    groups = _group(audience, granularity)
    labels = _labels([start for _, start, _ in groups], granularity)
    return [
        AudiencePeriod(key=key, label=label, start=start, activeSubscribers=records[-1].activeSubscribers)
        for (key, start, records), label in zip(groups, labels)
    ]


# =============================================================================
# Series and Sparklines
# =============================================================================


def series(posts: Iterable[Post], metric: MetricName, granularity: Granularity) -> MetricSeries:
    """Chart series: weighted rate or summed count per bucket."""
    buckets = bucket(posts, granularity)
    return MetricSeries(
        metric=metric,
        granularity=granularity,
        labels=[b.label for b in buckets],
        values=[aggregate_metric(b.aggregate, metric) for b in buckets],
    )


def sparkline(posts: Iterable[Post], metric: MetricName, granularity: Granularity) -> List[Optional[float]]:
    """Trailing bucket values: 16 points for weeks, 12 otherwise."""
    values = series(posts, metric, granularity).values
    return values[-SPARKLINE_POINTS[granularity]:]


def audience_sparkline(audience: Iterable[AudienceSnapshot], granularity: Granularity) -> List[int]:
    """
    Trailing active-subscriber readings.

    Weekly views keep the last reading per week; other views use every
    reading in date order.
    """
    if granularity == Granularity.WEEK:
        values = [period.activeSubscribers for period in bucket_audience(audience, granularity)]
    else:
        values = [snap.activeSubscribers for snap in sorted(audience, key=lambda s: as_utc(s.date))]
    return values[-SPARKLINE_POINTS[granularity]:]
