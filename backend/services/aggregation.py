"""
Aggregator

Reduces a collection of canonical Posts to an AggregateResult: summed counts,
weighted rates and per-post averages.

Weighted rates are ratios of summed counts, never arithmetic means of the
per-post rates:

    openRate     = sum(uniqueOpens)    / sum(delivered)   x 100
    ctr          = sum(uniqueClicks)   / sum(uniqueOpens) x 100
    verifiedCtr  = sum(verifiedClicks) / sum(uniqueOpens) x 100
    deliveryRate = sum(delivered)      / sum(sent)        x 100

A rate is None when its denominator is 0. The same function serves the
full dataset, a filtered window and a single bucket; nothing special-cases
the input size.
"""

from typing import Iterable, Optional

from backend.models import AggregateResult, DateWindow, MetricName, Post
from backend.services.date_filter import filter_by_date


SUMMED_FIELDS = (
    'sent', 'delivered', 'totalOpens', 'uniqueOpens',
    'uniqueClicks', 'verifiedClicks', 'unsubscribed',
)


def safe_ratio(numerator: float, denominator: float, scale: float = 100.0) -> Optional[float]:
    """numerator / denominator x scale, or None when the denominator is 0."""
    if not denominator:
        return None
    return numerator / denominator * scale


def aggregate(posts: Iterable[Post], window: Optional[DateWindow] = None) -> AggregateResult:
    """
    Aggregate posts, optionally restricted to an inclusive date window.

    Example:
        >>> result = aggregate(posts)
        >>> result.openRate  # weighted by delivered
        44.0
    """
    if window is not None:
        posts = filter_by_date(posts, window.start, window.end)

    totals = dict.fromkeys(SUMMED_FIELDS, 0)
    count = 0
    for post in posts:
        count += 1
        for name in SUMMED_FIELDS:
            totals[name] += getattr(post, name)

    return AggregateResult(
        **totals,
        count=count,
        openRate=safe_ratio(totals['uniqueOpens'], totals['delivered']),
        ctr=safe_ratio(totals['uniqueClicks'], totals['uniqueOpens']),
        verifiedCtr=safe_ratio(totals['verifiedClicks'], totals['uniqueOpens']),
        deliveryRate=safe_ratio(totals['delivered'], totals['sent']),
        avgUniqueClicks=safe_ratio(totals['uniqueClicks'], count, scale=1.0),
        avgVerifiedClicks=safe_ratio(totals['verifiedClicks'], count, scale=1.0),
    )


def aggregate_metric(result: AggregateResult, metric: MetricName) -> Optional[float]:
    """
    The value of `metric` on an aggregate.

    Weighted rates come straight from the aggregate; counts are the sums.
    unsubscribeRate, which the aggregate does not carry, is weighted by sent.
    """
    if metric == MetricName.UNSUBSCRIBE_RATE:
        return safe_ratio(result.unsubscribed, result.sent)
    value = getattr(result, metric.value)
    return None if value is None else float(value)

