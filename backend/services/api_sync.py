"""
API Sync Adapter

Turns upstream API responses into the canonical posts / growth / audience
records, producing the same IngestionResult shape as the file adapters.

Transform rules:
- A post's date is publish_date, else displayed_date, else created (unix
  seconds). Posts with none of them are dropped.
- Posts carrying per-post `stats.email` use those values
  (statsSource=post). All other posts are backfilled from publication
  aggregates: total_sent / post count and so on, rounded, with the
  publication average open and click rates (statsSource=publicationAverage).
  Backfilled values are an approximation, not a measurement.
- Derived rates (delivery, unsubscribe, verified CTR) are None when their
  denominator is 0.
- Growth: one bucket per calendar month, unsubscribes summed, subscribed 0.
- Audience: per-day max of `sent` as a proxy for list size, plus the
  publication's current active_subscriptions stamped at sync time.
"""

import asyncio
import logging
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from backend.core.exceptions import IngestionError
from backend.models import (
    AudienceSnapshot,
    GrowthBucket,
    IngestionResult,
    Post,
    SourceKind,
    StatsSource,
)
from backend.services.beehiiv_client import BeehiivClient
from backend.services.ingestion import failure_result
from backend.services.normalizer import parse_count, parse_text, parse_number

# Configure module logger
logger = logging.getLogger(__name__)

NO_POSTS_WARNING = 'No published posts found'
NO_GROWTH_WARNING = 'No growth data could be derived'
NO_AUDIENCE_WARNING = 'No active subscriber count found'


def _count(value: Any) -> int:
    return max(parse_count(value) or 0, 0)


def _ratio(numerator: int, denominator: int) -> Optional[float]:
    if denominator <= 0:
        return None
    return round(numerator / denominator * 100, 2)


def _upstream_rate(value: Any) -> Optional[float]:
    # Upstream rates are already percentages
    number = parse_number(value)
    return None if number is None else round(number, 2)


def post_timestamp(post: Dict[str, Any]) -> Optional[datetime]:
    """Publish time of an upstream post object, or None if undated."""
    for key in ('publish_date', 'displayed_date', 'created'):
        seconds = parse_number(post.get(key))
        if seconds:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
    return None


def publication_stats(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Extract `stats` from a publication response (`data.stats` or `stats`)."""
    data = payload.get('data') if isinstance(payload.get('data'), dict) else payload
    stats = data.get('stats')
    return stats if isinstance(stats, dict) else {}


# =============================================================================
# Transforms
# =============================================================================


def transform_posts(api_posts: List[Dict[str, Any]], pub_stats: Dict[str, Any]) -> List[Post]:
    """
    Convert upstream post objects into canonical Posts, sorted by date.

    Args:
        api_posts: Listing objects, some with merged `stats`
        pub_stats: Publication aggregate stats (total_sent, total_delivered,
            total_unique_opened, total_clicked, average_open_rate,
            average_click_rate)
    """
    dated = [(post, post_timestamp(post)) for post in api_posts]
    dated = [(post, moment) for post, moment in dated if moment is not None]
    post_count = len(dated) or 1

    avg_sent = round(_count(pub_stats.get('total_sent')) / post_count)
    avg_delivered = round(_count(pub_stats.get('total_delivered')) / post_count)
    avg_opened = round(_count(pub_stats.get('total_unique_opened')) / post_count)
    avg_clicked = round(_count(pub_stats.get('total_clicked')) / post_count)
    avg_open_rate = _upstream_rate(pub_stats.get('average_open_rate'))
    avg_click_rate = _upstream_rate(pub_stats.get('average_click_rate'))

    posts: List[Post] = []
    for post, moment in dated:
        stats = post.get('stats') if isinstance(post.get('stats'), dict) else {}
        email = stats.get('email') if isinstance(stats.get('email'), dict) else None

        # a fetched but empty email block still counts as per-post stats
        if email is not None:
            sent = _count(email.get('recipients'))
            delivered = _count(email.get('delivered'))
            unique_opens = _count(email.get('unique_opens'))
            total_opens = _count(email.get('opens'))
            unique_clicks = _count(email.get('unique_clicks'))
            verified_clicks = _count(
                email.get('unique_verified_clicks') or email.get('verified_clicks')
            )
            unsubscribed = _count(email.get('unsubscribes'))
            open_rate = _upstream_rate(email.get('open_rate'))
            ctr = _upstream_rate(email.get('click_rate'))
            source = StatsSource.POST
        else:
            sent = avg_sent
            delivered = avg_delivered
            unique_opens = avg_opened
            total_opens = avg_opened
            unique_clicks = avg_clicked
            verified_clicks = 0
            unsubscribed = 0
            open_rate = avg_open_rate
            ctr = avg_click_rate
            source = StatsSource.PUBLICATION_AVERAGE

        tags = post.get('content_tags') or []
        if isinstance(tags, str):
            tags = [tags]

        posts.append(Post(
            date=moment,
            title=parse_text(post.get('title')) or parse_text(post.get('subject_line')) or 'Untitled',
            sent=sent,
            delivered=delivered,
            totalOpens=total_opens,
            uniqueOpens=unique_opens,
            openRate=open_rate,
            uniqueClicks=unique_clicks,
            ctr=ctr,
            verifiedClicks=verified_clicks,
            verifiedCtr=_ratio(verified_clicks, unique_opens),
            unsubscribed=unsubscribed,
            unsubscribeRate=_ratio(unsubscribed, sent),
            deliveryRate=_ratio(delivered, sent),
            contentTags=', '.join(str(tag) for tag in tags) or None,
            postId=parse_text(post.get('id')),
            statsSource=source,
        ))

    posts.sort(key=lambda p: p.date)
    return posts


def derive_growth(posts: List[Post]) -> List[GrowthBucket]:
    """One GrowthBucket per calendar month; only unsubscribes are known."""
    months: Dict[str, Dict[str, Any]] = OrderedDict()
    for post in sorted(posts, key=lambda p: p.date):
        key = post.date.strftime('%Y-%m')
        if key not in months:
            months[key] = {
                'date': datetime(post.date.year, post.date.month, 1, tzinfo=timezone.utc),
                'unsubscribed': 0,
            }
        months[key]['unsubscribed'] += post.unsubscribed

    return [
        GrowthBucket(
            date=month['date'],
            subscribed=0,
            unsubscribed=month['unsubscribed'],
            net=0 - month['unsubscribed'],
        )
        for month in months.values()
    ]


def build_audience(
    pub_stats: Dict[str, Any],
    posts: List[Post],
    now: Optional[datetime] = None,
) -> List[AudienceSnapshot]:
    """
    Audience history from per-post recipients plus the current count.

    Always returns at least one snapshot (a zero reading when nothing is
    known).
    """
    now = now or datetime.now(timezone.utc)
    current = _count(pub_stats.get('active_subscriptions') or pub_stats.get('total_subscriptions'))

    daily: Dict[str, Post] = {}
    for post in sorted(posts, key=lambda p: p.date):
        if post.sent <= 0:
            continue
        key = post.date.date().isoformat()
        if key not in daily or post.sent > daily[key].sent:
            daily[key] = post

    audience = [
        AudienceSnapshot(date=post.date, activeSubscribers=post.sent)
        for post in sorted(daily.values(), key=lambda p: p.date)
    ]
    if current > 0:
        audience.append(AudienceSnapshot(date=now, activeSubscribers=current))
    if not audience:
        audience.append(AudienceSnapshot(date=now, activeSubscribers=0))
    return audience


# =============================================================================
# Sync
# =============================================================================


async def sync_publication(
    client: BeehiivClient,
    pub_id: str,
    recent_stats: int,
    now: Optional[datetime] = None,
) -> IngestionResult:
    """
    Run the two-phase post fetch and the publication stats fetch
    concurrently, then transform.

    Raises:
        UpstreamHTTPError: The first listing page or the publication stats
            request failed
    """
    listing, publication = await asyncio.gather(
        client.fetch_posts(pub_id, recent_stats=recent_stats),
        client.fetch_publication(pub_id),
        return_exceptions=True,
    )
    for outcome in (listing, publication):
        if isinstance(outcome, BaseException):
            raise outcome

    stats = publication_stats(publication)
    warnings = list(listing.warnings)

    posts = transform_posts(listing.posts, stats)
    if not posts:
        warnings.append(NO_POSTS_WARNING)

    growth = derive_growth(posts)
    if not growth:
        warnings.append(NO_GROWTH_WARNING)

    audience = build_audience(stats, posts, now=now)
    if not _count(stats.get('active_subscriptions') or stats.get('total_subscriptions')):
        warnings.append(NO_AUDIENCE_WARNING)

    logger.info(
        f"Synced {pub_id}: {len(posts)} posts, {len(listing.enriched_ids)} with "
        f"per-post stats, {len(growth)} growth months, {len(audience)} audience readings"
    )

    return IngestionResult(
        kind=SourceKind.API_SYNC,
        success=True,
        posts=posts,
        growth=growth,
        audience=audience,
        warnings=warnings,
        lastUpdated=now or datetime.now(timezone.utc),
    )


async def ingest_api(
    client: BeehiivClient,
    pub_id: str,
    recent_stats: int,
    now: Optional[datetime] = None,
) -> IngestionResult:
    """API sync with terminal failures reported as success=False results."""
    try:
        return await sync_publication(client, pub_id, recent_stats, now=now)
    except IngestionError as e:
        logger.error(f"API sync failed for {pub_id}: {e.code}: {e.message}")
        return failure_result(SourceKind.API_SYNC, e)
