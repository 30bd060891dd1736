"""
Pytest test module for the upstream client and the API sync adapter.

Every test drives a BeehiivClient over the FakeUpstream transport from
conftest, so no request leaves the process.

Test Categories:
- TestTwoPhaseFetch: Recent-post selection, batching, per-post failures
- TestPagination: Multi-page listings and page failures
- TestTransforms: Per-post vs publication-average stats, growth, audience
- TestSyncResults: IngestionResult shape, warnings, failure statuses
"""

from datetime import datetime, timezone

import pytest

from backend.core.exceptions import PARTIAL_FETCH_FAILURE, UpstreamHTTPError
from backend.models import SourceKind, StatsSource
from backend.services.api_sync import (
    NO_AUDIENCE_WARNING,
    NO_POSTS_WARNING,
    build_audience,
    derive_growth,
    ingest_api,
    sync_publication,
    transform_posts,
)
from backend.services.beehiiv_client import BeehiivClient
from backend.tests.conftest import (
    DEFAULT_PUBLICATION_STATS,
    FakeUpstream,
    make_api_posts,
    make_email_stats,
)

PUB_ID = 'pub_roko_000111'
NOW = datetime(2024, 6, 1, 12, tzinfo=timezone.utc)


def make_client(upstream: FakeUpstream, page_size: int = 100, batch_size: int = 5) -> BeehiivClient:
    return BeehiivClient(
        'test-key',
        'https://api.test/v2',
        page_size=page_size,
        batch_size=batch_size,
        transport=upstream,
    )


@pytest.mark.asyncio
class TestTwoPhaseFetch:
    """Tests for listing plus per-post stats enrichment."""

    async def test_recent_posts_get_detail_stats(self, fake_upstream):
        async with make_client(fake_upstream) as client:
            listing = await client.fetch_posts(PUB_ID, recent_stats=3)

        assert len(listing.posts) == 10
        assert sorted(listing.enriched_ids) == ['post_7', 'post_8', 'post_9']
        assert listing.failed_ids == []
        assert listing.warnings == []
        assert len(fake_upstream.detail_requests()) == 3

    async def test_zero_recent_stats_skips_detail_phase(self, fake_upstream):
        async with make_client(fake_upstream) as client:
            listing = await client.fetch_posts(PUB_ID)

        assert listing.enriched_ids == []
        assert fake_upstream.detail_requests() == []

    async def test_failed_detail_keeps_listing_form(self):
        upstream = FakeUpstream(make_api_posts(10), failing_post_ids={'post_9'})
        async with make_client(upstream) as client:
            listing = await client.fetch_posts(PUB_ID, recent_stats=3)

        assert sorted(listing.enriched_ids) == ['post_7', 'post_8']
        assert listing.failed_ids == ['post_9']
        assert len(listing.posts) == 10
        assert 'stats' not in listing.posts[9]
        assert listing.warnings[0].startswith(PARTIAL_FETCH_FAILURE)

    async def test_batches_bound_concurrency(self):
        upstream = FakeUpstream(make_api_posts(12))
        async with make_client(upstream, batch_size=5) as client:
            await client.fetch_posts(PUB_ID, recent_stats=12)

        assert len(upstream.detail_requests()) == 12
        assert 1 <= upstream.max_in_flight <= 5
        assert upstream.in_flight == 0

    async def test_undated_posts_are_not_selected(self):
        posts = make_api_posts(3)
        posts.append({'id': 'draft', 'title': 'Draft'})
        upstream = FakeUpstream(posts)
        async with make_client(upstream) as client:
            listing = await client.fetch_posts(PUB_ID, recent_stats=10)

        assert 'draft' not in listing.enriched_ids
        assert len(listing.enriched_ids) == 3

    async def test_sends_bearer_token(self, fake_upstream):
        async with make_client(fake_upstream) as client:
            await client.list_publications()

        assert fake_upstream.requests[0].headers['Authorization'] == 'Bearer test-key'


@pytest.mark.asyncio
class TestPagination:
    """Tests for paginated listings."""

    async def test_follows_total_pages(self):
        upstream = FakeUpstream(make_api_posts(10))
        async with make_client(upstream, page_size=4) as client:
            listing = await client.list_posts(PUB_ID)

        assert [p['id'] for p in listing.posts] == [f'post_{i}' for i in range(10)]
        assert len(upstream.requests) == 3

    async def test_later_page_failure_keeps_fetched_pages(self):
        upstream = FakeUpstream(make_api_posts(10), failing_pages={2})
        async with make_client(upstream, page_size=4) as client:
            listing = await client.list_posts(PUB_ID)

        assert len(listing.posts) == 4
        assert len(listing.warnings) == 1
        assert PARTIAL_FETCH_FAILURE in listing.warnings[0]

    async def test_first_page_failure_raises(self):
        upstream = FakeUpstream(make_api_posts(10), failing_pages={1}, failure_status=401)
        async with make_client(upstream) as client:
            with pytest.raises(UpstreamHTTPError) as exc_info:
                await client.list_posts(PUB_ID)

        assert exc_info.value.status_code == 401


class TestTransforms:
    """Tests for the pure transform helpers."""

    @pytest.fixture
    def api_posts(self):
        posts = make_api_posts(10)
        posts[9] = {**posts[9], 'stats': {'email': make_email_stats(9), 'web': {}}}
        return posts

    def test_per_post_and_averaged_stats(self, api_posts):
        posts = transform_posts(api_posts, DEFAULT_PUBLICATION_STATS)
        latest, earliest = posts[-1], posts[0]

        assert latest.statsSource == StatsSource.POST
        assert latest.sent == 1009
        assert latest.openRate == 50.5
        assert latest.verifiedCtr == 8.0
        assert latest.deliveryRate == round(999 / 1009 * 100, 2)

        assert earliest.statsSource == StatsSource.PUBLICATION_AVERAGE
        assert earliest.sent == 1000
        assert earliest.delivered == 980
        assert earliest.uniqueOpens == 400
        assert earliest.ctr == 4.1
        assert earliest.contentTags == 'weekly'

    def test_empty_email_block_is_per_post(self):
        api_posts = make_api_posts(2)
        api_posts[1] = {**api_posts[1], 'stats': {'email': {}}}
        empty, averaged = transform_posts(api_posts, DEFAULT_PUBLICATION_STATS)[::-1]

        assert empty.statsSource == StatsSource.POST
        assert empty.sent == 0
        assert empty.openRate is None
        assert averaged.statsSource == StatsSource.PUBLICATION_AVERAGE
        assert averaged.sent > 0

    def test_undated_posts_are_dropped(self):
        posts = transform_posts([{'id': 'x', 'title': 'No date'}], {})
        assert posts == []

    def test_zero_denominators_give_none(self):
        [post] = transform_posts(make_api_posts(1), {})

        assert post.sent == 0
        assert post.deliveryRate is None
        assert post.unsubscribeRate is None
        assert post.openRate is None

    def test_growth_sums_unsubscribes_per_month(self):
        api_posts = make_api_posts(10)
        for i in (7, 8, 9):
            api_posts[i] = {**api_posts[i], 'stats': {'email': make_email_stats(i)}}
        growth = derive_growth(transform_posts(api_posts, DEFAULT_PUBLICATION_STATS))

        assert [g.date.month for g in growth] == [1, 2, 3]
        assert [g.unsubscribed for g in growth] == [0, 4, 2]
        assert growth[1].net == -4
        assert all(g.subscribed == 0 for g in growth)

    def test_audience_history_plus_current(self, api_posts):
        posts = transform_posts(api_posts, DEFAULT_PUBLICATION_STATS)
        audience = build_audience(DEFAULT_PUBLICATION_STATS, posts, now=NOW)

        assert len(audience) == 11
        assert audience[-1].date == NOW
        assert audience[-1].activeSubscribers == 5000

    def test_audience_never_empty(self):
        audience = build_audience({}, [], now=NOW)
        assert [a.activeSubscribers for a in audience] == [0]


@pytest.mark.asyncio
class TestSyncResults:
    """Tests for sync_publication and ingest_api."""

    async def test_ten_posts_three_recent(self, fake_upstream):
        async with make_client(fake_upstream) as client:
            result = await sync_publication(client, PUB_ID, recent_stats=3, now=NOW)

        sources = [p.statsSource for p in result.posts]
        assert result.success is True
        assert result.kind == SourceKind.API_SYNC
        assert sources.count(StatsSource.POST) == 3
        assert sources.count(StatsSource.PUBLICATION_AVERAGE) == 7
        assert result.lastUpdated == NOW
        assert result.warnings == []

    async def test_one_failed_detail_is_not_fatal(self):
        upstream = FakeUpstream(make_api_posts(10), failing_post_ids={'post_8'})
        async with make_client(upstream) as client:
            result = await ingest_api(client, PUB_ID, recent_stats=3, now=NOW)

        sources = [p.statsSource for p in result.posts]
        assert result.success is True
        assert sources.count(StatsSource.POST) == 2
        assert sources.count(StatsSource.PUBLICATION_AVERAGE) == 8
        assert any(PARTIAL_FETCH_FAILURE in w for w in result.warnings)

    async def test_empty_publication_warns(self):
        upstream = FakeUpstream([], publication_stats={})
        async with make_client(upstream) as client:
            result = await sync_publication(client, PUB_ID, recent_stats=3, now=NOW)

        assert result.posts == []
        assert NO_POSTS_WARNING in result.warnings
        assert NO_AUDIENCE_WARNING in result.warnings

    async def test_unreachable_upstream_reports_502(self):
        upstream = FakeUpstream(make_api_posts(3), unreachable=True)
        async with make_client(upstream) as client:
            result = await ingest_api(client, PUB_ID, recent_stats=3)

        assert result.success is False
        assert result.posts == []
        assert result.errors[0].code == 'UpstreamHTTPError'
        assert result.errors[0].statusCode == 502

    async def test_publication_stats_failure_is_fatal(self):
        upstream = FakeUpstream(make_api_posts(3), publication_status=503)
        async with make_client(upstream) as client:
            result = await ingest_api(client, PUB_ID, recent_stats=0)

        assert result.success is False
        assert result.errors[0].statusCode == 503
