"""
Pytest Configuration and Shared Fixtures for Newsletter Pulse Backend Tests.

This module provides fixtures and helpers for all backend tests:
- Async test execution with pytest-asyncio
- Post factories and the canonical two-month aggregation scenario
- Settings isolated from the developer's environment and .env file
- FakeUpstream: an httpx transport that serves a fake Beehiiv API, so
  client, sync and proxy tests never touch the network
- An in-memory snapshot store

Helpers that tests call directly (make_post, make_api_posts, FakeUpstream)
are importable from backend.tests.conftest.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

import httpx
import pytest

from backend.core.config import Settings
from backend.models import AudienceSnapshot, GrowthBucket, Post
from backend.services.snapshot_store import MemorySnapshotStore


# ============================================================
# PYTEST HOOKS
# ============================================================

def pytest_configure(config) -> None:
    """
    Register custom markers.

    - integration: tests that exercise the full FastAPI stack
    """
    config.addinivalue_line(
        'markers',
        'integration: marks tests that drive the FastAPI app end to end'
    )


# ============================================================
# RECORD FACTORIES
# ============================================================

def at_noon(day: str) -> datetime:
    """'2024-01-15' -> 2024-01-15T12:00:00+00:00."""
    return datetime.fromisoformat(day).replace(hour=12, tzinfo=timezone.utc)


def make_post(day: str, **fields: Any) -> Post:
    """
    Build a Post dated at mid-day UTC on `day`.

    Example:
        make_post('2024-01-10', delivered=1000, uniqueOpens=500)
    """
    fields.setdefault('title', f'Edition {day}')
    return Post(date=at_noon(day), **fields)


def make_series(
    values: Iterable[float],
    metric: str = 'ctr',
    start: str = '2024-01-01',
    step_days: int = 1,
    **fields: Any,
) -> List[Post]:
    """One post per value, `step_days` apart, with `metric` set to the value."""
    first = at_noon(start)
    posts = []
    for i, value in enumerate(values):
        posts.append(Post(
            date=first + timedelta(days=i * step_days),
            title=f'Edition {i + 1}',
            **{metric: value},
            **fields,
        ))
    return posts


# ============================================================
# SAMPLE DATA FIXTURES
# ============================================================

@pytest.fixture
def scenario_posts() -> List[Post]:
    """
    Four posts across January and February 2024.

    delivered = [1000, 2000, 500, 1500], uniqueOpens = [500, 1000, 100, 600]
    Overall weighted open rate is 44.0; January is 50.0, February 35.0.
    """
    return [
        make_post('2024-01-10', sent=1000, delivered=1000, uniqueOpens=500, uniqueClicks=50),
        make_post('2024-01-20', sent=2000, delivered=2000, uniqueOpens=1000, uniqueClicks=150),
        make_post('2024-02-10', sent=520, delivered=500, uniqueOpens=100, uniqueClicks=20),
        make_post('2024-02-20', sent=1500, delivered=1500, uniqueOpens=600, uniqueClicks=90),
    ]


@pytest.fixture
def growth_rows() -> List[GrowthBucket]:
    """Monthly-sampled subscriber flow; unsubscribes signed negative as some exports do."""
    return [
        GrowthBucket(date=at_noon('2024-01-01'), subscribed=120, unsubscribed=-20, net=100),
        GrowthBucket(date=at_noon('2024-02-01'), subscribed=90, unsubscribed=-30, net=60),
        GrowthBucket(date=at_noon('2024-03-01'), subscribed=150, unsubscribed=-10, net=140),
    ]


@pytest.fixture
def audience_rows() -> List[AudienceSnapshot]:
    return [
        AudienceSnapshot(date=at_noon('2024-01-05'), activeSubscribers=1000),
        AudienceSnapshot(date=at_noon('2024-01-25'), activeSubscribers=1100),
        AudienceSnapshot(date=at_noon('2024-02-15'), activeSubscribers=1250),
    ]


@pytest.fixture
def bulk_csv() -> str:
    """A bulk-text export with label-style headers and mixed rate formats."""
    return (
        'Date,Subject or Title,Sent,Delivered,Unique Opens,Open Rate,'
        'Unique Clicks,Click-Through Rate,Verified Unique Clicks,Unsubscribed\n'
        '2024-01-10,First edition,"1,000",980,490,0.5,49,10%,40,2\n'
        '2024-01-17,Second edition,1200,1190,600,50.4%,72,12,60,3\n'
        '2024-01-24,Third edition,1100,1100,0,#DIV/0!,0,,0,1\n'
    )


# ============================================================
# SETTINGS AND STORE FIXTURES
# ============================================================

@pytest.fixture
def test_settings() -> Settings:
    """Settings with fixed publication ids, ignoring any .env file."""
    return Settings(
        _env_file=None,
        database_url=None,
        beehiiv_api_key='test-key',
        beehiiv_base_url='https://api.test/v2',
        beehiiv_pub_roko='pub_roko_000111',
        beehiiv_pub_memorandum='pub_memo_222333',
        beehiiv_pub_opensource=None,
        recent_stats_count=3,
        detail_batch_size=5,
        page_size=100,
    )


@pytest.fixture
def memory_store() -> MemorySnapshotStore:
    return MemorySnapshotStore()


# ============================================================
# FAKE UPSTREAM API
# ============================================================

EPOCH_2024 = int(datetime(2024, 1, 1, 12, tzinfo=timezone.utc).timestamp())


def make_api_posts(count: int, step_days: int = 7) -> List[Dict[str, Any]]:
    """Listing objects (no stats) published `step_days` apart, oldest first."""
    return [
        {
            'id': f'post_{i}',
            'title': f'Issue {i}',
            'publish_date': EPOCH_2024 + i * step_days * 86400,
            'content_tags': ['weekly'],
        }
        for i in range(count)
    ]


def make_email_stats(index: int) -> Dict[str, Any]:
    """Per-post `stats.email` block with counts that vary by index."""
    return {
        'recipients': 1000 + index,
        'delivered': 990 + index,
        'opens': 700,
        'unique_opens': 500,
        'open_rate': 50.5,
        'unique_clicks': 50 + index,
        'click_rate': 10.1,
        'unique_verified_clicks': 40,
        'unsubscribes': 2,
    }


DEFAULT_PUBLICATION_STATS: Dict[str, Any] = {
    'active_subscriptions': 5000,
    'total_sent': 10000,
    'total_delivered': 9800,
    'total_unique_opened': 4000,
    'total_clicked': 400,
    'average_open_rate': 40.8,
    'average_click_rate': 4.1,
}


class FakeUpstream(httpx.AsyncBaseTransport):
    """
    Routes requests to a fake Beehiiv API and records them.

    Paths (relative to /v2):
        /publications                         -> publication list
        /publications/{pub}                   -> publication with stats
        /publications/{pub}/posts?page&limit  -> paginated listing
        /publications/{pub}/posts/{id}        -> single post with stats

    Usage:
        upstream = FakeUpstream(make_api_posts(10), failing_post_ids={'post_9'})
        client = BeehiivClient('key', 'https://api.test/v2', transport=upstream)
    """

    def __init__(
        self,
        posts: Optional[List[Dict[str, Any]]] = None,
        publication_stats: Optional[Dict[str, Any]] = None,
        failing_post_ids: Iterable[str] = (),
        failing_pages: Iterable[int] = (),
        failure_status: int = 500,
        publication_status: int = 200,
        unreachable: bool = False,
    ) -> None:
        self.posts = posts or []
        self.publication_stats = (
            DEFAULT_PUBLICATION_STATS if publication_stats is None else publication_stats
        )
        self.failing_post_ids = set(failing_post_ids)
        self.failing_pages = set(failing_pages)
        self.failure_status = failure_status
        self.publication_status = publication_status
        self.unreachable = unreachable
        self.requests: List[httpx.Request] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def detail_requests(self) -> List[httpx.Request]:
        return [r for r in self.requests if '/posts/' in r.url.path]

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.unreachable:
            raise httpx.ConnectError('connection refused', request=request)

        parts = request.url.path.strip('/').split('/')
        rest = parts[parts.index('publications') + 1:]

        if not rest:
            return httpx.Response(200, json={'data': [{'id': 'pub_roko_000111', 'name': 'Roko'}]})

        if len(rest) == 1:
            if self.publication_status != 200:
                return httpx.Response(self.publication_status, text='publication unavailable')
            return httpx.Response(200, json={'data': {'id': rest[0], 'stats': self.publication_stats}})

        if len(rest) == 2:
            page = int(request.url.params.get('page', '1'))
            limit = int(request.url.params.get('limit', '100'))
            if page in self.failing_pages:
                return httpx.Response(self.failure_status, text=f'page {page} failed')
            total_pages = max(1, -(-len(self.posts) // limit))
            chunk = self.posts[(page - 1) * limit:page * limit]
            return httpx.Response(200, json={'data': chunk, 'page': page, 'total_pages': total_pages})

        post_id = rest[2]
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            # yield so sibling requests of the same batch overlap
            await asyncio.sleep(0)
            if post_id in self.failing_post_ids:
                return httpx.Response(self.failure_status, text='stats unavailable')
            index = int(post_id.split('_')[-1])
            return httpx.Response(200, json={'data': {'id': post_id, 'stats': {
                'email': make_email_stats(index),
                'web': {'views': 10},
            }}})
        finally:
            self.in_flight -= 1


@pytest.fixture
def fake_upstream() -> FakeUpstream:
    """Ten weekly posts and default publication stats."""
    return FakeUpstream(make_api_posts(10))
