"""
Upstream Email Platform Client

Async HTTP client for the Beehiiv v2 API, used by both the thin proxy
endpoints and the API sync adapter.

Upstream contract:
- GET /publications/{pub}/posts?limit=&page=     paginated listing (total_pages)
- GET /publications/{pub}/posts/{id}?expand[]=stats   single post with stats
- GET /publications/{pub}?expand[]=stats           publication aggregates
- GET /publications                               publication list

Two-phase post fetch:
1. Bulk listing without per-post statistics, page by page until total_pages.
   A non-2xx on the first page is fatal; on a later page the pages already
   fetched are kept and a warning is recorded.
2. For the N most recently published posts, per-post statistics are fetched
   in batches of `batch_size` concurrent requests. Batch N+1 starts only
   after every request of batch N has settled. A failed detail request never
   cancels its siblings; the post keeps its listing-only form.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from backend.core.config import Settings
from backend.core.exceptions import PARTIAL_FETCH_FAILURE, UpstreamHTTPError

# Configure module logger
logger = logging.getLogger(__name__)

# Status reported when the upstream could not be reached at all
TRANSPORT_FAILURE_STATUS: int = 502


# =============================================================================
# Result Data Classes
# =============================================================================


@dataclass
class PostListing:
    """
    Outcome of a two-phase post fetch.

    Attributes:
        posts: Raw upstream post objects; enriched posts carry a `stats` key
            with `email` and `web` sub-objects.
        enriched_ids: Ids of posts whose per-post statistics were fetched.
        failed_ids: Ids whose detail request failed (kept at listing values).
        warnings: Non-fatal problems encountered while fetching.
    """
    posts: List[Dict[str, Any]] = field(default_factory=list)
    enriched_ids: List[str] = field(default_factory=list)
    failed_ids: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


# =============================================================================
# Client
# =============================================================================


class BeehiivClient:
    """
    Thin async wrapper over the upstream REST API.

    The underlying httpx.AsyncClient is created lazily and shared by every
    request made through one instance. Pass `transport` to substitute a
    fake transport in tests.

    Usage:
        async with BeehiivClient.from_settings(settings) as client:
            listing = await client.fetch_posts(pub_id, recent_stats=60)
    """

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = 'https://api.beehiiv.com/v2',
        timeout: float = 30.0,
        page_size: int = 100,
        batch_size: int = 5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.page_size = page_size
        self.batch_size = max(1, batch_size)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> 'BeehiivClient':
        return cls(
            api_key=settings.beehiiv_api_key,
            base_url=settings.beehiiv_base_url,
            timeout=settings.upstream_timeout_seconds,
            page_size=settings.page_size,
            batch_size=settings.detail_batch_size,
            transport=transport,
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    'Authorization': f'Bearer {self.api_key or ""}',
                    'Content-Type': 'application/json',
                },
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> 'BeehiivClient':
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        """GET a path; transport failures become UpstreamHTTPError(502)."""
        try:
            return await self._get_client().get(path, params=params)
        except httpx.RequestError as e:
            logger.error(f"Upstream request to {path} failed: {e}")
            raise UpstreamHTTPError(TRANSPORT_FAILURE_STATUS, str(e) or type(e).__name__)

    async def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        GET a path and decode its JSON body.

        Raises:
            UpstreamHTTPError: Non-2xx status, transport failure, or a body
                that is not a JSON object
        """
        response = await self._get(path, params=params)
        if not response.is_success:
            raise UpstreamHTTPError(response.status_code, response.text)
        try:
            payload = response.json()
        except ValueError:
            raise UpstreamHTTPError(TRANSPORT_FAILURE_STATUS, 'Upstream returned invalid JSON')
        if not isinstance(payload, dict):
            raise UpstreamHTTPError(TRANSPORT_FAILURE_STATUS, 'Upstream returned an unexpected payload')
        return payload

    async def list_publications(self) -> Dict[str, Any]:
        return await self.get_json('/publications')

    async def fetch_publication(self, pub_id: str) -> Dict[str, Any]:
        """Publication object with aggregate stats (`data.stats`)."""
        return await self.get_json(f'/publications/{pub_id}', params={'expand[]': 'stats'})

    async def list_posts(self, pub_id: str) -> PostListing:
        """
        Phase 1: page through every post without per-post statistics.

        Raises:
            UpstreamHTTPError: The first page failed
        """
        listing = PostListing()
        page = 1
        while True:
            try:
                payload = await self.get_json(
                    f'/publications/{pub_id}/posts',
                    params={'limit': self.page_size, 'page': page},
                )
            except UpstreamHTTPError as e:
                if page == 1:
                    raise
                logger.warning(
                    f"Post listing stopped at page {page} for {pub_id}: HTTP {e.status_code}"
                )
                listing.warnings.append(
                    f'{PARTIAL_FETCH_FAILURE}: post listing stopped at page {page} '
                    f'(HTTP {e.status_code}); showing {len(listing.posts)} posts'
                )
                break

            listing.posts.extend(payload.get('data') or [])
            total_pages = payload.get('total_pages') or 0
            if total_pages and page < total_pages:
                page += 1
            else:
                break

        logger.info(f"Listed {len(listing.posts)} posts for {pub_id} in {page} pages")
        return listing

    async def fetch_post_stats(self, pub_id: str, post_id: str) -> Optional[Dict[str, Any]]:
        """
        Fetch one post's statistics; returns None on any failure.

        The returned dict has `email` and `web` keys (empty dicts when the
        upstream omits them).
        """
        try:
            payload = await self.get_json(
                f'/publications/{pub_id}/posts/{post_id}',
                params={'expand[]': 'stats'},
            )
        except UpstreamHTTPError as e:
            logger.warning(f"Stats fetch failed for post {post_id}: HTTP {e.status_code}")
            return None

        full_post = payload.get('data') or payload
        stats = full_post.get('stats') if isinstance(full_post, dict) else None
        if not isinstance(stats, dict):
            stats = {}
        return {
            'email': stats.get('email') or {},
            'web': stats.get('web') or {},
        }

    async def fetch_recent_stats(
        self,
        pub_id: str,
        posts: List[Dict[str, Any]],
        count: int,
    ) -> Dict[str, Optional[Dict[str, Any]]]:
        """
        Phase 2: per-post statistics for the `count` most recently published posts.

        Posts without a publish_date are never selected. Returns post id ->
        stats, with None for ids whose request failed.
        """
        if count <= 0 or not posts:
            return {}

        dated = [post for post in posts if post.get('publish_date') and post.get('id')]
        dated.sort(key=lambda post: post['publish_date'], reverse=True)
        to_fetch = dated[:count]

        results: Dict[str, Optional[Dict[str, Any]]] = {}
        for start in range(0, len(to_fetch), self.batch_size):
            batch = to_fetch[start:start + self.batch_size]
            fetched = await asyncio.gather(
                *(self.fetch_post_stats(pub_id, post['id']) for post in batch)
            )
            for post, stats in zip(batch, fetched):
                results[post['id']] = stats

        return results

    async def fetch_posts(self, pub_id: str, recent_stats: int = 0) -> PostListing:
        """
        Two-phase fetch: full listing, then stats for the most recent posts.

        Enriched posts are copies of the listing objects with `stats`
        replaced; the listing order is preserved.
        """
        listing = await self.list_posts(pub_id)
        stats_by_id = await self.fetch_recent_stats(pub_id, listing.posts, recent_stats)

        merged: List[Dict[str, Any]] = []
        for post in listing.posts:
            post_id = post.get('id')
            if post_id in stats_by_id:
                stats = stats_by_id[post_id]
                if stats is None:
                    listing.failed_ids.append(post_id)
                else:
                    post = {**post, 'stats': stats}
                    listing.enriched_ids.append(post_id)
            merged.append(post)
        listing.posts = merged

        if listing.failed_ids:
            listing.warnings.append(
                f'{PARTIAL_FETCH_FAILURE}: statistics unavailable for '
                f'{len(listing.failed_ids)} of {len(stats_by_id)} recent posts'
            )
        logger.info(
            f"Fetched stats for {len(listing.enriched_ids)} posts of {pub_id} "
            f"({len(listing.failed_ids)} failed)"
        )
        return listing
