"""
FastAPI router module for the upstream email-platform proxy.

Thin pass-through to the Beehiiv REST API so the dashboard never holds the
API key. Newsletter ids are resolved to publication ids by slug prefix.

Key Endpoints:
- GET /api/beehiiv/posts?newsletter=&recentStats=: Every post, with per-post
  stats merged into the `recentStats` most recent ones -> {data, total}
- GET /api/beehiiv/subscribers?newsletter=: Publication with aggregate stats
- GET /api/beehiiv/publications: Publications visible to the API key

Error Mapping:
- Unknown newsletter -> 400
- Upstream non-2xx -> the same status with the upstream body
- Transport failure -> 502
"""

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from backend.api.errors import http_exception_for
from backend.core.dependencies import BeehiivClientDep, NewsletterRegistryDep
from backend.core.exceptions import IngestionError


# Configure module logger
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/beehiiv", tags=["beehiiv"])


class PostsResponse(BaseModel):
    """Raw upstream post objects (stats merged in where fetched)."""
    data: List[Dict[str, Any]] = Field(default_factory=list)
    total: int = Field(default=0, ge=0)
    warnings: List[str] = Field(default_factory=list)


@router.get("/posts", response_model=PostsResponse)
async def list_posts(
    registry: NewsletterRegistryDep,
    client: BeehiivClientDep,
    newsletter: str = Query(..., description="Newsletter id or slug"),
    recent_stats: int = Query(
        0,
        alias="recentStats",
        ge=0,
        description="Number of most recent posts to enrich with per-post stats",
    ),
) -> PostsResponse:
    """
    Two-phase fetch: paginated listing, then batched per-post stats.

    Raises:
        HTTPException 400: Unknown newsletter
        HTTPException 4xx/5xx: Upstream status of the first listing page
    """
    try:
        pub_id = await registry.resolve(newsletter)
        listing = await client.fetch_posts(pub_id, recent_stats=recent_stats)
    except IngestionError as e:
        logger.error(f"Post proxy failed for {newsletter}: {e.message}")
        raise http_exception_for(e)

    return PostsResponse(data=listing.posts, total=len(listing.posts), warnings=listing.warnings)


@router.get("/subscribers")
async def get_subscribers(
    registry: NewsletterRegistryDep,
    client: BeehiivClientDep,
    newsletter: str = Query(..., description="Newsletter id or slug"),
) -> Dict[str, Any]:
    """Upstream publication object with `stats` expanded."""
    try:
        pub_id = await registry.resolve(newsletter)
        return await client.fetch_publication(pub_id)
    except IngestionError as e:
        logger.error(f"Subscriber proxy failed for {newsletter}: {e.message}")
        raise http_exception_for(e)


@router.get("/publications")
async def list_publications(client: BeehiivClientDep) -> Dict[str, Any]:
    try:
        return await client.list_publications()
    except IngestionError as e:
        logger.error(f"Publication proxy failed: {e.message}")
        raise http_exception_for(e)
