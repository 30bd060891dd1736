"""
FastAPI router module for newsletter configuration.

Implements GET/POST/DELETE /api/settings/newsletters over the newsletter
registry. Configured defaults are always listed first and cannot be
overridden or removed; publication ids are returned masked.
"""

import logging

from fastapi import APIRouter, HTTPException, Query

from backend.core.dependencies import NewsletterRegistryDep
from backend.models import NewsletterCreate, NewsletterEntry, NewsletterListResponse
from backend.services.newsletter_registry import NewsletterConfigError


# Configure module logger
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/settings", tags=["settings"])


@router.get("/newsletters", response_model=NewsletterListResponse)
async def list_newsletters(registry: NewsletterRegistryDep) -> NewsletterListResponse:
    return NewsletterListResponse(newsletters=await registry.list_entries())


@router.post("/newsletters", response_model=NewsletterEntry, status_code=201)
async def add_newsletter(
    payload: NewsletterCreate,
    registry: NewsletterRegistryDep,
) -> NewsletterEntry:
    """
    Register a newsletter slug.

    Raises:
        HTTPException 400: The slug belongs to a configured default
    """
    try:
        return await registry.add(payload.slug, payload.pubId)
    except NewsletterConfigError as e:
        logger.warning(f"Rejected newsletter registration: {e}")
        raise HTTPException(status_code=400, detail={'error': str(e)})


@router.delete("/newsletters")
async def remove_newsletter(
    registry: NewsletterRegistryDep,
    slug: str = Query(..., min_length=1, description="Slug to unregister"),
) -> dict:
    """
    Unregister a newsletter slug.

    Raises:
        HTTPException 400: The slug belongs to a configured default
        HTTPException 404: The slug is not registered
    """
    try:
        removed = await registry.remove(slug)
    except NewsletterConfigError as e:
        logger.warning(f"Rejected newsletter removal: {e}")
        raise HTTPException(status_code=400, detail={'error': str(e)})

    if not removed:
        raise HTTPException(status_code=404, detail={'error': f'Newsletter not found: {slug}'})
    return {'deleted': slug}
