"""
Backend API package initialization.

This package contains FastAPI router modules for Newsletter Pulse:
- analytics: Import, sync and the analytics views per newsletter
- beehiiv: Thin proxy to the upstream email-platform API
- settings: Newsletter registry management
"""

from fastapi import APIRouter

# Import router modules
from backend.api.analytics import router as analytics_router
from backend.api.beehiiv import router as beehiiv_router
from backend.api.settings import router as settings_router

# Create main API router; each sub-router carries its own prefix
api_router = APIRouter()
api_router.include_router(analytics_router)
api_router.include_router(beehiiv_router)
api_router.include_router(settings_router)

# Export all routers for selective imports
__all__ = [
    "api_router",
    "analytics_router",
    "beehiiv_router",
    "settings_router",
]
