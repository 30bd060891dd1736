"""
FastAPI application entry point for the Newsletter Pulse API.

This module configures logging, CORS and the database lifespan, registers
the API routers, and starts the ASGI server when run directly.

Routers:
- /analytics/{newsletter}/...: ingestion and analytics views
- /api/beehiiv/...: upstream proxy
- /api/settings/...: newsletter registry
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend import __version__
from backend.api import api_router
from backend.core.config import get_settings
from backend.core.database import init_db, close_db

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Lifespan context manager for FastAPI application startup and shutdown events.

    On startup:
        - Initialize the database connection pool (skipped without DATABASE_URL)

    On shutdown:
        - Close the database connection pool
    """
    # Startup
    logger.info("Newsletter Pulse API starting")
    try:
        pool = await init_db()
        if pool is not None:
            logger.info("Database connection pool initialized")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        # Continue startup; the store dependency retries on first use

    yield

    # Shutdown
    logger.info("Newsletter Pulse API shutting down")
    try:
        await close_db()
    except Exception as e:
        logger.error(f"Error closing database pool: {e}")


# Create FastAPI application
app = FastAPI(
    title="Newsletter Pulse API",
    version=__version__,
    description=(
        "Newsletter analytics backend. Ingests CSV/XLSX exports or syncs "
        "from the Beehiiv API, and serves weighted aggregates, period "
        "buckets, deltas and statistical insights."
    ),
    lifespan=lifespan,
)

# Configure CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Register API routers; each carries its own prefix
app.include_router(api_router)


@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring and load balancer probes.

    Returns:
        Dict with status 'healthy'
    """
    return {"status": "healthy"}


@app.get("/")
async def root():
    return {
        "name": "Newsletter Pulse API",
        "version": __version__,
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


# Run with uvicorn when executed directly
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "backend.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
