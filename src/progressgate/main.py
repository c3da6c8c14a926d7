"""ProgressGate main application."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from progressgate import __version__
from progressgate.api import router
from progressgate.api.deps import validate_auth_config
from progressgate.cache import get_cache
from progressgate.config import settings
from progressgate.db.base import close_db, init_db
from progressgate.errors import SubscriptionError
from progressgate.feed import get_change_feed
from progressgate.progress.tracker import get_tracker_registry

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("progressgate")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting ProgressGate server...")
    logger.info(f"Environment: {settings.env.value}")
    logger.info(f"Change feed: {settings.feed_backend.value}")

    # Validate authentication configuration (fail fast if insecure)
    validate_auth_config()

    # Initialize database
    await init_db()
    logger.info("Database initialized")

    # Opportunistic cache eviction on start; never fatal
    try:
        get_cache().evict_stale()
    except Exception as e:
        logger.warning(f"Startup cache eviction failed: {e}", exc_info=True)

    feed = get_change_feed()
    try:
        await feed.start()
    except SubscriptionError as e:
        # Trackers fall back to pull-only refreshes
        logger.error(f"Change feed unavailable: {e.message}")

    yield

    # Cleanup
    logger.info("Shutting down ProgressGate server...")
    await get_tracker_registry().stop_all()
    await feed.stop()
    await close_db()
    logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="ProgressGate",
    description="Live progress tracking for long-running research tasks",
    version=__version__,
    lifespan=lifespan,
)

# Add CORS middleware (explicit allowlist)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=False,
    allow_methods=settings.cors_allowed_methods,
    allow_headers=settings.cors_allowed_headers,
)

# Include API router
app.include_router(router)


def main():
    """Entry point for the application."""
    uvicorn.run(
        "progressgate.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
