"""API dependencies."""

import logging
import secrets
from typing import AsyncGenerator, Optional

from fastapi import Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from progressgate.cache import CacheStore, get_cache
from progressgate.config import Environment, settings
from progressgate.db.base import get_session
from progressgate.feed import ChangeFeed, get_change_feed
from progressgate.progress.feedback import FeedbackTracker
from progressgate.progress.tracker import TrackerRegistry, get_tracker_registry

logger = logging.getLogger("progressgate.api")

_feedback_tracker: Optional[FeedbackTracker] = None


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session."""
    async with get_session() as session:
        yield session


def get_feedback_tracker() -> FeedbackTracker:
    """Get or create the process-wide feedback tracker."""
    global _feedback_tracker

    if _feedback_tracker is None:
        _feedback_tracker = FeedbackTracker()
    return _feedback_tracker


def reset_feedback_tracker() -> None:
    global _feedback_tracker
    _feedback_tracker = None


def get_registry() -> TrackerRegistry:
    return get_tracker_registry()


def get_feed() -> ChangeFeed:
    return get_change_feed()


def get_cache_store() -> CacheStore:
    return get_cache()


async def get_owner_id(
    x_owner_id: str | None = Header(None, alias="X-Owner-ID"),
) -> Optional[str]:
    """
    Extract the current owner from the request.

    Identity is supplied by the authentication collaborator in front of
    this service; the header is trusted as given.
    """
    return x_owner_id or None


async def require_owner_id(
    x_owner_id: str | None = Header(None, alias="X-Owner-ID"),
) -> str:
    if not x_owner_id:
        raise HTTPException(status_code=401, detail="Missing owner ID")
    return x_owner_id


async def verify_api_key(
    authorization: str | None = Header(None),
    x_api_key: str | None = Header(None, alias="X-API-Key"),
) -> str:
    """
    Verify the shared API key.

    Returns the auth mode on success. Fails closed when no key is
    configured outside explicit insecure dev mode.
    """
    # Insecure dev mode bypass (must be explicitly enabled)
    if settings.allow_insecure_dev and settings.env == Environment.DEVELOPMENT:
        return "insecure_dev"

    api_key = None
    if authorization and authorization.startswith("Bearer "):
        api_key = authorization[7:]
    elif x_api_key:
        api_key = x_api_key

    if not api_key:
        raise HTTPException(
            status_code=401,
            detail="Missing authorization. Use Authorization: Bearer <key> or X-API-Key header",
        )

    if settings.api_key:
        if secrets.compare_digest(api_key, settings.api_key):
            return "api_key"
        raise HTTPException(status_code=401, detail="Invalid API key")

    logger.error("SECURITY VIOLATION: No API key configured. Set PROGRESSGATE_API_KEY.")
    raise HTTPException(
        status_code=503,
        detail="Server misconfigured: authentication not properly initialized",
    )


def validate_auth_config() -> None:
    """
    Validate authentication configuration at startup.

    Raises:
        RuntimeError: If configuration is insecure for the current environment
    """
    if settings.allow_insecure_dev and settings.env != Environment.DEVELOPMENT:
        raise RuntimeError(
            f"SECURITY ERROR: allow_insecure_dev=true is only permitted in development. "
            f"Current environment: {settings.env.value}. "
            f"Set PROGRESSGATE_ALLOW_INSECURE_DEV=false for {settings.env.value}."
        )

    if settings.allow_insecure_dev:
        logger.warning(
            "=" * 80 + "\n"
            "WARNING: Running in INSECURE DEV MODE\n"
            "  - Authentication is DISABLED\n"
            "  - Set PROGRESSGATE_ALLOW_INSECURE_DEV=false for any deployment\n"
            + "=" * 80
        )
    else:
        logger.info(f"Authentication enabled: shared API key for {settings.env.value}")
