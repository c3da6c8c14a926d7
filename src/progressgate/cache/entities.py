"""Cached fetches of remote entities."""

from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from progressgate.cache.keys import CacheEntity, cache_key, ttl_for
from progressgate.cache.store import CacheStore
from progressgate.config import settings
from progressgate.db.base import get_session
from progressgate.db.repositories import ResultRepository
from progressgate.utils.timeouts import bounded


async def fetch_task_result(
    cache: CacheStore,
    task_id: str,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    force_refresh: bool = False,
) -> Optional[dict[str, Any]]:
    """Latest result for a task, served from cache when fresh. None if absent."""

    async def fetch() -> Optional[dict[str, Any]]:
        async with get_session(session_factory) as session:
            return await bounded(
                ResultRepository(session).get_latest(task_id),
                settings.fetch_timeout_seconds,
                f"result fetch for task {task_id}",
            )

    return await cache.get_or_fetch(
        cache_key(CacheEntity.TASK_RESULT, task_id),
        fetch,
        ttl_for(CacheEntity.TASK_RESULT),
        force_refresh=force_refresh,
    )


async def fetch_owner_results(
    cache: CacheStore,
    owner_id: str,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    force_refresh: bool = False,
) -> list[str]:
    """Task ids with a stored result for an owner."""

    async def fetch() -> list[str]:
        async with get_session(session_factory) as session:
            task_ids = await bounded(
                ResultRepository(session).task_ids_for_owner(owner_id),
                settings.fetch_timeout_seconds,
                f"result list for owner {owner_id}",
            )
        return sorted(task_ids)

    return await cache.get_or_fetch(
        cache_key(CacheEntity.OWNER_RESULTS, owner_id),
        fetch,
        ttl_for(CacheEntity.OWNER_RESULTS),
        force_refresh=force_refresh,
    )
