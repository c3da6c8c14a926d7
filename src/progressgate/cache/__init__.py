"""Local cache layer."""

from typing import Optional

from progressgate.cache.entities import fetch_owner_results, fetch_task_result
from progressgate.cache.keys import CacheEntity, cache_key, ttl_for
from progressgate.cache.store import CacheEntry, CacheStore

_cache: Optional[CacheStore] = None


def get_cache() -> CacheStore:
    """Get or create the process-wide cache store."""
    global _cache

    if _cache is None:
        _cache = CacheStore()
    return _cache


def reset_cache() -> None:
    global _cache
    _cache = None


__all__ = [
    "CacheEntity",
    "CacheEntry",
    "CacheStore",
    "cache_key",
    "fetch_owner_results",
    "fetch_task_result",
    "get_cache",
    "reset_cache",
    "ttl_for",
]
