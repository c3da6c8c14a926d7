"""TTL-bounded local cache store."""

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar, Union

from progressgate.config import settings
from progressgate.observability.metrics import metrics
from progressgate.utils.time import utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")

TTL = Union[int, float, timedelta]


def _as_timedelta(ttl: TTL) -> timedelta:
    return ttl if isinstance(ttl, timedelta) else timedelta(seconds=ttl)


def _owned_by(value: Any, owner_id: str) -> bool:
    return isinstance(value, Mapping) and value.get("owner_id") == owner_id


@dataclass(frozen=True)
class CacheEntry:
    """A cached value with its storage time and lifetime."""

    key: str
    value: Any
    stored_at: datetime
    ttl: timedelta

    def age(self, now: datetime) -> timedelta:
        return now - self.stored_at

    def is_valid(self, now: datetime) -> bool:
        return self.age(now) < self.ttl


class CacheStore:
    """
    Process-wide key/value cache with per-entry TTL.

    ``get`` never fetches; callers decide when to refetch. Writes are
    last-write-wins per key. Everything runs on one event loop, so no
    locking is needed between ``get``, ``set`` and ``invalidate``.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._refreshing: dict[str, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get_entry(key) is not None

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None or not entry.is_valid(self._clock()):
            return None
        return entry

    def get(self, key: str, default: Any = None) -> Any:
        """Cached value for ``key``, or ``default`` if missing or expired."""
        entry = self.get_entry(key)
        if entry is None:
            metrics.inc_counter("cache.misses")
            return default
        metrics.inc_counter("cache.hits")
        return entry.value

    def set(self, key: str, value: Any, ttl: TTL) -> CacheEntry:
        """Store ``value`` under ``key``. A zero TTL is expired immediately."""
        ttl = _as_timedelta(ttl)
        if ttl < timedelta(0):
            raise ValueError(f"ttl must not be negative, got {ttl}")
        entry = CacheEntry(key=key, value=value, stored_at=self._clock(), ttl=ttl)
        self._entries[key] = entry
        return entry

    def invalidate(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def evict_expired(self, max_age: Optional[TTL] = None) -> int:
        """
        Remove entries past their TTL, or older than ``max_age`` if given.

        Idempotent and safe on an empty store. Returns the number removed.
        """
        now = self._clock()
        limit = _as_timedelta(max_age) if max_age is not None else None
        expired = [
            key
            for key, entry in self._entries.items()
            if not entry.is_valid(now) or (limit is not None and entry.age(now) > limit)
        ]
        for key in expired:
            del self._entries[key]
        if expired:
            metrics.inc_counter("cache.evicted", len(expired))
            logger.info(f"Evicted {len(expired)} expired cache entries")
        return len(expired)

    def evict_stale(self) -> int:
        """Evict with the configured stale-entry threshold."""
        return self.evict_expired(max_age=settings.cache_max_age_seconds)

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count

    def clear_prefix(self, prefix: str) -> int:
        keys = [key for key in self._entries if key.startswith(prefix)]
        for key in keys:
            del self._entries[key]
        return len(keys)

    def clear_owner(self, owner_id: str) -> int:
        """
        Drop every entry scoped to an owner (sign-out).

        That is entries keyed by the owner and cached rows owned by them,
        such as task results.
        """
        suffix = f":{owner_id}"
        keys = [
            key
            for key, entry in self._entries.items()
            if key.endswith(suffix) or _owned_by(entry.value, owner_id)
        ]
        for key in keys:
            del self._entries[key]
        if keys:
            logger.info(f"Cleared {len(keys)} cache entries for owner {owner_id}")
        return len(keys)

    def stats(self) -> dict[str, Any]:
        """Entry counts, overall and by entity type (the key prefix)."""
        now = self._clock()
        by_entity = Counter(key.split(":", 1)[0] for key in self._entries)
        valid = sum(1 for entry in self._entries.values() if entry.is_valid(now))
        return {
            "total_entries": len(self._entries),
            "valid_entries": valid,
            "expired_entries": len(self._entries) - valid,
            "by_entity": dict(by_entity),
        }

    async def get_or_fetch(
        self,
        key: str,
        fetch: Callable[[], Awaitable[T]],
        ttl: TTL,
        force_refresh: bool = False,
        background_refresh: bool = True,
    ) -> T:
        """
        Cached value for ``key``, fetching and storing it on a miss.

        A hit older than ``cache_background_refresh_ratio`` of its TTL is
        returned immediately while a refresh runs in the background. Fetch
        errors propagate; a ``None`` result is returned but not cached.
        """
        if not force_refresh:
            entry = self.get_entry(key)
            if entry is not None:
                metrics.inc_counter("cache.hits")
                if background_refresh and self._near_expiry(entry):
                    self._refresh_in_background(key, fetch, ttl)
                return entry.value
        metrics.inc_counter("cache.misses")

        value = await fetch()
        if value is not None:
            self.set(key, value, ttl)
        return value

    def _near_expiry(self, entry: CacheEntry) -> bool:
        threshold = entry.ttl * settings.cache_background_refresh_ratio
        return entry.age(self._clock()) > threshold

    def _refresh_in_background(
        self,
        key: str,
        fetch: Callable[[], Awaitable[Any]],
        ttl: TTL,
    ) -> None:
        if key in self._refreshing:
            return

        async def refresh() -> None:
            try:
                value = await fetch()
                if value is not None:
                    self.set(key, value, ttl)
            except Exception as e:
                logger.warning(f"Background cache refresh failed for {key}: {e}")
            finally:
                self._refreshing.pop(key, None)

        self._refreshing[key] = asyncio.get_running_loop().create_task(refresh())
