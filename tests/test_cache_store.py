"""
Local cache store tests.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from progressgate.cache import CacheEntity, CacheStore, cache_key, fetch_task_result, ttl_for
from progressgate.db.repositories import ResultRepository
from progressgate.observability.metrics import metrics


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return CacheStore(clock=clock)


def test_get_returns_value_within_ttl(cache, clock):
    cache.set("profile:u1", {"name": "Ada"}, ttl=60)
    clock.advance(seconds=59)

    assert cache.get("profile:u1") == {"name": "Ada"}


def test_get_returns_absent_at_ttl(cache, clock):
    cache.set("profile:u1", {"name": "Ada"}, ttl=60)
    clock.advance(seconds=60)

    assert cache.get("profile:u1") is None
    assert cache.get("profile:u1", default="missing") == "missing"


def test_zero_ttl_is_immediately_absent(cache):
    cache.set("profile:u1", "value", ttl=0)

    assert cache.get("profile:u1") is None
    assert "profile:u1" not in cache


def test_negative_ttl_rejected(cache):
    with pytest.raises(ValueError):
        cache.set("profile:u1", "value", ttl=-1)


def test_last_write_wins(cache):
    cache.set("email:u1", "old@example.com", ttl=timedelta(days=1))
    cache.set("email:u1", "new@example.com", ttl=timedelta(days=1))

    assert cache.get("email:u1") == "new@example.com"
    assert len(cache) == 1


def test_invalidate(cache):
    cache.set("profile:u1", "value", ttl=60)

    assert cache.invalidate("profile:u1") is True
    assert cache.invalidate("profile:u1") is False
    assert cache.get("profile:u1") is None


def test_evict_expired_is_idempotent_and_safe_when_empty(cache, clock):
    assert cache.evict_expired() == 0

    cache.set("a", 1, ttl=10)
    cache.set("b", 2, ttl=100)
    clock.advance(seconds=50)

    assert cache.evict_expired() == 1
    assert cache.evict_expired() == 0
    assert cache.get("b") == 2


def test_evict_with_max_age_drops_old_long_lived_entries(cache, clock):
    cache.set("email:u1", "a@example.com", ttl=timedelta(days=30))
    cache.set("email:u2", "b@example.com", ttl=timedelta(days=30))
    clock.advance(days=8)
    cache.set("email:u3", "c@example.com", ttl=timedelta(days=30))

    assert cache.evict_expired(max_age=timedelta(days=7)) == 2
    assert cache.get("email:u3") == "c@example.com"


def test_evict_stale_uses_configured_threshold(cache, clock):
    cache.set("email:u1", "a@example.com", ttl=timedelta(days=30))
    clock.advance(days=6)
    assert cache.evict_stale() == 0

    clock.advance(days=2)
    assert cache.evict_stale() == 1


def test_clear_prefix_and_owner(cache):
    cache.set(cache_key(CacheEntity.PROFILE, "u1"), "p1", ttl=60)
    cache.set(cache_key(CacheEntity.EMAIL, "u1"), "e1", ttl=60)
    cache.set(cache_key(CacheEntity.PROFILE, "u2"), "p2", ttl=60)
    cache.set(cache_key(CacheEntity.TASK_RESULT, "t1"), {}, ttl=60)

    assert cache.clear_owner("u1") == 2
    assert cache.clear_prefix("profile:") == 1
    assert cache.stats()["by_entity"] == {"task_result": 1}
    assert cache.clear() == 1
    assert len(cache) == 0


def test_clear_owner_drops_their_cached_results(cache):
    cache.set(cache_key(CacheEntity.OWNER_RESULTS, "u1"), ["t1"], ttl=60)
    cache.set(cache_key(CacheEntity.TASK_RESULT, "t1"), {"task_id": "t1", "owner_id": "u1"}, ttl=60)
    cache.set(cache_key(CacheEntity.TASK_RESULT, "t2"), {"task_id": "t2", "owner_id": "u2"}, ttl=60)

    assert cache.clear_owner("u1") == 2
    assert list(cache.stats()["by_entity"].items()) == [("task_result", 1)]
    assert cache.get(cache_key(CacheEntity.TASK_RESULT, "t2")) is not None


def test_stats_counts_expired_entries(cache, clock):
    cache.set("profile:u1", 1, ttl=10)
    cache.set("profile:u2", 2, ttl=100)
    cache.set("email:u1", 3, ttl=100)
    clock.advance(seconds=20)

    stats = cache.stats()
    assert stats == {
        "total_entries": 3,
        "valid_entries": 2,
        "expired_entries": 1,
        "by_entity": {"profile": 2, "email": 1},
    }


def test_ttl_policy():
    assert ttl_for(CacheEntity.PROFILE) == 300
    assert ttl_for(CacheEntity.EMAIL) == 86400
    assert ttl_for(CacheEntity.TASK_RESULT) == 300
    assert cache_key(CacheEntity.TASK_RESULT, "t1") == "task_result:t1"


@pytest.mark.asyncio
async def test_get_or_fetch_caches_and_forces_refresh(cache):
    calls = []

    async def fetch():
        calls.append(1)
        return len(calls)

    assert await cache.get_or_fetch("k", fetch, ttl=60) == 1
    assert await cache.get_or_fetch("k", fetch, ttl=60) == 1
    assert await cache.get_or_fetch("k", fetch, ttl=60, force_refresh=True) == 2
    assert len(calls) == 2
    assert metrics.counter("cache.hits") == 1


@pytest.mark.asyncio
async def test_get_or_fetch_does_not_cache_none(cache):
    calls = []

    async def fetch():
        calls.append(1)
        return None

    assert await cache.get_or_fetch("k", fetch, ttl=60) is None
    assert await cache.get_or_fetch("k", fetch, ttl=60) is None
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_get_or_fetch_refreshes_near_expiry_in_background(cache, clock):
    values = iter(["v1", "v2"])

    async def fetch():
        return next(values)

    assert await cache.get_or_fetch("k", fetch, ttl=100) == "v1"
    clock.advance(seconds=90)

    # Stale-but-valid value is served while the refresh runs
    assert await cache.get_or_fetch("k", fetch, ttl=100) == "v1"
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    assert cache.get("k") == "v2"
    assert cache.get_entry("k").stored_at == clock.now


@pytest.mark.asyncio
async def test_get_or_fetch_propagates_fetch_errors(cache):
    async def fetch():
        raise ConnectionError("offline")

    with pytest.raises(ConnectionError):
        await cache.get_or_fetch("k", fetch, ttl=60)


@pytest.mark.asyncio
async def test_fetch_task_result_uses_cache(session_factory):
    cache = CacheStore()
    assert await fetch_task_result(cache, "task-1", session_factory) is None

    async with session_factory() as session:
        await ResultRepository(session).create(task_id="task-1", content={"summary": "ok"})
        await session.commit()

    result = await fetch_task_result(cache, "task-1", session_factory)
    assert result["content"] == {"summary": "ok"}
    assert cache.get(cache_key(CacheEntity.TASK_RESULT, "task-1"))["task_id"] == "task-1"
