"""Cache key and TTL policy per entity type."""

from enum import Enum

from progressgate.config import settings


class CacheEntity(str, Enum):
    PROFILE = "profile"
    EMAIL = "email"
    TASK_RESULT = "task_result"
    TASK_HISTORY = "task_history"
    OWNER_RESULTS = "owner_results"


def cache_key(entity: CacheEntity, entity_id: str) -> str:
    """Key of the form ``<entity>:<id>``."""
    return f"{CacheEntity(entity).value}:{entity_id}"


def ttl_for(entity: CacheEntity) -> int:
    """TTL in seconds: minutes for volatile entities, a day for near-static ones."""
    return {
        CacheEntity.PROFILE: settings.cache_ttl_profile_seconds,
        CacheEntity.EMAIL: settings.cache_ttl_email_seconds,
        CacheEntity.TASK_RESULT: settings.cache_ttl_task_result_seconds,
        CacheEntity.TASK_HISTORY: settings.cache_ttl_task_history_seconds,
        CacheEntity.OWNER_RESULTS: settings.cache_ttl_task_history_seconds,
    }[CacheEntity(entity)]
