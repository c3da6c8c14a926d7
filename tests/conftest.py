"""
Pytest fixtures for ProgressGate tests.
"""

import os
from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Ensure test config is set before importing progressgate modules.
os.environ.setdefault("PROGRESSGATE_ALLOW_INSECURE_DEV", "true")
os.environ.setdefault("PROGRESSGATE_ENV", "development")
os.environ.setdefault("PROGRESSGATE_JANITOR_ENABLED", "false")
os.environ.setdefault("PROGRESSGATE_FEED_BACKEND", "local")
os.environ.setdefault(
    "PROGRESSGATE_DATABASE_URL",
    os.getenv("PROGRESSGATE_TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:"),
)

from progressgate.cache import reset_cache
from progressgate.config import settings
from progressgate.db import base as db_base
from progressgate.db.base import Base
import progressgate.db.tables  # noqa: F401
from progressgate.feed import LocalChangeFeed, set_change_feed
from progressgate.models import ProgressRecord
from progressgate.observability.metrics import metrics
from progressgate.progress.tracker import get_tracker_registry, reset_tracker_registry

BASE_TIME = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def _ensure_test_database_url(database_url: str) -> None:
    if database_url.startswith("sqlite"):
        return
    if "test" not in database_url:
        raise RuntimeError(
            "Refusing to run ProgressGate tests against a non-test database. "
            "Set PROGRESSGATE_TEST_DATABASE_URL to a dedicated test database."
        )


@pytest.fixture(autouse=True)
def reset_singletons():
    """Fresh metrics, cache, feed and registry per test."""
    from progressgate.api.deps import reset_feedback_tracker

    metrics.reset()
    reset_cache()
    reset_tracker_registry()
    reset_feedback_tracker()
    set_change_feed(None)
    yield
    set_change_feed(None)


@pytest.fixture
async def engine():
    """Create a clean test engine and wire it into progressgate.db.base."""
    _ensure_test_database_url(settings.database_url)
    engine = db_base.create_engine(settings.database_url)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    # Override global engine/session factories for dependency injection.
    db_base.bind_engines(engine)

    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    """Provide a database session per test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def feed():
    """In-process change feed installed as the process-wide feed."""
    feed = LocalChangeFeed()
    await feed.start()
    set_change_feed(feed)
    yield feed
    await feed.stop()


@pytest.fixture
def make_record():
    """Build progress records with increasing timestamps."""

    def _make(
        record_id: str,
        label: str = "Searching sources",
        task_id: str = "task-1",
        offset: int = 0,
        sources=None,
    ) -> ProgressRecord:
        return ProgressRecord(
            id=record_id,
            task_id=task_id,
            label=label,
            created_at=BASE_TIME + timedelta(seconds=offset),
            sources=sources or [],
        )

    return _make


@pytest.fixture
async def client(engine, feed):
    """Async test client against the app (lifespan not run)."""
    from progressgate.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    await get_tracker_registry().stop_all()
    app.dependency_overrides.clear()
