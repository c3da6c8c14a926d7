"""Database connection and session management."""

import time
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from progressgate.config import settings
from progressgate.observability.metrics import metrics


class Base(DeclarativeBase):
    """SQLAlchemy declarative base."""

    pass


def _engine_options(database_url: str) -> dict[str, Any]:
    """Pool options per dialect; in-memory SQLite needs a single shared connection."""
    if database_url.startswith("sqlite"):
        if database_url.rstrip("/").endswith(":memory:") or database_url.endswith("://"):
            return {
                "poolclass": StaticPool,
                "connect_args": {"check_same_thread": False},
            }
        return {}
    return {"pool_pre_ping": True, "pool_size": 20, "max_overflow": 10}


def _attach_query_metrics(target_engine: AsyncEngine) -> None:
    """Attach SQLAlchemy event listeners for query metrics."""
    sync_engine = target_engine.sync_engine
    if getattr(sync_engine, "_progressgate_metrics_attached", False):
        return

    @event.listens_for(sync_engine, "before_cursor_execute")
    def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        conn.info["query_start_time"] = time.perf_counter()

    @event.listens_for(sync_engine, "after_cursor_execute")
    def after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        start_time = conn.info.pop("query_start_time", None)
        if start_time is None:
            return
        metrics.inc_counter("db.query.count")
        metrics.observe("db.query.duration_ms", (time.perf_counter() - start_time) * 1000.0)

    sync_engine._progressgate_metrics_attached = True


def create_engine(database_url: str) -> AsyncEngine:
    """Create an async engine with metrics attached."""
    new_engine = create_async_engine(
        database_url,
        echo=settings.debug,
        **_engine_options(database_url),
    )
    _attach_query_metrics(new_engine)
    return new_engine


def _session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


# Primary store (regular client role)
engine = create_engine(settings.database_url)
async_session_factory = _session_factory(engine)

# Privileged store (service role) used as the fallback write path
if settings.effective_privileged_database_url == settings.database_url:
    privileged_engine = engine
else:
    privileged_engine = create_engine(settings.effective_privileged_database_url)
privileged_session_factory = _session_factory(privileged_engine)


def bind_engines(
    primary: AsyncEngine,
    privileged: Optional[AsyncEngine] = None,
) -> None:
    """Rebind the module-level engines and session factories."""
    global engine, async_session_factory, privileged_engine, privileged_session_factory

    engine = primary
    async_session_factory = _session_factory(primary)
    privileged_engine = privileged or primary
    privileged_session_factory = _session_factory(privileged_engine)


async def init_db() -> None:
    """Initialize database tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()
    if privileged_engine is not engine:
        await privileged_engine.dispose()


@asynccontextmanager
async def get_session(
    factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncGenerator[AsyncSession, None]:
    """Get a database session (primary store unless a factory is given)."""
    async with (factory or async_session_factory)() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_privileged_session(
    factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncGenerator[AsyncSession, None]:
    """Get a session on the privileged store."""
    async with get_session(factory or privileged_session_factory) as session:
        yield session
