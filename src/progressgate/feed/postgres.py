"""PostgreSQL LISTEN/NOTIFY change feed."""

import asyncio
import json
import logging
from typing import Optional

import asyncpg
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from progressgate.config import settings
from progressgate.db.base import get_session
from progressgate.db.repositories import ProgressRepository
from progressgate.db.tables import PROGRESS_TABLE
from progressgate.errors import SubscriptionError
from progressgate.feed.base import ChangeFeed, ChangeHandler, FeedSubscription
from progressgate.models import Change, ChangeType
from progressgate.observability.metrics import metrics
from progressgate.utils.timeouts import bounded

logger = logging.getLogger(__name__)


def _asyncpg_dsn(database_url: str) -> str:
    """asyncpg wants a plain postgresql:// DSN."""
    return database_url.replace("postgresql+asyncpg://", "postgresql://", 1)


class PostgresChangeFeed(ChangeFeed):
    """
    Change feed backed by a dedicated LISTEN connection.

    Rows are announced by the ``progressgate_notify_change`` trigger
    installed by the initial migration; the payload is a JSON object with
    ``table``, ``event_type``, ``new``, ``old`` and ``truncated``.
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        channel: Optional[str] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        super().__init__()
        self.session_factory = session_factory
        self.database_url = database_url or settings.database_url
        self.channel = channel or settings.feed_channel
        self._connection: Optional[asyncpg.Connection] = None
        self._pending: set[asyncio.Task] = set()

    async def start(self) -> None:
        if self._connection is not None:
            return
        try:
            self._connection = await asyncio.wait_for(
                asyncpg.connect(_asyncpg_dsn(self.database_url)),
                timeout=settings.subscribe_timeout_seconds,
            )
            await self._connection.add_listener(self.channel, self._on_notify)
        except (OSError, asyncio.TimeoutError, asyncpg.PostgresError) as e:
            self._connection = None
            raise SubscriptionError(self.channel, str(e) or type(e).__name__) from e
        logger.info(f"Listening for changes on channel {self.channel}")

    async def stop(self) -> None:
        self.close_all()
        if self._connection is not None:
            try:
                await self._connection.remove_listener(self.channel, self._on_notify)
            finally:
                await self._connection.close()
                self._connection = None
        for task in list(self._pending):
            task.cancel()
        logger.info("PostgreSQL change feed stopped")

    async def subscribe(self, table: str, task_id: str, handler: ChangeHandler) -> FeedSubscription:
        if self._connection is None or self._connection.is_closed():
            raise SubscriptionError(f"{self.channel}/{table}", "listener connection is not open")
        return await super().subscribe(table, task_id, handler)

    async def publish(self, change: Change) -> None:
        # The trigger notifies for every committed write
        pass

    def _on_notify(self, connection, pid: int, channel: str, payload: str) -> None:
        try:
            change = Change.model_validate(json.loads(payload))
        except (ValueError, ValidationError) as e:
            metrics.inc_counter("feed.payload.invalid")
            logger.warning(f"Ignoring malformed notification on {channel}: {e}")
            return
        task = asyncio.get_running_loop().create_task(self._deliver(change))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, change: Change) -> None:
        try:
            change = await hydrate_change(change, self.session_factory)
        except Exception as e:
            # The next snapshot reconciliation picks the row up
            metrics.inc_counter("feed.payload.unhydrated")
            logger.warning(f"Could not refetch truncated {change.table} change: {e}")
            return
        if change is not None:
            await self.dispatch(change)


async def hydrate_change(
    change: Change,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> Optional[Change]:
    """
    Restore the fields the trigger dropped from an oversized progress row.

    Returns the change unchanged when nothing was dropped, and None when
    the row no longer exists.
    """
    if not change.truncated or change.table != PROGRESS_TABLE:
        return change
    if change.event_type == ChangeType.DELETE:
        # Deletes only need the id
        return change

    record_id = change.row.get("id")
    if record_id is None:
        return change
    async with get_session(session_factory) as session:
        row = await bounded(
            ProgressRepository(session).get_row(str(record_id)),
            settings.fetch_timeout_seconds,
            f"refetch progress record {record_id}",
        )
    if row is None:
        return None
    metrics.inc_counter("feed.payload.hydrated")
    return change.model_copy(update={"new": row, "truncated": False})
