"""Debug-record janitor background task."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from progressgate.config import settings
from progressgate.db.base import get_session
from progressgate.db.repositories import ProgressRepository
from progressgate.observability.metrics import metrics
from progressgate.utils.timeouts import bounded

logger = logging.getLogger("progressgate.janitor")


class DebugRecordJanitor:
    """
    Periodic sweep that deletes pollution records under one task.

    This is self-healing maintenance, not a correctness path:
    - Find records whose label contains the pollution marker
    - Delete them by id
    - Call ``on_deleted`` exactly once when the sweep removed anything

    Failures are logged and swallowed; the next interval retries. At most
    one sweep runs at a time.
    """

    def __init__(
        self,
        task_id: str,
        on_deleted: Optional[Callable[[], Awaitable[object]]] = None,
        interval: Optional[float] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        marker: Optional[str] = None,
    ):
        self.task_id = task_id
        self.on_deleted = on_deleted
        self.interval = interval or settings.janitor_interval_seconds
        self.session_factory = session_factory
        self.marker = (marker or settings.pollution_marker).lower()
        self._sweep_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._shutdown_event: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep(self) -> bool:
        """Delete matching records. Returns whether anything was deleted."""
        async with get_session(self.session_factory) as session:
            repo = ProgressRepository(session)
            ids = await repo.find_ids_matching(self.task_id, self.marker)
            if not ids:
                return False
            deleted = await repo.delete_ids(ids)

        metrics.inc_counter("janitor.records.deleted", deleted)
        logger.info(f"Removed {deleted} debug record(s) from task {self.task_id}")
        return deleted > 0

    async def run_once(self) -> bool:
        """
        Run one guarded sweep and trigger reconciliation if it deleted.

        Returns False without sweeping when a sweep is already in flight.
        """
        if self._sweep_lock.locked():
            metrics.inc_counter("janitor.sweeps.skipped")
            return False

        async with self._sweep_lock:
            metrics.inc_counter("janitor.sweeps")
            try:
                deleted = await bounded(
                    self.sweep(),
                    settings.fetch_timeout_seconds,
                    f"janitor sweep for task {self.task_id}",
                )
            except Exception as e:
                metrics.inc_counter("janitor.sweeps.failed")
                logger.error(f"Janitor sweep error for task {self.task_id}: {e}", exc_info=True)
                return False

            if deleted and self.on_deleted is not None:
                try:
                    await self.on_deleted()
                except Exception as e:
                    logger.error(
                        f"Post-sweep refresh failed for task {self.task_id}: {e}",
                        exc_info=True,
                    )
            return deleted

    async def _loop(self) -> None:
        logger.info(f"Janitor started for task {self.task_id} (interval: {self.interval}s)")

        while not self._shutdown_event.is_set():
            # Wait for next sweep interval or shutdown
            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=self.interval)
                break
            except asyncio.TimeoutError:
                pass

            await self.run_once()

        logger.info(f"Janitor stopped for task {self.task_id}")

    def start(self) -> None:
        """Start the periodic sweep."""
        if self.running:
            return
        self._shutdown_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        """Stop the periodic sweep, cancelling an in-flight sweep if needed."""
        if self._shutdown_event:
            self._shutdown_event.set()

        if self._task:
            try:
                await asyncio.wait_for(self._task, timeout=settings.fetch_timeout_seconds + 1.0)
            except asyncio.TimeoutError:
                logger.warning(f"Janitor for task {self.task_id} did not stop gracefully")
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass

        self._task = None
        self._shutdown_event = None
