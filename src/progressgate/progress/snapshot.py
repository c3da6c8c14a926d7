"""Snapshot reconciler - pull path for progress records."""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from progressgate.config import settings
from progressgate.db.base import get_session
from progressgate.db.repositories import ProgressRepository
from progressgate.models import ProgressRecord
from progressgate.observability.metrics import metrics
from progressgate.progress.markers import is_pollution
from progressgate.progress.state import TaskProgressState
from progressgate.utils.timeouts import bounded

logger = logging.getLogger("progressgate.progress.snapshot")


class SnapshotReconciler:
    """Fetches the authoritative record list and unions it into the state."""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self.session_factory = session_factory

    async def fetch_snapshot(self, task_id: str) -> list[ProgressRecord]:
        """
        Fetch a task's records, newest first, without pollution.

        Raises FetchTimeoutError when the store does not answer within
        ``fetch_timeout_seconds``; other store errors propagate.
        """
        with metrics.timed("snapshot.fetch_ms"):
            records = await bounded(
                self._fetch(task_id),
                settings.fetch_timeout_seconds,
                f"snapshot fetch for task {task_id}",
            )
        return [r for r in records if not is_pollution(r.label)]

    async def _fetch(self, task_id: str) -> list[ProgressRecord]:
        async with get_session(self.session_factory) as session:
            return await ProgressRepository(session).list_for_task(task_id)

    async def reconcile(self, state: TaskProgressState) -> bool:
        """
        Fetch a snapshot and union it into ``state``.

        Returns False when the fetch failed; the state is left untouched.
        """
        try:
            snapshot = await self.fetch_snapshot(state.task_id)
        except Exception as e:
            metrics.inc_counter("snapshot.failures")
            logger.warning(f"Snapshot fetch failed for task {state.task_id}: {e}", exc_info=True)
            return False

        inserted = state.reconcile(snapshot)
        metrics.inc_counter("snapshot.reconciled")
        if inserted:
            logger.debug(f"Reconciled {inserted} record(s) into task {state.task_id}")
        return True
