"""Per-task progress tracking - wires feed, snapshot, janitor and results."""

import asyncio
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from progressgate.cache import CacheEntity, CacheStore, cache_key, get_cache
from progressgate.config import settings
from progressgate.errors import SubscriptionError, TaskNotTrackedError
from progressgate.feed import ChangeFeed, get_change_feed
from progressgate.models import ResultAvailability, TaskProgressView
from progressgate.observability.metrics import metrics
from progressgate.progress.feed import ChangeFeedSubscriber, SourcesAddedHandler
from progressgate.progress.janitor import DebugRecordJanitor
from progressgate.progress.projector import expected_total
from progressgate.progress.results import ResultAvailabilityMonitor
from progressgate.progress.snapshot import SnapshotReconciler
from progressgate.progress.state import TaskProgressState

logger = logging.getLogger("progressgate.tracker")


class TaskProgressTracker:
    """
    Owns the progress state of one task.

    Start order: subscribe to the feed, seed from a snapshot, watch the
    result entity, then start the janitor. A failed subscription is
    recorded on the view and tracking continues pull-only through
    ``refresh``.
    """

    def __init__(
        self,
        task_id: str,
        breadth: int = 1,
        depth: int = 1,
        feed: Optional[ChangeFeed] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        cache: Optional[CacheStore] = None,
        janitor_enabled: Optional[bool] = None,
        janitor_interval: Optional[float] = None,
        on_sources_added: Optional[SourcesAddedHandler] = None,
    ):
        self.task_id = task_id
        self.feed = feed or get_change_feed()
        self.cache = cache or get_cache()
        self.state = TaskProgressState(task_id, expected_total(breadth, depth))
        self.subscriber = ChangeFeedSubscriber(self.state, self.feed, on_sources_added)
        self.reconciler = SnapshotReconciler(session_factory)
        self.results = ResultAvailabilityMonitor(
            task_id,
            self.feed,
            session_factory,
            on_available=self._on_result_available,
        )

        if janitor_enabled is None:
            janitor_enabled = settings.janitor_enabled
        self.janitor: Optional[DebugRecordJanitor] = None
        if janitor_enabled:
            self.janitor = DebugRecordJanitor(
                task_id,
                on_deleted=self.refresh,
                interval=janitor_interval,
                session_factory=session_factory,
            )
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        if self._started:
            return
        self._started = True

        try:
            await self.subscriber.subscribe()
        except SubscriptionError as e:
            metrics.inc_counter("tracker.subscription.failed")
            logger.warning(f"Task {self.task_id} tracking pull-only: {e.message}")

        await self.reconciler.reconcile(self.state)

        try:
            await self.results.watch()
        except SubscriptionError as e:
            logger.warning(f"Result watch unavailable for task {self.task_id}: {e.message}")
            await self._probe_results()

        if self.janitor is not None:
            self.janitor.start()

        metrics.inc_counter("tracker.started")
        logger.info(
            f"Tracking task {self.task_id} "
            f"(expected {self.state.expected_total} records, {self.state.subscription_status.value})"
        )

    async def refresh(self) -> bool:
        """Reconcile with a fresh snapshot. Returns False when the fetch failed."""
        ok = await self.reconciler.reconcile(self.state)
        if not self.results.available:
            await self._probe_results()
        return ok

    async def _probe_results(self) -> None:
        try:
            await self.results.probe_existing()
        except Exception as e:
            logger.warning(f"Result probe failed for task {self.task_id}: {e}")

    async def _on_result_available(self, task_id: str, owner_id: Optional[str]) -> None:
        # A cached "no result" must not outlive the result itself
        self.cache.invalidate(cache_key(CacheEntity.TASK_RESULT, task_id))
        if owner_id:
            self.cache.invalidate(cache_key(CacheEntity.OWNER_RESULTS, owner_id))
        else:
            self.cache.clear_prefix(f"{CacheEntity.OWNER_RESULTS.value}:")

    def view(self) -> TaskProgressView:
        return self.state.view()

    def result_availability(self) -> ResultAvailability:
        return self.results.availability()

    async def stop(self) -> None:
        """Cancel subscriptions and the janitor. Idempotent."""
        self.subscriber.cancel()
        self.results.cancel()
        if self.janitor is not None:
            await self.janitor.stop()
        self._started = False
        logger.info(f"Stopped tracking task {self.task_id}")


class TrackerRegistry:
    """
    Live trackers keyed by task id.

    Reads of tracked tasks never wait. A task being started has one start
    future; only callers for that task wait on it.
    """

    def __init__(self):
        self._trackers: dict[str, TaskProgressTracker] = {}
        self._starting: dict[str, asyncio.Future] = {}

    def __contains__(self, task_id: str) -> bool:
        return task_id in self._trackers

    def __len__(self) -> int:
        return len(self._trackers)

    async def get_or_start(
        self,
        task_id: str,
        breadth: int = 1,
        depth: int = 1,
        **kwargs,
    ) -> TaskProgressTracker:
        """Return the tracker for a task, starting one if needed."""
        tracker = self._trackers.get(task_id)
        if tracker is not None:
            return tracker

        pending = self._starting.get(task_id)
        if pending is None:
            pending = asyncio.ensure_future(self._start(task_id, breadth, depth, **kwargs))
            self._starting[task_id] = pending
            pending.add_done_callback(lambda _: self._starting.pop(task_id, None))
        # A cancelled caller must not abort a start other callers wait on
        return await asyncio.shield(pending)

    async def _start(self, task_id: str, breadth: int, depth: int, **kwargs) -> TaskProgressTracker:
        tracker = TaskProgressTracker(task_id, breadth, depth, **kwargs)
        try:
            await tracker.start()
        except Exception:
            await tracker.stop()
            raise
        self._trackers[task_id] = tracker
        metrics.set_gauge("tracker.active", len(self._trackers))
        return tracker

    async def _wait_for_start(self, task_id: str) -> None:
        pending = self._starting.get(task_id)
        if pending is not None:
            await asyncio.gather(asyncio.shield(pending), return_exceptions=True)

    def get(self, task_id: str) -> TaskProgressTracker:
        tracker = self._trackers.get(task_id)
        if tracker is None:
            raise TaskNotTrackedError(task_id)
        return tracker

    async def stop(self, task_id: str) -> bool:
        await self._wait_for_start(task_id)
        tracker = self._trackers.pop(task_id, None)
        if tracker is None:
            return False
        await tracker.stop()
        metrics.set_gauge("tracker.active", len(self._trackers))
        return True

    async def stop_all(self) -> None:
        for task_id in list(self._starting):
            await self._wait_for_start(task_id)
        trackers = list(self._trackers.values())
        self._trackers.clear()
        for tracker in trackers:
            await tracker.stop()
        metrics.set_gauge("tracker.active", 0)


_registry: Optional[TrackerRegistry] = None


def get_tracker_registry() -> TrackerRegistry:
    """Get or create the process-wide tracker registry."""
    global _registry

    if _registry is None:
        _registry = TrackerRegistry()
    return _registry


def reset_tracker_registry() -> None:
    global _registry
    _registry = None
