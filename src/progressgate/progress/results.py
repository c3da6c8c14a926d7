"""Result availability monitor."""

import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from progressgate.config import settings
from progressgate.db.base import get_session
from progressgate.db.repositories import ResultRepository
from progressgate.db.tables import RESULTS_TABLE
from progressgate.errors import ProgressGateError, SubscriptionError
from progressgate.feed import ChangeFeed, FeedSubscription
from progressgate.models import Change, ChangeType, ResultAvailability
from progressgate.observability.metrics import metrics
from progressgate.utils.time import utc_now
from progressgate.utils.timeouts import bounded

logger = logging.getLogger("progressgate.progress.results")

# Called with (task_id, owner_id); the owner is unknown when found by probe
AvailableHandler = Callable[[str, Optional[str]], Union[None, Awaitable[None]]]


class ResultAvailabilityMonitor:
    """
    Tracks whether a task's final result exists.

    Independent of the progress percentage: a task can be complete while
    its result is still being persisted. ``available`` flips to True once
    and is never reset.
    """

    def __init__(
        self,
        task_id: str,
        feed: ChangeFeed,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        on_available: Optional[AvailableHandler] = None,
    ):
        self.task_id = task_id
        self.feed = feed
        self.session_factory = session_factory
        self.on_available = on_available
        self._available = False
        self._observed_at: Optional[datetime] = None
        self._subscription: Optional[FeedSubscription] = None

    @property
    def available(self) -> bool:
        return self._available

    def availability(self) -> ResultAvailability:
        return ResultAvailability(
            task_id=self.task_id,
            available=self._available,
            observed_at=self._observed_at,
        )

    async def _mark_available(self, via: str, owner_id: Optional[str] = None) -> None:
        if self._available:
            return
        self._available = True
        self._observed_at = utc_now()
        metrics.inc_counter(f"results.available.{via}")
        logger.info(f"Result available for task {self.task_id} (via {via})")
        if self.on_available is not None:
            outcome = self.on_available(self.task_id, owner_id)
            if outcome is not None:
                await outcome

    async def probe_existing(self) -> bool:
        """Single-row existence query; marks available on a hit."""
        async with get_session(self.session_factory) as session:
            exists = await bounded(
                ResultRepository(session).exists(self.task_id),
                settings.fetch_timeout_seconds,
                f"result probe for task {self.task_id}",
            )
        if exists:
            await self._mark_available("probe")
        return self._available

    async def handle(self, change: Change) -> None:
        if self._subscription is None:
            return
        if change.event_type in (ChangeType.INSERT, ChangeType.UPDATE):
            owner_id = change.row.get("owner_id")
            await self._mark_available("feed", str(owner_id) if owner_id is not None else None)

    async def watch(self) -> FeedSubscription:
        """
        Subscribe to result changes for the task, then probe once.

        Subscribing first closes the window where a result written between
        the probe and the subscription would be missed. A failed probe is
        logged; the subscription still stands.
        """
        channel = f"{RESULTS_TABLE}:{self.task_id}"
        try:
            self._subscription = await bounded(
                self.feed.subscribe(RESULTS_TABLE, self.task_id, self.handle),
                settings.subscribe_timeout_seconds,
                f"subscribe {channel}",
            )
        except SubscriptionError:
            raise
        except ProgressGateError as e:
            raise SubscriptionError(channel, e.message) from e

        try:
            await self.probe_existing()
        except Exception as e:
            logger.warning(f"Result probe failed for task {self.task_id}: {e}", exc_info=True)
        return self._subscription

    def cancel(self) -> None:
        """Stop watching. No callback runs after this returns."""
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
