"""Change feed subscriber for progress records."""

import logging
from typing import Awaitable, Callable, Optional, Union

from progressgate.config import settings
from progressgate.db.tables import PROGRESS_TABLE
from progressgate.errors import MalformedRecordError, ProgressGateError, SubscriptionError
from progressgate.feed import ChangeFeed, FeedSubscription
from progressgate.models import Change, ChangeType, ProgressRecord, Source
from progressgate.observability.metrics import metrics
from progressgate.progress.markers import is_pollution
from progressgate.progress.state import TaskProgressState
from progressgate.utils.timeouts import bounded

logger = logging.getLogger("progressgate.progress.feed")

SourcesAddedHandler = Callable[[ProgressRecord, list[Source]], Union[None, Awaitable[None]]]


class ChangeFeedSubscriber:
    """
    Merges progress change events for one task into its state.

    Events are merged in delivery order. Pollution records are dropped
    before they reach the state, and rows without identity are logged and
    dropped.
    """

    def __init__(
        self,
        state: TaskProgressState,
        feed: ChangeFeed,
        on_sources_added: Optional[SourcesAddedHandler] = None,
    ):
        self.state = state
        self.feed = feed
        self.on_sources_added = on_sources_added
        self._subscription: Optional[FeedSubscription] = None

    @property
    def task_id(self) -> str:
        return self.state.task_id

    @property
    def active(self) -> bool:
        return self._subscription is not None and self._subscription.active

    async def subscribe(self) -> FeedSubscription:
        """
        Open the push channel for this task.

        Raises SubscriptionError if the channel cannot be opened in time;
        the failure is also recorded on the state.
        """
        channel = f"{PROGRESS_TABLE}:{self.task_id}"
        try:
            self._subscription = await bounded(
                self.feed.subscribe(PROGRESS_TABLE, self.task_id, self.handle),
                settings.subscribe_timeout_seconds,
                f"subscribe {channel}",
            )
        except SubscriptionError as e:
            self.state.mark_subscription_failed(e.reason)
            raise
        except ProgressGateError as e:
            self.state.mark_subscription_failed(e.message)
            raise SubscriptionError(channel, e.message) from e

        self.state.mark_subscribed()
        metrics.inc_counter("feed.subscriptions.opened")
        logger.info(f"Subscribed to progress changes for task {self.task_id}")
        return self._subscription

    def cancel(self) -> None:
        """Stop merging. No event is merged after this returns."""
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        self.state.mark_closed()

    async def handle(self, change: Change) -> None:
        """Merge one change event into the state."""
        if self._subscription is None:
            return

        row = change.row
        if is_pollution(row.get("label", row.get("topic"))):
            metrics.inc_counter("feed.events.pollution")
            return

        if change.event_type == ChangeType.DELETE:
            record_id = row.get("id", row.get("progress_id"))
            if record_id is None:
                logger.warning(f"Delete event without id for task {self.task_id}")
                return
            self.state.merge(ChangeType.DELETE, str(record_id))
            metrics.inc_counter("feed.events.delete")
            return

        try:
            record = ProgressRecord.from_row(row, table=change.table)
        except MalformedRecordError as e:
            metrics.inc_counter("feed.events.malformed")
            logger.warning(f"Dropping malformed event for task {self.task_id}: {e.message}")
            return

        result = self.state.merge(change.event_type, record)
        if not result.applied:
            metrics.inc_counter("feed.events.ignored")
            return
        metrics.inc_counter(f"feed.events.{change.event_type.value.lower()}")

        if result.added_sources:
            logger.info(
                f"Record {record.id} gained {len(result.added_sources)} source(s) "
                f"(task {self.task_id})"
            )
            if self.on_sources_added is not None:
                outcome = self.on_sources_added(record, list(result.added_sources))
                if outcome is not None:
                    await outcome
