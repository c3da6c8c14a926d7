"""Change feed abstraction."""

import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional, Union

from progressgate.models import Change, SubscriptionStatus

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[Change], Union[None, Awaitable[None]]]


class FeedSubscription:
    """
    Handle for one (table, task) subscription.

    Cancelling is synchronous: once ``cancel()`` returns, the feed never
    invokes the handler again.
    """

    def __init__(self, feed: "ChangeFeed", table: str, task_id: str, handler: ChangeHandler):
        self.feed = feed
        self.table = table
        self.task_id = task_id
        self.handler = handler
        self.status = SubscriptionStatus.PENDING
        self.error: Optional[str] = None

    @property
    def active(self) -> bool:
        return self.status.is_live()

    def matches(self, change: Change) -> bool:
        return self.active and change.table == self.table and change.task_id == self.task_id

    def cancel(self) -> None:
        if self.status == SubscriptionStatus.CLOSED:
            return
        self.status = SubscriptionStatus.CLOSED
        self.feed.unsubscribe(self)


class ChangeFeed(ABC):
    """Push channel delivering row-level changes filtered by table and task."""

    def __init__(self):
        self._subscriptions: list[FeedSubscription] = []

    @abstractmethod
    async def start(self) -> None:
        """Open the underlying transport."""
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Close the underlying transport."""
        pass

    @abstractmethod
    async def publish(self, change: Change) -> None:
        """Announce a change written by this process."""
        pass

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    async def subscribe(self, table: str, task_id: str, handler: ChangeHandler) -> FeedSubscription:
        """Register a handler for changes to ``table`` rows of ``task_id``."""
        subscription = FeedSubscription(self, table, task_id, handler)
        self._subscriptions.append(subscription)
        subscription.status = SubscriptionStatus.SUBSCRIBED
        logger.debug(f"Subscribed to {table} changes for task {task_id}")
        return subscription

    def unsubscribe(self, subscription: FeedSubscription) -> None:
        subscription.status = SubscriptionStatus.CLOSED
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def close_all(self) -> None:
        for subscription in list(self._subscriptions):
            subscription.cancel()

    async def dispatch(self, change: Change) -> int:
        """
        Deliver a change to every live matching subscription.

        Handler failures are logged and do not stop delivery to other
        subscribers. Returns the number of handlers invoked.
        """
        delivered = 0
        for subscription in list(self._subscriptions):
            # A handler may cancel another subscription mid-dispatch
            if not subscription.matches(change):
                continue
            try:
                outcome = subscription.handler(change)
                if outcome is not None:
                    await outcome
                delivered += 1
            except Exception as e:
                logger.error(
                    f"Change handler failed for {change.table}/{subscription.task_id}: {e}",
                    exc_info=True,
                )
        return delivered
