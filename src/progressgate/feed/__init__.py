"""Change feed transports."""

from typing import Optional

from progressgate.config import FeedBackend, settings
from progressgate.feed.base import ChangeFeed, ChangeHandler, FeedSubscription
from progressgate.feed.local import LocalChangeFeed

_change_feed: Optional[ChangeFeed] = None


def get_change_feed() -> ChangeFeed:
    """Get or create the process-wide change feed."""
    global _change_feed

    if _change_feed is None:
        if settings.feed_backend == FeedBackend.POSTGRES:
            from progressgate.feed.postgres import PostgresChangeFeed

            _change_feed = PostgresChangeFeed()
        else:
            _change_feed = LocalChangeFeed()
    return _change_feed


def set_change_feed(feed: Optional[ChangeFeed]) -> None:
    """Replace the process-wide change feed (None resets it)."""
    global _change_feed
    _change_feed = feed


__all__ = [
    "ChangeFeed",
    "ChangeHandler",
    "FeedSubscription",
    "LocalChangeFeed",
    "get_change_feed",
    "set_change_feed",
]
