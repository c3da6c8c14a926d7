"""In-process change feed."""

import logging

from progressgate.feed.base import ChangeFeed
from progressgate.models import Change

logger = logging.getLogger(__name__)


class LocalChangeFeed(ChangeFeed):
    """
    Change feed fed by writers in the same process.

    Good for development and single-instance deployments where the
    executor posts progress through this service's API.
    """

    async def start(self) -> None:
        logger.info("Local change feed started")

    async def stop(self) -> None:
        self.close_all()
        logger.info("Local change feed stopped")

    async def publish(self, change: Change) -> None:
        await self.dispatch(change)
