"""Timeout helpers for remote calls."""

import asyncio
from typing import Awaitable, TypeVar

from progressgate.errors import FetchTimeoutError

T = TypeVar("T")


async def bounded(awaitable: Awaitable[T], timeout: float, operation: str) -> T:
    """Await ``awaitable`` for at most ``timeout`` seconds.

    Raises FetchTimeoutError naming the operation when the deadline passes.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise FetchTimeoutError(operation, timeout) from e
