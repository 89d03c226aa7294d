"""Caller deadlines for cache lookups."""

import asyncio
import logging
from typing import Awaitable, Optional, TypeVar

from .errors import RequestTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_deadline(
    awaitable: Awaitable[T],
    timeout: Optional[float],
    description: str = "Operation",
) -> T:
    """Await ``awaitable`` with an optional deadline.

    Work shared with other callers (deduplicated fetches) is shielded further
    down, so only this caller stops waiting.

    Args:
        awaitable: Coroutine or future to await
        timeout: Deadline in seconds, or None for no deadline
        description: Label used in the error message

    Returns:
        The awaited result

    Raises:
        RequestTimeoutError: If the deadline elapses first
    """
    if timeout is None:
        return await awaitable

    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"{description} timed out after {timeout}s")
        raise RequestTimeoutError(
            f"{description} timed out after {timeout}s",
            timeout,
        ) from None
