"""Retry executor with exponential backoff.

Provides automatic retry for transient upstream failures with:
- Configurable attempt count
- Exponential backoff with jitter
- Tagged fatal/retryable classification
- Cooperative cancellation between attempts
"""

import asyncio
import functools
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

from ..monitoring.metrics import upstream_retries_total
from .backoff import BackoffConfig, calculate_backoff
from .errors import (
    ErrorKind,
    FatalUpstreamError,
    RateLimitError,
    RetriesExhaustedError,
    UpstreamError,
    classify,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    backoff: BackoffConfig = field(default_factory=BackoffConfig)


class RetryExecutor:
    """Runs a single upstream call with retries.

    Usage:
        executor = RetryExecutor(RetryConfig(max_attempts=3))
        prices = await executor.run(lambda: client.get_prices(["bitcoin"]))
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize retry executor.

        Args:
            config: Retry configuration
            sleep: Coroutine used between attempts (overridable in tests)
        """
        self.config = config or RetryConfig()
        self._sleep = sleep

    def delay_for(self, attempt: int) -> float:
        """Backoff delay before retry number ``attempt + 1``."""
        return calculate_backoff(attempt, self.config.backoff)

    async def run(
        self,
        op: Callable[[], Awaitable[T]],
        max_attempts: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> T:
        """Run ``op`` until it succeeds, fails fatally or runs out of attempts.

        Args:
            op: Zero-argument coroutine function performing the upstream call
            max_attempts: Override for the configured attempt count
            cancel_event: When set, pending retries are abandoned

        Returns:
            The value returned by ``op``

        Raises:
            FatalUpstreamError: Non-retryable failure (raised on first occurrence)
            RetriesExhaustedError: Every attempt failed with a retryable error
            asyncio.CancelledError: Cancelled before or during a backoff sleep
        """
        attempts = max(1, max_attempts if max_attempts is not None else self.config.max_attempts)
        last_error: Optional[BaseException] = None

        for attempt in range(attempts):
            if attempt > 0:
                delay = self.delay_for(attempt - 1)
                if isinstance(last_error, RateLimitError):
                    # Never retry sooner than the upstream asked
                    delay = max(delay, last_error.retry_after)
                logger.info(
                    f"Retrying request after {delay:.2f}s (attempt {attempt + 1}/{attempts})"
                )
                upstream_retries_total.inc()
                await self._wait(delay, cancel_event)

            try:
                return await op()
            except Exception as e:
                last_error = e
                kind = classify(e)

                if kind != ErrorKind.RETRYABLE:
                    logger.warning(f"Non-retryable error ({kind.value}): {e}")
                    if isinstance(e, UpstreamError):
                        raise
                    raise _as_upstream_error(e) from e

                logger.warning(f"Request failed (attempt {attempt + 1}/{attempts}): {e}")

        logger.error(f"All {attempts} attempts failed: {last_error}")
        raise RetriesExhaustedError(attempts, last_error) from last_error

    async def _wait(self, delay: float, cancel_event: Optional[asyncio.Event]) -> None:
        """Sleep for ``delay`` unless ``cancel_event`` fires first."""
        if cancel_event is None:
            await self._sleep(delay)
            return

        if cancel_event.is_set():
            raise asyncio.CancelledError("Retry cancelled by caller")

        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise asyncio.CancelledError("Retry cancelled by caller")


def _as_upstream_error(exc: Exception) -> UpstreamError:
    """Wrap an untagged fatal exception so callers only see UpstreamError."""
    return FatalUpstreamError(str(exc) or type(exc).__name__)


def retry_with_backoff(
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    jitter_max: float = 1.0,
):
    """Decorator applying ``RetryExecutor`` to a coroutine function.

    Args:
        max_attempts: Maximum number of attempts
        base_delay: Base delay between retries
        max_delay: Cap on the exponential delay
        jitter_max: Upper bound of random jitter added to each delay

    Returns:
        Decorated coroutine function

    Usage:
        @retry_with_backoff(max_attempts=3)
        async def fetch_quotes(symbol):
            ...
    """
    executor = RetryExecutor(
        RetryConfig(
            max_attempts=max_attempts,
            backoff=BackoffConfig(
                base_delay=base_delay,
                max_delay=max_delay,
                jitter_max=jitter_max,
            ),
        )
    )

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        if not asyncio.iscoroutinefunction(func):
            raise TypeError("retry_with_backoff only decorates coroutine functions")

        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            return await executor.run(lambda: func(*args, **kwargs))

        return wrapper

    return decorator
