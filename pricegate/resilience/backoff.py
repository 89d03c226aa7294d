"""Exponential backoff with additive jitter."""

import random
from dataclasses import dataclass


@dataclass
class BackoffConfig:
    """Configuration for backoff delays (all values in seconds)."""

    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0  # Cap on the exponential term
    jitter_max: float = 1.0  # Upper bound of the uniform jitter

    def __post_init__(self):
        if self.max_delay < self.base_delay:
            raise ValueError(
                f"max_delay ({self.max_delay}) must be >= base_delay ({self.base_delay})"
            )


def calculate_backoff(attempt: int, config: BackoffConfig) -> float:
    """Calculate the delay before a retry.

    delay = min(base_delay * multiplier^attempt, max_delay) + uniform(0, jitter_max)

    Args:
        attempt: Retry index (0-indexed, negative values are treated as 0)
        config: Backoff configuration

    Returns:
        Delay in seconds
    """
    attempt = max(0, attempt)

    try:
        delay = config.base_delay * (config.multiplier**attempt)
    except OverflowError:
        delay = config.max_delay
    delay = min(delay, config.max_delay)

    if config.jitter_max > 0:
        delay += random.uniform(0, config.jitter_max)

    return delay
