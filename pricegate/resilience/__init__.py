"""Resilience layer for upstream price-data APIs.

This module provides:
- Exponential backoff and a retry executor
- Per-endpoint circuit breakers persisted in a KV store
- Request deduplication
- A fresh/fallback two-tier cache
- Traffic-triggered cache warming
"""

from .backoff import BackoffConfig, calculate_backoff
from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerState,
    CircuitBreakerStore,
    CircuitState,
    CircuitStatus,
)
from .dedup import RequestDeduplicator
from .errors import (
    CircuitOpenError,
    ErrorKind,
    FatalUpstreamError,
    InvalidRequestError,
    NotFoundError,
    RateLimitError,
    RequestTimeoutError,
    RetriesExhaustedError,
    RetryableUpstreamError,
    UpstreamError,
    UpstreamUnavailableError,
    classify,
)
from .fallback import CacheConfig, CacheResult, CacheSource, FallbackCache
from .retry import RetryConfig, RetryExecutor, retry_with_backoff
from .timeout import with_deadline
from .warmer import CacheWarmer, WarmTarget

__all__ = [
    "BackoffConfig",
    "calculate_backoff",
    "RetryConfig",
    "RetryExecutor",
    "retry_with_backoff",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerState",
    "CircuitBreakerStore",
    "CircuitState",
    "CircuitStatus",
    "RequestDeduplicator",
    "CacheConfig",
    "CacheResult",
    "CacheSource",
    "FallbackCache",
    "CacheWarmer",
    "WarmTarget",
    "with_deadline",
    "ErrorKind",
    "classify",
    "UpstreamError",
    "FatalUpstreamError",
    "NotFoundError",
    "InvalidRequestError",
    "RetryableUpstreamError",
    "UpstreamUnavailableError",
    "RateLimitError",
    "CircuitOpenError",
    "RetriesExhaustedError",
    "RequestTimeoutError",
]
