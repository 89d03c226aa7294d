"""pricegate: resilient access to rate-limited price-data APIs."""

__version__ = "0.1.0"

from .resilience import (
    CircuitOpenError,
    CircuitState,
    FatalUpstreamError,
    RequestTimeoutError,
    RetriesExhaustedError,
    UpstreamError,
)
from .service import PriceDataService, create_service
from .storage import InMemoryKVStore, RedisKVStore

__all__ = [
    "PriceDataService",
    "create_service",
    "InMemoryKVStore",
    "RedisKVStore",
    "CircuitState",
    "UpstreamError",
    "CircuitOpenError",
    "RetriesExhaustedError",
    "FatalUpstreamError",
    "RequestTimeoutError",
]
