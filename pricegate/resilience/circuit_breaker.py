"""Per-endpoint circuit breaker persisted in the key-value store.

Provides per-endpoint circuit breakers with:
- Three states: CLOSED (normal), OPEN (failing), HALF_OPEN (testing)
- Configurable failure threshold and recovery timeout
- State shared across processes through the KV store

State updates are read-modify-write without locking. Concurrent writers may
race and the last write wins; this only changes how fast recovery is
detected, never which data is returned.
"""

import logging
import math
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from ..monitoring.metrics import (
    circuit_rejections_total,
    circuit_state,
    circuit_transitions_total,
)
from ..storage.base import KVStore
from ..storage.json_kv import JsonKV, is_missing
from .errors import CircuitOpenError, ErrorKind, classify

logger = logging.getLogger(__name__)

T = TypeVar("T")

_STATE_GAUGE = {"CLOSED": 0, "HALF_OPEN": 1, "OPEN": 2}


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Upstream failing, reject requests
    HALF_OPEN = "HALF_OPEN"  # Testing if upstream recovered


@dataclass
class CircuitBreakerConfig:
    """Configuration for endpoint circuit breakers."""

    failure_threshold: int = 5  # Consecutive failures before opening
    recovery_timeout: float = 60.0  # Seconds to stay open
    state_ttl: int = 3600  # KV TTL of persisted state
    degraded_failure_count: int = 3  # Failures at which an endpoint is unhealthy


@dataclass
class CircuitBreakerState:
    """Persisted state of one endpoint's breaker."""

    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    last_failure_time: float = 0.0
    next_retry_time: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CircuitBreakerState":
        try:
            state = CircuitState(data.get("state", CircuitState.CLOSED.value))
        except ValueError:
            state = CircuitState.CLOSED
        return cls(
            state=state,
            failure_count=max(0, int(data.get("failure_count", 0))),
            last_failure_time=float(data.get("last_failure_time", 0.0)),
            next_retry_time=float(data.get("next_retry_time", 0.0)),
        )


@dataclass
class CircuitStatus:
    """Snapshot of an endpoint's health for callers."""

    endpoint_id: str
    state: CircuitState
    failure_count: int
    healthy: bool
    retry_after_seconds: int

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data


class CircuitBreakerStore:
    """Loads and saves breaker state under ``circuit_breaker_<endpoint_id>``."""

    KEY_PREFIX = "circuit_breaker_"

    def __init__(self, store: KVStore, ttl_seconds: int = 3600):
        self._kv = JsonKV(store)
        self.ttl_seconds = ttl_seconds

    def key_for(self, endpoint_id: str) -> str:
        return f"{self.KEY_PREFIX}{endpoint_id}"

    async def load(self, endpoint_id: str) -> CircuitBreakerState:
        """Return persisted state, or a fresh CLOSED state if none is stored."""
        data = await self._kv.get(self.key_for(endpoint_id))
        if is_missing(data) or not isinstance(data, dict):
            return CircuitBreakerState()
        return CircuitBreakerState.from_dict(data)

    async def save(self, endpoint_id: str, state: CircuitBreakerState) -> None:
        await self._kv.put(self.key_for(endpoint_id), state.to_dict(), self.ttl_seconds)

    async def delete(self, endpoint_id: str) -> None:
        await self._kv.delete(self.key_for(endpoint_id))


class CircuitBreaker:
    """Circuit breaker guarding calls to upstream endpoints.

    One instance serves every endpoint; state lives in the store keyed by
    endpoint id.

    Usage:
        breaker = CircuitBreaker(CircuitBreakerStore(kv))
        quotes = await breaker.execute("cmc_quotes", fetch_quotes)
    """

    def __init__(
        self,
        store: CircuitBreakerStore,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize circuit breaker.

        Args:
            store: Persistence for per-endpoint state
            config: Circuit breaker configuration
            clock: Wall-clock source in epoch seconds
        """
        self.store = store
        self.config = config or CircuitBreakerConfig()
        self._clock = clock

    async def execute(self, endpoint_id: str, op: Callable[[], Awaitable[T]]) -> T:
        """Run ``op`` through the breaker for ``endpoint_id``.

        Args:
            endpoint_id: Upstream endpoint identifier
            op: Zero-argument coroutine function to protect

        Returns:
            The value returned by ``op``

        Raises:
            CircuitOpenError: Circuit is open and the recovery time has not passed
            Exception: Whatever ``op`` raised (recorded as a failure)
        """
        state = await self.store.load(endpoint_id)
        now = self._clock()

        if state.state == CircuitState.OPEN:
            if now < state.next_retry_time:
                retry_after = max(1, math.ceil(state.next_retry_time - now))
                circuit_rejections_total.inc(endpoint=endpoint_id)
                raise CircuitOpenError(endpoint_id, retry_after)

            self._transition(endpoint_id, state, CircuitState.HALF_OPEN)
            logger.info(f"Circuit {endpoint_id} entering HALF_OPEN for recovery test")
            await self.store.save(endpoint_id, state)

        try:
            result = await op()
        except Exception as e:
            if classify(e) == ErrorKind.FATAL and state.state != CircuitState.HALF_OPEN:
                # Request-level errors say nothing about upstream health,
                # but a failed recovery probe always reopens
                raise
            await self._record_failure(endpoint_id, state, e)
            raise

        await self._record_success(endpoint_id, state)
        return result

    async def _record_success(self, endpoint_id: str, state: CircuitBreakerState) -> None:
        if state.state == CircuitState.CLOSED and state.failure_count == 0:
            return

        if state.state != CircuitState.CLOSED:
            self._transition(endpoint_id, state, CircuitState.CLOSED)
            logger.info(f"Circuit {endpoint_id} CLOSED - upstream recovered")

        state.failure_count = 0
        state.last_failure_time = 0.0
        state.next_retry_time = 0.0
        await self.store.save(endpoint_id, state)

    async def _record_failure(
        self,
        endpoint_id: str,
        state: CircuitBreakerState,
        error: Exception,
    ) -> None:
        now = self._clock()
        state.failure_count += 1
        state.last_failure_time = now

        should_open = (
            state.state == CircuitState.HALF_OPEN
            or state.failure_count >= self.config.failure_threshold
        )
        if should_open:
            if state.state != CircuitState.OPEN:
                self._transition(endpoint_id, state, CircuitState.OPEN)
            state.next_retry_time = now + self.config.recovery_timeout
            logger.warning(
                f"Circuit {endpoint_id} OPENED after {state.failure_count} failures "
                f"(last: {error}); retry in {self.config.recovery_timeout:.0f}s"
            )

        await self.store.save(endpoint_id, state)

    def _transition(
        self,
        endpoint_id: str,
        state: CircuitBreakerState,
        new_state: CircuitState,
    ) -> None:
        state.state = new_state
        circuit_transitions_total.inc(endpoint=endpoint_id, to_state=new_state.value)
        circuit_state.set(_STATE_GAUGE[new_state.value], endpoint=endpoint_id)

    async def get_status(self, endpoint_id: str) -> CircuitStatus:
        """Get an endpoint's breaker status without changing it."""
        state = await self.store.load(endpoint_id)
        now = self._clock()

        retry_after = 0
        if state.state == CircuitState.OPEN and state.next_retry_time > now:
            retry_after = math.ceil(state.next_retry_time - now)

        healthy = (
            state.state == CircuitState.CLOSED
            and state.failure_count < self.config.degraded_failure_count
        )
        return CircuitStatus(
            endpoint_id=endpoint_id,
            state=state.state,
            failure_count=state.failure_count,
            healthy=healthy,
            retry_after_seconds=retry_after,
        )

    async def reset(self, endpoint_id: str) -> None:
        """Manually reset an endpoint's breaker to CLOSED."""
        await self.store.delete(endpoint_id)
        circuit_state.set(_STATE_GAUGE[CircuitState.CLOSED.value], endpoint=endpoint_id)
        logger.info(f"Circuit {endpoint_id} manually reset")
