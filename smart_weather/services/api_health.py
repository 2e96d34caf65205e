"""
API Health Tracking

A circuit breaker per backend API records call outcomes and feeds the
observed health into RoutingContext:

- CLOSED    -> healthy
- HALF_OPEN -> degraded
- OPEN      -> unavailable

Only service-side failures count against an API. Client-side errors (bad
or unsupported location) say nothing about the API's health.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, TypeVar

from ..exceptions import WeatherClientError, WeatherUnavailableError
from ..models import HealthStatus, RoutingContext

logger = logging.getLogger(__name__)

T = TypeVar('T')


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Too many failures, rejecting requests
    HALF_OPEN = "half_open"  # Testing if service recovered


_STATE_HEALTH = {
    CircuitState.CLOSED: HealthStatus.HEALTHY,
    CircuitState.HALF_OPEN: HealthStatus.DEGRADED,
    CircuitState.OPEN: HealthStatus.UNAVAILABLE,
}


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""
    failure_threshold: int = 5  # Failures before opening
    recovery_timeout_seconds: float = 60  # Time before attempting recovery
    success_threshold: int = 2  # Successes in half-open before closing
    window_size_seconds: float = 300  # Time window for counting failures


class CircuitBreaker:
    """
    Circuit breaker for one backend API.

    - CLOSED: Normal operation, requests pass through
    - OPEN: Too many failures, requests fail immediately
    - HALF_OPEN: Recovery timeout elapsed, probing with live requests
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock or time.monotonic

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at: Optional[float] = None
        self._window_start: Optional[float] = None

    @property
    def state(self) -> CircuitState:
        """Current state; an expired OPEN circuit reads as HALF_OPEN."""
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if self._clock() - self._opened_at >= self.config.recovery_timeout_seconds:
                self._transition_to_half_open()
                logger.info("Circuit breaker '%s' transitioning to HALF_OPEN", self.name)
        return self._state

    @property
    def health(self) -> HealthStatus:
        return _STATE_HEALTH[self.state]

    def _reset_window(self) -> None:
        self._window_start = self._clock()
        self._failure_count = 0

    def _should_reset_window(self) -> bool:
        if self._window_start is None:
            return True
        return self._clock() - self._window_start > self.config.window_size_seconds

    def record_success(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self.config.success_threshold:
                self._transition_to_closed()
                logger.info("Circuit breaker '%s' recovered, CLOSED", self.name)
        else:
            self._failure_count = 0

    def record_failure(self) -> None:
        if self._should_reset_window():
            self._reset_window()
        self._failure_count += 1

        state = self.state
        if state == CircuitState.CLOSED and self._failure_count >= self.config.failure_threshold:
            self._transition_to_open()
            logger.warning(
                "Circuit breaker '%s' OPEN after %d failures, rejecting for %.0fs",
                self.name, self._failure_count, self.config.recovery_timeout_seconds,
            )
        elif state == CircuitState.HALF_OPEN:
            self._transition_to_open()
            logger.warning("Circuit breaker '%s' back to OPEN, recovery failed", self.name)

    def _transition_to_open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._success_count = 0

    def _transition_to_half_open(self) -> None:
        self._state = CircuitState.HALF_OPEN
        self._success_count = 0

    def _transition_to_closed(self) -> None:
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at = None
        self._reset_window()

    def reset(self) -> None:
        self._transition_to_closed()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
        }


class ApiHealthTracker:
    """Owns one breaker and a bounded latency history per API id."""

    HISTORY_SIZE = 20

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.config = config or CircuitBreakerConfig()
        self._clock = clock or time.monotonic
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._latencies: Dict[str, Deque[float]] = {}

    def breaker(self, api_id: str) -> CircuitBreaker:
        if api_id not in self._breakers:
            self._breakers[api_id] = CircuitBreaker(api_id, self.config, self._clock)
        return self._breakers[api_id]

    def health(self, api_id: str) -> HealthStatus:
        return self.breaker(api_id).health

    def record_success(self, api_id: str, elapsed_ms: float) -> None:
        self.breaker(api_id).record_success()
        history = self._latencies.setdefault(api_id, deque(maxlen=self.HISTORY_SIZE))
        history.append(elapsed_ms)

    def record_failure(self, api_id: str, error: Optional[Exception] = None) -> None:
        if isinstance(error, WeatherClientError):
            return
        self.breaker(api_id).record_failure()

    async def call(self, api_id: str, func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        """
        Execute an API call through its breaker, recording outcome and latency.

        Raises:
            WeatherUnavailableError: If the breaker is open
        """
        if self.health(api_id) == HealthStatus.UNAVAILABLE:
            raise WeatherUnavailableError(f"Circuit for '{api_id}' is open", api_id=api_id)

        started = time.perf_counter()
        try:
            result = await func(*args, **kwargs)
        except Exception as exc:
            self.record_failure(api_id, exc)
            raise
        self.record_success(api_id, (time.perf_counter() - started) * 1000)
        return result

    def build_context(self, override: Optional[RoutingContext] = None) -> RoutingContext:
        """Observed health and latency, with caller-supplied values taking precedence."""
        health = {api_id: b.health for api_id, b in self._breakers.items()}
        history = {api_id: list(h) for api_id, h in self._latencies.items()}
        usage: Dict[str, int] = {}
        if override is not None:
            health.update(override.api_health)
            history.update(override.response_time_history)
            usage.update(override.current_usage)
        return RoutingContext(api_health=health, response_time_history=history, current_usage=usage)

    def reset_all(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()
        self._latencies.clear()
        logger.info("Reset %d circuit breakers", len(self._breakers))

    def get_all_stats(self) -> Dict[str, Dict[str, Any]]:
        return {api_id: b.get_stats() for api_id, b in self._breakers.items()}
