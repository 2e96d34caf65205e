"""Sliding-window rate limiter for downstream weather API calls.

Excess calls are rejected with a retryable RateLimitExceededError rather
than queued or delayed.
"""
from __future__ import annotations

import logging
import time
from collections import deque
from typing import Callable, Deque, Optional

from ..exceptions import RateLimitExceededError

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """Tracks request timestamps in a sliding window."""

    def __init__(
        self,
        max_requests: int = 60,
        window_seconds: float = 60.0,
        name: str = "weather_api",
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Args:
            max_requests: Max requests allowed per window
            window_seconds: Window length in seconds
            name: Label used in logs and errors
            clock: Time source (seconds), injectable for tests
        """
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.name = name
        self._clock = clock or time.time
        # Timestamps (seconds since epoch) of recent accepted requests
        self._window: Deque[float] = deque()
        self.rejected = 0

    def _cleanup_window(self, current_time: float) -> None:
        """Remove timestamps outside the sliding window."""
        cutoff = current_time - self.window_seconds
        while self._window and self._window[0] <= cutoff:
            self._window.popleft()

    def retry_after(self) -> float:
        """Seconds until the oldest request leaves the window (0 if ready now)."""
        now = self._clock()
        self._cleanup_window(now)
        if len(self._window) < self.max_requests:
            return 0.0
        return max(0.0, (self._window[0] + self.window_seconds) - now)

    def acquire(self, api_id: Optional[str] = None) -> None:
        """
        Record a request or reject it.

        Raises:
            RateLimitExceededError: The window is full
        """
        now = self._clock()
        self._cleanup_window(now)

        if len(self._window) >= self.max_requests:
            self.rejected += 1
            wait = (self._window[0] + self.window_seconds) - now
            logger.warning(
                "%s rate limit reached (%d/%d per %.0fs), retry in %.1fs",
                self.name, len(self._window), self.max_requests, self.window_seconds, wait,
            )
            raise RateLimitExceededError(
                f"Rate limit exceeded for {self.name}",
                api_id=api_id,
                retry_after=wait,
            )

        self._window.append(now)

    @property
    def current_usage(self) -> int:
        self._cleanup_window(self._clock())
        return len(self._window)

    def reset(self) -> None:
        self._window.clear()
        self.rejected = 0
