"""Rate limiting for external intelligence services."""

import threading
import time
from dataclasses import dataclass, field
from typing import Callable


@dataclass
class RateLimitCounter:
    """Requests made in the current window and when that window resets."""

    count: int = 0
    window_reset_time: float = 0.0


@dataclass
class FixedWindowRateLimiter:
    """
    Fixed-window quota for one service.

    At most `limit` requests are admitted per `window_seconds`; the window
    restarts on the first request after it has elapsed.
    """

    limit: int = 60
    window_seconds: float = 60.0
    clock: Callable[[], float] = time.monotonic
    _counter: RateLimitCounter = field(default_factory=RateLimitCounter, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    def try_acquire(self) -> bool:
        """Consume one request from the quota; False when exhausted."""
        with self._lock:
            now = self.clock()
            if now >= self._counter.window_reset_time:
                self._counter = RateLimitCounter(count=0, window_reset_time=now + self.window_seconds)

            if self._counter.count >= self.limit:
                return False

            self._counter.count += 1
            return True

    def wait_time(self) -> float:
        """Seconds until the current window resets (0 if a request can proceed)."""
        with self._lock:
            now = self.clock()
            if now >= self._counter.window_reset_time or self._counter.count < self.limit:
                return 0.0
            return self._counter.window_reset_time - now


class RateLimiterRegistry:
    """Registry of rate limiters for different services."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._limiters: dict[str, FixedWindowRateLimiter] = {}
        self._clock = clock
        self._lock = threading.Lock()

    def get(self, service: str, limit: int = 60, window_seconds: float = 60.0) -> FixedWindowRateLimiter:
        """Get or create the rate limiter for a service."""
        with self._lock:
            if service not in self._limiters:
                self._limiters[service] = FixedWindowRateLimiter(
                    limit=limit,
                    window_seconds=window_seconds,
                    clock=self._clock,
                )
            return self._limiters[service]
