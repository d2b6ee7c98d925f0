"""Token bucket rate limiter shared by all registry requests."""

import threading
import time
from typing import Callable


class RateLimiter:
    """Token bucket admitting ``rate`` requests per second.

    Tokens are reserved under the lock and the caller sleeps outside of it,
    so concurrent callers queue up behind each other without spinning.
    """

    def __init__(self, rate: float, capacity: int = 1,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        if rate <= 0:
            raise ValueError("rate must be positive")
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.rate = float(rate)
        self.capacity = capacity
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._tokens = float(capacity)
        self._last = clock()
        self.issued = 0

    def _reserve(self) -> float:
        with self._lock:
            now = self._clock()
            elapsed = max(0.0, now - self._last)
            self._last = now
            self._tokens = min(float(self.capacity), self._tokens + elapsed * self.rate)
            self._tokens -= 1.0
            self.issued += 1
            if self._tokens >= 0:
                return 0.0
            return -self._tokens / self.rate

    def acquire(self) -> float:
        """Block until one token is available; returns seconds waited."""
        wait = self._reserve()
        if wait > 0:
            self._sleep(wait)
        return wait
