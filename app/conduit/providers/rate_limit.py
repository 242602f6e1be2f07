"""Client-side token buckets for providers with a published request quota."""

import threading
import time
from typing import Callable


class TokenBucket:
    """Continuously refilling bucket holding at most `capacity` tokens."""

    def __init__(self, capacity: int, window_seconds: float,
                 clock: Callable[[], float] = time.monotonic):
        self.capacity = capacity
        self.refill_rate = capacity / window_seconds
        self._clock = clock
        self._tokens = float(capacity)
        self._updated = clock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._updated
        if elapsed > 0:
            self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_rate)
        self._updated = now

    @property
    def available(self) -> float:
        self._refill()
        return self._tokens

    def wait_time(self) -> float:
        """Seconds until one token is available (0 when one already is)."""
        self._refill()
        if self._tokens >= 1:
            return 0.0
        return (1 - self._tokens) / self.refill_rate

    def take(self) -> None:
        self._tokens -= 1


class DualWindowLimiter:
    """Per-minute and per-hour buckets; a request needs a token from both."""

    def __init__(self, per_minute: int, per_hour: int,
                 clock: Callable[[], float] = time.monotonic):
        self.minute = TokenBucket(per_minute, 60.0, clock)
        self.hour = TokenBucket(per_hour, 3600.0, clock)
        self._lock = threading.Lock()

    def try_acquire(self) -> float:
        """Take one token from each bucket.

        Returns:
            0.0 on success, otherwise the seconds to wait before retrying.
            Nothing is consumed on failure.
        """
        with self._lock:
            wait = max(self.minute.wait_time(), self.hour.wait_time())
            if wait > 0:
                return wait
            self.minute.take()
            self.hour.take()
            return 0.0

    def remaining(self) -> tuple[int, int]:
        with self._lock:
            return int(self.minute.available), int(self.hour.available)
