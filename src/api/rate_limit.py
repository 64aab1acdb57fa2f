"""Per-actor token buckets for throttling admin test calls."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field


@dataclass
class TokenBucket:
    """Tokens refill at ``rate`` per second up to ``capacity``.

    A new bucket starts full, so a caller may burst up to capacity.
    """

    rate: float
    capacity: float
    clock: Callable[[], float] = time.monotonic

    _tokens: float = field(default=0.0, init=False)
    _last_update: float = field(default=0.0, init=False)

    def __post_init__(self) -> None:
        self._tokens = self.capacity
        self._last_update = self.clock()

    def _refill(self) -> None:
        now = self.clock()
        elapsed = now - self._last_update
        self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
        self._last_update = now

    def acquire(self, tokens: float = 1) -> bool:
        self._refill()
        if self._tokens >= tokens:
            self._tokens -= tokens
            return True
        return False

    def is_full(self) -> bool:
        self._refill()
        return self._tokens >= self.capacity

    def wait_time(self, tokens: float = 1) -> float:
        """Seconds until *tokens* become available (0 if available now)."""
        self._refill()
        if self._tokens >= tokens:
            return 0.0
        return (tokens - self._tokens) / self.rate


class KeyedRateLimiter:
    """One :class:`TokenBucket` per key (e.g. per admin user id).

    Args:
        limit: Calls allowed per ``period`` seconds.
        period: Window length in seconds.
    """

    def __init__(
        self,
        limit: int,
        period: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = limit
        self.period = period
        self.clock = clock
        self._buckets: dict[str, TokenBucket] = {}
        self._lock = threading.Lock()

    def _bucket(self, key: str) -> TokenBucket:
        bucket = self._buckets.get(key)
        if bucket is None:
            # A full bucket is indistinguishable from a fresh one; drop them.
            self._buckets = {k: b for k, b in self._buckets.items() if not b.is_full()}
            bucket = TokenBucket(
                rate=self.limit / self.period, capacity=self.limit, clock=self.clock
            )
            self._buckets[key] = bucket
        return bucket

    def acquire(self, key: str) -> bool:
        with self._lock:
            return self._bucket(key).acquire()

    def retry_after(self, key: str) -> float:
        with self._lock:
            return self._bucket(key).wait_time()
