"""Per-key token bucket used to throttle paste creation.

Buckets live in memory for the lifetime of the process and are refilled lazily
on each check. Every key has its own lock, so unrelated clients never wait on
each other.
"""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field


@dataclass
class Bucket:
    tokens: float
    last_refill: float  # seconds, from the limiter's clock
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    retired: bool = False


class TokenBucketLimiter:
    def __init__(
        self,
        capacity: int,
        refill_per_minute: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if refill_per_minute < 0:
            raise ValueError("refill_per_minute cannot be negative")
        self.capacity = capacity
        self.refill_per_minute = refill_per_minute
        self._clock = clock
        self._buckets: dict[str, Bucket] = {}
        self._registry_lock = threading.Lock()

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._buckets)

    def _bucket(self, key: str) -> Bucket:
        bucket = self._buckets.get(key)
        if bucket is not None:
            return bucket
        with self._registry_lock:
            # setdefault so two first requests for a key share one bucket
            return self._buckets.setdefault(
                key, Bucket(tokens=float(self.capacity), last_refill=self._clock())
            )

    def _refilled(self, bucket: Bucket, now: float) -> float:
        elapsed_minutes = max(0.0, now - bucket.last_refill) / 60.0
        return min(float(self.capacity), bucket.tokens + elapsed_minutes * self.refill_per_minute)

    def allow(self, key: str) -> bool:
        """Take one token from ``key``'s bucket. Returns False when empty."""
        while True:
            bucket = self._bucket(key)
            with bucket.lock:
                if bucket.retired:
                    # Swept between lookup and lock; a fresh bucket replaces it
                    continue
                now = self._clock()
                bucket.tokens = self._refilled(bucket, now)
                bucket.last_refill = now
                if bucket.tokens >= 1.0:
                    bucket.tokens -= 1.0
                    return True
                return False

    def tokens(self, key: str) -> float:
        """Current (unrefilled) balance for ``key``, for diagnostics and tests."""
        bucket = self._buckets.get(key)
        if bucket is None:
            return float(self.capacity)
        with bucket.lock:
            return bucket.tokens

    def sweep_idle(self) -> int:
        """
        Drop buckets that have refilled to capacity. Returns the number removed.

        A full bucket behaves exactly like a missing one, so forgetting it is
        invisible to the client.
        """
        now = self._clock()
        removed = 0
        with self._registry_lock:
            for key, bucket in list(self._buckets.items()):
                with bucket.lock:
                    if self._refilled(bucket, now) >= self.capacity:
                        bucket.retired = True
                        del self._buckets[key]
                        removed += 1
        return removed
