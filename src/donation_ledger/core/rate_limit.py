import threading
import time
from dataclasses import dataclass
from typing import Callable, Protocol

from donation_ledger.data_access.dynamodb import DynamoDataAccess


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after_seconds: float = 0.0


class RateLimitStore(Protocol):
    def hit(self, key: str, window_seconds: int, now: float) -> tuple[int, float]:
        """Count one request for key; returns (requests in window, window reset time)."""
        ...


class InMemoryRateLimitStore:
    """Process-local buckets; only correct for a single instance."""

    def __init__(self):
        self._buckets: dict[str, tuple[int, float]] = {}
        self._lock = threading.Lock()
        self._next_sweep = 0.0

    def __len__(self) -> int:
        return len(self._buckets)

    def _sweep(self, now: float, window_seconds: int) -> None:
        expired = [key for key, (_, reset_at) in self._buckets.items() if reset_at <= now]
        for key in expired:
            del self._buckets[key]
        self._next_sweep = now + window_seconds

    def hit(self, key: str, window_seconds: int, now: float) -> tuple[int, float]:
        with self._lock:
            if now >= self._next_sweep:
                self._sweep(now, window_seconds)
            count, reset_at = self._buckets.get(key, (0, 0.0))
            if reset_at <= now:
                count, reset_at = 0, now + window_seconds
            count += 1
            self._buckets[key] = (count, reset_at)
            return count, reset_at


class DynamoRateLimitStore:
    """Fixed windows counted in DynamoDB so every instance shares them."""

    def __init__(self, data_access: DynamoDataAccess):
        self.data_access = data_access

    def hit(self, key: str, window_seconds: int, now: float) -> tuple[int, float]:
        window_start = int(now // window_seconds) * window_seconds
        reset_at = window_start + window_seconds
        # Items linger one extra window before the table TTL removes them.
        count = self.data_access.increment_counter(key, window_start, reset_at + window_seconds)
        return count, float(reset_at)


class RateLimiter:
    def __init__(
        self,
        store: RateLimitStore,
        limit: int = 30,
        window_seconds: int = 60,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.limit = limit
        self.window_seconds = window_seconds
        self.clock = clock

    def check(self, key: str) -> RateLimitDecision:
        now = self.clock()
        count, reset_at = self.store.hit(key, self.window_seconds, now)
        if count > self.limit:
            return RateLimitDecision(allowed=False, retry_after_seconds=max(0.0, reset_at - now))
        return RateLimitDecision(allowed=True)
