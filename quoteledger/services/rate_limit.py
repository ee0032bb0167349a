"""
Fixed-window rate limiting for public (unauthenticated) client actions.

Not part of the agreement core: the limiter and its counter store are owned
by the application object (app.state) and handed to routes as a dependency.
Swap InMemoryCounterStore for a shared store when running several workers.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Protocol, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_at: float


class CounterStore(Protocol):
    def hit(self, key: str, window_seconds: float, now: float) -> Tuple[int, float]:
        """Count one request for key; return (count in window, window reset time)."""
        ...


class InMemoryCounterStore:
    """Per-process counters. Expired windows are pruned once the map grows large."""

    PRUNE_THRESHOLD = 10_000

    def __init__(self):
        self._windows: Dict[str, Tuple[int, float]] = {}
        self._lock = threading.Lock()

    def hit(self, key: str, window_seconds: float, now: float) -> Tuple[int, float]:
        with self._lock:
            if len(self._windows) > self.PRUNE_THRESHOLD:
                self._windows = {k: v for k, v in self._windows.items() if v[1] >= now}

            count, reset_at = self._windows.get(key, (0, 0.0))
            if reset_at < now:
                count, reset_at = 0, now + window_seconds
            count += 1
            self._windows[key] = (count, reset_at)
            return count, reset_at


class RateLimiter:
    def __init__(
        self,
        store: CounterStore,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock

    def check(self, client_ip: str, action: str) -> RateLimitDecision:
        key = f"{client_ip or 'unknown'}:{action}"
        count, reset_at = self.store.hit(key, self.window_seconds, self.clock())
        if count > self.max_requests:
            logger.warning("Rate limit exceeded for %s", key)
            return RateLimitDecision(allowed=False, remaining=0, reset_at=reset_at)
        return RateLimitDecision(allowed=True, remaining=self.max_requests - count, reset_at=reset_at)
