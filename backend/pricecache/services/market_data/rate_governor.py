# backend/pricecache/services/market_data/rate_governor.py
"""
Shared request-rate governor for the upstream market data provider.

Yahoo throttles aggressively, so every upstream request from every caller in
every process draws from one fixed-window budget (default: 3 requests per
60 seconds). The counter lives in Redis; single-process deployments can use
the in-process counter instead.

Algorithm (per upstream request):
    1. Read the window counter.
    2. At/above the cap: sleep for the window's remaining TTL (+0.5s slack)
       and re-check. The loop is bounded by max_wait_cycles; exhausting it
       raises RateLimitError so the client's retry budget takes over.
    3. Under the cap: increment (starting the window's expiry on the first
       request), then sleep a fixed cool-down to spread bursts.

Counter store failures never block callers indefinitely: they degrade to a
short fixed delay. The cap is best-effort, not exact, during an outage.

Usage:
    governor = RateGovernor(RedisWindowCounter(redis_client))
    governor.acquire()  # blocks until a slot is available
"""

import logging
import math
import threading
import time
from typing import Callable, Protocol

import redis

from pricecache.services.constants import RATE_LIMIT_KEY, RATE_WINDOW_SLACK_SECONDS
from pricecache.services.exceptions import RateLimitError

logger = logging.getLogger(__name__)


class WindowCounter(Protocol):
    """Fixed-window counter used by RateGovernor."""

    def current(self) -> int:
        """Requests counted in the current window (0 if no window is open)."""
        ...

    def remaining_seconds(self) -> float:
        """Seconds until the current window resets (<= 0 if unknown)."""
        ...

    def increment(self, window_seconds: int) -> int:
        """Count one request, opening a new window if none is active."""
        ...


class RedisWindowCounter:
    """
    Window counter stored in Redis, shared by all processes.

    Raises redis.RedisError on connectivity problems; RateGovernor handles it.
    """

    def __init__(self, client: redis.Redis, key: str = RATE_LIMIT_KEY) -> None:
        self._redis = client
        self._key = key

    def current(self) -> int:
        value = self._redis.get(self._key)
        return int(value) if value is not None else 0

    def remaining_seconds(self) -> float:
        return float(self._redis.ttl(self._key))

    def increment(self, window_seconds: int) -> int:
        count = self._redis.incr(self._key)
        # First request of a window, or a counter that lost its expiry
        if count == 1 or self._redis.ttl(self._key) == -1:
            self._redis.expire(self._key, window_seconds)
        return count

    def reset(self) -> None:
        self._redis.delete(self._key)


class LocalWindowCounter:
    """
    In-process window counter for single-process deployments and tests.

    Thread-safe. The clock is injectable so tests can move time forward.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._count = 0
        self._window_ends_at = 0.0

    def _expire_if_due(self) -> None:
        if self._count and self._clock() >= self._window_ends_at:
            self._count = 0

    def current(self) -> int:
        with self._lock:
            self._expire_if_due()
            return self._count

    def remaining_seconds(self) -> float:
        with self._lock:
            self._expire_if_due()
            if not self._count:
                return -2.0
            return self._window_ends_at - self._clock()

    def increment(self, window_seconds: int) -> int:
        with self._lock:
            self._expire_if_due()
            if self._count == 0:
                self._window_ends_at = self._clock() + window_seconds
            self._count += 1
            return self._count

    def reset(self) -> None:
        with self._lock:
            self._count = 0
            self._window_ends_at = 0.0


class RateGovernor:
    """
    Blocks callers until the shared request budget allows another request.

    Attributes:
        max_requests: Requests allowed per window
        window_seconds: Window length in seconds
        cooldown_seconds: Fixed pause after every granted slot
        degraded_delay_seconds: Pause used when the counter is unreachable
        max_wait_cycles: Full-window waits before giving up with RateLimitError
    """

    def __init__(
            self,
            counter: WindowCounter,
            max_requests: int = 3,
            window_seconds: int = 60,
            cooldown_seconds: float = 3.0,
            degraded_delay_seconds: float = 0.5,
            max_wait_cycles: int = 10,
            sleep: Callable[[float], None] = time.sleep,
            name: str = "yahoo",
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if max_wait_cycles < 1:
            raise ValueError("max_wait_cycles must be at least 1")

        self._counter = counter
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.cooldown_seconds = cooldown_seconds
        self.degraded_delay_seconds = degraded_delay_seconds
        self.max_wait_cycles = max_wait_cycles
        self._sleep = sleep
        self._name = name

    def acquire(self) -> None:
        """
        Wait for a slot in the current window, then claim it.

        Raises:
            RateLimitError: The window stayed full for max_wait_cycles waits
        """
        waits = 0
        while True:
            try:
                count = self._counter.current()
                if count < self.max_requests:
                    self._counter.increment(self.window_seconds)
                    break
                remaining = self._counter.remaining_seconds()
            except redis.RedisError as e:
                logger.warning(
                    f"Rate limit check failed, adding safety delay of "
                    f"{self.degraded_delay_seconds}s: {e}"
                )
                self._sleep(self.degraded_delay_seconds)
                return

            if waits >= self.max_wait_cycles:
                raise RateLimitError(
                    provider=self._name,
                    retry_after=math.ceil(max(remaining, 0)) or None,
                )

            wait = (
                remaining + RATE_WINDOW_SLACK_SECONDS
                if remaining > 0
                else float(self.window_seconds)
            )
            waits += 1
            logger.info(
                f"Rate limit reached ({count}/{self.max_requests}). "
                f"Waiting {wait:.1f}s (wait {waits}/{self.max_wait_cycles})"
            )
            self._sleep(wait)

        if self.cooldown_seconds > 0:
            self._sleep(self.cooldown_seconds)
