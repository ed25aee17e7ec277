# backend/pricecache/services/negative_cache.py
"""
Negative-result cache for older-edge backfills.

When an older-edge fetch returns nothing, the instrument has no history
before the stored range (e.g., listing date). A short-lived marker records
that so repeated requests for earlier dates do not hit Yahoo again until the
marker expires.

Two implementations:
- NoOlderDataCache: Redis keys with a TTL, shared by all processes. Redis
  failures read as "not marked" and marking becomes a no-op, so the worst
  case is a redundant upstream fetch.
- LocalNoOlderDataCache: in-process, for single-process deployments.
"""

import logging
import threading
import time
from typing import Callable, Protocol

import redis

from pricecache.services.constants import NO_OLDER_DATA_KEY, SENTINEL_VALUE

logger = logging.getLogger(__name__)


class NoOlderDataMarkers(Protocol):
    """Per-series "no older data exists" markers."""

    def has_no_older_data(self, symbol: str, interval: str) -> bool:
        ...

    def mark_no_older_data(self, symbol: str, interval: str) -> None:
        ...


class NoOlderDataCache:
    """Markers stored in Redis with a TTL."""

    def __init__(self, client: redis.Redis, ttl_seconds: int = 86400) -> None:
        self._redis = client
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def key_for(symbol: str, interval: str) -> str:
        return NO_OLDER_DATA_KEY.format(symbol=symbol, interval=interval)

    def has_no_older_data(self, symbol: str, interval: str) -> bool:
        try:
            return self._redis.get(self.key_for(symbol, interval)) is not None
        except redis.RedisError as e:
            logger.warning(f"No-older-data check failed for {symbol}:{interval}: {e}")
            return False

    def mark_no_older_data(self, symbol: str, interval: str) -> None:
        try:
            self._redis.setex(self.key_for(symbol, interval), self.ttl_seconds, SENTINEL_VALUE)
            logger.info(
                f"No data older than stored range for {symbol}:{interval}; "
                f"skipping older backfills for {self.ttl_seconds}s"
            )
        except redis.RedisError as e:
            logger.warning(f"Failed to mark no-older-data for {symbol}:{interval}: {e}")


class LocalNoOlderDataCache:
    """
    In-process markers with the same TTL semantics as the Redis cache.

    The clock is injectable so tests can expire a marker.
    """

    def __init__(self, ttl_seconds: int = 86400, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._guard = threading.Lock()
        self._expires_at: dict[tuple[str, str], float] = {}

    def has_no_older_data(self, symbol: str, interval: str) -> bool:
        key = (symbol, interval)
        with self._guard:
            expires_at = self._expires_at.get(key)
            if expires_at is None:
                return False
            if expires_at <= self._clock():
                del self._expires_at[key]
                return False
            return True

    def mark_no_older_data(self, symbol: str, interval: str) -> None:
        with self._guard:
            self._expires_at[(symbol, interval)] = self._clock() + self.ttl_seconds
        logger.info(
            f"No data older than stored range for {symbol}:{interval}; "
            f"skipping older backfills for {self.ttl_seconds}s"
        )
