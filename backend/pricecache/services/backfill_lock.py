# backend/pricecache/services/backfill_lock.py
"""
Advisory per-series backfill lock.

A lock means "someone is already fetching the missing edge of this series".
Callers that fail to acquire it skip the upstream fetch and serve what is
already stored; they never wait for the holder.

Two implementations:
- RedisBackfillLock: SET NX with a TTL, shared by all processes. The TTL
  bounds how long a crashed holder can block other fillers.
- LocalBackfillLock: in-process, for single-process deployments and tests.

The lock is advisory, not a correctness guarantee. Redis failures are
fail-open: acquisition reports success so backfill still happens, and
duplicate fetches are absorbed by the store's idempotent upserts.

Usage:
    lock = RedisBackfillLock(redis_client, ttl_seconds=300)

    if lock.try_acquire("AAPL", "1d"):
        try:
            ...  # fetch and persist
        finally:
            lock.release("AAPL", "1d")
"""

import logging
import threading
import time
from typing import Callable, Protocol

import redis

from pricecache.services.constants import BACKFILL_LOCK_KEY, SENTINEL_VALUE

logger = logging.getLogger(__name__)


class BackfillLock(Protocol):
    """Advisory lock keyed by (symbol, interval)."""

    def try_acquire(self, symbol: str, interval: str) -> bool:
        """Try to take the lock without waiting."""
        ...

    def release(self, symbol: str, interval: str) -> None:
        """Release the lock. Releasing an unheld lock is a no-op."""
        ...


class RedisBackfillLock:
    """Backfill lock stored in Redis with a TTL."""

    def __init__(self, client: redis.Redis, ttl_seconds: int = 300) -> None:
        self._redis = client
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def key_for(symbol: str, interval: str) -> str:
        return BACKFILL_LOCK_KEY.format(symbol=symbol, interval=interval)

    def try_acquire(self, symbol: str, interval: str) -> bool:
        key = self.key_for(symbol, interval)
        try:
            acquired = self._redis.set(key, SENTINEL_VALUE, nx=True, ex=self.ttl_seconds)
        except redis.RedisError as e:
            logger.warning(f"Backfill lock unavailable for {symbol}:{interval}, proceeding unlocked: {e}")
            return True

        if not acquired:
            logger.debug(f"Backfill lock for {symbol}:{interval} is held elsewhere")
        return bool(acquired)

    def release(self, symbol: str, interval: str) -> None:
        try:
            self._redis.delete(self.key_for(symbol, interval))
        except redis.RedisError as e:
            # The TTL will clear it
            logger.warning(f"Failed to release backfill lock for {symbol}:{interval}: {e}")


class LocalBackfillLock:
    """
    In-process backfill lock with the same TTL semantics as the Redis lock.

    The clock is injectable so tests can expire a held lock.
    """

    def __init__(self, ttl_seconds: int = 300, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._guard = threading.Lock()
        self._expires_at: dict[tuple[str, str], float] = {}

    def try_acquire(self, symbol: str, interval: str) -> bool:
        key = (symbol, interval)
        now = self._clock()
        with self._guard:
            expires_at = self._expires_at.get(key)
            if expires_at is not None and expires_at > now:
                logger.debug(f"Backfill lock for {symbol}:{interval} is held elsewhere")
                return False
            self._expires_at[key] = now + self.ttl_seconds
            return True

    def release(self, symbol: str, interval: str) -> None:
        with self._guard:
            self._expires_at.pop((symbol, interval), None)

    def is_held(self, symbol: str, interval: str) -> bool:
        with self._guard:
            expires_at = self._expires_at.get((symbol, interval))
            return expires_at is not None and expires_at > self._clock()
