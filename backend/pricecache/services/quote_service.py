# backend/pricecache/services/quote_service.py
"""
Quote snapshot service with a short-lived Redis cache.

Quote snapshots (price, change, change %) for a set of symbols are cached as
one JSON entry keyed by the sorted symbol list, so the same basket asked for
in any order hits the same entry.

Cache failures never fail a request: a broken Redis means every call goes
to the rate-limited client. Upstream failures propagate.

Usage:
    service = QuoteService(client, redis_client)
    quotes = service.get_quotes(["msft", "AAPL", "aapl"])
"""

import json
import logging

import redis

from pricecache.services.constants import QUOTE_CACHE_KEY
from pricecache.services.market_data.base import QuoteSnapshot
from pricecache.services.market_data.client import RateLimitedMarketDataClient

logger = logging.getLogger(__name__)


def normalize_symbols(symbols: list[str]) -> list[str]:
    """Strip, upper-case and de-duplicate symbols, keeping first-seen order."""
    seen: dict[str, None] = {}
    for symbol in symbols:
        cleaned = (symbol or "").strip().upper()
        if cleaned:
            seen.setdefault(cleaned, None)
    return list(seen)


class QuoteService:
    """Cached access to upstream quote snapshots."""

    def __init__(
            self,
            client: RateLimitedMarketDataClient,
            redis_client: redis.Redis | None = None,
            ttl_seconds: int = 900,
    ) -> None:
        self._client = client
        self._redis = redis_client
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def cache_key(symbols: list[str]) -> str:
        return QUOTE_CACHE_KEY.format(symbols=",".join(sorted(symbols)))

    def get_quotes(self, symbols: list[str]) -> list[QuoteSnapshot]:
        """
        Get quote snapshots for symbols.

        Returns:
            Snapshots for the symbols Yahoo recognized ([] for no symbols)

        Raises:
            MarketDataError: Upstream fetch failed on a cache miss
        """
        normalized = normalize_symbols(symbols)
        if not normalized:
            return []

        key = self.cache_key(normalized)

        cached = self._read_cache(key)
        if cached is not None:
            logger.debug(f"Quote cache hit for {key}")
            return cached

        logger.debug(f"Quote cache miss for {key}")
        quotes = self._client.fetch_quotes(normalized)
        self._write_cache(key, quotes)
        return quotes

    def _read_cache(self, key: str) -> list[QuoteSnapshot] | None:
        if self._redis is None:
            return None
        try:
            raw = self._redis.get(key)
            if raw is None:
                return None
            return [QuoteSnapshot.from_dict(item) for item in json.loads(raw)]
        except redis.RedisError as e:
            logger.warning(f"Quote cache read failed for {key}: {e}")
        except (ValueError, TypeError, KeyError) as e:
            logger.warning(f"Discarding unreadable quote cache entry {key}: {e}")
        return None

    def _write_cache(self, key: str, quotes: list[QuoteSnapshot]) -> None:
        if self._redis is None:
            return
        try:
            payload = json.dumps([quote.to_dict() for quote in quotes])
            self._redis.setex(key, self.ttl_seconds, payload)
        except redis.RedisError as e:
            logger.warning(f"Quote cache write failed for {key}: {e}")
