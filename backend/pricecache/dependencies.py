# backend/pricecache/dependencies.py
"""
Shared service instances.

This module provides singleton service instances that are shared across
all requests and threads. Sharing matters here: the rate governor's budget,
the backfill lock and the quote cache only work if every caller goes
through the same instances (or, with Redis, the same keys).

Services are lazily initialized on first use to avoid import-time side
effects (no Redis connection is opened until something needs it).

With REDIS_URL unset the service runs in single-process mode:
- in-process rate counter and backfill lock
- in-process "no older data" markers
- no quote cache

Usage:
    from pricecache.dependencies import get_chart_data_service

    service = get_chart_data_service()
    result = service.resolve(db, "AAPL", "1d", start, end)
"""

import logging
from functools import lru_cache

import redis

from pricecache.config import settings
from pricecache.services.backfill_lock import (
    BackfillLock,
    LocalBackfillLock,
    RedisBackfillLock,
)
from pricecache.services.chart_data_service import ChartDataService
from pricecache.services.chart_store import ChartStore
from pricecache.services.market_data.client import RateLimitedMarketDataClient
from pricecache.services.market_data.rate_governor import (
    LocalWindowCounter,
    RateGovernor,
    RedisWindowCounter,
    WindowCounter,
)
from pricecache.services.market_data.yahoo import YahooFinanceProvider
from pricecache.services.negative_cache import (
    LocalNoOlderDataCache,
    NoOlderDataCache,
    NoOlderDataMarkers,
)
from pricecache.services.quote_service import QuoteService

logger = logging.getLogger(__name__)


# =============================================================================
# SINGLETON INSTANCES
# =============================================================================
# Using @lru_cache ensures the function returns the same instance on every call
#
# Order matters: define dependencies before dependents
# 1. get_redis_client, get_market_data_provider (no deps)
# 2. get_rate_governor (depends on redis)
# 3. get_market_data_client (depends on provider, governor)
# 4. get_chart_store, get_backfill_lock, get_negative_cache
# 5. get_chart_data_service, get_quote_service


@lru_cache(maxsize=1)
def get_redis_client() -> redis.Redis | None:
    """
    Get the shared Redis client, or None when REDIS_URL is not set.

    redis-py connects lazily, so this never fails on an unreachable server;
    each component handles RedisError itself.
    """
    if not settings.is_redis_configured:
        logger.info("REDIS_URL not set, running with in-process coordination")
        return None

    logger.debug("Initializing singleton Redis client")
    return redis.Redis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_timeout=2,
        socket_connect_timeout=2,
    )


@lru_cache(maxsize=1)
def get_market_data_provider() -> YahooFinanceProvider:
    logger.debug("Initializing singleton YahooFinanceProvider")
    return YahooFinanceProvider(timeout=settings.upstream_timeout_seconds)


@lru_cache(maxsize=1)
def get_rate_governor() -> RateGovernor:
    """
    Get the singleton rate governor.

    Backed by the Redis counter when available so all processes share one
    budget; otherwise by an in-process counter.
    """
    client = get_redis_client()
    counter: WindowCounter = (
        RedisWindowCounter(client) if client is not None else LocalWindowCounter()
    )
    return RateGovernor(
        counter,
        max_requests=settings.upstream_max_requests_per_window,
        window_seconds=settings.upstream_rate_window_seconds,
        cooldown_seconds=settings.upstream_cooldown_seconds,
        degraded_delay_seconds=settings.upstream_degraded_delay_seconds,
        max_wait_cycles=settings.upstream_max_wait_cycles,
        name=get_market_data_provider().name,
    )


@lru_cache(maxsize=1)
def get_market_data_client() -> RateLimitedMarketDataClient:
    logger.debug("Initializing singleton RateLimitedMarketDataClient")
    return RateLimitedMarketDataClient(
        provider=get_market_data_provider(),
        governor=get_rate_governor(),
        max_attempts=settings.upstream_max_attempts,
        base_delay_seconds=settings.upstream_retry_base_delay_seconds,
    )


@lru_cache(maxsize=1)
def get_chart_store() -> ChartStore:
    return ChartStore()


@lru_cache(maxsize=1)
def get_backfill_lock() -> BackfillLock:
    client = get_redis_client()
    if client is None:
        return LocalBackfillLock(ttl_seconds=settings.backfill_lock_ttl_seconds)
    return RedisBackfillLock(client, ttl_seconds=settings.backfill_lock_ttl_seconds)


@lru_cache(maxsize=1)
def get_negative_cache() -> NoOlderDataMarkers:
    client = get_redis_client()
    if client is None:
        return LocalNoOlderDataCache(ttl_seconds=settings.no_older_data_ttl_seconds)
    return NoOlderDataCache(client, ttl_seconds=settings.no_older_data_ttl_seconds)


@lru_cache(maxsize=1)
def get_chart_data_service() -> ChartDataService:
    """Get the singleton ChartDataService wired to the shared collaborators."""
    logger.debug("Initializing singleton ChartDataService")
    return ChartDataService(
        client=get_market_data_client(),
        store=get_chart_store(),
        lock=get_backfill_lock(),
        negative_cache=get_negative_cache(),
    )


@lru_cache(maxsize=1)
def get_quote_service() -> QuoteService:
    logger.debug("Initializing singleton QuoteService")
    return QuoteService(
        client=get_market_data_client(),
        redis_client=get_redis_client(),
        ttl_seconds=settings.quote_cache_ttl_seconds,
    )


def reset_singletons() -> None:
    """Drop every cached instance (tests, or after changing settings)."""
    for factory in (
            get_redis_client,
            get_market_data_provider,
            get_rate_governor,
            get_market_data_client,
            get_chart_store,
            get_backfill_lock,
            get_negative_cache,
            get_chart_data_service,
            get_quote_service,
    ):
        factory.cache_clear()
