# backend/tests/conftest.py
"""
Pytest configuration and fixtures.

This module provides shared fixtures for all tests:
- Database session fixtures (in-memory SQLite)
- Mock market data provider recording every upstream call
- fakeredis client for the Redis-backed components
- Recording fake sleep so rate limiting and backoff never really wait
- Sample data factories
"""

import os

# Set required environment variables BEFORE importing pricecache modules
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from datetime import date, timedelta
from decimal import Decimal
from typing import Callable, Iterator

import fakeredis
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from pricecache.models import Base
from pricecache.services.backfill_lock import LocalBackfillLock, RedisBackfillLock
from pricecache.services.chart_data_service import ChartDataService
from pricecache.services.chart_store import ChartStore
from pricecache.services.market_data.base import (
    MarketDataProvider,
    PricePoint,
    QuoteSnapshot,
)
from pricecache.services.market_data.client import RateLimitedMarketDataClient
from pricecache.services.market_data.rate_governor import LocalWindowCounter, RateGovernor
from pricecache.services.negative_cache import LocalNoOlderDataCache, NoOlderDataCache


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture(scope="function")
def db_engine():
    """Create an in-memory SQLite database engine for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def db(db_engine) -> Iterator[Session]:
    """Create a database session for testing."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# =============================================================================
# REDIS & TIME FIXTURES
# =============================================================================

@pytest.fixture
def fake_redis() -> fakeredis.FakeRedis:
    """In-memory Redis, fresh for each test."""
    return fakeredis.FakeRedis(decode_responses=True)


class FakeSleep:
    """
    Records requested sleeps instead of sleeping.

    An optional hook runs on every call, e.g. to expire a Redis key as if
    the requested time had passed.
    """

    def __init__(self, on_sleep: Callable[[float], None] | None = None):
        self.calls: list[float] = []
        self.on_sleep = on_sleep

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.on_sleep is not None:
            self.on_sleep(seconds)

    @property
    def total(self) -> float:
        return sum(self.calls)


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


# =============================================================================
# MOCK MARKET DATA PROVIDER
# =============================================================================

class MockMarketDataProvider(MarketDataProvider):
    """
    Mock implementation of MarketDataProvider for testing.

    Serves configured points per (symbol, interval), filtered to the
    requested range, and records every call. Errors can be queued per call
    (consumed in order) or set permanently per symbol.
    """

    def __init__(self):
        self._series: dict[tuple[str, str], list[PricePoint]] = {}
        self._quotes: dict[str, QuoteSnapshot] = {}
        self._queued_errors: list[Exception] = []
        self._symbol_errors: dict[str, Exception] = {}
        self.chart_calls: list[tuple[str, str, date, date]] = []
        self.quote_calls: list[list[str]] = []
        self.on_chart: Callable[[str, str, date, date], None] | None = None

    @property
    def name(self) -> str:
        return "mock"

    def set_series(self, symbol: str, interval: str, points: list[PricePoint]) -> None:
        """Configure the full upstream history for a series."""
        self._series[(symbol, interval)] = sorted(points, key=lambda p: p.date)

    def set_quote(self, quote: QuoteSnapshot) -> None:
        self._quotes[quote.symbol] = quote

    def queue_error(self, error: Exception, times: int = 1) -> None:
        """Raise error on the next `times` calls (any method)."""
        self._queued_errors.extend([error] * times)

    def set_symbol_error(self, symbol: str, error: Exception) -> None:
        self._symbol_errors[symbol] = error

    @property
    def chart_call_count(self) -> int:
        return len(self.chart_calls)

    def _raise_if_configured(self, symbol: str | None = None) -> None:
        if self._queued_errors:
            raise self._queued_errors.pop(0)
        if symbol is not None and symbol in self._symbol_errors:
            raise self._symbol_errors[symbol]

    def get_quotes(self, symbols: list[str]) -> list[QuoteSnapshot]:
        self.quote_calls.append(list(symbols))
        self._raise_if_configured()
        return [self._quotes[s] for s in symbols if s in self._quotes]

    def get_chart(
            self,
            symbol: str,
            interval: str,
            start_date: date,
            end_date: date,
    ) -> list[PricePoint]:
        self.chart_calls.append((symbol, interval, start_date, end_date))
        if self.on_chart is not None:
            self.on_chart(symbol, interval, start_date, end_date)
        self._raise_if_configured(symbol)
        return [
            p for p in self._series.get((symbol, interval), [])
            if start_date <= p.date <= end_date
        ]


@pytest.fixture
def mock_provider() -> MockMarketDataProvider:
    """Create a fresh mock provider for each test."""
    return MockMarketDataProvider()


# =============================================================================
# SERVICE FIXTURES
# =============================================================================

def create_client(
        provider: MarketDataProvider,
        sleep: Callable[[float], None],
        max_requests: int = 1000,
        max_attempts: int = 8,
) -> RateLimitedMarketDataClient:
    """Client with an in-process governor that never waits in practice."""
    governor = RateGovernor(
        LocalWindowCounter(),
        max_requests=max_requests,
        window_seconds=60,
        cooldown_seconds=0,
        sleep=sleep,
    )
    return RateLimitedMarketDataClient(
        provider,
        governor,
        max_attempts=max_attempts,
        sleep=sleep,
    )


@pytest.fixture
def market_client(mock_provider, fake_sleep) -> RateLimitedMarketDataClient:
    return create_client(mock_provider, fake_sleep)


@pytest.fixture
def store() -> ChartStore:
    return ChartStore()


@pytest.fixture
def negative_cache(fake_redis) -> NoOlderDataCache:
    return NoOlderDataCache(fake_redis, ttl_seconds=86400)


@pytest.fixture
def backfill_lock(fake_redis) -> RedisBackfillLock:
    return RedisBackfillLock(fake_redis, ttl_seconds=300)


@pytest.fixture
def chart_service(market_client, store, backfill_lock, negative_cache) -> ChartDataService:
    return ChartDataService(
        client=market_client,
        store=store,
        lock=backfill_lock,
        negative_cache=negative_cache,
    )


@pytest.fixture
def local_chart_service(market_client, store) -> ChartDataService:
    """Chart service in single-process mode (no Redis)."""
    return ChartDataService(
        client=market_client,
        store=store,
        lock=LocalBackfillLock(),
        negative_cache=LocalNoOlderDataCache(),
    )


# =============================================================================
# SAMPLE DATA FACTORIES
# =============================================================================

def make_daily_points(
        start_date: date,
        end_date: date,
        base: Decimal = Decimal("100.00"),
) -> list[PricePoint]:
    """One point per calendar day, close rising by 1 per day."""
    points = []
    current = start_date
    close = base
    while current <= end_date:
        points.append(PricePoint(date=current, close=close))
        close += Decimal("1")
        current += timedelta(days=1)
    return points
