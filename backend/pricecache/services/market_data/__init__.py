# backend/pricecache/services/market_data/__init__.py
"""
Market data services package.

This package contains:
- Abstract interface for market data providers (base.py)
- Yahoo Finance implementation (yahoo.py)
- Shared request-rate governor (rate_governor.py)
- Rate-limited, retrying client used by the cache services (client.py)

Usage:
    from pricecache.services.market_data import (
        MarketDataProvider,
        PricePoint,
        QuoteSnapshot,
        YahooFinanceProvider,
        RateGovernor,
        RedisWindowCounter,
        RateLimitedMarketDataClient,
    )

Architecture:
    RateLimitedMarketDataClient
    └── RateGovernor (RedisWindowCounter | LocalWindowCounter)
    └── MarketDataProvider (ABC)
        └── YahooFinanceProvider (concrete)
"""

from pricecache.services.market_data.base import (
    MarketDataProvider,
    PricePoint,
    QuoteSnapshot,
)
from pricecache.services.market_data.client import RateLimitedMarketDataClient
from pricecache.services.market_data.rate_governor import (
    LocalWindowCounter,
    RateGovernor,
    RedisWindowCounter,
    WindowCounter,
)
from pricecache.services.market_data.yahoo import YahooFinanceProvider

__all__ = [
    # Abstract interface and data classes
    "MarketDataProvider",
    "PricePoint",
    "QuoteSnapshot",
    # Concrete implementations
    "YahooFinanceProvider",
    # Rate governing
    "RateGovernor",
    "WindowCounter",
    "RedisWindowCounter",
    "LocalWindowCounter",
    # Client
    "RateLimitedMarketDataClient",
]
