# backend/pricecache/services/__init__.py
"""
Service layer for the price cache.

Services:
- Have NO knowledge of HTTP or process lifecycle
- Raise domain-specific exceptions (services/exceptions.py)
- Receive database sessions as parameters
- Receive their collaborators (client, Redis, lock) through the constructor,
  so tests can inject fakes

Usage:
    from pricecache.services import ChartDataService, QuoteService
    from pricecache.services import MarketDataError, StoreError

Architecture:
    services/
    ├── __init__.py              # This file - main exports
    ├── exceptions.py            # Domain exceptions
    ├── constants.py             # Intervals, Redis keys
    ├── chart_data_service.py    # Range reconciliation and backfill
    ├── chart_store.py           # Time-series store (chart_series/chart_points)
    ├── backfill_lock.py         # Per-series advisory lock
    ├── negative_cache.py        # "No older data" markers (Redis / in-process)
    ├── quote_service.py         # Cached quote snapshots
    └── market_data/             # Upstream access
        ├── base.py              # Abstract provider interface + value types
        ├── yahoo.py             # Yahoo Finance implementation
        ├── rate_governor.py     # Shared fixed-window request budget
        └── client.py            # Governed, retrying client
"""

from pricecache.services.backfill_lock import (
    BackfillLock,
    LocalBackfillLock,
    RedisBackfillLock,
)
from pricecache.services.chart_data_service import ChartDataService, ChartResult
from pricecache.services.chart_store import ChartStore, SeriesRange
from pricecache.services.exceptions import (
    InvalidIntervalError,
    MarketDataError,
    MaxRetriesExceededError,
    ProviderUnavailableError,
    RateLimitError,
    ServiceError,
    StoreError,
    ValidationError,
)
from pricecache.services.negative_cache import (
    LocalNoOlderDataCache,
    NoOlderDataCache,
    NoOlderDataMarkers,
)
from pricecache.services.quote_service import QuoteService

__all__ = [
    # ==========================================================================
    # Services
    # ==========================================================================
    "ChartDataService",
    "ChartResult",
    "ChartStore",
    "SeriesRange",
    "QuoteService",
    # Coordination
    "BackfillLock",
    "RedisBackfillLock",
    "LocalBackfillLock",
    "LocalNoOlderDataCache",
    "NoOlderDataCache",
    "NoOlderDataMarkers",

    # ==========================================================================
    # Exceptions
    # ==========================================================================
    "ServiceError",
    "ValidationError",
    "InvalidIntervalError",
    "MarketDataError",
    "ProviderUnavailableError",
    "RateLimitError",
    "MaxRetriesExceededError",
    "StoreError",
]
