# backend/pricecache/services/market_data/base.py
"""
Abstract interface for market data providers.

This module defines the contract that every upstream provider must follow,
plus the immutable value types that flow through the cache:

- QuoteSnapshot: latest price for a symbol (served through the quote cache)
- PricePoint: one date's closing value in a chart series

Providers are deliberately thin: they translate the vendor API into these
types and classify failures into RateLimitError (throttling, retryable) or
ProviderUnavailableError (terminal). Rate governing and retries live in
RateLimitedMarketDataClient so every provider shares one request budget.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

logger = logging.getLogger(__name__)


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class PricePoint:
    """
    Single date's closing value.

    Using frozen=True makes it immutable and hashable.

    Attributes:
        date: Trading date (no time component)
        close: Closing price, None when the provider reported a gap
    """

    date: date
    close: Decimal | None = None


@dataclass(frozen=True)
class QuoteSnapshot:
    """
    Latest quote for a symbol.

    Attributes:
        symbol: Provider symbol (e.g., "AAPL", "SAP.DE")
        price: Regular market price
        change: Absolute change versus previous close
        change_percent: Percent change versus previous close
    """

    symbol: str
    price: Decimal | None = None
    change: Decimal | None = None
    change_percent: Decimal | None = None

    def to_dict(self) -> dict:
        """Serialize to a JSON-friendly dict (Decimals become strings)."""
        return {
            "symbol": self.symbol,
            "price": None if self.price is None else str(self.price),
            "change": None if self.change is None else str(self.change),
            "change_percent": None if self.change_percent is None else str(self.change_percent),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "QuoteSnapshot":
        """Inverse of to_dict()."""
        def _dec(value):
            return None if value is None else Decimal(value)

        return cls(
            symbol=data["symbol"],
            price=_dec(data.get("price")),
            change=_dec(data.get("change")),
            change_percent=_dec(data.get("change_percent")),
        )


# =============================================================================
# ABSTRACT BASE CLASS
# =============================================================================

class MarketDataProvider(ABC):
    """
    Abstract base class for market data providers.

    Implementations must be safe to call from several threads at once.

    Error contract:
        - RateLimitError: upstream throttling (retried by the client)
        - ProviderUnavailableError: anything else (never retried)
        - Empty list: the provider has no data for the request (not an error)
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """
        Unique identifier for this provider.

        Returns:
            Provider name (e.g., "yahoo")
        """
        pass

    @abstractmethod
    def get_quotes(self, symbols: list[str]) -> list[QuoteSnapshot]:
        """
        Fetch the latest quote for each symbol.

        Args:
            symbols: Provider symbols

        Returns:
            One QuoteSnapshot per symbol the provider knows about

        Raises:
            RateLimitError: Throttled by the provider
            ProviderUnavailableError: Network or API error
        """
        pass

    @abstractmethod
    def get_chart(
            self,
            symbol: str,
            interval: str,
            start_date: date,
            end_date: date,
    ) -> list[PricePoint]:
        """
        Fetch closing values for a symbol.

        Args:
            symbol: Provider symbol
            interval: Sampling interval (e.g., "1d", "1wk")
            start_date: Start date (inclusive)
            end_date: End date (inclusive)

        Returns:
            Points sorted ascending by date (empty when no data exists)

        Raises:
            RateLimitError: Throttled by the provider
            ProviderUnavailableError: Network or API error
        """
        pass
