# backend/pricecache/services/market_data/yahoo.py
"""
Yahoo Finance market data provider implementation.

This module implements the MarketDataProvider interface using the yfinance library.
Yahoo Finance is a free data source suitable for personal/educational use.

Key features:
- Quote snapshots for many symbols in one batch
- Chart series (closing values) for any supported interval
- Failure classification: throttling vs. terminal errors

Limitations:
- Aggressive, undocumented rate limits (hence the shared rate governor)
- Session "crumb" negotiation fails intermittently under load
- Data may be delayed (15-20 minutes for some markets)
"""

import logging
import math
from datetime import date, timedelta
from decimal import Decimal
from typing import Any

import yfinance as yf
from yfinance.exceptions import YFPricesMissingError, YFRateLimitError

from pricecache.services.exceptions import (
    ProviderUnavailableError,
    RateLimitError,
)
from pricecache.services.market_data.base import (
    MarketDataProvider,
    PricePoint,
    QuoteSnapshot,
)

logger = logging.getLogger(__name__)


# Substrings (lower-cased) that identify throttling in upstream error messages
THROTTLING_MARKERS: tuple[str, ...] = (
    "429",
    "too many requests",
    "rate limit",
    "rate limited",
    "crumb",
)


def is_throttling_error(error: BaseException) -> bool:
    """
    Decide whether an upstream error means "slow down and retry".

    Checks an HTTP status carried by the exception (or its response) first,
    then falls back to message inspection.
    """
    status = getattr(error, "status", None) or getattr(error, "status_code", None)
    response = getattr(error, "response", None)
    if status is None and response is not None:
        status = getattr(response, "status_code", None)
    if status == 429:
        return True

    message = str(error).lower()
    return any(marker in message for marker in THROTTLING_MARKERS)


class YahooFinanceProvider(MarketDataProvider):
    """
    Yahoo Finance implementation of MarketDataProvider.

    Configuration:
        timeout: API request timeout in seconds (default: 10)

    This class performs exactly one upstream request per call and never
    retries; wrap it in RateLimitedMarketDataClient for governed access.

    Example:
        provider = YahooFinanceProvider(timeout=15)

        points = provider.get_chart("AAPL", "1d", date(2024, 1, 1), date(2024, 1, 31))
        quotes = provider.get_quotes(["AAPL", "MSFT"])
    """

    def __init__(self, timeout: int = 10) -> None:
        """
        Initialize the Yahoo Finance provider.

        Args:
            timeout: Request timeout in seconds
        """
        self._timeout = timeout
        logger.info(f"YahooFinanceProvider initialized (timeout={timeout}s)")

    @property
    def name(self) -> str:
        return "yahoo"

    # =========================================================================
    # QUOTES
    # =========================================================================

    def get_quotes(self, symbols: list[str]) -> list[QuoteSnapshot]:
        """
        Fetch quote snapshots for several symbols using yf.Tickers().

        Symbols Yahoo does not recognize are skipped. A throttling error on
        any symbol fails the whole batch so the caller can retry it.
        """
        if not symbols:
            return []

        logger.debug(f"Fetching quotes for {', '.join(symbols)}")

        try:
            yf_tickers = yf.Tickers(" ".join(symbols))
        except Exception as e:
            raise self._classify_error(e, ", ".join(symbols))

        snapshots: list[QuoteSnapshot] = []
        for symbol in symbols:
            yf_ticker = yf_tickers.tickers.get(symbol)
            if yf_ticker is None:
                logger.warning(f"Yahoo returned no ticker object for {symbol}")
                continue

            try:
                info = yf_ticker.info
            except Exception as e:
                error = self._classify_error(e, symbol)
                if isinstance(error, RateLimitError):
                    raise error
                logger.warning(f"Skipping quote for {symbol}: {e}")
                continue

            if not info or info.get("regularMarketPrice") is None:
                logger.warning(f"No quote data for {symbol}")
                continue

            snapshots.append(QuoteSnapshot(
                symbol=info.get("symbol") or symbol,
                price=self._to_decimal(info.get("regularMarketPrice")),
                change=self._to_decimal(info.get("regularMarketChange")),
                change_percent=self._to_decimal(info.get("regularMarketChangePercent")),
            ))

        return snapshots

    # =========================================================================
    # CHART SERIES
    # =========================================================================

    def get_chart(
            self,
            symbol: str,
            interval: str,
            start_date: date,
            end_date: date,
    ) -> list[PricePoint]:
        """
        Fetch closing values from Yahoo Finance.

        Args:
            symbol: Yahoo symbol (e.g., "AAPL", "SAP.DE")
            interval: Yahoo interval (e.g., "1d", "1wk")
            start_date: Start date (inclusive)
            end_date: End date (inclusive)

        Returns:
            Points sorted ascending; empty when Yahoo has nothing for the range

        Raises:
            RateLimitError: Yahoo throttled the request
            ProviderUnavailableError: Any other Yahoo failure, including an
                unknown symbol (Yahoo reports no timezone for it)
        """
        logger.debug(
            f"Fetching {interval} chart for {symbol}: {start_date} to {end_date}"
        )

        try:
            yf_ticker = yf.Ticker(symbol)

            # Yahoo Finance end date is exclusive, so add 1 day
            yahoo_end = end_date + timedelta(days=1)

            df = yf_ticker.history(
                start=start_date.isoformat(),
                end=yahoo_end.isoformat(),
                interval=interval,
                auto_adjust=False,  # Raw closes, not dividend/split adjusted
                timeout=self._timeout,
                raise_errors=True,  # Otherwise outages come back as an empty frame
            )
        except YFPricesMissingError as e:
            logger.info(f"No {interval} data for {symbol} between {start_date} and {end_date}: {e}")
            return []
        except Exception as e:
            raise self._classify_error(e, symbol)

        if df is None or df.empty:
            logger.info(
                f"No {interval} data for {symbol} between {start_date} and {end_date}"
            )
            return []

        points = self._dataframe_to_points(df)
        logger.debug(f"Fetched {len(points)} points for {symbol}")
        return points

    def _dataframe_to_points(self, df) -> list[PricePoint]:
        """
        Convert a pandas DataFrame from yfinance to a list of PricePoint.

        Intraday rows collapse onto their calendar date; the latest row for a
        date wins. Rows whose index cannot be read as a date are skipped.
        """
        by_date: dict[date, PricePoint] = {}

        for idx, row in df.iterrows():
            try:
                price_date = idx.date() if hasattr(idx, "date") else idx
                if not isinstance(price_date, date):
                    raise ValueError(f"unexpected index value {idx!r}")
            except Exception as e:
                logger.warning(f"Error parsing row {idx}: {e}")
                continue

            by_date[price_date] = PricePoint(
                date=price_date,
                close=self._to_decimal(row.get("Close")),
            )

        return [by_date[d] for d in sorted(by_date)]

    @staticmethod
    def _to_decimal(value: Any) -> Decimal | None:
        """Convert a value to Decimal, returning None for NaN/None."""
        if value is None:
            return None
        try:
            if math.isnan(float(value)):
                return None
            return Decimal(str(value)).quantize(Decimal("0.0001"))
        except (TypeError, ValueError, ArithmeticError):
            return None

    # =========================================================================
    # HELPER METHODS
    # =========================================================================

    def _classify_error(self, error: Exception, subject: str) -> Exception:
        """Map a raw yfinance/requests error onto our exception taxonomy."""
        if isinstance(error, YFRateLimitError) or is_throttling_error(error):
            logger.warning(f"Yahoo Finance throttled request for {subject}: {error}")
            return RateLimitError(provider=self.name)

        logger.error(f"Yahoo Finance error for {subject}: {error}")
        return ProviderUnavailableError(
            provider=self.name,
            reason=str(error),
        )
