# backend/pricecache/services/market_data/client.py
"""
Rate-limited, retrying access to the upstream market data provider.

Every call goes through two layers:
- RateGovernor: waits for a slot in the shared request budget
- tenacity retry: retries throttled attempts with exponential backoff

Retry Behavior:
    - Up to 8 attempts in total (configurable)
    - Only RateLimitError is retried (HTTP 429, "too many requests",
      crumb negotiation failures, or a saturated rate governor)
    - Backoff: 2s, 4s, 8s, ... (base_delay * 2^attempt)
    - Any other error propagates immediately
    - Exhausting every attempt raises MaxRetriesExceededError

Usage:
    client = RateLimitedMarketDataClient(provider, governor)
    points = client.fetch_series("AAPL", "1d", start, end)
"""

import logging
import time
from datetime import date
from typing import Any, Callable, TypeVar

from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    before_sleep_log,
)

from pricecache.services.exceptions import MaxRetriesExceededError, RateLimitError
from pricecache.services.market_data.base import (
    MarketDataProvider,
    PricePoint,
    QuoteSnapshot,
)
from pricecache.services.market_data.rate_governor import RateGovernor

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RateLimitedMarketDataClient:
    """
    Wraps a MarketDataProvider with the shared rate governor and retries.

    One instance should be shared process-wide; the governor's counter is
    what makes the budget global.
    """

    def __init__(
            self,
            provider: MarketDataProvider,
            governor: RateGovernor,
            max_attempts: int = 8,
            base_delay_seconds: float = 2.0,
            sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self._provider = provider
        self._governor = governor
        self.max_attempts = max_attempts
        self.base_delay_seconds = base_delay_seconds
        self._sleep = sleep

    @property
    def provider_name(self) -> str:
        return self._provider.name

    def fetch_quotes(self, symbols: list[str]) -> list[QuoteSnapshot]:
        """Fetch quote snapshots, blocking on the rate governor first."""
        return self._execute_with_retry(self._provider.get_quotes, symbols)

    def fetch_series(
            self,
            symbol: str,
            interval: str,
            start_date: date,
            end_date: date,
    ) -> list[PricePoint]:
        """
        Fetch a chart series, blocking on the rate governor first.

        Returns:
            Points sorted ascending by date (possibly empty)

        Raises:
            ProviderUnavailableError: Terminal upstream failure
            MaxRetriesExceededError: Every attempt was throttled
        """
        points = self._execute_with_retry(
            self._provider.get_chart,
            symbol,
            interval,
            start_date,
            end_date,
        )
        return sorted(points, key=lambda p: p.date)

    def _execute_with_retry(
            self,
            func: Callable[..., T],
            *args: Any,
            **kwargs: Any,
    ) -> T:
        """
        Run func under the rate governor, retrying throttled attempts.

        Each attempt claims its own governor slot, so retries count
        against the shared budget like any other request.
        """

        @retry(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay_seconds, exp_base=2),
            retry=retry_if_exception_type(RateLimitError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
        )
        def _inner() -> T:
            self._governor.acquire()
            return func(*args, **kwargs)

        try:
            return _inner()
        except RetryError as e:
            last_error = e.last_attempt.exception()
            logger.error(
                f"Giving up on {self._provider.name} after "
                f"{self.max_attempts} throttled attempts: {last_error}"
            )
            raise MaxRetriesExceededError(
                provider=self._provider.name,
                attempts=self.max_attempts,
            ) from last_error
