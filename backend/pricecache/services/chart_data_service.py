# backend/pricecache/services/chart_data_service.py
"""
Chart data service: incremental cache with gap-filling backfill.

Given (symbol, interval, start, end), returns every stored or fetchable
closing value in the range while calling Yahoo as little as possible.

Each series remembers the date range it knows to be complete
(oldest_date..newest_date). A request is reconciled against that range:

    stored:              [oldest ........ newest]
    requested:   [start ............................ end]
    fetched:     [start, oldest-1]            [newest+1, end]
                  older edge                   newer edge

Flow:
    1. Cold start (series unknown): fetch the whole range once, outside the
       lock, persist it and initialize the stored range. Upstream failures
       propagate to the caller.
    2. Full coverage with stored points: serve from the store, no upstream
       call.
    3. Missing edges: for each edge, take the per-series backfill lock,
       fetch only the missing sub-range, persist, widen the stored range.
       A caller that cannot get the lock skips the fetch and serves what is
       stored. An empty older-edge fetch sets the no-older-data marker.
       Failures here are logged and degrade to "best available from store".
    4. Merge the re-read store with freshly fetched points (fetched values
       win), sorted ascending and filtered to the requested range.

Usage:
    service = ChartDataService(client, store, lock, negative_cache)

    result = service.resolve(db, "AAPL", "1d", date(2024, 1, 1), date(2024, 3, 31))
    payload = result.to_chart_payload()
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable

from sqlalchemy.orm import Session

from pricecache.services.backfill_lock import BackfillLock
from pricecache.services.chart_store import ChartStore
from pricecache.services.constants import SUPPORTED_INTERVALS
from pricecache.services.exceptions import (
    InvalidIntervalError,
    MarketDataError,
    StoreError,
    ValidationError,
)
from pricecache.services.market_data.base import PricePoint
from pricecache.services.market_data.client import RateLimitedMarketDataClient
from pricecache.services.negative_cache import NoOlderDataMarkers
from pricecache.utils.date_utils import (
    resolve_range_preset,
    to_calendar_date,
    to_epoch_seconds,
)

logger = logging.getLogger(__name__)


@dataclass
class ChartResult:
    """
    Merged chart series for one request.

    Attributes:
        points: Points in [start_date, end_date], sorted ascending
        from_store: True when served without any upstream call
        fetched: Points fetched from upstream during this request
        upstream_calls: Upstream fetches issued during this request
    """

    symbol: str
    interval: str
    start_date: date
    end_date: date
    points: list[PricePoint] = field(default_factory=list)
    from_store: bool = False
    fetched: int = 0
    upstream_calls: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.points

    def to_chart_payload(self) -> dict:
        """Parallel arrays: epoch seconds at UTC midnight, and closes."""
        return {
            "timestamps": [to_epoch_seconds(p.date) for p in self.points],
            "closes": [float(p.close) if p.close is not None else None for p in self.points],
        }

    def to_quotes(self) -> list[dict]:
        """Date-keyed objects built from the same merged points."""
        return [
            {"date": p.date, "close": float(p.close) if p.close is not None else None}
            for p in self.points
        ]


def merge_points(
        stored: list[PricePoint],
        fetched: list[PricePoint],
        start_date: date,
        end_date: date,
) -> list[PricePoint]:
    """
    Merge stored and freshly fetched points by date.

    Fetched values replace stored ones for the same date. The result is
    sorted ascending and limited to [start_date, end_date].
    """
    by_date = {p.date: p for p in stored}
    by_date.update({p.date: p for p in fetched})
    return [by_date[d] for d in sorted(by_date) if start_date <= d <= end_date]


class ChartDataService:
    """
    Reconciles requested chart ranges with the stored series.

    Stateless apart from its collaborators; one instance is shared across
    requests. Each call takes the caller's database session.
    """

    def __init__(
            self,
            client: RateLimitedMarketDataClient,
            store: ChartStore,
            lock: BackfillLock,
            negative_cache: NoOlderDataMarkers,
    ) -> None:
        self._client = client
        self._store = store
        self._lock = lock
        self._negative_cache = negative_cache

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def resolve(
            self,
            db: Session,
            symbol: str,
            interval: str,
            start: date | datetime,
            end: date | datetime,
    ) -> ChartResult:
        """
        Get all points for a symbol and interval in [start, end].

        Args:
            db: Database session
            symbol: Yahoo symbol (normalized to upper case)
            interval: One of SUPPORTED_INTERVALS
            start: First date (inclusive)
            end: Last date (inclusive)

        Returns:
            ChartResult with the merged points (possibly empty)

        Raises:
            ValidationError: Blank symbol or start after end
            InvalidIntervalError: Unsupported interval
            MarketDataError: Cold-start fetch failed
            StoreError: Store read or cold-start write failed
        """
        symbol = (symbol or "").strip().upper()
        if not symbol:
            raise ValidationError("Symbol must not be empty", field="symbol")
        if interval not in SUPPORTED_INTERVALS:
            raise InvalidIntervalError(interval, SUPPORTED_INTERVALS)

        start_date = to_calendar_date(start)
        end_date = to_calendar_date(end)
        if start_date > end_date:
            raise ValidationError(
                f"Start date {start_date} is after end date {end_date}",
                field="start",
            )

        result = ChartResult(
            symbol=symbol,
            interval=interval,
            start_date=start_date,
            end_date=end_date,
        )

        stored = self._store.get_range(db, symbol, interval)

        if stored is None:
            return self._cold_start(db, result)

        staged: list[PricePoint] = []

        if not stored.is_bounded:
            logger.info(f"Series {symbol}:{interval} has an incomplete range, refetching requested range")
            staged += self._backfill_unbounded(db, result)
        else:
            need_older = start_date < stored.oldest
            need_newer = end_date > stored.newest

            if not need_older and not need_newer:
                points = self._store.get_points(db, symbol, interval, start_date, end_date)
                if points:
                    logger.debug(f"Cache hit for {symbol}:{interval} [{start_date}, {end_date}]")
                    result.points = points
                    result.from_store = True
                    return result

            if need_older:
                staged += self._backfill_older(db, result, stored.oldest)
            if need_newer:
                staged += self._backfill_newer(db, result, stored.newest)

        stored_points = self._store.get_points(db, symbol, interval, start_date, end_date)
        result.points = merge_points(stored_points, staged, start_date, end_date)
        result.from_store = result.upstream_calls == 0
        return result

    def resolve_preset(
            self,
            db: Session,
            symbol: str,
            interval: str,
            range_name: str,
            today: date | None = None,
    ) -> ChartResult:
        """
        Get points for a named look-back window (1d, 5d, 1mo, 6mo, ytd, 1y).

        Unknown preset names fall back to 1mo.
        """
        start_date, end_date = resolve_range_preset(range_name, today or date.today())
        return self.resolve(db, symbol, interval, start_date, end_date)

    # =========================================================================
    # COLD START
    # =========================================================================

    def _cold_start(self, db: Session, result: ChartResult) -> ChartResult:
        symbol, interval = result.symbol, result.interval
        logger.info(
            f"Cold start for {symbol}:{interval}, fetching "
            f"[{result.start_date}, {result.end_date}]"
        )

        try:
            points = self._client.fetch_series(symbol, interval, result.start_date, result.end_date)
        except MarketDataError as e:
            logger.error(f"Initial fetch failed for {symbol}:{interval}: {e}")
            raise
        result.upstream_calls += 1
        result.fetched = len(points)

        if not points:
            logger.info(f"No data available for {symbol}:{interval} in requested range")
            return result

        self._store.insert_points(db, symbol, interval, points)
        self._store.initialize_range(
            db,
            symbol,
            interval,
            min(p.date for p in points),
            max(p.date for p in points),
        )

        result.points = merge_points([], points, result.start_date, result.end_date)
        return result

    # =========================================================================
    # BACKFILL
    # =========================================================================

    def _backfill_older(self, db: Session, result: ChartResult, oldest: date) -> list[PricePoint]:
        symbol, interval = result.symbol, result.interval

        if self._negative_cache.has_no_older_data(symbol, interval):
            logger.debug(f"Skipping older backfill for {symbol}:{interval}: no older data marker set")
            return []

        fetch_end = oldest - timedelta(days=1)
        if result.start_date > fetch_end:
            return []

        def persist(points: list[PricePoint]) -> None:
            if not points:
                self._negative_cache.mark_no_older_data(symbol, interval)
                return
            self._store.insert_points(db, symbol, interval, points)
            self._store.widen_range(db, symbol, interval, new_oldest=min(p.date for p in points))

        return self._run_backfill(result, "older", result.start_date, fetch_end, persist)

    def _backfill_newer(self, db: Session, result: ChartResult, newest: date) -> list[PricePoint]:
        symbol, interval = result.symbol, result.interval

        fetch_start = newest + timedelta(days=1)
        if fetch_start > result.end_date:
            return []

        def persist(points: list[PricePoint]) -> None:
            if not points:
                return
            self._store.insert_points(db, symbol, interval, points)
            self._store.widen_range(db, symbol, interval, new_newest=max(p.date for p in points))

        return self._run_backfill(result, "newer", fetch_start, result.end_date, persist)

    def _backfill_unbounded(self, db: Session, result: ChartResult) -> list[PricePoint]:
        """
        Refetch a series whose range was never recorded.

        Points already stored for it (e.g. from a cold start whose range
        update failed) are pulled into the fetch window, so the range
        recorded afterwards still covers every stored point.
        """
        symbol, interval = result.symbol, result.interval

        fetch_start, fetch_end = result.start_date, result.end_date
        orphans = self._store.get_point_bounds(db, symbol, interval)
        if orphans is not None:
            fetch_start = min(fetch_start, orphans.oldest)
            fetch_end = max(fetch_end, orphans.newest)

        def persist(points: list[PricePoint]) -> None:
            if not points:
                return
            oldest = min(p.date for p in points)
            newest = max(p.date for p in points)
            if orphans is not None:
                oldest = min(oldest, orphans.oldest)
                newest = max(newest, orphans.newest)
            self._store.insert_points(db, symbol, interval, points)
            self._store.widen_range(db, symbol, interval, new_oldest=oldest, new_newest=newest)

        return self._run_backfill(result, "full", fetch_start, fetch_end, persist)

    def _run_backfill(
            self,
            result: ChartResult,
            edge: str,
            fetch_start: date,
            fetch_end: date,
            persist: Callable[[list[PricePoint]], None],
    ) -> list[PricePoint]:
        """
        Fetch and persist one missing sub-range under the backfill lock.

        Returns:
            Fetched points to merge into the response (empty when the lock
            was denied or the attempt failed)
        """
        symbol, interval = result.symbol, result.interval

        if not self._lock.try_acquire(symbol, interval):
            logger.info(f"Backfill for {symbol}:{interval} already in progress, serving stored data")
            return []

        try:
            logger.info(f"Backfilling {edge} data for {symbol}:{interval}: [{fetch_start}, {fetch_end}]")
            result.upstream_calls += 1
            points = self._client.fetch_series(symbol, interval, fetch_start, fetch_end)
            result.fetched += len(points)
            persist(points)
            return points
        except (MarketDataError, StoreError) as e:
            logger.warning(f"Failed to backfill {edge} data for {symbol}:{interval}, using stored data: {e}")
            return []
        finally:
            self._lock.release(symbol, interval)
