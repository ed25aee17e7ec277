# backend/pricecache/services/chart_store.py
"""
Time-series store for cached chart data.

This service owns the chart_series and chart_points tables. It is the only
code path that writes to them, and every write is merge-safe:

- insert_points: upsert per (symbol, interval, trade_date), last writer wins
- widen_range: atomic min/max merge of the known-complete range
- initialize_range: first-time range creation, falling back to the same
  min/max merge when another caller created the row concurrently

Because the range merge is commutative and idempotent, concurrent callers
widening the same series in any order converge on the same stored state.

Upserts use the PostgreSQL dialect in production. SQLite (tests) exposes the
same on_conflict_* API through its own dialect insert.

Usage:
    store = ChartStore()

    store.insert_points(db, "AAPL", "1d", points)
    store.widen_range(db, "AAPL", "1d", new_oldest=points[0].date)
    stored = store.get_range(db, "AAPL", "1d")
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import and_, case, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pricecache.models import ChartPoint, ChartSeries
from pricecache.services.exceptions import StoreError
from pricecache.services.market_data.base import PricePoint

logger = logging.getLogger(__name__)

# Rows per INSERT statement (keeps SQLite under its bound-parameter limit)
UPSERT_CHUNK_SIZE = 200


@dataclass(frozen=True)
class SeriesRange:
    """
    Stored known-complete range of a series.

    Either bound may be None when a previous initialization did not finish.
    """

    oldest: date | None
    newest: date | None

    @property
    def is_bounded(self) -> bool:
        return self.oldest is not None and self.newest is not None


def coerce_trade_date(value: Any) -> date | None:
    """
    Read a trade date from an upstream value.

    Accepts date, datetime, ISO-8601 strings and epoch seconds. Returns None
    for anything that cannot be read as a calendar date.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc).date()
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None
    return None


class ChartStore:
    """
    Persistence for chart series ranges and points.

    All methods take the caller's Session and commit their own work. Any
    SQLAlchemyError is rolled back and re-raised as StoreError.
    """

    # =========================================================================
    # READS
    # =========================================================================

    def get_range(self, db: Session, symbol: str, interval: str) -> SeriesRange | None:
        """
        Get the stored range of a series.

        Returns:
            SeriesRange, or None if the series has never been created
        """
        try:
            row = db.execute(
                select(ChartSeries.oldest_date, ChartSeries.newest_date).where(
                    and_(
                        ChartSeries.symbol == symbol,
                        ChartSeries.interval == interval,
                    )
                )
            ).one_or_none()
        except SQLAlchemyError as e:
            self._fail(db, "get_range", e)

        if row is None:
            return None
        return SeriesRange(oldest=row.oldest_date, newest=row.newest_date)

    def get_points(
            self,
            db: Session,
            symbol: str,
            interval: str,
            start_date: date,
            end_date: date,
    ) -> list[PricePoint]:
        """
        Get stored points with start_date <= trade_date <= end_date.

        Returns:
            Points sorted ascending by date
        """
        try:
            rows = db.execute(
                select(ChartPoint.trade_date, ChartPoint.close)
                .where(
                    and_(
                        ChartPoint.symbol == symbol,
                        ChartPoint.interval == interval,
                        ChartPoint.trade_date >= start_date,
                        ChartPoint.trade_date <= end_date,
                    )
                )
                .order_by(ChartPoint.trade_date.asc())
            ).all()
        except SQLAlchemyError as e:
            self._fail(db, "get_points", e)

        return [PricePoint(date=row.trade_date, close=row.close) for row in rows]

    def get_point_bounds(self, db: Session, symbol: str, interval: str) -> SeriesRange | None:
        """
        Get the earliest and latest stored point dates of a series.

        Unlike get_range() this looks at the points themselves, so it also
        sees points written without a range update.

        Returns:
            SeriesRange, or None if the series has no points
        """
        try:
            row = db.execute(
                select(func.min(ChartPoint.trade_date), func.max(ChartPoint.trade_date)).where(
                    and_(
                        ChartPoint.symbol == symbol,
                        ChartPoint.interval == interval,
                    )
                )
            ).one()
        except SQLAlchemyError as e:
            self._fail(db, "get_point_bounds", e)

        oldest, newest = row
        if oldest is None:
            return None
        return SeriesRange(oldest=oldest, newest=newest)

    # =========================================================================
    # WRITES
    # =========================================================================

    def insert_points(
            self,
            db: Session,
            symbol: str,
            interval: str,
            points: Iterable[PricePoint],
    ) -> int:
        """
        Upsert points for a series.

        Creates the series row (with empty bounds) if it does not exist yet.
        Entries whose date cannot be read are skipped. Duplicate dates in
        one batch collapse onto the last entry.

        Returns:
            Number of points written
        """
        records_by_date: dict[date, dict] = {}
        for point in points:
            trade_date = coerce_trade_date(point.date)
            if trade_date is None:
                logger.debug(f"Skipping point with unreadable date {point.date!r} for {symbol}:{interval}")
                continue
            records_by_date[trade_date] = {
                "symbol": symbol,
                "interval": interval,
                "trade_date": trade_date,
                "close": point.close,
            }

        if not records_by_date:
            return 0

        records = list(records_by_date.values())
        insert = self._insert_for(db)

        try:
            db.execute(
                insert(ChartSeries)
                .values(
                    symbol=symbol,
                    interval=interval,
                    oldest_date=None,
                    newest_date=None,
                    updated_at=datetime.now(timezone.utc),
                )
                .on_conflict_do_nothing(index_elements=["symbol", "interval"])
            )

            for i in range(0, len(records), UPSERT_CHUNK_SIZE):
                stmt = insert(ChartPoint).values(records[i:i + UPSERT_CHUNK_SIZE])
                stmt = stmt.on_conflict_do_update(
                    index_elements=["symbol", "interval", "trade_date"],
                    set_={"close": stmt.excluded.close},
                )
                db.execute(stmt)

            db.commit()
        except SQLAlchemyError as e:
            self._fail(db, "insert_points", e)

        logger.debug(f"Stored {len(records)} points for {symbol}:{interval}")
        return len(records)

    def widen_range(
            self,
            db: Session,
            symbol: str,
            interval: str,
            new_oldest: date | None = None,
            new_newest: date | None = None,
    ) -> bool:
        """
        Widen the stored range of an existing series.

        Each bound is merged independently in a single UPDATE:
        - argument None: bound unchanged
        - stored bound NULL: adopt the argument
        - otherwise: min() for oldest, max() for newest

        Returns:
            True if a series row was updated
        """
        if new_oldest is None and new_newest is None:
            return False

        values: dict[str, Any] = {"updated_at": datetime.now(timezone.utc)}
        if new_oldest is not None:
            values["oldest_date"] = case(
                (ChartSeries.oldest_date.is_(None), new_oldest),
                (ChartSeries.oldest_date > new_oldest, new_oldest),
                else_=ChartSeries.oldest_date,
            )
        if new_newest is not None:
            values["newest_date"] = case(
                (ChartSeries.newest_date.is_(None), new_newest),
                (ChartSeries.newest_date < new_newest, new_newest),
                else_=ChartSeries.newest_date,
            )

        try:
            result = db.execute(
                update(ChartSeries)
                .where(
                    and_(
                        ChartSeries.symbol == symbol,
                        ChartSeries.interval == interval,
                    )
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError as e:
            self._fail(db, "widen_range", e)

        logger.debug(
            f"Widened range for {symbol}:{interval} "
            f"(oldest<={new_oldest}, newest>={new_newest})"
        )
        return result.rowcount > 0

    def initialize_range(
            self,
            db: Session,
            symbol: str,
            interval: str,
            oldest: date,
            newest: date,
    ) -> None:
        """
        Create the range of a series on first fetch.

        If the row already exists (e.g., created by insert_points or by a
        concurrent cold start) the bounds are merged with min/max instead
        of being overwritten.
        """
        insert = self._insert_for(db)
        table = ChartSeries.__table__

        stmt = insert(ChartSeries).values(
            symbol=symbol,
            interval=interval,
            oldest_date=oldest,
            newest_date=newest,
            updated_at=datetime.now(timezone.utc),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["symbol", "interval"],
            set_={
                "oldest_date": case(
                    (table.c.oldest_date.is_(None), stmt.excluded.oldest_date),
                    (stmt.excluded.oldest_date < table.c.oldest_date, stmt.excluded.oldest_date),
                    else_=table.c.oldest_date,
                ),
                "newest_date": case(
                    (table.c.newest_date.is_(None), stmt.excluded.newest_date),
                    (stmt.excluded.newest_date > table.c.newest_date, stmt.excluded.newest_date),
                    else_=table.c.newest_date,
                ),
                "updated_at": stmt.excluded.updated_at,
            },
        )

        try:
            db.execute(stmt)
            db.commit()
        except SQLAlchemyError as e:
            self._fail(db, "initialize_range", e)

        logger.debug(f"Initialized range for {symbol}:{interval}: [{oldest}, {newest}]")

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _insert_for(db: Session):
        """Pick the dialect insert() that supports ON CONFLICT for this bind."""
        dialect = db.get_bind().dialect.name
        if dialect == "sqlite":
            return sqlite_insert
        return pg_insert

    @staticmethod
    def _fail(db: Session, operation: str, error: SQLAlchemyError):
        logger.error(f"Chart store {operation} failed: {error}")
        db.rollback()
        raise StoreError(operation, str(error)) from error
