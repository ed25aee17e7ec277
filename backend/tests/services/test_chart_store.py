# backend/tests/services/test_chart_store.py
"""
Tests for ChartStore.

This module tests:
- Upsert semantics (idempotent, last writer wins)
- Implicit series creation on insert
- Skipping points with unreadable dates
- Range widening: min/max merge, NULL adoption, monotonicity
- Range initialization and merge with an existing row
- Point bounds independent of the recorded range
- Error wrapping into StoreError
"""

from datetime import date, datetime
from decimal import Decimal
from itertools import permutations
from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from pricecache.models import ChartPoint, ChartSeries
from pricecache.services.chart_store import ChartStore, SeriesRange, coerce_trade_date
from pricecache.services.exceptions import StoreError
from pricecache.services.market_data.base import PricePoint
from tests.conftest import make_daily_points


def count_points(db, symbol="AAPL", interval="1d") -> int:
    return db.scalar(
        select(func.count()).select_from(ChartPoint).where(
            ChartPoint.symbol == symbol,
            ChartPoint.interval == interval,
        )
    )


# =============================================================================
# INSERT POINTS
# =============================================================================

class TestInsertPoints:
    """Tests for insert_points()."""

    def test_same_date_twice_keeps_one_row_with_latest_close(self, db, store):
        """Re-inserting a date overwrites close."""
        store.insert_points(db, "AAPL", "1d", [PricePoint(date(2024, 1, 2), Decimal("10.00"))])
        store.insert_points(db, "AAPL", "1d", [PricePoint(date(2024, 1, 2), Decimal("11.50"))])

        assert count_points(db) == 1
        points = store.get_points(db, "AAPL", "1d", date(2024, 1, 1), date(2024, 1, 31))
        assert points[0].close == Decimal("11.50")

    def test_duplicate_dates_in_one_batch_last_wins(self, db, store):
        written = store.insert_points(db, "AAPL", "1d", [
            PricePoint(date(2024, 1, 2), Decimal("10")),
            PricePoint(date(2024, 1, 2), Decimal("12")),
        ])

        assert written == 1
        points = store.get_points(db, "AAPL", "1d", date(2024, 1, 2), date(2024, 1, 2))
        assert points == [PricePoint(date(2024, 1, 2), Decimal("12"))]

    def test_creates_series_row_with_null_bounds(self, db, store):
        store.insert_points(db, "AAPL", "1d", make_daily_points(date(2024, 1, 1), date(2024, 1, 3)))

        assert store.get_range(db, "AAPL", "1d") == SeriesRange(oldest=None, newest=None)

    def test_insert_does_not_touch_existing_range(self, db, store):
        store.initialize_range(db, "AAPL", "1d", date(2024, 1, 1), date(2024, 1, 10))

        store.insert_points(db, "AAPL", "1d", make_daily_points(date(2024, 1, 5), date(2024, 1, 6)))

        assert store.get_range(db, "AAPL", "1d") == SeriesRange(date(2024, 1, 1), date(2024, 1, 10))

    def test_null_close_is_stored(self, db, store):
        store.insert_points(db, "AAPL", "1d", [PricePoint(date(2024, 1, 2), None)])

        points = store.get_points(db, "AAPL", "1d", date(2024, 1, 2), date(2024, 1, 2))
        assert points == [PricePoint(date(2024, 1, 2), None)]

    def test_unreadable_dates_are_skipped(self, db, store):
        written = store.insert_points(db, "AAPL", "1d", [
            PricePoint("not-a-date", Decimal("1")),
            PricePoint(None, Decimal("2")),
            PricePoint(date(2024, 1, 3), Decimal("3")),
        ])

        assert written == 1
        assert count_points(db) == 1

    def test_only_unreadable_dates_writes_nothing(self, db, store):
        written = store.insert_points(db, "AAPL", "1d", [PricePoint("garbage", Decimal("1"))])

        assert written == 0
        assert store.get_range(db, "AAPL", "1d") is None

    def test_empty_batch_is_noop(self, db, store):
        assert store.insert_points(db, "AAPL", "1d", []) == 0

    def test_large_batch_is_chunked(self, db, store):
        points = make_daily_points(date(2020, 1, 1), date(2022, 12, 31))

        written = store.insert_points(db, "AAPL", "1d", points)

        assert written == len(points)
        assert count_points(db) == len(points)

    def test_series_are_isolated_by_interval(self, db, store):
        store.insert_points(db, "AAPL", "1d", [PricePoint(date(2024, 1, 2), Decimal("1"))])
        store.insert_points(db, "AAPL", "1wk", [PricePoint(date(2024, 1, 2), Decimal("2"))])

        daily = store.get_points(db, "AAPL", "1d", date(2024, 1, 1), date(2024, 1, 31))
        weekly = store.get_points(db, "AAPL", "1wk", date(2024, 1, 1), date(2024, 1, 31))
        assert daily[0].close == Decimal("1")
        assert weekly[0].close == Decimal("2")


class TestCoerceTradeDate:
    """Tests for coerce_trade_date()."""

    @pytest.mark.parametrize("value,expected", [
        (date(2024, 1, 2), date(2024, 1, 2)),
        (datetime(2024, 1, 2, 15, 30), date(2024, 1, 2)),
        ("2024-01-02", date(2024, 1, 2)),
        ("2024-01-02T14:00:00Z", date(2024, 1, 2)),
        (1704153600, date(2024, 1, 2)),
        (1704153600.0, date(2024, 1, 2)),
    ])
    def test_readable_values(self, value, expected):
        assert coerce_trade_date(value) == expected

    @pytest.mark.parametrize("value", [None, "", "yesterday", True, float("nan"), [2024, 1, 2]])
    def test_unreadable_values(self, value):
        assert coerce_trade_date(value) is None


# =============================================================================
# READS
# =============================================================================

class TestGetPoints:
    """Tests for get_points() and get_range()."""

    def test_unknown_series_has_no_range(self, db, store):
        assert store.get_range(db, "AAPL", "1d") is None

    def test_points_are_filtered_inclusive_and_ascending(self, db, store):
        points = make_daily_points(date(2024, 1, 1), date(2024, 1, 10))
        store.insert_points(db, "AAPL", "1d", list(reversed(points)))

        result = store.get_points(db, "AAPL", "1d", date(2024, 1, 3), date(2024, 1, 5))

        assert [p.date for p in result] == [date(2024, 1, 3), date(2024, 1, 4), date(2024, 1, 5)]

    def test_point_bounds_ignore_recorded_range(self, db, store):
        store.insert_points(db, "AAPL", "1d", make_daily_points(date(2024, 1, 3), date(2024, 1, 4)))
        store.insert_points(db, "AAPL", "1wk", make_daily_points(date(2023, 1, 1), date(2023, 1, 2)))

        assert store.get_range(db, "AAPL", "1d") == SeriesRange(None, None)
        assert store.get_point_bounds(db, "AAPL", "1d") == SeriesRange(date(2024, 1, 3), date(2024, 1, 4))

    def test_point_bounds_of_empty_series(self, db, store):
        assert store.get_point_bounds(db, "AAPL", "1d") is None


# =============================================================================
# RANGE WIDENING
# =============================================================================

class TestWidenRange:
    """Tests for widen_range()."""

    def test_null_bounds_adopt_arguments(self, db, store):
        store.insert_points(db, "AAPL", "1d", [PricePoint(date(2024, 1, 5), Decimal("1"))])

        store.widen_range(db, "AAPL", "1d", new_oldest=date(2024, 1, 5), new_newest=date(2024, 1, 5))

        assert store.get_range(db, "AAPL", "1d") == SeriesRange(date(2024, 1, 5), date(2024, 1, 5))

    def test_narrower_arguments_do_not_shrink(self, db, store):
        store.initialize_range(db, "AAPL", "1d", date(2024, 1, 1), date(2024, 1, 31))

        store.widen_range(db, "AAPL", "1d", new_oldest=date(2024, 1, 10), new_newest=date(2024, 1, 20))

        assert store.get_range(db, "AAPL", "1d") == SeriesRange(date(2024, 1, 1), date(2024, 1, 31))

    def test_one_bound_at_a_time(self, db, store):
        store.initialize_range(db, "AAPL", "1d", date(2024, 2, 1), date(2024, 2, 10))

        store.widen_range(db, "AAPL", "1d", new_oldest=date(2024, 1, 25))
        assert store.get_range(db, "AAPL", "1d") == SeriesRange(date(2024, 1, 25), date(2024, 2, 10))

        store.widen_range(db, "AAPL", "1d", new_newest=date(2024, 2, 20))
        assert store.get_range(db, "AAPL", "1d") == SeriesRange(date(2024, 1, 25), date(2024, 2, 20))

    def test_no_arguments_is_noop(self, db, store):
        store.initialize_range(db, "AAPL", "1d", date(2024, 2, 1), date(2024, 2, 10))

        assert store.widen_range(db, "AAPL", "1d") is False
        assert store.get_range(db, "AAPL", "1d") == SeriesRange(date(2024, 2, 1), date(2024, 2, 10))

    def test_missing_series_reports_no_update(self, db, store):
        assert store.widen_range(db, "MSFT", "1d", new_oldest=date(2024, 1, 1)) is False
        assert store.get_range(db, "MSFT", "1d") is None

    def test_order_of_widenings_does_not_matter(self, db_engine, store):
        """Any sequence of widenings converges on the overall min/max."""
        widenings = [
            {"new_oldest": date(2024, 1, 10)},
            {"new_newest": date(2024, 3, 1)},
            {"new_oldest": date(2023, 12, 1), "new_newest": date(2024, 1, 15)},
            {"new_oldest": date(2024, 2, 1), "new_newest": date(2024, 2, 2)},
        ]
        SessionLocal = sessionmaker(bind=db_engine)

        for i, order in enumerate(permutations(widenings)):
            symbol = f"SYM{i}"
            with SessionLocal() as session:
                store.insert_points(session, symbol, "1d", [PricePoint(date(2024, 1, 20), Decimal("1"))])
                previous = store.get_range(session, symbol, "1d")
                for kwargs in order:
                    store.widen_range(session, symbol, "1d", **kwargs)
                    current = store.get_range(session, symbol, "1d")
                    # Never shrinks
                    if previous.oldest is not None:
                        assert current.oldest <= previous.oldest
                    if previous.newest is not None:
                        assert current.newest >= previous.newest
                    previous = current

                assert previous == SeriesRange(date(2023, 12, 1), date(2024, 3, 1))

    def test_updates_timestamp(self, db, store):
        store.initialize_range(db, "AAPL", "1d", date(2024, 2, 1), date(2024, 2, 10))
        before = db.scalar(select(ChartSeries.updated_at))

        store.widen_range(db, "AAPL", "1d", new_newest=date(2024, 2, 11))
        after = db.scalar(select(ChartSeries.updated_at))

        assert after >= before


class TestInitializeRange:
    """Tests for initialize_range()."""

    def test_creates_row(self, db, store):
        store.initialize_range(db, "AAPL", "1d", date(2024, 1, 1), date(2024, 1, 10))

        assert store.get_range(db, "AAPL", "1d") == SeriesRange(date(2024, 1, 1), date(2024, 1, 10))

    def test_fills_row_created_by_insert(self, db, store):
        store.insert_points(db, "AAPL", "1d", make_daily_points(date(2024, 1, 1), date(2024, 1, 10)))

        store.initialize_range(db, "AAPL", "1d", date(2024, 1, 1), date(2024, 1, 10))

        assert store.get_range(db, "AAPL", "1d") == SeriesRange(date(2024, 1, 1), date(2024, 1, 10))

    def test_concurrent_initializations_merge(self, db, store):
        """A second cold start merges with min/max instead of overwriting."""
        store.initialize_range(db, "AAPL", "1d", date(2024, 1, 5), date(2024, 1, 10))

        store.initialize_range(db, "AAPL", "1d", date(2024, 1, 1), date(2024, 1, 7))

        assert store.get_range(db, "AAPL", "1d") == SeriesRange(date(2024, 1, 1), date(2024, 1, 10))


# =============================================================================
# ERROR HANDLING
# =============================================================================

class TestStoreErrors:
    """SQLAlchemy errors surface as StoreError and roll back the session."""

    def test_read_error_becomes_store_error(self, db):
        store = ChartStore()
        error = OperationalError("SELECT", {}, Exception("database is locked"))

        with patch.object(db, "execute", side_effect=error), \
                patch.object(db, "rollback") as rollback:
            with pytest.raises(StoreError) as exc_info:
                store.get_range(db, "AAPL", "1d")

        assert exc_info.value.operation == "get_range"
        assert isinstance(exc_info.value.__cause__, OperationalError)
        rollback.assert_called_once()

    def test_write_error_becomes_store_error(self, db):
        store = ChartStore()
        error = OperationalError("INSERT", {}, Exception("disk I/O error"))

        with patch.object(db, "execute", side_effect=error):
            with pytest.raises(StoreError) as exc_info:
                store.insert_points(db, "AAPL", "1d", [PricePoint(date(2024, 1, 2), Decimal("1"))])

        assert exc_info.value.operation == "insert_points"
        assert "disk I/O error" in str(exc_info.value)

