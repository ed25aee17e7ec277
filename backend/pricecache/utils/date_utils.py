# backend/pricecache/utils/date_utils.py
"""
Date utility functions for the price cache.

This module provides shared date manipulation functions used across
multiple services. Centralizing these prevents code duplication and
ensures consistent behavior.

Usage:
    from pricecache.utils.date_utils import resolve_range_preset

    start, end = resolve_range_preset("6mo", date.today())
"""

import calendar
from datetime import date, datetime, timedelta, timezone

# Named look-back windows ending today
RANGE_PRESETS: tuple[str, ...] = ("1d", "5d", "1mo", "6mo", "ytd", "1y")

# Preset used when an unknown name is requested
DEFAULT_RANGE_PRESET: str = "1mo"


def to_calendar_date(value: date | datetime) -> date:
    """
    Normalize a date or datetime to a calendar date.

    A datetime keeps its own calendar day (no timezone conversion).
    """
    if isinstance(value, datetime):
        return value.date()
    return value


def to_epoch_seconds(d: date) -> int:
    """
    Get the epoch-second timestamp of midnight UTC on a calendar date.

    Example:
        >>> to_epoch_seconds(date(2024, 1, 2))
        1704153600
    """
    return int(datetime(d.year, d.month, d.day, tzinfo=timezone.utc).timestamp())


def subtract_months(d: date, months: int) -> date:
    """
    Move a date back by a number of calendar months.

    The day is clamped to the length of the target month, so
    March 31 minus one month is February 28 (or 29).
    """
    month_index = d.year * 12 + (d.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def resolve_range_preset(range_name: str, today: date) -> tuple[date, date]:
    """
    Resolve a named look-back window to a concrete date range.

    Presets:
        1d  - since yesterday
        5d  - last five days
        1mo - same day last month
        6mo - same day six months ago
        ytd - since January 1st of this year
        1y  - same day last year

    Unknown names fall back to 1mo.

    Args:
        range_name: Preset name (case-insensitive)
        today: The date the window ends on

    Returns:
        Tuple of (start_date, today)
    """
    preset = (range_name or "").strip().lower()
    if preset not in RANGE_PRESETS:
        preset = DEFAULT_RANGE_PRESET

    if preset == "1d":
        start = today - timedelta(days=1)
    elif preset == "5d":
        start = today - timedelta(days=5)
    elif preset == "6mo":
        start = subtract_months(today, 6)
    elif preset == "ytd":
        start = date(today.year, 1, 1)
    elif preset == "1y":
        start = subtract_months(today, 12)
    else:
        start = subtract_months(today, 1)

    return start, today
