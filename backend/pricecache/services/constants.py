# backend/pricecache/services/constants.py
"""
Centralized constants for the price cache services.

Tunable values (rate window, TTLs, retry budget) live in config.Settings so
they can be overridden per environment; this module holds the fixed
vocabulary shared by the services.

Usage:
    from pricecache.services.constants import (
        SUPPORTED_INTERVALS,
        BACKFILL_LOCK_KEY,
    )
"""


# =============================================================================
# INTERVALS
# =============================================================================

# Sampling intervals accepted by the chart cache (Yahoo Finance notation)
SUPPORTED_INTERVALS: tuple[str, ...] = ("1d", "5m", "15m", "30m", "60m", "1h", "1wk", "1mo")


# =============================================================================
# COORDINATION STORE KEYS
# =============================================================================
# All keys live in the shared Redis instance. Format placeholders are
# filled with the normalized symbol and interval.

# Fixed-window request counter for the upstream provider
RATE_LIMIT_KEY: str = "yahoo:rate_limit:requests"

# Advisory lock: "a backfill for this series is in flight"
BACKFILL_LOCK_KEY: str = "yahoo:backfill_lock:{symbol}:{interval}"

# Negative-result marker: "no data older than the stored range exists"
NO_OLDER_DATA_KEY: str = "yahoo:no_older:{symbol}:{interval}"

# Quote snapshot cache, keyed by the sorted comma-joined symbol list
QUOTE_CACHE_KEY: str = "yahoo:quote:{symbols}"

# Sentinel value stored in lock and marker keys
SENTINEL_VALUE: str = "1"


# =============================================================================
# RATE GOVERNOR
# =============================================================================

# Extra slack added to the counter's remaining TTL before re-checking,
# so we wake up after the window has actually rolled over
RATE_WINDOW_SLACK_SECONDS: float = 0.5
