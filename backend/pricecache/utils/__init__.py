# backend/pricecache/utils/__init__.py
"""
Cross-cutting utilities for the price cache.

- logging: Logging setup with correlation ID support
- context: Correlation ID context
- date_utils: Calendar date helpers and range presets

Usage:
    from pricecache.utils import setup_logging, correlation_scope
    from pricecache.utils.date_utils import resolve_range_preset
"""

from pricecache.utils.context import (
    clear_correlation_id,
    correlation_scope,
    get_correlation_id,
    set_correlation_id,
)
from pricecache.utils.logging import setup_logging

__all__ = [
    # Logging
    "setup_logging",
    # Context
    "get_correlation_id",
    "set_correlation_id",
    "clear_correlation_id",
    "correlation_scope",
]
