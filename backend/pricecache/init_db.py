# backend/pricecache/init_db.py
"""
Schema bootstrap for the chart cache tables.

Table creation is an explicit startup step: call create_tables() once
before serving requests, or run this module directly:

    python -m pricecache.init_db
"""

import logging

from sqlalchemy.engine import Engine

from pricecache.models import Base

logger = logging.getLogger(__name__)


def create_tables(bind: Engine | None = None) -> None:
    """
    Create chart_series and chart_points if they do not exist.

    Args:
        bind: Engine to use; defaults to the application engine
    """
    if bind is None:
        from pricecache.database import engine
        bind = engine

    logger.info("Creating chart cache tables")
    Base.metadata.create_all(bind=bind)
    logger.info("Chart cache tables ready")


if __name__ == "__main__":
    from pricecache.utils.logging import setup_logging

    setup_logging()
    create_tables()
