# backend/pricecache/database.py
"""
Engine and session handling for the chart store.

The chart cache is used from workers and scripts, not only from a web
request cycle, so sessions are handed out through session_scope() which
closes them on exit. ChartStore commits its own writes; the scope only
rolls back whatever a failed caller left pending.

Engine selection follows DATABASE_URL:
- sqlite://... -> StaticPool, one shared connection (tests, local runs)
- postgresql://... -> QueuePool sized by the DB_POOL_* settings
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, func, inspect, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from .config import settings
from .models import ChartPoint, ChartSeries

logger = logging.getLogger(__name__)

CACHE_TABLES = (ChartSeries.__tablename__, ChartPoint.__tablename__)


def build_engine(database_url: str | None = None) -> Engine:
    """
    Create an engine for a database URL (defaults to settings.database_url).

    SQLite gets a StaticPool so an in-memory database survives across
    sessions; anything else gets the configured QueuePool.
    """
    url = database_url or settings.database_url

    if url.lower().startswith("sqlite://"):
        logger.info("Configuring SQLite chart store")
        return create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=settings.debug,
        )

    logger.info(
        f"Configuring PostgreSQL chart store: "
        f"pool_size={settings.db_pool_size}, "
        f"max_overflow={settings.db_pool_max_overflow}, "
        f"recycle={settings.db_pool_recycle}s"
    )
    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_pool_max_overflow,
        pool_recycle=settings.db_pool_recycle,
        pool_pre_ping=settings.db_pool_pre_ping,
        pool_timeout=30,
        echo=settings.debug,
    )


engine = build_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def session_scope(factory: sessionmaker = SessionLocal) -> Iterator[Session]:
    """
    Yield a session and close it afterwards.

    Usage:
        with session_scope() as db:
            result = service.resolve(db, "AAPL", "1d", start, end)
    """
    db = factory()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def check_database_health(bind: Engine | None = None) -> dict:
    """
    Check connectivity and whether the chart cache tables exist.

    Returns:
        dict with "status" ("healthy" / "unhealthy"), the backend name,
        missing tables and the number of cached series.
    """
    bind = bind or engine
    try:
        with bind.connect() as conn:
            conn.execute(text("SELECT 1"))
            existing = set(inspect(conn).get_table_names())
            missing = [name for name in CACHE_TABLES if name not in existing]

            series_count = None
            if not missing:
                series_count = conn.execute(
                    select(func.count()).select_from(ChartSeries)
                ).scalar_one()

        return {
            "status": "healthy" if not missing else "unhealthy",
            "database": bind.dialect.name,
            "missing_tables": missing,
            "series_count": series_count,
        }
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return {
            "status": "unhealthy",
            "database": bind.dialect.name,
            "error": str(e),
        }
