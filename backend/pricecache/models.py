# backend/pricecache/models.py
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import String, Date, DateTime, Numeric, ForeignKeyConstraint, Index
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


class ChartSeries(Base):
    """
    Known-complete date range for one (symbol, interval) pair.

    The bounds are NULL until the first successful fetch. Once set they only
    ever widen: oldest_date moves earlier, newest_date moves later. Every
    ChartPoint of the series lies inside [oldest_date, newest_date].
    """
    __tablename__ = "chart_series"

    symbol: Mapped[str] = mapped_column(String, primary_key=True)  # e.g. "AAPL", "SAP.DE"
    interval: Mapped[str] = mapped_column(String, primary_key=True)  # e.g. "1d", "1wk"

    oldest_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    newest_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    points: Mapped[list["ChartPoint"]] = relationship(
        back_populates="series",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class ChartPoint(Base):
    """
    One closing value per trading date for a series.

    (symbol, interval, trade_date) is the primary key, so re-inserting a date
    overwrites close (last writer wins).
    """
    __tablename__ = "chart_points"
    __table_args__ = (
        ForeignKeyConstraint(
            ["symbol", "interval"],
            ["chart_series.symbol", "chart_series.interval"],
            ondelete="CASCADE",
        ),
        # Range scans: "points for symbol X / interval Y between two dates"
        Index("ix_chart_points_symbol_interval_date", "symbol", "interval", "trade_date"),
    )

    symbol: Mapped[str] = mapped_column(String, primary_key=True)
    interval: Mapped[str] = mapped_column(String, primary_key=True)
    trade_date: Mapped[date] = mapped_column(Date, primary_key=True)  # Calendar date, no time component

    close: Mapped[Decimal | None] = mapped_column(Numeric(18, 4), nullable=True)

    series: Mapped["ChartSeries"] = relationship(back_populates="points")
