"""Chart cache schema

Tables:
    - chart_series: Known-complete date range per (symbol, interval)
    - chart_points: Closing value per (symbol, interval, trade_date)

Revision ID: 001
Revises: None
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ==========================================================================
    # CHART SERIES
    # ==========================================================================
    op.create_table(
        'chart_series',
        sa.Column('symbol', sa.String(), primary_key=True),
        sa.Column('interval', sa.String(), primary_key=True),
        sa.Column('oldest_date', sa.Date(), nullable=True),
        sa.Column('newest_date', sa.Date(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )

    # ==========================================================================
    # CHART POINTS
    # ==========================================================================
    op.create_table(
        'chart_points',
        sa.Column('symbol', sa.String(), primary_key=True),
        sa.Column('interval', sa.String(), primary_key=True),
        sa.Column('trade_date', sa.Date(), primary_key=True),
        sa.Column('close', sa.Numeric(18, 4), nullable=True),
        sa.ForeignKeyConstraint(
            ['symbol', 'interval'],
            ['chart_series.symbol', 'chart_series.interval'],
            ondelete='CASCADE',
        ),
    )
    op.create_index(
        'ix_chart_points_symbol_interval_date',
        'chart_points',
        ['symbol', 'interval', 'trade_date'],
    )


def downgrade() -> None:
    op.drop_index('ix_chart_points_symbol_interval_date', table_name='chart_points')
    op.drop_table('chart_points')
    op.drop_table('chart_series')
