"""widen money, variance and rate precision

Money columns move from 2 to 10 fractional digits, variance to 6 and
exchange rates to 8.

Revision ID: 202602031000
Revises: 202601121400
Create Date: 2026-02-03 10:00:00.000000

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


revision = "202602031000"
down_revision = "202601121400"
branch_labels = None
depends_on = None

LEDGER_MONEY = ("budget", "actual", "forecast", "actual_plus_forecast")
RECORD_MONEY = (
    "amount",
    "original_budget",
    "remaining_budget",
    "actual_spent",
    "forecast_amount",
)


def _alter(table: str, columns, old: sa.Numeric, new: sa.Numeric) -> None:
    with op.batch_alter_table(table) as batch_op:
        for name in columns:
            batch_op.alter_column(name, type_=new, existing_type=old)


def upgrade() -> None:
    _alter("budget_data", LEDGER_MONEY, sa.Numeric(12, 2), sa.Numeric(18, 10))
    _alter("budget_data", ("variance_percentage",), sa.Numeric(5, 2), sa.Numeric(10, 6))
    _alter("budget_preview", RECORD_MONEY, sa.Numeric(12, 2), sa.Numeric(18, 10))
    _alter("budget_preview", ("variance_percentage",), sa.Numeric(5, 2), sa.Numeric(10, 6))
    _alter("budget_preview", ("usd_to_etb", "eur_to_etb"), sa.Numeric(10, 4), sa.Numeric(18, 8))
    _alter("currency_rates", ("exchange_rate",), sa.Numeric(10, 4), sa.Numeric(18, 8))


def downgrade() -> None:
    _alter("currency_rates", ("exchange_rate",), sa.Numeric(18, 8), sa.Numeric(10, 4))
    _alter("budget_preview", ("usd_to_etb", "eur_to_etb"), sa.Numeric(18, 8), sa.Numeric(10, 4))
    _alter("budget_preview", ("variance_percentage",), sa.Numeric(10, 6), sa.Numeric(5, 2))
    _alter("budget_preview", RECORD_MONEY, sa.Numeric(18, 10), sa.Numeric(12, 2))
    _alter("budget_data", ("variance_percentage",), sa.Numeric(10, 6), sa.Numeric(5, 2))
    _alter("budget_data", LEDGER_MONEY, sa.Numeric(18, 10), sa.Numeric(12, 2))
