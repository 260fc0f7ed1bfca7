"""initial ledger schema

Revision ID: 202601050900
Revises:
Create Date: 2026-01-05 09:00:00.000000

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


revision = "202601050900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "budget_data",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("year2", sa.Integer(), nullable=False),
        sa.Column("category_name", sa.String(length=255), nullable=False),
        sa.Column("cluster", sa.String(length=100)),
        sa.Column("period_name", sa.String(length=20), nullable=False),
        sa.Column("budget", sa.Numeric(12, 2)),
        sa.Column("actual", sa.Numeric(12, 2)),
        sa.Column("forecast", sa.Numeric(12, 2)),
        sa.Column("actual_plus_forecast", sa.Numeric(12, 2)),
        sa.Column("variance_percentage", sa.Numeric(5, 2)),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="ETB"),
        sa.Column(
            "certified", sa.String(length=20), nullable=False, server_default="uncertified"
        ),
        sa.Column("start_date", sa.Date()),
        sa.Column("end_date", sa.Date()),
        *_timestamps(),
        sa.UniqueConstraint(
            "year2",
            "category_name",
            "cluster",
            "period_name",
            name="uq_budget_data_scope_period",
        ),
    )
    op.create_index("ix_budget_data_year_cluster", "budget_data", ["year2", "cluster"])
    op.create_index(
        "ix_budget_data_year_category_period",
        "budget_data",
        ["year2", "category_name", "period_name"],
    )

    op.create_table(
        "budget_preview",
        sa.Column("PreviewID", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer()),
        sa.Column("cluster", sa.String(length=100)),
        sa.Column("source", sa.String(length=10), nullable=False, server_default="form"),
        sa.Column("budget_heading", sa.String(length=255), nullable=False),
        sa.Column("outcome", sa.Text()),
        sa.Column("activity", sa.Text()),
        sa.Column("budget_line", sa.Text()),
        sa.Column("description", sa.Text()),
        sa.Column("partner", sa.Text()),
        sa.Column("pv_number", sa.String(length=100)),
        sa.Column("entry_date", sa.Date(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="ETB"),
        sa.Column("quarter_period", sa.String(length=20)),
        sa.Column("category_name", sa.String(length=255)),
        sa.Column("original_budget", sa.Numeric(12, 2)),
        sa.Column("remaining_budget", sa.Numeric(12, 2)),
        sa.Column("actual_spent", sa.Numeric(12, 2)),
        sa.Column("forecast_amount", sa.Numeric(12, 2)),
        sa.Column("variance_percentage", sa.Numeric(5, 2)),
        sa.Column("budget_id", sa.Integer(), sa.ForeignKey("budget_data.id")),
        *_timestamps(),
    )
    op.create_index("ix_budget_preview_budget_id", "budget_preview", ["budget_id"])
    op.create_index(
        "ix_budget_preview_cluster_date", "budget_preview", ["cluster", "entry_date"]
    )

    op.create_table(
        "clusters",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False, unique=True),
        *_timestamps(),
    )

    op.create_table(
        "currency_rates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "cluster_id", sa.Integer(), sa.ForeignKey("clusters.id"), nullable=False
        ),
        sa.Column("from_currency", sa.String(length=3), nullable=False),
        sa.Column("to_currency", sa.String(length=3), nullable=False, server_default="ETB"),
        sa.Column("exchange_rate", sa.Numeric(10, 4), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint(
            "cluster_id",
            "from_currency",
            "to_currency",
            name="uq_currency_rate_cluster_pair",
        ),
    )


def downgrade() -> None:
    op.drop_table("currency_rates")
    op.drop_table("clusters")
    op.drop_index("ix_budget_preview_cluster_date", table_name="budget_preview")
    op.drop_index("ix_budget_preview_budget_id", table_name="budget_preview")
    op.drop_table("budget_preview")
    op.drop_index("ix_budget_data_year_category_period", table_name="budget_data")
    op.drop_index("ix_budget_data_year_cluster", table_name="budget_data")
    op.drop_table("budget_data")
