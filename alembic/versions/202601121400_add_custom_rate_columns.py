"""add custom rate columns

Revision ID: 202601121400
Revises: 202601050900
Create Date: 2026-01-12 14:00:00.000000

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


revision = "202601121400"
down_revision = "202601050900"
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table("clusters") as batch_op:
        batch_op.add_column(
            sa.Column(
                "custom_currency_enabled",
                sa.Boolean(),
                nullable=False,
                server_default=sa.false(),
            )
        )

    with op.batch_alter_table("budget_preview") as batch_op:
        batch_op.add_column(
            sa.Column(
                "use_custom_rate",
                sa.Boolean(),
                nullable=False,
                server_default=sa.false(),
            )
        )
        batch_op.add_column(sa.Column("usd_to_etb", sa.Numeric(10, 4)))
        batch_op.add_column(sa.Column("eur_to_etb", sa.Numeric(10, 4)))


def downgrade() -> None:
    with op.batch_alter_table("budget_preview") as batch_op:
        batch_op.drop_column("eur_to_etb")
        batch_op.drop_column("usd_to_etb")
        batch_op.drop_column("use_custom_rate")

    with op.batch_alter_table("clusters") as batch_op:
        batch_op.drop_column("custom_currency_enabled")
