# ruff: noqa: I001
"""Trends cube table: ft_financial_cube.

One row per (tenant, stored period, dimension tuple); uniqueness is carried
by the ``bucket_key`` fingerprint so NULL category ids collide as intended.

Revision ID: 0002_ft_financial_cube
Revises: 0001_ft_ledger_core
Create Date: 2026-10-18
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0002_ft_financial_cube"
down_revision: str | None = "0001_ft_ledger_core"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "ft_financial_cube",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("bucket_key", sa.CHAR(64), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("period_type", sa.String(), nullable=False),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("transaction_type", sa.String(), nullable=False),
        # No foreign keys: rows outlive deleted categories/accounts.
        sa.Column("category_id", sa.BigInteger(), nullable=True),
        sa.Column("category_name", sa.Text(), nullable=False),
        sa.Column("account_id", sa.BigInteger(), nullable=False),
        sa.Column("account_name", sa.Text(), nullable=False),
        sa.Column("is_recurring", sa.Boolean(), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("transaction_count", sa.Integer(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.UniqueConstraint("bucket_key", name="uq_ft_financial_cube_bucket_key"),
        sa.CheckConstraint("period_type in ('WEEKLY','MONTHLY')", name="ck_ft_cube_period_type"),
        sa.CheckConstraint(
            "transaction_type in ('INCOME','EXPENSE','TRANSFER')",
            name="ck_ft_cube_transaction_type",
        ),
        sa.CheckConstraint("transaction_count > 0", name="ck_ft_cube_count_positive"),
        sa.CheckConstraint("period_start <= period_end", name="ck_ft_cube_period_bounds"),
    )
    op.create_index(
        "ix_ft_cube_tenant_period",
        "ft_financial_cube",
        ["tenant_id", "period_type", "period_start"],
    )


def downgrade() -> None:
    op.drop_index("ix_ft_cube_tenant_period", table_name="ft_financial_cube")
    op.drop_table("ft_financial_cube")
