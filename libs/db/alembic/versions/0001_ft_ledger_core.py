# ruff: noqa: I001
"""Ledger tables: ft_accounts, ft_categories, ft_transactions.

Revision ID: 0001_ft_ledger_core
Revises: None
Create Date: 2026-10-18
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_ft_ledger_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
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
    ]


def upgrade() -> None:
    # ft_accounts
    op.create_table(
        "ft_accounts",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("type", sa.String(), nullable=False, server_default=sa.text("'CHECKING'")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.UniqueConstraint("tenant_id", "name", name="uq_ft_accounts_tenant_name"),
    )
    op.create_index("ix_ft_accounts_tenant_id", "ft_accounts", ["tenant_id"])

    # ft_categories
    op.create_table(
        "ft_categories",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("type", sa.String(), nullable=False, server_default=sa.text("'EXPENSE'")),
        *_timestamps(),
        sa.UniqueConstraint(
            "tenant_id", "name", "type", name="uq_ft_categories_tenant_name_type"
        ),
    )
    op.create_index("ix_ft_categories_tenant_id", "ft_categories", ["tenant_id"])

    # ft_transactions
    op.create_table(
        "ft_transactions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column(
            "account_id",
            sa.BigInteger(),
            sa.ForeignKey("ft_accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "category_id",
            sa.BigInteger(),
            sa.ForeignKey("ft_categories.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("is_recurring", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
        sa.CheckConstraint("type in ('INCOME','EXPENSE','TRANSFER')", name="ck_ft_tx_type"),
    )
    op.create_index("ix_ft_transactions_tenant_date", "ft_transactions", ["tenant_id", "date"])


def downgrade() -> None:
    op.drop_index("ix_ft_transactions_tenant_date", table_name="ft_transactions")
    op.drop_table("ft_transactions")
    op.drop_index("ix_ft_categories_tenant_id", table_name="ft_categories")
    op.drop_table("ft_categories")
    op.drop_index("ix_ft_accounts_tenant_id", table_name="ft_accounts")
    op.drop_table("ft_accounts")
