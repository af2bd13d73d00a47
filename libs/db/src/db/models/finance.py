from __future__ import annotations

import datetime as dt
from decimal import Decimal

from sqlalchemy import (
    CHAR,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import expression as sa_expr

# SQLite only auto-increments ``INTEGER PRIMARY KEY`` (rowid) columns.
_PK = BigInteger().with_variant(Integer, "sqlite")

TRANSACTION_TYPES: tuple[str, ...] = ("INCOME", "EXPENSE", "TRANSFER")
STORED_PERIOD_TYPES: tuple[str, ...] = ("WEEKLY", "MONTHLY")


def _in_list(values: tuple[str, ...]) -> str:
    return ",".join(f"'{v}'" for v in values)


class Base(DeclarativeBase):
    pass


# ---------------------------
# Ledger: ft_accounts / ft_categories / ft_transactions
#
# Owned by the surrounding application. The trends cube only reads these.
# ---------------------------


class FtAccount(Base):
    __tablename__ = "ft_accounts"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'CHECKING'"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=sa_expr.true())
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (UniqueConstraint("tenant_id", "name", name="uq_ft_accounts_tenant_name"),)


class FtCategory(Base):
    __tablename__ = "ft_categories"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'EXPENSE'"))
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", "type", name="uq_ft_categories_tenant_name_type"),
    )


class FtTransaction(Base):
    __tablename__ = "ft_transactions"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String, nullable=False, active_history=True)
    # Cube-relevant columns keep their previous value in the attribute history
    # even when it was not loaded; the cube hooks read the "before" side there.
    account_id: Mapped[int] = mapped_column(
        _PK,
        ForeignKey("ft_accounts.id", ondelete="CASCADE"),
        nullable=False,
        active_history=True,
    )
    category_id: Mapped[int | None] = mapped_column(
        _PK,
        ForeignKey("ft_categories.id", ondelete="SET NULL"),
        nullable=True,
        active_history=True,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, active_history=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, server_default=text("''"))
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, active_history=True)
    type: Mapped[str] = mapped_column(String, nullable=False, active_history=True)
    is_recurring: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=sa_expr.false(), active_history=True
    )
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            f"type in ({_in_list(TRANSACTION_TYPES)})",
            name="ck_ft_tx_type",
        ),
        Index("ix_ft_transactions_tenant_date", "tenant_id", "date"),
    )


# ---------------------------
# Cube: ft_financial_cube
# ---------------------------


class FtCubeRow(Base):
    """One materialized (period, dimension tuple) aggregate of the ledger.

    ``bucket_key`` is a SHA-256 fingerprint over ``(tenant_id, period_type,
    period_start, transaction_type, category_id, account_id, is_recurring)``.
    It carries the uniqueness of the dimension tuple because a composite
    unique constraint would treat NULL ``category_id`` values as distinct.

    ``category_name``/``account_name`` are display snapshots; ``category_id``
    and ``account_id`` carry no foreign keys, so rows outlive the referenced
    category or account.
    """

    __tablename__ = "ft_financial_cube"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    bucket_key: Mapped[str] = mapped_column(CHAR(64), nullable=False)
    tenant_id: Mapped[str] = mapped_column(String, nullable=False)
    period_type: Mapped[str] = mapped_column(String, nullable=False)
    period_start: Mapped[dt.date] = mapped_column(Date, nullable=False)
    period_end: Mapped[dt.date] = mapped_column(Date, nullable=False)
    transaction_type: Mapped[str] = mapped_column(String, nullable=False)
    category_id: Mapped[int | None] = mapped_column(_PK, nullable=True)
    category_name: Mapped[str] = mapped_column(Text, nullable=False)
    account_id: Mapped[int] = mapped_column(_PK, nullable=False)
    account_name: Mapped[str] = mapped_column(Text, nullable=False)
    is_recurring: Mapped[bool] = mapped_column(Boolean, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    transaction_count: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("bucket_key", name="uq_ft_financial_cube_bucket_key"),
        CheckConstraint(
            f"period_type in ({_in_list(STORED_PERIOD_TYPES)})", name="ck_ft_cube_period_type"
        ),
        CheckConstraint(
            f"transaction_type in ({_in_list(TRANSACTION_TYPES)})",
            name="ck_ft_cube_transaction_type",
        ),
        CheckConstraint("transaction_count > 0", name="ck_ft_cube_count_positive"),
        CheckConstraint("period_start <= period_end", name="ck_ft_cube_period_bounds"),
        Index("ix_ft_cube_tenant_period", "tenant_id", "period_type", "period_start"),
    )


__all__ = [
    "Base",
    "FtAccount",
    "FtCategory",
    "FtCubeRow",
    "FtTransaction",
    "STORED_PERIOD_TYPES",
    "TRANSACTION_TYPES",
]
