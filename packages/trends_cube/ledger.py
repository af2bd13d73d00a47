"""Read-only access to the transaction ledger.

The ledger (``ft_transactions`` and its reference tables) belongs to the host
application; the cube never writes to it. Components depend on the
``Ledger`` protocol so tests and alternative deployments can substitute their
own reader; ``SqlLedger`` is the default implementation over the shared
``db.models.finance`` tables and reads through the caller's session, so every
query sees the same transactional snapshot as the cube writes that follow.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from decimal import Decimal
from typing import NamedTuple, Protocol

from db.models.finance import FtAccount, FtCategory, FtTransaction
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .models import UNCATEGORIZED, CubeFields, Dimension, TransactionType, quantize_amount


class LedgerAggregate(NamedTuple):
    total_amount: Decimal
    transaction_count: int


class DimensionAggregate(NamedTuple):
    dimension: Dimension
    category_name: str
    account_name: str
    total_amount: Decimal
    transaction_count: int


class Ledger(Protocol):
    def aggregate(
        self,
        session: Session,
        tenant_id: str,
        period_start: date,
        period_end: date,
        dimension: Dimension,
    ) -> LedgerAggregate: ...

    def aggregate_by_dimension(
        self,
        session: Session,
        tenant_id: str,
        period_start: date,
        period_end: date,
        *,
        account_id: int | None = None,
    ) -> list[DimensionAggregate]: ...

    def earliest_transaction_date(
        self, session: Session, tenant_id: str, *, account_id: int | None = None
    ) -> date | None: ...

    def snapshot_names(
        self, session: Session, tenant_id: str, dimension: Dimension
    ) -> tuple[str, str]: ...

    def cube_fields(
        self, session: Session, tenant_id: str, transaction_ids: Iterable[int]
    ) -> dict[int, CubeFields]: ...


def account_fallback_name(account_id: int) -> str:
    """Display label for an account that no longer exists in the ledger."""
    return f"Account #{account_id}"


def cube_fields_of(tx: FtTransaction) -> CubeFields:
    """Return the cube-relevant values of an ORM transaction row."""

    return CubeFields(
        date=tx.date,
        amount=quantize_amount(tx.amount),
        transaction_type=TransactionType(tx.type),
        category_id=tx.category_id,
        account_id=tx.account_id,
        is_recurring=bool(tx.is_recurring),
    )


def _dimension_filters(tenant_id: str, period_start: date, period_end: date, dim: Dimension):
    return (
        FtTransaction.tenant_id == tenant_id,
        FtTransaction.date >= period_start,
        FtTransaction.date <= period_end,
        FtTransaction.type == str(dim.transaction_type),
        FtTransaction.category_id.is_not_distinct_from(dim.category_id),
        FtTransaction.account_id == dim.account_id,
        FtTransaction.is_recurring == dim.is_recurring,
    )


class SqlLedger:
    """``Ledger`` over the ``ft_*`` tables of the shared database."""

    def aggregate(
        self,
        session: Session,
        tenant_id: str,
        period_start: date,
        period_end: date,
        dimension: Dimension,
    ) -> LedgerAggregate:
        stmt = select(func.sum(FtTransaction.amount), func.count()).where(
            *_dimension_filters(tenant_id, period_start, period_end, dimension)
        )
        total, count = session.execute(stmt).one()
        return LedgerAggregate(quantize_amount(total), int(count or 0))

    def aggregate_by_dimension(
        self,
        session: Session,
        tenant_id: str,
        period_start: date,
        period_end: date,
        *,
        account_id: int | None = None,
    ) -> list[DimensionAggregate]:
        stmt = (
            select(
                FtTransaction.type,
                FtTransaction.category_id,
                FtTransaction.account_id,
                FtTransaction.is_recurring,
                func.min(FtCategory.name),
                func.min(FtAccount.name),
                func.sum(FtTransaction.amount),
                func.count(),
            )
            .select_from(FtTransaction)
            .outerjoin(FtCategory, FtCategory.id == FtTransaction.category_id)
            .outerjoin(FtAccount, FtAccount.id == FtTransaction.account_id)
            .where(
                FtTransaction.tenant_id == tenant_id,
                FtTransaction.date >= period_start,
                FtTransaction.date <= period_end,
            )
            .group_by(
                FtTransaction.type,
                FtTransaction.category_id,
                FtTransaction.account_id,
                FtTransaction.is_recurring,
            )
        )
        if account_id is not None:
            stmt = stmt.where(FtTransaction.account_id == account_id)

        out: list[DimensionAggregate] = []
        for row in session.execute(stmt):
            tx_type, cat_id, acct_id, recurring, cat_name, acct_name, total, count = row
            dim = Dimension(
                transaction_type=TransactionType(tx_type),
                category_id=cat_id,
                account_id=acct_id,
                is_recurring=bool(recurring),
            )
            out.append(
                DimensionAggregate(
                    dimension=dim,
                    category_name=cat_name if cat_id is not None and cat_name else UNCATEGORIZED,
                    account_name=acct_name or account_fallback_name(acct_id),
                    total_amount=quantize_amount(total),
                    transaction_count=int(count),
                )
            )
        out.sort(key=lambda a: a.dimension.sort_key())
        return out

    def earliest_transaction_date(
        self, session: Session, tenant_id: str, *, account_id: int | None = None
    ) -> date | None:
        stmt = select(func.min(FtTransaction.date)).where(FtTransaction.tenant_id == tenant_id)
        if account_id is not None:
            stmt = stmt.where(FtTransaction.account_id == account_id)
        return session.execute(stmt).scalar_one_or_none()

    def snapshot_names(
        self, session: Session, tenant_id: str, dimension: Dimension
    ) -> tuple[str, str]:
        category_name = UNCATEGORIZED
        if dimension.category_id is not None:
            found = session.execute(
                select(FtCategory.name).where(FtCategory.id == dimension.category_id)
            ).scalar_one_or_none()
            category_name = found or UNCATEGORIZED
        account_name = session.execute(
            select(FtAccount.name).where(FtAccount.id == dimension.account_id)
        ).scalar_one_or_none()
        return category_name, account_name or account_fallback_name(dimension.account_id)

    def cube_fields(
        self, session: Session, tenant_id: str, transaction_ids: Iterable[int]
    ) -> dict[int, CubeFields]:
        ids = sorted(set(transaction_ids))
        if not ids:
            return {}
        rows = session.execute(
            select(
                FtTransaction.id,
                FtTransaction.date,
                FtTransaction.amount,
                FtTransaction.type,
                FtTransaction.category_id,
                FtTransaction.account_id,
                FtTransaction.is_recurring,
            ).where(FtTransaction.tenant_id == tenant_id, FtTransaction.id.in_(ids))
        ).all()
        return {
            row.id: CubeFields(
                date=row.date,
                amount=quantize_amount(row.amount),
                transaction_type=TransactionType(row.type),
                category_id=row.category_id,
                account_id=row.account_id,
                is_recurring=bool(row.is_recurring),
            )
            for row in rows
        }


__all__ = [
    "DimensionAggregate",
    "Ledger",
    "LedgerAggregate",
    "SqlLedger",
    "account_fallback_name",
    "cube_fields_of",
]
