# ruff: noqa: I001
"""Cube Store: row-level access to ``ft_financial_cube``.

Every write goes through here so the upsert key, the per-bucket lock and the
"no stored zero rows" rule live in one place. Functions take the caller's
session and never commit.

Writes are upserts on ``bucket_key`` using the dialect's
``INSERT ... ON CONFLICT DO UPDATE``; PostgreSQL is the production target and
SQLite is supported for tests and local runs.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Collection
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import delete, distinct, func, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from db.models.finance import FtCubeRow
from .models import (
    Bucket,
    CubeStats,
    DateRange,
    Dimension,
    Period,
    PeriodType,
    TransactionType,
    TrendRow,
    quantize_amount,
)


def compute_bucket_key(bucket: Bucket) -> str:
    """Compute the stable SHA-256 fingerprint identifying ``bucket``.

    Fields used: tenant, period type, period start (YYYY-MM-DD), transaction
    type, category id (or None), account id, recurring flag.
    """

    dim = bucket.dimension
    payload = {
        "tenant": bucket.tenant_id,
        "period_type": str(bucket.period.period_type),
        "period_start": bucket.period.start.isoformat(),
        "type": str(dim.transaction_type),
        "category": dim.category_id,
        "account": dim.account_id,
        "recurring": bool(dim.is_recurring),
    }
    data = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def _dialect(session: Session) -> str:
    return session.get_bind().dialect.name


def lock_bucket(session: Session, bucket_key: str) -> None:
    """Take a transaction-scoped advisory lock on ``bucket_key`` (PostgreSQL only).

    Released automatically at commit/rollback. Other backends serialize
    writers on their own (SQLite) and are left alone.
    """

    if _dialect(session) != "postgresql":
        return
    # 15 hex digits stay within a signed BIGINT.
    session.execute(select(func.pg_advisory_xact_lock(int(bucket_key[:15], 16))))


def _insert(session: Session):
    name = _dialect(session)
    if name == "postgresql":
        return pg_insert(FtCubeRow)
    if name == "sqlite":
        return sqlite_insert(FtCubeRow)
    raise NotImplementedError(f"Cube upserts are not supported on dialect {name!r}")


def bucket_of(row: FtCubeRow) -> Bucket:
    """Rebuild the ``Bucket`` a stored row belongs to."""

    return Bucket(
        tenant_id=row.tenant_id,
        period=Period(PeriodType(row.period_type), row.period_start, row.period_end),
        dimension=Dimension(
            transaction_type=TransactionType(row.transaction_type),
            category_id=row.category_id,
            account_id=row.account_id,
            is_recurring=bool(row.is_recurring),
        ),
    )


def upsert_bucket(
    session: Session,
    bucket: Bucket,
    *,
    total_amount: Decimal,
    transaction_count: int,
    category_name: str,
    account_name: str,
    bucket_key: str | None = None,
) -> str:
    """Insert or update the row for ``bucket`` and return its key.

    Names are written on insert only; an existing row keeps the snapshot it
    was created with.
    """

    if transaction_count <= 0:
        raise ValueError("Refusing to store an empty bucket; delete it instead")
    if not bucket.period.period_type.is_stored:
        raise ValueError(f"{bucket.period.period_type} periods are derived, not stored")

    key = bucket_key or compute_bucket_key(bucket)
    dim = bucket.dimension
    now = func.now()
    stmt = _insert(session).values(
        bucket_key=key,
        tenant_id=bucket.tenant_id,
        period_type=str(bucket.period.period_type),
        period_start=bucket.period.start,
        period_end=bucket.period.end,
        transaction_type=str(dim.transaction_type),
        category_id=dim.category_id,
        category_name=category_name,
        account_id=dim.account_id,
        account_name=account_name,
        is_recurring=dim.is_recurring,
        total_amount=quantize_amount(total_amount),
        transaction_count=int(transaction_count),
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[FtCubeRow.bucket_key],
        set_={
            "total_amount": stmt.excluded.total_amount,
            "transaction_count": stmt.excluded.transaction_count,
            "period_end": stmt.excluded.period_end,
            "updated_at": now,
        },
    )
    session.execute(stmt)
    return key


def _delete(session: Session, *criteria) -> int:
    stmt = delete(FtCubeRow).where(*criteria).execution_options(synchronize_session=False)
    return int(session.execute(stmt).rowcount or 0)


def delete_bucket(session: Session, bucket: Bucket, *, bucket_key: str | None = None) -> int:
    return _delete(session, FtCubeRow.bucket_key == (bucket_key or compute_bucket_key(bucket)))


def _period_criteria(tenant_id: str, period: Period, account_id: int | None):
    criteria = [
        FtCubeRow.tenant_id == tenant_id,
        FtCubeRow.period_type == str(period.period_type),
        FtCubeRow.period_start == period.start,
    ]
    if account_id is not None:
        criteria.append(FtCubeRow.account_id == account_id)
    return criteria


def buckets_in_period(
    session: Session, tenant_id: str, period: Period, *, account_id: int | None = None
) -> dict[str, Bucket]:
    """Stored buckets of one period (optionally for one account), by key."""

    stmt = select(FtCubeRow).where(*_period_criteria(tenant_id, period, account_id))
    return {row.bucket_key: bucket_of(row) for row in session.execute(stmt).scalars()}


def delete_before(session: Session, tenant_id: str, cutoff: date) -> int:
    """Delete the tenant's rows whose ``period_start`` is strictly before ``cutoff``."""

    return _delete(session, FtCubeRow.tenant_id == tenant_id, FtCubeRow.period_start < cutoff)


def delete_all(session: Session, tenant_id: str) -> int:
    return _delete(session, FtCubeRow.tenant_id == tenant_id)


def row_filters(
    *,
    transaction_type: TransactionType | str | None = None,
    category_ids: Collection[int] | None = None,
    account_ids: Collection[int] | None = None,
    is_recurring: bool | None = None,
    uncategorized: bool = False,
) -> list:
    """WHERE criteria for the optional dimension filters.

    ``category_ids`` and ``uncategorized`` combine with OR: the result keeps
    rows in any listed category plus, when ``uncategorized`` is set, the rows
    with no category. Empty or ``None`` filters are not applied.
    """

    criteria = []
    if transaction_type is not None:
        criteria.append(FtCubeRow.transaction_type == str(TransactionType(transaction_type)))
    by_category = []
    if category_ids:
        by_category.append(FtCubeRow.category_id.in_(sorted(set(category_ids))))
    if uncategorized:
        by_category.append(FtCubeRow.category_id.is_(None))
    if by_category:
        criteria.append(or_(*by_category))
    if account_ids:
        criteria.append(FtCubeRow.account_id.in_(sorted(set(account_ids))))
    if is_recurring is not None:
        criteria.append(FtCubeRow.is_recurring == is_recurring)
    return criteria


def select_rows(
    session: Session,
    tenant_id: str,
    period_type: PeriodType | str,
    start: date,
    end: date,
    **filters: Any,
) -> list[FtCubeRow]:
    """Stored rows of one granularity with ``period_start`` in ``[start, end]``.

    ``filters`` are the keyword arguments of ``row_filters``. Rows come back in
    display order: period start, type, category name, account name, then ids
    and recurring.
    """

    stmt = select(FtCubeRow).where(
        FtCubeRow.tenant_id == tenant_id,
        FtCubeRow.period_type == str(PeriodType(period_type)),
        FtCubeRow.period_start >= start,
        FtCubeRow.period_start <= end,
        *row_filters(**filters),
    )
    stmt = stmt.order_by(
        FtCubeRow.period_start,
        FtCubeRow.transaction_type,
        FtCubeRow.category_name,
        FtCubeRow.account_name,
        FtCubeRow.category_id.asc().nulls_first(),
        FtCubeRow.account_id,
        FtCubeRow.is_recurring,
    )
    return list(session.execute(stmt).scalars())


def to_trend_row(row: FtCubeRow) -> TrendRow:
    return TrendRow(
        tenant_id=row.tenant_id,
        period_type=PeriodType(row.period_type),
        period_start=row.period_start,
        period_end=row.period_end,
        transaction_type=TransactionType(row.transaction_type),
        category_id=row.category_id,
        category_name=row.category_name,
        account_id=row.account_id,
        account_name=row.account_name,
        is_recurring=bool(row.is_recurring),
        total_amount=quantize_amount(row.total_amount),
        transaction_count=int(row.transaction_count),
    )


def cube_stats(session: Session, tenant_id: str) -> CubeStats:
    weekly = func.count().filter(FtCubeRow.period_type == str(PeriodType.WEEKLY))
    monthly = func.count().filter(FtCubeRow.period_type == str(PeriodType.MONTHLY))
    stmt = select(
        func.count(),
        weekly,
        monthly,
        func.min(FtCubeRow.period_start),
        func.max(FtCubeRow.period_start),
        func.count(distinct(FtCubeRow.account_id)),
        func.count(distinct(FtCubeRow.category_id)),
        func.max(FtCubeRow.updated_at),
    ).where(FtCubeRow.tenant_id == tenant_id)
    total, n_weekly, n_monthly, earliest, latest, n_accounts, n_categories, last = (
        session.execute(stmt).one()
    )
    return CubeStats(
        total_records=int(total or 0),
        weekly_records=int(n_weekly or 0),
        monthly_records=int(n_monthly or 0),
        date_range=DateRange(earliest=earliest, latest=latest),
        account_count=int(n_accounts or 0),
        category_count=int(n_categories or 0),
        last_updated=last,
    )


__all__ = [
    "buckets_in_period",
    "bucket_of",
    "compute_bucket_key",
    "cube_stats",
    "delete_all",
    "delete_before",
    "delete_bucket",
    "lock_bucket",
    "row_filters",
    "select_rows",
    "to_trend_row",
    "upsert_bucket",
]
