"""Rollup / query engine over stored cube rows.

WEEKLY and MONTHLY reads are plain filtered selects. QUARTERLY, HALF_YEARLY
and YEARLY are derived on read by summing MONTHLY rows per derived period and
dimension tuple; the ledger is never touched here.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from typing import Any

from db.models.finance import FtCubeRow
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from . import store
from .models import (
    CubeStats,
    Dimension,
    Period,
    PeriodType,
    TransactionType,
    TrendRow,
    TrendsQuery,
    quantize_amount,
)
from .periods import iter_periods, period_for

GROUPABLE_COLUMNS: dict[str, Any] = {
    "period_start": FtCubeRow.period_start,
    "transaction_type": FtCubeRow.transaction_type,
    "category_name": FtCubeRow.category_name,
    "account_name": FtCubeRow.account_name,
    "is_recurring": FtCubeRow.is_recurring,
}


def _display_key(row: TrendRow) -> tuple:
    return (
        row.period_start,
        str(row.transaction_type),
        row.category_name,
        row.account_name,
        -1 if row.category_id is None else row.category_id,
        row.account_id,
        row.is_recurring,
    )


def _ids(one: int | None, many: Sequence[int]) -> list[int]:
    return sorted({*many, *([] if one is None else [one])})


def _filters(query: TrendsQuery) -> dict[str, Any]:
    return {
        "transaction_type": query.transaction_type,
        "category_ids": _ids(query.category_id, query.category_ids),
        "account_ids": _ids(query.account_id, query.account_ids),
        "is_recurring": query.is_recurring,
        "uncategorized": query.uncategorized,
    }


def _derive(rows: Sequence[TrendRow], period_type: PeriodType) -> list[TrendRow]:
    # rows arrive ordered by period_start, so the first row seen per group
    # carries the earliest month's names
    groups: dict[tuple[Period, Dimension], TrendRow] = {}
    for row in rows:
        key = (period_for(row.period_start, period_type), row.dimension)
        seen = groups.get(key)
        if seen is None:
            groups[key] = TrendRow(
                tenant_id=row.tenant_id,
                period_type=period_type,
                period_start=key[0].start,
                period_end=key[0].end,
                transaction_type=row.transaction_type,
                category_id=row.category_id,
                category_name=row.category_name,
                account_id=row.account_id,
                account_name=row.account_name,
                is_recurring=row.is_recurring,
                total_amount=row.total_amount,
                transaction_count=row.transaction_count,
            )
        else:
            groups[key] = dataclasses.replace(
                seen,
                total_amount=seen.total_amount + row.total_amount,
                transaction_count=seen.transaction_count + row.transaction_count,
            )
    return sorted(groups.values(), key=_display_key)


def get_trends(session: Session, tenant_id: str, query: TrendsQuery) -> list[TrendRow]:
    """Return the tenant's trend rows for ``query`` in display order.

    Stored granularities return rows whose ``period_start`` lies in the query
    window. Derived granularities cover every derived period overlapping the
    window, in full.
    """

    if query.period_type.is_stored:
        rows = store.select_rows(
            session,
            tenant_id,
            query.period_type,
            query.start_date,
            query.end_date,
            **_filters(query),
        )
        return [store.to_trend_row(r) for r in rows]

    derived = list(iter_periods(query.start_date, query.end_date, query.period_type))
    monthly = store.select_rows(
        session,
        tenant_id,
        PeriodType.MONTHLY,
        derived[0].start,
        derived[-1].end,
        **_filters(query),
    )
    return _derive([store.to_trend_row(r) for r in monthly], query.period_type)


def get_aggregated_totals(
    session: Session,
    tenant_id: str,
    group_by: Sequence[str],
    *,
    period_type: PeriodType | str = PeriodType.MONTHLY,
    start_date: date | None = None,
    end_date: date | None = None,
    transaction_type: TransactionType | str | None = None,
    category_ids: Sequence[int] | None = None,
    account_ids: Sequence[int] | None = None,
    is_recurring: bool | None = None,
    uncategorized: bool = False,
) -> list[dict[str, Any]]:
    """Sum stored rows of one granularity grouped by allow-listed columns.

    Each result dict holds the group columns plus ``total_amount`` and
    ``transaction_count``; results are ordered by the group columns.

    Raises
    ------
    ValueError
        For a derived ``period_type`` or a column outside ``GROUPABLE_COLUMNS``.
    """

    pt = PeriodType(period_type)
    if not pt.is_stored:
        raise ValueError(f"Grouped totals read stored rows only; got {pt}")
    unknown = [g for g in group_by if g not in GROUPABLE_COLUMNS]
    if unknown:
        raise ValueError(
            f"Cannot group by {', '.join(unknown)}; allowed: {', '.join(GROUPABLE_COLUMNS)}"
        )

    cols = [GROUPABLE_COLUMNS[g] for g in group_by]
    stmt = select(
        *cols, func.sum(FtCubeRow.total_amount), func.sum(FtCubeRow.transaction_count)
    ).where(
        FtCubeRow.tenant_id == tenant_id,
        FtCubeRow.period_type == str(pt),
        *store.row_filters(
            transaction_type=transaction_type,
            category_ids=category_ids,
            account_ids=account_ids,
            is_recurring=is_recurring,
            uncategorized=uncategorized,
        ),
    )
    if start_date is not None:
        stmt = stmt.where(FtCubeRow.period_start >= start_date)
    if end_date is not None:
        stmt = stmt.where(FtCubeRow.period_start <= end_date)
    if cols:
        stmt = stmt.group_by(*cols).order_by(*cols)

    out: list[dict[str, Any]] = []
    for row in session.execute(stmt):
        *keys, total, count = row
        if not count:
            continue
        entry: dict[str, Any] = dict(zip(group_by, keys, strict=True))
        if "is_recurring" in entry:
            entry["is_recurring"] = bool(entry["is_recurring"])
        entry["total_amount"] = quantize_amount(total)
        entry["transaction_count"] = int(count)
        out.append(entry)
    return out


def get_category_trends(
    session: Session,
    tenant_id: str,
    start_date: date,
    end_date: date,
    *,
    period_type: PeriodType | str = PeriodType.MONTHLY,
) -> list[dict[str, Any]]:
    """EXPENSE totals per period and category."""

    return get_aggregated_totals(
        session,
        tenant_id,
        ("period_start", "category_name"),
        period_type=period_type,
        start_date=start_date,
        end_date=end_date,
        transaction_type=TransactionType.EXPENSE,
    )


def get_account_trends(
    session: Session,
    tenant_id: str,
    start_date: date,
    end_date: date,
    *,
    period_type: PeriodType | str = PeriodType.MONTHLY,
) -> list[dict[str, Any]]:
    return get_aggregated_totals(
        session,
        tenant_id,
        ("period_start", "account_name"),
        period_type=period_type,
        start_date=start_date,
        end_date=end_date,
    )


def get_income_expense_trends(
    session: Session,
    tenant_id: str,
    start_date: date,
    end_date: date,
    *,
    period_type: PeriodType | str = PeriodType.MONTHLY,
) -> list[dict[str, Any]]:
    return get_aggregated_totals(
        session,
        tenant_id,
        ("period_start", "transaction_type"),
        period_type=period_type,
        start_date=start_date,
        end_date=end_date,
    )


def get_cube_stats(session: Session, tenant_id: str) -> CubeStats:
    return store.cube_stats(session, tenant_id)


def sum_totals(rows: Sequence[TrendRow]) -> tuple[Decimal, int]:
    """Total amount and count over ``rows``."""

    return (
        quantize_amount(sum((r.total_amount for r in rows), Decimal("0"))),
        sum(r.transaction_count for r in rows),
    )


__all__ = [
    "GROUPABLE_COLUMNS",
    "get_account_trends",
    "get_aggregated_totals",
    "get_category_trends",
    "get_cube_stats",
    "get_income_expense_trends",
    "get_trends",
    "sum_totals",
]
