"""Public API for the ``trends_cube`` package.

Functions here open their own unit of work through ``db.client.session_scope``
(``database_url`` overrides ``DATABASE_URL``) and delegate to the component
modules. Hosts that already hold a session, such as the ledger mutation path,
call ``trends_cube.updater`` / ``trends_cube.reconciler`` directly so cube
writes commit together with their own.

Every function takes an explicit tenant; there is no process-wide tenant.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from typing import Any

from db.client import session_scope

from . import reconciler, rollup
from .ledger import Ledger, SqlLedger
from .logging_setup import get_logger
from .models import CubeStats, Discrepancy, PopulateOptions, TrendRow, TrendsQuery, UpdateResult
from .periods import month_bounds, week_bounds
from .populator import populate, rebuild

logger = get_logger("trends_cube.api")


def get_trends(
    tenant_id: str,
    query: TrendsQuery | None = None,
    *,
    database_url: str | None = None,
    **fields: Any,
) -> list[TrendRow]:
    """Return trend rows for ``query`` (or a ``TrendsQuery`` built from ``fields``).

    Raises
    ------
    pydantic.ValidationError
        When ``fields`` do not form a valid query.
    """

    q = query if query is not None else TrendsQuery(**fields)
    with session_scope(database_url=database_url) as session:
        return rollup.get_trends(session, tenant_id, q)


def get_aggregated_totals(
    tenant_id: str,
    group_by: Iterable[str],
    *,
    database_url: str | None = None,
    **filters: Any,
) -> list[dict[str, Any]]:
    with session_scope(database_url=database_url) as session:
        return rollup.get_aggregated_totals(session, tenant_id, tuple(group_by), **filters)


def get_cube_stats(tenant_id: str, *, database_url: str | None = None) -> CubeStats:
    with session_scope(database_url=database_url) as session:
        return rollup.get_cube_stats(session, tenant_id)


def purge_stale(
    tenant_id: str,
    *,
    refill: bool = False,
    database_url: str | None = None,
    ledger: Ledger | None = None,
) -> int:
    """Purge rows before the earliest ledger date; optionally refill the edge periods.

    The purge always removes the WEEKLY and MONTHLY rows of the periods that
    contain the earliest date when those periods start before it. With
    ``refill=True`` those periods are repopulated in a second unit of work.
    """

    ledger = ledger or SqlLedger()
    with session_scope(database_url=database_url) as session:
        removed = reconciler.purge_stale(session, tenant_id, ledger=ledger)
        earliest = ledger.earliest_transaction_date(session, tenant_id)
    if refill and earliest is not None:
        edge_end = max(week_bounds(earliest)[1], month_bounds(earliest)[1])
        populate(
            tenant_id,
            PopulateOptions(start_date=earliest, end_date=edge_end),
            database_url=database_url,
            ledger=ledger,
        )
    return removed


def verify(
    tenant_id: str,
    start: date,
    end: date,
    *,
    database_url: str | None = None,
    ledger: Ledger | None = None,
) -> list[Discrepancy]:
    with session_scope(database_url=database_url) as session:
        return reconciler.verify(session, tenant_id, start, end, ledger=ledger)


def repair(
    tenant_id: str,
    discrepancies: Iterable[Discrepancy],
    *,
    database_url: str | None = None,
    ledger: Ledger | None = None,
) -> UpdateResult:
    with session_scope(database_url=database_url) as session:
        return reconciler.repair(session, tenant_id, discrepancies, ledger=ledger)


def clear(tenant_id: str, *, database_url: str | None = None) -> int:
    with session_scope(database_url=database_url) as session:
        return reconciler.clear(session, tenant_id)


__all__ = [
    "clear",
    "get_aggregated_totals",
    "get_cube_stats",
    "get_trends",
    "populate",
    "purge_stale",
    "rebuild",
    "repair",
    "verify",
]
