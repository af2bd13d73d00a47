"""Reconciler: stale-row purge, drift detection and explicit repair.

``verify`` only reports. Drift means some ledger write reached the database
without passing through the updater, so it is surfaced (and logged as a
warning) rather than quietly corrected; ``repair`` is the separate step that
recomputes the reported buckets.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date

from sqlalchemy.orm import Session

from . import store
from .ledger import Ledger, SqlLedger
from .logging_setup import get_logger, timed
from .models import STORED_PERIOD_TYPES, Dimension, Discrepancy, UpdateResult, quantize_amount
from .periods import iter_periods
from .updater import recompute_buckets

logger = get_logger("trends_cube.reconciler")


def purge_stale(session: Session, tenant_id: str, *, ledger: Ledger | None = None) -> int:
    """Delete rows whose ``period_start`` precedes the tenant's earliest ledger date.

    With an empty ledger every row of the tenant is stale. The WEEKLY and
    MONTHLY periods that straddle the earliest date start before it and are
    removed too; refill them with ``populate`` when they are needed.
    """

    ledger = ledger or SqlLedger()
    earliest = ledger.earliest_transaction_date(session, tenant_id)
    if earliest is None:
        removed = store.delete_all(session, tenant_id)
        logger.info("tenant %s has an empty ledger; purged all %d cube row(s)", tenant_id, removed)
        return removed
    removed = store.delete_before(session, tenant_id, earliest)
    logger.info("purged %d cube row(s) before %s for tenant %s", removed, earliest, tenant_id)
    return removed


def verify(
    session: Session,
    tenant_id: str,
    start: date,
    end: date,
    *,
    ledger: Ledger | None = None,
) -> list[Discrepancy]:
    """Compare stored rows with direct ledger aggregates over ``[start, end]``.

    Every WEEKLY and MONTHLY period overlapping the window is checked in full,
    for each dimension tuple present on either side. A side with no data
    counts as ``0.00`` / ``0``.
    """

    ledger = ledger or SqlLedger()
    found: list[Discrepancy] = []
    with timed(logger, "verified tenant %s from %s to %s", tenant_id, start, end):
        for period_type in STORED_PERIOD_TYPES:
            for period in iter_periods(start, end, period_type):
                cube = {
                    store.bucket_of(row).dimension: row
                    for row in store.select_rows(
                        session, tenant_id, period_type, period.start, period.start
                    )
                }
                truth = {
                    agg.dimension: agg
                    for agg in ledger.aggregate_by_dimension(
                        session, tenant_id, period.start, period.end
                    )
                }
                for dim in sorted(cube.keys() | truth.keys(), key=Dimension.sort_key):
                    row, agg = cube.get(dim), truth.get(dim)
                    cube_amount = quantize_amount(row.total_amount if row else None)
                    cube_count = int(row.transaction_count) if row else 0
                    ledger_amount = agg.total_amount if agg else quantize_amount(None)
                    ledger_count = agg.transaction_count if agg else 0
                    if cube_amount == ledger_amount and cube_count == ledger_count:
                        continue
                    d = Discrepancy(
                        period=period,
                        dimension=dim,
                        cube_amount=cube_amount,
                        ledger_amount=ledger_amount,
                        cube_count=cube_count,
                        ledger_count=ledger_count,
                    )
                    logger.warning(
                        "drift in %s %s %s: cube %s/%d, ledger %s/%d",
                        period.period_type,
                        period.start,
                        dim,
                        cube_amount,
                        cube_count,
                        ledger_amount,
                        ledger_count,
                    )
                    found.append(d)
    logger.info("tenant %s: %d discrepanc(ies) found", tenant_id, len(found))
    return found


def repair(
    session: Session,
    tenant_id: str,
    discrepancies: Iterable[Discrepancy],
    *,
    ledger: Ledger | None = None,
) -> UpdateResult:
    """Recompute exactly the buckets named by ``discrepancies``."""

    buckets = {d.bucket(tenant_id) for d in discrepancies}
    result = recompute_buckets(session, buckets, ledger=ledger)
    logger.info(
        "repaired %d bucket(s) for tenant %s: %d upserted, %d deleted",
        result.buckets_recomputed,
        tenant_id,
        result.rows_upserted,
        result.rows_deleted,
    )
    return result


def clear(session: Session, tenant_id: str) -> int:
    """Remove every cube row of the tenant."""

    removed = store.delete_all(session, tenant_id)
    logger.info("cleared %d cube row(s) for tenant %s", removed, tenant_id)
    return removed


__all__ = ["clear", "purge_stale", "repair", "verify"]
