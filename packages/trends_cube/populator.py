"""Populator: full or ranged rebuild of cube rows from the ledger.

Each stored period (every WEEK, then every MONTH overlapping the range) is
rewritten as an exact replacement of its ledger slice. Periods are committed
``batch_size`` at a time through ``db.client.session_scope``; a failure rolls
back the open batch only, and every period committed before it stays valid.
"""

from __future__ import annotations

import os
import threading
import time
from collections.abc import Callable
from datetime import date

from db.client import session_scope
from sqlalchemy.orm import Session

from . import store
from .ledger import Ledger, SqlLedger
from .logging_setup import get_logger
from .models import Bucket, Period, PeriodType, PopulateOptions, PopulateResult
from .periods import iter_periods

logger = get_logger("trends_cube.populator")

_BATCH_ENV = "TRENDS_CUBE_BATCH_SIZE"


def _resolve_batch_size(options: PopulateOptions) -> int:
    """Explicit option wins; else ``TRENDS_CUBE_BATCH_SIZE`` when it is a positive int."""

    if "batch_size" in options.model_fields_set:
        return options.batch_size
    raw = os.getenv(_BATCH_ENV)
    try:
        env_val = int(raw) if raw else None
    except ValueError:
        env_val = None
    if env_val is not None and env_val > 0:
        return env_val
    return options.batch_size


def populate_period(
    session: Session,
    tenant_id: str,
    period: Period,
    *,
    ledger: Ledger,
    clear_existing: bool = False,
    account_id: int | None = None,
) -> tuple[int, int]:
    """Make one stored period match the ledger. Returns ``(written, removed)``.

    The dimension scan only decides which buckets to visit (and supplies their
    display names). Each bucket is then locked and re-aggregated before it is
    written, the same sequence ``recompute_bucket`` follows, so an incremental
    update committed after the scan is never overwritten with an older total.
    """

    scanned = {
        store.compute_bucket_key(Bucket(tenant_id, period, agg.dimension)): agg
        for agg in ledger.aggregate_by_dimension(
            session, tenant_id, period.start, period.end, account_id=account_id
        )
    }
    existing = store.buckets_in_period(session, tenant_id, period, account_id=account_id)
    targets = {key: Bucket(tenant_id, period, agg.dimension) for key, agg in scanned.items()}
    targets.update(existing)

    written = removed = 0
    for key in sorted(targets):
        bucket = targets[key]
        store.lock_bucket(session, key)
        if clear_existing and key in existing:
            removed += store.delete_bucket(session, bucket, bucket_key=key)
        agg = ledger.aggregate(session, tenant_id, period.start, period.end, bucket.dimension)
        if agg.transaction_count == 0:
            if not clear_existing:
                removed += store.delete_bucket(session, bucket, bucket_key=key)
            continue
        if key in scanned:
            category_name, account_name = scanned[key].category_name, scanned[key].account_name
        else:
            category_name, account_name = ledger.snapshot_names(
                session, tenant_id, bucket.dimension
            )
        store.upsert_bucket(
            session,
            bucket,
            total_amount=agg.total_amount,
            transaction_count=agg.transaction_count,
            category_name=category_name,
            account_name=account_name,
            bucket_key=key,
        )
        written += 1
    return written, removed


def populate(
    tenant_id: str,
    options: PopulateOptions | None = None,
    *,
    database_url: str | None = None,
    ledger: Ledger | None = None,
    cancel: threading.Event | None = None,
    on_progress: Callable[[str], None] | None = None,
) -> PopulateResult:
    """Rebuild the tenant's WEEKLY and MONTHLY rows over a date range.

    Parameters
    ----------
    tenant_id:
        Tenant whose ledger is aggregated.
    options:
        ``PopulateOptions``; omitted bounds default to the earliest ledger
        date (scoped to ``account_id`` when given) and today.
    database_url:
        Optional override for ``DATABASE_URL``.
    ledger:
        Ledger reader (defaults to ``SqlLedger``).
    cancel:
        Checked before each period. Once set, the periods already done in the
        open batch are committed and the call returns with ``cancelled=True``.
    on_progress:
        Receives a short status line after each committed batch.

    Raises
    ------
    sqlalchemy.exc.SQLAlchemyError
        Propagated after the failing batch is rolled back and logged.
    """

    t0 = time.perf_counter()
    opts = options or PopulateOptions()
    ledger = ledger or SqlLedger()
    batch_size = _resolve_batch_size(opts)

    start = opts.start_date
    if start is None:
        with session_scope(database_url=database_url) as session:
            start = ledger.earliest_transaction_date(session, tenant_id, account_id=opts.account_id)
        if start is None:
            logger.info("tenant %s has no ledger rows; nothing to populate", tenant_id)
            return PopulateResult(0, 0, 0, time.perf_counter() - t0)
    end = opts.end_date or max(date.today(), start)
    if start > end:
        logger.info(
            "tenant %s: ledger starts %s, after end %s; nothing to populate", tenant_id, start, end
        )
        return PopulateResult(0, 0, 0, time.perf_counter() - t0)

    periods = [
        *iter_periods(start, end, PeriodType.WEEKLY),
        *iter_periods(start, end, PeriodType.MONTHLY),
    ]
    logger.info(
        "populating tenant %s from %s to %s: %d period(s), batch size %d%s",
        tenant_id,
        start,
        end,
        len(periods),
        batch_size,
        " (clearing existing rows)" if opts.clear_existing else "",
    )

    processed = created = removed = 0
    cancelled = False
    for i in range(0, len(periods), batch_size):
        batch = periods[i : i + batch_size]
        try:
            with session_scope(database_url=database_url) as session:
                for period in batch:
                    if cancel is not None and cancel.is_set():
                        cancelled = True
                        break
                    n_written, n_removed = populate_period(
                        session,
                        tenant_id,
                        period,
                        ledger=ledger,
                        clear_existing=opts.clear_existing,
                        account_id=opts.account_id,
                    )
                    processed += 1
                    created += n_written
                    removed += n_removed
        except Exception:
            logger.exception(
                "populate failed for tenant %s in batch %s..%s; %d period(s) committed before it",
                tenant_id,
                batch[0].start,
                batch[-1].end,
                i,
            )
            raise
        logger.debug("committed periods %d-%d of %d", i + 1, processed, len(periods))
        if on_progress is not None:
            on_progress(f"{processed}/{len(periods)} periods")
        if cancelled:
            logger.info("populate cancelled for tenant %s after %d period(s)", tenant_id, processed)
            break

    elapsed = time.perf_counter() - t0
    logger.info(
        "populated tenant %s: %d period(s), %d row(s) written, %d removed (%.3fs)",
        tenant_id,
        processed,
        created,
        removed,
        elapsed,
    )
    return PopulateResult(
        periods_processed=processed,
        records_created=created,
        records_removed=removed,
        time_elapsed=elapsed,
        cancelled=cancelled,
    )


def rebuild(
    tenant_id: str,
    start_date: date | None = None,
    end_date: date | None = None,
    **kwargs,
) -> PopulateResult:
    """``populate`` with ``clear_existing=True``: rewrites rows and refreshes name snapshots."""

    options = PopulateOptions(start_date=start_date, end_date=end_date, clear_existing=True)
    return populate(tenant_id, options, **kwargs)


__all__ = ["populate", "populate_period", "rebuild"]
