"""Incremental updater: keep cube buckets in step with ledger mutations.

A mutation never adjusts a stored total. Each bucket it touches (old side and
new side) is re-aggregated from the ledger slice it represents and then
upserted, or deleted when the slice became empty. Work runs in the caller's
session so the cube change commits (or rolls back) together with the ledger
change that caused it.

Buckets are deduplicated across all mutations of one call and visited in
ascending ``bucket_key`` order, which is also the order the PostgreSQL
advisory locks are taken in.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from sqlalchemy.orm import Session

from . import store
from .ledger import Ledger, SqlLedger
from .logging_setup import get_logger
from .models import Bucket, CubeFields, LedgerMutation, UpdateResult
from .periods import stored_periods_for

logger = get_logger("trends_cube.updater")


def _buckets_of(tenant_id: str, fields: CubeFields) -> set[Bucket]:
    dim = fields.dimension
    return {Bucket(tenant_id, period, dim) for period in stored_periods_for(fields.date)}


def buckets_for(tenant_id: str, mutation: LedgerMutation) -> set[Bucket]:
    """Return the WEEKLY and MONTHLY buckets touched by ``mutation``.

    Both sides of an update are included; when only the amount changed they
    coincide and a single week/month pair comes back.
    """

    if mutation.is_noop:
        return set()
    touched: set[Bucket] = set()
    for side in (mutation.old, mutation.new):
        if side is not None:
            touched |= _buckets_of(tenant_id, side)
    return touched


def recompute_bucket(
    session: Session,
    bucket: Bucket,
    *,
    ledger: Ledger | None = None,
    bucket_key: str | None = None,
) -> UpdateResult:
    """Re-derive one bucket from the ledger and write the outcome."""

    ledger = ledger or SqlLedger()
    key = bucket_key or store.compute_bucket_key(bucket)
    store.lock_bucket(session, key)

    period = bucket.period
    agg = ledger.aggregate(session, bucket.tenant_id, period.start, period.end, bucket.dimension)
    if agg.transaction_count == 0:
        removed = store.delete_bucket(session, bucket, bucket_key=key)
        logger.debug("bucket %s emptied (%d row removed)", key[:12], removed)
        return UpdateResult(buckets_recomputed=1, rows_deleted=removed)

    category_name, account_name = ledger.snapshot_names(session, bucket.tenant_id, bucket.dimension)
    store.upsert_bucket(
        session,
        bucket,
        total_amount=agg.total_amount,
        transaction_count=agg.transaction_count,
        category_name=category_name,
        account_name=account_name,
        bucket_key=key,
    )
    logger.debug(
        "bucket %s -> %s over %d transaction(s)", key[:12], agg.total_amount, agg.transaction_count
    )
    return UpdateResult(buckets_recomputed=1, rows_upserted=1)


def recompute_buckets(
    session: Session, buckets: Iterable[Bucket], *, ledger: Ledger | None = None
) -> UpdateResult:
    """Recompute each distinct bucket once, in ascending key order."""

    ledger = ledger or SqlLedger()
    keyed = sorted({store.compute_bucket_key(b): b for b in buckets}.items())
    result = UpdateResult()
    for key, bucket in keyed:
        result = result + recompute_bucket(session, bucket, ledger=ledger, bucket_key=key)
    return result


def apply_mutations(
    session: Session,
    tenant_id: str,
    mutations: Iterable[LedgerMutation],
    *,
    ledger: Ledger | None = None,
) -> UpdateResult:
    """Bring every bucket touched by ``mutations`` back in line with the ledger.

    Must run after the ledger rows themselves were written (flushed) in the
    same transaction; the caller owns the commit.
    """

    muts = list(mutations)
    touched: set[Bucket] = set()
    for m in muts:
        touched |= buckets_for(tenant_id, m)
    if not touched:
        return UpdateResult()
    result = recompute_buckets(session, touched, ledger=ledger)
    logger.debug(
        "tenant %s: %d mutation(s) -> %d bucket(s), %d upserted, %d deleted",
        tenant_id,
        len(muts),
        result.buckets_recomputed,
        result.rows_upserted,
        result.rows_deleted,
    )
    return result


def apply_mutation(
    session: Session,
    tenant_id: str,
    mutation: LedgerMutation,
    *,
    ledger: Ledger | None = None,
) -> UpdateResult:
    return apply_mutations(session, tenant_id, [mutation], ledger=ledger)


class BulkChange:
    """Handle yielded by ``track_bulk_change``.

    ``add`` registers ids that only come into existence inside the block
    (inserts); ``result`` is filled in once the block exits cleanly.
    """

    def __init__(self, transaction_ids: Iterable[int]) -> None:
        self.transaction_ids: set[int] = set(transaction_ids)
        self.result: UpdateResult | None = None

    def add(self, *transaction_ids: int) -> None:
        self.transaction_ids.update(transaction_ids)


def mutations_between(
    before: dict[int, CubeFields], after: dict[int, CubeFields]
) -> list[LedgerMutation]:
    """Pair up two cube-field snapshots keyed by transaction id."""

    out: list[LedgerMutation] = []
    for tx_id in sorted(before.keys() | after.keys()):
        old, new = before.get(tx_id), after.get(tx_id)
        if old is not None and new is not None:
            m = LedgerMutation.updated(old, new)
            if not m.is_noop:
                out.append(m)
        elif old is not None:
            out.append(LedgerMutation.deleted(old))
        elif new is not None:
            out.append(LedgerMutation.created(new))
    return out


@contextmanager
def track_bulk_change(
    session: Session,
    tenant_id: str,
    transaction_ids: Iterable[int],
    *,
    ledger: Ledger | None = None,
) -> Iterator[BulkChange]:
    """Snapshot ledger rows around a bulk statement and apply the difference.

    Usage
    -----
    with track_bulk_change(session, tenant, ids) as change:
        session.execute(update(FtTransaction).where(...).values(...))

    Rows gone after the block become deletes, rows that appear become
    creates. Nothing is applied when the block raises.
    """

    ledger = ledger or SqlLedger()
    change = BulkChange(transaction_ids)
    session.flush()
    before = ledger.cube_fields(session, tenant_id, change.transaction_ids)
    yield change
    session.flush()
    after = ledger.cube_fields(session, tenant_id, change.transaction_ids)
    mutations = mutations_between(before, after)
    change.result = apply_mutations(session, tenant_id, mutations, ledger=ledger)
    logger.info(
        "bulk change on %d transaction(s): %d mutation(s), %d bucket(s) recomputed",
        len(change.transaction_ids),
        len(mutations),
        change.result.buckets_recomputed,
    )


__all__ = [
    "BulkChange",
    "apply_mutation",
    "apply_mutations",
    "buckets_for",
    "mutations_between",
    "recompute_bucket",
    "recompute_buckets",
    "track_bulk_change",
]
