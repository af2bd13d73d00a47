from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import delete, update

from db.client import session_scope
from db.models.finance import FtCategory, FtTransaction

from tests.helpers.db import (
    TENANT,
    actual_cube,
    cube_rows,
    expected_cube,
    seed_account,
    seed_category,
    seed_transaction,
)
from trends_cube.ledger import SqlLedger, cube_fields_of
from trends_cube.models import (
    CubeFields,
    LedgerMutation,
    MutationKind,
    PeriodType,
    PopulateOptions,
    TransactionType,
)
from trends_cube.populator import populate
from trends_cube.updater import (
    apply_mutation,
    apply_mutations,
    buckets_for,
    mutations_between,
    track_bulk_change,
)


class _CountingLedger(SqlLedger):
    def __init__(self) -> None:
        self.aggregate_calls = 0

    def aggregate(self, *args, **kwargs):
        self.aggregate_calls += 1
        return super().aggregate(*args, **kwargs)


def _fields(day: date, amount: str = "-10.00", category_id: int | None = 1) -> CubeFields:
    return CubeFields(
        date=day,
        amount=Decimal(amount),
        transaction_type=TransactionType.EXPENSE,
        category_id=category_id,
        account_id=1,
        is_recurring=False,
    )


def _monthly(s, start: date, category_name: str):
    return [
        r
        for r in cube_rows(s, TENANT, "MONTHLY")
        if r.period_start == start and r.category_name == category_name
    ]


# ---- Bucket mapping -------------------------------------------------------------


def test_buckets_for_create_touches_one_week_and_one_month() -> None:
    buckets = buckets_for(TENANT, LedgerMutation.created(_fields(date(2024, 2, 14))))
    assert {(b.period.period_type, b.period.start) for b in buckets} == {
        (PeriodType.WEEKLY, date(2024, 2, 12)),
        (PeriodType.MONTHLY, date(2024, 2, 1)),
    }


def test_buckets_for_amount_only_update_touches_a_single_pair() -> None:
    old = _fields(date(2024, 2, 14), "-10.00")
    new = _fields(date(2024, 2, 14), "-12.50")
    assert len(buckets_for(TENANT, LedgerMutation.updated(old, new))) == 2


def test_buckets_for_moved_transaction_touches_both_sides() -> None:
    old = _fields(date(2024, 2, 14), category_id=1)
    new = _fields(date(2024, 3, 12), category_id=2)
    buckets = buckets_for(TENANT, LedgerMutation.updated(old, new))
    assert len(buckets) == 4
    assert {b.dimension.category_id for b in buckets} == {1, 2}


def test_buckets_for_noop_update_is_empty() -> None:
    f = _fields(date(2024, 2, 14))
    assert LedgerMutation.updated(f, f).is_noop
    assert buckets_for(TENANT, LedgerMutation.updated(f, f)) == set()


def test_mutation_shapes_are_validated() -> None:
    f = _fields(date(2024, 2, 14))
    with pytest.raises(ValueError):
        LedgerMutation(MutationKind.CREATE, old=f, new=f)
    with pytest.raises(ValueError):
        LedgerMutation(MutationKind.DELETE, new=f)
    with pytest.raises(ValueError):
        LedgerMutation(MutationKind.UPDATE, old=f)


# ---- Recompute against the ledger -------------------------------------------------


def test_moved_transaction_recomputes_old_and_new_buckets(db_url: str) -> None:
    with session_scope(database_url=db_url) as s:
        checking = seed_account(s, TENANT, "Checking")
        groceries = seed_category(s, TENANT, "Groceries")
        dining = seed_category(s, TENANT, "Dining")
        moved = seed_transaction(
            s,
            TENANT,
            checking.id,
            amount="-100.00",
            day=date(2024, 2, 14),
            category_id=groceries.id,
        )
        seed_transaction(
            s, TENANT, checking.id, amount="-20.00", day=date(2024, 2, 20), category_id=groceries.id
        )
        moved_id, dining_id = moved.id, dining.id
    populate(
        TENANT,
        PopulateOptions(start_date=date(2024, 2, 1), end_date=date(2024, 3, 31)),
        database_url=db_url,
    )
    with session_scope(database_url=db_url) as s:
        [feb] = _monthly(s, date(2024, 2, 1), "Groceries")
        assert (feb.total_amount, feb.transaction_count) == (Decimal("-120.00"), 2)
        assert _monthly(s, date(2024, 3, 1), "Dining") == []

    with session_scope(database_url=db_url) as s:
        tx = s.get(FtTransaction, moved_id)
        old = cube_fields_of(tx)
        tx.date = date(2024, 3, 12)
        tx.category_id = dining_id
        s.flush()
        result = apply_mutation(s, TENANT, LedgerMutation.updated(old, cube_fields_of(tx)))

    assert result.buckets_recomputed == 4
    # The week of 2024-02-12 held only the moved transaction
    assert result.rows_upserted == 3
    assert result.rows_deleted == 1
    with session_scope(database_url=db_url) as s:
        [feb] = _monthly(s, date(2024, 2, 1), "Groceries")
        [mar] = _monthly(s, date(2024, 3, 1), "Dining")
        # February lost the moved -100.00 and one transaction; March gained them
        assert (feb.total_amount, feb.transaction_count) == (Decimal("-20.00"), 1)
        assert (mar.total_amount, mar.transaction_count) == (Decimal("-100.00"), 1)
        assert actual_cube(s, TENANT) == expected_cube(s, TENANT)


def test_create_then_delete_leaves_no_zero_rows(db_url: str) -> None:
    with session_scope(database_url=db_url) as s:
        acct = seed_account(s, TENANT)
        tx = seed_transaction(
            s, TENANT, acct.id, amount="250.00", day=date(2024, 5, 3), type_="INCOME"
        )
        created = apply_mutation(s, TENANT, LedgerMutation.created(cube_fields_of(tx)))
        tx_id = tx.id
    assert created.rows_upserted == 2

    with session_scope(database_url=db_url) as s:
        rows = cube_rows(s, TENANT)
        assert {(r.period_type, r.total_amount, r.transaction_count) for r in rows} == {
            ("WEEKLY", Decimal("250.00"), 1),
            ("MONTHLY", Decimal("250.00"), 1),
        }
        assert {r.category_name for r in rows} == {"Uncategorized"}

    with session_scope(database_url=db_url) as s:
        tx = s.get(FtTransaction, tx_id)
        old = cube_fields_of(tx)
        s.delete(tx)
        s.flush()
        deleted = apply_mutation(s, TENANT, LedgerMutation.deleted(old))

    assert deleted.rows_deleted == 2
    with session_scope(database_url=db_url) as s:
        assert cube_rows(s, TENANT) == []


def test_apply_mutations_recomputes_each_bucket_once(db_url: str) -> None:
    ledger = _CountingLedger()
    with session_scope(database_url=db_url) as s:
        acct = seed_account(s, TENANT)
        txs = [
            seed_transaction(s, TENANT, acct.id, amount=f"-{n + 1}.00", day=date(2024, 6, 4 + n))
            for n in range(3)
        ]
        mutations = [LedgerMutation.created(cube_fields_of(tx)) for tx in txs]
        result = apply_mutations(s, TENANT, mutations, ledger=ledger)

    # 2024-06-04..06 share one ISO week and one month
    assert ledger.aggregate_calls == 2
    assert result.buckets_recomputed == 2
    with session_scope(database_url=db_url) as s:
        rows = cube_rows(s, TENANT)
    assert {(r.period_type, r.total_amount, r.transaction_count) for r in rows} == {
        ("WEEKLY", Decimal("-6.00"), 3),
        ("MONTHLY", Decimal("-6.00"), 3),
    }


def test_existing_row_keeps_its_name_snapshot(db_url: str) -> None:
    with session_scope(database_url=db_url) as s:
        acct = seed_account(s, TENANT, "Checking")
        cat = seed_category(s, TENANT, "Groceries")
        tx = seed_transaction(
            s, TENANT, acct.id, amount="-5.00", day=date(2024, 4, 2), category_id=cat.id
        )
        apply_mutation(s, TENANT, LedgerMutation.created(cube_fields_of(tx)))
        cat_id, acct_id = cat.id, acct.id

    with session_scope(database_url=db_url) as s:
        s.get(FtCategory, cat_id).name = "Food"
        tx = seed_transaction(
            s, TENANT, acct_id, amount="-6.00", day=date(2024, 4, 3), category_id=cat_id
        )
        apply_mutation(s, TENANT, LedgerMutation.created(cube_fields_of(tx)))

    with session_scope(database_url=db_url) as s:
        [row] = cube_rows(s, TENANT, "MONTHLY")
    assert row.category_name == "Groceries"
    assert (row.total_amount, row.transaction_count) == (Decimal("-11.00"), 2)


def test_recompute_converges_despite_prior_drift(db_url: str) -> None:
    with session_scope(database_url=db_url) as s:
        acct = seed_account(s, TENANT)
        tx = seed_transaction(s, TENANT, acct.id, amount="-8.00", day=date(2024, 9, 9))
        first = cube_fields_of(tx)
        # Second transaction lands without the updater being told
        seed_transaction(s, TENANT, acct.id, amount="-2.00", day=date(2024, 9, 10))
        apply_mutation(s, TENANT, LedgerMutation.created(first))

    with session_scope(database_url=db_url) as s:
        assert actual_cube(s, TENANT) == expected_cube(s, TENANT)


def test_track_bulk_change_applies_core_updates_and_deletes(db_url: str) -> None:
    with session_scope(database_url=db_url) as s:
        acct = seed_account(s, TENANT)
        ids = [
            seed_transaction(s, TENANT, acct.id, amount="-1.00", day=date(2024, 1, d)).id
            for d in (2, 9, 16)
        ]
    populate(
        TENANT,
        PopulateOptions(start_date=date(2024, 1, 1), end_date=date(2024, 1, 31)),
        database_url=db_url,
    )

    with session_scope(database_url=db_url) as s:
        with track_bulk_change(s, TENANT, ids) as change:
            s.execute(
                update(FtTransaction)
                .where(FtTransaction.id.in_(ids[:2]))
                .values(amount=Decimal("-4.00"), is_recurring=True)
            )
            s.execute(delete(FtTransaction).where(FtTransaction.id == ids[2]))
            new_tx = seed_transaction(s, TENANT, acct.id, amount="-9.00", day=date(2024, 1, 30))
            change.add(new_tx.id)

    assert change.result is not None
    assert change.result.buckets_recomputed > 0
    with session_scope(database_url=db_url) as s:
        assert actual_cube(s, TENANT) == expected_cube(s, TENANT)
        rows = cube_rows(s, TENANT, "MONTHLY")
    monthly = {(r.is_recurring, r.total_amount, r.transaction_count) for r in rows}
    assert monthly == {(True, Decimal("-8.00"), 2), (False, Decimal("-9.00"), 1)}


def test_track_bulk_change_applies_nothing_when_the_block_fails(db_url: str) -> None:
    ledger = _CountingLedger()
    with session_scope(database_url=db_url) as s:
        acct = seed_account(s, TENANT)
        tx_id = seed_transaction(s, TENANT, acct.id, amount="-1.00", day=date(2024, 1, 2)).id

    with pytest.raises(RuntimeError):
        with session_scope(database_url=db_url) as s:
            with track_bulk_change(s, TENANT, [tx_id], ledger=ledger):
                raise RuntimeError("import aborted")
    assert ledger.aggregate_calls == 0


def test_mutations_between_pairs_snapshots() -> None:
    a = _fields(date(2024, 2, 1))
    b = _fields(date(2024, 2, 2))
    muts = mutations_between({1: a, 2: a, 3: a}, {1: a, 2: b, 4: b})
    assert [m.kind for m in muts] == [MutationKind.UPDATE, MutationKind.DELETE, MutationKind.CREATE]
