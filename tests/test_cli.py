from __future__ import annotations

import json
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy import insert
from typer.testing import CliRunner

from db.client import session_scope
from db.models.finance import FtTransaction

from tests.helpers.db import TENANT, seed_account, seed_category, seed_transaction
from trends_cube.cli import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def _no_dotenv(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    # The root command loads ./.env; run from an empty directory
    monkeypatch.chdir(tmp_path)


def _json_lines(output: str) -> list[dict]:
    return [json.loads(line) for line in output.splitlines() if line.startswith("{")]


def _seed(db_url: str) -> dict[str, int]:
    with session_scope(database_url=db_url) as s:
        acct = seed_account(s, TENANT, "Checking")
        groceries = seed_category(s, TENANT, "Groceries")
        rent = seed_category(s, TENANT, "Rent")
        seed_transaction(
            s, TENANT, acct.id, amount="-40.00", day=date(2024, 8, 5), category_id=groceries.id
        )
        seed_transaction(
            s,
            TENANT,
            acct.id,
            amount="-788.76",
            day=date(2024, 8, 1),
            category_id=rent.id,
            recurring=True,
        )
        return {"account": acct.id, "groceries": groceries.id}


AUGUST = ("--start", "2024-08-01", "--end", "2024-08-31")


def _invoke(db_url: str, *args: str):
    return runner.invoke(app, [*args, "--tenant", TENANT, "--database-url", db_url])


def test_populate_trends_and_status(db_url: str) -> None:
    ids = _seed(db_url)

    result = _invoke(db_url, "populate", *AUGUST)
    assert result.exit_code == 0, result.output
    [summary] = _json_lines(result.output)
    assert (summary["periods_processed"], summary["records_created"]) == (6, 4)
    assert summary["cancelled"] is False

    result = _invoke(
        db_url, "trends", *AUGUST, "--period-type", "monthly", "--transaction-type", "expense"
    )
    assert result.exit_code == 0, result.output
    rows = _json_lines(result.output)
    assert [(r["category_name"], r["total_amount"], r["is_recurring"]) for r in rows] == [
        ("Groceries", "-40.00", False),
        ("Rent", "-788.76", True),
    ]
    assert {r["period_start"] for r in rows} == {"2024-08-01"}

    result = _invoke(db_url, "trends", *AUGUST, "--recurring")
    assert [r["category_name"] for r in _json_lines(result.output)] == ["Rent"]

    result = _invoke(db_url, "trends", *AUGUST, "--uncategorized")
    assert result.exit_code == 0, result.output
    assert _json_lines(result.output) == []

    result = _invoke(
        db_url, "trends", *AUGUST, "--category-id", str(ids["groceries"]), "--uncategorized"
    )
    assert [r["category_name"] for r in _json_lines(result.output)] == ["Groceries"]

    result = _invoke(db_url, "status")
    assert result.exit_code == 0, result.output
    [stats] = _json_lines(result.output)
    assert (stats["tenant"], stats["total_records"], stats["monthly_records"]) == (TENANT, 4, 2)


def test_verify_exit_codes_and_repair(db_url: str) -> None:
    ids = _seed(db_url)
    assert _invoke(db_url, "populate", *AUGUST).exit_code == 0

    clean = _invoke(db_url, "verify", *AUGUST)
    assert clean.exit_code == 0, clean.output
    assert _json_lines(clean.output) == []

    with session_scope(database_url=db_url) as s:
        s.execute(
            insert(FtTransaction).values(
                tenant_id=TENANT,
                account_id=ids["account"],
                category_id=ids["groceries"],
                amount=Decimal("-1.00"),
                date=date(2024, 8, 6),
                type="EXPENSE",
                is_recurring=False,
                description="",
            )
        )

    drift = _invoke(db_url, "verify", *AUGUST)
    assert drift.exit_code == 2
    found = _json_lines(drift.output)
    assert {(d["period"]["period_type"], d["ledger_count"]) for d in found} == {
        ("WEEKLY", 2),
        ("MONTHLY", 2),
    }

    fixed = _invoke(db_url, "verify", *AUGUST, "--repair")
    assert fixed.exit_code == 0, fixed.output
    assert _json_lines(fixed.output)[-1]["repaired"]["buckets_recomputed"] == 2

    again = _invoke(db_url, "verify", *AUGUST)
    assert again.exit_code == 0


def test_rebuild_purge_and_clear(db_url: str) -> None:
    _seed(db_url)
    assert _invoke(db_url, "rebuild", *AUGUST).exit_code == 0

    purged = _invoke(db_url, "purge-stale")
    assert purged.exit_code == 0, purged.output
    # 2024-08-01 opens August but sits in the week starting 2024-07-29
    assert _json_lines(purged.output) == [
        {"records_removed": 1, "refilled": False, "tenant": TENANT}
    ]

    cleared = _invoke(db_url, "clear")
    assert cleared.exit_code == 0, cleared.output
    assert _json_lines(cleared.output) == [{"records_removed": 3, "tenant": TENANT}]


def test_bad_input_is_reported(db_url: str) -> None:
    result = _invoke(db_url, "trends", *AUGUST, "--period-type", "daily")
    assert result.exit_code == 1
    assert "Error: trends failed" in result.output

    result = _invoke(db_url, "populate", "--start", "2024-09-01", "--end", "2024-08-01")
    assert result.exit_code == 1
    assert "Error: populate failed" in result.output


def test_tenant_is_required() -> None:
    result = runner.invoke(app, ["status"])
    assert result.exit_code == 2
