# ruff: noqa: I001
"""CLI for the ``trends_cube`` package (console script ``trends-cube``).

This module exposes callable command handlers (``cmd_populate``,
``cmd_verify``, ...) and a Typer-based console interface over them.
``DATABASE_URL`` is loaded from a local ``.env`` using ``python-dotenv``
before any command runs. Business logic lives in ``trends_cube.api``.

Handlers print results to stdout (JSON per line) and errors to stderr as
``Error: ...``; they return the process exit code.
"""

from __future__ import annotations

import json
import sys
from collections.abc import Sequence
from datetime import date, datetime
from pathlib import Path
from typing import Annotated, Any

import typer
from dotenv import load_dotenv

from .logging_setup import configure_logging


# ---- Small module-level helpers used by CLI commands -------------------------


def _as_date(value: datetime | None) -> date | None:
    return value.date() if value is not None else None


def _echo_json(payload: dict[str, Any]) -> None:
    typer.echo(json.dumps(payload, sort_keys=True))


def _fail(what: str, exc: BaseException) -> int:
    print(f"Error: {what} failed: {exc}", file=sys.stderr)
    return 1


# ---- Command handlers -------------------------------------------------------


def cmd_populate(
    tenant: str,
    *,
    start: date | None = None,
    end: date | None = None,
    clear_existing: bool = False,
    batch_size: int | None = None,
    account_id: int | None = None,
    database_url: str | None = None,
) -> int:
    """Populate (or with ``clear_existing`` rebuild) the cube for ``tenant``."""

    from .models import PopulateOptions
    from .populator import populate

    fields: dict[str, Any] = {
        "start_date": start,
        "end_date": end,
        "clear_existing": clear_existing,
        "account_id": account_id,
    }
    # Leave batch_size unset when omitted so TRENDS_CUBE_BATCH_SIZE can apply.
    if batch_size is not None:
        fields["batch_size"] = batch_size
    try:
        options = PopulateOptions(**fields)
        result = populate(
            tenant,
            options,
            database_url=database_url,
            on_progress=lambda line: print(line, file=sys.stderr),
        )
    except Exception as e:
        return _fail("populate", e)
    _echo_json(result.as_dict())
    return 0


def cmd_clear(tenant: str, *, database_url: str | None = None) -> int:
    from .api import clear

    try:
        removed = clear(tenant, database_url=database_url)
    except Exception as e:
        return _fail("clear", e)
    _echo_json({"tenant": tenant, "records_removed": removed})
    return 0


def cmd_status(tenant: str, *, database_url: str | None = None) -> int:
    from .api import get_cube_stats

    try:
        stats = get_cube_stats(tenant, database_url=database_url)
    except Exception as e:
        return _fail("status", e)
    _echo_json({"tenant": tenant, **stats.as_dict()})
    return 0


def cmd_trends(
    tenant: str,
    *,
    period_type: str,
    start: date,
    end: date,
    transaction_type: str | None = None,
    category_ids: Sequence[int] = (),
    account_ids: Sequence[int] = (),
    uncategorized: bool = False,
    recurring: bool | None = None,
    database_url: str | None = None,
) -> int:
    """Print one JSON object per trend row."""

    from .api import get_trends
    from .models import TrendsQuery

    try:
        query = TrendsQuery(
            period_type=period_type.strip().upper(),
            start_date=start,
            end_date=end,
            transaction_type=transaction_type.strip().upper() if transaction_type else None,
            category_ids=tuple(category_ids),
            account_ids=tuple(account_ids),
            uncategorized=uncategorized,
            is_recurring=recurring,
        )
        rows = get_trends(tenant, query, database_url=database_url)
    except Exception as e:
        return _fail("trends", e)
    for row in rows:
        _echo_json(row.as_dict())
    return 0


def cmd_purge_stale(tenant: str, *, refill: bool = False, database_url: str | None = None) -> int:
    from .api import purge_stale

    try:
        removed = purge_stale(tenant, refill=refill, database_url=database_url)
    except Exception as e:
        return _fail("purge-stale", e)
    _echo_json({"tenant": tenant, "records_removed": removed, "refilled": refill})
    return 0


def cmd_verify(
    tenant: str,
    *,
    start: date,
    end: date,
    repair: bool = False,
    database_url: str | None = None,
) -> int:
    """Report drift between cube and ledger.

    Exit status: ``0`` clean (or repaired), ``2`` drift found and left as is,
    ``1`` on error.
    """

    from . import api

    try:
        found = api.verify(tenant, start, end, database_url=database_url)
        for d in found:
            _echo_json(d.as_dict())
        if found and repair:
            result = api.repair(tenant, found, database_url=database_url)
            _echo_json({"repaired": result.as_dict()})
            return 0
    except Exception as e:
        return _fail("verify", e)
    return 2 if found else 0


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Maintain and query the financial trends cube. "
        "Loads DATABASE_URL from a local .env before running."
    ),
)

# Reusable option types for the commands below.
Tenant = Annotated[str, typer.Option("--tenant", help="Tenant identifier (required).")]
DatabaseUrl = Annotated[
    str | None,
    typer.Option("--database-url", help="Override DATABASE_URL (falls back to env var)."),
]
Day = Annotated[datetime, typer.Option(formats=["%Y-%m-%d"], help="Date as YYYY-MM-DD.")]
OptionalDay = Annotated[
    datetime | None, typer.Option(formats=["%Y-%m-%d"], help="Date as YYYY-MM-DD.")
]


@app.command("populate")
def populate_cmd(
    tenant: Tenant,
    start: OptionalDay = None,
    end: OptionalDay = None,
    *,
    clear_existing: bool = typer.Option(
        False, help="Delete and rewrite each period's rows (refreshes name snapshots)."
    ),
    batch_size: int | None = typer.Option(
        None, help="Periods per transaction (default TRENDS_CUBE_BATCH_SIZE or 100)."
    ),
    account_id: int | None = typer.Option(None, help="Restrict to one account."),
    database_url: DatabaseUrl = None,
) -> None:
    """Build cube rows from the ledger (defaults: earliest ledger date to today)."""

    raise typer.Exit(
        cmd_populate(
            tenant,
            start=_as_date(start),
            end=_as_date(end),
            clear_existing=clear_existing,
            batch_size=batch_size,
            account_id=account_id,
            database_url=database_url,
        )
    )


@app.command("rebuild")
def rebuild_cmd(
    tenant: Tenant,
    start: OptionalDay = None,
    end: OptionalDay = None,
    database_url: DatabaseUrl = None,
) -> None:
    """Populate with --clear-existing."""

    raise typer.Exit(
        cmd_populate(
            tenant,
            start=_as_date(start),
            end=_as_date(end),
            clear_existing=True,
            database_url=database_url,
        )
    )


@app.command("clear")
def clear_cmd(
    tenant: Tenant,
    database_url: DatabaseUrl = None,
) -> None:
    """Remove every cube row of the tenant."""

    raise typer.Exit(cmd_clear(tenant, database_url=database_url))


@app.command("status")
def status_cmd(
    tenant: Tenant,
    database_url: DatabaseUrl = None,
) -> None:
    """Print row counts and coverage of the tenant's cube."""

    raise typer.Exit(cmd_status(tenant, database_url=database_url))


@app.command("trends")
def trends_cmd(
    tenant: Tenant,
    start: Day,
    end: Day,
    *,
    period_type: str = typer.Option(
        "MONTHLY", help="WEEKLY, MONTHLY, QUARTERLY, HALF_YEARLY or YEARLY."
    ),
    transaction_type: str | None = typer.Option(None, help="INCOME, EXPENSE or TRANSFER."),
    category_id: list[int] | None = typer.Option(None, help="Category id; repeat for several."),
    account_id: list[int] | None = typer.Option(None, help="Account id; repeat for several."),
    uncategorized: bool = typer.Option(False, help="Include rows without a category."),
    recurring: bool | None = typer.Option(None, "--recurring/--non-recurring"),
    database_url: DatabaseUrl = None,
) -> None:
    """Print trend rows as JSON lines."""

    raise typer.Exit(
        cmd_trends(
            tenant,
            period_type=period_type,
            start=start.date(),
            end=end.date(),
            transaction_type=transaction_type,
            category_ids=category_id or (),
            account_ids=account_id or (),
            uncategorized=uncategorized,
            recurring=recurring,
            database_url=database_url,
        )
    )


@app.command("purge-stale")
def purge_stale_cmd(
    tenant: Tenant,
    *,
    refill: bool = typer.Option(
        False, "--refill/--no-refill", help="Repopulate the periods around the earliest date."
    ),
    database_url: DatabaseUrl = None,
) -> None:
    """Delete rows that start before the tenant's earliest ledger date."""

    raise typer.Exit(cmd_purge_stale(tenant, refill=refill, database_url=database_url))


@app.command("verify")
def verify_cmd(
    tenant: Tenant,
    start: Day,
    end: Day,
    *,
    repair: bool = typer.Option(False, help="Recompute the buckets that drifted."),
    database_url: DatabaseUrl = None,
) -> None:
    """Compare cube rows with the ledger; exit 2 when drift is left unrepaired."""

    raise typer.Exit(
        cmd_verify(
            tenant,
            start=start.date(),
            end=end.date(),
            repair=repair,
            database_url=database_url,
        )
    )


@app.callback(invoke_without_command=True)
def _root(
    ctx: typer.Context,
    *,
    log_level: str | None = typer.Option(
        None, help="Log level (falls back to TRENDS_CUBE_LOG_LEVEL, then INFO)."
    ),
) -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures package logging.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging(log_level, force=log_level is not None)

    if ctx.invoked_subcommand is None:
        typer.echo("No subcommand provided. Use --help to see available commands.")
        raise typer.Exit(1)


if __name__ == "__main__":  # pragma: no cover
    # Running as a module: `python -m trends_cube.cli`
    app()
