"""Financial trends cube.

A materialized WEEKLY/MONTHLY aggregation of the transaction ledger, kept in
step by recomputing touched buckets on every ledger mutation, with derived
QUARTERLY/HALF_YEARLY/YEARLY reads and a reconciler for drift.

Entry points:

- ``trends_cube.api``: self-contained calls (``populate``, ``get_trends``,
  ``get_cube_stats``, ``purge_stale``, ``verify``, ``repair``, ``clear``);
- ``trends_cube.updater`` / ``trends_cube.hooks``: in-transaction upkeep for
  the ledger mutation path;
- ``trends_cube.cli``: the ``trends-cube`` console script.
"""

from .api import (
    clear,
    get_aggregated_totals,
    get_cube_stats,
    get_trends,
    populate,
    purge_stale,
    rebuild,
    repair,
    verify,
)
from .hooks import install_cube_hooks, remove_cube_hooks
from .ledger import Ledger, SqlLedger
from .models import (
    CubeFields,
    CubeStats,
    Discrepancy,
    LedgerMutation,
    PeriodType,
    PopulateOptions,
    PopulateResult,
    TransactionType,
    TrendRow,
    TrendsQuery,
    UpdateResult,
)
from .updater import apply_mutation, apply_mutations, track_bulk_change

__all__ = [
    "CubeFields",
    "CubeStats",
    "Discrepancy",
    "Ledger",
    "LedgerMutation",
    "PeriodType",
    "PopulateOptions",
    "PopulateResult",
    "SqlLedger",
    "TransactionType",
    "TrendRow",
    "TrendsQuery",
    "UpdateResult",
    "apply_mutation",
    "apply_mutations",
    "clear",
    "get_aggregated_totals",
    "get_cube_stats",
    "get_trends",
    "install_cube_hooks",
    "populate",
    "purge_stale",
    "rebuild",
    "remove_cube_hooks",
    "repair",
    "track_bulk_change",
    "verify",
]
