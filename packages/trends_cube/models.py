"""Data models for the trends cube.

Three families live here:

- value types shared by every component (``Period``, ``Dimension``,
  ``CubeFields``, ``Bucket``, ``LedgerMutation``);
- validated request models for the public entry points (``PopulateOptions``,
  ``TrendsQuery``), built on pydantic so CLI and programmatic callers get the
  same validation;
- plain result records (``PopulateResult``, ``TrendRow``, ``CubeStats``,
  ``Discrepancy``, ``UpdateResult``).
"""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import StrEnum
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

UNCATEGORIZED = "Uncategorized"
_CENTS = Decimal("0.01")


def quantize_amount(raw: Any) -> Decimal:
    """Return ``raw`` as a 2dp ``Decimal`` (``None`` counts as zero).

    SQLite hands back sums as floats; quantizing keeps cube and ledger totals
    comparable on every backend.
    """

    if raw is None:
        return Decimal("0.00")
    try:
        d = raw if isinstance(raw, Decimal) else Decimal(str(raw))
    except InvalidOperation as exc:
        raise ValueError(f"Not a monetary amount: {raw!r}") from exc
    return d.quantize(_CENTS, rounding=ROUND_HALF_UP)


class PeriodType(StrEnum):
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    HALF_YEARLY = "HALF_YEARLY"
    YEARLY = "YEARLY"

    @property
    def is_stored(self) -> bool:
        """True for granularities materialized in ``ft_financial_cube``."""
        return self in STORED_PERIOD_TYPES


STORED_PERIOD_TYPES: tuple[PeriodType, ...] = (PeriodType.WEEKLY, PeriodType.MONTHLY)


class TransactionType(StrEnum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    TRANSFER = "TRANSFER"


class MutationKind(StrEnum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True, order=True)
class Period:
    """A calendar-aligned period with inclusive bounds."""

    period_type: PeriodType
    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError(f"Period start {self.start} is after end {self.end}")

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


@dataclass(frozen=True, slots=True)
class Dimension:
    """The (transaction_type, category, account, recurring) tuple of a cube row.

    ``category_id=None`` is the uncategorized slice and only matches ledger
    rows whose category is NULL.
    """

    transaction_type: TransactionType
    category_id: int | None
    account_id: int
    is_recurring: bool

    def sort_key(self) -> tuple[str, int, int, bool]:
        return (
            str(self.transaction_type),
            -1 if self.category_id is None else self.category_id,
            self.account_id,
            self.is_recurring,
        )


@dataclass(frozen=True, slots=True)
class CubeFields:
    """Cube-relevant values of one ledger transaction at one point in time."""

    date: date
    amount: Decimal
    transaction_type: TransactionType
    category_id: int | None
    account_id: int
    is_recurring: bool

    @property
    def dimension(self) -> Dimension:
        return Dimension(
            transaction_type=TransactionType(self.transaction_type),
            category_id=self.category_id,
            account_id=self.account_id,
            is_recurring=bool(self.is_recurring),
        )


@dataclass(frozen=True, slots=True)
class Bucket:
    """One cube slot: a stored period plus a dimension tuple for a tenant."""

    tenant_id: str
    period: Period
    dimension: Dimension

    def sort_key(self) -> tuple[str, str, date, tuple[str, int, int, bool]]:
        return (
            self.tenant_id,
            str(self.period.period_type),
            self.period.start,
            self.dimension.sort_key(),
        )


@dataclass(frozen=True, slots=True)
class LedgerMutation:
    """A single ledger change as reported by the mutation path.

    ``old`` holds the values before the change (``UPDATE``/``DELETE``) and
    ``new`` the values after it (``CREATE``/``UPDATE``).
    """

    kind: MutationKind
    old: CubeFields | None = None
    new: CubeFields | None = None

    def __post_init__(self) -> None:
        if self.kind is MutationKind.CREATE and (self.new is None or self.old is not None):
            raise ValueError("CREATE mutations carry new values only")
        if self.kind is MutationKind.DELETE and (self.old is None or self.new is not None):
            raise ValueError("DELETE mutations carry old values only")
        if self.kind is MutationKind.UPDATE and (self.old is None or self.new is None):
            raise ValueError("UPDATE mutations carry both old and new values")

    @classmethod
    def created(cls, new: CubeFields) -> Self:
        return cls(MutationKind.CREATE, new=new)

    @classmethod
    def updated(cls, old: CubeFields, new: CubeFields) -> Self:
        return cls(MutationKind.UPDATE, old=old, new=new)

    @classmethod
    def deleted(cls, old: CubeFields) -> Self:
        return cls(MutationKind.DELETE, old=old)

    @property
    def is_noop(self) -> bool:
        """True for an update that changed nothing the cube aggregates."""
        return self.kind is MutationKind.UPDATE and self.old == self.new


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class PopulateOptions(BaseModel):
    """Options for a full or ranged rebuild of cube rows from the ledger."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    start_date: date | None = None
    end_date: date | None = None
    clear_existing: bool = False
    batch_size: int = Field(default=100, gt=0)
    account_id: int | None = None

    @model_validator(mode="after")
    def _check_range(self) -> Self:
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must be on or before end_date")
        return self


class TrendsQuery(BaseModel):
    """A trend read: one granularity, an inclusive date window and filters.

    ``category_id``/``account_id`` are single-id shorthands folded into
    ``category_ids``/``account_ids``. ``uncategorized`` selects rows without a
    category; together with ``category_ids`` it widens the category filter.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    period_type: PeriodType = PeriodType.MONTHLY
    start_date: date
    end_date: date
    transaction_type: TransactionType | None = None
    category_id: int | None = None
    account_id: int | None = None
    is_recurring: bool | None = None
    category_ids: tuple[int, ...] = ()
    account_ids: tuple[int, ...] = ()
    uncategorized: bool = False

    @model_validator(mode="after")
    def _check_range(self) -> Self:
        if self.start_date > self.end_date:
            raise ValueError("start_date must be on or before end_date")
        return self


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return f"{value:.2f}"
    if isinstance(value, date | datetime):
        return value.isoformat()
    if isinstance(value, StrEnum):
        return str(value)
    if isinstance(value, Mapping):
        return {k: _plain(v) for k, v in value.items()}
    return value


class _AsDict:
    """Mixin giving result dataclasses a JSON-friendly ``as_dict``."""

    __slots__ = ()

    def as_dict(self) -> dict[str, Any]:
        fields = dataclasses.asdict(self)  # type: ignore[call-overload]
        return {k: _plain(v) for k, v in fields.items()}


@dataclass(frozen=True, slots=True)
class PopulateResult(_AsDict):
    periods_processed: int
    records_created: int
    records_removed: int
    time_elapsed: float
    cancelled: bool = False


@dataclass(frozen=True, slots=True)
class UpdateResult(_AsDict):
    buckets_recomputed: int = 0
    rows_upserted: int = 0
    rows_deleted: int = 0

    def __add__(self, other: UpdateResult) -> UpdateResult:
        return UpdateResult(
            buckets_recomputed=self.buckets_recomputed + other.buckets_recomputed,
            rows_upserted=self.rows_upserted + other.rows_upserted,
            rows_deleted=self.rows_deleted + other.rows_deleted,
        )


@dataclass(frozen=True, slots=True)
class TrendRow(_AsDict):
    tenant_id: str
    period_type: PeriodType
    period_start: date
    period_end: date
    transaction_type: TransactionType
    category_id: int | None
    category_name: str
    account_id: int
    account_name: str
    is_recurring: bool
    total_amount: Decimal
    transaction_count: int

    @property
    def dimension(self) -> Dimension:
        return Dimension(
            transaction_type=self.transaction_type,
            category_id=self.category_id,
            account_id=self.account_id,
            is_recurring=self.is_recurring,
        )


@dataclass(frozen=True, slots=True)
class DateRange(_AsDict):
    earliest: date | None
    latest: date | None


@dataclass(frozen=True, slots=True)
class CubeStats(_AsDict):
    total_records: int
    weekly_records: int
    monthly_records: int
    date_range: DateRange
    account_count: int
    category_count: int
    last_updated: datetime | None


@dataclass(frozen=True, slots=True)
class Discrepancy(_AsDict):
    """A mismatch between a stored cube row and the ledger slice it represents."""

    period: Period
    dimension: Dimension
    cube_amount: Decimal
    ledger_amount: Decimal
    cube_count: int
    ledger_count: int

    def bucket(self, tenant_id: str) -> Bucket:
        return Bucket(tenant_id=tenant_id, period=self.period, dimension=self.dimension)


__all__ = [
    "Bucket",
    "CubeFields",
    "CubeStats",
    "DateRange",
    "Dimension",
    "Discrepancy",
    "LedgerMutation",
    "MutationKind",
    "Period",
    "PeriodType",
    "PopulateOptions",
    "PopulateResult",
    "STORED_PERIOD_TYPES",
    "TransactionType",
    "TrendRow",
    "TrendsQuery",
    "UNCATEGORIZED",
    "quantize_amount",
    "UpdateResult",
]
