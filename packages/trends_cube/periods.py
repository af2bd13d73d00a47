"""Calendar convention shared by every cube component.

- Weeks are ISO weeks: Monday through Sunday.
- Months, quarters, half-years and years are calendar aligned.
- Bounds are inclusive dates; each day belongs to exactly one period of each
  granularity.

The populator, the incremental updater, the rollup engine and the reconciler
all derive periods from here so a transaction always lands in the same bucket
no matter which path wrote it.
"""

from __future__ import annotations

import calendar
from collections.abc import Iterator
from datetime import date, timedelta

from .models import STORED_PERIOD_TYPES, Period, PeriodType


def week_bounds(day: date) -> tuple[date, date]:
    start = day - timedelta(days=day.weekday())
    return start, start + timedelta(days=6)


def month_bounds(day: date) -> tuple[date, date]:
    last = calendar.monthrange(day.year, day.month)[1]
    return day.replace(day=1), day.replace(day=last)


def _month_span_bounds(day: date, span: int) -> tuple[date, date]:
    first_month = ((day.month - 1) // span) * span + 1
    last_month = first_month + span - 1
    last_day = calendar.monthrange(day.year, last_month)[1]
    return date(day.year, first_month, 1), date(day.year, last_month, last_day)


def quarter_bounds(day: date) -> tuple[date, date]:
    return _month_span_bounds(day, 3)


def half_year_bounds(day: date) -> tuple[date, date]:
    return _month_span_bounds(day, 6)


def year_bounds(day: date) -> tuple[date, date]:
    return date(day.year, 1, 1), date(day.year, 12, 31)


_BOUNDS = {
    PeriodType.WEEKLY: week_bounds,
    PeriodType.MONTHLY: month_bounds,
    PeriodType.QUARTERLY: quarter_bounds,
    PeriodType.HALF_YEARLY: half_year_bounds,
    PeriodType.YEARLY: year_bounds,
}


def period_for(day: date, period_type: PeriodType | str) -> Period:
    """Return the ``period_type`` period containing ``day``."""

    pt = PeriodType(period_type)
    start, end = _BOUNDS[pt](day)
    return Period(pt, start, end)


def stored_periods_for(day: date) -> tuple[Period, ...]:
    """Return the WEEKLY and MONTHLY periods containing ``day``."""

    return tuple(period_for(day, pt) for pt in STORED_PERIOD_TYPES)


def iter_periods(start: date, end: date, period_type: PeriodType | str) -> Iterator[Period]:
    """Yield every aligned period overlapping ``[start, end]`` in ascending order."""

    if start > end:
        raise ValueError(f"start {start} is after end {end}")
    current = period_for(start, period_type)
    while current.start <= end:
        yield current
        current = period_for(current.end + timedelta(days=1), period_type)


__all__ = [
    "half_year_bounds",
    "iter_periods",
    "month_bounds",
    "period_for",
    "quarter_bounds",
    "stored_periods_for",
    "week_bounds",
    "year_bounds",
]
