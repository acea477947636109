"""Settlement period and calendar key helpers.

A settlement day is partitioned into exactly 48 half-hour periods numbered
1..48. Aggregate tiers are keyed by ISO date, ``"YYYY-MM"`` and ``"YYYY"``.

Examples::

    >>> from datetime import date
    >>> month_key(date(2025, 3, 28))
    '2025-03'
    >>> dates_in_month("2024-02")[-1]
    datetime.date(2024, 2, 29)
"""

from __future__ import annotations

import calendar
from collections.abc import Iterable, Iterator
from datetime import date, timedelta

SETTLEMENT_PERIODS_PER_DAY = 48
ALL_PERIODS: tuple[int, ...] = tuple(range(1, SETTLEMENT_PERIODS_PER_DAY + 1))


def is_valid_period(period: int) -> bool:
    """Return True if *period* lies on the 1..48 grid."""
    return 1 <= period <= SETTLEMENT_PERIODS_PER_DAY


def validate_periods(periods: Iterable[int]) -> list[int]:
    """Return *periods* sorted and de-duplicated.

    Raises:
        ValueError: If any period is off the 1..48 grid.
    """
    result = sorted(set(periods))
    invalid = [p for p in result if not is_valid_period(p)]
    if invalid:
        raise ValueError(
            f"Settlement periods out of range 1..{SETTLEMENT_PERIODS_PER_DAY}: {invalid}"
        )
    return result


def month_key(d: date) -> str:
    """Return the ``YYYY-MM`` key for the month containing *d*."""
    return f"{d.year:04d}-{d.month:02d}"


def year_key(d: date) -> str:
    """Return the ``YYYY`` key for the year containing *d*."""
    return f"{d.year:04d}"


def parse_month_key(key: str) -> tuple[int, int]:
    """Split a ``YYYY-MM`` key into (year, month)."""
    year_str, month_str = key.split("-")
    return int(year_str), int(month_str)


def dates_in_month(key: str) -> list[date]:
    """Return every calendar date in the month *key*."""
    year, month = parse_month_key(key)
    last_day = calendar.monthrange(year, month)[1]
    return [date(year, month, day) for day in range(1, last_day + 1)]


def months_in_year(key: str) -> list[str]:
    """Return the twelve ``YYYY-MM`` keys of the year *key*."""
    return [f"{int(key):04d}-{m:02d}" for m in range(1, 13)]


def iter_dates(start: date, end: date) -> Iterator[date]:
    """Yield every date from *start* to *end* inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)
