"""Calendar-day helpers for the per-day import loop."""
from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Iterator


def _to_day(value: date | datetime) -> date:
    # Day boundary is timezone-naive: the calendar day of the value as given.
    if isinstance(value, datetime):
        return value.date()
    return value


def gen_date_range(start: date | datetime, end: date | datetime) -> Iterator[date]:
    """Yield every calendar day from ``start`` to ``end`` inclusive, oldest first.

    Empty when ``end`` falls on an earlier day than ``start``. The result is a
    generator: it can be consumed once.
    """
    current = _to_day(start)
    last = _to_day(end)
    step = timedelta(days=1)
    while current <= last:
        yield current
        current += step


__all__ = ["gen_date_range"]
