"""Split a date range into calendar-month sub-ranges.

Fitbit rejects body log range queries that cross a month boundary, so a
batch sync walks the range one month at a time::

    >>> partition_month_ranges(date(2024, 1, 15), date(2024, 3, 10))
    [(date(2024, 1, 15), date(2024, 1, 31)),
     (date(2024, 2, 1), date(2024, 2, 29)),
     (date(2024, 3, 1), date(2024, 3, 10))]
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta

DATE_FORMAT = "%Y-%m-%d"


class PartitionError(ValueError):
    """Raised for malformed, degenerate, or inverted date ranges."""


def month_end(day: date) -> date:
    """Return the last day of ``day``'s month."""
    return day.replace(day=calendar.monthrange(day.year, day.month)[1])


def partition_month_ranges(start: date, end: date) -> list[tuple[date, date]]:
    """Return ordered, contiguous, month-confined (sub_start, sub_end) pairs.

    The pairs are inclusive on both ends and together cover exactly
    ``[start, end]``.

    Raises:
        PartitionError: If ``start`` is not strictly before ``end``.
    """
    if not start < end:
        raise PartitionError(f"start {start.isoformat()} must be before end {end.isoformat()}")

    ranges: list[tuple[date, date]] = []
    cursor = start
    while cursor <= end:
        sub_end = min(month_end(cursor), end)
        ranges.append((cursor, sub_end))
        cursor = sub_end + timedelta(days=1)
    return ranges


def parse_date(value: str | None, field_name: str = "date") -> date:
    """Parse a ``YYYY-MM-DD`` string.

    Raises:
        PartitionError: If the value is missing or malformed.
    """
    if not value:
        raise PartitionError(f"{field_name} is required (YYYY-MM-DD)")
    try:
        return datetime.strptime(value, DATE_FORMAT).date()
    except ValueError as exc:
        raise PartitionError(f"{field_name} {value!r} is not a YYYY-MM-DD date") from exc


def parse_date_range(start: str | None, end: str | None) -> tuple[date, date]:
    """Parse and validate a ``YYYY-MM-DD`` start/end pair."""
    s = parse_date(start, "start")
    e = parse_date(end, "end")
    if not s < e:
        raise PartitionError(f"start {start} must be before end {end}")
    return s, e
