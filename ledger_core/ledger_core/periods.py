"""Calendar-period helpers.

A period is a calendar month rendered as ``YYYY-MM``.  All "current"
lookups are evaluated in the configured business timezone, never in the
host's local time.
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from zoneinfo import ZoneInfo


def period_key(year: int, month: int) -> str:
    """Return the ``YYYY-MM`` key for *year*/*month*.

    Raises
    ------
    ValueError
        If *month* is outside 1..12.
    """
    if not 1 <= month <= 12:
        raise ValueError(f"month must be between 1 and 12, got {month}")
    return f"{year:04d}-{month:02d}"


def local_now(tz: ZoneInfo, now: datetime | None = None) -> datetime:
    """Return *now* (default: the current instant) converted to *tz*."""
    if now is None:
        now = datetime.now(UTC)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    return now.astimezone(tz)


def current_period(tz: ZoneInfo, now: datetime | None = None) -> tuple[int, int]:
    """Return ``(year, month)`` for the current instant in *tz*."""
    local = local_now(tz, now)
    return local.year, local.month


def is_first_day(tz: ZoneInfo, now: datetime | None = None) -> bool:
    return local_now(tz, now).day == 1


def first_of_next_month(day: date) -> date:
    """Return the first day of the month following *day*.

    >>> first_of_next_month(date(2024, 12, 15))
    datetime.date(2025, 1, 1)
    """
    if day.month == 12:
        return date(day.year + 1, 1, 1)
    return date(day.year, day.month + 1, 1)
