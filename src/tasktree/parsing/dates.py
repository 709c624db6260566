# src/tasktree/parsing/dates.py

"""
Human-friendly due-date tokens -> absolute dates.

Supported (case-insensitive):
- today / tomorrow / yesterday
- relative offsets: +3d, +2w, +1m
- weekday names, short or long (mon, friday, ...): always the NEXT occurrence, never today
- month-day shorthand (jan15, dec1): this year, or next year if already past
- ISO yyyy-mm-dd
"""

from __future__ import annotations

import calendar
import re
from datetime import date, timedelta

_RELATIVE_RE = re.compile(r"^\+(\d+)([dwm])$")
_MONTH_DAY_RE = re.compile(r"^(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)(\d{1,2})$")
_ISO_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

_WEEKDAYS = {
    "mon": 0, "monday": 0,
    "tue": 1, "tuesday": 1,
    "wed": 2, "wednesday": 2,
    "thu": 3, "thursday": 3,
    "fri": 4, "friday": 4,
    "sat": 5, "saturday": 5,
    "sun": 6, "sunday": 6,
}

_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4,
    "may": 5, "jun": 6, "jul": 7, "aug": 8,
    "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}


def add_months(d: date, n: int) -> date:
    """Shift by n calendar months, clamping the day to the target month's length."""
    month_index = d.month - 1 + n
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def _relative(token: str, today: date) -> date | None:
    m = _RELATIVE_RE.match(token)
    if not m:
        return None
    count = int(m.group(1))
    unit = m.group(2)
    try:
        if unit == "d":
            return today + timedelta(days=count)
        if unit == "w":
            return today + timedelta(weeks=count)
        return add_months(today, count)
    except (OverflowError, ValueError):
        return None


def _weekday(token: str, today: date) -> date | None:
    target = _WEEKDAYS.get(token)
    if target is None:
        return None
    days_until = (target - today.weekday()) % 7 or 7
    return today + timedelta(days=days_until)


def _month_day(token: str, today: date) -> date | None:
    m = _MONTH_DAY_RE.match(token)
    if not m:
        return None
    month = _MONTHS[m.group(1)]
    day = int(m.group(2))
    try:
        candidate = date(today.year, month, day)
    except ValueError:
        return None  # e.g. feb30
    if candidate < today:
        try:
            candidate = date(today.year + 1, month, day)
        except ValueError:
            return None  # feb29 with no leap day next year
    return candidate


def _iso(token: str) -> date | None:
    if not _ISO_RE.match(token):
        return None
    try:
        return date.fromisoformat(token)
    except ValueError:
        return None


def resolve_date(token: str | None, today: date | None = None) -> date | None:
    """
    Resolve a due-date token (without the leading '@') to an absolute date.

    Pure and total: returns None for anything it does not understand.
    `today` defaults to the local current date.
    """
    if token is None:
        return None
    normalized = token.strip().lower()
    if not normalized:
        return None

    if today is None:
        today = date.today()

    if normalized == "today":
        return today
    if normalized == "tomorrow":
        return today + timedelta(days=1)
    if normalized == "yesterday":
        return today - timedelta(days=1)

    return (
        _relative(normalized, today)
        or _weekday(normalized, today)
        or _month_day(normalized, today)
        or _iso(normalized)
    )
