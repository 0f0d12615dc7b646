"""
Business-day calendar for construction schedules.

A business day is Monday to Friday. No public-holiday calendar is modelled:
a statutory holiday falling on a weekday counts as a working day.

All values are ``datetime.date`` (no time of day); the wire format is
``YYYY-MM-DD``.
"""

from datetime import date, datetime, timedelta
from typing import Iterator

ISO_FORMAT = "%Y-%m-%d"


def is_business_day(d: date) -> bool:
    return d.weekday() < 5


def add_business_days(start: date, days: int) -> date:
    """Move ``days`` business days from ``start`` (negative moves backward).

    ``days == 0`` returns ``start`` unchanged, even on a weekend.
    """
    if days == 0:
        return start

    direction = 1 if days > 0 else -1
    remaining = abs(days)
    current = start

    while remaining > 0:
        current += timedelta(days=direction)
        if is_business_day(current):
            remaining -= 1

    return current


def sub_business_days(start: date, days: int) -> date:
    return add_business_days(start, -days)


def business_day_diff(a: date, b: date) -> int:
    """Signed count of business days from ``b`` to ``a``.

    Counts business days in ``[b, a)`` when ``a > b``; negative when ``a < b``.
    ``business_day_diff(friday, monday_same_week) == 4``.
    """
    if a == b:
        return 0

    sign = 1
    start, end = b, a
    if start > end:
        start, end = end, start
        sign = -1

    count = 0
    current = start
    while current < end:
        if is_business_day(current):
            count += 1
        current += timedelta(days=1)

    return count * sign


def add_calendar_days(start: date, days: int) -> date:
    return start + timedelta(days=days)


def next_business_day(d: date) -> date:
    """Return ``d`` if it is a business day, else the following Monday."""
    while not is_business_day(d):
        d += timedelta(days=1)
    return d


def end_for_duration(start: date, duration: int) -> date:
    """Last business day of a step that starts on ``start`` and lasts ``duration`` days."""
    return add_business_days(start, max(duration, 1) - 1)


def iter_business_days(start: date, end: date) -> Iterator[date]:
    """Yield every business day in the closed range ``[start, end]``."""
    current = start
    while current <= end:
        if is_business_day(current):
            yield current
        current += timedelta(days=1)


def to_iso(d: date | None) -> str | None:
    return d.strftime(ISO_FORMAT) if d else None


def parse_iso(value) -> date | None:
    """Parse ``YYYY-MM-DD`` into a date. Raises ValueError on bad input."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])
