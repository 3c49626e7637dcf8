"""Period key helpers for daily, weekly and monthly stats.

Keys:
- daily:   'YYYY-MM-DD'
- weekly:  ISO week 'YYYY-Www' (%G-W%V, Monday start)
- monthly: 'YYYY-MM'

All event dates are taken in UTC.
"""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone

from apptime.errors import ValidationError

_WEEK_RE = re.compile(r"^\d{4}-W\d{2}$")
_MONTH_RE = re.compile(r"^\d{4}-\d{2}$")
_DAY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from the store."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def day_key(d: date) -> str:
    return d.isoformat()


def week_key(d: date) -> str:
    """Get ISO week string e.g. '2026-W09'. Uses %G-W%V (ISO year + ISO week)."""
    return d.strftime("%G-W%V")


def month_key(d: date) -> str:
    return d.strftime("%Y-%m")


def get_monday(d: date) -> date:
    """Get the Monday of the ISO week containing d."""
    return d - timedelta(days=d.weekday())


def parse_day_key(value: str) -> date:
    """Parse 'YYYY-MM-DD'. Raises ValidationError on anything else."""
    if not _DAY_RE.match(value or ""):
        raise ValidationError("Invalid date format. Expected YYYY-MM-DD")
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise ValidationError("Invalid date format. Expected YYYY-MM-DD") from exc


def parse_week_key(value: str) -> tuple[date, date]:
    """Convert '2026-W09' to (Monday date, Sunday date)."""
    if not _WEEK_RE.match(value or ""):
        raise ValidationError("Invalid week date format. Expected YYYY-Www (e.g., 2024-W01)")
    try:
        monday = datetime.strptime(value + "-1", "%G-W%V-%u").date()
    except ValueError as exc:
        raise ValidationError("Invalid week date format. Expected YYYY-Www (e.g., 2024-W01)") from exc
    # strptime normalises W53 of a 52-week year into the next year
    if week_key(monday) != value:
        raise ValidationError(f"Week {value} does not exist")
    return monday, monday + timedelta(days=6)


def parse_month_key(value: str) -> tuple[date, date]:
    """Convert '2024-02' to (first day, last day) of that month."""
    if not _MONTH_RE.match(value or ""):
        raise ValidationError("Invalid month date format. Expected YYYY-MM (e.g., 2024-01)")
    try:
        first = date.fromisoformat(value + "-01")
    except ValueError as exc:
        raise ValidationError("Invalid month date format. Expected YYYY-MM (e.g., 2024-01)") from exc
    next_first = (first.replace(day=28) + timedelta(days=4)).replace(day=1)
    return first, next_first - timedelta(days=1)


def coerce_day(value: str | date | None) -> date | None:
    """Accept a date, a 'YYYY-MM-DD' string, or None."""
    if isinstance(value, datetime):
        return as_utc(value).date()
    if value is None or isinstance(value, date):
        return value
    return parse_day_key(value)


def day_bounds(d: date) -> tuple[datetime, datetime]:
    """Half-open UTC interval [00:00, next 00:00) for a calendar day."""
    start = datetime.combine(d, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def week_days(key: str) -> tuple[str, str]:
    """First and last daily keys of an ISO week."""
    monday, sunday = parse_week_key(key)
    return day_key(monday), day_key(sunday)


def month_days(key: str) -> tuple[str, str]:
    """First and last daily keys of a month."""
    first, last = parse_month_key(key)
    return day_key(first), day_key(last)
