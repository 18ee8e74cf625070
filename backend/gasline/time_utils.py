"""
Time handling for Gasline.

All datetimes inside the service layer and the database are UTC without
tzinfo. Anything leaving the API is rendered as ISO-8601 with a trailing Z.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a query-string timestamp into naive UTC.

    Accepts "2026-03-02", "2026-03-02T09:30", "...Z" and "...+05:30".
    Offsets are converted to UTC. Blank input gives None; garbage raises
    ValueError.
    """
    if value is None or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def is_date_only(value: Optional[str]) -> bool:
    """True for a bare calendar date such as '2026-03-02'."""
    return bool(value) and len(value.strip()) == 10 and "T" not in value


def start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min)


def end_of_day(day: date) -> datetime:
    return datetime.combine(day, time.max)


def day_window(moment: datetime) -> tuple[datetime, datetime]:
    """[start, next start) of the UTC day containing moment."""
    start = start_of_day(moment.date())
    return start, start + timedelta(days=1)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """'2026-03-02T09:30:00Z'; naive values are taken as UTC, microseconds dropped."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.replace(microsecond=0).isoformat() + "Z"
