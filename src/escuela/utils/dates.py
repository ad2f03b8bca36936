"""Date helpers shared by records and the document store.

Documents keep timestamps as ISO-8601 strings. Aware datetimes are always UTC;
naive datetimes read back from old documents are assumed to be UTC as well.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> datetime | None:
    """Parse a stored timestamp.

    Accepts datetimes, dates (midnight UTC) and ISO strings. Returns None for
    empty values.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def parse_date(value: Any) -> date | None:
    """Parse a stored calendar date (time part is dropped)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def to_iso(value: datetime | date | None) -> str | None:
    """Serialize a date or datetime to ISO-8601."""
    if value is None:
        return None
    if isinstance(value, datetime) and value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()
