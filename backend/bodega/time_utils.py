from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from flask import current_app, has_app_context


# Tolerated clock skew for client-supplied business timestamps
FUTURE_SKEW = timedelta(minutes=2)


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def business_today() -> date:
    """
    Calendar date in the configured business timezone.

    Due dates and the overdue sweep are day-granular, so they follow the
    shop's local calendar rather than UTC.
    """
    tz_name = "UTC"
    if has_app_context():
        tz_name = current_app.config.get("BUSINESS_TIMEZONE", "UTC")
    return datetime.now(ZoneInfo(tz_name)).date()


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "YYYY-MM-DD" is interpreted as midnight UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)

    # Normalize to UTC-naive
    if dt.tzinfo is None:
        # interpret naive as UTC
        return dt.replace(tzinfo=None)

    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_date(value: Optional[str]) -> Optional[date]:
    """Parse "YYYY-MM-DD"; None / "" -> None."""
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None
    return date.fromisoformat(s)


def normalize_datetime(value) -> Optional[datetime]:
    """
    Normalize a datetime-ish input to canonical UTC-naive.

    Accepts None, datetime (aware or naive) or an ISO-8601 string.
    Raises ValueError on anything else.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    if isinstance(value, str):
        dt = parse_iso_datetime(value)
        if dt is None:
            raise ValueError("invalid datetime")
        return dt

    raise ValueError("invalid datetime")


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def to_iso_date(d: Optional[date]) -> Optional[str]:
    return d.isoformat() if d is not None else None


def range_bounds(date_from=None, date_to=None) -> tuple[Optional[datetime], Optional[datetime]]:
    """
    Inclusive [date_from, date_to] range as (start, end_exclusive) datetimes.

    A bare date as upper bound covers the whole day. Either bound may be None.
    Raises ValueError on unparseable input or an inverted range.
    """
    start = normalize_datetime(date_from) if date_from is not None else None

    end = None
    if date_to is not None:
        if isinstance(date_to, date) and not isinstance(date_to, datetime):
            end = datetime(date_to.year, date_to.month, date_to.day) + timedelta(days=1)
        else:
            end = normalize_datetime(date_to) + timedelta(microseconds=1)

    if start is not None and end is not None and end <= start:
        raise ValueError("date_from must not be after date_to")
    return start, end
