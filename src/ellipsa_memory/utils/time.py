"""Time utilities for Ellipsa Memory.

Everything is stored and compared in UTC. SQLite hands datetimes back without
tzinfo, so anything read from the relational store goes through ``ensure_utc``.
"""

from datetime import date, datetime, timezone

import pendulum


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return pendulum.now("UTC")


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_datetime(value: datetime | date | str | None) -> datetime | None:
    """Leniently parse a user- or LLM-supplied date into an aware UTC datetime.

    Returns None for empty or unparseable input; extraction output is full of
    phrases like "next week" that are not worth failing over.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)

    try:
        parsed = pendulum.parse(str(value).strip(), strict=False, tz="UTC")
    except (ValueError, TypeError, OverflowError):
        return None

    if isinstance(parsed, pendulum.DateTime):
        return parsed.in_timezone("UTC")
    if isinstance(parsed, pendulum.Date):
        return datetime(parsed.year, parsed.month, parsed.day, tzinfo=timezone.utc)
    return None


def age_in_days(dt: datetime, now: datetime | None = None) -> float:
    """Age of ``dt`` in fractional days. Future timestamps count as age 0."""
    now = ensure_utc(now) if now is not None else utc_now()
    seconds = (now - ensure_utc(dt)).total_seconds()
    return max(seconds, 0.0) / 86400.0


def utc_timestamp(dt: datetime | str | None = None) -> str:
    """Render ``dt`` (default: now) as an ISO string with an explicit +00:00 offset."""
    if dt is None:
        return pendulum.now("UTC").isoformat()
    if isinstance(dt, str):
        parsed = parse_datetime(dt)
        if parsed is None:
            raise ValueError(f"Unparseable timestamp: {dt!r}")
        return parsed.isoformat()
    return pendulum.instance(ensure_utc(dt)).in_timezone("UTC").isoformat()


def current_utc() -> str:
    """Current UTC timestamp in the standard string format."""
    return utc_timestamp()
