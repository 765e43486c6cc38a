"""Date manipulation utilities"""

from datetime import date, datetime, time, timezone
from typing import Optional, Tuple


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC (sqlite drops tzinfo on read)"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_day_bucket(value: Optional[datetime] = None) -> date:
    """Truncate a timestamp to its local calendar day"""
    value = value or utcnow()
    if value.tzinfo is not None:
        value = value.astimezone()
    return value.date()


def day_bounds(value: Optional[datetime | date] = None) -> Tuple[datetime, datetime, str]:
    """
    UTC start/end of the day containing ``value``.

    Returns (period_start, period_end, day_key); the end bound is the last
    microsecond of the day.
    """
    if value is None:
        value = utcnow()
    day = as_utc(value).date() if isinstance(value, datetime) else value
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    end = datetime.combine(day, time.max, tzinfo=timezone.utc)
    return start, end, day.isoformat()


def parse_day(value: Optional[str]) -> Optional[date]:
    """Parse YYYY-MM-DD (or a full ISO timestamp) into a date"""
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError as e:
        raise ValueError(f"Invalid date: {value!r}") from e
