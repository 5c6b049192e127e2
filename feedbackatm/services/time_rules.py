"""
Day bucketing rules.
All stored timestamps are naive UTC; "today" is computed in the configured task timezone.
"""
from datetime import date, datetime, time, timedelta
from typing import Optional, Tuple
import pytz
from ..config import settings


def utcnow() -> datetime:
    return datetime.utcnow()


def _task_tz():
    return pytz.timezone(settings.task_timezone)


def _to_naive_utc(local_dt: datetime) -> datetime:
    return local_dt.astimezone(pytz.UTC).replace(tzinfo=None)


def local_today(now: Optional[datetime] = None) -> date:
    """
    Calendar day in the task timezone.

    Args:
        now: Naive UTC instant (defaults to the current time)

    Returns:
        The local date containing that instant
    """
    now = now or utcnow()
    return pytz.UTC.localize(now).astimezone(_task_tz()).date()


def day_window(now: Optional[datetime] = None) -> Tuple[date, datetime, datetime]:
    """
    Day window for task generation and "today" queries.

    Args:
        now: Naive UTC instant (defaults to the current time)

    Returns:
        (day, start, end) where start/end are naive UTC bounds of [day 00:00, next day 00:00)
        in the task timezone.
    """
    tz = _task_tz()
    day = local_today(now)
    start = tz.localize(datetime.combine(day, time.min))
    end = tz.localize(datetime.combine(day + timedelta(days=1), time.min))
    return day, _to_naive_utc(start), _to_naive_utc(end)


def seconds_until_next_midnight(now: Optional[datetime] = None) -> float:
    """Seconds from now until 00:00 of the next day in the task timezone."""
    now = now or utcnow()
    _, _, end = day_window(now)
    return max((end - now).total_seconds(), 1.0)


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Client-supplied timestamps: aware values are converted to UTC, naive ones are taken as UTC."""
    if value is None or value.tzinfo is None:
        return value
    return _to_naive_utc(value)
