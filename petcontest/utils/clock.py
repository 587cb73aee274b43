from datetime import datetime, timezone, timedelta, date
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """
    Current instant as a naive UTC datetime, truncated to milliseconds.

    MongoDB stores datetimes with millisecond precision and returns them
    naive, so every timestamp the services write or compare goes through here.
    """
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """Return (00:00:00.000, 23:59:59.999) UTC for a calendar day."""
    start = datetime(day.year, day.month, day.day)
    end = start + timedelta(days=1) - timedelta(milliseconds=1)
    return start, end


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an incoming datetime (aware or naive UTC) to the stored form."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)
