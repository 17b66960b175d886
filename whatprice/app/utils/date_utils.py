"""Date manipulation utilities

All timestamps are stored as naive UTC datetimes.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import List, Tuple


def utcnow() -> datetime:
    """Current time as a naive UTC datetime"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def start_of_day(value: datetime | date) -> datetime:
    """Midnight (UTC) of the given day"""
    if isinstance(value, datetime):
        value = value.date()
    return datetime.combine(value, time.min)


def day_window(day: date) -> Tuple[datetime, datetime]:
    """Half-open [start, end) window covering one UTC day"""
    start = start_of_day(day)
    return start, start + timedelta(days=1)


def generate_date_range(start: date, end: date) -> List[date]:
    """Generate list of dates from start to end (inclusive)"""
    days = (end - start).days + 1
    return [start + timedelta(days=i) for i in range(days)]
