"""
Centralized date and timestamp helpers.
Every operation uses settings.APP_TIMEZONE as the reference timezone.

System convention:
- Datetimes are stored **naive** and always mean **local time**.
"""
from datetime import datetime, date, timedelta
from zoneinfo import ZoneInfo

from config.settings import settings

LOCAL_TZ = ZoneInfo(settings.APP_TIMEZONE)


def now_local() -> datetime:
    """
    Current datetime in the application timezone (naive, for DATETIME columns).
    """
    return datetime.now(LOCAL_TZ).replace(tzinfo=None, microsecond=0)


def today_local() -> date:
    """
    Current date in the application timezone.
    """
    return datetime.now(LOCAL_TZ).date()


def days_between(later: date, earlier: date) -> int:
    """Whole calendar days from `earlier` to `later` (date parts only)."""
    if isinstance(later, datetime):
        later = later.date()
    if isinstance(earlier, datetime):
        earlier = earlier.date()
    return (later - earlier).days


def start_for_age(age: int, today: date | None = None) -> datetime:
    """
    Start datetime of a cycle whose age today is `age`.

    Age 1 is the placement day, so the start is shifted back age - 1 days.
    """
    today = today or today_local()
    shift = max(0, age - 1)
    start = today - timedelta(days=shift)
    return datetime(start.year, start.month, start.day)
