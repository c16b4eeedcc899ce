"""Calendar-day helpers.

A "day" is the calendar date in the configured timezone (device-local when
TASKFLOW_TIMEZONE is unset). Week boundaries are Monday-Sunday (ISO week).

Device-local time is resolved per instant through the system rules, so a week
or month that crosses a DST change still starts at local midnight.
"""

from datetime import date, datetime, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from loguru import logger

from taskflow.config.settings import settings


def local_timezone() -> tzinfo | None:
    """Return the configured timezone, or None to follow the device's local rules."""
    if settings.timezone:
        try:
            return ZoneInfo(settings.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown TASKFLOW_TIMEZONE {settings.timezone!r}, using device-local time")
    return None


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def local_day(moment: datetime, tz: tzinfo | None = None) -> date:
    """Calendar day of moment; naive datetimes are already local wall time."""
    if moment.tzinfo is None:
        return moment.date()
    return moment.astimezone(tz or local_timezone()).date()


def today(now: datetime | None = None) -> date:
    return local_day(now or utc_now())


def plan_window(start: date, estimated_end: date | None) -> tuple[date, date]:
    """Closed day window of a plan; a missing end collapses the window to the start day."""
    return start, estimated_end or start


def window_contains(start: date, estimated_end: date | None, day: date) -> bool:
    first, last = plan_window(start, estimated_end)
    return first <= day <= last


def week_start(d: date) -> date:
    """Return Monday of the calendar week containing d."""
    return d - timedelta(days=d.weekday())


def month_start(d: date) -> date:
    return d.replace(day=1)


def next_month_start(d: date) -> date:
    first = month_start(d)
    if first.month == 12:
        return first.replace(year=first.year + 1, month=1)
    return first.replace(month=first.month + 1)


def day_bounds_utc(first_day: date, end_day: date, tz: tzinfo | None = None) -> tuple[datetime, datetime]:
    """UTC instants for [first_day 00:00, end_day 00:00) in the local timezone."""
    zone = tz or local_timezone()
    return _midnight_utc(first_day, zone), _midnight_utc(end_day, zone)


def _midnight_utc(day: date, zone: tzinfo | None) -> datetime:
    # a naive midnight is converted with the device's offset for that date
    return datetime.combine(day, datetime.min.time(), tzinfo=zone).astimezone(timezone.utc)


def format_mm_ss(seconds: int) -> str:
    """Format whole seconds as MM:SS (minutes are not wrapped at 60)."""
    minutes, secs = divmod(max(0, int(seconds)), 60)
    return f"{minutes:02d}:{secs:02d}"
