"""Calendar helpers shared by the daily lifecycle jobs."""
from __future__ import annotations

from datetime import datetime, time, timedelta, timezone, tzinfo
from typing import Callable, Optional, Tuple

from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "UTC"
ONE_DAY = timedelta(days=1)

Clock = Callable[[], datetime]


def resolve_timezone(name: Optional[str]) -> tzinfo:
    if not name or not name.strip():
        return ZoneInfo(DEFAULT_TIMEZONE)
    return ZoneInfo(name.strip())


def current_time(clock: Optional[Clock]) -> datetime:
    if clock is None:
        return datetime.now(timezone.utc)
    value = clock()
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def start_of_day(moment: datetime, tz: tzinfo) -> datetime:
    """Return local midnight of the calendar day containing ``moment``."""

    local_date = moment.astimezone(tz).date()
    return datetime.combine(local_date, time.min, tzinfo=tz)


def day_window(moment: datetime, tz: tzinfo, offset_days: int = 0) -> Tuple[datetime, datetime]:
    """Return ``[start, end)`` of the local day ``offset_days`` after ``moment``."""

    local_date = moment.astimezone(tz).date() + timedelta(days=offset_days)
    start = datetime.combine(local_date, time.min, tzinfo=tz)
    end = datetime.combine(local_date + ONE_DAY, time.min, tzinfo=tz)
    return start, end


def whole_days_between(later: datetime, earlier: datetime) -> int:
    """Floor of the elapsed days from ``earlier`` to ``later`` (may be negative)."""

    return (later - earlier) // ONE_DAY


def format_date(value: datetime, tz: Optional[tzinfo] = None) -> str:
    if tz is not None:
        value = value.astimezone(tz)
    return value.strftime("%d/%m/%Y")
