"""
Timezone and calendar helpers.

Business hours are local wall-clock times of a branch; appointments are
absolute instants stored in UTC. Everything that crosses between the two
goes through this module.

Weekdays follow the 0=Sunday..6=Saturday convention used by the hours tables.
"""

import logging
import re
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from agenda.exceptions import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "America/Sao_Paulo"

_TIME_RE = re.compile(r"^\s*(\d{1,2}):(\d{1,2})(?::(\d{1,2}))?\s*$")


def get_timezone(name: str | None, fallback: str = DEFAULT_TIMEZONE) -> ZoneInfo:
    """Get a ZoneInfo timezone with safe fallback."""
    if not name:
        return ZoneInfo(fallback)
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone {name!r}, falling back to {fallback}")
        return ZoneInfo(fallback)


def parse_time_of_day(value: str | time) -> time:
    """Parse ``HH:MM`` or ``HH:MM:SS`` into a time."""
    if isinstance(value, time):
        return value.replace(tzinfo=None)
    match = _TIME_RE.match(value or "") if isinstance(value, str) else None
    if not match:
        raise ValidationError(f"Invalid time of day: {value!r}", reason="invalid_time")
    hour, minute, second = (int(part) if part else 0 for part in match.groups())
    if hour > 23 or minute > 59 or second > 59:
        raise ValidationError(f"Invalid time of day: {value!r}", reason="invalid_time")
    return time(hour, minute, second)


def parse_date(value: str | date) -> date:
    """Parse a ``YYYY-MM-DD`` calendar date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(value.strip(), "%Y-%m-%d").date()
    except (AttributeError, ValueError):
        raise ValidationError(f"Invalid date: {value!r}", reason="invalid_date")


def ensure_utc(dt: datetime) -> datetime:
    """Normalise to an aware UTC datetime. Naive values are taken as UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_instant(value: str | datetime) -> datetime:
    """Parse an ISO-8601 instant (``Z`` suffix allowed) into aware UTC."""
    if isinstance(value, datetime):
        return ensure_utc(value)
    try:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return ensure_utc(datetime.fromisoformat(text))
    except (AttributeError, ValueError):
        raise ValidationError(f"Invalid timestamp: {value!r}", reason="invalid_date")


def local_to_instant(day: date, time_of_day: str | time, tz: ZoneInfo | str) -> datetime:
    """Absolute UTC instant of a local wall-clock time on a given day.

    Ambiguous times (clocks going back) resolve to the first occurrence.
    Times inside a spring-forward gap are interpreted with the offset in
    force before the gap, so they land just after it. Neither case raises.
    """
    zone = tz if isinstance(tz, ZoneInfo) else get_timezone(tz)
    local = datetime.combine(day, parse_time_of_day(time_of_day), tzinfo=zone)
    return local.astimezone(timezone.utc)


def to_local(instant: datetime, tz: ZoneInfo | str) -> datetime:
    zone = tz if isinstance(tz, ZoneInfo) else get_timezone(tz)
    return ensure_utc(instant).astimezone(zone)


def date_weekday(day: date) -> int:
    """Weekday of a calendar date, 0=Sunday..6=Saturday."""
    return (day.weekday() + 1) % 7


def local_weekday(instant: datetime, tz: ZoneInfo | str) -> int:
    return date_weekday(to_local(instant, tz).date())


def local_time_label(instant: datetime, tz: ZoneInfo | str) -> str:
    return to_local(instant, tz).strftime("%H:%M")


def local_date_label(instant: datetime, tz: ZoneInfo | str) -> str:
    return to_local(instant, tz).strftime("%Y-%m-%d")


def local_today(tz: ZoneInfo | str, now: datetime | None = None) -> date:
    return to_local(now or datetime.now(timezone.utc), tz).date()


def enumerate_dates(start: date, days: int) -> list[date]:
    return [start + timedelta(days=offset) for offset in range(max(0, days))]


def hours_between(later: datetime, earlier: datetime) -> float:
    """Signed number of hours from ``earlier`` to ``later``."""
    return (ensure_utc(later) - ensure_utc(earlier)).total_seconds() / 3600
