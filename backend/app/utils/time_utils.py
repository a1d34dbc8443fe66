"""
Time helpers shared by the scheduler.

All instants are handled as timezone-aware UTC datetimes. Calendar dates,
weekdays and "HH:MM" times are local to the account time zone.
"""

import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.utils.errors import ValidationError

_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def get_zone(time_zone: str) -> ZoneInfo:
    """Resolve an IANA time zone name or raise ValidationError."""
    try:
        return ZoneInfo(time_zone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValidationError(f"Invalid time zone: {time_zone}") from e


def parse_hhmm(value: str) -> time:
    """Parse "HH:MM" (24h) into a time."""
    match = _HHMM_RE.match((value or "").strip())
    if not match:
        raise ValidationError(f"Invalid HH:MM time: {value!r}")
    return time(int(match.group(1)), int(match.group(2)))


def format_hhmm(value: time) -> str:
    return f"{value.hour:02d}:{value.minute:02d}"


def to_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to already be UTC (storage convention)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_naive_utc(value: datetime) -> datetime:
    return to_utc(value).replace(tzinfo=None)


def parse_iso_datetime(value: str, label: str = "datetime") -> datetime:
    """Parse an ISO-8601 instant (accepts a trailing Z) into aware UTC."""
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except (AttributeError, ValueError) as e:
        raise ValidationError(f"Invalid {label}: {value!r}") from e
    return to_utc(parsed)


def iso_utc(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return to_utc(value).isoformat().replace("+00:00", "Z")


def local_date(value: datetime, time_zone: str) -> date:
    """Calendar date of an instant in the given zone."""
    return to_utc(value).astimezone(get_zone(time_zone)).date()


def local_hour(value: datetime, time_zone: str) -> int:
    return to_utc(value).astimezone(get_zone(time_zone)).hour


def local_to_utc(day: date, clock: time, time_zone: str) -> datetime:
    """Combine a local date and wall-clock time into an aware UTC instant."""
    return datetime.combine(day, clock, tzinfo=get_zone(time_zone)).astimezone(timezone.utc)


def local_day_bounds(day: date, time_zone: str):
    """[start, end) of a local calendar day as UTC instants."""
    start = local_to_utc(day, time(0, 0), time_zone)
    end = local_to_utc(day + timedelta(days=1), time(0, 0), time_zone)
    return start, end


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Check if [a_start, a_end) overlaps [b_start, b_end)."""
    return a_start < b_end and b_start < a_end


def is_weekday_in_mask(mask: int, day: date) -> bool:
    """Bit 0 = Monday ... bit 6 = Sunday."""
    return (mask & (1 << day.weekday())) != 0
