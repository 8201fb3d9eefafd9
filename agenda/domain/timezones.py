"""
Local (date, time, IANA zone) <-> absolute UTC instant.

All offsets come from the zone database (zoneinfo), so daylight-saving
transitions follow each zone's own rules. Inside a spring-forward gap the
pre-transition offset is used (fold=0); ambiguous autumn times resolve to
their first occurrence.
"""
import re
from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from agenda.errors import ValidationError

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def get_zone(name: str | None, field_name: str = "timezone") -> ZoneInfo:
    if not name or not isinstance(name, str):
        raise ValidationError("timezone is required", field_name)
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f"unsupported timezone: {name}", field_name)


def parse_local_date(value: str | date, field_name: str = "date") -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        raise ValidationError(f"invalid date (expected YYYY-MM-DD): {value}", field_name)


def parse_local_time(value: str | time, field_name: str = "time") -> time:
    """Parse "HH:MM" (seconds, if present, are dropped)."""
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    raw = str(value).strip()[:5]
    if not _TIME_RE.match(raw):
        raise ValidationError(f"invalid time (expected HH:MM): {value}", field_name)
    return time(int(raw[:2]), int(raw[3:5]))


def to_absolute_instant(local_date: str | date, local_time: str | time, tz: str) -> datetime:
    """Interpret local_date + local_time in zone ``tz``; return an aware UTC datetime."""
    zone = get_zone(tz)
    d = parse_local_date(local_date)
    t = parse_local_time(local_time)
    local = datetime.combine(d, t, tzinfo=zone)
    return local.astimezone(timezone.utc)


def to_local_parts(instant: datetime, tz: str) -> tuple[date, time]:
    """Inverse of to_absolute_instant. Naive instants are taken as UTC."""
    zone = get_zone(tz)
    local = as_utc(instant).astimezone(zone)
    return local.date(), local.time().replace(second=0, microsecond=0)


def as_utc(instant: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def today_in(tz: str) -> date:
    """Calendar date "now" in the given zone."""
    return datetime.now(get_zone(tz)).date()
