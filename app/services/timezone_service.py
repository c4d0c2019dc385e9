"""
Timezone normalization between wall-clock time and UTC storage.

All functions are pure. Around DST transitions a wall-clock time can be
ambiguous (clocks fall back) or nonexistent (clocks spring forward); both
cases resolve to standard time:

- ambiguous: the standard-time occurrence is used
- nonexistent: the offset in force before the transition is used

So ``from_utc(to_utc(x, tz), tz) == x`` holds everywhere except inside
those windows.
"""

from datetime import date, datetime, time, timedelta, timezone as dt_timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError, available_timezones

from app.core.errors import InvalidTimezone

UTC = dt_timezone.utc

# Locale conventions for the 12/24-hour display hint
TWELVE_HOUR_PREFIXES = ("America/", "US/", "Canada/", "Australia/")
TWELVE_HOUR_ZONES = {
    "Asia/Kolkata",
    "Asia/Calcutta",
    "Asia/Karachi",
    "Asia/Dhaka",
    "Asia/Manila",
    "Asia/Riyadh",
    "Africa/Cairo",
    "Pacific/Auckland",
    "Pacific/Honolulu",
}
TWENTY_FOUR_HOUR_AMERICAS = {
    "America/Sao_Paulo",
    "America/Argentina/Buenos_Aires",
    "America/Buenos_Aires",
    "America/Santiago",
    "America/Montevideo",
    "America/Asuncion",
    "America/Caracas",
    "America/Havana",
}


def get_zone(tz: str) -> ZoneInfo:
    """Resolve an IANA identifier, raising ``InvalidTimezone`` if unknown."""
    if not isinstance(tz, str) or not tz.strip():
        raise InvalidTimezone(str(tz))
    try:
        return ZoneInfo(tz.strip())
    except (ZoneInfoNotFoundError, ValueError):
        raise InvalidTimezone(tz) from None


def is_valid_timezone(tz: str) -> bool:
    try:
        get_zone(tz)
    except InvalidTimezone:
        return False
    return True


def to_utc(local_dt: datetime, tz: str) -> datetime:
    """
    Interpret a naive wall-clock time in ``tz`` and return the UTC instant.

    An aware datetime is already an instant and is only converted.
    """
    zone = get_zone(tz)
    if local_dt.tzinfo is not None:
        return local_dt.astimezone(UTC)

    earlier = local_dt.replace(tzinfo=zone, fold=0)
    later = local_dt.replace(tzinfo=zone, fold=1)
    if earlier.utcoffset() == later.utcoffset():
        chosen = earlier
    else:
        # Ambiguous or nonexistent: prefer standard time
        chosen = earlier if not earlier.dst() else later
    return chosen.astimezone(UTC)


def from_utc(instant: datetime, tz: str) -> datetime:
    """Return the naive wall-clock time in ``tz`` for a UTC instant."""
    zone = get_zone(tz)
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=UTC)
    return instant.astimezone(zone).replace(tzinfo=None, fold=0)


def offset_of(tz: str, instant: Optional[datetime] = None) -> str:
    """
    Signed ``+HH:MM`` offset of ``tz`` at ``instant`` (now by default).

    Offsets change with DST, so the result is only valid for that instant.
    """
    zone = get_zone(tz)
    if instant is None:
        instant = datetime.now(UTC)
    elif instant.tzinfo is None:
        instant = instant.replace(tzinfo=UTC)

    offset = instant.astimezone(zone).utcoffset() or timedelta(0)
    total_minutes = int(offset.total_seconds()) // 60
    sign = "-" if total_minutes < 0 else "+"
    hours, minutes = divmod(abs(total_minutes), 60)
    return f"{sign}{hours:02d}:{minutes:02d}"


def is_24_hour_format(tz: str) -> bool:
    """
    Presentation hint: whether times in ``tz`` are usually shown on a
    24-hour clock. Not authoritative.
    """
    name = get_zone(tz).key
    if name in TWELVE_HOUR_ZONES:
        return False
    if name in TWENTY_FOUR_HOUR_AMERICAS:
        return True
    return not name.startswith(TWELVE_HOUR_PREFIXES)


def all_day_bounds(
    start_day: date,
    tz: str,
    end_day: Optional[date] = None,
) -> tuple[datetime, datetime]:
    """
    UTC bounds of an all-day span: local midnight of ``start_day`` through
    the end of ``end_day`` (inclusive, defaults to ``start_day``).
    """
    end_day = end_day or start_day
    if end_day < start_day:
        end_day = start_day
    start = to_utc(datetime.combine(start_day, time.min), tz)
    end = to_utc(datetime.combine(end_day, time.max), tz)
    return start, end


def local_date(instant: datetime, tz: str) -> date:
    return from_utc(instant, tz).date()


def resolve_timezone(
    override: Optional[str] = None,
    user_timezone: Optional[str] = None,
    default: str = "UTC",
) -> str:
    """
    Pick the timezone to work in: an explicit override, then the user's
    configured timezone, then ``default``. The result is validated.
    """
    tz = override or user_timezone or default
    return get_zone(tz).key


# ============== Formatting ==============


def _clock(local: datetime, use_24_hour: bool) -> str:
    if use_24_hour:
        return f"{local.hour:02d}:{local.minute:02d}"
    hour = local.hour % 12 or 12
    suffix = "AM" if local.hour < 12 else "PM"
    return f"{hour}:{local.minute:02d} {suffix}"


def format_time(
    instant: datetime,
    tz: str,
    fmt: Optional[str] = None,
    use_24_hour: Optional[bool] = None,
) -> str:
    """Format the wall-clock time of ``instant`` in ``tz``."""
    local = from_utc(instant, tz)
    if fmt:
        return local.strftime(fmt)
    if use_24_hour is None:
        use_24_hour = is_24_hour_format(tz)
    return _clock(local, use_24_hour)


def format_date(instant: datetime, tz: str, fmt: Optional[str] = None) -> str:
    local = from_utc(instant, tz)
    if fmt:
        return local.strftime(fmt)
    return f"{local:%b} {local.day}, {local.year}"


def format_date_time(
    instant: datetime,
    tz: str,
    use_24_hour: Optional[bool] = None,
) -> str:
    if use_24_hour is None:
        use_24_hour = is_24_hour_format(tz)
    local = from_utc(instant, tz)
    return f"{format_date(instant, tz)} {_clock(local, use_24_hour)}"


def format_time_range(
    start: datetime,
    end: datetime,
    tz: str,
    use_24_hour: Optional[bool] = None,
) -> str:
    if use_24_hour is None:
        use_24_hour = is_24_hour_format(tz)
    return (
        f"{_clock(from_utc(start, tz), use_24_hour)} - "
        f"{_clock(from_utc(end, tz), use_24_hour)}"
    )


def timezone_label(tz: str, at: Optional[datetime] = None) -> str:
    """Human label such as ``New York (EST)``."""
    zone = get_zone(tz)
    if zone.key == "UTC":
        return "UTC"
    at = at or datetime.now(UTC)
    if at.tzinfo is None:
        at = at.replace(tzinfo=UTC)
    abbreviation = at.astimezone(zone).tzname()
    city = zone.key.split("/")[-1].replace("_", " ")
    return f"{city} ({abbreviation})"


def list_timezones() -> list[dict]:
    """Selectable IANA zones with display labels, sorted by label."""
    names = {
        name
        for name in available_timezones()
        if "/" in name and not name.startswith(("posix/", "right/", "Etc/"))
    }
    names.add("UTC")
    zones = [{"value": name, "label": timezone_label(name)} for name in names]
    return sorted(zones, key=lambda z: z["label"])
