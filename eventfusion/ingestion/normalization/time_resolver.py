"""
Start-time resolution.

Provider timestamps arrive as explicit UTC instants, offset-carrying local
strings, or bare local date/times. Resolution order:

1. an explicit instant (UTC field, trailing "Z" or numeric offset, epoch)
2. local date/time + the timezone declared by the provider
3. local date/time + the caller's fallback timezone
4. local date/time + the timezone inferred from the city

A bare local time with none of the above is rejected; it is never assumed
to be UTC.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from eventfusion.exceptions import NormalizationError

logger = logging.getLogger(__name__)

CITY_TIMEZONES: dict[str, str] = {
    "toronto": "America/Toronto",
    "new york": "America/New_York",
    "los angeles": "America/Los_Angeles",
    "chicago": "America/Chicago",
    "london": "Europe/London",
    "paris": "Europe/Paris",
    "tokyo": "Asia/Tokyo",
    "sydney": "Australia/Sydney",
    "vancouver": "America/Vancouver",
    "montreal": "America/Montreal",
}

# Epoch values above this are milliseconds.
_EPOCH_MS_CUTOFF = 100_000_000_000


def infer_timezone(city: str | None) -> str | None:
    """
    Look up the IANA timezone of a known city.

    Example:
        >>> infer_timezone(" Toronto ")
        'America/Toronto'
    """
    if not city:
        return None
    return CITY_TIMEZONES.get(" ".join(city.lower().split()))


def load_zone(name: str | None) -> ZoneInfo | None:
    """Return the ZoneInfo for a name, or None when missing/unknown."""
    if not name:
        return None
    try:
        return ZoneInfo(str(name).strip())
    except (ZoneInfoNotFoundError, ValueError):
        logger.debug(f"Ignoring unknown timezone '{name}'")
        return None


def parse_datetime_value(value: Any) -> datetime | None:
    """
    Parse a provider timestamp without guessing its zone.

    Returns:
        An aware datetime for instants, a naive one for bare local times,
        or None if the value is empty or unparseable
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000 if abs(value) >= _EPOCH_MS_CUTOFF else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    text = str(value).strip()
    if not text:
        return None
    if text.endswith(("z", "Z")):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def combine_local(local_date: Any, local_time: Any = None) -> datetime | None:
    """Join a separate local date and time ("2024-02-01", "19:00:00")."""
    if not local_date:
        return None
    try:
        day = date.fromisoformat(str(local_date).strip()[:10])
    except ValueError:
        return None
    if not local_time:
        return datetime.combine(day, time.min)
    try:
        clock = time.fromisoformat(str(local_time).strip())
    except ValueError:
        return None
    return datetime.combine(day, clock)


def resolve_timezone_name(
    declared: str | None = None,
    fallback_timezone: str | None = None,
    city: str | None = None,
) -> str | None:
    """First valid timezone among declared, fallback and city-inferred."""
    for candidate in (declared, fallback_timezone, infer_timezone(city)):
        if load_zone(candidate) is not None:
            return str(candidate).strip()
    return None


def resolve_start_utc(
    *,
    utc: Any = None,
    local: Any = None,
    declared_timezone: str | None = None,
    fallback_timezone: str | None = None,
    city: str | None = None,
    source: str | None = None,
    record_id: str | None = None,
) -> tuple[datetime, str]:
    """
    Resolve a provider start time to a UTC instant.

    Args:
        utc: Value the provider states is UTC (naive values are read as UTC)
        local: Local wall-clock value, possibly carrying an offset
        declared_timezone: IANA timezone the provider attached to the record
        fallback_timezone: Caller-supplied city/provider timezone
        city: City name used for timezone inference
        source: Source tag, for error attribution
        record_id: Record id, for error attribution

    Returns:
        Tuple of (start_utc, timezone_name); timezone_name is "UTC" when the
        instant was explicit and no zone could be named

    Raises:
        NormalizationError: If no rule produces an unambiguous instant
    """
    tz_name = resolve_timezone_name(declared_timezone, fallback_timezone, city)

    explicit = parse_datetime_value(utc)
    if explicit is not None:
        if explicit.tzinfo is None:
            explicit = explicit.replace(tzinfo=timezone.utc)
        return explicit.astimezone(timezone.utc), tz_name or "UTC"

    if utc not in (None, "") and local in (None, ""):
        raise NormalizationError(f"unparseable UTC start time {utc!r}", source, record_id)

    parsed = parse_datetime_value(local)
    if parsed is None:
        reason = "missing start time" if local in (None, "") else f"unparseable start time {local!r}"
        raise NormalizationError(reason, source, record_id)

    if parsed.tzinfo is not None and parsed.utcoffset() is not None:
        return parsed.astimezone(timezone.utc), tz_name or "UTC"

    if tz_name is None:
        raise NormalizationError(
            f"local start time {parsed.isoformat()} has no resolvable timezone", source, record_id
        )

    localized = parsed.replace(tzinfo=ZoneInfo(tz_name))
    return localized.astimezone(timezone.utc), tz_name


def resolve_optional_utc(value: Any, tz_name: str | None) -> datetime | None:
    """
    Resolve a secondary timestamp (end time, update time) leniently.

    Unlike the start time, an unresolvable value maps to None.
    """
    parsed = parse_datetime_value(value)
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        zone = load_zone(tz_name)
        if zone is None:
            return None
        parsed = parsed.replace(tzinfo=zone)
    return parsed.astimezone(timezone.utc)
