"""
Source payload normalizer.

One function per source tag maps that provider's raw JSON shape onto
NormalizedEvent; `normalize` dispatches through a closed table keyed by
EventSource. The functions are pure: no I/O, no shared state.

Optional fields that are missing or malformed (venue, price, image,
coordinates, URLs, tags) map to None or empty. A missing title, a missing
external id, an unresolvable start time or a payload too malformed to map
rejects the record.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

from pydantic import ValidationError

from eventfusion.exceptions import NormalizationError, UnsupportedSourceError
from eventfusion.ingestion.normalization.currency import CurrencyParser
from eventfusion.ingestion.normalization.time_resolver import (
    combine_local,
    resolve_optional_utc,
    resolve_start_utc,
)
from eventfusion.schemas.event import Coordinates, EventCategory, EventSource, NormalizedEvent

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 500

_PATH_TOKEN = re.compile(r"([^.\[\]]+)|\[(\d+)\]")


# ============================================================================
# FIELD HELPERS
# ============================================================================


def get_path(data: Any, path: str) -> Any:
    """
    Read a nested value with dot / index notation ("venue.address.city",
    "_embedded.venues[0].name"). Missing keys and short lists give None.
    """
    current = data
    for key, index in _PATH_TOKEN.findall(path):
        if current is None:
            return None
        if key:
            current = current.get(key) if isinstance(current, dict) else None
        else:
            position = int(index)
            current = current[position] if isinstance(current, list) and position < len(current) else None
    return current


def _first(data: dict, *paths: str) -> Any:
    for path in paths:
        value = get_path(data, path)
        if value not in (None, "", [], {}):
            return value
    return None


def _text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, dict):
        value = value.get("text") or value.get("html")
        if value is None:
            return None
    cleaned = " ".join(str(value).split())
    return cleaned or None


def _float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "y")
    return bool(value)


def build_coordinates(latitude: Any, longitude: Any) -> Coordinates | None:
    """Coordinates from loose provider values; out-of-range or (0, 0) gives None."""
    lat, lng = _float(latitude), _float(longitude)
    if lat is None or lng is None:
        return None
    if not (-90 <= lat <= 90 and -180 <= lng <= 180) or (lat == 0 and lng == 0):
        return None
    return Coordinates(latitude=lat, longitude=lng)


def clean_url(url: Any) -> str | None:
    """
    Trim a URL and add a missing scheme.

    Example:
        >>> clean_url("www.example.com/tickets ")
        'https://www.example.com/tickets'
        >>> clean_url("not a url") is None
        True
    """
    if not url or not isinstance(url, str):
        return None
    cleaned = url.strip()
    if cleaned.startswith("//"):
        cleaned = "https:" + cleaned
    elif not cleaned.lower().startswith(("http://", "https://")):
        cleaned = "https://" + cleaned
    parts = urlsplit(cleaned)
    if not parts.netloc or "." not in parts.netloc or " " in cleaned:
        return None
    return cleaned


def standardize_tags(*groups: Iterable[Any] | Any) -> list[str]:
    """Lowercase, strip and de-duplicate tags, preserving first-seen order."""
    tags: list[str] = []
    for group in groups:
        if group is None:
            continue
        if isinstance(group, str):
            items = [group]
        elif isinstance(group, (list, tuple, set)):
            items = group
        else:
            continue
        for item in items:
            if isinstance(item, dict):
                item = item.get("name") or item.get("urlkey")
            if not isinstance(item, (str, int, float)) or isinstance(item, bool):
                continue
            tag = " ".join(str(item).lower().split())
            if tag and tag not in tags:
                tags.append(tag)
    return tags


def _prices(
    minimum: Any = None,
    maximum: Any = None,
    currency: Any = None,
    free_flag: Any = None,
) -> dict[str, Any]:
    """Resolve amounts, currency and free flag from raw price fields."""
    is_free = _bool(free_flag) if free_flag is not None else False
    detected = ""

    if isinstance(minimum, str):
        # may hold a whole range ("$20-30") or "Free"
        quote = CurrencyParser.parse_price_string(minimum)
        price_min, price_max = quote.minimum, quote.maximum
        detected = quote.currency
        is_free = is_free or quote.is_free
    else:
        price_min, price_max = CurrencyParser.parse_amount(minimum), None

    if maximum is not None:
        if isinstance(maximum, str):
            detected = detected or CurrencyParser.detect_currency(maximum)
        price_max = CurrencyParser.parse_amount(maximum)

    code = str(currency).strip().upper() if currency else detected
    if is_free and price_min is None:
        price_min = CurrencyParser.parse_amount(0)
    return {
        "price_min": price_min,
        "price_max": price_max,
        "currency": code if len(code) == 3 and code.isalpha() else "USD",
        "is_free": is_free,
    }


def _title(value: Any) -> str | None:
    title = _text(value)
    if title and len(title) > MAX_TITLE_LENGTH:
        title = title[: MAX_TITLE_LENGTH - 3].rstrip() + "..."
    return title


def _build(source: EventSource, fields: dict[str, Any]) -> NormalizedEvent:
    """Validate the mapped fields; required-field problems become NormalizationError."""
    record_id = fields.get("external_id")
    if not record_id:
        raise NormalizationError("missing external id", source.value, None)
    if not fields.get("title"):
        raise NormalizationError("missing title", source.value, record_id)

    fields["source"] = source
    fields["external_id"] = str(record_id)
    fields = {k: v for k, v in fields.items() if v is not None}
    try:
        return NormalizedEvent.model_validate(fields)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise NormalizationError(f"invalid {location}: {first.get('msg')}", source.value, str(record_id)) from e


# ============================================================================
# PER-SOURCE NORMALIZERS
# ============================================================================


def normalize_eventbrite(payload: dict[str, Any], fallback_timezone: str | None = None) -> NormalizedEvent:
    """Eventbrite v3 event object (venue / ticket_availability expanded)."""
    record_id = _first(payload, "id")
    city = _text(get_path(payload, "venue.address.city"))
    declared_tz = _first(payload, "start.timezone", "venue.timezone")

    start_utc, tz_name = resolve_start_utc(
        utc=get_path(payload, "start.utc"),
        local=get_path(payload, "start.local"),
        declared_timezone=declared_tz,
        fallback_timezone=fallback_timezone,
        city=city,
        source=EventSource.EVENTBRITE.value,
        record_id=record_id,
    )

    prices = _prices(
        minimum=get_path(payload, "ticket_availability.minimum_ticket_price.major_value"),
        maximum=get_path(payload, "ticket_availability.maximum_ticket_price.major_value"),
        currency=_first(payload, "currency", "ticket_availability.minimum_ticket_price.currency"),
        free_flag=payload.get("is_free"),
    )

    return _build(
        EventSource.EVENTBRITE,
        {
            "external_id": record_id,
            "title": _title(payload.get("name")),
            "description": _text(payload.get("description")) or _text(payload.get("summary")),
            "start_utc": start_utc,
            "end_utc": resolve_optional_utc(_first(payload, "end.utc", "end.local"), tz_name),
            "timezone": tz_name,
            "venue_name": _text(get_path(payload, "venue.name")),
            "venue_address": _text(
                _first(payload, "venue.address.localized_address_display", "venue.address.address_1")
            ),
            "city": city,
            "coordinates": build_coordinates(get_path(payload, "venue.latitude"), get_path(payload, "venue.longitude")),
            "category": EventCategory.from_raw(_first(payload, "category.name", "category.short_name")),
            "tags": standardize_tags(get_path(payload, "tags"), get_path(payload, "subcategory.name")),
            **prices,
            "ticket_url": clean_url(payload.get("url")),
            "image_url": clean_url(_first(payload, "logo.original.url", "logo.url")),
            "is_verified": _bool(get_path(payload, "organizer.verified")),
            "updated_at": resolve_optional_utc(payload.get("changed"), "UTC"),
        },
    )


def normalize_ticketmaster(payload: dict[str, Any], fallback_timezone: str | None = None) -> NormalizedEvent:
    """Ticketmaster Discovery API event."""
    record_id = _first(payload, "id")
    venue = get_path(payload, "_embedded.venues[0]")
    venue = venue if isinstance(venue, dict) else {}
    city = _text(get_path(venue, "city.name"))

    start_utc, tz_name = resolve_start_utc(
        utc=get_path(payload, "dates.start.dateTime"),
        local=combine_local(get_path(payload, "dates.start.localDate"), get_path(payload, "dates.start.localTime")),
        declared_timezone=_first(payload, "dates.timezone") or venue.get("timezone"),
        fallback_timezone=fallback_timezone,
        city=city,
        source=EventSource.TICKETMASTER.value,
        record_id=record_id,
    )

    end_value = _first(payload, "dates.end.dateTime") or combine_local(
        get_path(payload, "dates.end.localDate"), get_path(payload, "dates.end.localTime")
    )

    images = [img for img in payload.get("images") or [] if isinstance(img, dict) and img.get("url")]
    widest = max(images, key=lambda img: _float(img.get("width")) or 0, default=None)

    prices = _prices(
        minimum=get_path(payload, "priceRanges[0].min"),
        maximum=get_path(payload, "priceRanges[0].max"),
        currency=get_path(payload, "priceRanges[0].currency"),
    )

    return _build(
        EventSource.TICKETMASTER,
        {
            "external_id": record_id,
            "title": _title(payload.get("name")),
            "description": _text(_first(payload, "info", "pleaseNote", "description")),
            "start_utc": start_utc,
            "end_utc": resolve_optional_utc(end_value, tz_name),
            "timezone": tz_name,
            "venue_name": _text(venue.get("name")),
            "venue_address": _text(get_path(venue, "address.line1")),
            "city": city,
            "coordinates": build_coordinates(
                get_path(venue, "location.latitude"), get_path(venue, "location.longitude")
            ),
            "category": EventCategory.from_raw(
                _first(payload, "classifications[0].segment.name", "classifications[0].genre.name")
            ),
            "tags": standardize_tags(
                get_path(payload, "classifications[0].genre.name"),
                get_path(payload, "classifications[0].subGenre.name"),
            ),
            **prices,
            "ticket_url": clean_url(payload.get("url")),
            "image_url": clean_url(widest.get("url")) if widest else None,
            "is_official": bool(payload.get("promoter")),
        },
    )


def normalize_yelp(payload: dict[str, Any], fallback_timezone: str | None = None) -> NormalizedEvent:
    """Yelp Fusion event."""
    record_id = _first(payload, "id")
    city = _text(get_path(payload, "location.city"))
    display_address = get_path(payload, "location.display_address")
    if isinstance(display_address, list):
        display_address = ", ".join(str(line) for line in display_address if line)

    start_utc, tz_name = resolve_start_utc(
        local=payload.get("time_start"),
        declared_timezone=payload.get("timezone"),
        fallback_timezone=fallback_timezone,
        city=city,
        source=EventSource.YELP.value,
        record_id=record_id,
    )

    prices = _prices(
        minimum=payload.get("cost"),
        maximum=payload.get("cost_max"),
        currency=payload.get("currency"),
        free_flag=payload.get("is_free"),
    )

    return _build(
        EventSource.YELP,
        {
            "external_id": record_id,
            "title": _title(payload.get("name")),
            "description": _text(payload.get("description")),
            "start_utc": start_utc,
            "end_utc": resolve_optional_utc(payload.get("time_end"), tz_name),
            "timezone": tz_name,
            "venue_name": _text(_first(payload, "venue_name", "location.name")),
            "venue_address": _text(display_address) or _text(get_path(payload, "location.address1")),
            "city": city,
            "coordinates": build_coordinates(payload.get("latitude"), payload.get("longitude")),
            "category": EventCategory.from_raw(payload.get("category")),
            "tags": standardize_tags(payload.get("category")),
            **prices,
            "ticket_url": clean_url(_first(payload, "tickets_url", "event_site_url")),
            "image_url": clean_url(payload.get("image_url")),
            "is_official": _bool(payload.get("is_official")),
        },
    )


def normalize_meetup(payload: dict[str, Any], fallback_timezone: str | None = None) -> NormalizedEvent:
    """Meetup GraphQL event node."""
    record_id = _first(payload, "id")
    venue = payload.get("venue")
    venue = venue if isinstance(venue, dict) else {}
    city = _text(venue.get("city"))

    start_utc, tz_name = resolve_start_utc(
        local=payload.get("dateTime"),
        declared_timezone=_first(payload, "timezone", "group.timezone"),
        fallback_timezone=fallback_timezone,
        city=city,
        source=EventSource.MEETUP.value,
        record_id=record_id,
    )

    prices = _prices(
        minimum=get_path(payload, "fee_settings.amount"),
        currency=get_path(payload, "fee_settings.currency"),
        free_flag=payload.get("fee_settings") is None,
    )

    return _build(
        EventSource.MEETUP,
        {
            "external_id": record_id,
            "title": _title(payload.get("title")),
            "description": _text(payload.get("description")),
            "start_utc": start_utc,
            "end_utc": resolve_optional_utc(payload.get("endTime"), tz_name),
            "timezone": tz_name,
            "venue_name": _text(venue.get("name")),
            "venue_address": _text(venue.get("address")),
            "city": city,
            "coordinates": build_coordinates(venue.get("lat"), venue.get("lng")),
            "category": EventCategory.from_raw(_first(payload, "category", "group.category.name")),
            "tags": standardize_tags(get_path(payload, "topics"), get_path(payload, "group.name")),
            **prices,
            "ticket_url": clean_url(payload.get("eventUrl")),
            "image_url": clean_url(_first(payload, "imageUrl", "featuredEventPhoto.source")),
        },
    )


def normalize_manual(payload: dict[str, Any], fallback_timezone: str | None = None) -> NormalizedEvent:
    """Flat manual submission (admin form, CSV import)."""
    record_id = _first(payload, "external_id", "id")
    city = _text(_first(payload, "city", "city_name"))

    start_utc, tz_name = resolve_start_utc(
        utc=payload.get("start_utc"),
        local=payload.get("start_time"),
        declared_timezone=payload.get("timezone"),
        fallback_timezone=fallback_timezone,
        city=city,
        source=EventSource.MANUAL.value,
        record_id=str(record_id) if record_id is not None else None,
    )

    prices = _prices(
        minimum=_first(payload, "price_min", "price"),
        maximum=payload.get("price_max"),
        currency=payload.get("currency"),
        free_flag=payload.get("is_free"),
    )

    return _build(
        EventSource.MANUAL,
        {
            "external_id": record_id,
            "title": _title(payload.get("title")),
            "description": _text(payload.get("description")),
            "start_utc": start_utc,
            "end_utc": resolve_optional_utc(_first(payload, "end_utc", "end_time"), tz_name),
            "timezone": tz_name,
            "venue_name": _text(payload.get("venue_name")),
            "venue_address": _text(payload.get("address")),
            "city": city,
            "coordinates": build_coordinates(payload.get("latitude"), payload.get("longitude")),
            "category": EventCategory.from_raw(payload.get("category")),
            "tags": standardize_tags(payload.get("tags")),
            **prices,
            "ticket_url": clean_url(_first(payload, "ticket_url", "url")),
            "image_url": clean_url(payload.get("image_url")),
            "is_official": _bool(payload.get("is_official")),
            "is_verified": _bool(payload.get("is_verified")),
        },
    )


NORMALIZERS: dict[EventSource, Callable[[dict[str, Any], str | None], NormalizedEvent]] = {
    EventSource.EVENTBRITE: normalize_eventbrite,
    EventSource.TICKETMASTER: normalize_ticketmaster,
    EventSource.YELP: normalize_yelp,
    EventSource.MEETUP: normalize_meetup,
    EventSource.MANUAL: normalize_manual,
}


# ============================================================================
# DISPATCH
# ============================================================================


def resolve_source(source: EventSource | str) -> EventSource:
    """Map a source tag to EventSource or raise UnsupportedSourceError."""
    if isinstance(source, EventSource):
        return source
    try:
        return EventSource(str(source).strip().lower())
    except ValueError:
        raise UnsupportedSourceError(f"no normalizer registered for source '{source}'", str(source)) from None


def normalize(
    payload: dict[str, Any],
    source: EventSource | str,
    fallback_timezone: str | None = None,
) -> NormalizedEvent:
    """
    Normalize one raw provider payload.

    Args:
        payload: Raw JSON object in the provider's native shape
        source: Source tag selecting the normalizer
        fallback_timezone: City/provider timezone used when the payload
            carries a bare local time and no timezone of its own

    Returns:
        NormalizedEvent

    Raises:
        UnsupportedSourceError: Unknown source tag
        NormalizationError: Missing title/id, unresolvable start time or a
            wrong-typed field
    """
    event_source = resolve_source(source)
    if not isinstance(payload, dict):
        raise NormalizationError(
            f"payload must be a JSON object, got {type(payload).__name__}", event_source.value
        )
    try:
        return NORMALIZERS[event_source](payload, fallback_timezone)
    except NormalizationError:
        raise
    except (TypeError, AttributeError, ValueError) as e:
        record_id = _first(payload, "external_id", "id")
        raise NormalizationError(
            f"malformed payload: {e}", event_source.value, str(record_id) if record_id is not None else None
        ) from e


@dataclass
class SkippedRecord:
    """A record rejected by the normalizer."""

    source: str
    record_id: str
    reason: str


@dataclass
class NormalizationBatchResult:
    events: list[NormalizedEvent] = field(default_factory=list)
    skipped: list[SkippedRecord] = field(default_factory=list)


def normalize_batch(
    payloads: Iterable[dict[str, Any]],
    source: EventSource | str,
    fallback_timezone: str | None = None,
) -> NormalizationBatchResult:
    """
    Normalize many payloads; rejected records are logged and listed, never raised.

    Raises:
        UnsupportedSourceError: Unknown source tag (applies to the whole batch)
    """
    event_source = resolve_source(source)
    result = NormalizationBatchResult()

    for position, payload in enumerate(payloads):
        try:
            result.events.append(normalize(payload, event_source, fallback_timezone))
        except NormalizationError as e:
            record_id = e.record_id
            if record_id is None and isinstance(payload, dict):
                record_id = payload.get("id") or payload.get("external_id")
            record_id = str(record_id) if record_id is not None else f"#{position}"
            logger.warning(f"Skipping {event_source.value} record {record_id}: {e.reason}")
            result.skipped.append(SkippedRecord(source=event_source.value, record_id=record_id, reason=e.reason))

    logger.info(
        f"Normalized {len(result.events)} {event_source.value} events ({len(result.skipped)} skipped)"
    )
    return result
