"""
Event fingerprinting.

A fingerprint is the compact, comparison-ready view of one NormalizedEvent.
Fingerprints are cached per `source:external_id` and rebuilt when the
record's `updated_at` changes.
"""

from __future__ import annotations

import hashlib
import logging

from eventfusion.exceptions import FingerprintError
from eventfusion.ingestion.deduplication.cache import TTLCache
from eventfusion.ingestion.deduplication.similarity import (
    fold,
    normalize_address,
    normalize_venue,
    tokenize,
)
from eventfusion.schemas.dedup import EventFingerprint
from eventfusion.schemas.event import NormalizedEvent

logger = logging.getLogger(__name__)

UNKNOWN_LOCATION = "unknown"
MAX_DESCRIPTION_TOKENS = 50

# (first local hour, label); each window runs until the next one starts
TIME_WINDOWS = (
    (0, "late_night"),
    (5, "morning"),
    (12, "afternoon"),
    (17, "evening"),
    (21, "night"),
)


def time_window(hour: int) -> str:
    label = TIME_WINDOWS[0][1]
    for start, name in TIME_WINDOWS:
        if hour >= start:
            label = name
    return label


def build_fingerprint(event: NormalizedEvent) -> EventFingerprint:
    """
    Compute the fingerprint of one event (uncached).

    Raises:
        FingerprintError: The title yields no comparable tokens
    """
    title_tokens = tuple(tokenize(event.title)) or tuple(tokenize(event.title, min_length=1))
    if not title_tokens:
        raise FingerprintError(event.event_id, "title has no comparable tokens")

    venue = normalize_venue(event.venue_name)
    address = normalize_address(event.venue_address)
    city = " ".join(fold(event.city).split())
    coords = event.coordinates

    if coords is not None:
        location_key = f"{coords.latitude:.3f},{coords.longitude:.3f}"
    elif address:
        location_key = "addr:" + hashlib.sha1(address.encode("utf-8")).hexdigest()[:16]
    elif city:
        location_key = f"city:{city}"
    else:
        location_key = UNKNOWN_LOCATION

    coarse_keys = []
    if coords is not None:
        coarse_keys.append(f"geo:{coords.latitude:.2f},{coords.longitude:.2f}")
    if city:
        coarse_keys.append(f"city:{city}")
    if venue:
        coarse_keys.append(f"venue:{venue}")
    if not coarse_keys:
        coarse_keys.append(UNKNOWN_LOCATION)

    description = (event.description or "")[:200]
    content_hash = hashlib.sha1(
        "|".join(
            [" ".join(title_tokens), venue, fold(description), event.start_utc.isoformat()]
        ).encode("utf-8")
    ).hexdigest()

    semantic_tokens = set(title_tokens)
    semantic_tokens.add(event.category.value)
    semantic_tokens.update(tokenize(event.description)[:MAX_DESCRIPTION_TOKENS])

    price_range = None
    if event.price_min is not None:
        upper = event.price_max if event.price_max is not None else event.price_min
        price_range = (float(event.price_min), float(upper))

    return EventFingerprint(
        event_id=event.event_id,
        cache_key=event.cache_key,
        source_version=event.updated_at.isoformat(),
        title_tokens=title_tokens,
        venue_normalized=venue,
        location_key=location_key,
        coarse_location_keys=tuple(coarse_keys),
        coordinates=coords,
        address_normalized=address,
        city_normalized=city,
        date_key=event.start_utc.date().isoformat(),
        time_window=time_window(event.local_start.hour),
        start_utc=event.start_utc,
        content_hash=content_hash,
        semantic_tokens=tuple(sorted(semantic_tokens)),
        category_normalized=event.category.value,
        price_range=price_range,
    )


class Fingerprinter:
    """
    Cached fingerprint factory.

    Repeated calls with an unchanged event return an equal fingerprint; the
    cached copy is reused until the event's `updated_at` moves.
    """

    def __init__(self, cache: TTLCache[str, EventFingerprint] | None = None):
        self.cache = cache

    def fingerprint(self, event: NormalizedEvent) -> EventFingerprint:
        key = event.cache_key
        version = event.updated_at.isoformat()

        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None and cached.source_version == version:
                return cached

        fingerprint = build_fingerprint(event)
        if self.cache is not None:
            self.cache.set(key, fingerprint)
        return fingerprint

    def invalidate(self, cache_key: str) -> bool:
        if self.cache is None:
            return False
        removed = self.cache.invalidate(cache_key)
        if removed:
            logger.debug(f"Invalidated fingerprint for {cache_key}")
        return removed
