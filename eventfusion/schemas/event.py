# eventfusion/schemas/event.py
"""
Canonical Event Schema for the eventfusion pipeline.

This schema normalizes listings from heterogeneous providers (Eventbrite,
Ticketmaster, Yelp, Meetup, manual submissions) into a single record shape.
Everything downstream of the normalizer (fingerprinting, similarity, merging,
storage) works on NormalizedEvent only.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
    model_validator,
)


def _utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


# ============================================================================
# ENUMS
# ============================================================================


class EventSource(str, Enum):
    """Closed set of providers the normalizer knows how to read."""

    EVENTBRITE = "eventbrite"
    TICKETMASTER = "ticketmaster"
    YELP = "yelp"
    MEETUP = "meetup"
    MANUAL = "manual"


class EventCategory(str, Enum):
    """
    Canonical event categories.

    Provider-specific labels ("Arts & Theatre", "Nightlife", ...) are folded
    into this set by `from_raw`.
    """

    MUSIC = "music"
    SPORTS = "sports"
    ARTS = "arts"
    FOOD = "food"
    TECH = "tech"
    SOCIAL = "social"
    BUSINESS = "business"
    EDUCATION = "education"
    HEALTH = "health"
    FAMILY = "family"
    OTHER = "other"

    @classmethod
    def from_raw(cls, raw: str | None) -> "EventCategory":
        """
        Map a provider category label to a canonical category.

        Example:
            >>> EventCategory.from_raw("Arts & Theatre")
            <EventCategory.ARTS: 'arts'>
            >>> EventCategory.from_raw("Bingo")
            <EventCategory.OTHER: 'other'>
        """
        if not raw:
            return cls.OTHER
        key = " ".join(str(raw).strip().lower().split())
        if key in CATEGORY_ALIASES:
            return CATEGORY_ALIASES[key]
        try:
            return cls(key)
        except ValueError:
            return cls.OTHER


CATEGORY_ALIASES: dict[str, EventCategory] = {
    "music": EventCategory.MUSIC,
    "concert": EventCategory.MUSIC,
    "concerts": EventCategory.MUSIC,
    "arts & theatre": EventCategory.ARTS,
    "arts": EventCategory.ARTS,
    "theatre": EventCategory.ARTS,
    "theater": EventCategory.ARTS,
    "film": EventCategory.ARTS,
    "food": EventCategory.FOOD,
    "food & drink": EventCategory.FOOD,
    "drink": EventCategory.FOOD,
    "culinary": EventCategory.FOOD,
    "sports": EventCategory.SPORTS,
    "sport": EventCategory.SPORTS,
    "nightlife": EventCategory.SOCIAL,
    "community": EventCategory.SOCIAL,
    "networking": EventCategory.BUSINESS,
    "business": EventCategory.BUSINESS,
    "business & professional": EventCategory.BUSINESS,
    "tech": EventCategory.TECH,
    "technology": EventCategory.TECH,
    "science & technology": EventCategory.TECH,
    "education": EventCategory.EDUCATION,
    "learning": EventCategory.EDUCATION,
    "family": EventCategory.FAMILY,
    "family & education": EventCategory.FAMILY,
    "kids": EventCategory.FAMILY,
    "health": EventCategory.HEALTH,
    "health & wellness": EventCategory.HEALTH,
    "wellness": EventCategory.HEALTH,
}


# ============================================================================
# VALUE OBJECTS
# ============================================================================


class Coordinates(BaseModel):
    """Geographic point in decimal degrees."""

    model_config = ConfigDict(frozen=True)

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


# ============================================================================
# MAIN EVENT SCHEMA
# ============================================================================


class NormalizedEvent(BaseModel):
    """
    Canonical representation of one event listing.

    `start_utc` is always a timezone-aware UTC instant. The normalizer resolves
    provider local times against the declared or inferred timezone before
    building this model; naive datetimes are rejected here.
    """

    model_config = ConfigDict(extra="ignore")

    event_id: str = Field(default="", description="Stable id, '<source>:<external_id>' by default")
    title: str = Field(..., min_length=1, max_length=500)
    description: str | None = None

    start_utc: datetime
    end_utc: datetime | None = None
    timezone: str = Field(default="UTC", description="IANA timezone of the event location")

    venue_name: str | None = None
    venue_address: str | None = None
    city: str | None = None
    coordinates: Coordinates | None = None

    category: EventCategory = EventCategory.OTHER
    tags: list[str] = Field(default_factory=list)

    price_min: Decimal | None = Field(default=None, ge=0)
    price_max: Decimal | None = Field(default=None, ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)

    ticket_url: str | None = None
    image_url: str | None = None

    source: EventSource
    external_id: str = Field(..., min_length=1)

    is_free: bool = False
    is_official: bool = False
    is_verified: bool = False

    ingested_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("start_utc", "end_utc", "ingested_at", "updated_at")
    @classmethod
    def _require_aware_utc(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None or value.utcoffset() is None:
            raise ValueError("timestamps must be timezone-aware")
        return value.astimezone(timezone.utc)

    @field_validator("timezone")
    @classmethod
    def _valid_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown IANA timezone '{value}'") from e
        return value

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        stripped = " ".join(value.split())
        if not stripped:
            raise ValueError("title must not be blank")
        return stripped

    @model_validator(mode="before")
    @classmethod
    def _fill_event_id(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("event_id"):
            source = data.get("source")
            source_value = source.value if isinstance(source, EventSource) else source
            if source_value and data.get("external_id"):
                data = {**data, "event_id": f"{source_value}:{data['external_id']}"}
        return data

    @model_validator(mode="after")
    def _consistent_prices(self) -> "NormalizedEvent":
        if (
            self.price_min is not None
            and self.price_max is not None
            and self.price_min > self.price_max
        ):
            self.price_min, self.price_max = self.price_max, self.price_min
        if self.price_min == 0 and self.price_max in (None, 0) and not self.is_free:
            self.is_free = True
        return self

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @property
    def storage_key(self) -> tuple[str, str]:
        """Upsert key for the relational store: (external_id, source)."""
        return self.external_id, self.source.value

    @property
    def cache_key(self) -> str:
        """Key under which derived artifacts (fingerprints) are cached."""
        return f"{self.source.value}:{self.external_id}"

    @property
    def local_start(self) -> datetime:
        """Start time expressed in the event's own timezone."""
        return self.start_utc.astimezone(ZoneInfo(self.timezone))

    @field_serializer("price_min", "price_max")
    def _serialize_price(self, value: Decimal | None) -> str | None:
        return str(value) if value is not None else None

    def to_storage_dict(self, cached_at: datetime | None = None) -> dict[str, Any]:
        """
        Build the outbound upsert payload.

        Args:
            cached_at: Ingestion timestamp; defaults to now (UTC)

        Returns:
            JSON-compatible dict with canonical fields and ingestion metadata
        """
        payload = self.model_dump(mode="json")
        coords = payload.pop("coordinates", None) or {}
        payload["latitude"] = coords.get("latitude")
        payload["longitude"] = coords.get("longitude")
        payload["cached_at"] = (cached_at or _utc_now()).astimezone(timezone.utc).isoformat()
        return payload
