"""
Shared pytest fixtures for the eventfusion test suite.

Provides reusable factories for NormalizedEvent test objects and raw
provider payloads.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import pytest

from eventfusion.configs.settings import get_settings
from eventfusion.schemas.event import Coordinates, EventCategory, EventSource, NormalizedEvent

# The Rex Hotel Jazz & Blues Bar, Toronto
REX_COORDS = Coordinates(latitude=43.6505, longitude=-79.3882)
FIXED_INGESTED_AT = datetime(2024, 1, 20, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    """Settings are cached per process; tests that patch env need a fresh copy."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def create_event():
    """
    Return a function that creates NormalizedEvent objects with sensible defaults.

    Defaults describe a fully populated listing ("Jazz Night" at The Rex,
    Toronto, 2024-02-01 19:00 local). All defaults can be overridden via
    keyword arguments.

    Example:
        event = create_event(title="My Event", source=EventSource.YELP)
    """

    def _create_event(
        title: str = "Jazz Night",
        venue_name: Optional[str] = "The Rex",
        start_utc: Optional[datetime] = None,
        **kwargs,
    ) -> NormalizedEvent:
        if start_utc is None:
            # 19:00 America/Toronto (EST)
            start_utc = datetime(2024, 2, 2, 0, 0, tzinfo=timezone.utc)

        defaults = {
            "external_id": uuid.uuid4().hex[:10],
            "source": EventSource.EVENTBRITE,
            "title": title,
            "description": "Live jazz quartet playing standards all night long.",
            "start_utc": start_utc,
            "timezone": "America/Toronto",
            "venue_name": venue_name,
            "venue_address": "194 Queen Street West",
            "city": "Toronto",
            "coordinates": REX_COORDS,
            "category": EventCategory.MUSIC,
            "tags": ["jazz"],
            "price_min": Decimal("15"),
            "price_max": Decimal("25"),
            "currency": "CAD",
            "ticket_url": "https://tickets.example.com/jazz-night",
            "image_url": "https://images.example.com/jazz-night.jpg",
            "ingested_at": FIXED_INGESTED_AT,
            "updated_at": FIXED_INGESTED_AT,
        }

        # Merge defaults with provided kwargs
        defaults.update(kwargs)

        return NormalizedEvent(**defaults)

    return _create_event


@pytest.fixture
def sample_event(create_event):
    """Return a single default test event."""
    return create_event(external_id="eb-1001")


@pytest.fixture
def exact_duplicates(create_event):
    """
    Return the same listing published by two sources.

    Identical title, venue and start time; only source and id differ.
    """
    return [
        create_event(external_id="eb-1001", source=EventSource.EVENTBRITE),
        create_event(external_id="tm-2002", source=EventSource.TICKETMASTER),
    ]


@pytest.fixture
def sample_events(create_event):
    """
    Return a list of unrelated events in different cities and days.

    None of them should cluster with any other.
    """
    return [
        create_event(external_id="a-1", title="Electronic Night", venue_name="Club Alpha"),
        create_event(
            external_id="a-2",
            title="Farmers Market",
            venue_name="Union Square",
            venue_address="Union Square",
            city="New York",
            timezone="America/New_York",
            coordinates=Coordinates(latitude=40.7359, longitude=-73.9911),
            start_utc=datetime(2024, 2, 3, 14, 0, tzinfo=timezone.utc),
            category=EventCategory.FOOD,
        ),
        create_event(
            external_id="a-3",
            title="Rock Concert",
            venue_name="Stadium Arena",
            venue_address="1 Arena Way",
            city="Chicago",
            timezone="America/Chicago",
            coordinates=Coordinates(latitude=41.8807, longitude=-87.6742),
            start_utc=datetime(2024, 2, 5, 1, 0, tzinfo=timezone.utc),
        ),
    ]
