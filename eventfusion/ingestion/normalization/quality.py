"""
Data quality scoring for normalized events.

`completeness_score` feeds primary selection in the merger; `assess_quality`
gives the fuller breakdown for reporting.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from eventfusion.schemas.event import EventCategory, NormalizedEvent

REQUIRED_FIELDS = ("title", "category", "start_utc")
RECOMMENDED_FIELDS = (
    "description",
    "venue_name",
    "venue_address",
    "city",
    "coordinates",
    "price_min",
    "ticket_url",
    "image_url",
)


@dataclass
class QualityReport:
    completeness: float
    accuracy: float
    consistency: float
    timeliness: float
    overall: float
    warnings: list[str] = field(default_factory=list)


def _has_value(event: NormalizedEvent, name: str) -> bool:
    value = getattr(event, name)
    if name == "category":
        return value != EventCategory.OTHER
    if name == "price_min":
        return value is not None or event.is_free
    if isinstance(value, str):
        return bool(value.strip())
    return value is not None


def completeness_score(event: NormalizedEvent) -> float:
    """
    Weighted share of populated fields: required 70%, recommended 30%.

    Example:
        A titled, categorized event with nothing else scores 0.7.
    """
    required = sum(1 for name in REQUIRED_FIELDS if _has_value(event, name))
    recommended = sum(1 for name in RECOMMENDED_FIELDS if _has_value(event, name))
    return round(
        (required / len(REQUIRED_FIELDS)) * 0.7 + (recommended / len(RECOMMENDED_FIELDS)) * 0.3,
        6,
    )


def assess_quality(event: NormalizedEvent, now: datetime | None = None) -> QualityReport:
    """
    Score an event on completeness, accuracy, consistency and timeliness.

    Args:
        event: Event to assess
        now: Reference time for timeliness (defaults to current UTC time)

    Returns:
        QualityReport with overall = 0.3 completeness + 0.3 accuracy
        + 0.2 consistency + 0.2 timeliness
    """
    now = now or datetime.now(timezone.utc)
    warnings: list[str] = []

    completeness = completeness_score(event)

    accuracy = 1.0
    if event.ticket_url is None and event.image_url is None and event.description is None:
        accuracy -= 0.1
        warnings.append("No description, ticket URL or image")
    if event.coordinates is None and not event.venue_address and not event.city:
        accuracy -= 0.1
        warnings.append("No location information")
    accuracy = max(0.0, accuracy)

    consistency = 1.0
    if event.is_free and any(p is not None and p > 0 for p in (event.price_min, event.price_max)):
        consistency -= 0.2
        warnings.append("Event marked as free but has non-zero price")
    if event.end_utc is not None and event.end_utc <= event.start_utc:
        consistency -= 0.2
        warnings.append("End time is not after start time")
    consistency = max(0.0, consistency)

    timeliness = 1.0
    days_from_now = (event.start_utc - now).total_seconds() / 86_400
    if days_from_now < 0:
        timeliness = 0.5
        warnings.append("Event is in the past")
    elif days_from_now > 365:
        timeliness = 0.8
        warnings.append("Event is more than a year in the future")

    overall = completeness * 0.3 + accuracy * 0.3 + consistency * 0.2 + timeliness * 0.2
    return QualityReport(
        completeness=completeness,
        accuracy=accuracy,
        consistency=consistency,
        timeliness=timeliness,
        overall=round(overall, 6),
        warnings=warnings,
    )
