# eventfusion/schemas/dedup.py
"""
Deduplication configuration and result types.

DedupConfig is consumed, not owned: every threshold, weight and algorithm
choice is loaded from YAML/env and can be tuned without code changes.
The remaining types are the artifacts produced by the engine, from the
transient (EventFingerprint, SimilarityScore, MatchResult) to the terminal
MergeDecision written to the audit store.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from eventfusion.schemas.event import Coordinates, NormalizedEvent

# ============================================================================
# ENUMS
# ============================================================================


class StringMatching(str, Enum):
    """String similarity variant used for titles, venues and addresses."""

    LEVENSHTEIN = "levenshtein"
    JARO_WINKLER = "jaro_winkler"
    COSINE = "cosine"
    HYBRID = "hybrid"


class LocationMatching(str, Enum):
    """Which location signals may contribute to the location sub-score."""

    COORDINATES = "coordinates"
    ADDRESS = "address"
    VENUE = "venue"
    HYBRID = "hybrid"


class LocationMatchType(str, Enum):
    """Location match kinds, strongest first."""

    EXACT = "exact"
    VENUE = "venue"
    COORDINATES = "coordinates"
    ADDRESS = "address"
    CITY = "city"
    NONE = "none"

    @property
    def rank(self) -> int:
        """Lower rank means a stronger match type."""
        return list(LocationMatchType).index(self)


class ConflictStrategy(str, Enum):
    """How a differing field is resolved across cluster members."""

    PRIMARY_WINS = "primary_wins"
    LATEST_WINS = "latest_wins"
    MOST_COMPLETE = "most_complete"
    HIGHEST_QUALITY = "highest_quality"
    MANUAL_REVIEW = "manual_review"
    MERGE_VALUES = "merge_values"


class ResolutionKind(str, Enum):
    """Recorded reason a value won a field resolution."""

    PRIMARY = "primary"
    LATEST = "latest"
    MOST_COMPLETE = "most_complete"
    HIGHEST_QUALITY = "highest_quality"
    MERGE = "merge"
    MANUAL = "manual"

    @classmethod
    def for_strategy(cls, strategy: ConflictStrategy) -> "ResolutionKind":
        return _STRATEGY_TO_KIND[strategy]


_STRATEGY_TO_KIND = {
    ConflictStrategy.PRIMARY_WINS: ResolutionKind.PRIMARY,
    ConflictStrategy.LATEST_WINS: ResolutionKind.LATEST,
    ConflictStrategy.MOST_COMPLETE: ResolutionKind.MOST_COMPLETE,
    ConflictStrategy.HIGHEST_QUALITY: ResolutionKind.HIGHEST_QUALITY,
    ConflictStrategy.MANUAL_REVIEW: ResolutionKind.MANUAL,
    ConflictStrategy.MERGE_VALUES: ResolutionKind.MERGE,
}


class MergeStrategy(str, Enum):
    """Overall merge approach recorded on a decision."""

    KEEP_PRIMARY = "keep_primary"
    MERGE_FIELDS = "merge_fields"
    ENHANCE_PRIMARY = "enhance_primary"
    QUALITY_BASED = "quality_based"
    TEMPORAL_PRIORITY = "temporal_priority"
    SOURCE_PRIORITY = "source_priority"


class DecisionStatus(str, Enum):
    """Whether a decision may be applied without a human."""

    AUTO_MERGE = "auto_merge"
    NEEDS_MANUAL_REVIEW = "needs_manual_review"


# Fields a FieldResolver knows how to compare and resolve.
MERGEABLE_FIELDS: tuple[str, ...] = (
    "title",
    "description",
    "start_utc",
    "end_utc",
    "timezone",
    "venue_name",
    "venue_address",
    "city",
    "coordinates",
    "category",
    "tags",
    "price_min",
    "price_max",
    "currency",
    "ticket_url",
    "image_url",
    "is_free",
)

DEFAULT_FIELD_STRATEGIES: dict[str, ConflictStrategy] = {
    "title": ConflictStrategy.HIGHEST_QUALITY,
    "description": ConflictStrategy.MOST_COMPLETE,
    "start_utc": ConflictStrategy.LATEST_WINS,
    "end_utc": ConflictStrategy.LATEST_WINS,
    "timezone": ConflictStrategy.PRIMARY_WINS,
    "venue_name": ConflictStrategy.MOST_COMPLETE,
    "venue_address": ConflictStrategy.MOST_COMPLETE,
    "city": ConflictStrategy.PRIMARY_WINS,
    "coordinates": ConflictStrategy.HIGHEST_QUALITY,
    "category": ConflictStrategy.PRIMARY_WINS,
    "tags": ConflictStrategy.MERGE_VALUES,
    "price_min": ConflictStrategy.MERGE_VALUES,
    "price_max": ConflictStrategy.MERGE_VALUES,
    "currency": ConflictStrategy.PRIMARY_WINS,
    "ticket_url": ConflictStrategy.HIGHEST_QUALITY,
    "image_url": ConflictStrategy.HIGHEST_QUALITY,
    "is_free": ConflictStrategy.PRIMARY_WINS,
}


# ============================================================================
# CONFIGURATION
# ============================================================================


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid")


class Thresholds(_Section):
    """Per-signal match thresholds; `overall` gates candidate pairs."""

    title: float = Field(default=0.85, ge=0.0, le=1.0)
    venue: float = Field(default=0.80, ge=0.0, le=1.0)
    location: float = Field(default=0.75, ge=0.0, le=1.0)
    date: float = Field(default=0.90, ge=0.0, le=1.0)
    semantic: float = Field(default=0.75, ge=0.0, le=1.0)
    overall: float = Field(default=0.80, ge=0.0, le=1.0)


class Floors(_Section):
    """Minimum sub-scores a pair must reach regardless of its overall score."""

    title: float = Field(default=0.60, ge=0.0, le=1.0)
    venue: float = Field(default=0.50, ge=0.0, le=1.0)
    date: float = Field(default=0.50, ge=0.0, le=1.0)


class Weights(_Section):
    title: float = Field(default=0.35, ge=0.0)
    venue: float = Field(default=0.25, ge=0.0)
    location: float = Field(default=0.20, ge=0.0)
    date: float = Field(default=0.15, ge=0.0)
    semantic: float = Field(default=0.05, ge=0.0)

    @model_validator(mode="after")
    def _non_zero(self) -> "Weights":
        if self.title + self.venue + self.location + self.date + self.semantic <= 0:
            raise ValueError("at least one similarity weight must be positive")
        return self


class Algorithms(_Section):
    string_matching: StringMatching = StringMatching.HYBRID
    semantic_matching: bool = True
    location_matching: LocationMatching = LocationMatching.HYBRID
    fuzzy_date: bool = True
    date_fuzz_hours: float = Field(default=24.0, gt=0)
    location_radius_m: float = Field(default=500.0, gt=0)


class Performance(_Section):
    batch_size: int = Field(default=100, ge=1)
    max_candidates: int = Field(default=50, ge=2)
    enable_caching: bool = True
    cache_ttl_seconds: float = Field(default=3600.0, gt=0)
    cache_max_size: int = Field(default=10_000, ge=1)


class Quality(_Section):
    minimum_quality_score: float = Field(default=0.7, ge=0.0, le=1.0)
    require_manual_review: bool = False
    auto_merge_threshold: float = Field(default=0.95, ge=0.0, le=1.0)
    noise_floor: float = Field(default=0.5, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _ordered(self) -> "Quality":
        if self.noise_floor > self.auto_merge_threshold:
            raise ValueError("noise_floor must not exceed auto_merge_threshold")
        return self


class DedupConfig(_Section):
    """
    Complete deduplication configuration.

    Sections mirror the YAML layout in `configs/dedup.yaml`.
    """

    thresholds: Thresholds = Field(default_factory=Thresholds)
    floors: Floors = Field(default_factory=Floors)
    weights: Weights = Field(default_factory=Weights)
    algorithms: Algorithms = Field(default_factory=Algorithms)
    performance: Performance = Field(default_factory=Performance)
    quality: Quality = Field(default_factory=Quality)
    merge_strategy: MergeStrategy = MergeStrategy.ENHANCE_PRIMARY
    default_conflict_strategy: ConflictStrategy = ConflictStrategy.PRIMARY_WINS
    field_strategies: dict[str, ConflictStrategy] = Field(
        default_factory=lambda: dict(DEFAULT_FIELD_STRATEGIES)
    )

    @field_validator("field_strategies")
    @classmethod
    def _known_fields(cls, value: dict[str, ConflictStrategy]) -> dict[str, ConflictStrategy]:
        unknown = sorted(set(value) - set(MERGEABLE_FIELDS))
        if unknown:
            raise ValueError(f"unknown merge fields: {unknown}")
        return {**DEFAULT_FIELD_STRATEGIES, **value}

    def strategy_for(self, field_name: str) -> ConflictStrategy:
        """Conflict strategy configured for a field."""
        return self.field_strategies.get(field_name, self.default_conflict_strategy)


# ============================================================================
# DERIVED ARTIFACTS
# ============================================================================


@dataclass(frozen=True)
class EventFingerprint:
    """Compact, cacheable summary of one NormalizedEvent."""

    event_id: str
    cache_key: str
    source_version: str
    title_tokens: tuple[str, ...]
    venue_normalized: str
    location_key: str
    coarse_location_keys: tuple[str, ...]
    coordinates: Coordinates | None
    address_normalized: str
    city_normalized: str
    date_key: str
    time_window: str
    start_utc: datetime
    content_hash: str
    semantic_tokens: tuple[str, ...]
    category_normalized: str
    price_range: tuple[float, float] | None = None

    @property
    def title_text(self) -> str:
        return " ".join(self.title_tokens)


@dataclass(frozen=True)
class SimilarityScore:
    """Five sub-scores in [0, 1] and their weighted blend."""

    title: float
    venue: float
    date: float
    location: float
    semantic: float
    overall: float
    semantic_available: bool = False

    def as_dict(self) -> dict[str, float]:
        return {
            "title": self.title,
            "venue": self.venue,
            "date": self.date,
            "location": self.location,
            "semantic": self.semantic,
            "overall": self.overall,
        }


@dataclass(frozen=True)
class LocationMatch:
    type: LocationMatchType
    similarity: float
    confidence: float
    distance_m: float | None = None


@dataclass
class MatchResult:
    """One candidate duplicate of a target event."""

    event_id: str
    event: NormalizedEvent
    score: SimilarityScore
    confidence: float
    reasons: list[str] = field(default_factory=list)
    risk_factors: list[str] = field(default_factory=list)
    matched_event_id: str | None = None
    passes_floors: bool = True


# ============================================================================
# MERGE DECISIONS
# ============================================================================


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FieldResolution(BaseModel):
    """Which cluster member's value won one differing field, and why."""

    field: str
    primary_value: Any = None
    duplicate_values: list[Any] = Field(default_factory=list)
    selected_value: Any = None
    source_event_id: str | None = None
    strategy: ResolutionKind
    confidence: float = Field(..., ge=0.0, le=1.0)
    needs_manual_review: bool = False


class MergeDecision(BaseModel):
    """Terminal artifact of a duplicate cluster."""

    decision_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    primary_event_id: str
    duplicate_event_ids: list[str]
    strategy: MergeStrategy
    confidence: float = Field(..., ge=0.0, le=1.0)
    status: DecisionStatus
    reasons: list[str] = Field(default_factory=list)
    field_resolutions: list[FieldResolution] = Field(default_factory=list)
    match_scores: dict[str, dict[str, float]] = Field(default_factory=dict)
    preview: NormalizedEvent
    created_at: datetime = Field(default_factory=_utc_now)

    @property
    def needs_manual_review(self) -> bool:
        return self.status == DecisionStatus.NEEDS_MANUAL_REVIEW

    def to_audit_record(self) -> dict[str, Any]:
        """Flatten the decision into the audit-table row shape."""
        return {
            "decision_id": self.decision_id,
            "primary_event_id": self.primary_event_id,
            "duplicate_event_ids": list(self.duplicate_event_ids),
            "merge_strategy": self.strategy.value,
            "confidence": self.confidence,
            "status": self.status.value,
            "reasons": list(self.reasons),
            "field_resolutions": [r.model_dump(mode="json") for r in self.field_resolutions],
            "similarity_scores": dict(self.match_scores),
            "created_at": self.created_at.isoformat(),
        }
