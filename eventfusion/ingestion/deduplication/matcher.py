"""
Pairwise similarity scoring.

SimilarityScorer turns two fingerprints into a SimilarityScore (five
sub-scores and their weighted blend) and decides whether the pair is a
duplicate candidate: the blended score must clear `thresholds.overall` and
the title, venue and date sub-scores must each clear their floor, so one
strong signal cannot hide a clear mismatch.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from eventfusion.ingestion.deduplication.cache import TTLCache
from eventfusion.ingestion.deduplication.similarity import (
    SemanticProvider,
    distance_decay,
    get_string_similarity,
    haversine_m,
    token_overlap,
    vector_cosine,
)
from eventfusion.schemas.dedup import (
    DedupConfig,
    EventFingerprint,
    LocationMatch,
    LocationMatching,
    LocationMatchType,
    MatchResult,
    SimilarityScore,
)
from eventfusion.schemas.event import NormalizedEvent

logger = logging.getLogger(__name__)

# Neutral venue score when at least one side has no venue name.
UNKNOWN_VENUE_SCORE = 0.5
TITLE_OVERLAP_BONUS = 0.2
# Similarity assigned to a same-city-only location match.
CITY_MATCH_SCORE = 0.5

LOCATION_CONFIDENCE = {
    LocationMatchType.EXACT: 1.0,
    LocationMatchType.VENUE: 0.9,
    LocationMatchType.COORDINATES: 0.85,
    LocationMatchType.ADDRESS: 0.7,
    LocationMatchType.CITY: 0.4,
    LocationMatchType.NONE: 0.0,
}

PairKey = tuple[str, str, str, str]


def _clip(value: float) -> float:
    return max(0.0, min(1.0, value))


class SimilarityScorer:
    """
    Score fingerprint pairs under one DedupConfig.

    Args:
        config: Thresholds, floors, weights and algorithm choices
        semantic_provider: Optional embedding source; without one the
            semantic signal scores zero
        cache: Optional cache of scores keyed by the sorted pair
        embedding_cache: Optional cache of embeddings per event
    """

    def __init__(
        self,
        config: DedupConfig,
        semantic_provider: SemanticProvider | None = None,
        cache: TTLCache[PairKey, SimilarityScore] | None = None,
        embedding_cache: TTLCache[str, Sequence[float] | None] | None = None,
    ):
        self.config = config
        self.semantic_provider = semantic_provider if config.algorithms.semantic_matching else None
        self.cache = cache
        self.embedding_cache = embedding_cache
        self._string_similarity = get_string_similarity(config.algorithms.string_matching)
        self.comparisons = 0

    # ========================================================================
    # SCORING
    # ========================================================================

    def score(self, a: EventFingerprint, b: EventFingerprint) -> SimilarityScore:
        """Symmetric: the pair is always scored in sorted cache-key order."""
        first, second = sorted((a, b), key=lambda fp: fp.cache_key)
        key = (first.cache_key, first.source_version, second.cache_key, second.source_version)

        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        score = self._compute(first, second)
        self.comparisons += 1
        if self.cache is not None:
            self.cache.set(key, score)
        return score

    def _compute(self, a: EventFingerprint, b: EventFingerprint) -> SimilarityScore:
        weights = self.config.weights
        title = self.title_score(a, b)
        venue = self.venue_score(a, b)
        date = self.date_score(a, b)
        location = self.location_match(a, b).similarity
        semantic = self.semantic_score(a, b)
        semantic_available = semantic is not None

        # an unavailable semantic signal contributes zero; weights are not rescaled
        overall = (
            weights.title * title
            + weights.venue * venue
            + weights.location * location
            + weights.date * date
            + weights.semantic * (semantic or 0.0)
        )

        return SimilarityScore(
            title=round(title, 6),
            venue=round(venue, 6),
            date=round(date, 6),
            location=round(location, 6),
            semantic=round(semantic or 0.0, 6),
            overall=round(_clip(overall), 6),
            semantic_available=semantic_available,
        )

    def title_score(self, a: EventFingerprint, b: EventFingerprint) -> float:
        """Configured string similarity plus a bonus for shared tokens."""
        if a.title_tokens == b.title_tokens:
            return 1.0
        base = self._string_similarity(a.title_text, b.title_text)
        return _clip(base + TITLE_OVERLAP_BONUS * token_overlap(a.title_tokens, b.title_tokens))

    def venue_score(self, a: EventFingerprint, b: EventFingerprint) -> float:
        both_coords = a.coordinates is not None and b.coordinates is not None
        if not a.venue_normalized or not b.venue_normalized:
            if both_coords:
                return distance_decay(haversine_m(a.coordinates, b.coordinates))
            return UNKNOWN_VENUE_SCORE

        if a.venue_normalized == b.venue_normalized:
            name = 1.0
        else:
            name = self._string_similarity(a.venue_normalized, b.venue_normalized)
        if not both_coords:
            return _clip(name)
        return _clip(0.7 * name + 0.3 * distance_decay(haversine_m(a.coordinates, b.coordinates)))

    def date_score(self, a: EventFingerprint, b: EventFingerprint) -> float:
        """1.0 on the same UTC day, then a linear decay across the fuzz window."""
        if a.date_key == b.date_key:
            return 1.0
        algorithms = self.config.algorithms
        if not algorithms.fuzzy_date:
            return 0.0
        diff_hours = abs((a.start_utc - b.start_utc).total_seconds()) / 3600
        if diff_hours >= algorithms.date_fuzz_hours:
            return 0.0
        return 0.9 * (1 - diff_hours / algorithms.date_fuzz_hours)

    def location_match(self, a: EventFingerprint, b: EventFingerprint) -> LocationMatch:
        """
        Strongest applicable location match: exact > venue > coordinates
        within radius > address > city.
        """
        mode = self.config.algorithms.location_matching
        hybrid = mode == LocationMatching.HYBRID
        distance = None
        if a.coordinates is not None and b.coordinates is not None:
            distance = haversine_m(a.coordinates, b.coordinates)

        def _match(kind: LocationMatchType, similarity: float) -> LocationMatch:
            return LocationMatch(
                type=kind,
                similarity=_clip(similarity),
                confidence=LOCATION_CONFIDENCE[kind],
                distance_m=round(distance, 1) if distance is not None else None,
            )

        if (
            a.location_key == b.location_key
            and not a.location_key.startswith("city:")
            and a.location_key != "unknown"
        ):
            return _match(LocationMatchType.EXACT, 1.0)

        if (hybrid or mode == LocationMatching.VENUE) and a.venue_normalized and b.venue_normalized:
            venue_similarity = (
                1.0
                if a.venue_normalized == b.venue_normalized
                else self._string_similarity(a.venue_normalized, b.venue_normalized)
            )
            if venue_similarity >= self.config.thresholds.venue:
                return _match(LocationMatchType.VENUE, venue_similarity)

        if (hybrid or mode == LocationMatching.COORDINATES) and distance is not None:
            if distance <= self.config.algorithms.location_radius_m:
                return _match(LocationMatchType.COORDINATES, distance_decay(distance))

        if (hybrid or mode == LocationMatching.ADDRESS) and a.address_normalized and b.address_normalized:
            address_similarity = self._string_similarity(a.address_normalized, b.address_normalized)
            if address_similarity >= self.config.thresholds.location:
                return _match(LocationMatchType.ADDRESS, address_similarity)

        if a.city_normalized and a.city_normalized == b.city_normalized:
            return _match(LocationMatchType.CITY, CITY_MATCH_SCORE)

        return _match(LocationMatchType.NONE, 0.0)

    def semantic_score(self, a: EventFingerprint, b: EventFingerprint) -> float | None:
        """Embedding cosine, or None when no provider or no embedding."""
        if self.semantic_provider is None:
            return None
        left, right = self._embedding(a), self._embedding(b)
        if not left or not right:
            return None
        return vector_cosine(left, right)

    def _embedding(self, fp: EventFingerprint) -> Sequence[float] | None:
        key = f"{fp.cache_key}@{fp.source_version}"
        if self.embedding_cache is not None and key in self.embedding_cache:
            return self.embedding_cache.get(key)
        try:
            vector = self.semantic_provider.embed(" ".join(fp.semantic_tokens))
        except Exception as e:
            logger.warning(f"Embedding failed for {fp.event_id}: {e}")
            vector = None
        if self.embedding_cache is not None:
            self.embedding_cache.set(key, vector)
        return vector

    # ========================================================================
    # DECISION
    # ========================================================================

    def floor_failures(self, score: SimilarityScore, a: EventFingerprint, b: EventFingerprint) -> list[str]:
        """Required sub-scores below their floor; the venue floor needs both venues."""
        floors = self.config.floors
        failures = []
        if score.title < floors.title:
            failures.append(f"title similarity {score.title:.2f} below floor {floors.title:.2f}")
        if a.venue_normalized and b.venue_normalized and score.venue < floors.venue:
            failures.append(f"venue similarity {score.venue:.2f} below floor {floors.venue:.2f}")
        if score.date < floors.date:
            failures.append(f"date similarity {score.date:.2f} below floor {floors.date:.2f}")
        return failures

    def passes_floors(self, score: SimilarityScore, a: EventFingerprint, b: EventFingerprint) -> bool:
        return not self.floor_failures(score, a, b)

    def is_duplicate_candidate(self, score: SimilarityScore, a: EventFingerprint, b: EventFingerprint) -> bool:
        return score.overall >= self.config.thresholds.overall and self.passes_floors(score, a, b)

    def confidence(self, score: SimilarityScore) -> float:
        """
        Share of the five per-signal thresholds met, shifted by twice the
        margin of `overall` over its threshold. An unavailable semantic
        signal counts as a missed threshold. When title or date misses its
        threshold the margin can only lower the result.

        Returns:
            Value in [0, 1]
        """
        thresholds = self.config.thresholds
        checks = [
            score.title >= thresholds.title,
            score.venue >= thresholds.venue,
            score.location >= thresholds.location,
            score.date >= thresholds.date,
            score.semantic_available and score.semantic >= thresholds.semantic,
        ]
        passed = sum(checks) / len(checks)
        margin = 2 * (score.overall - thresholds.overall)
        if score.title < thresholds.title or score.date < thresholds.date:
            margin = min(margin, 0.0)
        return round(_clip(passed + margin), 6)

    def evaluate(
        self,
        target: NormalizedEvent,
        candidate: NormalizedEvent,
        target_fp: EventFingerprint,
        candidate_fp: EventFingerprint,
    ) -> MatchResult:
        """Score a candidate against a target and explain the result."""
        score = self.score(target_fp, candidate_fp)
        location = self.location_match(target_fp, candidate_fp)
        thresholds = self.config.thresholds
        failures = self.floor_failures(score, target_fp, candidate_fp)

        reasons = []
        if score.title >= thresholds.title:
            reasons.append(f"title similarity {score.title:.2f}")
        if target_fp.venue_normalized and target_fp.venue_normalized == candidate_fp.venue_normalized:
            reasons.append("same venue")
        elif score.venue >= thresholds.venue:
            reasons.append(f"venue similarity {score.venue:.2f}")
        if location.type != LocationMatchType.NONE:
            reasons.append(f"location match: {location.type.value}")
        if target_fp.date_key == candidate_fp.date_key:
            reasons.append("same day")
        elif score.date > 0:
            reasons.append(f"start times within {self.config.algorithms.date_fuzz_hours:g}h")
        if score.semantic_available and score.semantic >= thresholds.semantic:
            reasons.append(f"semantic similarity {score.semantic:.2f}")

        risks = list(failures)
        if target_fp.time_window != candidate_fp.time_window:
            risks.append(f"different time of day ({target_fp.time_window} vs {candidate_fp.time_window})")
        if target_fp.category_normalized != candidate_fp.category_normalized:
            risks.append(
                f"category mismatch ({target_fp.category_normalized} vs {candidate_fp.category_normalized})"
            )
        if target_fp.price_range and candidate_fp.price_range and target_fp.price_range != candidate_fp.price_range:
            risks.append("price ranges differ")
        if location.distance_m is not None and location.distance_m > self.config.algorithms.location_radius_m:
            risks.append(f"venues {location.distance_m:.0f}m apart")
        if target.source == candidate.source:
            risks.append(f"both records come from {target.source.value}")

        return MatchResult(
            event_id=candidate.event_id,
            event=candidate,
            score=score,
            confidence=self.confidence(score),
            reasons=reasons,
            risk_factors=risks,
            matched_event_id=target.event_id,
            passes_floors=not failures,
        )
