"""
Unit tests for the matcher module.

Tests SimilarityScorer sub-scores, location match typing, floors and
confidence.
"""

from datetime import datetime, timezone

import pytest

from eventfusion.ingestion.deduplication.cache import TTLCache
from eventfusion.ingestion.deduplication.fingerprint import build_fingerprint
from eventfusion.ingestion.deduplication.matcher import SimilarityScorer
from eventfusion.schemas.dedup import DedupConfig, LocationMatchType
from eventfusion.schemas.event import Coordinates, EventSource

# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def scorer():
    return SimilarityScorer(DedupConfig())


class StaticEmbeddings:
    """Semantic provider returning one vector for every text."""

    def __init__(self, vector):
        self.vector = vector
        self.calls = 0

    def embed(self, text):
        self.calls += 1
        return self.vector


class BrokenEmbeddings:
    def embed(self, text):
        raise RuntimeError("model offline")


def pair(create_event, left=None, right=None):
    a = create_event(external_id="l-1", **(left or {}))
    b = create_event(external_id="r-1", source=EventSource.TICKETMASTER, **(right or {}))
    return a, b, build_fingerprint(a), build_fingerprint(b)


# =============================================================================
# SCORING
# =============================================================================


class TestScore:
    """Tests for SimilarityScorer.score()."""

    def test_exact_duplicates(self, scorer, exact_duplicates):
        a, b = (build_fingerprint(e) for e in exact_duplicates)
        score = scorer.score(a, b)

        assert score.title == 1.0
        assert score.venue == 1.0
        assert score.date == 1.0
        assert score.location == 1.0
        assert score.overall == 0.95
        assert score.semantic_available is False
        assert scorer.confidence(score) == 1.0

    def test_symmetric(self, scorer, create_event):
        _, _, a, b = pair(
            create_event,
            right={"title": "Jazz Night at The Rex", "venue_name": "Rex Hotel Jazz Bar"},
        )
        assert scorer.score(a, b) == scorer.score(b, a)

    def test_cached_pair_not_recomputed(self, create_event):
        scorer = SimilarityScorer(DedupConfig(), cache=TTLCache("similarity"))
        _, _, a, b = pair(create_event)

        scorer.score(a, b)
        scorer.score(b, a)

        assert scorer.comparisons == 1

    def test_date_decay(self, scorer, create_event):
        _, _, a, b = pair(
            create_event,
            right={"start_utc": datetime(2024, 2, 1, 12, 0, tzinfo=timezone.utc)},
        )
        # 12 hours apart, across a UTC day boundary
        assert scorer.date_score(a, b) == pytest.approx(0.45)

    def test_date_without_fuzz(self, create_event):
        config = DedupConfig.model_validate({"algorithms": {"fuzzy_date": False}})
        _, _, a, b = pair(
            create_event,
            right={"start_utc": datetime(2024, 2, 1, 23, 0, tzinfo=timezone.utc)},
        )
        assert SimilarityScorer(config).date_score(a, b) == 0.0

    def test_missing_venue_is_neutral(self, scorer, create_event):
        _, _, a, b = pair(create_event, right={"venue_name": None, "coordinates": None})
        assert scorer.venue_score(a, b) == 0.5


class TestSemantic:
    """Tests for the optional semantic sub-score."""

    def test_provider_used(self, exact_duplicates):
        provider = StaticEmbeddings([0.2, 0.4, 0.1])
        scorer = SimilarityScorer(DedupConfig(), semantic_provider=provider)
        a, b = (build_fingerprint(e) for e in exact_duplicates)

        score = scorer.score(a, b)

        assert score.semantic_available is True
        assert score.semantic == pytest.approx(1.0)
        assert score.overall == pytest.approx(1.0)
        assert provider.calls == 2

    def test_disabled_by_config(self, exact_duplicates):
        config = DedupConfig.model_validate({"algorithms": {"semantic_matching": False}})
        scorer = SimilarityScorer(config, semantic_provider=StaticEmbeddings([1.0]))
        assert scorer.semantic_provider is None

    def test_failing_provider_drops_signal(self, exact_duplicates):
        scorer = SimilarityScorer(DedupConfig(), semantic_provider=BrokenEmbeddings())
        a, b = (build_fingerprint(e) for e in exact_duplicates)

        score = scorer.score(a, b)

        assert score.semantic_available is False
        assert score.overall == 0.95


# =============================================================================
# LOCATION MATCHING
# =============================================================================


class TestLocationMatch:
    """Tests for SimilarityScorer.location_match()."""

    def test_exact(self, scorer, exact_duplicates):
        a, b = (build_fingerprint(e) for e in exact_duplicates)
        match = scorer.location_match(a, b)
        assert match.type == LocationMatchType.EXACT
        assert match.distance_m == 0.0

    def test_venue(self, scorer, create_event):
        # same venue name, coordinates several km apart
        _, _, a, b = pair(create_event, right={"coordinates": Coordinates(latitude=43.70, longitude=-79.40)})
        match = scorer.location_match(a, b)
        assert match.type == LocationMatchType.VENUE
        assert match.similarity == 1.0

    def test_coordinates_within_radius(self, scorer, create_event):
        _, _, a, b = pair(
            create_event,
            left={"venue_name": None},
            right={"venue_name": None, "coordinates": Coordinates(latitude=43.6520, longitude=-79.3882)},
        )
        match = scorer.location_match(a, b)
        assert match.type == LocationMatchType.COORDINATES
        assert match.similarity == 0.8
        assert match.distance_m == pytest.approx(167, abs=2)

    def test_city_only(self, scorer, create_event):
        bare = {"venue_name": None, "coordinates": None, "venue_address": None}
        _, _, a, b = pair(create_event, left=bare, right=bare)
        match = scorer.location_match(a, b)
        assert match.type == LocationMatchType.CITY
        assert match.similarity == 0.5

    def test_no_match(self, scorer, create_event):
        _, _, a, b = pair(
            create_event,
            left={"venue_name": None, "coordinates": None, "venue_address": None},
            right={"venue_name": None, "coordinates": None, "venue_address": None, "city": "Chicago"},
        )
        assert scorer.location_match(a, b).type == LocationMatchType.NONE

    def test_rank_order(self):
        assert LocationMatchType.EXACT.rank < LocationMatchType.VENUE.rank < LocationMatchType.NONE.rank


# =============================================================================
# DECISION
# =============================================================================


class TestFloorsAndEvaluate:
    """Tests for floors and evaluate()."""

    def test_title_floor_blocks_same_venue_same_day(self, create_event):
        """Two different shows at one venue on one night must not pair up."""
        config = DedupConfig.model_validate({"thresholds": {"overall": 0.6}})
        scorer = SimilarityScorer(config)
        a, b, fa, fb = pair(create_event, right={"title": "Startup Networking Mixer"})

        score = scorer.score(fa, fb)
        result = scorer.evaluate(a, b, fa, fb)

        assert score.overall >= 0.6
        assert score.title < config.floors.title
        assert scorer.is_duplicate_candidate(score, fa, fb) is False
        assert result.passes_floors is False
        assert any("below floor" in risk for risk in result.risk_factors)

    def test_venue_floor_needs_both_venues(self, scorer, create_event):
        _, _, fa, fb = pair(create_event, right={"venue_name": None})
        score = scorer.score(fa, fb)
        assert not any("venue" in failure for failure in scorer.floor_failures(score, fa, fb))

    def test_evaluate_explains_match(self, scorer, exact_duplicates):
        target, candidate = exact_duplicates
        result = scorer.evaluate(target, candidate, build_fingerprint(target), build_fingerprint(candidate))

        assert result.event_id == candidate.event_id
        assert result.matched_event_id == target.event_id
        assert result.confidence == 1.0
        assert result.passes_floors is True
        assert "same venue" in result.reasons
        assert "same day" in result.reasons
        assert "location match: exact" in result.reasons
        assert result.risk_factors == []

    def test_evaluate_flags_risks(self, scorer, create_event):
        a, b, fa, fb = pair(
            create_event,
            right={"start_utc": datetime(2024, 2, 1, 14, 0, tzinfo=timezone.utc), "price_min": 30, "price_max": 40},
        )
        result = scorer.evaluate(a, b, fa, fb)

        assert "price ranges differ" in result.risk_factors
        assert any(risk.startswith("different time of day") for risk in result.risk_factors)
        assert result.confidence < 0.95


class TestConfidence:
    """Tests for SimilarityScorer.confidence()."""

    def test_unavailable_semantic_weighs_zero(self, scorer, create_event):
        _, _, a, b = pair(create_event, right={"start_utc": datetime(2024, 2, 1, 14, 0, tzinfo=timezone.utc)})

        score = scorer.score(a, b)

        # 0.35 + 0.25 + 0.20 + 0.15 * 0.525, semantic contributes nothing
        assert score.date == pytest.approx(0.525)
        assert score.overall == pytest.approx(0.87875)

    def test_shifted_start_stays_below_auto_merge(self, scorer, create_event):
        """A matinee and an evening show at one venue are never auto-merged."""
        _, _, a, b = pair(create_event, right={"start_utc": datetime(2024, 2, 1, 14, 0, tzinfo=timezone.utc)})

        confidence = scorer.confidence(scorer.score(a, b))

        # three of five thresholds met; the missed date threshold drops the overall margin
        assert confidence == pytest.approx(0.6)
        assert confidence < scorer.config.quality.auto_merge_threshold

    def test_semantic_threshold_counts_when_available(self, create_event):
        scorer = SimilarityScorer(DedupConfig(), semantic_provider=StaticEmbeddings([0.2, 0.4, 0.1]))
        _, _, a, b = pair(create_event, right={"start_utc": datetime(2024, 2, 1, 14, 0, tzinfo=timezone.utc)})

        score = scorer.score(a, b)

        assert score.overall == pytest.approx(0.92875)
        assert scorer.confidence(score) == pytest.approx(0.8)

    def test_same_day_pair_gets_margin(self, scorer, create_event):
        _, _, a, b = pair(create_event, right={"start_utc": datetime(2024, 2, 2, 3, 0, tzinfo=timezone.utc)})

        score = scorer.score(a, b)

        assert score.overall == pytest.approx(0.95)
        assert scorer.confidence(score) == 1.0
