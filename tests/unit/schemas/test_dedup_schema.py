"""
Unit tests for the dedup schema module.
"""

import pytest
from pydantic import ValidationError

from eventfusion.schemas.dedup import (
    ConflictStrategy,
    DecisionStatus,
    DedupConfig,
    FieldResolution,
    MergeDecision,
    MergeStrategy,
    ResolutionKind,
)


class TestDedupConfig:
    """Tests for DedupConfig defaults and validation."""

    def test_defaults(self):
        config = DedupConfig()

        assert config.thresholds.overall == 0.80
        assert config.floors.title == 0.60
        assert config.weights.title == 0.35
        assert config.algorithms.date_fuzz_hours == 24
        assert config.performance.max_candidates == 50
        assert config.quality.noise_floor == 0.5
        assert config.merge_strategy == MergeStrategy.ENHANCE_PRIMARY

    def test_field_strategy_overrides_merge_with_defaults(self):
        config = DedupConfig(field_strategies={"city": "latest_wins"})

        assert config.strategy_for("city") == ConflictStrategy.LATEST_WINS
        assert config.strategy_for("tags") == ConflictStrategy.MERGE_VALUES

    def test_prices_merge_into_widest_range(self):
        config = DedupConfig()

        assert config.strategy_for("price_min") == ConflictStrategy.MERGE_VALUES
        assert config.strategy_for("price_max") == ConflictStrategy.MERGE_VALUES
        assert config.strategy_for("description") == ConflictStrategy.MOST_COMPLETE

    def test_unlisted_field_uses_default_strategy(self):
        config = DedupConfig(default_conflict_strategy="most_complete")
        assert config.strategy_for("organizer") == ConflictStrategy.MOST_COMPLETE

    def test_noise_floor_above_auto_merge_rejected(self):
        with pytest.raises(ValidationError):
            DedupConfig.model_validate({"quality": {"noise_floor": 0.97}})

    def test_resolution_kind_for_strategy(self):
        assert ResolutionKind.for_strategy(ConflictStrategy.MERGE_VALUES) == ResolutionKind.MERGE
        assert ResolutionKind.for_strategy(ConflictStrategy.MANUAL_REVIEW) == ResolutionKind.MANUAL


class TestMergeDecision:
    """Tests for MergeDecision."""

    def test_audit_record(self, exact_duplicates):
        primary, duplicate = exact_duplicates
        decision = MergeDecision(
            primary_event_id=primary.event_id,
            duplicate_event_ids=[duplicate.event_id],
            strategy=MergeStrategy.ENHANCE_PRIMARY,
            confidence=0.97,
            status=DecisionStatus.AUTO_MERGE,
            reasons=["same venue"],
            field_resolutions=[
                FieldResolution(
                    field="tags",
                    primary_value=["jazz"],
                    duplicate_values=[["jazz", "blues"]],
                    selected_value=["jazz", "blues"],
                    strategy=ResolutionKind.MERGE,
                    confidence=0.5,
                )
            ],
            match_scores={duplicate.event_id: {"overall": 1.0}},
            preview=primary,
        )

        record = decision.to_audit_record()

        assert record["merge_strategy"] == "enhance_primary"
        assert record["status"] == "auto_merge"
        assert record["duplicate_event_ids"] == ["ticketmaster:tm-2002"]
        assert record["field_resolutions"][0]["strategy"] == "merge"
        assert record["similarity_scores"] == {"ticketmaster:tm-2002": {"overall": 1.0}}
        assert isinstance(record["created_at"], str)
        assert decision.needs_manual_review is False

    def test_confidence_bounded(self, sample_event):
        with pytest.raises(ValidationError):
            MergeDecision(
                primary_event_id=sample_event.event_id,
                duplicate_event_ids=[],
                strategy=MergeStrategy.KEEP_PRIMARY,
                confidence=1.2,
                status=DecisionStatus.AUTO_MERGE,
                preview=sample_event,
            )
