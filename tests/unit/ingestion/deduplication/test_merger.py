"""
Unit tests for the merger module.

Tests primary selection, per-field conflict strategies and preview building.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from eventfusion.ingestion.deduplication.merger import FieldResolver, build_preview, select_primary
from eventfusion.schemas.dedup import DedupConfig, ResolutionKind
from eventfusion.schemas.event import EventSource


@pytest.fixture
def resolver():
    return FieldResolver(DedupConfig())


class TestSelectPrimary:
    """Tests for select_primary()."""

    def test_verified_first(self, create_event):
        plain = create_event(external_id="a-1")
        verified = create_event(external_id="z-9", is_verified=True, description=None)
        assert select_primary([plain, verified]) is verified

    def test_completeness_then_external_id(self, create_event):
        sparse = create_event(external_id="a-1", image_url=None, ticket_url=None)
        full_b = create_event(external_id="b-2")
        full_c = create_event(external_id="c-3")
        assert select_primary([full_c, sparse, full_b]) is full_b

    def test_earliest_ingested(self, create_event):
        early = create_event(external_id="z-1")
        late = create_event(external_id="a-1", ingested_at=early.ingested_at + timedelta(hours=1))
        assert select_primary([late, early]) is early

    def test_empty_cluster(self):
        with pytest.raises(ValueError):
            select_primary([])


class TestFieldResolver:
    """Tests for FieldResolver."""

    def test_identical_members_need_no_resolution(self, resolver, exact_duplicates):
        primary, duplicate = exact_duplicates
        assert resolver.resolve(primary, [duplicate]) == []

    def test_merge_values_for_tags_and_prices(self, resolver, create_event):
        primary = create_event(tags=["jazz"], price_min=Decimal("15"), price_max=Decimal("25"))
        duplicate = create_event(tags=["jazz", "live music"], price_min=Decimal("12"), price_max=Decimal("30"))

        resolutions = {r.field: r for r in resolver.resolve(primary, [duplicate])}

        assert resolutions["tags"].selected_value == ["jazz", "live music"]
        assert resolutions["tags"].strategy == ResolutionKind.MERGE
        assert resolutions["tags"].source_event_id is None
        assert resolutions["price_min"].selected_value == Decimal("12")
        assert resolutions["price_max"].selected_value == Decimal("30")

    def test_most_complete_description(self, resolver, create_event):
        primary = create_event(description="Jazz.")
        duplicate = create_event(description="Jazz quartet, two sets, doors at 7.")

        resolution = resolver.resolve(primary, [duplicate])[0]

        assert resolution.field == "description"
        assert resolution.selected_value == duplicate.description
        assert resolution.source_event_id == duplicate.event_id
        assert resolution.confidence == 0.5

    def test_highest_quality_title_prefers_verified(self, resolver, create_event):
        primary = create_event(title="Jazz Night")
        duplicate = create_event(title="Jazz Night at The Rex", is_verified=True)

        resolution = {r.field: r for r in resolver.resolve(primary, [duplicate])}["title"]

        assert resolution.selected_value == "Jazz Night at The Rex"
        assert resolution.strategy == ResolutionKind.HIGHEST_QUALITY

    def test_latest_wins(self, create_event):
        config = DedupConfig(field_strategies={"city": "latest_wins"})
        primary = create_event(city="Toronto")
        duplicate = create_event(city="Toronto, ON", updated_at=primary.updated_at + timedelta(days=1))

        resolution = FieldResolver(config).resolve(primary, [duplicate])[0]

        assert resolution.selected_value == "Toronto, ON"
        assert resolution.strategy == ResolutionKind.LATEST

    def test_primary_wins_falls_back_when_primary_missing(self, resolver, create_event):
        primary = create_event(city=None)
        duplicate = create_event(city="Toronto")

        resolution = resolver.resolve(primary, [duplicate])[0]

        assert resolution.selected_value == "Toronto"
        assert resolution.strategy == ResolutionKind.MOST_COMPLETE

    def test_manual_review_strategy(self, create_event):
        config = DedupConfig(field_strategies={"description": "manual_review"})
        primary = create_event(description="Jazz.")
        duplicate = create_event(description="Blues.")

        resolution = FieldResolver(config).resolve(primary, [duplicate])[0]

        assert resolution.needs_manual_review is True
        assert resolution.selected_value == "Jazz."
        assert resolution.strategy == ResolutionKind.MANUAL


class TestBuildPreview:
    """Tests for build_preview()."""

    def test_applies_resolutions(self, resolver, create_event):
        primary = create_event(source=EventSource.EVENTBRITE, tags=["jazz"], image_url=None)
        duplicate = create_event(source=EventSource.YELP, tags=["blues"])

        preview = build_preview(primary, resolver.resolve(primary, [duplicate]))

        assert preview.event_id == primary.event_id
        assert preview.tags == ["jazz", "blues"]
        assert preview.image_url == duplicate.image_url
        assert primary.tags == ["jazz"]
