"""
Unit tests for the clustering module.
"""

from datetime import datetime, timedelta, timezone

from eventfusion.ingestion.deduplication.clustering import UnionFind, build_candidate_pairs
from eventfusion.ingestion.deduplication.fingerprint import build_fingerprint
from eventfusion.schemas.event import Coordinates


def evening_at_the_rex(create_event, count):
    """`count` events at one venue on one day, an hour apart."""
    start = datetime(2024, 2, 1, 14, 0, tzinfo=timezone.utc)
    return [
        build_fingerprint(create_event(external_id=f"r-{i}", start_utc=start + timedelta(hours=i)))
        for i in range(count)
    ]


class TestBuildCandidatePairs:
    """Tests for build_candidate_pairs()."""

    def test_same_bucket_pairs_everything(self, create_event):
        pairs = build_candidate_pairs(evening_at_the_rex(create_event, 4), max_candidates=50)
        assert pairs == [(0, 1), (0, 2), (0, 3), (1, 2), (1, 3), (2, 3)]

    def test_different_cities_never_compared(self, sample_events):
        fingerprints = [build_fingerprint(e) for e in sample_events]
        assert build_candidate_pairs(fingerprints, max_candidates=50) == []

    def test_next_day_bucket_included(self, create_event):
        today = create_event(external_id="d-1")
        tomorrow = create_event(external_id="d-2", start_utc=today.start_utc + timedelta(hours=26))
        fingerprints = [build_fingerprint(today), build_fingerprint(tomorrow)]

        assert build_candidate_pairs(fingerprints, max_candidates=50) == [(0, 1)]
        assert build_candidate_pairs(fingerprints, max_candidates=50, fuzzy_date=False) == []

    def test_large_bucket_uses_sliding_window(self, create_event):
        fingerprints = evening_at_the_rex(create_event, 5)
        pairs = build_candidate_pairs(fingerprints, max_candidates=2)
        # only neighbours in start-time order
        assert pairs == [(0, 1), (1, 2), (2, 3), (3, 4)]

    def test_unknown_locations_share_a_bucket(self, create_event):
        bare = {"venue_name": None, "coordinates": None, "venue_address": None, "city": None}
        fingerprints = [
            build_fingerprint(create_event(external_id="u-1", **bare)),
            build_fingerprint(create_event(external_id="u-2", **bare)),
            build_fingerprint(create_event(external_id="k-1")),
        ]
        assert build_candidate_pairs(fingerprints, max_candidates=50) == [(0, 1)]

    def test_pair_shared_by_several_keys_listed_once(self, create_event):
        near = Coordinates(latitude=43.6506, longitude=-79.3883)
        fingerprints = [
            build_fingerprint(create_event(external_id="k-1")),
            build_fingerprint(create_event(external_id="k-2", coordinates=near)),
        ]
        assert build_candidate_pairs(fingerprints, max_candidates=50) == [(0, 1)]


class TestUnionFind:
    """Tests for UnionFind."""

    def test_transitive_grouping(self):
        uf = UnionFind(["a", "b", "c", "d"])
        uf.union("a", "b")
        uf.union("b", "c")

        assert uf.connected("a", "c")
        assert not uf.connected("a", "d")
        assert uf.groups() == [["a", "b", "c"], ["d"]]

    def test_union_reports_new_merges(self):
        uf = UnionFind()
        assert uf.union(1, 2) is True
        assert uf.union(2, 1) is False

    def test_find_adds_unknown_items(self):
        uf = UnionFind()
        assert uf.find("x") == "x"
        assert uf.groups() == [["x"]]
