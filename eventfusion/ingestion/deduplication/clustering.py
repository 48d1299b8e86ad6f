"""
Candidate generation and duplicate clustering.

Events are bucketed by (date key, coarse location key) and only compared
inside a bucket, which keeps comparison cost near-linear for realistically
clustered input. Accepted pairs are unioned into connected components, so
A~B and B~C group A, B and C even when A~C alone scores below threshold.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Hashable, Iterable, Iterator, Sequence
from datetime import date, timedelta

from eventfusion.schemas.dedup import EventFingerprint


def _next_day(day_key: str) -> str:
    return (date.fromisoformat(day_key) + timedelta(days=1)).isoformat()


def _window_pairs(
    members: Sequence[int],
    fingerprints: Sequence[EventFingerprint],
    window: int,
) -> Iterator[tuple[int, int]]:
    """
    Pairs within a sliding window over members sorted by start time.

    A group no larger than `window` yields every pair.
    """
    ordered = sorted(set(members), key=lambda i: (fingerprints[i].start_utc, fingerprints[i].cache_key))
    for position, i in enumerate(ordered):
        for j in ordered[position + 1 : position + window]:
            yield (i, j) if i < j else (j, i)


def build_candidate_pairs(
    fingerprints: Sequence[EventFingerprint],
    max_candidates: int,
    fuzzy_date: bool = True,
) -> list[tuple[int, int]]:
    """
    Candidate pairs (as index pairs into `fingerprints`, i < j).

    Args:
        fingerprints: Fingerprints of the working set
        max_candidates: Largest bucket compared exhaustively; bigger buckets
            are compared in sliding windows of this size
        fuzzy_date: Also compare each bucket with the next day's bucket

    Returns:
        Sorted, de-duplicated index pairs
    """
    buckets: dict[tuple[str, str], list[int]] = defaultdict(list)
    for index, fp in enumerate(fingerprints):
        for key in fp.coarse_location_keys:
            buckets[(fp.date_key, key)].append(index)

    pairs: set[tuple[int, int]] = set()
    for (day, key), members in list(buckets.items()):
        group = list(members)
        if fuzzy_date:
            group.extend(buckets.get((_next_day(day), key), ()))
        if len(group) < 2:
            continue
        pairs.update(_window_pairs(group, fingerprints, max_candidates))
    return sorted(pairs)


class UnionFind:
    """Disjoint sets with path compression and union by rank."""

    def __init__(self, items: Iterable[Hashable] = ()):
        self._parent: dict[Hashable, Hashable] = {}
        self._rank: dict[Hashable, int] = {}
        for item in items:
            self.add(item)

    def add(self, item: Hashable) -> None:
        if item not in self._parent:
            self._parent[item] = item
            self._rank[item] = 0

    def find(self, item: Hashable) -> Hashable:
        self.add(item)
        root = item
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[item] != root:
            self._parent[item], item = root, self._parent[item]
        return root

    def union(self, a: Hashable, b: Hashable) -> bool:
        """Merge the sets of a and b; False if they were already joined."""
        root_a, root_b = self.find(a), self.find(b)
        if root_a == root_b:
            return False
        if self._rank[root_a] < self._rank[root_b]:
            root_a, root_b = root_b, root_a
        self._parent[root_b] = root_a
        if self._rank[root_a] == self._rank[root_b]:
            self._rank[root_a] += 1
        return True

    def connected(self, a: Hashable, b: Hashable) -> bool:
        return self.find(a) == self.find(b)

    def groups(self) -> list[list[Hashable]]:
        """All sets, each sorted, ordered by their smallest member."""
        members: dict[Hashable, list[Hashable]] = defaultdict(list)
        for item in self._parent:
            members[self.find(item)].append(item)
        return sorted((sorted(group) for group in members.values()), key=lambda group: group[0])
