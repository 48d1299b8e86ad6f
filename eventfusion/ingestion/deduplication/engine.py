"""
Deduplication Engine.

Pipeline for one working set of NormalizedEvents:

1. fingerprint every event (cached, idempotent)
2. bucket by date and coarse location to generate candidate pairs
3. score each pair; keep pairs clearing the overall threshold and all floors
4. union kept pairs into clusters (connected components)
5. per cluster: select the primary, resolve differing fields, build a preview
6. route: auto-merge, manual review, or discard as noise

Record states: unmatched | clustered (pending review) | primary |
merged_into:<primary id> | rejected (not fingerprintable).
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from eventfusion.exceptions import FingerprintError
from eventfusion.ingestion.deduplication.cache import TTLCache
from eventfusion.ingestion.deduplication.clustering import UnionFind, build_candidate_pairs
from eventfusion.ingestion.deduplication.fingerprint import Fingerprinter
from eventfusion.ingestion.deduplication.matcher import SimilarityScorer
from eventfusion.ingestion.deduplication.merger import FieldResolver, build_preview, select_primary
from eventfusion.ingestion.deduplication.similarity import SemanticProvider
from eventfusion.ingestion.normalization.quality import completeness_score
from eventfusion.schemas.dedup import (
    DecisionStatus,
    DedupConfig,
    EventFingerprint,
    MatchResult,
    MergeDecision,
)
from eventfusion.schemas.event import NormalizedEvent

logger = logging.getLogger(__name__)


class EventState(str, Enum):
    UNMATCHED = "unmatched"
    CLUSTERED = "clustered"
    PRIMARY = "primary"
    MERGED_INTO = "merged_into"
    REJECTED = "rejected"


def merged_into(primary_id: str) -> str:
    return f"{EventState.MERGED_INTO.value}:{primary_id}"


@dataclass
class DedupError:
    """An event excluded from clustering."""

    event_id: str
    reason: str


@dataclass
class DeduplicationReport:
    """Outcome of one deduplication pass."""

    events: list[NormalizedEvent] = field(default_factory=list)
    decisions: list[MergeDecision] = field(default_factory=list)
    review_queue: list[MergeDecision] = field(default_factory=list)
    unmatched_event_ids: list[str] = field(default_factory=list)
    discarded_clusters: list[list[str]] = field(default_factory=list)
    states: dict[str, str] = field(default_factory=dict)
    errors: list[DedupError] = field(default_factory=list)
    stats: dict[str, Any] = field(default_factory=dict)

    @property
    def clusters(self) -> list[list[str]]:
        """Member ids of every emitted decision (auto and review)."""
        return [
            sorted([d.primary_event_id, *d.duplicate_event_ids]) for d in [*self.decisions, *self.review_queue]
        ]

    def forward_events(self) -> list[NormalizedEvent]:
        """
        Records to send to storage, in input order.

        Auto-merged clusters contribute their merged preview in place of the
        primary; absorbed records are dropped. Review-pending and unmatched
        records pass through unchanged.
        """
        previews = {d.primary_event_id: d.preview for d in self.decisions}
        forwarded = []
        for event in self.events:
            state = self.states.get(event.event_id, EventState.UNMATCHED.value)
            if state.startswith(EventState.MERGED_INTO.value):
                continue
            forwarded.append(previews.get(event.event_id, event))
        return forwarded

    def summary(self) -> dict[str, Any]:
        return {
            "events": len(self.events),
            "auto_merged": len(self.decisions),
            "needs_review": len(self.review_queue),
            "unmatched": len(self.unmatched_event_ids),
            "discarded_clusters": len(self.discarded_clusters),
            "errors": [{"event_id": e.event_id, "reason": e.reason} for e in self.errors],
            "stats": self.stats,
        }


class DeduplicationEngine:
    """
    Duplicate detection and merge-decision generation.

    The engine owns its fingerprint, similarity and embedding caches; two
    engines never share state.

    Args:
        config: Deduplication configuration
        semantic_provider: Optional embedding source for the semantic score

    Example:
        >>> engine = DeduplicationEngine(load_dedup_config())
        >>> report = engine.deduplicate(events)
        >>> stored = report.forward_events()
    """

    def __init__(
        self,
        config: DedupConfig | None = None,
        semantic_provider: SemanticProvider | None = None,
    ):
        self.config = config or DedupConfig()

        performance = self.config.performance
        self.fingerprint_cache: TTLCache | None = None
        self.similarity_cache: TTLCache | None = None
        self.embedding_cache: TTLCache | None = None
        if performance.enable_caching:
            self.fingerprint_cache = TTLCache("fingerprints", performance.cache_ttl_seconds, performance.cache_max_size)
            self.similarity_cache = TTLCache("similarity", performance.cache_ttl_seconds, performance.cache_max_size)
            self.embedding_cache = TTLCache("embeddings", performance.cache_ttl_seconds, performance.cache_max_size)

        self.fingerprinter = Fingerprinter(self.fingerprint_cache)
        self.scorer = SimilarityScorer(
            self.config,
            semantic_provider=semantic_provider,
            cache=self.similarity_cache,
            embedding_cache=self.embedding_cache,
        )
        self.resolver = FieldResolver(self.config)

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    def deduplicate(self, events: Sequence[NormalizedEvent]) -> DeduplicationReport:
        """
        Batch mode: find and decide every duplicate cluster in `events`.

        Never raises for a single bad record; non-fingerprintable events are
        listed in `report.errors` and passed through as standalone records.
        """
        started = time.perf_counter()
        comparisons_before = self.scorer.comparisons
        report = DeduplicationReport(events=self._unique(events))

        valid, fingerprints = self._fingerprint_all(report.events, report)
        pairs = build_candidate_pairs(
            fingerprints,
            self.config.performance.max_candidates,
            self.config.algorithms.fuzzy_date,
        )
        self._cluster(valid, fingerprints, pairs, report)

        self._finish_stats(report, started, comparisons_before, len(pairs))
        logger.info(
            f"Deduplicated {len(report.events)} events: {len(report.decisions)} auto-merged, "
            f"{len(report.review_queue)} for review, {len(report.unmatched_event_ids)} unmatched, "
            f"{len(report.errors)} rejected"
        )
        return report

    def check_event(
        self,
        event: NormalizedEvent,
        window: Iterable[NormalizedEvent],
    ) -> DeduplicationReport:
        """
        Incremental mode: compare one new event against a recent window.

        Only pairs involving the new event are scored, so the report holds at
        most one cluster: the one containing the new event.
        """
        started = time.perf_counter()
        comparisons_before = self.scorer.comparisons
        others = [e for e in self._unique(window) if e.event_id != event.event_id]
        report = DeduplicationReport(events=[event, *others])

        try:
            new_fp = self.fingerprinter.fingerprint(event)
        except FingerprintError as e:
            self._reject(event, e, report)
            self._finish_stats(report, started, comparisons_before, 0)
            return report

        valid, fingerprints = self._fingerprint_all(others, report, record_states=False)
        valid.insert(0, event)
        fingerprints.insert(0, new_fp)

        pairs = [
            pair
            for pair in build_candidate_pairs(
                fingerprints,
                self.config.performance.max_candidates,
                self.config.algorithms.fuzzy_date,
            )
            if pair[0] == 0
        ]
        self._cluster(valid, fingerprints, pairs, report, focus=event.event_id)
        # window records outside the new event's cluster are already stored
        report.events = [e for e in report.events if e.event_id in report.states]

        self._finish_stats(report, started, comparisons_before, len(pairs))
        return report

    def invalidate(self, event: NormalizedEvent) -> None:
        """Drop every cached artifact derived from this record."""
        cache_key = event.cache_key
        self.fingerprinter.invalidate(cache_key)
        if self.similarity_cache is not None:
            self.similarity_cache.invalidate_where(lambda key: cache_key in (key[0], key[2]))
        if self.embedding_cache is not None:
            self.embedding_cache.invalidate_where(lambda key: key.startswith(f"{cache_key}@"))

    def get_cache_stats(self) -> dict[str, dict[str, Any]]:
        caches = (self.fingerprint_cache, self.similarity_cache, self.embedding_cache)
        return {cache.name: cache.stats() for cache in caches if cache is not None}

    def clear_caches(self) -> None:
        for cache in (self.fingerprint_cache, self.similarity_cache, self.embedding_cache):
            if cache is not None:
                cache.clear()

    # ========================================================================
    # PIPELINE STEPS
    # ========================================================================

    @staticmethod
    def _unique(events: Iterable[NormalizedEvent]) -> list[NormalizedEvent]:
        """Collapse repeated event ids, keeping the most recently updated copy."""
        latest: dict[str, NormalizedEvent] = {}
        for event in events:
            current = latest.get(event.event_id)
            if current is None or event.updated_at >= current.updated_at:
                if current is not None:
                    logger.debug(f"Replacing repeated record {event.event_id} with its newer copy")
                latest[event.event_id] = event
        return list(latest.values())

    def _fingerprint_all(
        self,
        events: Sequence[NormalizedEvent],
        report: DeduplicationReport,
        record_states: bool = True,
    ) -> tuple[list[NormalizedEvent], list[EventFingerprint]]:
        valid: list[NormalizedEvent] = []
        fingerprints: list[EventFingerprint] = []
        batch_size = self.config.performance.batch_size

        for offset in range(0, len(events), batch_size):
            for event in events[offset : offset + batch_size]:
                try:
                    fingerprints.append(self.fingerprinter.fingerprint(event))
                except FingerprintError as e:
                    if record_states:
                        self._reject(event, e, report)
                    continue
                valid.append(event)
            logger.debug(f"Fingerprinted {min(offset + batch_size, len(events))}/{len(events)} events")
        return valid, fingerprints

    @staticmethod
    def _reject(event: NormalizedEvent, error: FingerprintError, report: DeduplicationReport) -> None:
        logger.warning(f"Excluding {event.event_id} from clustering: {error.reason}")
        report.errors.append(DedupError(event_id=event.event_id, reason=error.reason))
        report.states[event.event_id] = EventState.REJECTED.value

    def _cluster(
        self,
        events: Sequence[NormalizedEvent],
        fingerprints: Sequence[EventFingerprint],
        pairs: Sequence[tuple[int, int]],
        report: DeduplicationReport,
        focus: str | None = None,
    ) -> None:
        """Score candidate pairs, build components, and emit one decision per cluster."""
        by_id = {event.event_id: event for event in events}
        union_find = UnionFind(by_id)
        edges: dict[tuple[str, str], MatchResult] = {}

        for i, j in pairs:
            match = self.scorer.evaluate(events[i], events[j], fingerprints[i], fingerprints[j])
            if match.passes_floors and match.score.overall >= self.config.thresholds.overall:
                edges[(events[i].event_id, events[j].event_id)] = match
                union_find.union(events[i].event_id, events[j].event_id)
            elif match.score.overall >= self.config.thresholds.overall:
                logger.debug(
                    f"Pair {events[i].event_id} / {events[j].event_id} blocked by floors: "
                    f"{'; '.join(match.risk_factors)}"
                )

        report.stats["duplicate_pairs"] = len(edges)
        for group in union_find.groups():
            if focus is not None and focus not in group:
                continue
            if len(group) == 1:
                report.states[group[0]] = EventState.UNMATCHED.value
                report.unmatched_event_ids.append(group[0])
                continue
            members = set(group)
            cluster_edges = {pair: match for pair, match in edges.items() if pair[0] in members}
            self._decide([by_id[event_id] for event_id in group], cluster_edges, report)

    def _decide(
        self,
        members: list[NormalizedEvent],
        edges: dict[tuple[str, str], MatchResult],
        report: DeduplicationReport,
    ) -> None:
        quality = self.config.quality
        confidence = round(sum(m.confidence for m in edges.values()) / len(edges), 6)

        primary = select_primary(members, completeness_score)
        duplicates = [m for m in members if m.event_id != primary.event_id]

        best_edge: dict[str, MatchResult] = {}
        for (a, b), match in edges.items():
            for event_id in (a, b):
                # the edge to the primary is preferred when present
                current = best_edge.get(event_id)
                touches_primary = primary.event_id in (a, b)
                if (
                    current is None
                    or match.confidence > current.confidence
                    or (touches_primary and match.confidence == current.confidence)
                ):
                    best_edge[event_id] = match

        member_ids = sorted(m.event_id for m in members)
        if confidence < quality.noise_floor:
            logger.info(f"Discarding cluster {member_ids}: confidence {confidence:.2f} below noise floor")
            report.discarded_clusters.append(member_ids)
            for event_id in member_ids:
                report.states[event_id] = EventState.UNMATCHED.value
                report.unmatched_event_ids.append(event_id)
            return

        resolutions = self.resolver.resolve(primary, duplicates)
        preview = build_preview(primary, resolutions)

        reasons = [f"cluster confidence {confidence:.2f} over {len(edges)} matching pair(s)"]
        blockers = []
        for duplicate in duplicates:
            match = best_edge[duplicate.event_id]
            reasons.append(f"{duplicate.event_id}: {', '.join(match.reasons) or 'matched'}")
            reasons.extend(f"{duplicate.event_id} risk: {risk}" for risk in match.risk_factors)
            if match.confidence < quality.auto_merge_threshold:
                blockers.append(
                    f"{duplicate.event_id} match confidence {match.confidence:.2f} "
                    f"below auto-merge threshold {quality.auto_merge_threshold:.2f}"
                )
        if confidence < quality.auto_merge_threshold:
            blockers.append(f"cluster confidence below auto-merge threshold {quality.auto_merge_threshold:.2f}")
        blockers.extend(f"field '{r.field}' requires manual review" for r in resolutions if r.needs_manual_review)
        if quality.require_manual_review:
            blockers.append("manual review required by configuration")
        if confidence < quality.minimum_quality_score:
            # informational only; routing depends on the thresholds above
            reasons.append(
                f"cluster confidence {confidence:.2f} below minimum quality score "
                f"{quality.minimum_quality_score:.2f}"
            )

        status = DecisionStatus.NEEDS_MANUAL_REVIEW if blockers else DecisionStatus.AUTO_MERGE
        decision = MergeDecision(
            primary_event_id=primary.event_id,
            duplicate_event_ids=[d.event_id for d in duplicates],
            strategy=self.config.merge_strategy,
            confidence=confidence,
            status=status,
            reasons=reasons + blockers,
            field_resolutions=resolutions,
            match_scores={
                d.event_id: {**best_edge[d.event_id].score.as_dict(), "confidence": best_edge[d.event_id].confidence}
                for d in duplicates
            },
            preview=preview,
        )

        if status == DecisionStatus.AUTO_MERGE:
            report.decisions.append(decision)
            report.states[primary.event_id] = EventState.PRIMARY.value
            for duplicate in duplicates:
                report.states[duplicate.event_id] = merged_into(primary.event_id)
        else:
            report.review_queue.append(decision)
            for event_id in member_ids:
                report.states[event_id] = EventState.CLUSTERED.value
        logger.info(
            f"Cluster {member_ids} -> {status.value} (primary {primary.event_id}, confidence {confidence:.2f})"
        )

    def _finish_stats(
        self,
        report: DeduplicationReport,
        started: float,
        comparisons_before: int,
        candidate_pairs: int,
    ) -> None:
        report.stats.update(
            {
                "events": len(report.events),
                "candidate_pairs": candidate_pairs,
                "comparisons": self.scorer.comparisons - comparisons_before,
                "clusters": len(report.decisions) + len(report.review_queue),
                "auto_merged": len(report.decisions),
                "needs_review": len(report.review_queue),
                "discarded_clusters": len(report.discarded_clusters),
                "rejected": len(report.errors),
                "duration_ms": round((time.perf_counter() - started) * 1000, 3),
                "caches": self.get_cache_stats(),
            }
        )
