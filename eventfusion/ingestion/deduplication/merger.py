"""
Primary selection and field-level conflict resolution.

Given one duplicate cluster, the merger picks the primary record, resolves
every field whose value differs across members with the configured
ConflictStrategy, and builds the merged preview that would be stored.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable, Sequence
from typing import Any

from eventfusion.ingestion.normalization.quality import completeness_score
from eventfusion.schemas.dedup import (
    MERGEABLE_FIELDS,
    ConflictStrategy,
    DedupConfig,
    FieldResolution,
    ResolutionKind,
)
from eventfusion.schemas.event import NormalizedEvent

logger = logging.getLogger(__name__)

QualityFn = Callable[[NormalizedEvent], float]


def primary_sort_key(event: NormalizedEvent, quality_fn: QualityFn = completeness_score) -> tuple:
    """verified/official first, then completeness, earliest ingested, smallest external id."""
    return (
        -int(event.is_verified or event.is_official),
        -quality_fn(event),
        event.ingested_at,
        event.external_id,
        event.source.value,
    )


def select_primary(
    members: Sequence[NormalizedEvent],
    quality_fn: QualityFn = completeness_score,
) -> NormalizedEvent:
    """Deterministically choose the cluster member that stays visible."""
    if not members:
        raise ValueError("cannot select a primary from an empty cluster")
    return min(members, key=lambda event: primary_sort_key(event, quality_fn))


def _comparable(value: Any) -> Any:
    if isinstance(value, list):
        return tuple(value)
    return value


def _size(value: Any) -> float:
    """How much information a value carries, for most_complete."""
    if value is None:
        return -1
    if isinstance(value, (str, list, tuple)):
        return len(value)
    return 0


class FieldResolver:
    """
    Resolve differing fields across a cluster.

    Strategies come from `DedupConfig.field_strategies` with
    `default_conflict_strategy` for anything unlisted.
    """

    def __init__(self, config: DedupConfig, quality_fn: QualityFn = completeness_score):
        self.config = config
        self.quality_fn = quality_fn

    def resolve(
        self,
        primary: NormalizedEvent,
        duplicates: Sequence[NormalizedEvent],
    ) -> list[FieldResolution]:
        members = [primary, *duplicates]
        resolutions = []
        for name in MERGEABLE_FIELDS:
            values = [getattr(member, name) for member in members]
            if len({_comparable(v) for v in values}) <= 1:
                continue
            resolutions.append(self.resolve_field(name, members, values))
        return resolutions

    def resolve_field(
        self,
        name: str,
        members: Sequence[NormalizedEvent],
        values: Sequence[Any],
    ) -> FieldResolution:
        """members[0] is the primary; values line up with members."""
        strategy = self.config.strategy_for(name)
        primary_value = values[0]
        candidates = [(m, v) for m, v in zip(members, values) if v is not None and v != []]
        needs_review = False
        kind = ResolutionKind.for_strategy(strategy)
        source: NormalizedEvent | None

        if not candidates:
            selected, source = primary_value, members[0]
        elif strategy == ConflictStrategy.PRIMARY_WINS:
            if primary_value is not None:
                selected, source = primary_value, members[0]
            else:
                source, selected = max(candidates, key=lambda c: _size(c[1]))
                kind = ResolutionKind.MOST_COMPLETE
        elif strategy == ConflictStrategy.LATEST_WINS:
            # stable: the primary wins ties
            source, selected = max(candidates, key=lambda c: c[0].updated_at)
        elif strategy == ConflictStrategy.MOST_COMPLETE:
            source, selected = max(candidates, key=lambda c: _size(c[1]))
        elif strategy == ConflictStrategy.HIGHEST_QUALITY:
            source, selected = max(
                candidates,
                key=lambda c: (int(c[0].is_verified or c[0].is_official), self.quality_fn(c[0])),
            )
        elif strategy == ConflictStrategy.MERGE_VALUES:
            merged = self._merge_values(name, [v for _, v in candidates])
            if merged is None:
                source, selected = max(candidates, key=lambda c: _size(c[1]))
                kind = ResolutionKind.MOST_COMPLETE
            else:
                selected, source = merged, None
        else:
            selected, source = primary_value, members[0]
            needs_review = True

        return FieldResolution(
            field=name,
            primary_value=primary_value,
            duplicate_values=list(values[1:]),
            selected_value=selected,
            source_event_id=source.event_id if source is not None else None,
            strategy=kind,
            confidence=self._agreement(values, selected, merged=source is None),
            needs_manual_review=needs_review,
        )

    @staticmethod
    def _merge_values(name: str, values: Sequence[Any]) -> Any:
        if name == "tags":
            merged: list[str] = []
            for tags in values:
                merged.extend(tag for tag in tags if tag not in merged)
            return merged
        if name == "price_min":
            return min(values)
        if name == "price_max":
            return max(values)
        if all(isinstance(v, bool) for v in values):
            return any(values)
        return None

    @staticmethod
    def _agreement(values: Sequence[Any], selected: Any, merged: bool) -> float:
        """Share of members holding the winning value (or the modal value for merges)."""
        comparable = [_comparable(v) for v in values]
        if merged:
            agreeing = Counter(comparable).most_common(1)[0][1]
        else:
            agreeing = comparable.count(_comparable(selected))
        return round(agreeing / len(values), 6)


def build_preview(primary: NormalizedEvent, resolutions: Sequence[FieldResolution]) -> NormalizedEvent:
    """The primary with every resolved field applied, re-validated."""
    data = primary.model_dump()
    for resolution in resolutions:
        data[resolution.field] = resolution.selected_value
    return NormalizedEvent.model_validate(data)
