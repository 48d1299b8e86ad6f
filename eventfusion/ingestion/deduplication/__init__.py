"""
Deduplication of normalized events across sources.

- fingerprint: cached, versioned EventFingerprints
- matcher: weighted multi-signal similarity with hard floors
- clustering: candidate blocking and union-find clusters
- merger: primary selection and per-field conflict resolution
- engine: DeduplicationEngine producing MergeDecisions
"""

from .engine import DeduplicationEngine, DeduplicationReport, EventState

__all__ = [
    "DeduplicationEngine",
    "DeduplicationReport",
    "EventState",
]
