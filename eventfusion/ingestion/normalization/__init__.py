"""
Normalization module for event data.

This package provides:
- normalize / normalize_batch: per-source payload to NormalizedEvent
- time_resolver: UTC start resolution from explicit, local or inferred timezones
- CurrencyParser: Price string parsing utilities
- assess_quality: Completeness / accuracy / consistency / timeliness scoring
"""

from .normalizer import NormalizationBatchResult, SkippedRecord, normalize, normalize_batch

__all__ = [
    "normalize",
    "normalize_batch",
    "NormalizationBatchResult",
    "SkippedRecord",
]
