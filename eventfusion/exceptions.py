"""
Exception hierarchy for the eventfusion pipeline.

Only configuration errors are fatal. Everything else is raised at the level of
a single task or record and collected into the batch-level result structures.
"""

from __future__ import annotations


class EventFusionError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(EventFusionError, ValueError):
    """Invalid or incomplete configuration detected at startup."""


class SpawnerConfigError(ConfigurationError):
    """Invalid TaskSpawner configuration."""


class SpawnerShutdownError(EventFusionError):
    """Raised when a task is submitted to (or flushed by) a stopping spawner."""


class TaskTimeoutError(EventFusionError, TimeoutError):
    """A task attempt did not finish within the configured timeout."""

    def __init__(self, task_name: str, timeout_ms: int):
        self.task_name = task_name
        self.timeout_ms = timeout_ms
        super().__init__(f"Task '{task_name}' timed out after {timeout_ms}ms")


class NormalizationError(EventFusionError, ValueError):
    """A raw payload could not be mapped to a NormalizedEvent."""

    def __init__(self, reason: str, source: str | None = None, record_id: str | None = None):
        self.reason = reason
        self.source = source
        self.record_id = record_id
        prefix = f"[{source}:{record_id}] " if source or record_id else ""
        super().__init__(f"{prefix}{reason}")


class UnsupportedSourceError(NormalizationError):
    """No normalizer is registered for the given source tag."""


class FingerprintError(EventFusionError, ValueError):
    """An event lacks the data needed to build a fingerprint."""

    def __init__(self, event_id: str, reason: str):
        self.event_id = event_id
        self.reason = reason
        super().__init__(f"Cannot fingerprint event '{event_id}': {reason}")


class PersistenceError(EventFusionError):
    """A storage write failed and was rolled back."""
