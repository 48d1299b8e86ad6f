"""
Ingestion Orchestrator.

Coordinates one ingestion run across every registered source:

    adapters --(TaskSpawner)--> raw payloads --> normalize_batch
        --> DeduplicationEngine --> EventWriter

Source fetches run as spawner tasks, so a flaky provider is retried with the
spawner's backoff while the other sources keep going. Per-source failures and
skipped records are collected on the run result; they never abort the run.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from eventfusion.ingestion.adapters.base_adapter import BaseSourceAdapter, FetchResult
from eventfusion.ingestion.deduplication.engine import DeduplicationEngine, DeduplicationReport
from eventfusion.ingestion.normalization.normalizer import NormalizationBatchResult, SkippedRecord, normalize_batch
from eventfusion.ingestion.persist import EventWriter, persist_report
from eventfusion.ingestion.spawner import SpawnResult, SpawnTask, TaskSpawner
from eventfusion.monitoring.logging import with_context
from eventfusion.schemas.event import NormalizedEvent

logger = logging.getLogger(__name__)


@dataclass
class TaskError:
    """A source whose fetch task failed after every retry."""

    task_id: str
    source: str
    reason: str


@dataclass
class SourceOutcome:
    """What one adapter task produced."""

    fetch: FetchResult
    batch: NormalizationBatchResult


@dataclass
class IngestionRunResult:
    """Result of one orchestrated ingestion run."""

    run_id: str
    events: list[NormalizedEvent] = field(default_factory=list)
    report: DeduplicationReport | None = None
    task_results: list[SpawnResult] = field(default_factory=list)
    task_errors: list[TaskError] = field(default_factory=list)
    skipped: list[SkippedRecord] = field(default_factory=list)
    persisted: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    ended_at: datetime | None = None

    @property
    def duration_seconds(self) -> float:
        if self.ended_at:
            return (self.ended_at - self.started_at).total_seconds()
        return 0.0

    def summary(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "sources": len(self.task_results),
            "failed_sources": [{"task_id": e.task_id, "source": e.source, "reason": e.reason} for e in self.task_errors],
            "skipped_records": [{"source": s.source, "record_id": s.record_id, "reason": s.reason} for s in self.skipped],
            "forwarded_events": len(self.events),
            "persisted": self.persisted,
            "deduplication": self.report.summary() if self.report else None,
            "duration_seconds": self.duration_seconds,
        }


class IngestionOrchestrator:
    """
    Run every registered adapter through normalization and deduplication.

    Responsibilities:
    - Register source adapters (with an optional fallback timezone each)
    - Fetch all sources concurrently through the TaskSpawner
    - Deduplicate the combined batch and hand results to the writer
    """

    def __init__(
        self,
        adapters: list[BaseSourceAdapter] | None = None,
        spawner: TaskSpawner | None = None,
        engine: DeduplicationEngine | None = None,
        writer: EventWriter | None = None,
        fallback_timezones: dict[str, str] | None = None,
    ):
        self.spawner = spawner or TaskSpawner()
        self.engine = engine or DeduplicationEngine()
        self.writer = writer
        self.adapters: dict[str, BaseSourceAdapter] = {}
        self.fallback_timezones: dict[str, str] = dict(fallback_timezones or {})
        for adapter in adapters or []:
            self.register_adapter(adapter)

    # ========================================================================
    # ADAPTER MANAGEMENT
    # ========================================================================

    def register_adapter(self, adapter: BaseSourceAdapter, fallback_timezone: str | None = None) -> None:
        """
        Register a source adapter.

        Args:
            adapter: Configured adapter; one per source
            fallback_timezone: Timezone for naive local times from this source
        """
        source = adapter.source.value
        self.adapters[source] = adapter
        if fallback_timezone:
            self.fallback_timezones[source] = fallback_timezone
        logger.info(f"Registered adapter: {source} ({type(adapter).__name__})")

    def _fallback_for(self, adapter: BaseSourceAdapter) -> str | None:
        return self.fallback_timezones.get(adapter.source.value) or adapter.fallback_timezone

    # ========================================================================
    # EXECUTION
    # ========================================================================

    async def run(self, **fetch_kwargs) -> IngestionRunResult:
        """
        Execute one ingestion run over all registered adapters.

        Args:
            **fetch_kwargs: Passed to every adapter's fetch()

        Returns:
            IngestionRunResult with forwarded events, the deduplication
            report and every per-source failure
        """
        result = IngestionRunResult(run_id=uuid.uuid4().hex[:12])
        log = with_context(logger, run_id=result.run_id)
        log.info(f"Starting ingestion run over {len(self.adapters)} source(s)")

        tasks = [
            SpawnTask(name=f"fetch:{source}", handler=self._make_handler(fetch_kwargs), data=adapter)
            for source, adapter in self.adapters.items()
        ]
        result.task_results = await self.spawner.spawn_batch(tasks)

        events: list[NormalizedEvent] = []
        for source, task_result in zip(self.adapters, result.task_results):
            if not task_result.success:
                result.task_errors.append(
                    TaskError(task_id=task_result.task_id, source=source, reason=task_result.error_message or "unknown")
                )
                with_context(logger, run_id=result.run_id, source=source).error(
                    f"Source fetch failed after {task_result.attempts} attempt(s): {task_result.error_message}"
                )
                continue
            outcome: SourceOutcome = task_result.data
            events.extend(outcome.batch.events)
            result.skipped.extend(outcome.batch.skipped)

        # CPU-bound, run off the event loop
        result.report = await asyncio.to_thread(self.engine.deduplicate, events)
        result.events = result.report.forward_events()

        if self.writer is not None:
            result.persisted = await asyncio.to_thread(persist_report, self.writer, result.report)

        result.ended_at = datetime.now(timezone.utc)
        log.info(
            f"Ingestion run complete: {len(events)} normalized, {len(result.events)} forwarded, "
            f"{len(result.report.decisions)} auto-merged, {len(result.report.review_queue)} for review, "
            f"{len(result.task_errors)} failed source(s)"
        )
        return result

    def _make_handler(self, fetch_kwargs: dict[str, Any]):
        async def fetch_and_normalize(adapter: BaseSourceAdapter) -> SourceOutcome:
            fetched = await adapter.fetch(**fetch_kwargs)
            batch = normalize_batch(fetched.raw_data, adapter.source, self._fallback_for(adapter))
            return SourceOutcome(fetch=fetched, batch=batch)

        return fetch_and_normalize

    async def close(self) -> None:
        """Shut down the spawner and release adapter resources."""
        await self.spawner.shutdown()
        for adapter in self.adapters.values():
            await adapter.close()
