"""
Task Spawner.

Bounded-concurrency execution engine for ingestion work: one task per source
fetch, or per batch of records to deduplicate.

- At most `max_workers` attempts are in flight at any moment; extra tasks
  wait in a FIFO queue.
- Every attempt races the handler against `timeout_ms`. On timeout the caller
  is released; the handler itself keeps running in the background.
- Failed or timed-out attempts are retried as fresh workers after a linear
  backoff (`retry_delay_ms * attempts`), up to `retry_attempts` retries.
- `spawn_batch` never raises for an individual task: each result reports its
  own success or failure, in input order.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
import uuid
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from eventfusion.exceptions import SpawnerConfigError, SpawnerShutdownError, TaskTimeoutError

logger = logging.getLogger(__name__)

TaskHandler = Callable[[Any], Awaitable[Any]]
ResultHook = Callable[["SpawnResult"], Any]


class SpawnStatus(str, Enum):
    """Lifecycle of a spawner instance."""

    IDLE = "idle"
    PROCESSING = "processing"
    STOPPING = "stopping"
    STOPPED = "stopped"


class WorkerStatus(str, Enum):
    RUNNING = "running"


@dataclass
class SpawnConfig:
    """Spawner limits and observability hooks."""

    max_workers: int = 5
    timeout_ms: int = 30_000
    retry_attempts: int = 3
    retry_delay_ms: int = 1_000
    on_error: ResultHook | None = None
    on_complete: ResultHook | None = None

    def __post_init__(self):
        if self.max_workers < 1:
            raise SpawnerConfigError(f"max_workers must be >= 1, got {self.max_workers}")
        if self.timeout_ms <= 0:
            raise SpawnerConfigError(f"timeout_ms must be > 0, got {self.timeout_ms}")
        if self.retry_attempts < 0:
            raise SpawnerConfigError(f"retry_attempts must be >= 0, got {self.retry_attempts}")
        if self.retry_delay_ms < 0:
            raise SpawnerConfigError(f"retry_delay_ms must be >= 0, got {self.retry_delay_ms}")

    @classmethod
    def from_settings(cls, settings, **overrides) -> "SpawnConfig":
        """Build a config from Settings.SPAWNER_* values."""
        values = {
            "max_workers": settings.SPAWNER_MAX_WORKERS,
            "timeout_ms": settings.SPAWNER_TIMEOUT_MS,
            "retry_attempts": settings.SPAWNER_RETRY_ATTEMPTS,
            "retry_delay_ms": settings.SPAWNER_RETRY_DELAY_MS,
        }
        values.update(overrides)
        return cls(**values)


@dataclass
class SpawnTask:
    """A unit of work: an async handler and the payload passed to it."""

    name: str
    handler: TaskHandler
    data: Any = None
    task_id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass
class SpawnWorker:
    """Runtime record of one in-flight attempt."""

    worker_id: str
    task: SpawnTask
    attempts: int
    status: WorkerStatus = WorkerStatus.RUNNING
    started_at: float = field(default_factory=time.monotonic)


@dataclass
class SpawnResult:
    """Terminal outcome of one task."""

    task_id: str
    task_name: str
    success: bool
    attempts: int
    duration_ms: float
    data: Any = None
    error: BaseException | None = None
    worker_id: str | None = None

    @property
    def error_message(self) -> str | None:
        return str(self.error) if self.error is not None else None


@dataclass
class SpawnMetrics:
    total_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    retried_attempts: int = 0
    timeouts: int = 0
    peak_workers: int = 0
    average_duration_ms: float = 0.0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class _QueuedTask:
    task: SpawnTask
    slot: asyncio.Future


class TaskSpawner:
    """
    Run async tasks under a fixed concurrency ceiling.

    The worker map and queue are private to one instance and are only mutated
    from the event loop thread, so no locking is required.

    Usage:
        spawner = TaskSpawner(SpawnConfig(max_workers=2, timeout_ms=5_000))
        results = await spawner.spawn_batch([SpawnTask("fetch", fetch_source, "yelp")])
        await spawner.shutdown()
    """

    def __init__(self, config: SpawnConfig | None = None):
        self.config = config or SpawnConfig()
        self.workers: dict[str, SpawnWorker] = {}
        self.metrics = SpawnMetrics()
        self.status = SpawnStatus.IDLE
        self._queue: deque[_QueuedTask] = deque()
        self._reserved_slots = 0
        self._accepting = True
        self._active_calls = 0
        # handlers released by a timeout; referenced so they aren't collected mid-flight
        self._detached: set[asyncio.Future] = set()

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    async def spawn(self, task: SpawnTask) -> SpawnResult:
        """
        Run one task, queueing it if every worker slot is busy.

        Raises:
            SpawnerShutdownError: If shutdown() has already been called
        """
        if not self._accepting:
            raise SpawnerShutdownError(f"Spawner is {self.status.value}; rejected task '{task.name}'")
        self.metrics.total_tasks += 1
        self._begin()
        try:
            return await self._run_task(task)
        finally:
            self._end()

    async def spawn_batch(self, tasks: list[SpawnTask]) -> list[SpawnResult]:
        """
        Run all tasks concurrently (subject to the ceiling).

        Returns:
            One SpawnResult per task, in input order
        """
        self._begin()
        try:
            return list(await asyncio.gather(*(self._spawn_safely(t) for t in tasks)))
        finally:
            self._end()

    def get_status(self) -> dict[str, Any]:
        """Snapshot of status, worker/queue sizes and metrics."""
        return {
            "status": self.status.value,
            "workers": len(self.workers),
            "queued": len(self._queue),
            "metrics": asdict(self.metrics),
        }

    async def shutdown(self) -> None:
        """
        Stop accepting tasks and drain.

        Waits up to 2 * timeout for in-flight workers, then force-clears any
        stragglers and fails every queued task. Always returns.
        """
        self._accepting = False
        self.status = SpawnStatus.STOPPING

        deadline = time.monotonic() + (2 * self.config.timeout_ms) / 1000
        while self.workers and time.monotonic() < deadline:
            await asyncio.sleep(min(0.05, max(0.0, deadline - time.monotonic())))

        if self.workers:
            logger.warning(
                f"shutdown:forced - clearing {len(self.workers)} unfinished worker(s)",
                extra={"event": "shutdown:forced"},
            )
            self.workers.clear()
        self._reserved_slots = 0

        flushed = 0
        while self._queue:
            queued = self._queue.popleft()
            if not queued.slot.done():
                queued.slot.set_exception(
                    SpawnerShutdownError(f"Spawner shut down before task '{queued.task.name}' started")
                )
                flushed += 1

        self.status = SpawnStatus.STOPPED
        logger.info(f"shutdown:complete ({flushed} queued task(s) flushed)", extra={"event": "shutdown:complete"})

    # ========================================================================
    # EXECUTION
    # ========================================================================

    def _begin(self) -> None:
        self._active_calls += 1
        if self._accepting:
            self.status = SpawnStatus.PROCESSING

    def _end(self) -> None:
        self._active_calls -= 1
        if self._active_calls == 0 and self._accepting:
            self.status = SpawnStatus.IDLE

    async def _spawn_safely(self, task: SpawnTask) -> SpawnResult:
        try:
            return await self.spawn(task)
        except SpawnerShutdownError as e:
            return SpawnResult(
                task_id=task.task_id,
                task_name=task.name,
                success=False,
                attempts=0,
                duration_ms=0.0,
                error=e,
            )

    async def _run_task(self, task: SpawnTask) -> SpawnResult:
        """Attempt loop: acquire a slot, execute, retry with linear backoff."""
        started = time.monotonic()
        attempts = 0

        while True:
            try:
                await self._acquire_slot(task)
            except SpawnerShutdownError as e:
                return await self._finish(task, started, attempts, None, error=e)

            attempts += 1
            worker = self._start_worker(task, attempts)

            try:
                data = await self._execute_with_timeout(task)
            except Exception as e:
                self._release(worker)
                if isinstance(e, TaskTimeoutError):
                    self.metrics.timeouts += 1

                if attempts <= self.config.retry_attempts and self._accepting:
                    delay_ms = self.config.retry_delay_ms * attempts
                    self.metrics.retried_attempts += 1
                    logger.warning(
                        f"worker:retry - task '{task.name}' attempt {attempts} failed ({e}); "
                        f"retrying in {delay_ms}ms",
                        extra={"event": "worker:retry", "task": task.name, "worker_id": worker.worker_id},
                    )
                    await asyncio.sleep(delay_ms / 1000)
                    continue

                return await self._finish(task, started, attempts, worker.worker_id, error=e)

            self._release(worker)
            return await self._finish(task, started, attempts, worker.worker_id, data=data)

    async def _execute_with_timeout(self, task: SpawnTask) -> Any:
        """Race the handler against the timeout without cancelling the handler."""
        handler_future = asyncio.ensure_future(task.handler(task.data))
        done, _ = await asyncio.wait({handler_future}, timeout=self.config.timeout_ms / 1000)

        if handler_future in done:
            return handler_future.result()

        self._detached.add(handler_future)
        handler_future.add_done_callback(self._collect_detached)
        raise TaskTimeoutError(task.name, self.config.timeout_ms)

    def _collect_detached(self, future: asyncio.Future) -> None:
        self._detached.discard(future)
        if not future.cancelled() and future.exception() is not None:
            logger.debug(f"Detached handler finished with error: {future.exception()}")

    # ========================================================================
    # SLOT / WORKER BOOKKEEPING
    # ========================================================================

    async def _acquire_slot(self, task: SpawnTask) -> None:
        """Reserve a worker slot, waiting in FIFO order when at capacity."""
        if not self._accepting:
            raise SpawnerShutdownError(f"Spawner is {self.status.value}; task '{task.name}' not started")

        if self._reserved_slots < self.config.max_workers and not self._queue:
            self._reserved_slots += 1
            return

        slot = asyncio.get_running_loop().create_future()
        self._queue.append(_QueuedTask(task=task, slot=slot))
        logger.debug(
            f"task:queued - '{task.name}' ({len(self._queue)} in queue)",
            extra={"event": "task:queued", "task": task.name},
        )
        try:
            await slot
        except asyncio.CancelledError:
            # slot was granted but the caller went away: hand it back
            if slot.done() and not slot.cancelled() and slot.exception() is None:
                self._reserved_slots -= 1
                self._drain_queue()
            raise

    def _start_worker(self, task: SpawnTask, attempts: int) -> SpawnWorker:
        worker = SpawnWorker(worker_id=f"worker-{uuid.uuid4().hex[:12]}", task=task, attempts=attempts)
        self.workers[worker.worker_id] = worker
        self.metrics.peak_workers = max(self.metrics.peak_workers, len(self.workers))
        logger.debug(
            f"worker:start - '{task.name}' attempt {attempts}",
            extra={"event": "worker:start", "task": task.name, "worker_id": worker.worker_id},
        )
        return worker

    def _release(self, worker: SpawnWorker) -> None:
        """Remove a worker and promote queued tasks into the freed slot."""
        # force-cleared workers were already accounted for by shutdown()
        if self.workers.pop(worker.worker_id, None) is not None:
            self._reserved_slots -= 1
        self._drain_queue()

    def _drain_queue(self) -> None:
        if not self._accepting:
            return
        while self._queue and self._reserved_slots < self.config.max_workers:
            queued = self._queue.popleft()
            if queued.slot.done():
                continue
            self._reserved_slots += 1
            queued.slot.set_result(None)

    # ========================================================================
    # COMPLETION
    # ========================================================================

    async def _finish(
        self,
        task: SpawnTask,
        started: float,
        attempts: int,
        worker_id: str | None,
        data: Any = None,
        error: BaseException | None = None,
    ) -> SpawnResult:
        duration_ms = (time.monotonic() - started) * 1000
        result = SpawnResult(
            task_id=task.task_id,
            task_name=task.name,
            success=error is None,
            attempts=attempts,
            duration_ms=duration_ms,
            data=data,
            error=error,
            worker_id=worker_id,
        )

        if result.success:
            self.metrics.completed_tasks += 1
            completed = self.metrics.completed_tasks
            self.metrics.average_duration_ms += (duration_ms - self.metrics.average_duration_ms) / completed
            logger.info(
                f"worker:complete - '{task.name}' in {duration_ms:.0f}ms after {attempts} attempt(s)",
                extra={"event": "worker:complete", "task": task.name, "worker_id": worker_id},
            )
            await self._invoke_hook(self.config.on_complete, result)
        else:
            self.metrics.failed_tasks += 1
            logger.error(
                f"worker:error - '{task.name}' failed after {attempts} attempt(s): {error}",
                extra={"event": "worker:error", "task": task.name, "worker_id": worker_id},
            )
            await self._invoke_hook(self.config.on_error, result)

        return result

    async def _invoke_hook(self, hook: ResultHook | None, result: SpawnResult) -> None:
        if hook is None:
            return
        try:
            outcome = hook(result)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.exception(f"Observability hook failed for task '{result.task_name}'")


def create_spawner(**overrides) -> TaskSpawner:
    """Create a spawner from Settings defaults with keyword overrides."""
    from eventfusion.configs.settings import get_settings

    return TaskSpawner(SpawnConfig.from_settings(get_settings(), **overrides))
