# Persistence layer for deduplicated events
"""
Persistence Layer for Event Ingestion.

Writes forwarded NormalizedEvents and merge outcomes to PostgreSQL:
- upserts keyed by (external_id, source), carrying the cached-at timestamp
- absorbed records marked inactive and pointed at their primary
- one audit row per MergeDecision

Every public call runs in its own transaction: commit on success, rollback
and PersistenceError on failure.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Protocol

import psycopg2
from psycopg2.extras import Json, execute_values

from eventfusion.configs.settings import Settings, get_settings
from eventfusion.exceptions import PersistenceError
from eventfusion.ingestion.deduplication.engine import DeduplicationReport
from eventfusion.schemas.dedup import MergeDecision
from eventfusion.schemas.event import NormalizedEvent

logger = logging.getLogger(__name__)

EVENT_COLUMNS = (
    "event_id",
    "external_id",
    "source",
    "title",
    "description",
    "start_utc",
    "end_utc",
    "timezone",
    "venue_name",
    "venue_address",
    "city",
    "latitude",
    "longitude",
    "category",
    "tags",
    "price_min",
    "price_max",
    "currency",
    "ticket_url",
    "image_url",
    "is_free",
    "is_official",
    "is_verified",
    "ingested_at",
    "updated_at",
    "cached_at",
)

# Columns refreshed when an existing (external_id, source) row is upserted.
_UPDATABLE = [c for c in EVENT_COLUMNS if c not in ("event_id", "external_id", "source", "ingested_at")]

UPSERT_EVENTS_SQL = f"""
    INSERT INTO events ({", ".join(EVENT_COLUMNS)}, is_active)
    VALUES %s
    ON CONFLICT (external_id, source) DO UPDATE SET
        {", ".join(f"{c} = EXCLUDED.{c}" for c in _UPDATABLE)},
        is_active = TRUE,
        merged_into = NULL
"""

MARK_MERGED_SQL = """
    UPDATE events
    SET is_active = FALSE,
        merged_into = %s,
        updated_at = %s
    WHERE event_id = ANY(%s)
"""

INSERT_DECISION_SQL = """
    INSERT INTO event_merge_decisions (
        decision_id, primary_event_id, duplicate_event_ids, merge_strategy,
        confidence, status, reasons, field_resolutions, similarity_scores,
        created_at
    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
    ON CONFLICT (decision_id) DO NOTHING
"""


class EventWriter(Protocol):
    """Storage contract consumed by the orchestrator."""

    def upsert_events(self, events: Sequence[NormalizedEvent], cached_at: datetime | None = None) -> int: ...

    def mark_merged(self, decision: MergeDecision) -> int: ...

    def record_decision(self, decision: MergeDecision) -> None: ...


class EventDataWriter:
    """
    Persist NormalizedEvents and merge decisions on a psycopg2 connection.

    Implements the 'Data Mapper' pattern between the pipeline models and
    the `events` / `event_merge_decisions` tables.
    """

    def __init__(self, db_connection) -> None:
        """Initialize with an active psycopg2 connection."""
        self.conn = db_connection

    @contextmanager
    def _transaction(self, operation: str) -> Iterator:
        try:
            with self.conn.cursor() as cur:
                yield cur
            self.conn.commit()
        except Exception as e:
            self.conn.rollback()
            logger.error(f"{operation} failed, rolled back: {e}")
            raise PersistenceError(f"{operation} failed: {e}") from e

    @staticmethod
    def _event_row(event: NormalizedEvent, cached_at: datetime) -> tuple:
        payload = event.to_storage_dict(cached_at=cached_at)
        row = []
        for column in EVENT_COLUMNS:
            value = payload.get(column)
            row.append(Json(value) if column == "tags" else value)
        row.append(True)
        return tuple(row)

    def upsert_events(self, events: Sequence[NormalizedEvent], cached_at: datetime | None = None) -> int:
        """
        Upsert events keyed by (external_id, source).

        Returns:
            Number of rows written
        """
        if not events:
            return 0
        cached_at = cached_at or datetime.now(timezone.utc)
        rows = [self._event_row(event, cached_at) for event in events]

        with self._transaction(f"Upsert of {len(rows)} events") as cur:
            execute_values(cur, UPSERT_EVENTS_SQL, rows)
        logger.info(f"Upserted {len(rows)} events")
        return len(rows)

    def mark_merged(self, decision: MergeDecision) -> int:
        """Deactivate absorbed records and point them at the primary."""
        if not decision.duplicate_event_ids:
            return 0
        with self._transaction(f"Marking duplicates of {decision.primary_event_id}") as cur:
            cur.execute(
                MARK_MERGED_SQL,
                (decision.primary_event_id, datetime.now(timezone.utc), list(decision.duplicate_event_ids)),
            )
            updated = cur.rowcount
        logger.info(f"Marked {updated} records as merged into {decision.primary_event_id}")
        return updated

    def record_decision(self, decision: MergeDecision) -> None:
        """Write the audit row for one decision."""
        record = decision.to_audit_record()
        with self._transaction(f"Recording decision {decision.decision_id}") as cur:
            cur.execute(
                INSERT_DECISION_SQL,
                (
                    record["decision_id"],
                    record["primary_event_id"],
                    Json(record["duplicate_event_ids"]),
                    record["merge_strategy"],
                    record["confidence"],
                    record["status"],
                    Json(record["reasons"]),
                    Json(record["field_resolutions"]),
                    Json(record["similarity_scores"]),
                    record["created_at"],
                ),
            )


def connect(settings: Settings | None = None):
    """Open a psycopg2 connection from Settings.DATABASE_URL."""
    settings = settings or get_settings()
    return psycopg2.connect(**settings.get_psycopg2_params())


def persist_report(writer: EventWriter, report: DeduplicationReport) -> int:
    """
    Write one deduplication report: forwarded events, then merge outcomes.

    Review-pending decisions get an audit row only; their records stay active.

    Returns:
        Number of event rows written
    """
    written = writer.upsert_events(report.forward_events())
    for decision in report.decisions:
        writer.mark_merged(decision)
        writer.record_decision(decision)
    for decision in report.review_queue:
        writer.record_decision(decision)
    return written
