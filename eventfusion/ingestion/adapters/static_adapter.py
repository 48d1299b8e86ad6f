"""Adapter serving in-memory payloads: manual submissions, imports, fixtures."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from eventfusion.exceptions import ConfigurationError
from eventfusion.ingestion.adapters.base_adapter import AdapterConfig, BaseSourceAdapter, FetchResult
from eventfusion.ingestion.normalization.time_resolver import load_zone
from eventfusion.schemas.event import EventSource


class StaticAdapter(BaseSourceAdapter):
    """Return a fixed list of raw payloads for one source."""

    def __init__(
        self,
        source: EventSource | str,
        records: list[dict[str, Any]],
        fallback_timezone: str | None = None,
    ):
        self.records = list(records)
        super().__init__(AdapterConfig(source=EventSource(source), fallback_timezone=fallback_timezone))

    def _validate_config(self) -> None:
        tz_name = self.config.fallback_timezone
        if tz_name and load_zone(tz_name) is None:
            raise ConfigurationError(f"Unknown fallback timezone '{tz_name}' for {self.source.value}")

    async def fetch(self, **kwargs) -> FetchResult:
        started = datetime.now(timezone.utc)
        return FetchResult(
            success=True,
            source=self.source,
            raw_data=list(self.records),
            total_fetched=len(self.records),
            metadata={"static": True},
            fetch_started_at=started,
            fetch_ended_at=datetime.now(timezone.utc),
        )
