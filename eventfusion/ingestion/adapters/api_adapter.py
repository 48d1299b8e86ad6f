"""
API Source Adapter.

Adapter for fetching raw event payloads from REST / GraphQL provider APIs.
Retries are not done here: HTTP and transport errors propagate to the
TaskSpawner, whose linear backoff covers every source uniformly.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import httpx

from eventfusion.configs.settings import Settings, get_settings
from eventfusion.exceptions import ConfigurationError
from eventfusion.ingestion.adapters.base_adapter import AdapterConfig, BaseSourceAdapter, FetchResult
from eventfusion.ingestion.normalization.normalizer import get_path
from eventfusion.schemas.event import EventSource

logger = logging.getLogger(__name__)


@dataclass
class APIAdapterConfig(AdapterConfig):
    """Configuration for API-based adapters."""

    base_url: str = ""
    api_key: str | None = None
    # query parameter carrying the key; a bearer header is sent when unset
    api_key_param: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    # dot path to the list of events in the response body
    results_path: str | None = None

    # GraphQL specific
    graphql_endpoint: str | None = None
    graphql_query: str | None = None


class APIAdapter(BaseSourceAdapter):
    """
    Adapter for API-based data sources.

    Supports:
    - REST (GET with query params) and GraphQL (POST) requests
    - Optional per-request rate limiting
    - Bearer or query-parameter API keys
    - Custom query builders and response parsers
    """

    def __init__(
        self,
        config: APIAdapterConfig,
        query_builder: Callable[..., dict] | None = None,
        response_parser: Callable[[dict], list[dict]] | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize the API adapter.

        Args:
            config: APIAdapterConfig with API settings
            query_builder: Function to build query/request body from kwargs
            response_parser: Function to extract the payload list from a response
            client: Pre-built client (tests inject one with a mock transport)
        """
        self.query_builder = query_builder
        self.response_parser = response_parser
        self._client = client
        super().__init__(config)

    @property
    def api_config(self) -> APIAdapterConfig:
        return self.config  # type: ignore[return-value]

    def _validate_config(self) -> None:
        if not self.api_config.base_url and not self.api_config.graphql_endpoint:
            raise ConfigurationError(f"API adapter for {self.source.value} requires base_url or graphql_endpoint")
        if self.api_config.graphql_endpoint and not self.api_config.graphql_query:
            raise ConfigurationError(f"GraphQL adapter for {self.source.value} requires graphql_query")

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None:
            headers = {"Accept": "application/json", **self.api_config.headers}
            if self.api_config.api_key and not self.api_config.api_key_param:
                headers["Authorization"] = f"Bearer {self.api_config.api_key}"
            self._client = httpx.AsyncClient(headers=headers, timeout=self.api_config.request_timeout)
        return self._client

    async def fetch(self, **kwargs) -> FetchResult:
        """
        Fetch one page of payloads.

        Args:
            **kwargs: Parameters passed to query_builder
                Common: city, page_size, start_date

        Returns:
            FetchResult with raw payloads

        Raises:
            httpx.HTTPError: Transport failure or non-2xx response
        """
        fetch_started = datetime.now(timezone.utc)
        query_data = self.query_builder(**kwargs) if self.query_builder else dict(kwargs)

        response = await self._make_request(self._get_client(), query_data)
        data = self.response_parser(response) if self.response_parser else self._default_response_parser(response)

        self.logger.info(f"Fetched {len(data)} raw {self.source.value} payloads")
        return FetchResult(
            success=True,
            source=self.source,
            raw_data=data,
            total_fetched=len(data),
            metadata={"api_calls": 1, "total_available": self._extract_total_available(response, data)},
            fetch_started_at=fetch_started,
            fetch_ended_at=datetime.now(timezone.utc),
        )

    async def _make_request(self, client: httpx.AsyncClient, query_data: dict) -> Any:
        config = self.api_config
        if config.rate_limit_per_second:
            await asyncio.sleep(1.0 / config.rate_limit_per_second)

        if config.graphql_endpoint:
            response = await client.post(
                config.graphql_endpoint,
                json={"query": config.graphql_query, "variables": query_data},
            )
        else:
            params = dict(query_data)
            if config.api_key and config.api_key_param:
                params[config.api_key_param] = config.api_key
            response = await client.get(config.base_url, params=params)

        response.raise_for_status()
        return response.json()

    def _extract_total_available(self, response: Any, data: list) -> int:
        """
        Extract total available count from the API response.

        Override in subclasses to navigate source-specific response structures.
        """
        if isinstance(response, dict):
            total = get_path(response, "page.totalElements") or response.get("total")
            if isinstance(total, int):
                return total
        return len(data)

    def _default_response_parser(self, response: Any) -> list[dict]:
        if self.api_config.results_path:
            found = get_path(response, self.api_config.results_path)
            return [item for item in found or [] if isinstance(item, dict)]
        if isinstance(response, list):
            return [item for item in response if isinstance(item, dict)]
        if isinstance(response, dict) and "data" in response:
            return response["data"] if isinstance(response["data"], list) else [response["data"]]
        return [response]

    async def close(self) -> None:
        """Close async HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None


# ============================================================================
# PROVIDER PRESETS
# ============================================================================

PROVIDER_PRESETS: dict[EventSource, dict[str, Any]] = {
    EventSource.EVENTBRITE: {
        "base_url": "https://www.eventbriteapi.com/v3/events/search/",
        "results_path": "events",
        "settings_key": "EVENTBRITE_API_KEY",
    },
    EventSource.TICKETMASTER: {
        "base_url": "https://app.ticketmaster.com/discovery/v2/events.json",
        "results_path": "_embedded.events",
        "api_key_param": "apikey",
        "settings_key": "TICKETMASTER_API_KEY",
    },
    EventSource.YELP: {
        "base_url": "https://api.yelp.com/v3/events",
        "results_path": "events",
        "settings_key": "YELP_API_KEY",
    },
}


def create_api_adapter(
    source: EventSource | str,
    settings: Settings | None = None,
    fallback_timezone: str | None = None,
    **overrides,
) -> APIAdapter:
    """
    Build an APIAdapter for a known provider using keys from Settings.

    Raises:
        ConfigurationError: No preset for the source, or its API key is unset
    """
    settings = settings or get_settings()
    event_source = EventSource(source)
    preset = PROVIDER_PRESETS.get(event_source)
    if preset is None:
        raise ConfigurationError(f"No API preset for source '{event_source.value}'")

    secret = getattr(settings, preset["settings_key"])
    if secret is None:
        raise ConfigurationError(f"{preset['settings_key']} is not set")

    values = {k: v for k, v in preset.items() if k != "settings_key"}
    values.update(overrides)
    config = APIAdapterConfig(
        source=event_source,
        api_key=secret.get_secret_value(),
        fallback_timezone=fallback_timezone,
        **values,
    )
    return APIAdapter(config)
