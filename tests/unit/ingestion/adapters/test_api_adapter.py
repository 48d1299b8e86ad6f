"""
Unit tests for the api_adapter module.

Tests for APIAdapterConfig, APIAdapter and provider presets.
"""

import asyncio
import json

import httpx
import pytest

from eventfusion.configs.settings import Settings
from eventfusion.exceptions import ConfigurationError
from eventfusion.ingestion.adapters.api_adapter import (
    APIAdapter,
    APIAdapterConfig,
    create_api_adapter,
)
from eventfusion.schemas.event import EventSource

# =============================================================================
# TEST DATA
# =============================================================================


MOCK_API_RESPONSE = {
    "_embedded": {"events": [{"id": "tm-1", "name": "Event 1"}, {"id": "tm-2", "name": "Event 2"}]},
    "page": {"totalElements": 57},
}


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def api_config():
    """Create a basic API adapter config."""
    return APIAdapterConfig(
        source=EventSource.TICKETMASTER,
        base_url="https://api.example.com/events",
        api_key="secret",
        api_key_param="apikey",
        results_path="_embedded.events",
    )


@pytest.fixture
def graphql_config():
    """Create a GraphQL API adapter config."""
    return APIAdapterConfig(
        source=EventSource.MEETUP,
        graphql_endpoint="https://api.example.com/gql",
        graphql_query="query ($city: String!) { events(city: $city) { id } }",
        results_path="data.events",
    )


# =============================================================================
# TEST CLASSES
# =============================================================================


class TestAPIAdapterConfig:
    """Tests for APIAdapterConfig validation."""

    def test_requires_endpoint(self):
        with pytest.raises(ConfigurationError, match="base_url"):
            APIAdapter(APIAdapterConfig(source=EventSource.YELP))

    def test_graphql_requires_query(self):
        with pytest.raises(ConfigurationError, match="graphql_query"):
            APIAdapter(APIAdapterConfig(source=EventSource.MEETUP, graphql_endpoint="https://x.example.com"))


class TestAPIAdapterFetch:
    """Tests for APIAdapter.fetch()."""

    def test_rest_fetch(self, api_config):
        seen = {}

        def handler(request):
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json=MOCK_API_RESPONSE)

        adapter = APIAdapter(api_config, client=mock_client(handler))
        result = asyncio.run(adapter.fetch(city="Toronto", size=2))

        assert result.success is True
        assert result.source == EventSource.TICKETMASTER
        assert [p["id"] for p in result.raw_data] == ["tm-1", "tm-2"]
        assert result.total_fetched == 2
        assert result.metadata["total_available"] == 57
        assert seen["params"] == {"city": "Toronto", "size": "2", "apikey": "secret"}

    def test_query_builder_and_parser(self, api_config):
        def handler(request):
            return httpx.Response(200, json={"items": [{"id": 1}]})

        adapter = APIAdapter(
            api_config,
            query_builder=lambda city: {"q": city.lower()},
            response_parser=lambda body: body["items"],
            client=mock_client(handler),
        )
        result = asyncio.run(adapter.fetch(city="Toronto"))

        assert result.raw_data == [{"id": 1}]

    def test_graphql_fetch(self, graphql_config):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"data": {"events": [{"id": "mu-1"}]}})

        adapter = APIAdapter(graphql_config, client=mock_client(handler))
        result = asyncio.run(adapter.fetch(city="Toronto"))

        assert seen["method"] == "POST"
        assert seen["body"]["variables"] == {"city": "Toronto"}
        assert result.raw_data == [{"id": "mu-1"}]

    def test_http_error_propagates(self, api_config):
        """Failures surface to the caller so the spawner can retry them."""
        adapter = APIAdapter(api_config, client=mock_client(lambda request: httpx.Response(503)))

        with pytest.raises(httpx.HTTPStatusError):
            asyncio.run(adapter.fetch())

    def test_default_parser_shapes(self):
        adapter = APIAdapter(APIAdapterConfig(source=EventSource.YELP, base_url="https://api.example.com"))

        assert adapter._default_response_parser([{"id": 1}, "junk"]) == [{"id": 1}]
        assert adapter._default_response_parser({"data": [{"id": 2}]}) == [{"id": 2}]
        assert adapter._default_response_parser({"id": 3}) == [{"id": 3}]

    def test_close_releases_client(self, api_config):
        adapter = APIAdapter(api_config, client=mock_client(lambda request: httpx.Response(200, json={})))
        asyncio.run(adapter.close())
        assert adapter._client is None


class TestCreateAPIAdapter:
    """Tests for create_api_adapter()."""

    def test_preset_with_key(self):
        settings = Settings(TICKETMASTER_API_KEY="tm-key")

        adapter = create_api_adapter("ticketmaster", settings=settings, fallback_timezone="America/Toronto")

        assert adapter.source == EventSource.TICKETMASTER
        assert adapter.api_config.api_key == "tm-key"
        assert adapter.api_config.api_key_param == "apikey"
        assert adapter.fallback_timezone == "America/Toronto"

    def test_missing_key(self):
        with pytest.raises(ConfigurationError, match="YELP_API_KEY"):
            create_api_adapter(EventSource.YELP, settings=Settings(YELP_API_KEY=None))

    def test_no_preset(self):
        with pytest.raises(ConfigurationError, match="No API preset"):
            create_api_adapter("manual", settings=Settings())
