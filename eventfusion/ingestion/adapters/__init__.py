"""
Source Adapters for Event Ingestion.

Adapters provide a unified interface for fetching raw payloads from
different providers:
- API sources (REST, GraphQL) over httpx
- Static sources (manual submissions, imports, fixtures)

Usage:
    from eventfusion.ingestion.adapters import StaticAdapter, create_api_adapter

    adapter = create_api_adapter("ticketmaster", fallback_timezone="America/Toronto")
    result = await adapter.fetch(city="Toronto", size=50)
"""

from .api_adapter import APIAdapter, APIAdapterConfig, create_api_adapter
from .base_adapter import AdapterConfig, BaseSourceAdapter, FetchResult
from .static_adapter import StaticAdapter

__all__ = [
    "BaseSourceAdapter",
    "AdapterConfig",
    "FetchResult",
    "APIAdapter",
    "APIAdapterConfig",
    "StaticAdapter",
    "create_api_adapter",
]
