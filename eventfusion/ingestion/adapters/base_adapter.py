"""
Base Source Adapter.

Abstract base class defining the interface for all source adapters. An
adapter owns authentication, pagination and rate-limit compliance for one
upstream provider and hands back raw payloads in that provider's native
shape; normalization happens downstream.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from eventfusion.schemas.event import EventSource


@dataclass
class FetchResult:
    """
    Result of a data fetch operation.

    Provides a unified result format for every source.
    """

    success: bool
    source: EventSource
    raw_data: list[dict[str, Any]] = field(default_factory=list)
    total_fetched: int = 0
    errors: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    fetch_started_at: datetime | None = None
    fetch_ended_at: datetime | None = None

    @property
    def duration_seconds(self) -> float:
        """Calculate fetch duration."""
        if self.fetch_started_at and self.fetch_ended_at:
            return (self.fetch_ended_at - self.fetch_started_at).total_seconds()
        return 0.0


@dataclass
class AdapterConfig:
    """
    Base configuration for source adapters.

    Extended by specific adapter types.
    """

    source: EventSource
    request_timeout: float = 30.0
    rate_limit_per_second: float | None = None
    fallback_timezone: str | None = None
    custom_config: dict[str, Any] = field(default_factory=dict)


class BaseSourceAdapter(ABC):
    """
    Abstract base class for source adapters.

    Subclasses must implement:
        - fetch(): Fetch raw payloads from the source
        - _validate_config(): Validate adapter-specific configuration

    Transport errors propagate out of fetch() so the TaskSpawner's retry
    policy decides what happens next.
    """

    def __init__(self, config: AdapterConfig):
        """
        Initialize the adapter.

        Args:
            config: AdapterConfig with source-specific settings
        """
        self.config = config
        self.logger = logging.getLogger(f"{__name__}.{config.source.value}")
        self._validate_config()

    @property
    def source(self) -> EventSource:
        return self.config.source

    @property
    def fallback_timezone(self) -> str | None:
        return self.config.fallback_timezone

    @abstractmethod
    async def fetch(self, **kwargs) -> FetchResult:
        """
        Fetch raw payloads from the source.

        Args:
            **kwargs: Source-specific fetch parameters (city, date range,
                page size, ...)

        Returns:
            FetchResult with raw payloads and metadata
        """

    @abstractmethod
    def _validate_config(self) -> None:
        """
        Validate adapter-specific configuration.

        Raises:
            ConfigurationError: If configuration is invalid
        """

    async def close(self) -> None:
        """
        Release any resources held by the adapter.

        Override in subclasses that hold resources (e.g., HTTP clients).
        """

    async def __aenter__(self) -> "BaseSourceAdapter":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
