"""Configuration loader for the deduplication engine."""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from eventfusion.configs.settings import Settings, get_settings
from eventfusion.exceptions import ConfigurationError
from eventfusion.schemas.dedup import DedupConfig, Thresholds

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\$\{([A-Z0-9_]+)\}")

# A config file must state every threshold explicitly.
REQUIRED_THRESHOLDS = tuple(Thresholds.model_fields)


def _substitute_placeholders(content: str, settings: Settings) -> str:
    """Replace ${VAR} with the matching setting, falling back to os.environ."""
    values = settings.model_dump()

    def _replace(match: re.Match) -> str:
        key = match.group(1)
        if key in values and values[key] is not None:
            value = values[key]
            # Handle SecretStr
            if hasattr(value, "get_secret_value"):
                return value.get_secret_value()
            return str(value)
        if key in os.environ:
            return os.environ[key]
        raise ConfigurationError(f"Unresolved placeholder ${{{key}}} in dedup config")

    return _PLACEHOLDER.sub(_replace, content)


def build_dedup_config(data: dict[str, Any] | None) -> DedupConfig:
    """
    Validate a raw mapping into a DedupConfig.

    Raises:
        ConfigurationError: Missing threshold, unknown key or strategy,
            or an out-of-range value
    """
    if not isinstance(data, dict):
        raise ConfigurationError("Dedup config must be a mapping")

    thresholds = data.get("thresholds")
    if not isinstance(thresholds, dict):
        raise ConfigurationError("Dedup config is missing the 'thresholds' section")
    missing = [key for key in REQUIRED_THRESHOLDS if key not in thresholds]
    if missing:
        raise ConfigurationError(f"Dedup config is missing required thresholds: {missing}")

    try:
        return DedupConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid dedup config: {e}") from e


def load_dedup_config(
    path: str | Path | None = None,
    settings: Settings | None = None,
) -> DedupConfig:
    """
    Load the YAML deduplication config.

    Args:
        path: Config file; defaults to Settings.DEDUP_CONFIG_PATH
        settings: Settings used for placeholder substitution

    Returns:
        Validated DedupConfig
    """
    settings = settings or get_settings()
    config_path = Path(path) if path else settings.DEDUP_CONFIG_PATH

    if not config_path.exists():
        raise ConfigurationError(f"Missing dedup config at {config_path}")

    with open(config_path, encoding="utf-8") as f:
        content = _substitute_placeholders(f.read(), settings)

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Malformed YAML in {config_path}: {e}") from e

    config = build_dedup_config(data)
    logger.info(
        f"Loaded dedup config from {config_path} "
        f"(overall={config.thresholds.overall}, auto_merge={config.quality.auto_merge_threshold})"
    )
    return config
