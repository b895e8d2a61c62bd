"""Config Loader - Loads client and logging configuration from YAML.

YAML values may reference environment variables as ${ENV_VAR}; unset
variables are an error rather than an empty string.

Example file:
    client:
      timeout_seconds: ${UHTTP_TIMEOUT}
      max_idle_connections: 20
    logging:
      level: DEBUG
      format: console
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml

from uhttp.client import JsonClient, default_client
from uhttp.log import configure_logging
from uhttp.models import UHttpConfig

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


class ConfigError(Exception):
    """Raised when configuration loading fails."""


def load_config(config_path: Path) -> UHttpConfig:
    """Load configuration from YAML with ${ENV_VAR} substitution."""
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}") from e

    # An empty file means "all defaults"
    if raw_config is None:
        raw_config = {}

    if not isinstance(raw_config, dict):
        raise ConfigError("Config file must be a YAML mapping")

    raw_config = _substitute_env_vars(raw_config)

    try:
        return UHttpConfig.model_validate(raw_config)
    except Exception as e:
        raise ConfigError(f"Invalid config structure: {e}") from e


def apply_config(config: UHttpConfig) -> JsonClient:
    """Configure logging and the shared client, then return the shared client."""
    configure_logging(level=config.logging.level, fmt=config.logging.format)
    client = default_client()
    client.configure(
        config.client.timeout_seconds,
        config.client.max_idle_connections,
    )
    return client


def _substitute_env_vars(data: Any) -> Any:
    """Recursively substitute ${ENV_VAR} patterns in strings within data."""
    if isinstance(data, str):
        return _substitute_string(data)
    elif isinstance(data, dict):
        return {k: _substitute_env_vars(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_vars(item) for item in data]
    return data


def _substitute_string(s: str) -> str:
    """Substitute ${ENV_VAR} patterns. Raises ConfigError if env var is not set."""

    def replacer(match: re.Match) -> str:
        var_name = match.group(1)
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigError(f"Environment variable '{var_name}' is not set")
        return value

    return _ENV_VAR_PATTERN.sub(replacer, s)
