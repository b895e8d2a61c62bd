"""Configuration models for uhttp.

All models use Pydantic v2.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# Client Models
# =============================================================================


class ClientConfig(BaseModel):
    """Settings for the shared HTTP client.

    Values are not range-checked. Zero or negative values are handed to httpx
    as-is; picking sane numbers is the caller's job.
    """

    model_config = ConfigDict(extra="forbid")

    timeout_seconds: int = Field(default=30, description="Request timeout in seconds")
    max_idle_connections: int = Field(
        default=100, description="Maximum number of idle keep-alive connections in the pool"
    )


# =============================================================================
# Runtime Configuration Models
# =============================================================================


class LoggingConfig(BaseModel):
    """Log level and output format."""

    model_config = ConfigDict(extra="forbid")

    level: str = Field(default="INFO", description="Minimum level: DEBUG, INFO, WARNING, ERROR")
    format: Literal["json", "console"] = Field(default="json", description="Renderer")

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level '{v}'")
        return level


class UHttpConfig(BaseModel):
    """Top-level configuration file."""

    model_config = ConfigDict(extra="forbid")

    client: ClientConfig = Field(default_factory=ClientConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
