"""Configuration schema for the overlay relay.

Defines the Pydantic model for loading and validating relay configuration
from environment variables and optional YAML files.
"""

import os
from pathlib import Path
from typing import Any

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, field_validator

# Environment variable names
ENV_HOST = "OVERLAY_WS_HOST"
ENV_PORT = "OVERLAY_WS_PORT"
ENV_TOKEN = "OVERLAY_WS_TOKEN"  # noqa: S105
ENV_RATE_LIMIT = "OVERLAY_RATE_LIMIT"
ENV_STATE_PATH = "OVERLAY_CONFIG_PATH"
ENV_HEALTH_PORT = "OVERLAY_HEALTH_PORT"
ENV_LOG_LEVEL = "OVERLAY_LOG_LEVEL"

# Rate-limit windows are fixed at one minute
RATE_WINDOW_SECONDS = 60.0

_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class RelayConfig(BaseModel):
    """Root relay configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host address")  # noqa: S104
    port: int = Field(
        default=8080,
        ge=0,
        le=65535,
        description="WebSocket bind port (0 picks a free port)",
    )
    token: str | None = Field(
        default=None,
        description="Shared secret clients must present as ?token=...",
    )
    rate_limit: int = Field(
        default=60,
        ge=0,
        description="Maximum messages per client address per 60 second window (0 rejects all)",
    )
    state_path: Path = Field(
        default=Path("config.json"),
        description="File holding the persisted shared state",
    )
    max_message_bytes: int = Field(
        default=2**20,
        ge=1024,
        description="Maximum inbound WebSocket message size",
    )
    health_port: int | None = Field(
        default=None,
        ge=0,
        le=65535,
        description="HTTP health/metrics port (disabled when unset)",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )

    @field_validator("token")
    @classmethod
    def normalize_token(cls, v: str | None) -> str | None:
        """Treat an empty token as unset."""
        if v is not None and v == "":
            return None
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that the log level is a known logging level name."""
        level = v.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {_LOG_LEVELS}, got '{v}'")
        return level

    @property
    def auth_enabled(self) -> bool:
        """Whether a shared secret is configured at all."""
        return self.token is not None

    @classmethod
    def from_env(cls) -> "RelayConfig":
        """Load configuration from environment variables.

        A ``.env`` file in the working directory is loaded first, without
        overriding variables that are already set.

        Returns:
            Loaded configuration

        Raises:
            ValueError: If a variable holds an invalid value
        """
        load_dotenv(find_dotenv(usecwd=True))
        return cls.model_validate(_apply_env_overrides({}))

    @classmethod
    def from_yaml(cls, path: Path) -> "RelayConfig":
        """Load configuration from YAML file with environment variable overrides.

        Args:
            path: Path to YAML configuration file

        Returns:
            Loaded configuration

        Raises:
            FileNotFoundError: If configuration file doesn't exist
            ValueError: If YAML is invalid or validation fails
        """
        import yaml  # type: ignore[import-untyped]

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Configuration file must contain a mapping: {path}")

        load_dotenv(find_dotenv(usecwd=True))
        return cls.model_validate(_apply_env_overrides(data))

    @classmethod
    def from_yaml_with_defaults(cls, path: Path | None = None) -> "RelayConfig":
        """Load configuration from YAML, or from the environment if there is no file.

        Args:
            path: Optional path to YAML configuration file

        Returns:
            Loaded configuration
        """
        if path is not None and path.exists():
            return cls.from_yaml(path)

        return cls.from_env()


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Overlay OVERLAY_* environment variables onto raw config data.

    Variables that are set but empty count as unset.
    """
    overrides = {
        "host": ENV_HOST,
        "port": ENV_PORT,
        "token": ENV_TOKEN,
        "rate_limit": ENV_RATE_LIMIT,
        "state_path": ENV_STATE_PATH,
        "health_port": ENV_HEALTH_PORT,
        "log_level": ENV_LOG_LEVEL,
    }
    merged = dict(data)
    for field_name, env_name in overrides.items():
        value = os.getenv(env_name)
        if value:
            merged[field_name] = value
    return merged
