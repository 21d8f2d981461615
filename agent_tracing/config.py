"""Tracing configuration settings.

This module provides configuration for the Langfuse reference exporter and
the tracing instance defaults, read from environment variables with sensible
defaults.
"""

import logging
import os
from dataclasses import dataclass

import structlog

from agent_tracing.sampling import AlwaysSample, RatioSample, SamplingStrategy


def _get_bool_env(name: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable.

    Args:
        name: Environment variable name.
        default: Default value if not set.

    Returns:
        Boolean value from environment.
    """
    value = os.getenv(name, "").lower()
    if value in ("true", "1", "yes", "on"):
        return True
    if value in ("false", "0", "no", "off"):
        return False
    return default


def _get_float_env(name: str) -> float | None:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return None
    return float(value)


@dataclass
class Settings:
    """Tracing settings loaded from environment variables.

    Attributes:
        LANGFUSE_HOST: Langfuse server host URL.
        LANGFUSE_PUBLIC_KEY: Langfuse public API key.
        LANGFUSE_SECRET_KEY: Langfuse secret API key.
        LANGFUSE_REALTIME: Flush the Langfuse client after every event.
        TRACING_SERVICE_NAME: Service name reported by tracing instances.
        TRACING_SAMPLING_RATIO: Probability of sampling a trace (None = always).
        TRACING_EXPORT_QUEUE_SIZE: Max queued events per exporter.
        TRACING_STRICT: Raise on span misuse instead of logging.
        LOG_LEVEL: Logging level.
    """

    # Langfuse
    LANGFUSE_HOST: str = "http://localhost:3000"
    LANGFUSE_PUBLIC_KEY: str | None = None
    LANGFUSE_SECRET_KEY: str | None = None
    LANGFUSE_REALTIME: bool = False

    # Tracing instance defaults
    TRACING_SERVICE_NAME: str = "agent-service"
    TRACING_SAMPLING_RATIO: float | None = None
    TRACING_EXPORT_QUEUE_SIZE: int = 1000
    TRACING_STRICT: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from environment variables.

        Returns:
            Settings instance populated from environment.
        """
        return cls(
            LANGFUSE_HOST=os.getenv("LANGFUSE_HOST", "http://localhost:3000"),
            LANGFUSE_PUBLIC_KEY=os.getenv("LANGFUSE_PUBLIC_KEY"),
            LANGFUSE_SECRET_KEY=os.getenv("LANGFUSE_SECRET_KEY"),
            LANGFUSE_REALTIME=_get_bool_env("LANGFUSE_REALTIME", default=False),
            TRACING_SERVICE_NAME=os.getenv("TRACING_SERVICE_NAME", "agent-service"),
            TRACING_SAMPLING_RATIO=_get_float_env("TRACING_SAMPLING_RATIO"),
            TRACING_EXPORT_QUEUE_SIZE=int(os.getenv("TRACING_EXPORT_QUEUE_SIZE", "1000")),
            TRACING_STRICT=_get_bool_env("TRACING_STRICT", default=False),
            LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
        )

    def sampling_strategy(self) -> SamplingStrategy:
        """Build the sampling strategy described by these settings."""
        if self.TRACING_SAMPLING_RATIO is None:
            return AlwaysSample()
        return RatioSample(self.TRACING_SAMPLING_RATIO)


def configure_logging(level: str | None = None) -> None:
    """Configure structlog to drop events below ``level``.

    Args:
        level: Standard logging level name (DEBUG, INFO, WARNING, ...).
            Defaults to the LOG_LEVEL environment setting.
    """
    if level is None:
        level = Settings.from_env().LOG_LEVEL
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
    )
