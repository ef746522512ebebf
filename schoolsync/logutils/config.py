"""Logging configuration for SchoolSync.

Environment-aware defaults for development, testing, CI and production.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class Environment(Enum):
    """Application environment enumeration."""

    DEVELOPMENT = "development"
    TESTING = "testing"
    PRODUCTION = "production"
    CI = "ci"


class LogOutput(Enum):
    """Log output destination enumeration."""

    CONSOLE = "console"
    FILE = "file"
    BOTH = "both"


def _truthy(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


@dataclass
class LogConfig:
    """Logging configuration container."""

    level: str = "INFO"
    output: LogOutput = LogOutput.CONSOLE
    json_format: bool = False
    use_rich: bool = True
    mask_sensitive: bool = True

    # Used when output is FILE or BOTH
    log_file: Path | None = None
    max_file_size: int = 10 * 1024 * 1024
    backup_count: int = 5

    # e.g. {"schoolsync.cache.store": "DEBUG"}
    module_levels: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> LogConfig:
        """Create configuration from environment variables.

        Environment variables:
            LOG_LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            LOG_OUTPUT: Output destination (console, file, both)
            LOG_JSON: Use JSON format (true/false)
            LOG_RICH: Use Rich console (true/false)
            LOG_MASK_SENSITIVE: Mask tokens and secrets (true/false)
            LOG_FILE: Log file path
        """
        config = cls.defaults_for(cls.detect_environment())

        if level := os.getenv("LOG_LEVEL"):
            config.level = level.upper()

        if output := os.getenv("LOG_OUTPUT"):
            try:
                config.output = LogOutput(output.lower())
            except ValueError:
                pass

        if json_format := os.getenv("LOG_JSON"):
            config.json_format = _truthy(json_format)

        if use_rich := os.getenv("LOG_RICH"):
            config.use_rich = _truthy(use_rich)

        if mask_sensitive := os.getenv("LOG_MASK_SENSITIVE"):
            config.mask_sensitive = _truthy(mask_sensitive)

        if log_file := os.getenv("LOG_FILE"):
            config.log_file = Path(log_file)

        return config

    @staticmethod
    def detect_environment() -> Environment:
        """Detect the current runtime environment."""
        if os.getenv("CI") or os.getenv("GITHUB_ACTIONS"):
            return Environment.CI

        env_name = os.getenv("ENVIRONMENT", os.getenv("ENV", "")).lower()
        if env_name in ("prod", "production"):
            return Environment.PRODUCTION
        if env_name in ("test", "testing") or os.getenv("PYTEST_CURRENT_TEST"):
            return Environment.TESTING

        return Environment.DEVELOPMENT

    @classmethod
    def defaults_for(cls, env: Environment) -> LogConfig:
        """Get default configuration for an environment."""
        if env == Environment.PRODUCTION:
            return cls(level="INFO", output=LogOutput.BOTH, json_format=True, use_rich=False)
        if env == Environment.CI:
            return cls(level="INFO", use_rich=False)
        if env == Environment.TESTING:
            return cls(level="DEBUG", use_rich=False)
        return cls(level="DEBUG", use_rich=True)


_config: LogConfig | None = None


def get_config() -> LogConfig:
    """Get the current logging configuration, loading it from the environment once."""
    global _config
    if _config is None:
        _config = LogConfig.from_env()
    return _config


def set_config(config: LogConfig) -> None:
    global _config
    _config = config


def reset_config() -> None:
    """Reset to default configuration from environment."""
    global _config
    _config = None
