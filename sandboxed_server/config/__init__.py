"""Configuration management for the sandboxed test server.

Usage:
    from sandboxed_server.config import settings

    settings.temp_dir
    settings.prompt_timeout_seconds

Every field can be overridden with a ``SANDBOXED_SERVER_`` prefixed
environment variable or a ``.env`` file in the working directory.
"""

import os
import tempfile
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .defaults import (
    APP_CONFIG_DEFAULTS,
    TEST_BACKEND,
    Atom,
    build_default_options,
    default_vm_args,
)


class Settings(BaseSettings):
    """Test server settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_prefix="SANDBOXED_SERVER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Launcher
    bin_dir: Optional[str] = Field(
        default=None,
        description="Directory holding the template launcher script",
    )
    script_name: str = Field(default="riak", min_length=1)
    temp_dir: str = Field(
        default_factory=lambda: os.path.join(tempfile.gettempdir(), "riaktest"),
        description="Sandbox root for generated scripts, config and data",
    )

    # Timeouts
    prompt_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=600,
        description="How long to wait for the console prompt",
    )
    startup_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=600,
        description="How long to wait for the HTTP port after a full restart",
    )
    shutdown_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=600,
        description="Grace period for the child to exit before it is killed",
    )

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console")

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v):
        """Accept log levels in any case."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        """Only json and console renderers are supported."""
        fmt = v.lower()
        if fmt not in {"json", "console"}:
            raise ValueError("log_format must be 'json' or 'console'")
        return fmt


# Global settings instance
settings = Settings()

__all__ = [
    "Settings",
    "settings",
    "APP_CONFIG_DEFAULTS",
    "TEST_BACKEND",
    "Atom",
    "build_default_options",
    "default_vm_args",
]
