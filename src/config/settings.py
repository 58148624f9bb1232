# src/config/settings.py — v2
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for tick periods, echo suppression, eviction policy,
store backend and logging.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Synchronization ===
    sync_interval_ms: int = 200
    field_debounce_ms: int = 200
    echo_threshold: int = 5
    eviction_policy: Literal["flush", "discard"] = "flush"
    max_dispatch_depth: int = 16

    # === Document store ===
    store_backend: Literal["markdown", "memory"] = "markdown"
    vault_root: Path = Path(".")
    watch_interval_ms: int = 500

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "text"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 5

    # --- Validators ---

    @field_validator("sync_interval_ms", "field_debounce_ms", "watch_interval_ms")
    @classmethod
    def validate_positive_interval(cls, v: int) -> int:  # noqa: N805
        if v <= 0:
            raise ValueError("intervals must be > 0 ms")
        return v

    @field_validator("echo_threshold")
    @classmethod
    def validate_echo_threshold(cls, v: int) -> int:  # noqa: N805
        if v < 0:
            raise ValueError("echo_threshold must be >= 0")
        return v

    @field_validator("max_dispatch_depth")
    @classmethod
    def validate_dispatch_depth(cls, v: int) -> int:  # noqa: N805
        if v < 1:
            raise ValueError("max_dispatch_depth must be >= 1")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Cross-field consistency rules."""
        errors: list[str] = []

        # Polling faster than the tick would report changes the echo
        # counter has not had a chance to age past.
        if self.watch_interval_ms < self.sync_interval_ms:
            errors.append("WATCH_INTERVAL_MS must be >= SYNC_INTERVAL_MS")

        if self.store_backend == "markdown" and self.vault_root.expanduser().is_file():
            errors.append("VAULT_ROOT must be a directory")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    @property
    def sync_interval_s(self) -> float:
        return self.sync_interval_ms / 1000.0

    @property
    def field_debounce_s(self) -> float:
        return self.field_debounce_ms / 1000.0

    @property
    def watch_interval_s(self) -> float:
        return self.watch_interval_ms / 1000.0


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
