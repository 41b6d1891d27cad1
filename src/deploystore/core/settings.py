"""
Centralized settings for deploystore.

Manifesto:
    One validated, cached settings object holds every tunable of the sync
    layer: the platform API, retry and rate-limit policy, the publish target,
    cache bounds and logging. Values come from ``DEPLOYSTORE_*`` environment
    variables or a ``.env`` file.

Examples:
    >>> import os
    >>> os.environ["DEPLOYSTORE_STORE_NAME"] = "team-data"
    >>> get_settings(_force_reload=True).store_url
    'https://team-data.vercel.app'

Tags:
    deploystore, configuration, settings, pydantic

Doc-Types:
    api-reference
"""

from __future__ import annotations

import re
from pathlib import Path

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DATA_VERSION = "1.0.0"

STORE_NAME_PATTERN = re.compile(r"^[a-z0-9-]{3,63}$")


class DeployStoreSettings(BaseSettings):
    """deploystore configuration.

    All fields can be set via ``DEPLOYSTORE_*`` environment variables (e.g.
    ``DEPLOYSTORE_RETRY_ATTEMPTS=5``) or through a ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="DEPLOYSTORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Platform API ─────────────────────────────────────────────
    api_base_url: str = Field(default="https://api.vercel.com")
    token: SecretStr | None = Field(default=None, description="Platform bearer token")
    team_id: str | None = Field(default=None)
    request_timeout: float = Field(default=30.0, gt=0)

    # ── Retry ────────────────────────────────────────────────────
    retry_attempts: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=1.0, ge=0)

    # ── Rate limiting ────────────────────────────────────────────
    calls_per_window: int = Field(default=60, ge=1)
    rate_limit_window_seconds: float = Field(default=60.0, gt=0)
    max_rate_limit_wait: float = Field(default=300.0, ge=0)

    # ── Publish target ───────────────────────────────────────────
    store_name: str = Field(default="deploydatasave")
    store_url: str | None = Field(default=None, description="Defaults to https://{store_name}.vercel.app")
    file_name: str = Field(default="data.json")
    propagation_delay: float = Field(default=2.0, ge=0)
    deployment_wait_timeout: float = Field(default=30.0, gt=0)
    deployment_poll_interval: float = Field(default=2.0, gt=0)

    # ── Caches ───────────────────────────────────────────────────
    cache_ttl_seconds: float = Field(default=300.0, gt=0)
    cache_max_bytes: int = Field(default=10 * 1024 * 1024, gt=0)
    persistent_path: Path = Field(default=Path.home() / ".deploystore" / "cache.db")
    persistent_max_bytes: int | None = Field(default=5 * 1024 * 1024)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console")

    @field_validator("store_name")
    @classmethod
    def _check_store_name(cls, value: str) -> str:
        value = value.lower()
        if not STORE_NAME_PATTERN.match(value):
            raise ValueError("store_name must be 3-63 chars of lowercase letters, digits and hyphens")
        return value

    @field_validator("api_base_url", "store_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str | None) -> str | None:
        return value.rstrip("/") if value else value

    @model_validator(mode="after")
    def _derive_store_url(self) -> DeployStoreSettings:
        if not self.store_url:
            self.store_url = f"https://{self.store_name}.vercel.app"
        return self

    @property
    def token_value(self) -> str | None:
        return self.token.get_secret_value() if self.token else None


_settings_cache: dict[str, DeployStoreSettings] = {}


def get_settings(*, env_file: Path | None = None, _force_reload: bool = False) -> DeployStoreSettings:
    """Load, validate, and cache a :class:`DeployStoreSettings` instance."""
    cache_key = str(env_file or "")

    if not _force_reload and cache_key in _settings_cache:
        return _settings_cache[cache_key]

    if env_file is not None:
        settings = DeployStoreSettings(_env_file=env_file)  # type: ignore[call-arg]
    else:
        settings = DeployStoreSettings()

    _settings_cache[cache_key] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()


__all__ = [
    "DATA_VERSION",
    "DeployStoreSettings",
    "get_settings",
    "clear_settings_cache",
]
