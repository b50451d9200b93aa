"""Centralized configuration via pydantic-settings, loaded from .env."""

from __future__ import annotations

import functools
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Providers ──────────────────────────────────────────────────────
    price_primary_provider: Literal["yahoo", "stooq"] = "yahoo"
    price_fallback_enabled: bool = True
    provider_block_cooldown_seconds: int = 6 * 60 * 60
    yahoo_session_ttl_seconds: int = 30 * 60

    # ── HTTP ───────────────────────────────────────────────────────────
    http_min_spacing_seconds: float = 0.25
    http_max_retries: int = 3
    http_timeout_seconds: float = 12.0
    http_user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
    )

    # ── Storage ────────────────────────────────────────────────────────
    data_dir: str = "data"
    prices_db_file: str | None = None
    price_retention_days: int = 400

    # ── Cache service / worker ─────────────────────────────────────────
    price_freshness_hours: float = 24.0
    price_series_length: int = 2
    price_worker_spacing_seconds: float = 10.0
    price_max_jump_factor: float = 12.0

    # ── API Server ────────────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "INFO"

    # ── Computed helpers ───────────────────────────────────────────────
    @property
    def database_file(self) -> Path:
        """Return the SQLite file, honouring the explicit override."""
        if self.prices_db_file:
            return Path(self.prices_db_file)
        return Path(self.data_dir) / "prices.db"

    @property
    def export_dir(self) -> Path:
        """Directory holding the per-ticker flat-file exports."""
        return Path(self.data_dir) / "prices"


@functools.lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Singleton accessor for the global settings."""
    return Settings()
