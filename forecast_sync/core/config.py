from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
import tomllib


@dataclass
class PlatformConfig:
    enabled: bool = True
    base_url: str | None = None
    timeout_seconds: int = 20
    max_retries: int = 3
    cache_ttl_seconds: int = 0
    # Delay before every upstream request, to stay under rate limits.
    sleep_seconds: float = 1.0
    max_pages: int | None = None


@dataclass
class SyncConfig:
    db_path: str = "forecasts.sqlite3"
    log_level: str = "INFO"
    http_cache_dir: str = ".cache/forecast_sync_http"
    platforms: dict[str, PlatformConfig] = field(default_factory=dict)

    def platform(self, name: str) -> PlatformConfig:
        return self.platforms.get(name) or PlatformConfig()


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key, {})
    if not isinstance(value, dict):
        return {}
    return value


def _apply_env_overrides(config: SyncConfig) -> SyncConfig:
    db_path = os.getenv("FORECAST_SYNC_DB_PATH")
    if db_path:
        config.db_path = db_path
    log_level = os.getenv("FORECAST_SYNC_LOG_LEVEL")
    if log_level:
        config.log_level = log_level
    return config


def load_config(path: str = "sync.toml") -> SyncConfig:
    cfg_path = Path(path)
    if not cfg_path.exists():
        return _apply_env_overrides(SyncConfig())

    with cfg_path.open("rb") as f:
        raw = tomllib.load(f)

    platforms = {
        name: PlatformConfig(**values)
        for name, values in _section(raw, "platforms").items()
        if isinstance(values, dict)
    }

    config = SyncConfig(
        db_path=str(raw.get("db_path", "forecasts.sqlite3")),
        log_level=str(raw.get("log_level", "INFO")),
        http_cache_dir=str(raw.get("http_cache_dir", ".cache/forecast_sync_http")),
        platforms=platforms,
    )
    return _apply_env_overrides(config)
