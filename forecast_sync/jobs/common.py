from __future__ import annotations

import logging

import dotenv

from forecast_sync.core.config import SyncConfig, load_config
from forecast_sync.core.sqlite_storage import SQLiteStorage


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def load_settings(config_path: str) -> SyncConfig:
    """Entry-point config load: ``.env`` first, so its overrides apply."""
    dotenv.load_dotenv()
    return load_config(config_path)


def bootstrap(config_path: str, config: SyncConfig | None = None) -> tuple[SyncConfig, SQLiteStorage]:
    config = config or load_config(config_path)
    storage = SQLiteStorage(config.db_path)
    storage.init()
    return config, storage
