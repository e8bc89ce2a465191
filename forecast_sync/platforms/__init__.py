from __future__ import annotations

from forecast_sync.core.config import SyncConfig
from forecast_sync.platforms.base import Platform
from forecast_sync.platforms.http_client import SimpleHttpClient
from forecast_sync.platforms.manifold import build_manifold_platform
from forecast_sync.platforms.metaculus import build_metaculus_platform
from forecast_sync.platforms.metaculus_api import MetaculusApi
from forecast_sync.platforms.polymarket import build_polymarket_platform

PLATFORM_NAMES = ("metaculus", "manifold", "polymarket")


def build_platforms(config: SyncConfig) -> dict[str, Platform]:
    platforms: dict[str, Platform] = {}
    for platform_name in PLATFORM_NAMES:
        platform_cfg = config.platform(platform_name)
        if not platform_cfg.enabled:
            continue
        client = SimpleHttpClient(
            timeout_seconds=platform_cfg.timeout_seconds,
            max_retries=platform_cfg.max_retries,
            cache_ttl_seconds=platform_cfg.cache_ttl_seconds,
            cache_dir=config.http_cache_dir,
        )
        if platform_name == "metaculus":
            platforms[platform_name] = build_metaculus_platform(
                MetaculusApi(base_url=platform_cfg.base_url, http=client),
                sleep_seconds=platform_cfg.sleep_seconds,
                max_pages=platform_cfg.max_pages,
            )
        elif platform_name == "manifold":
            platforms[platform_name] = build_manifold_platform(
                client,
                base_url=platform_cfg.base_url,
                sleep_seconds=platform_cfg.sleep_seconds,
                max_pages=platform_cfg.max_pages,
            )
        elif platform_name == "polymarket":
            platforms[platform_name] = build_polymarket_platform(
                client,
                base_url=platform_cfg.base_url,
                sleep_seconds=platform_cfg.sleep_seconds,
            )
    return platforms
