from __future__ import annotations

import argparse
import logging
from typing import Mapping, Sequence

from forecast_sync.core.config import SyncConfig
from forecast_sync.core.sync import process_platform
from forecast_sync.jobs.common import bootstrap, configure_logging, load_settings
from forecast_sync.platforms import build_platforms

logger = logging.getLogger(__name__)


def parse_fetcher_args(pairs: Sequence[str] | None) -> dict[str, str]:
    args: dict[str, str] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Expected KEY=VALUE, got {pair!r}")
        args[key] = value
    return args


def run_sync(
    config_path: str = "sync.toml",
    platform_names: Sequence[str] | None = None,
    args: Mapping[str, str] | None = None,
    config: SyncConfig | None = None,
) -> dict[str, object]:
    """Sync the selected platforms one after another.

    A platform that raises is logged and counted; the remaining platforms
    still run. Fetcher arguments are platform specific, so they need exactly
    one platform name.
    """
    if args and len(platform_names or []) != 1:
        raise ValueError("Fetcher arguments need exactly one platform name")
    config, storage = bootstrap(config_path, config)
    try:
        platforms = build_platforms(config)
        if platform_names:
            unknown = [name for name in platform_names if name not in platforms]
            if unknown:
                raise ValueError(f"Unknown or disabled platforms: {unknown}")
            selected = [platforms[name] for name in platform_names]
        else:
            selected = list(platforms.values())

        summaries: dict[str, dict[str, dict[str, int]]] = {}
        skipped = 0
        errors = 0
        for platform in selected:
            logger.info(f"Processing platform {platform.name}")
            try:
                summary = process_platform(platform, storage, args=args)
            except Exception:
                logger.exception(f"Platform {platform.name} failed")
                errors += 1
                continue
            if summary is None:
                skipped += 1
                continue
            summaries[platform.name] = summary.as_dict()
        return {"platforms": summaries, "skipped": skipped, "errors": errors}
    finally:
        storage.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Sync questions from forecasting platforms.")
    parser.add_argument("platforms", nargs="*", help="Platform names (default: all enabled)")
    parser.add_argument("--config", default="sync.toml", help="Path to sync.toml")
    parser.add_argument("--arg", action="append", default=[], metavar="KEY=VALUE", help="Fetcher argument")
    args = parser.parse_args()
    config = load_settings(args.config)
    configure_logging(config.log_level)
    try:
        result = run_sync(
            config_path=args.config,
            platform_names=args.platforms,
            args=parse_fetcher_args(args.arg),
            config=config,
        )
    except ValueError as exc:
        parser.error(str(exc))
    print(result)


if __name__ == "__main__":
    main()
