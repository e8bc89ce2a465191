from __future__ import annotations

import argparse

from forecast_sync.jobs.common import configure_logging, load_settings
from forecast_sync.jobs.sync_platforms import parse_fetcher_args, run_sync
from forecast_sync.platforms import build_platforms


def main() -> None:
    parser = argparse.ArgumentParser(description="Forecasting platform synchronization jobs")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_sync = sub.add_parser("sync", help="Fetch platforms and reconcile them into the store")
    p_sync.add_argument("platforms", nargs="*", help="Platform names (default: all enabled)")
    p_sync.add_argument("--config", default="sync.toml")
    p_sync.add_argument("--arg", action="append", default=[], metavar="KEY=VALUE")

    p_list = sub.add_parser("list", help="Show enabled platforms and their fetcher arguments")
    p_list.add_argument("--config", default="sync.toml")

    args = parser.parse_args()
    config = load_settings(args.config)
    configure_logging(config.log_level)

    if args.cmd == "sync":
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
    elif args.cmd == "list":
        for name, platform in build_platforms(config).items():
            fetcher_args = ", ".join(platform.fetcher_args) or "-"
            print(f"{name}\t{platform.version}\t{platform.label}\targs: {fetcher_args}")


if __name__ == "__main__":
    main()
