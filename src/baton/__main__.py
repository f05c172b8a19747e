"""Entry point for the baton daemon."""

import argparse
import asyncio
import sys

from .config import Config, ConfigError
from .daemon import BatonDaemon
from .logging import setup_logging


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="baton",
        description="baton - context monitoring and rotation for AI coding agents",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        help="Path to configuration file",
    )
    parser.add_argument(
        "--session",
        "-s",
        type=str,
        help="Terminal session to supervise (overrides daemon.session)",
    )
    parser.add_argument(
        "--work-dir",
        "-w",
        type=str,
        help="Working directory for replacement agents (overrides daemon.work_dir)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    try:
        config = Config.load(args.config)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)

    if args.session:
        config.daemon.session = args.session
    if args.work_dir:
        config.daemon.work_dir = args.work_dir
    if args.debug:
        config.logging.level = "DEBUG"

    if not config.daemon.session:
        parser.error("no session given; pass --session or set daemon.session")

    setup_logging(config)

    daemon = BatonDaemon(config)
    try:
        asyncio.run(daemon.run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
