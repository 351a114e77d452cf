"""Command-line interface for buffet."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from . import constants
from .app import BuffetApp
from .config import load_config
from .errors import BuffetError

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="buffet", description="Device-side command and state service"
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=constants.DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {constants.DEFAULT_CONFIG_PATH})",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("start", help="Start the buffet service")
    subparsers.add_parser(
        "show-config", help="Print the resolved configuration and exit"
    )

    list_parser = subparsers.add_parser(
        "list-commands", help="Print the loaded command dictionary"
    )
    list_parser.add_argument(
        "--short",
        action="store_true",
        help="Omit constraints that are not set",
    )

    subparsers.add_parser(
        "validate", help="Load command and state definitions and report errors"
    )

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = load_config(args.config)

    if args.command == "start":
        BuffetApp.start(config)
        return 0

    if args.command == "show-config":
        print(f"Configuration loaded from {config.path!s}\n")
        for section in config.raw.sections():
            print(f"[{section}]")
            for key, value in config.raw[section].items():
                print(f"{key} = {value}")
            print()
        return 0

    if args.command in ("list-commands", "validate"):
        app = BuffetApp(config)
        try:
            app.load_definitions()
        except (BuffetError, OSError) as exc:
            print(f"Definition error: {exc}", file=sys.stderr)
            return 1

        if args.command == "validate":
            print(
                f"OK: {len(app.commands.dictionary)} command(s), "
                f"{len(app.state.package_names())} state package(s)"
            )
            return 0

        definitions = app.commands.dictionary.get_commands_as_json(full=not args.short)
        print(json.dumps(definitions, indent=2, sort_keys=True))
        return 0

    LOGGER.error("Unknown command: %s", args.command)
    return 1


if __name__ == "__main__":
    sys.exit(main())
