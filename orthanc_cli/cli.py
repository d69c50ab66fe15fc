"""Argument parsing and dispatch for the ``orthanc`` command."""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from orthanc_cli import __version__
from orthanc_cli.app import App, ClientFactory
from orthanc_cli.client import client_from_context
from orthanc_cli.commands import register_commands
from orthanc_cli.config import CONFIG_FILENAME, setup_logging
from orthanc_cli.errors import OrthancCliError

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="orthanc",
        description=(
            "Command-line interface for managing and querying Orthanc DICOM servers: "
            "patients, studies, series, instances, modalities, DICOMweb and more."
        ),
    )
    parser.add_argument(
        "--config",
        type=Path,
        help=f"config file (default is $HOME/{CONFIG_FILENAME})",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", metavar="<command>")
    register_commands(subparsers)
    return parser


def main(
    argv: Optional[Sequence[str]] = None,
    client_factory: ClientFactory = client_from_context,
) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(logging.DEBUG if args.verbose else logging.WARNING)

    handler = getattr(args, "handler", None)
    if handler is None:
        # A command group without an action, or no command at all.
        (getattr(args, "group_parser", None) or parser).print_help()
        return 1

    app = App(config_path=args.config, client_factory=client_factory)
    try:
        return handler(args, app) or 0
    except OrthancCliError as exc:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except OSError as exc:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        return 130
