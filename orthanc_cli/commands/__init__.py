"""Sub-command registration.

Each module exposes ``register(subparsers)``, which adds its command group
and binds every action to a ``handler(args, app)`` function through
``set_defaults(handler=...)``.
"""

import argparse

from orthanc_cli.config import RESOURCE_LEVELS


def add_group(subparsers, name: str, help_text: str):
    """Add a command group and return the sub-parsers object for its actions."""
    group = subparsers.add_parser(name, help=help_text, description=help_text)
    group.set_defaults(group_parser=group)
    return group.add_subparsers(dest="action", metavar="<action>")


def add_json_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--json", action="store_true", help="Output in JSON format")


def add_tristate_flag(parser: argparse.ArgumentParser, name: str, help_text: str) -> None:
    """``--name`` / ``--no-name``; omitted leaves the server default."""
    parser.add_argument(
        f"--{name}", action=argparse.BooleanOptionalAction, default=None, help=help_text
    )


def add_level_argument(parser: argparse.ArgumentParser, default: str = "Study") -> None:
    parser.add_argument(
        "--level",
        default=default,
        choices=RESOURCE_LEVELS,
        help=f"Query level (default: {default})",
    )


def register_commands(subparsers) -> None:
    from orthanc_cli.commands import config_cmd, dicomweb, modalities, resources, servers, tools

    resources.register(subparsers)
    modalities.register(subparsers)
    servers.register(subparsers)
    tools.register(subparsers)
    dicomweb.register(subparsers)
    config_cmd.register(subparsers)
