"""``orthanc config``: the config file and its contexts."""

import logging
from pathlib import Path

from orthanc_cli.commands import add_group, add_tristate_flag
from orthanc_cli.config import (
    BOOLEAN_CONFIG_KEYS,
    DEFAULT_CONFIG_TEMPLATE,
    DEFAULT_CONTEXT_NAME,
    PASSWORD_MASK,
    VALID_CONFIG_KEYS,
    default_config_path,
)
from orthanc_cli.errors import (
    ConfigIOError,
    InvalidConfigKeyError,
    NoContextSelectedError,
    UsageError,
)
from orthanc_cli.output import confirm
from orthanc_cli.utils import parse_bool

logger = logging.getLogger(__name__)


def _check_key(key: str) -> None:
    if key not in VALID_CONFIG_KEYS:
        raise InvalidConfigKeyError(key, VALID_CONFIG_KEYS)


# ---------------------------------------------------------------------------
# init / set / get / list
# ---------------------------------------------------------------------------

def run_init(args, app) -> int:
    path = Path(args.output) if args.output else (app.config_path or default_config_path())
    if path.exists():
        print(f"Configuration file already exists at {path}")
        if not confirm("Do you want to overwrite it?", assume_yes=args.force):
            print("Aborted.")
            return 0

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(DEFAULT_CONFIG_TEMPLATE, encoding="utf-8")
    except OSError as exc:
        raise ConfigIOError(f"failed to create config file {path}: {exc}") from exc

    print(f"✓ Configuration file created at {path}")
    print("\nEdit the file, or use 'orthanc config set-context', to configure your server:")
    print("  - url: Your Orthanc server URL")
    print("  - username: Your Orthanc username")
    print("  - password: Your Orthanc password")
    print("  - insecure: Set to true to skip TLS verification (not recommended)")
    return 0


def run_set(args, app) -> int:
    key, value = args.key, args.value
    _check_key(key)

    if key in BOOLEAN_CONFIG_KEYS:
        try:
            parsed = parse_bool(value)
        except ValueError as exc:
            raise UsageError(f"{key}: {exc}") from exc
    else:
        parsed = value

    store = app.store
    if key == "output.json":
        store.output_json = parsed
    else:
        if not store.contexts:
            store.set_context(DEFAULT_CONTEXT_NAME)
        if not store.current_context:
            raise NoContextSelectedError()
        field_name = key.split(".", 1)[1]
        store.set_context(store.current_context, **{field_name: parsed})
    store.save()

    display = PASSWORD_MASK if key == "orthanc.password" else value
    print(f"✓ Set {key} = {display}")
    if key != "output.json":
        print(f"  Context: {store.current_context}")
    print(f"  Config file: {store.path}")
    return 0


def run_get(args, app) -> int:
    key = args.key
    _check_key(key)

    store = app.store
    if key == "output.json":
        print(f"{key} = {str(store.output_json).lower()}")
        return 0

    if not store.current_context:
        raise NoContextSelectedError()
    ctx = store.get_context(store.current_context)
    value = getattr(ctx, key.split(".", 1)[1])
    if value == "":
        print(f"{key} is not set")
    elif key == "orthanc.password":
        print(f"{key} = {PASSWORD_MASK}")
    elif isinstance(value, bool):
        print(f"{key} = {str(value).lower()}")
    else:
        print(f"{key} = {value}")
    return 0


def run_list(args, app) -> int:
    store = app.store
    if store.path.exists():
        print(f"Configuration file: {store.path}\n")
    else:
        print("No configuration file loaded\n")

    print(f"Current context: {store.current_context or '(none)'}\n")
    print("Orthanc Configuration:")
    print("----------------------")
    if store.current_context:
        ctx = store.get_current_context()
        if ctx.password:
            password = ctx.password if args.show_password else PASSWORD_MASK
        else:
            password = "(not set)"
        print(f"  URL:      {ctx.url or '(not set)'}")
        print(f"  Username: {ctx.username or '(not set)'}")
        print(f"  Password: {password}")
        print(f"  Insecure: {str(ctx.insecure).lower()}")
    else:
        print("  (no context configured)")

    print()
    print("Output Configuration:")
    print("---------------------")
    print(f"  JSON:     {str(store.output_json).lower()}")
    return 0


# ---------------------------------------------------------------------------
# Contexts
# ---------------------------------------------------------------------------

def run_set_context(args, app) -> int:
    store = app.store
    created = store.set_context(
        args.name,
        url=args.url,
        username=args.username,
        password=args.password,
        insecure=args.insecure,
        make_current=args.current,
    )
    store.save()

    print(f"{'Created' if created else 'Updated'} context {args.name!r}")
    if store.current_context == args.name and (args.current or len(store.contexts) == 1):
        print("Set as current context")
    return 0


def run_use_context(args, app) -> int:
    store = app.store
    store.use_context(args.name)
    store.save()
    print(f"Switched to context {args.name!r}")
    return 0


def run_get_contexts(args, app) -> int:
    store = app.store
    if not store.contexts:
        print("No contexts found")
        print("\nCreate a context with: orthanc config set-context <name> --url <url>")
        return 0

    width = max(len("NAME"), *(len(name) for name in store.contexts))
    print(f"{'CURRENT':<9} {'NAME':<{width}}   URL")
    for name in store.context_names():
        marker = "*" if name == store.current_context else ""
        print(f"{marker:<9} {name:<{width}}   {store.contexts[name].url}")
    return 0


def run_current_context(args, app) -> int:
    current = app.store.current_context
    print(current if current else "No current context set")
    return 0


def run_rename_context(args, app) -> int:
    store = app.store
    store.rename_context(args.old_name, args.new_name)
    store.save()
    print(f"Renamed context {args.old_name!r} to {args.new_name!r}")
    return 0


def run_delete_context(args, app) -> int:
    store = app.store
    store.delete_context(args.name)
    store.save()
    print(f"Deleted context {args.name!r}")
    return 0


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------

def register(subparsers) -> None:
    actions = add_group(subparsers, "config", "Manage CLI configuration and server contexts")

    p = actions.add_parser("init", help="Initialize a default configuration file")
    p.add_argument("-o", "--output", help="Output path for config file")
    p.add_argument("-f", "--force", action="store_true", help="Overwrite without asking")
    p.set_defaults(handler=run_init)

    p = actions.add_parser("set", help="Set a configuration value")
    p.add_argument("key", help=f"One of: {', '.join(VALID_CONFIG_KEYS)}")
    p.add_argument("value")
    p.set_defaults(handler=run_set)

    p = actions.add_parser("get", help="Get a configuration value")
    p.add_argument("key", help=f"One of: {', '.join(VALID_CONFIG_KEYS)}")
    p.set_defaults(handler=run_get)

    p = actions.add_parser("list", help="List the effective configuration")
    p.add_argument("--show-password", action="store_true", help="Show password in plain text")
    p.set_defaults(handler=run_list)

    p = actions.add_parser("set-context", help="Create or update a context")
    p.add_argument("name")
    p.add_argument("--url", help="Orthanc server URL")
    p.add_argument("--username", help="Orthanc username")
    p.add_argument("--password", help="Orthanc password")
    add_tristate_flag(p, "insecure", "Skip TLS verification (--no-insecure to verify)")
    p.add_argument("--current", action="store_true", help="Set as current context")
    p.set_defaults(handler=run_set_context)

    p = actions.add_parser("use-context", help="Switch to a different context")
    p.add_argument("name")
    p.set_defaults(handler=run_use_context)

    p = actions.add_parser("get-contexts", help="List all available contexts")
    p.set_defaults(handler=run_get_contexts)

    p = actions.add_parser("current-context", help="Display the current context")
    p.set_defaults(handler=run_current_context)

    p = actions.add_parser("rename-context", help="Rename a context")
    p.add_argument("old_name")
    p.add_argument("new_name")
    p.set_defaults(handler=run_rename_context)

    p = actions.add_parser("delete-context", help="Delete a context (not the current one)")
    p.add_argument("name")
    p.set_defaults(handler=run_delete_context)
