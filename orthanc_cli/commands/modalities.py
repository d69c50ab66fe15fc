"""``orthanc modalities``: remote DICOM nodes and the DIMSE operations on them."""

import json
import logging
from pathlib import Path

from orthanc_cli.commands import add_group, add_json_flag, add_level_argument, add_tristate_flag
from orthanc_cli.errors import OrthancRequestError, UsageError
from orthanc_cli.output import confirm, print_fields, print_json, print_lines
from orthanc_cli.utils import drop_none, parse_key_values

logger = logging.getLogger(__name__)

# command-line flag (argparse dest) -> Orthanc configuration key
MODALITY_FIELDS = {
    "aet": "AET",
    "host": "Host",
    "port": "Port",
    "manufacturer": "Manufacturer",
    "timeout": "Timeout",
    "allow_echo": "AllowEcho",
    "allow_find": "AllowFind",
    "allow_get": "AllowGet",
    "allow_move": "AllowMove",
    "allow_store": "AllowStore",
}


def load_json_file(path: str) -> dict:
    """Read a JSON object from *path* (used by every ``--file`` option)."""
    try:
        with open(Path(path), encoding="utf-8") as fh:
            data = json.load(fh)
    except OSError as exc:
        raise UsageError(f"cannot read {path}: {exc}") from exc
    except ValueError as exc:
        raise UsageError(f"{path} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise UsageError(f"{path} must contain a JSON object")
    return data


def key_values_or_usage_error(items, option: str) -> dict:
    try:
        return parse_key_values(items)
    except ValueError as exc:
        raise UsageError(f"{option}: {exc}") from exc


def _modality_config(args) -> dict:
    config = load_json_file(args.file) if args.file else {}
    for dest, key in MODALITY_FIELDS.items():
        value = getattr(args, dest)
        if value is not None:
            config[key] = value
    return config


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def run_list(args, app) -> int:
    modalities = app.client().list_modalities(expand=args.expand)
    if app.use_json(args):
        print_json(modalities)
        return 0
    if not modalities:
        print("No modalities configured.")
        return 0
    if not args.expand:
        print_lines(modalities)
        return 0
    for index, (name, config) in enumerate(sorted(modalities.items())):
        if index:
            print()
        print(name)
        print_fields([(key, config.get(key)) for key in ("AET", "Host", "Port", "Manufacturer")], "  ")
    return 0


def run_get(args, app) -> int:
    config = app.client().get_modality(args.name)
    if app.use_json(args):
        print_json(config)
    else:
        print(f"Modality: {args.name}")
        print_fields(sorted(config.items()), "  ")
    return 0


def run_create(args, app) -> int:
    config = _modality_config(args)
    missing = [key for key in ("AET", "Host", "Port") if key not in config]
    if missing:
        raise UsageError(f"missing required modality settings: {', '.join(missing)}")
    app.client().put_modality(args.name, config)
    print(f"Successfully created modality: {args.name}")
    return 0


def run_update(args, app) -> int:
    client = app.client()
    config = client.get_modality(args.name)
    config.update(_modality_config(args))
    client.put_modality(args.name, config)
    print(f"Successfully updated modality: {args.name}")
    return 0


def run_remove(args, app) -> int:
    if not confirm(f"Remove modality {args.name}?", assume_yes=args.force):
        print("Aborted.")
        return 0
    app.client().delete_modality(args.name)
    print(f"Successfully removed modality: {args.name}")
    return 0


# ---------------------------------------------------------------------------
# DIMSE operations
# ---------------------------------------------------------------------------

def run_echo(args, app) -> int:
    try:
        app.client().echo_modality(args.name, timeout=args.timeout)
    except OrthancRequestError as exc:
        logger.debug("C-ECHO failed", exc_info=True)
        print(f"✗ C-ECHO to {args.name} failed: {exc}")
        return 1
    print(f"✓ C-ECHO to {args.name} succeeded")
    return 0


def run_find(args, app) -> int:
    query = key_values_or_usage_error(args.tag, "--tag")
    answers = app.client().find_in_modality(
        args.name, args.level, query, normalize=args.normalize, timeout=args.timeout
    )
    if app.use_json(args):
        print_json(answers)
        return 0
    if not answers:
        print("No matches found.")
        return 0
    print(f"Found {len(answers)} match(es):\n")
    for index, answer in enumerate(answers):
        if index:
            print()
        print_fields(sorted(answer.items()), "  ")
    return 0


def _resources(args) -> list:
    resource = key_values_or_usage_error(args.resource, "--resource")
    if not resource:
        raise UsageError("at least one --resource KEY=VALUE is required")
    return [resource]


def _print_job(response, action: str) -> None:
    if isinstance(response, dict) and response.get("ID"):
        print(f"{action} job submitted")
        print_fields([("Job ID", response.get("ID")), ("Path", response.get("Path"))], "  ")
    else:
        print(f"{action} completed")


def run_move(args, app) -> int:
    request = {
        "Level": args.level,
        "Resources": _resources(args),
        "TargetAet": args.target_aet,
        "Timeout": args.timeout,
        "Priority": args.priority,
        "Permissive": args.permissive,
        "Asynchronous": args.asynchronous,
        "Limit": args.limit,
    }
    response = app.client().move_from_modality(args.name, request)
    if app.use_json(args):
        print_json(response)
    else:
        _print_job(response, "C-MOVE")
    return 0


def run_retrieve(args, app) -> int:
    request = {
        "Level": args.level,
        "Resources": _resources(args),
        "Timeout": args.timeout,
        "Permissive": args.permissive,
        "Asynchronous": args.asynchronous,
    }
    response = app.client().get_from_modality(args.name, request)
    if app.use_json(args):
        print_json(response)
    else:
        _print_job(response, "C-GET")
    return 0


def run_store(args, app) -> int:
    request = drop_none({
        "Resources": args.ids,
        "Synchronous": args.synchronous,
        "LocalAet": args.local_aet,
        "RemoteAet": args.remote_aet,
        "Timeout": args.timeout,
        "MoveOriginatorAet": args.move_originator_aet,
        "MoveOriginatorID": args.move_originator_id,
        "Permissive": args.permissive,
        "StorageCommitment": args.storage_commitment,
    })
    response = app.client().store_to_modality(args.name, request)
    if app.use_json(args):
        print_json(response)
        return 0

    _print_job(response, "C-STORE")
    if isinstance(response, dict):
        print_fields([
            ("Instances", response.get("InstancesCount")),
            ("Failed", response.get("FailedInstancesCount")),
        ], "  ")
    return 0


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------

def _add_modality_options(p) -> None:
    p.add_argument("--file", help="JSON file with the modality configuration")
    p.add_argument("--aet", help="Application Entity Title")
    p.add_argument("--host", help="Hostname or IP address")
    p.add_argument("--port", type=int, help="DICOM port")
    p.add_argument("--manufacturer", help="Manufacturer quirks (e.g. Generic, GE)")
    p.add_argument("--timeout", type=int, help="DICOM timeout in seconds")
    add_tristate_flag(p, "allow-echo", "Allow C-ECHO from this modality")
    add_tristate_flag(p, "allow-find", "Allow C-FIND from this modality")
    add_tristate_flag(p, "allow-get", "Allow C-GET from this modality")
    add_tristate_flag(p, "allow-move", "Allow C-MOVE from this modality")
    add_tristate_flag(p, "allow-store", "Allow C-STORE from this modality")


def register(subparsers) -> None:
    actions = add_group(subparsers, "modalities", "Manage DICOM modalities and run DIMSE operations")

    p = actions.add_parser("list", help="List configured modalities")
    p.add_argument("--expand", action="store_true", help="Show modality configurations")
    add_json_flag(p)
    p.set_defaults(handler=run_list)

    p = actions.add_parser("get", help="Show a modality configuration")
    p.add_argument("name")
    add_json_flag(p)
    p.set_defaults(handler=run_get)

    p = actions.add_parser("create", help="Create a modality")
    p.add_argument("name")
    _add_modality_options(p)
    p.set_defaults(handler=run_create)

    p = actions.add_parser("update", help="Update a modality (unset options are kept)")
    p.add_argument("name")
    _add_modality_options(p)
    p.set_defaults(handler=run_update)

    p = actions.add_parser("remove", help="Remove a modality")
    p.add_argument("name")
    p.add_argument("-f", "--force", action="store_true", help="Skip confirmation prompt")
    p.set_defaults(handler=run_remove)

    p = actions.add_parser("echo", help="Test connectivity with C-ECHO")
    p.add_argument("name")
    p.add_argument("--timeout", type=int, help="Timeout in seconds")
    p.set_defaults(handler=run_echo)

    p = actions.add_parser("find", help="Query a modality with C-FIND")
    p.add_argument("name")
    add_level_argument(p)
    p.add_argument(
        "--tag", action="append", required=True, metavar="KEY=VALUE",
        help="Query tag, repeatable (e.g. PatientID=123)",
    )
    add_tristate_flag(p, "normalize", "Normalize the query")
    p.add_argument("--timeout", type=int, help="Timeout in seconds")
    add_json_flag(p)
    p.set_defaults(handler=run_find)

    p = actions.add_parser("move", help="Move resources from a modality with C-MOVE")
    p.add_argument("name")
    add_level_argument(p)
    p.add_argument("--resource", action="append", metavar="KEY=VALUE", help="Resource identifier, repeatable")
    p.add_argument("--target-aet", help="Target AET (defaults to this Orthanc)")
    p.add_argument("--timeout", type=int, help="Timeout in seconds")
    p.add_argument("--priority", type=int, choices=(0, 1, 2), help="Job priority")
    add_tristate_flag(p, "permissive", "Ignore errors on individual resources")
    add_tristate_flag(p, "asynchronous", "Run as a background job")
    p.add_argument("--limit", type=int, help="Maximum number of instances to move")
    add_json_flag(p)
    p.set_defaults(handler=run_move)

    p = actions.add_parser("retrieve", help="Retrieve resources from a modality with C-GET")
    p.add_argument("name")
    add_level_argument(p)
    p.add_argument("--resource", action="append", metavar="KEY=VALUE", help="Resource identifier, repeatable")
    p.add_argument("--timeout", type=int, help="Timeout in seconds")
    add_tristate_flag(p, "permissive", "Ignore errors on individual resources")
    add_tristate_flag(p, "asynchronous", "Run as a background job")
    add_json_flag(p)
    p.set_defaults(handler=run_retrieve)

    p = actions.add_parser("store", help="Send local resources to a modality with C-STORE")
    p.add_argument("name")
    p.add_argument("ids", nargs="+", metavar="resource-id", help="Orthanc IDs of the resources to send")
    add_tristate_flag(p, "synchronous", "Wait for the transfer to finish")
    p.add_argument("--local-aet", help="Calling AET")
    p.add_argument("--remote-aet", help="Called AET")
    p.add_argument("--timeout", type=int, default=30, help="Timeout in seconds (default: 30)")
    p.add_argument("--move-originator-aet", help="Move originator AET")
    p.add_argument("--move-originator-id", type=int, help="Move originator message ID")
    add_tristate_flag(p, "permissive", "Ignore errors on individual instances")
    add_tristate_flag(p, "storage-commitment", "Request storage commitment")
    add_json_flag(p)
    p.set_defaults(handler=run_store)
