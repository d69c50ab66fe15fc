"""``orthanc tools``, ``orthanc system`` and ``orthanc version``."""

from orthanc_cli import __version__
from orthanc_cli.commands import add_group, add_json_flag, add_level_argument
from orthanc_cli.commands.modalities import key_values_or_usage_error
from orthanc_cli.output import confirm, print_fields, print_json, print_lines

LOG_LEVELS = ("default", "verbose", "trace")


def run_find(args, app) -> int:
    request = {
        "Level": args.level,
        "Query": key_values_or_usage_error(args.query, "--query"),
        "Expand": True if args.expand else None,
        "Limit": args.limit,
        "Since": args.since,
        "Labels": args.label,
        "LabelsConstraint": args.labels_constraint,
        "RequestedTags": args.requested_tag,
    }
    results = app.client().find(request)
    if app.use_json(args) or args.expand:
        print_json(results)
    elif not results:
        print("No resources found.")
    else:
        print_lines(results)
    return 0


def run_log_level(args, app) -> int:
    client = app.client()
    if args.level:
        client.set_log_level(args.level)
        print(f"Log level set to: {args.level}")
    else:
        print(client.get_log_level())
    return 0


def run_reset(args, app) -> int:
    if not confirm("Restart the Orthanc server?", assume_yes=args.force):
        print("Aborted.")
        return 0
    app.client().reset()
    print("Orthanc server is restarting")
    return 0


def run_shutdown(args, app) -> int:
    if not confirm("Shut down the Orthanc server?", assume_yes=args.force):
        print("Aborted.")
        return 0
    app.client().shutdown()
    print("Orthanc server is shutting down")
    return 0


def run_system(args, app) -> int:
    info = app.client().system()
    if app.use_json(args):
        print_json(info)
        return 0
    print_fields([
        ("Name", info.get("Name")),
        ("Version", info.get("Version")),
        ("API Version", info.get("ApiVersion")),
        ("DICOM AET", info.get("DicomAet")),
        ("DICOM Port", info.get("DicomPort")),
        ("HTTP Port", info.get("HttpPort")),
        ("Database Version", info.get("DatabaseVersion")),
        ("Storage Area Plugin", info.get("StorageAreaPlugin")),
        ("Database Backend Plugin", info.get("DatabaseBackendPlugin")),
    ])
    return 0


def run_version(args, app) -> int:
    print(f"orthanc-cli {__version__}")
    return 0


def register(subparsers) -> None:
    actions = add_group(subparsers, "tools", "Server-wide tools: find, log level, reset, shutdown")

    p = actions.add_parser("find", help="Search resources with /tools/find")
    add_level_argument(p)
    p.add_argument("--query", action="append", metavar="KEY=VALUE", help="DICOM tag filter, repeatable")
    p.add_argument("--expand", action="store_true", help="Return full resource descriptions")
    p.add_argument("--limit", type=int, help="Maximum number of results")
    p.add_argument("--since", type=int, help="Skip this many results")
    p.add_argument("--label", action="append", help="Label filter, repeatable")
    p.add_argument(
        "--labels-constraint", choices=("All", "Any", "None"), help="How labels are combined"
    )
    p.add_argument("--requested-tag", action="append", help="Extra tag to return, repeatable")
    add_json_flag(p)
    p.set_defaults(handler=run_find)

    p = actions.add_parser("log-level", help="Show or set the server log level")
    p.add_argument("level", nargs="?", choices=LOG_LEVELS)
    p.set_defaults(handler=run_log_level)

    p = actions.add_parser("reset", help="Restart the Orthanc server")
    p.add_argument("-f", "--force", action="store_true", help="Skip confirmation prompt")
    p.set_defaults(handler=run_reset)

    p = actions.add_parser("shutdown", help="Shut down the Orthanc server")
    p.add_argument("-f", "--force", action="store_true", help="Skip confirmation prompt")
    p.set_defaults(handler=run_shutdown)

    p = subparsers.add_parser("system", help="Show Orthanc server information")
    add_json_flag(p)
    p.set_defaults(handler=run_system)

    p = subparsers.add_parser("version", help="Show the CLI version")
    p.set_defaults(handler=run_version)
