"""``orthanc servers``: remote DICOMweb servers known to the Orthanc plugin."""

from orthanc_cli.commands import add_group, add_json_flag, add_tristate_flag
from orthanc_cli.commands.modalities import load_json_file
from orthanc_cli.config import PASSWORD_MASK
from orthanc_cli.errors import UsageError
from orthanc_cli.output import confirm, print_fields, print_json, print_lines

SERVER_FIELDS = {
    "url": "Url",
    "username": "Username",
    "password": "Password",
    "has_delete": "HasDelete",
    "chunked_transfers": "ChunkedTransfers",
    "has_wado_rs_universal_transfer_syntax": "HasWadoRsUniversalTransferSyntax",
}


def _server_config(args) -> dict:
    config = load_json_file(args.file) if args.file else {}
    for dest, key in SERVER_FIELDS.items():
        value = getattr(args, dest)
        if value is not None:
            config[key] = value
    return config


def _print_server(name: str, config: dict) -> None:
    print(name)
    print_fields([
        (key, PASSWORD_MASK if key == "Password" and value else value)
        for key, value in sorted(config.items())
    ], "  ")


def run_list(args, app) -> int:
    servers = app.client().list_servers(expand=args.expand)
    if app.use_json(args):
        print_json(servers)
    elif not servers:
        print("No DICOMweb servers configured.")
    elif args.expand:
        for index, (name, config) in enumerate(sorted(servers.items())):
            if index:
                print()
            _print_server(name, config)
    else:
        print_lines(servers)
    return 0


def run_get(args, app) -> int:
    config = app.client().get_server(args.name)
    if app.use_json(args):
        print_json(config)
    else:
        _print_server(args.name, config)
    return 0


def run_create(args, app) -> int:
    config = _server_config(args)
    if not config.get("Url"):
        raise UsageError("--url is required (or a 'Url' entry in --file)")
    app.client().put_server(args.name, config)
    print(f"Successfully created DICOMweb server: {args.name}")
    return 0


def run_update(args, app) -> int:
    client = app.client()
    config = client.get_server(args.name)
    config.update(_server_config(args))
    client.put_server(args.name, config)
    print(f"Successfully updated DICOMweb server: {args.name}")
    return 0


def run_remove(args, app) -> int:
    if not confirm(f"Remove DICOMweb server {args.name}?", assume_yes=args.force):
        print("Aborted.")
        return 0
    app.client().delete_server(args.name)
    print(f"Successfully removed DICOMweb server: {args.name}")
    return 0


def _add_server_options(p) -> None:
    p.add_argument("--file", help="JSON file with the server configuration")
    p.add_argument("--url", help="Base URL of the DICOMweb server")
    p.add_argument("--username", help="HTTP username")
    p.add_argument("--password", help="HTTP password")
    add_tristate_flag(p, "has-delete", "Server supports DELETE")
    add_tristate_flag(p, "chunked-transfers", "Server supports chunked transfers")
    add_tristate_flag(
        p,
        "has-wado-rs-universal-transfer-syntax",
        "Server accepts transfer-syntax=* in WADO-RS",
    )


def register(subparsers) -> None:
    actions = add_group(subparsers, "servers", "Manage DICOMweb servers")

    p = actions.add_parser("list", help="List DICOMweb servers")
    p.add_argument("--expand", action="store_true", help="Show server configurations")
    add_json_flag(p)
    p.set_defaults(handler=run_list)

    p = actions.add_parser("get", help="Show a DICOMweb server configuration")
    p.add_argument("name")
    add_json_flag(p)
    p.set_defaults(handler=run_get)

    p = actions.add_parser("create", help="Create a DICOMweb server")
    p.add_argument("name")
    _add_server_options(p)
    p.set_defaults(handler=run_create)

    p = actions.add_parser("update", help="Update a DICOMweb server (unset options are kept)")
    p.add_argument("name")
    _add_server_options(p)
    p.set_defaults(handler=run_update)

    p = actions.add_parser("remove", help="Remove a DICOMweb server")
    p.add_argument("name")
    p.add_argument("-f", "--force", action="store_true", help="Skip confirmation prompt")
    p.set_defaults(handler=run_remove)
