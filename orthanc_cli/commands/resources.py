"""``orthanc patients|studies|series|instances``: the DICOM resource hierarchy.

The four groups share list/get/remove/anonymize; studies and series add
child listings and ZIP archives, instances add download and upload.
"""

import logging
from pathlib import Path

import pydicom
from pydicom.errors import InvalidDicomError

from orthanc_cli.client import iter_response_chunks
from orthanc_cli.commands import add_group, add_json_flag, add_tristate_flag
from orthanc_cli.errors import UsageError
from orthanc_cli.output import (
    RESOURCE_PRINTERS,
    confirm,
    format_megabytes,
    notice,
    print_fields,
    print_json,
    print_lines,
    print_resource_list,
)
from orthanc_cli.utils import resolve_output_path, write_stream_to_file

logger = logging.getLogger(__name__)

# level -> singular noun used in messages
LEVEL_NAMES = {
    "patients": "patient",
    "studies": "study",
    "series": "series",
    "instances": "instance",
}


# ---------------------------------------------------------------------------
# Shared actions
# ---------------------------------------------------------------------------

def run_list(args, app) -> int:
    level = args.level
    resources = app.client().list_resources(
        level, expand=args.expand, limit=args.limit, since=args.since
    )
    if app.use_json(args):
        print_json(resources)
    elif args.expand:
        print_resource_list(resources, RESOURCE_PRINTERS[level], f"No {level} found.")
    else:
        print_lines(resources)
    return 0


def run_get(args, app) -> int:
    resource = app.client().get_resource(args.level, args.id)
    if app.use_json(args):
        print_json(resource)
    else:
        RESOURCE_PRINTERS[args.level](resource)
    return 0


def run_remove(args, app) -> int:
    noun = LEVEL_NAMES[args.level]
    if not confirm(f"Remove {noun} {args.id}?", assume_yes=args.force):
        print("Aborted.")
        return 0
    app.client().delete_resource(args.level, args.id)
    print(f"Successfully removed {noun}: {args.id}")
    return 0


def run_anonymize(args, app) -> int:
    noun = LEVEL_NAMES[args.level]
    response = app.client().anonymize(
        args.level,
        args.id,
        force=args.force,
        keep_source=args.keep_source,
        permissive=args.permissive,
    )
    if app.use_json(args):
        print_json(response)
        return 0

    print(f"{noun.capitalize()} anonymized successfully!")
    print_fields([
        (f"New {noun.capitalize()} ID", response.get("ID")),
        ("Patient ID", response.get("PatientID")),
        ("Path", response.get("Path")),
        ("Type", response.get("Type")),
    ])
    return 0


def run_list_children(args, app) -> int:
    children = app.client().list_children(args.level, args.id, args.child, expand=args.expand)
    if app.use_json(args):
        print_json(children)
    elif args.expand:
        if children:
            print(f"Found {len(children)} {args.child}:\n")
        print_resource_list(children, RESOURCE_PRINTERS[args.child], f"No {args.child} found.")
    else:
        print_lines(children)
    return 0


def run_archive(args, app) -> int:
    noun = LEVEL_NAMES[args.level]
    notice(f"Downloading {noun} archive: {args.id}")
    path = resolve_output_path(args.output, f"{args.id}.zip")
    with app.client().download_archive(args.level, args.id) as response:
        written = write_stream_to_file(iter_response_chunks(response), path)
    print(f"Successfully downloaded {noun} archive to: {path}")
    print(f"Size: {format_megabytes(written)}")
    return 0


# ---------------------------------------------------------------------------
# Instances
# ---------------------------------------------------------------------------

def run_download(args, app) -> int:
    notice(f"Downloading DICOM instance: {args.id}")
    path = resolve_output_path(args.output, f"{args.id}.dcm")
    with app.client().download_instance(args.id) as response:
        written = write_stream_to_file(iter_response_chunks(response), path)
    print(f"Successfully downloaded DICOM file to: {path}")
    print(f"Size: {format_megabytes(written)}")
    return 0


def run_anonymize_instance(args, app) -> int:
    notice(f"Anonymizing instance: {args.id}")
    path = resolve_output_path(args.output, f"{args.id}-anonymized.dcm")
    with app.client().anonymize_instance(
        args.id, force=args.force, keep_source=args.keep_source, permissive=args.permissive
    ) as response:
        written = write_stream_to_file(iter_response_chunks(response), path)
    print("Instance anonymized successfully!")
    print(f"Anonymized DICOM file saved to: {path}")
    print(f"Size: {format_megabytes(written)}")
    return 0


def _check_dicom_file(path: Path) -> pydicom.Dataset:
    """Read the header of *path*, refusing anything that is not DICOM."""
    if not path.exists():
        raise UsageError(f"file does not exist: {path}")
    if path.is_dir():
        raise UsageError(f"path is a directory, not a file: {path}")
    try:
        return pydicom.dcmread(path, stop_before_pixels=True)
    except InvalidDicomError as exc:
        raise UsageError(f"{path} is not a DICOM file: {exc}") from exc


def run_upload(args, app) -> int:
    paths = [Path(p) for p in args.files]
    datasets = [_check_dicom_file(path) for path in paths]

    client = app.client()
    results = []
    for path, ds in zip(paths, datasets):
        logger.debug("Uploading %s (SOPInstanceUID %s)", path, ds.get("SOPInstanceUID", "?"))
        notice(f"Uploading DICOM file: {path.name} ({format_megabytes(path.stat().st_size)})")
        with open(path, "rb") as fh:
            results.append(client.upload_instance(fh))

    if app.use_json(args):
        print_json(results[0] if len(results) == 1 else results)
        return 0

    for index, response in enumerate(results):
        if index:
            print()
        print("DICOM file uploaded successfully!")
        print_fields([
            ("Instance ID", response.get("ID")),
            ("Status", response.get("Status")),
            ("Path", response.get("Path")),
            ("Parent Patient", response.get("ParentPatient")),
            ("Parent Study", response.get("ParentStudy")),
            ("Parent Series", response.get("ParentSeries")),
        ])
    return 0


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------

def _add_common(actions, level: str) -> None:
    noun = LEVEL_NAMES[level]

    p = actions.add_parser("list", help=f"List {level} in the Orthanc server")
    p.add_argument("--limit", type=int, default=100, help=f"Maximum number of {level} to return")
    p.add_argument("--since", type=int, default=0, help="Start from this index")
    p.add_argument("--expand", action="store_true", help=f"Show full {noun} details")
    add_json_flag(p)
    p.set_defaults(handler=run_list)

    p = actions.add_parser("get", help=f"Get detailed information about a {noun}")
    p.add_argument("id", metavar=f"{noun}-id")
    add_json_flag(p)
    p.set_defaults(handler=run_get)

    p = actions.add_parser("remove", help=f"Remove a {noun} from the Orthanc server")
    p.add_argument("id", metavar=f"{noun}-id")
    p.add_argument("-f", "--force", action="store_true", help="Skip confirmation prompt")
    p.set_defaults(handler=run_remove)


def _add_anonymize_flags(p) -> None:
    add_tristate_flag(p, "force", "Force operation even if it would create an invalid DICOM file")
    add_tristate_flag(p, "keep-source", "Keep the source resource after anonymization")
    add_tristate_flag(p, "permissive", "Ignore errors during individual steps of the job")


def _add_children(actions, level: str, child: str) -> None:
    noun = LEVEL_NAMES[level]
    p = actions.add_parser(f"list-{child}", help=f"List {child} in a {noun}")
    p.add_argument("id", metavar=f"{noun}-id")
    p.add_argument("--expand", action="store_true", help=f"Show detailed information for each {LEVEL_NAMES[child]}")
    add_json_flag(p)
    p.set_defaults(handler=run_list_children, child=child)


def _add_archive(actions, level: str) -> None:
    noun = LEVEL_NAMES[level]
    p = actions.add_parser("archive", help=f"Download a {noun} as a ZIP archive")
    p.add_argument("id", metavar=f"{noun}-id")
    p.add_argument("-o", "--output", help="Output path (file or directory, defaults to current directory)")
    p.set_defaults(handler=run_archive)


def register(subparsers) -> None:
    for level in ("patients", "studies", "series"):
        actions = add_group(subparsers, level, f"Manage {level} in the Orthanc server")
        _add_common(actions, level)

        p = actions.add_parser("anonymize", help=f"Anonymize a {LEVEL_NAMES[level]}")
        p.add_argument("id", metavar=f"{LEVEL_NAMES[level]}-id")
        _add_anonymize_flags(p)
        add_json_flag(p)
        p.set_defaults(handler=run_anonymize)

        if level == "studies":
            _add_children(actions, level, "series")
            _add_children(actions, level, "instances")
            _add_archive(actions, level)
        elif level == "series":
            _add_children(actions, level, "instances")
            _add_archive(actions, level)

        # Bind the level after the actions exist so every action sees it.
        for choice in actions.choices.values():
            choice.set_defaults(level=level)

    actions = add_group(subparsers, "instances", "Manage instances in the Orthanc server")
    _add_common(actions, "instances")

    p = actions.add_parser("anonymize", help="Anonymize an instance and download the result")
    p.add_argument("id", metavar="instance-id")
    _add_anonymize_flags(p)
    p.add_argument("-o", "--output", help="Output path (file or directory, defaults to current directory)")
    p.set_defaults(handler=run_anonymize_instance)

    p = actions.add_parser("download", help="Download a DICOM instance file")
    p.add_argument("id", metavar="instance-id")
    p.add_argument("-o", "--output", help="Output path (file or directory, defaults to current directory)")
    p.set_defaults(handler=run_download)

    p = actions.add_parser("upload", help="Upload DICOM files to the Orthanc server")
    p.add_argument("files", nargs="+", metavar="file-path")
    add_json_flag(p)
    p.set_defaults(handler=run_upload)

    for choice in actions.choices.values():
        choice.set_defaults(level="instances")
