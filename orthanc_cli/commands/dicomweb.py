"""``orthanc dicomweb``: QIDO-RS search, WADO-URI and WADO-RS retrieval.

WADO-RS bulk retrievals come back as ``multipart/related`` bodies; those are
streamed through :func:`orthanc_cli.multipart.extract_multipart`, which
writes one file per part into a directory, packs the parts into a zip
archive, or just lists them.  Anything else (rendered images, single-part
responses) is written as-is to ``--output`` or to stdout.
"""

import json
import logging
import sys

from pydicom.datadict import keyword_for_tag

from orthanc_cli.client import iter_response_chunks
from orthanc_cli.commands import add_group, add_json_flag
from orthanc_cli.errors import UsageError
from orthanc_cli.multipart import extract_multipart, is_multipart, select_sink
from orthanc_cli.output import format_megabytes, notice, print_json
from orthanc_cli.utils import copy_stream, resolve_output_path, write_stream_to_file

logger = logging.getLogger(__name__)

QIDO_LEVELS = ("studies", "series", "instances")

# --option (argparse dest) -> QIDO-RS attribute keyword
QIDO_FILTERS = {
    "study_uid": "StudyInstanceUID",
    "series_uid": "SeriesInstanceUID",
    "patient_id": "PatientID",
    "patient_name": "PatientName",
    "study_date": "StudyDate",
    "accession_number": "AccessionNumber",
    "modality": "Modality",
    "modalities_in_study": "ModalitiesInStudy",
    "series_number": "SeriesNumber",
    "sop_class_uid": "SOPClassUID",
}


# ---------------------------------------------------------------------------
# QIDO-RS
# ---------------------------------------------------------------------------

def qido_path(level: str, study_uid=None, series_uid=None) -> str:
    """Use the hierarchical QIDO-RS URL when the parent UIDs are known."""
    if level == "studies" or not study_uid:
        return level
    if level == "series":
        return f"studies/{study_uid}/series"
    if series_uid:
        return f"studies/{study_uid}/series/{series_uid}/instances"
    return f"studies/{study_uid}/instances"


def qido_params(args) -> dict:
    params = {
        attribute: getattr(args, dest)
        for dest, attribute in QIDO_FILTERS.items()
        if getattr(args, dest) is not None
    }
    params["limit"] = args.limit
    params["offset"] = args.offset
    if args.fuzzy:
        params["fuzzymatching"] = "true"
    if args.include_field:
        params["includefield"] = args.include_field
    return params


def _dicom_json_value(element: dict) -> str:
    values = []
    for value in element.get("Value") or []:
        if isinstance(value, dict):
            # Person names come back as {"Alphabetic": ...}.
            value = value.get("Alphabetic", "")
        values.append(str(value))
    return "\\".join(values)


def print_dicom_json(dataset: dict) -> None:
    for tag in sorted(dataset):
        value = _dicom_json_value(dataset[tag])
        if not value:
            continue
        keyword = keyword_for_tag(int(tag, 16)) or tag
        print(f"  {keyword}: {value}")


def run_qido(args, app) -> int:
    path = qido_path(args.level, args.study_uid, args.series_uid)
    results = app.client().qido(path, qido_params(args))
    if app.use_json(args):
        print_json(results)
        return 0
    if not results:
        print(f"No {args.level} found.")
        return 0
    print(f"Found {len(results)} {args.level}:")
    for result in results:
        print()
        print_dicom_json(result)
    return 0


# ---------------------------------------------------------------------------
# WADO-URI
# ---------------------------------------------------------------------------

def _write_body(response, output) -> None:
    """Write a non-multipart body to *output* or stdout."""
    if output:
        path = resolve_output_path(output, "wado-response")
        written = write_stream_to_file(iter_response_chunks(response), path)
        print(f"Saved {format_megabytes(written)} to: {path}")
    else:
        copy_stream(iter_response_chunks(response), sys.stdout.buffer)
        sys.stdout.buffer.flush()


def run_wado(args, app) -> int:
    params = {
        "studyUID": args.study_uid,
        "seriesUID": args.series_uid,
        "objectUID": args.object_uid,
        "contentType": args.content_type,
        "transferSyntax": args.transfer_syntax,
        "anonymize": "yes" if args.anonymize else None,
        "frameNumber": args.frame,
        "imageQuality": args.quality,
        "rows": args.rows,
        "columns": args.columns,
        "region": args.region,
        "windowCenter": args.window_center,
        "windowWidth": args.window_width,
    }
    with app.client().wado_uri(params) as response:
        _write_body(response, args.output)
    return 0


# ---------------------------------------------------------------------------
# WADO-RS
# ---------------------------------------------------------------------------

def _check_wado_rs_args(args) -> None:
    if args.instance_uid and not args.series_uid:
        raise UsageError("--instance-uid requires --series-uid")
    if args.frames and not args.instance_uid:
        raise UsageError("--frames requires --instance-uid")
    if args.metadata and args.rendered:
        raise UsageError("--metadata and --rendered cannot be combined")
    if args.metadata and args.frames:
        raise UsageError("--metadata cannot be combined with --frames")
    if args.rendered and not args.instance_uid:
        raise UsageError("--rendered requires --series-uid and --instance-uid")
    if args.output and args.output_dir:
        raise UsageError("--output and --output-dir cannot be combined")


def _wado_rs_metadata(args, app) -> int:
    metadata = app.client().wado_rs_metadata(args.study_uid, args.series_uid, args.instance_uid)
    if args.output:
        path = resolve_output_path(args.output, "metadata.json")
        path.write_text(json.dumps(metadata, indent=2, ensure_ascii=False), encoding="utf-8")
        print(f"Saved metadata for {len(metadata)} instance(s) to: {path}")
    elif app.use_json(args) or not metadata:
        print_json(metadata)
    else:
        for index, dataset in enumerate(metadata):
            if index:
                print()
            print(f"Instance {index + 1}:")
            print_dicom_json(dataset)
    return 0


def run_wado_rs(args, app) -> int:
    _check_wado_rs_args(args)

    if args.metadata:
        return _wado_rs_metadata(args, app)

    client = app.client()
    if args.rendered:
        response = client.wado_rs_rendered(
            args.study_uid,
            args.series_uid,
            args.instance_uid,
            frames=args.frames,
            accept=args.accept,
            quality=args.quality,
            viewport=args.viewport,
        )
    else:
        response = client.wado_rs_retrieve(
            args.study_uid, args.series_uid, args.instance_uid, frames=args.frames
        )

    with response:
        content_type = response.headers.get("Content-Type")
        logger.debug("WADO-RS response Content-Type: %s", content_type)
        if is_multipart(content_type):
            extract_multipart(
                content_type,
                iter_response_chunks(response),
                select_sink(args.output, args.output_dir),
            )
        else:
            if args.output_dir:
                notice("Response is not multipart; ignoring --output-dir")
            _write_body(response, args.output)
    return 0


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------

def register(subparsers) -> None:
    actions = add_group(subparsers, "dicomweb", "DICOMweb: QIDO-RS, WADO-URI and WADO-RS")

    p = actions.add_parser("qido", help="Search with QIDO-RS")
    p.add_argument("--level", choices=QIDO_LEVELS, default="studies", help="Search level (default: studies)")
    p.add_argument("--study-uid", help="StudyInstanceUID")
    p.add_argument("--series-uid", help="SeriesInstanceUID")
    p.add_argument("--patient-id", help="PatientID")
    p.add_argument("--patient-name", help="PatientName (wildcards allowed)")
    p.add_argument("--study-date", help="StudyDate or range (YYYYMMDD-YYYYMMDD)")
    p.add_argument("--accession-number", help="AccessionNumber")
    p.add_argument("--modality", help="Modality (series level)")
    p.add_argument("--modalities-in-study", help="ModalitiesInStudy (study level)")
    p.add_argument("--series-number", help="SeriesNumber")
    p.add_argument("--sop-class-uid", help="SOPClassUID")
    p.add_argument("--limit", type=int, help="Maximum number of results")
    p.add_argument("--offset", type=int, help="Skip this many results")
    p.add_argument("--fuzzy", action="store_true", help="Enable fuzzy matching")
    p.add_argument("--include-field", action="append", help="Extra attribute to return, repeatable")
    add_json_flag(p)
    p.set_defaults(handler=run_qido)

    p = actions.add_parser("wado", help="Retrieve a single object with WADO-URI")
    p.add_argument("--study-uid", required=True, help="StudyInstanceUID")
    p.add_argument("--series-uid", required=True, help="SeriesInstanceUID")
    p.add_argument("--object-uid", required=True, help="SOPInstanceUID")
    p.add_argument("--content-type", help="Requested media type (e.g. application/dicom, image/jpeg)")
    p.add_argument("--transfer-syntax", help="Transfer syntax UID")
    p.add_argument("--anonymize", action="store_true", help="Request an anonymized object")
    p.add_argument("--frame", type=int, help="Frame number")
    p.add_argument("--quality", type=int, help="Image quality (1-100)")
    p.add_argument("--rows", type=int, help="Output rows")
    p.add_argument("--columns", type=int, help="Output columns")
    p.add_argument("--region", help="Region as x1,y1,x2,y2 (normalised)")
    p.add_argument("--window-center", help="Window center")
    p.add_argument("--window-width", help="Window width")
    p.add_argument("-o", "--output", help="Output file (defaults to stdout)")
    p.set_defaults(handler=run_wado)

    p = actions.add_parser("wado-rs", help="Retrieve studies, series, instances or frames with WADO-RS")
    p.add_argument("--study-uid", required=True, help="StudyInstanceUID")
    p.add_argument("--series-uid", help="SeriesInstanceUID")
    p.add_argument("--instance-uid", help="SOPInstanceUID")
    p.add_argument("--frames", help="Frame list, e.g. 1 or 1,3,5")
    p.add_argument("--metadata", action="store_true", help="Retrieve metadata as DICOM JSON")
    p.add_argument("--rendered", action="store_true", help="Retrieve a rendered image")
    p.add_argument("--accept", help="Media type for --rendered (e.g. image/png)")
    p.add_argument("--quality", type=int, help="Rendered image quality (1-100)")
    p.add_argument("--viewport", help="Rendered viewport, e.g. 512,512")
    p.add_argument("-o", "--output", help="Output file; multipart responses are saved as a .zip")
    p.add_argument("--output-dir", help="Extract each part of a multipart response into this directory")
    add_json_flag(p)
    p.set_defaults(handler=run_wado_rs)
