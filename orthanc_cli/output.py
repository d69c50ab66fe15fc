"""Text and JSON rendering of command results."""

import json
import sys
from typing import Iterable, Optional


def print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def print_lines(items: Iterable) -> None:
    """Print one item per line (resource IDs, names)."""
    for item in items:
        print(item)


def print_fields(fields: Iterable[tuple[str, object]], indent: str = "") -> None:
    """Print ``label: value`` pairs, skipping empty values."""
    for label, value in fields:
        if value is None or value == "" or value == []:
            continue
        print(f"{indent}{label}: {value}")


def format_megabytes(size: int) -> str:
    return f"{size / (1024 * 1024):.2f} MB"


def notice(message: str) -> None:
    """Progress and status messages go to stderr so stdout stays pipeable."""
    print(message, file=sys.stderr)


def confirm(prompt: str, assume_yes: bool = False) -> bool:
    """Ask a yes/no question on the terminal; default is no."""
    if assume_yes:
        return True
    try:
        answer = input(f"{prompt} [y/N]: ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


# ---------------------------------------------------------------------------
# Resource summaries
# ---------------------------------------------------------------------------

def _tags(resource: dict) -> dict:
    return resource.get("MainDicomTags") or {}


def _patient_tags(resource: dict) -> dict:
    return resource.get("PatientMainDicomTags") or {}


def print_patient(patient: dict) -> None:
    tags = _tags(patient)
    print_fields([
        ("OrthancPatientID", patient.get("ID")),
        ("PatientName", tags.get("PatientName")),
        ("PatientID", tags.get("PatientID")),
        ("PatientBirthDate", tags.get("PatientBirthDate")),
        ("PatientSex", tags.get("PatientSex")),
        ("IsStable", patient.get("IsStable")),
        ("LastUpdate", patient.get("LastUpdate")),
        ("Studies", len(patient.get("Studies") or [])),
    ])
    for study_id in patient.get("Studies") or []:
        print(f"  - {study_id}")


def print_study(study: dict) -> None:
    tags = _tags(study)
    patient = _patient_tags(study)
    print_fields([
        ("OrthancStudyID", study.get("ID")),
        ("StudyInstanceUID", tags.get("StudyInstanceUID")),
        ("StudyDate", tags.get("StudyDate")),
        ("StudyDescription", tags.get("StudyDescription")),
        ("AccessionNumber", tags.get("AccessionNumber")),
        ("PatientName", patient.get("PatientName")),
        ("PatientID", patient.get("PatientID")),
        ("ParentPatient", study.get("ParentPatient")),
        ("IsStable", study.get("IsStable")),
        ("LastUpdate", study.get("LastUpdate")),
        ("Series", len(study.get("Series") or [])),
    ])


def print_series(series: dict) -> None:
    tags = _tags(series)
    print_fields([
        ("OrthancSeriesID", series.get("ID")),
        ("SeriesInstanceUID", tags.get("SeriesInstanceUID")),
        ("SeriesDescription", tags.get("SeriesDescription")),
        ("SeriesNumber", tags.get("SeriesNumber")),
        ("Modality", tags.get("Modality")),
        ("ParentStudy", series.get("ParentStudy")),
        ("Status", series.get("Status")),
        ("IsStable", series.get("IsStable")),
        ("LastUpdate", series.get("LastUpdate")),
        ("Instances", len(series.get("Instances") or [])),
    ])


def print_instance(instance: dict) -> None:
    tags = _tags(instance)
    print_fields([
        ("OrthancInstanceID", instance.get("ID")),
        ("SOPInstanceUID", tags.get("SOPInstanceUID")),
        ("InstanceNumber", tags.get("InstanceNumber")),
        ("ParentSeries", instance.get("ParentSeries")),
        ("FileSize", instance.get("FileSize")),
        ("FileUuid", instance.get("FileUuid")),
        ("IndexInSeries", instance.get("IndexInSeries")),
    ])


RESOURCE_PRINTERS = {
    "patients": print_patient,
    "studies": print_study,
    "series": print_series,
    "instances": print_instance,
}


def print_resource_list(resources: list, printer, empty_message: Optional[str] = None) -> None:
    """Print expanded resources separated by blank lines."""
    if not resources:
        if empty_message:
            print(empty_message)
        return
    for index, resource in enumerate(resources):
        if index:
            print()
        printer(resource)
