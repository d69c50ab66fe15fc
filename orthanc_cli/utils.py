"""
Shared helpers for orthanc_cli commands.

Argument parsing helpers (booleans, ``KEY=VALUE`` lists) and the file-side
plumbing used by every command that writes a download to disk.
"""

import logging
import os
from pathlib import Path
from typing import BinaryIO, Iterable, Optional

logger = logging.getLogger(__name__)

_WINDOWS_LONG_PATH_PREFIX = "\\\\?\\"


def normalize_windows_path(path: Path) -> str:
    """Return a Windows-safe path string, adding long-path prefixes if needed."""
    path_str = str(path)
    if os.name != "nt":
        return path_str
    if path_str.startswith(_WINDOWS_LONG_PATH_PREFIX):
        return path_str
    if not Path(path_str).is_absolute():
        return path_str
    if len(path_str) < 240:
        return path_str
    if path_str.startswith("\\\\"):
        return _WINDOWS_LONG_PATH_PREFIX + "UNC\\" + path_str.lstrip("\\")
    return f"{_WINDOWS_LONG_PATH_PREFIX}{path_str}"


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

_TRUE_VALUES = {"1", "t", "true", "y", "yes", "on"}
_FALSE_VALUES = {"0", "f", "false", "n", "no", "off"}


def parse_bool(value: str) -> bool:
    """Parse a boolean flag value such as ``true``/``false``/``1``/``0``.

    Raises
    ------
    ValueError
        If *value* is not a recognised boolean spelling.
    """
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"invalid boolean value {value!r} (use true or false)")


def parse_key_values(items: Optional[Iterable[str]]) -> dict[str, str]:
    """Turn ``["PatientID=123", "Modality=CT"]`` into a dict.

    Items may also be comma-separated (``"A=1,B=2"``).  Values may contain
    ``=``; only the first one splits.

    Raises
    ------
    ValueError
        If an item has no ``=`` or an empty key.
    """
    result: dict[str, str] = {}
    for item in items or ():
        for pair in item.split(","):
            if not pair:
                continue
            key, sep, value = pair.partition("=")
            key = key.strip()
            if not sep or not key:
                raise ValueError(f"expected KEY=VALUE, got {pair!r}")
            result[key] = value.strip()
    return result


def drop_none(mapping: dict) -> dict:
    """Return *mapping* without keys whose value is None.

    Used to build request bodies where an unset option must be omitted
    rather than sent as ``false`` or ``0``.
    """
    return {key: value for key, value in mapping.items() if value is not None}


# ---------------------------------------------------------------------------
# Output files
# ---------------------------------------------------------------------------

def resolve_output_path(output: Optional[str], default_name: str) -> Path:
    """Work out where a downloaded file should be written.

    Parameters
    ----------
    output : str or None
        ``--output`` value.  None writes *default_name* into the current
        directory; an existing directory or a path ending in a separator
        gets *default_name* appended (the directory is created); anything
        else is taken as a file path whose parent is created.
    default_name : str
        File name used when *output* names a directory.
    """
    if not output:
        return Path.cwd() / default_name

    path = Path(output)
    if path.is_dir():
        return path / default_name
    if output.endswith(("/", os.sep)):
        path.mkdir(parents=True, exist_ok=True)
        return path / default_name

    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def copy_stream(chunks: Iterable[bytes], fh: BinaryIO) -> int:
    """Write every chunk to *fh* and return the number of bytes written."""
    written = 0
    for chunk in chunks:
        if chunk:
            fh.write(chunk)
            written += len(chunk)
    return written


def write_stream_to_file(chunks: Iterable[bytes], path: Path) -> int:
    """Stream *chunks* into a new file at *path*; returns bytes written."""
    with open(normalize_windows_path(path), "wb") as fh:
        written = copy_stream(chunks, fh)
    logger.info("Wrote %d bytes to %s", written, path)
    return written
