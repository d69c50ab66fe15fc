"""Streaming extraction of ``multipart/related`` WADO-RS responses.

A WADO-RS study or series retrieval returns every instance in one HTTP body,
each DICOM object in its own MIME part::

    --BOUNDARY\\r\\n
    Content-Type: application/dicom\\r\\n
    Content-Location: /dicom-web/studies/1.2/series/1.2.3/instances/1.2.3.4\\r\\n
    \\r\\n
    <DICOM bytes>\\r\\n
    --BOUNDARY--\\r\\n

:class:`MultipartReader` splits such a body into :class:`MultipartPart`
objects while reading it chunk by chunk, so a part is never held in memory
as a whole.  Each part is handed to one *sink*:

- :class:`DirectorySink` writes one ``.dcm`` file per part,
- :class:`ZipSink` adds one entry per part to a zip archive,
- :class:`ListingSink` only counts bytes and prints a table (dry run).

Parts are processed in arrival order.  An error half way through leaves the
files written for earlier parts in place.
"""

import logging
import sys
import zipfile
from dataclasses import dataclass, field
from email.message import Message
from email.parser import BytesHeaderParser
from pathlib import Path, PurePosixPath
from typing import Iterable, Iterator, Optional, TextIO

from orthanc_cli.errors import MalformedContentTypeError, MultipartStreamError
from orthanc_cli.output import notice
from orthanc_cli.utils import copy_stream, normalize_windows_path

logger = logging.getLogger(__name__)

# Part headers larger than this are treated as a corrupt stream.
MAX_HEADER_BYTES = 64 * 1024

ZIP_SUFFIX = ".zip"


# ---------------------------------------------------------------------------
# Content-Type
# ---------------------------------------------------------------------------

def is_multipart(content_type: Optional[str]) -> bool:
    """Only ``multipart/related`` bodies go through the extractor."""
    return bool(content_type) and "multipart/related" in content_type.lower()


def parse_boundary(content_type: Optional[str]) -> str:
    """Return the boundary token declared by a multipart Content-Type.

    Raises
    ------
    MalformedContentTypeError
        If the media type is not ``multipart/*`` or has no boundary.
    """
    if not content_type:
        raise MalformedContentTypeError("missing Content-Type header")

    msg = Message()
    msg["Content-Type"] = content_type
    if msg.get_content_maintype() != "multipart":
        raise MalformedContentTypeError(f"expected multipart response, got: {content_type}")

    boundary = msg.get_boundary()
    if not boundary:
        raise MalformedContentTypeError(f"no boundary found in multipart content type: {content_type}")
    return boundary


# ---------------------------------------------------------------------------
# Parts
# ---------------------------------------------------------------------------

@dataclass
class MultipartPart:
    """One MIME part; :attr:`body` yields its bytes exactly once."""

    index: int
    headers: Message = field(repr=False)
    body: Iterator[bytes] = field(repr=False)

    @property
    def content_type(self) -> str:
        return self.headers.get("Content-Type", "")

    @property
    def content_location(self) -> str:
        return self.headers.get("Content-Location", "")

    @property
    def filename(self) -> Optional[str]:
        """``filename`` parameter of Content-Disposition, reduced to a base name."""
        raw = self.headers.get_filename()
        if not raw:
            return None
        name = PurePosixPath(raw.replace("\\", "/")).name
        if name in ("", ".", ".."):
            return None
        return name


def part_filename(part: MultipartPart) -> str:
    """Choose the output file name for *part*.

    Priority: an explicit Content-Disposition filename, then the last path
    segment of Content-Location plus ``.dcm``, then ``instance_NNNN.dcm``
    numbered by the part's position in the stream.
    """
    if part.filename:
        return part.filename

    location = part.content_location.strip().strip("/")
    if location:
        segment = location.split("/")[-1]
        if segment and segment not in (".", ".."):
            return f"{segment}.dcm"

    return f"instance_{part.index:04d}.dcm"


class MultipartReader:
    """Incremental parser over an iterable of byte chunks.

    Iterating yields :class:`MultipartPart` objects.  Asking for the next part
    discards whatever the caller did not read from the previous one.
    """

    def __init__(self, chunks: Iterable[bytes], boundary: str) -> None:
        self._chunks = iter(chunks)
        self._delimiter = b"--" + boundary.encode("latin-1")
        # A delimiter always follows a line break; the stream is primed with
        # one so a delimiter on the very first line is found the same way.
        self._marker = b"\r\n" + self._delimiter
        self._buffer = bytearray(b"\r\n")
        self._eof = False
        self._started = False
        self._finished = False
        self._current: Optional[Iterator[bytes]] = None
        self._count = 0

    def __iter__(self) -> Iterator[MultipartPart]:
        while True:
            part = self.next_part()
            if part is None:
                return
            yield part

    # ----- buffer management -----

    def _fill(self) -> bool:
        """Append the next non-empty chunk to the buffer; False at end of stream."""
        if self._eof:
            return False
        for chunk in self._chunks:
            if chunk:
                self._buffer += chunk
                return True
        self._eof = True
        return False

    def _ensure(self, size: int) -> bool:
        while len(self._buffer) < size:
            if not self._fill():
                return False
        return True

    def _find(self, needle: bytes, start: int = 0, limit: Optional[int] = None) -> int:
        while True:
            idx = self._buffer.find(needle, start)
            if idx >= 0:
                return idx
            if limit is not None and len(self._buffer) > limit:
                raise MultipartStreamError("multipart part headers exceed size limit")
            if not self._fill():
                return -1

    def _is_delimiter(self, idx: int) -> bool:
        """Whether the marker at *idx* ends the boundary.

        The boundary must be followed by ``--``, whitespace or a line break;
        ``--abcdef`` is not a delimiter for boundary ``abc``.
        """
        end = idx + len(self._marker)
        self._ensure(end + 2)
        tail = bytes(self._buffer[end : end + 2])
        return not tail or tail == b"--" or tail[:1] in (b"\r", b"\n", b" ", b"\t")

    def _skip_preamble(self) -> bool:
        keep = len(self._marker) - 1
        while True:
            idx = self._buffer.find(self._marker)
            if idx >= 0 and self._is_delimiter(idx):
                del self._buffer[: idx + 2]
                return True
            if idx >= 0:
                del self._buffer[: idx + 1]
                continue
            if len(self._buffer) > keep:
                del self._buffer[: len(self._buffer) - keep]
            if not self._fill():
                return False

    # ----- parsing -----

    def _read_headers(self) -> Message:
        parser = BytesHeaderParser()
        if not self._ensure(2):
            raise MultipartStreamError("multipart body ended inside part headers")
        if self._buffer[:2] == b"\r\n":
            del self._buffer[:2]
            return parser.parsebytes(b"\r\n")

        end = self._find(b"\r\n\r\n", 0, MAX_HEADER_BYTES)
        if end < 0:
            raise MultipartStreamError("multipart body ended inside part headers")
        raw = bytes(self._buffer[: end + 4])
        del self._buffer[: end + 4]
        return parser.parsebytes(raw)

    def _read_body(self) -> Iterator[bytes]:
        keep = len(self._marker) - 1
        while True:
            idx = self._buffer.find(self._marker)
            if idx >= 0 and self._is_delimiter(idx):
                if idx:
                    yield bytes(self._buffer[:idx])
                # Leave "--boundary" at the head of the buffer.
                del self._buffer[: idx + 2]
                return
            if idx >= 0:
                # Longer boundary-like text is payload.
                yield bytes(self._buffer[: idx + 1])
                del self._buffer[: idx + 1]
                continue
            if len(self._buffer) > keep:
                cut = len(self._buffer) - keep
                yield bytes(self._buffer[:cut])
                del self._buffer[:cut]
            if not self._fill():
                raise MultipartStreamError(
                    f"multipart body ended inside part {self._count} (missing closing boundary)"
                )

    def next_part(self) -> Optional[MultipartPart]:
        """Return the next part, or None once the closing delimiter is reached."""
        if self._finished:
            return None

        if self._current is not None:
            for _ in self._current:
                pass
            self._current = None

        if not self._started:
            self._started = True
            if not self._skip_preamble():
                logger.debug("Multipart body contains no delimiter, treating as empty")
                self._finished = True
                return None

        size = len(self._delimiter)
        self._ensure(size + 2)
        if self._buffer[size : size + 2] == b"--":
            self._finished = True
            return None

        # Skip transport padding up to the end of the delimiter line.
        eol = self._find(b"\r\n", size)
        if eol < 0:
            raise MultipartStreamError("multipart body ended inside a delimiter line")
        del self._buffer[: eol + 2]

        headers = self._read_headers()
        self._count += 1
        self._current = self._read_body()
        return MultipartPart(index=self._count, headers=headers, body=self._current)


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------

@dataclass
class ExtractionResult:
    part_count: int
    total_bytes: int
    destination: str


class PartSink:
    """Destination for extracted parts; used as a context manager."""

    destination = ""

    def __enter__(self) -> "PartSink":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def open(self) -> None:
        pass

    def close(self) -> None:
        pass

    def write_part(self, part: MultipartPart, filename: str) -> int:
        """Consume *part* and return the number of body bytes."""
        raise NotImplementedError

    def report(self, result: ExtractionResult) -> None:
        pass


class DirectorySink(PartSink):
    """One file per part inside a directory (created if missing)."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)
        self.destination = str(self.directory)

    def open(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)

    def write_part(self, part: MultipartPart, filename: str) -> int:
        path = self.directory / filename
        with open(normalize_windows_path(path), "wb") as fh:
            written = copy_stream(part.body, fh)
        logger.debug("Part %d -> %s (%d bytes)", part.index, path, written)
        notice(f"Extracted: {filename} ({written} bytes)")
        return written

    def report(self, result: ExtractionResult) -> None:
        notice(
            f"\nExtracted {result.part_count} files ({result.total_bytes} bytes total) "
            f"to {result.destination}"
        )


class ZipSink(PartSink):
    """One archive entry per part."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.destination = str(self.path)
        self._zip: Optional[zipfile.ZipFile] = None
        self._names: set[str] = set()

    def open(self) -> None:
        self._names.clear()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._zip = zipfile.ZipFile(
            normalize_windows_path(self.path), "w", compression=zipfile.ZIP_DEFLATED
        )

    def close(self) -> None:
        if self._zip is not None:
            self._zip.close()
            self._zip = None

    def write_part(self, part: MultipartPart, filename: str) -> int:
        if self._zip is None:
            raise RuntimeError("ZipSink.write_part called before open()")
        filename = self._unique_name(filename)
        with self._zip.open(filename, mode="w", force_zip64=True) as entry:
            written = copy_stream(part.body, entry)
        logger.debug("Part %d -> %s:%s (%d bytes)", part.index, self.path, filename, written)
        return written

    def _unique_name(self, filename: str) -> str:
        """Suffix repeated entry names: ``a.dcm``, ``a_2.dcm``, ``a_3.dcm``."""
        candidate = filename
        path = PurePosixPath(filename)
        n = 1
        while candidate in self._names:
            n += 1
            candidate = f"{path.stem}_{n}{path.suffix}"
        self._names.add(candidate)
        return candidate

    def report(self, result: ExtractionResult) -> None:
        notice(
            f"Created {result.destination} with {result.part_count} files "
            f"({result.total_bytes} bytes total)"
        )


class ListingSink(PartSink):
    """Dry run: count each part's bytes and print a summary table."""

    destination = "-"

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self._stream = stream

    def _print(self, text: str = "") -> None:
        print(text, file=self._stream or sys.stdout)

    def open(self) -> None:
        self._print("Multipart response contains:")

    def write_part(self, part: MultipartPart, filename: str) -> int:
        size = sum(len(chunk) for chunk in part.body)
        self._print(f"  Part {part.index}: {part.content_type or 'unknown'} ({size} bytes)")
        return size

    def report(self, result: ExtractionResult) -> None:
        self._print(f"\nTotal: {result.part_count} parts ({result.total_bytes} bytes)")
        self._print("\nUse --output file.zip or --output-dir ./dir/ to save the files")


def select_sink(output: Optional[str] = None, output_dir: Optional[str] = None) -> PartSink:
    """Pick the sink for a multipart response.

    ``output_dir`` wins; otherwise ``output`` becomes a zip archive (its
    extension is forced to ``.zip``); with neither, parts are only listed.
    """
    if output_dir:
        return DirectorySink(Path(output_dir))

    if output:
        path = Path(output)
        if path.suffix.lower() != ZIP_SUFFIX:
            path = path.with_suffix(ZIP_SUFFIX)
            notice(f"Multipart response detected, saving as: {path}")
        return ZipSink(path)

    return ListingSink()


def extract_multipart(
    content_type: Optional[str], chunks: Iterable[bytes], sink: PartSink
) -> ExtractionResult:
    """Split a multipart body into parts and feed each one to *sink*.

    The boundary is validated before the sink is opened, so a malformed
    Content-Type writes nothing.
    """
    boundary = parse_boundary(content_type)
    reader = MultipartReader(chunks, boundary)

    part_count = 0
    total_bytes = 0
    with sink:
        for part in reader:
            filename = part_filename(part)
            total_bytes += sink.write_part(part, filename)
            part_count += 1

    result = ExtractionResult(part_count, total_bytes, sink.destination)
    logger.info(
        "Extracted %d parts (%d bytes) to %s", part_count, total_bytes, result.destination
    )
    sink.report(result)
    return result
