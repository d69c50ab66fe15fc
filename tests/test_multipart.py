"""Tests for orthanc_cli.multipart: boundary parsing, streaming reader, sinks."""

import io
import warnings
import zipfile

import pytest

from orthanc_cli.errors import MalformedContentTypeError, MultipartStreamError
from orthanc_cli.multipart import (
    DirectorySink,
    ListingSink,
    MultipartReader,
    ZipSink,
    extract_multipart,
    is_multipart,
    parse_boundary,
    select_sink,
)

BOUNDARY = "b0undary-XYZ"
CONTENT_TYPE = f'multipart/related; type="application/dicom"; boundary={BOUNDARY}'


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _body(parts, boundary=BOUNDARY, preamble=b"", epilogue=b""):
    """Assemble a multipart body from (headers dict, payload bytes) pairs."""
    out = bytearray(preamble)
    for headers, payload in parts:
        out += f"--{boundary}\r\n".encode()
        for key, value in headers.items():
            out += f"{key}: {value}\r\n".encode()
        out += b"\r\n" + payload + b"\r\n"
    out += f"--{boundary}--\r\n".encode() + epilogue
    return bytes(out)


def _chunks(data, size):
    return [data[i:i + size] for i in range(0, len(data), size)]


def _dicom_parts(n):
    return [
        ({"Content-Type": "application/dicom"}, f"DICM-payload-{i}".encode() * (i + 1))
        for i in range(n)
    ]


def _read_all(data, chunk_size=None):
    chunks = _chunks(data, chunk_size) if chunk_size else [data]
    return [
        (part.content_type, b"".join(part.body))
        for part in MultipartReader(chunks, BOUNDARY)
    ]


# ---------------------------------------------------------------------------
# Content-Type
# ---------------------------------------------------------------------------

class TestParseBoundary:
    def test_plain_boundary(self):
        assert parse_boundary(CONTENT_TYPE) == BOUNDARY

    def test_quoted_boundary(self):
        assert parse_boundary('multipart/related; boundary="a b:c"') == "a b:c"

    def test_missing_header(self):
        with pytest.raises(MalformedContentTypeError):
            parse_boundary(None)

    def test_not_multipart(self):
        with pytest.raises(MalformedContentTypeError):
            parse_boundary("application/dicom")

    def test_no_boundary(self):
        with pytest.raises(MalformedContentTypeError):
            parse_boundary('multipart/related; type="application/dicom"')

    def test_is_multipart(self):
        assert is_multipart(CONTENT_TYPE)
        assert is_multipart("Multipart/Related; boundary=x")
        assert not is_multipart("application/dicom")
        assert not is_multipart(None)

    def test_other_multipart_subtypes_not_extracted(self):
        assert not is_multipart("multipart/mixed; boundary=x")
        assert not is_multipart("multipart/form-data; boundary=x")


# ---------------------------------------------------------------------------
# Reader
# ---------------------------------------------------------------------------

class TestMultipartReader:
    def test_parts_in_order(self):
        parts = _dicom_parts(3)
        result = _read_all(_body(parts))
        assert result == [("application/dicom", payload) for _, payload in parts]

    @pytest.mark.parametrize("chunk_size", [1, 3, len(BOUNDARY) + 3, 64])
    def test_boundary_split_across_chunks(self, chunk_size):
        parts = _dicom_parts(4)
        assert _read_all(_body(parts), chunk_size) == _read_all(_body(parts))

    def test_payload_containing_crlf_and_dashes(self):
        # A delimiter only counts after CRLF; a bare LF before it is payload data.
        payload = b"\r\n--not-the-boundary\n--" + BOUNDARY.encode() + b"x"
        result = _read_all(_body([({"Content-Type": "application/dicom"}, payload)]), 5)
        assert result == [("application/dicom", payload)]

    @pytest.mark.parametrize("chunk_size", [None, 1, 4])
    def test_longer_boundary_lookalike_is_payload(self, chunk_size):
        payload = b"head\r\n--abcdef tail"
        data = _body([({"Content-Type": "application/dicom"}, payload)], boundary="abc")
        chunks = _chunks(data, chunk_size) if chunk_size else [data]
        result = [b"".join(part.body) for part in MultipartReader(chunks, "abc")]
        assert result == [payload]

    def test_lookalike_in_preamble_skipped(self):
        data = _body([({}, b"x")], boundary="abc", preamble=b"--abcdef\r\n")
        assert [b"".join(p.body) for p in MultipartReader([data], "abc")] == [b"x"]

    def test_preamble_and_epilogue_ignored(self):
        data = _body(_dicom_parts(2), preamble=b"junk before\r\n", epilogue=b"trailing junk")
        assert len(_read_all(data)) == 2

    def test_empty_part_body(self):
        data = _body([({"Content-Type": "application/dicom"}, b"")])
        assert _read_all(data) == [("application/dicom", b"")]

    def test_part_without_headers(self):
        data = _body([({}, b"raw")])
        assert _read_all(data) == [("", b"raw")]

    def test_empty_stream_has_no_parts(self):
        assert _read_all(b"") == []

    def test_only_close_delimiter(self):
        assert _read_all(f"--{BOUNDARY}--\r\n".encode()) == []

    def test_truncated_stream(self):
        data = _body(_dicom_parts(2))
        truncated = data[: data.rindex(b"--" + BOUNDARY.encode()) - 10]
        with pytest.raises(MultipartStreamError):
            _read_all(truncated)

    def test_unread_part_is_skipped(self):
        parts = _dicom_parts(3)
        reader = MultipartReader(_chunks(_body(parts), 7), BOUNDARY)
        first = reader.next_part()
        second = reader.next_part()
        assert first.index == 1
        assert b"".join(second.body) == parts[1][1]

    def test_content_disposition_filename(self):
        headers = {
            "Content-Type": "application/dicom",
            "Content-Disposition": 'attachment; filename="../../etc/evil.dcm"',
        }
        part = next(iter(MultipartReader([_body([(headers, b"x")])], BOUNDARY)))
        assert part.filename == "evil.dcm"


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

class TestDirectorySink:
    def test_writes_one_file_per_part(self, tmp_path, capsys):
        parts = _dicom_parts(3)
        out = tmp_path / "out"
        result = extract_multipart(CONTENT_TYPE, _chunks(_body(parts), 11), DirectorySink(out))

        assert result.part_count == 3
        assert result.total_bytes == sum(len(p) for _, p in parts)
        assert sorted(f.name for f in out.iterdir()) == [
            "instance_0001.dcm", "instance_0002.dcm", "instance_0003.dcm",
        ]
        assert (out / "instance_0002.dcm").read_bytes() == parts[1][1]
        err = capsys.readouterr().err
        assert "Extracted: instance_0001.dcm" in err
        assert f"Extracted 3 files ({result.total_bytes} bytes total)" in err

    def test_filename_from_content_location(self, tmp_path):
        headers = {
            "Content-Type": "application/dicom",
            "Content-Location": "/dicom-web/studies/1.2/series/1.2.3/instances/1.2.3.4",
        }
        extract_multipart(CONTENT_TYPE, [_body([(headers, b"abc")])], DirectorySink(tmp_path))
        assert (tmp_path / "1.2.3.4.dcm").read_bytes() == b"abc"

    def test_names_stable_across_runs(self, tmp_path):
        parts = [
            (
                {
                    "Content-Type": "application/dicom",
                    "Content-Location": f"/dicom-web/studies/1.2/series/1.2.3/instances/1.2.3.{i}",
                },
                f"instance-{i}".encode(),
            )
            for i in range(1, 4)
        ]
        data = _body(parts)
        for name in ("a", "b"):
            extract_multipart(CONTENT_TYPE, _chunks(data, 9), DirectorySink(tmp_path / name))

        first = sorted(f.name for f in (tmp_path / "a").iterdir())
        second = sorted(f.name for f in (tmp_path / "b").iterdir())
        assert first == second == ["1.2.3.1.dcm", "1.2.3.2.dcm", "1.2.3.3.dcm"]
        assert (tmp_path / "b" / "1.2.3.2.dcm").read_bytes() == b"instance-2"

    def test_completed_parts_kept_on_stream_error(self, tmp_path):
        data = _body(_dicom_parts(2))
        out = tmp_path / "out"
        with pytest.raises(MultipartStreamError):
            extract_multipart(CONTENT_TYPE, [data[:-40]], DirectorySink(out))
        assert (out / "instance_0001.dcm").read_bytes() == b"DICM-payload-0"

    def test_malformed_content_type_writes_nothing(self, tmp_path):
        out = tmp_path / "out"
        with pytest.raises(MalformedContentTypeError):
            extract_multipart("application/dicom", [_body(_dicom_parts(1))], DirectorySink(out))
        assert not out.exists()

    def test_zero_parts(self, tmp_path):
        result = extract_multipart(CONTENT_TYPE, [b""], DirectorySink(tmp_path / "out"))
        assert result.part_count == 0
        assert result.total_bytes == 0
        assert list((tmp_path / "out").iterdir()) == []


class TestZipSink:
    def test_archive_entries(self, tmp_path, capsys):
        parts = _dicom_parts(2)
        path = tmp_path / "study.zip"
        result = extract_multipart(CONTENT_TYPE, _chunks(_body(parts), 5), ZipSink(path))

        with zipfile.ZipFile(path) as zf:
            assert zf.namelist() == ["instance_0001.dcm", "instance_0002.dcm"]
            assert zf.read("instance_0001.dcm") == parts[0][1]
        assert result.destination == str(path)
        assert f"Created {path} with 2 files" in capsys.readouterr().err

    def test_archive_closed_on_stream_error(self, tmp_path):
        data = _body(_dicom_parts(2))
        path = tmp_path / "partial.zip"
        with pytest.raises(MultipartStreamError):
            extract_multipart(CONTENT_TYPE, [data[:-40]], ZipSink(path))
        with zipfile.ZipFile(path) as zf:
            names = zf.namelist()
            assert names[0] == "instance_0001.dcm"
            assert zf.read(names[0]) == b"DICM-payload-0"

    def test_duplicate_names_suffixed(self, tmp_path):
        headers = {"Content-Type": "application/dicom", "Content-Location": "/instances/x"}
        path = tmp_path / "dup.zip"
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            extract_multipart(
                CONTENT_TYPE, [_body([(headers, b"one"), (headers, b"two")])], ZipSink(path)
            )
        with zipfile.ZipFile(path) as zf:
            assert zf.namelist() == ["x.dcm", "x_2.dcm"]
            assert zf.read("x_2.dcm") == b"two"


class TestListingSink:
    def test_prints_table(self):
        parts = _dicom_parts(2)
        stream = io.StringIO()
        result = extract_multipart(CONTENT_TYPE, [_body(parts)], ListingSink(stream))

        text = stream.getvalue()
        assert text.startswith("Multipart response contains:")
        assert f"Part 1: application/dicom ({len(parts[0][1])} bytes)" in text
        assert f"Total: 2 parts ({result.total_bytes} bytes)" in text
        assert result.destination == "-"


class TestSelectSink:
    def test_output_dir_wins(self, tmp_path):
        sink = select_sink(output=str(tmp_path / "a.zip"), output_dir=str(tmp_path / "d"))
        assert isinstance(sink, DirectorySink)

    def test_zip_output(self, tmp_path):
        sink = select_sink(output=str(tmp_path / "a.zip"))
        assert isinstance(sink, ZipSink)
        assert sink.path == tmp_path / "a.zip"

    def test_extension_forced_to_zip(self, tmp_path, capsys):
        sink = select_sink(output=str(tmp_path / "study.dcm"))
        assert isinstance(sink, ZipSink)
        assert sink.path == tmp_path / "study.zip"
        assert "saving as" in capsys.readouterr().err

    def test_listing_by_default(self):
        assert isinstance(select_sink(), ListingSink)
