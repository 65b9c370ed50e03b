"""Tests for content-type sniffing and the MIME extension table."""

import io
import json
import subprocess
import tarfile
import zipfile

import pytest

from lpass_export.sniffer import (
    MIME_EXTENSIONS,
    OCTET_STREAM,
    TEXT_SAMPLE_SIZE,
    FileCommandSniffer,
    SignatureSniffer,
    build_sniffer,
    extension_for_mime,
)

from conftest import PDF_BYTES, PNG_BYTES


def _zip_bytes(first_entry: str) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr(first_entry, "Manifest-Version: 1.0\n")
    return buf.getvalue()


def _tar_bytes() -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tar:
        data = b"hello"
        info = tarfile.TarInfo("hello.txt")
        info.size = len(data)
        tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


# ── Extension table ─────────────────────────────────────────────────


class TestExtensionTable:

    @pytest.mark.parametrize("mime,ext", [
        ("application/pdf", "pdf"),
        ("application/gzip", "gzip"),
        ("image/jpeg", "jpeg"),
        ("text/plain", "plain"),
        ("video/mp4", "mp4"),
        ("application/java-archive", "jar"),
        ("application/x-7z-compressed", "7z"),
        ("application/x-tar", "tar"),
        ("image/svg+xml", "svg"),
    ])
    def test_known_types(self, mime, ext):
        assert extension_for_mime(mime) == ext

    def test_unknown_type_has_no_extension(self):
        assert extension_for_mime("application/x-msdownload") == ""
        assert extension_for_mime(OCTET_STREAM) == ""

    def test_table_is_closed(self):
        assert len(MIME_EXTENSIONS) == 18

    def test_lookup_tolerates_whitespace_and_case(self):
        assert extension_for_mime(" Image/PNG\n") == "png"


# ── Signature sniffer ───────────────────────────────────────────────


class TestSignatureSniffer:

    @pytest.mark.parametrize("data,mime", [
        (PNG_BYTES, "image/png"),
        (PDF_BYTES, "application/pdf"),
        (b"GIF89a" + b"\x00" * 20, "image/gif"),
        (b"\xff\xd8\xff\xe0\x00\x10JFIF\x00", "image/jpeg"),
        (b"II*\x00" + b"\x00" * 16, "image/tiff"),
        (b"\x1f\x8b\x08\x00" + b"\x00" * 16, "application/gzip"),
        (b"7z\xbc\xaf\x27\x1c" + b"\x00" * 16, "application/x-7z-compressed"),
        (b"{\\rtf1\\ansi hello}", "application/rtf"),
        (b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 16, "video/mp4"),
        (b'{"id": "0-1", "name": "Bank"}', "application/json"),
        (b"<!DOCTYPE html><html><body>hi</body></html>", "text/html"),
        (b'<?xml version="1.0"?>\n<svg xmlns="http://www.w3.org/2000/svg"></svg>', "image/svg+xml"),
        (b"name,url\nBank,https://bank.example\n", "text/csv"),
        (b"just some notes\nsecond line", "text/plain"),
        (b"\x00\x01\x02\x03binary", OCTET_STREAM),
    ])
    def test_detects(self, data, mime):
        assert SignatureSniffer().mime_type(data) == mime

    def test_zip_and_jar(self):
        sniffer = SignatureSniffer()
        assert sniffer.sniff(_zip_bytes("notes.txt")) == ("application/zip", "zip")
        assert sniffer.sniff(_zip_bytes("META-INF/MANIFEST.MF")) == ("application/java-archive", "jar")

    def test_tar(self):
        assert SignatureSniffer().sniff(_tar_bytes()) == ("application/x-tar", "tar")

    def test_bmp_needs_a_dib_header(self):
        bmp = b"BM" + b"\x00" * 12 + (40).to_bytes(4, "little") + b"\x00" * 40
        assert SignatureSniffer().mime_type(bmp) == "image/bmp"
        assert SignatureSniffer().mime_type(b"BMW service record, 2019") == "text/plain"

    def test_invalid_json_falls_back_to_text(self):
        assert SignatureSniffer().mime_type(b"{not json") == "text/plain"

    def test_json_larger_than_text_sample(self):
        data = json.dumps({"rows": ["x" * 100] * 1000}).encode()
        assert len(data) > TEXT_SAMPLE_SIZE
        assert SignatureSniffer().sniff(data) == ("application/json", "json")

    def test_invalid_utf8_at_end_of_small_file_is_binary(self):
        assert SignatureSniffer().mime_type(b"hello\xff") == OCTET_STREAM

    def test_character_cut_by_sample_boundary_is_text(self):
        data = b"a" * (TEXT_SAMPLE_SIZE - 1) + "é".encode("utf-8") + b"tail"
        assert SignatureSniffer().mime_type(data) == "text/plain"

    def test_empty_input(self):
        mime, ext = SignatureSniffer().sniff(b"")
        assert ext == ""

    def test_sniff_returns_pair(self):
        assert SignatureSniffer().sniff(PNG_BYTES) == ("image/png", "png")


# ── file(1) sniffer ─────────────────────────────────────────────────


class TestFileCommandSniffer:

    def test_pipes_bytes_into_file(self, monkeypatch):
        seen = {}

        def fake_run(cmd, input=None, capture_output=False, timeout=None):
            seen["cmd"] = cmd
            seen["input"] = input
            return subprocess.CompletedProcess(cmd, 0, stdout=b"image/png\n", stderr=b"")

        monkeypatch.setattr(subprocess, "run", fake_run)
        assert FileCommandSniffer().sniff(PNG_BYTES) == ("image/png", "png")
        assert seen["cmd"] == ["file", "-b", "--mime-type", "-"]
        assert seen["input"] == PNG_BYTES

    def test_failure_means_no_extension(self, monkeypatch):
        def fake_run(cmd, **kwargs):
            return subprocess.CompletedProcess(cmd, 1, stdout=b"", stderr=b"boom")

        monkeypatch.setattr(subprocess, "run", fake_run)
        assert FileCommandSniffer().sniff(PNG_BYTES) == (OCTET_STREAM, "")

    def test_missing_program_means_no_extension(self, monkeypatch):
        def fake_run(cmd, **kwargs):
            raise FileNotFoundError(cmd[0])

        monkeypatch.setattr(subprocess, "run", fake_run)
        assert FileCommandSniffer().sniff(PNG_BYTES)[1] == ""


def test_build_sniffer():
    assert isinstance(build_sniffer("file"), FileCommandSniffer)
    assert isinstance(build_sniffer("signature"), SignatureSniffer)
