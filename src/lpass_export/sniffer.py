"""Content-type sniffing for attachments that have no declared filename.

``sniff(data)`` returns ``(mime_type, extension)``. The extension comes from
a fixed table; an unrecognised MIME type yields ``""`` and callers simply
append nothing.
"""

import json
import logging
import subprocess
from abc import ABC, abstractmethod
from typing import Dict, Tuple

logger = logging.getLogger(__name__)

OCTET_STREAM = "application/octet-stream"

# Bytes to inspect for binary signatures.
MAGIC_BYTES_HEADER_SIZE = 64
# Bytes to inspect when deciding between json / csv / html / plain text.
TEXT_SAMPLE_SIZE = 64 * 1024

# Types whose extension is the subtype verbatim (the part after "/").
_SUBTYPE_EXTENSIONS = (
    "application/gzip",
    "application/json",
    "application/pdf",
    "application/rtf",
    "application/zip",
    "image/bmp",
    "image/gif",
    "image/jpeg",
    "image/png",
    "image/tiff",
    "text/csv",
    "text/html",
    "text/plain",
    "video/mp4",
)

MIME_EXTENSIONS: Dict[str, str] = {mime: mime.split("/", 1)[1] for mime in _SUBTYPE_EXTENSIONS}
MIME_EXTENSIONS.update({
    "application/java-archive": "jar",
    "application/x-7z-compressed": "7z",
    "application/x-tar": "tar",
    "image/svg+xml": "svg",
})


def extension_for_mime(mime_type: str) -> str:
    """Map a MIME type to a file extension; ``""`` when unknown."""
    extension = MIME_EXTENSIONS.get(mime_type.strip().lower(), "")
    if not extension:
        logger.debug("Unknown MIME type '%s'.", mime_type)
    return extension


class ContentSniffer(ABC):
    """Classifies attachment bytes."""

    name = "abstract"

    @abstractmethod
    def mime_type(self, data: bytes) -> str:
        """Return the MIME type of ``data``."""

    def sniff(self, data: bytes) -> Tuple[str, str]:
        mime = self.mime_type(data)
        return mime, extension_for_mime(mime)


# ── In-process signatures ────────────────────────────────────────────


class SignatureSniffer(ContentSniffer):
    """Magic-byte detection, no external program needed."""

    name = "signature"

    def mime_type(self, data: bytes) -> str:
        if not data:
            return "inode/x-empty"

        header = data[:MAGIC_BYTES_HEADER_SIZE]
        binary = self._binary_type(header, data)
        if binary:
            return binary
        return self._text_type(data)

    @staticmethod
    def _binary_type(header: bytes, data: bytes) -> str:
        if header.startswith(b"\x1f\x8b"):
            return "application/gzip"
        if header.startswith(b"%PDF-"):
            return "application/pdf"
        if header.startswith(b"{\\rtf"):
            return "application/rtf"
        if header.startswith(b"PK\x03\x04"):
            # A jar's first entry is META-INF/ or its manifest.
            name_length = int.from_bytes(header[26:28], "little") if len(header) >= 28 else 0
            first_entry = header[30 : 30 + name_length]
            if first_entry.startswith(b"META-INF/"):
                return "application/java-archive"
            return "application/zip"
        if header.startswith(b"7z\xbc\xaf\x27\x1c"):
            return "application/x-7z-compressed"
        if header.startswith(b"\x89PNG\r\n\x1a\n"):
            return "image/png"
        if header.startswith((b"GIF87a", b"GIF89a")):
            return "image/gif"
        if header.startswith(b"\xff\xd8\xff"):
            return "image/jpeg"
        if header.startswith((b"II*\x00", b"MM\x00*")):
            return "image/tiff"
        if header.startswith(b"BM") and _dib_header_size(header) in _DIB_HEADER_SIZES:
            return "image/bmp"
        if header[4:8] == b"ftyp":
            return "video/mp4"
        if data[257:262] == b"ustar":
            return "application/x-tar"
        return ""

    @staticmethod
    def _text_type(data: bytes) -> str:
        sample = data[:TEXT_SAMPLE_SIZE]
        if b"\x00" in sample:
            return OCTET_STREAM
        try:
            text = sample.decode("utf-8")
        except UnicodeDecodeError as exc:
            # A multi-byte character cut by the sample boundary is still text.
            truncated = len(data) > TEXT_SAMPLE_SIZE
            if not truncated or exc.start < len(sample) - 3:
                return OCTET_STREAM
            text = sample[: exc.start].decode("utf-8")

        stripped = text.lstrip("\ufeff \t\r\n")
        lowered = stripped[:512].lower()

        if lowered.startswith("<svg") or (lowered.startswith("<?xml") and "<svg" in lowered):
            return "image/svg+xml"
        if lowered.startswith(("<!doctype html", "<html")):
            return "text/html"
        if stripped.startswith(("{", "[")) and _is_json(data):
            return "application/json"
        if _looks_like_csv(stripped):
            return "text/csv"
        return "text/plain"


_DIB_HEADER_SIZES = (12, 40, 52, 56, 64, 108, 124)


def _is_json(data: bytes) -> bool:
    """Parse the whole buffer; a sample cut mid-document never parses."""
    try:
        json.loads(data)
    except ValueError:
        return False
    return True


def _dib_header_size(header: bytes) -> int:
    if len(header) < 18:
        return 0
    return int.from_bytes(header[14:18], "little")


def _looks_like_csv(text: str) -> bool:
    lines = [line for line in text.splitlines() if line.strip()][:20]
    if len(lines) < 2:
        return False
    counts = {line.count(",") for line in lines}
    return len(counts) == 1 and counts.pop() > 0


# ── file(1) ──────────────────────────────────────────────────────────


class FileCommandSniffer(ContentSniffer):
    """Delegates to ``file -b --mime-type -``."""

    name = "file"

    def __init__(self, program: str = "file", timeout: float = 30.0):
        self.program = program
        self.timeout = timeout

    def mime_type(self, data: bytes) -> str:
        try:
            result = subprocess.run(
                [self.program, "-b", "--mime-type", "-"],
                input=data,
                capture_output=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.warning("Content sniffing with '%s' failed: %s", self.program, exc)
            return OCTET_STREAM

        if result.returncode != 0:
            logger.warning(
                "'%s' exited with status %d while sniffing content.",
                self.program,
                result.returncode,
            )
            return OCTET_STREAM
        return result.stdout.decode("utf-8", "replace").strip() or OCTET_STREAM


def build_sniffer(name: str) -> ContentSniffer:
    if name == "file":
        return FileCommandSniffer()
    return SignatureSniffer()
