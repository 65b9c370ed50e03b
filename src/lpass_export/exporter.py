"""Item and attachment export.

Output layout::

    {output_dir}/{item_id}.{txt|json}[.{enc}]
    {output_dir}/{item_id}/{name|att_id}[.{sniffed}][.{enc}]

An artifact counts as already exported iff it exists with non-zero size.
Artifacts are written to a temporary sibling and renamed into place, so an
interrupted write never leaves a truncated file behind that would pass that
check on the next run.
"""

import logging
import os
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Set, Union
from uuid import uuid4

from .config import RunConfiguration
from .crypto import StreamCipher
from .errors import OutputIOError, VaultError
from .log import ExportEventLog
from .sniffer import ContentSniffer
from .vault.client import AttachmentDescriptor, VaultClient, parse_attachment_line

logger = logging.getLogger(__name__)


class ExportStatus(str, Enum):
    WRITTEN = "written"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ExportResult:
    """Outcome for one artifact (item results also carry their attachments)."""

    path: Optional[Path]
    status: ExportStatus
    error: Optional[str] = None
    attachments: List["ExportResult"] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status is not ExportStatus.FAILED

    def count(self, status: ExportStatus) -> int:
        return sum(1 for a in self.attachments if a.status is status)


def artifact_exists(path: Path) -> bool:
    """True if ``path`` is a regular file with non-zero size."""
    try:
        return path.is_file() and path.stat().st_size > 0
    except OSError:
        return False


def should_write(path: Path, overwrite: bool) -> bool:
    return overwrite or not artifact_exists(path)


def write_artifact(path: Path, data: bytes, cipher: StreamCipher) -> None:
    """Write ``data`` through ``cipher`` to ``path``, replacing it atomically.

    Raises:
        OutputIOError: Any I/O or encryption-process failure.
    """
    tmp = path.with_name(f".{path.name}.{uuid4().hex[:8]}.part")
    try:
        with open(tmp, "wb") as fh:
            sink = cipher.wrap(fh)
            sink.write(data)
            if sink is not fh:
                sink.close()
        os.replace(tmp, path)
    except OSError as exc:
        raise OutputIOError(path, exc) from exc
    finally:
        tmp.unlink(missing_ok=True)


def safe_filename(name: str) -> str:
    """Keep a declared attachment name inside its item directory."""
    name = name.replace("/", "_").replace("\\", "_").replace("\x00", "")
    if name in (".", ".."):
        name = "_" + name
    return name


# ── Attachments ──────────────────────────────────────────────────────


class AttachmentExporter:
    """Writes one attachment of one item.

    The attachment is fetched at most once. For unnamed attachments the
    same bytes feed the sniffer and the file.

    Two attachments of one item that resolve to the same file name within a
    run are kept apart: the later one is written as ``{att_id}-{name}``.

    Attachments follow the same skip-if-exists rule as items: with overwrite
    off, an existing non-empty target is left alone.
    """

    def __init__(
        self,
        client: VaultClient,
        cipher: StreamCipher,
        sniffer: ContentSniffer,
        config: RunConfiguration,
        events: Optional[ExportEventLog] = None,
    ):
        self._client = client
        self._cipher = cipher
        self._sniffer = sniffer
        self._config = config
        self._events = events or ExportEventLog()
        self._claimed: Set[Path] = set()
        self._claim_lock = threading.Lock()

    def target_name(self, descriptor: AttachmentDescriptor, extension: str = "") -> str:
        """``{name|id}[.{extension}][.{encrypted extension}]``"""
        name = safe_filename(descriptor.filename)
        if extension:
            name = f"{name}.{extension}"
        return self._config.encryption.suffixed(name)

    def export(
        self,
        item_id: str,
        descriptor: Union[str, AttachmentDescriptor],
    ) -> ExportResult:
        if isinstance(descriptor, str):
            descriptor = parse_attachment_line(descriptor)

        if not item_id or not descriptor.attachment_id:
            logger.warning(
                "Missing attachment information '%s' or '%s'.",
                item_id,
                descriptor.attachment_id,
            )
            self._events.record("attachment.skipped", item_id=item_id, reason="malformed")
            return ExportResult(None, ExportStatus.SKIPPED, "malformed attachment descriptor")

        attachment_id = descriptor.attachment_id
        attachments_dir = self._config.attachments_dir(item_id)
        try:
            attachments_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            return self._failed(item_id, attachment_id, attachments_dir, OutputIOError(attachments_dir, exc))

        data = None
        extension = ""
        try:
            if descriptor.needs_sniff:
                data = self._client.get_attachment(item_id, attachment_id)
                mime_type, extension = self._sniffer.sniff(data)
                logger.debug(
                    "Attachment '%s' of '%s' sniffed as %s.", attachment_id, item_id, mime_type
                )

            path = self._claim(attachments_dir / self.target_name(descriptor, extension), attachment_id)
            if not should_write(path, self._config.overwrite):
                logger.debug("Attachment already exists '%s'. Use -f option to overwrite.", path)
                self._events.record(
                    "attachment.skipped", item_id=item_id, attachment_id=attachment_id, path=str(path)
                )
                return ExportResult(path, ExportStatus.SKIPPED)

            if data is None:
                data = self._client.get_attachment(item_id, attachment_id)

            logger.debug("Exporting attachment '%s' to '%s'.", attachment_id, path)
            write_artifact(path, data, self._cipher)
        except (VaultError, OutputIOError) as exc:
            return self._failed(item_id, attachment_id, attachments_dir, exc)

        self._events.record(
            "attachment.written",
            item_id=item_id,
            attachment_id=attachment_id,
            path=str(path),
            size=len(data),
        )
        return ExportResult(path, ExportStatus.WRITTEN)

    def _claim(self, path: Path, attachment_id: str) -> Path:
        with self._claim_lock:
            if path in self._claimed:
                renamed = path.with_name(f"{attachment_id}-{path.name}")
                logger.warning(
                    "Attachment name '%s' is already used by this item; writing '%s' instead.",
                    path.name,
                    renamed.name,
                )
                path = renamed
            self._claimed.add(path)
        return path

    def _failed(self, item_id: str, attachment_id: str, path: Path, exc: Exception) -> ExportResult:
        logger.warning("Attachment '%s' of item '%s' failed: %s", attachment_id, item_id, exc)
        self._events.record(
            "attachment.failed", item_id=item_id, attachment_id=attachment_id, error=str(exc)
        )
        return ExportResult(path, ExportStatus.FAILED, str(exc))


# ── Items ────────────────────────────────────────────────────────────


class ItemExporter:
    """Writes an item's metadata, then each of its attachments.

    The skip-if-exists gate for the item file is the caller's job; once
    ``export`` is called the metadata is always (re)written.
    """

    def __init__(
        self,
        client: VaultClient,
        cipher: StreamCipher,
        attachments: AttachmentExporter,
        config: RunConfiguration,
        events: Optional[ExportEventLog] = None,
    ):
        self._client = client
        self._cipher = cipher
        self._attachments = attachments
        self._config = config
        self._events = events or ExportEventLog()

    def export(self, item_id: str, output_path: Optional[Path] = None) -> ExportResult:
        """Export one item.

        Succeeds when the metadata file was written, whatever happened to the
        attachments.

        Raises:
            ItemFetchError: Item metadata could not be fetched.
            OutputIOError: Item metadata could not be written.
        """
        path = output_path or self._config.item_path(item_id)
        logger.debug("Exporting item '%s' to '%s'.", item_id, path)

        data = self._client.get_item_detail(item_id, self._config.item_format)
        write_artifact(path, data, self._cipher)
        self._events.record("item.written", item_id=item_id, path=str(path), size=len(data))

        result = ExportResult(path, ExportStatus.WRITTEN)
        try:
            lines = self._client.list_attachments(item_id)
        except VaultError as exc:
            logger.warning("Could not list attachments of item '%s': %s", item_id, exc)
            self._events.record("attachment.failed", item_id=item_id, error=str(exc))
            result.attachments.append(
                ExportResult(self._config.attachments_dir(item_id), ExportStatus.FAILED, str(exc))
            )
            return result

        for line in lines:
            result.attachments.append(self._attachments.export(item_id, line))
        return result
