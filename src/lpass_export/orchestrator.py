"""Top-level export pipeline.

Phases, in order::

    INIT -> LOGGED_IN -> ENUMERATED -> INDEXED -> EXPORTING -> ARCHIVED
         -> LOGGED_OUT -> DONE

Fatal exits: SETUP_FAILED (bad configuration, missing program; nothing is
contacted) and LOGIN_FAILED (nothing exported). Everything after login is
best-effort per artifact: one failing item never stops the others, and
logout is attempted on the way out unless the user asked to stay logged in.
"""

import logging
import shutil
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .archive import create_archive
from .config import RunConfiguration, validate_configuration
from .crypto import StreamCipher, build_cipher
from .errors import ConfigError, DependencyMissingError, ExportError, OutputIOError
from .exporter import AttachmentExporter, ExportResult, ExportStatus, ItemExporter, should_write
from .index import IndexBuilder
from .log import ExportEventLog
from .sniffer import ContentSniffer, build_sniffer
from .vault.client import VaultClient, VaultItem

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class ExportPhase(str, Enum):
    INIT = "init"
    LOGGED_IN = "logged_in"
    ENUMERATED = "enumerated"
    INDEXED = "indexed"
    EXPORTING = "exporting"
    ARCHIVED = "archived"
    LOGGED_OUT = "logged_out"
    DONE = "done"
    SETUP_FAILED = "setup_failed"
    LOGIN_FAILED = "login_failed"


def required_programs(config: RunConfiguration) -> List[str]:
    programs = ["lpass"]
    if config.encryption.enabled and config.encryption.engine == "gpg":
        programs.append("gpg")
    if config.sniffer == "file":
        programs.append("file")
    return programs


def check_dependencies(
    config: RunConfiguration,
    which: Optional[Callable[[str], Optional[str]]] = None,
) -> None:
    """Raise ``DependencyMissingError`` for the first program not on PATH."""
    which = which or shutil.which
    for program in required_programs(config):
        logger.debug("Checking for dependency '%s'.", program)
        if which(program) is None:
            raise DependencyMissingError(program)


# ── Run bookkeeping ──────────────────────────────────────────────────


@dataclass
class RunSummary:
    """What one run did. ``failed`` is non-zero if any artifact failed."""

    total_items: int = 0
    items_written: int = 0
    items_skipped: int = 0
    items_failed: int = 0
    attachments_written: int = 0
    attachments_skipped: int = 0
    attachments_failed: int = 0
    listing_failed: bool = False
    index_path: Optional[Path] = None
    index_failed: bool = False
    archive_path: Optional[Path] = None
    archive_failed: bool = False
    phases: List[ExportPhase] = field(default_factory=list)

    @property
    def phase(self) -> Optional[ExportPhase]:
        return self.phases[-1] if self.phases else None

    @property
    def processed_items(self) -> int:
        return self.items_written + self.items_skipped + self.items_failed

    @property
    def failed(self) -> int:
        return (
            self.items_failed
            + self.attachments_failed
            + int(self.listing_failed)
            + int(self.index_failed)
            + int(self.archive_failed)
        )

    def add(self, result: ExportResult) -> None:
        if result.status is ExportStatus.WRITTEN:
            self.items_written += 1
        elif result.status is ExportStatus.SKIPPED:
            self.items_skipped += 1
        else:
            self.items_failed += 1
        self.attachments_written += result.count(ExportStatus.WRITTEN)
        self.attachments_skipped += result.count(ExportStatus.SKIPPED)
        self.attachments_failed += result.count(ExportStatus.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value if self.phase else None,
            "total_items": self.total_items,
            "items_written": self.items_written,
            "items_skipped": self.items_skipped,
            "items_failed": self.items_failed,
            "attachments_written": self.attachments_written,
            "attachments_skipped": self.attachments_skipped,
            "attachments_failed": self.attachments_failed,
            "index_path": str(self.index_path) if self.index_path else None,
            "archive_path": str(self.archive_path) if self.archive_path else None,
            "failed": self.failed,
        }


class ProgressCounter:
    """Thread-safe processed-item counter. Each item is counted once."""

    def __init__(self, total: int, callback: Optional[ProgressCallback] = None, quiet: bool = False):
        self.total = total
        self.processed = 0
        self._callback = callback
        self._quiet = quiet
        self._lock = threading.Lock()

    def increment(self) -> int:
        with self._lock:
            self.processed += 1
            processed = self.processed
            if not self._quiet:
                logger.info("Processed %d of %d.", processed, self.total)
                if self._callback is not None:
                    self._callback(processed, self.total)
        return processed


# ── Orchestrator ─────────────────────────────────────────────────────


class ExportOrchestrator:
    """Runs one export from login to logout.

    Args:
        config: The run configuration. Never modified.
        client: Vault client; one session is shared by all items.
        cipher: Encryption strategy. Built from ``config`` when None.
        sniffer: Content sniffer. Built from ``config`` when None.
        events: JSON event trail. Opened from ``config.event_log`` once
            setup has passed when None.
        progress: Called with ``(processed, total)`` after each item
            unless ``config.quiet``.
        dependency_check: Called with ``config`` during setup; raises
            ``DependencyMissingError``. Skipped when None.
        archiver: ``(output_dir, archive_path) -> Path``.
    """

    def __init__(
        self,
        config: RunConfiguration,
        client: VaultClient,
        cipher: Optional[StreamCipher] = None,
        sniffer: Optional[ContentSniffer] = None,
        events: Optional[ExportEventLog] = None,
        progress: Optional[ProgressCallback] = None,
        dependency_check: Optional[Callable[[RunConfiguration], None]] = None,
        archiver: Callable[[Path, Path], Path] = create_archive,
    ):
        self.config = config
        self.client = client
        self._cipher = cipher
        self._sniffer = sniffer or build_sniffer(config.sniffer)
        self._owns_events = events is None
        self._events = events
        self._progress = progress
        self._dependency_check = dependency_check
        self._archiver = archiver
        self._summary_lock = threading.Lock()
        self.summary = RunSummary()

    @property
    def phase(self) -> Optional[ExportPhase]:
        return self.summary.phase

    def _enter(self, phase: ExportPhase) -> None:
        logger.debug("Export phase: %s", phase.value)
        self.summary.phases.append(phase)

    # ── Run ──────────────────────────────────────────────────────────

    def run(self) -> RunSummary:
        """Execute the whole pipeline.

        Raises:
            ConfigError: Invalid configuration (SETUP_FAILED).
            DependencyMissingError: Required program missing (SETUP_FAILED).
            AuthError: Login failed (LOGIN_FAILED).
        """
        try:
            cipher = self._setup()
            self._login()
            try:
                self._pipeline(cipher)
            finally:
                self._logout()
            self._enter(ExportPhase.DONE)
            self._events.record("run.finished", **self.summary.to_dict())
        finally:
            if self._owns_events and self._events is not None:
                self._events.close()
                self._events = None
        return self.summary

    def _setup(self) -> StreamCipher:
        try:
            passphrase = validate_configuration(self.config)
            if self._dependency_check is not None:
                self._dependency_check(self.config)
            cipher = self._cipher or build_cipher(self.config.encryption, passphrase)
            if self._events is None:
                self._events = self._open_event_log()
        except ExportError:
            self._enter(ExportPhase.SETUP_FAILED)
            raise
        self._enter(ExportPhase.INIT)
        return cipher

    def _open_event_log(self) -> ExportEventLog:
        path = self.config.event_log
        try:
            return ExportEventLog(path)
        except OSError as exc:
            raise ConfigError(f"Cannot open event log '{path}': {exc.strerror or exc}") from exc

    def _login(self) -> None:
        try:
            self.client.login(self.config.username)
        except ExportError:
            self._enter(ExportPhase.LOGIN_FAILED)
            raise
        self._enter(ExportPhase.LOGGED_IN)

    def _logout(self) -> None:
        if self.config.stay_logged_in:
            logger.debug("Staying logged in.")
            return
        try:
            self.client.logout()
        except ExportError as exc:
            logger.warning("Logout failed: %s", exc)
            return
        self._enter(ExportPhase.LOGGED_OUT)

    def _pipeline(self, cipher: StreamCipher) -> None:
        config = self.config
        summary = self.summary

        logger.debug("Retrieving list of LastPass items.")
        try:
            items = self.client.list_items()
        except ExportError as exc:
            logger.error("Could not list vault items: %s", exc)
            summary.listing_failed = True
            return
        summary.total_items = len(items)
        self._enter(ExportPhase.ENUMERATED)

        if not items:
            logger.info("No items found for '%s'.", config.username)
            # An explicitly requested index is still written, empty.
            if config.index_enabled:
                self._build_index(cipher, items)
                self._enter(ExportPhase.INDEXED)
            return
        logger.info("Found %d items.", len(items))

        self._build_index(cipher, items)
        self._enter(ExportPhase.INDEXED)

        if config.export_items:
            self._enter(ExportPhase.EXPORTING)
            self._export_items(cipher, items)

        if config.archive_path is not None:
            try:
                summary.archive_path = self._archiver(config.output_dir, config.archive_path)
            except ExportError as exc:
                logger.error("Archive failed: %s", exc)
                summary.archive_failed = True
            else:
                self._events.record("archive.written", path=str(summary.archive_path))
                self._enter(ExportPhase.ARCHIVED)

    def _build_index(self, cipher: StreamCipher, items: List[VaultItem]) -> None:
        builder = IndexBuilder(cipher, self.config, self._events)
        try:
            self.summary.index_path = builder.build(items)
        except OutputIOError as exc:
            logger.error("Index failed: %s", exc)
            self._events.record("index.failed", error=str(exc))
            self.summary.index_failed = True

    # ── Items ────────────────────────────────────────────────────────

    def _export_items(self, cipher: StreamCipher, items: List[VaultItem]) -> None:
        attachments = AttachmentExporter(self.client, cipher, self._sniffer, self.config, self._events)
        exporter = ItemExporter(self.client, cipher, attachments, self.config, self._events)
        counter = ProgressCounter(len(items), self._progress, quiet=self.config.quiet)

        def run_one(item: VaultItem) -> None:
            result = self._export_item(exporter, item)
            with self._summary_lock:
                self.summary.add(result)
            counter.increment()

        if self.config.workers <= 1:
            for item in items:
                run_one(item)
            return

        with ThreadPoolExecutor(max_workers=self.config.workers) as pool:
            futures = [pool.submit(run_one, item) for item in items]
            for future in as_completed(futures):
                future.result()

    def _export_item(self, exporter: ItemExporter, item: VaultItem) -> ExportResult:
        path = self.config.item_path(item.item_id)
        if not should_write(path, self.config.overwrite):
            logger.debug("Item already exists '%s'. Use -f option to overwrite.", path)
            self._events.record("item.skipped", item_id=item.item_id, path=str(path))
            return ExportResult(path, ExportStatus.SKIPPED)

        try:
            return exporter.export(item.item_id, path)
        except (ExportError, OSError) as exc:
            logger.error("Item '%s' failed: %s", item.item_id, exc)
            self._events.record("item.failed", item_id=item.item_id, error=str(exc))
            return ExportResult(path, ExportStatus.FAILED, str(exc))
