"""Flat manifest of the vault: one ``id|name|fullname`` line per item."""

import logging
from pathlib import Path
from typing import Iterable, Optional

from .config import RunConfiguration
from .crypto import StreamCipher
from .exporter import should_write, write_artifact
from .log import ExportEventLog
from .vault.client import VaultItem

logger = logging.getLogger(__name__)


def render_index(items: Iterable[VaultItem], sort_by_id: bool = False) -> str:
    """Render index rows in enumeration order (or by id), newline-joined.

    The vault does not promise a stable enumeration order between runs;
    ``sort_by_id`` gives a diffable file.
    """
    items = list(items)
    if sort_by_id:
        items.sort(key=lambda item: item.item_id)
    return "\n".join(item.index_line() for item in items)


class IndexBuilder:
    """Writes ``{output_dir}/{index_name}[.{enc}]`` as one encryption envelope."""

    def __init__(
        self,
        cipher: StreamCipher,
        config: RunConfiguration,
        events: Optional[ExportEventLog] = None,
    ):
        self._cipher = cipher
        self._config = config
        self._events = events or ExportEventLog()

    def build(self, items: Iterable[VaultItem]) -> Optional[Path]:
        """Write the index. Returns its path, or None if disabled or skipped.

        Raises:
            OutputIOError: The index file could not be written.
        """
        if not self._config.index_enabled:
            return None

        path = self._config.index_path
        if not should_write(path, self._config.overwrite):
            logger.info("Index already exists '%s'. Use -f option to overwrite.", path)
            self._events.record("index.skipped", path=str(path))
            return None

        text = render_index(items, sort_by_id=self._config.sort_index)
        write_artifact(path, text.encode("utf-8"), self._cipher)
        logger.info("Wrote index '%s'.", path)
        self._events.record("index.written", path=str(path), rows=text.count("\n") + 1 if text else 0)
        return path
