"""Logging for the export run.

Two channels:

- Console output through stdlib ``logging`` (module loggers under
  ``lpass_export``), rendered by structlog's console renderer so ``--color``
  applies to our messages as it does to ``lpass``.
- An optional append-only JSON event trail (``ExportEventLog``): one line
  per artifact written, skipped or failed, for later auditing. Never
  contains passphrases or vault contents.
"""

import logging
import sys
import threading
from pathlib import Path
from typing import Any, Optional, TextIO

import structlog

LOGGER_NAME = "lpass_export"


def use_color(color: str, stream: TextIO) -> bool:
    if color == "always":
        return True
    if color == "auto":
        isatty = getattr(stream, "isatty", None)
        return bool(isatty and isatty())
    return False


def setup_logging(
    debug: bool = False,
    quiet: bool = False,
    color: str = "never",
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """Configure console logging for the ``lpass_export`` logger tree.

    Args:
        debug: Show DEBUG messages (``-d``).
        quiet: Only WARNING and above (``-q``). ``debug`` wins if both set.
        color: ``auto``, ``never`` or ``always``.
        stream: Output stream, stderr by default.

    Returns:
        The package logger.
    """
    if debug:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO

    stream = stream or sys.stderr
    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=use_color(color, stream)),
        ],
        foreign_pre_chain=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="%H:%M:%S"),
        ],
    )

    handler = logging.StreamHandler(stream)
    handler.setLevel(level)
    handler.setFormatter(formatter)

    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger


class ExportEventLog:
    """Append-only JSON lines describing what happened to each artifact.

    Disabled (every call is a no-op) when ``path`` is None.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = path
        self._lock = threading.Lock()
        self._file = None
        self._logger = None
        if path is not None:
            path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(path, "a", encoding="utf-8")
            self._logger = structlog.wrap_logger(
                structlog.WriteLogger(self._file),
                processors=[
                    structlog.processors.add_log_level,
                    structlog.processors.TimeStamper(fmt="iso", utc=True),
                    structlog.processors.JSONRenderer(sort_keys=True),
                ],
            )

    @property
    def enabled(self) -> bool:
        return self._logger is not None

    def record(self, event: str, **fields: Any) -> None:
        if self._logger is None:
            return
        failed = event.endswith(".failed")
        with self._lock:
            if failed:
                self._logger.warning(event, **fields)
            else:
                self._logger.info(event, **fields)

    def close(self) -> None:
        with self._lock:
            if self._file is not None:
                self._file.close()
                self._file = None
                self._logger = None

    def __enter__(self) -> "ExportEventLog":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
