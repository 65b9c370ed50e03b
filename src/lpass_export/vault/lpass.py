"""``VaultClient`` backed by the LastPass command line client (``lpass``)."""

import logging
import re
import subprocess
from typing import List, Optional, Sequence, Type

from ..errors import (
    AttachmentFetchError,
    AuthError,
    DependencyMissingError,
    ItemFetchError,
    VaultError,
)
from .client import ItemFormat, VaultClient, VaultItem

logger = logging.getLogger(__name__)

# Unit separator: cannot appear in item names typed by a user.
FIELD_SEPARATOR = "\x1f"
LIST_FORMAT = FIELD_SEPARATOR.join(["%ai", "%an", "%aN", "%al"])

_STATUS_RE = re.compile(r"Logged in as (?P<user>\S+?)\.?$")


class LpassClient(VaultClient):
    """Drives ``lpass`` through subprocesses.

    ``lpass`` keeps its session in its agent, so the session is shared by
    every call (and every worker thread) without extra bookkeeping here.

    Args:
        color: ``auto``, ``never`` or ``always``; passed as ``--color``.
        program: Path or name of the ``lpass`` binary.
        timeout: Seconds to wait for non-interactive calls.
    """

    def __init__(self, color: str = "never", program: str = "lpass", timeout: float = 300.0):
        self.color = color
        self.program = program
        self.timeout = timeout

    # ── Session ──────────────────────────────────────────────────────

    def session_user(self) -> Optional[str]:
        try:
            result = self._run(["status", "--color=never"], VaultError, check=False)
        except VaultError:
            return None
        if result.returncode != 0:
            return None
        match = _STATUS_RE.search(result.stdout.decode("utf-8", "replace").strip())
        return match.group("user") if match else None

    def login(self, identity: str) -> None:
        current = self.session_user()
        if current and current == identity:
            logger.debug("Already logged in as '%s'.", identity)
            return

        logger.debug("Logging into LastPass as '%s'.", identity)
        # Interactive: lpass prompts for the master password on the terminal.
        try:
            returncode = subprocess.call([self.program, "login", self._color_flag(), identity])
        except FileNotFoundError as exc:
            raise DependencyMissingError(self.program) from exc
        if returncode != 0:
            raise AuthError(f"Login as '{identity}' failed (lpass exited with {returncode}).")

    def logout(self) -> None:
        logger.debug("Logging out of LastPass.")
        self._run(["logout", "--force", self._color_flag()], VaultError)

    # ── Items ────────────────────────────────────────────────────────

    def list_items(self) -> List[VaultItem]:
        result = self._run(
            ["ls", "--sync=now", self._color_flag(), "--format", LIST_FORMAT],
            ItemFetchError,
        )
        items = []
        for line in result.stdout.decode("utf-8", "replace").splitlines():
            if not line.strip():
                continue
            fields = line.split(FIELD_SEPARATOR)
            fields += [""] * (4 - len(fields))
            item_id, name, fullname, url = (f.strip() for f in fields[:4])
            if not item_id:
                logger.debug("Ignoring listing line without an id: %r", line)
                continue
            items.append(VaultItem(item_id, name, fullname, url))
        return items

    def get_item_detail(self, item_id: str, item_format: ItemFormat) -> bytes:
        args = ["show", self._color_flag(), "--all"]
        if item_format is ItemFormat.JSON:
            args.append("--json")
        args.append(item_id)
        return self._run(args, ItemFetchError).stdout

    def list_attachments(self, item_id: str) -> List[str]:
        result = self._run(["show", self._color_flag(), item_id], ItemFetchError)
        lines = result.stdout.decode("utf-8", "replace").splitlines()
        return [line for line in lines if line.startswith("att-")]

    def get_attachment(self, item_id: str, attachment_id: str) -> bytes:
        args = ["show", self._color_flag(), item_id, "--attach", attachment_id, "--quiet"]
        return self._run(args, AttachmentFetchError).stdout

    # ── Helpers ──────────────────────────────────────────────────────

    def _color_flag(self) -> str:
        return f"--color={self.color}"

    def _run(
        self,
        args: Sequence[str],
        error: Type[VaultError],
        check: bool = True,
    ) -> subprocess.CompletedProcess:
        command = [self.program, *args]
        try:
            result = subprocess.run(command, capture_output=True, timeout=self.timeout)
        except FileNotFoundError as exc:
            raise DependencyMissingError(self.program) from exc
        except subprocess.TimeoutExpired as exc:
            raise error(f"'{' '.join(command[:2])}' timed out after {self.timeout:.0f}s") from exc

        if check and result.returncode != 0:
            stderr = result.stderr.decode("utf-8", "replace").strip()
            raise error(f"'{' '.join(command[:2])}' failed ({result.returncode}): {stderr}")
        return result
