"""
Shared pytest fixtures for the lpass-export test suite.

``FakeVaultClient`` stands in for ``lpass``: it serves canned items,
details and attachments, and records every call so tests can assert what
was (and was not) fetched.
"""

import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

from lpass_export.config import EncryptionSettings, RunConfiguration
from lpass_export.errors import AttachmentFetchError, AuthError, ItemFetchError
from lpass_export.log import LOGGER_NAME
from lpass_export.vault.client import ItemFormat, VaultClient, VaultItem

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00\x00\x00\rIHDR" + b"\x00" * 32
PDF_BYTES = b"%PDF-1.7\n%\xe2\xe3\xcf\xd3\n1 0 obj\n<<>>\nendobj\n"


class FakeVaultClient(VaultClient):
    """In-memory vault with call recording."""

    def __init__(
        self,
        items: Optional[List[VaultItem]] = None,
        details: Optional[Dict[str, bytes]] = None,
        attachments: Optional[Dict[str, List[str]]] = None,
        blobs: Optional[Dict[Tuple[str, str], bytes]] = None,
    ):
        self.items = list(items or [])
        self.details = dict(details or {})
        self.attachments = dict(attachments or {})
        self.blobs = dict(blobs or {})
        self.calls: List[tuple] = []
        self.fail_login = False
        self.fail_listing = False
        self.fail_details: set = set()
        self.fail_blobs: set = set()
        self._lock = threading.Lock()

    def _record(self, *call) -> None:
        with self._lock:
            self.calls.append(call)

    def count(self, name: str, *args) -> int:
        return sum(1 for c in self.calls if c[0] == name and c[1 : 1 + len(args)] == args)

    def login(self, identity: str) -> None:
        self._record("login", identity)
        if self.fail_login:
            raise AuthError(f"Login as '{identity}' failed.")

    def logout(self) -> None:
        self._record("logout")

    def list_items(self) -> List[VaultItem]:
        self._record("list_items")
        if self.fail_listing:
            raise ItemFetchError("listing failed")
        return list(self.items)

    def get_item_detail(self, item_id: str, item_format: ItemFormat) -> bytes:
        self._record("get_item_detail", item_id, item_format)
        if item_id in self.fail_details:
            raise ItemFetchError(f"no such item {item_id}")
        return self.details.get(item_id, f"Name: {item_id}\n".encode())

    def list_attachments(self, item_id: str) -> List[str]:
        self._record("list_attachments", item_id)
        return list(self.attachments.get(item_id, []))

    def get_attachment(self, item_id: str, attachment_id: str) -> bytes:
        self._record("get_attachment", item_id, attachment_id)
        if (item_id, attachment_id) in self.fail_blobs:
            raise AttachmentFetchError(f"cannot fetch {attachment_id}")
        return self.blobs[(item_id, attachment_id)]


@pytest.fixture
def output_dir(tmp_path) -> Path:
    out = tmp_path / "out"
    out.mkdir()
    return out


@pytest.fixture
def passphrase_file(tmp_path) -> Path:
    path = tmp_path / "passphrase.txt"
    path.write_text("correct horse battery staple\n")
    return path


@pytest.fixture
def make_config(output_dir, passphrase_file):
    """Factory: ``make_config(encrypt=False, **overrides)``."""

    def _make(encrypt: bool = False, engine: str = "openssl", **overrides) -> RunConfiguration:
        encryption = EncryptionSettings()
        if encrypt:
            encryption = EncryptionSettings(engine=engine, passphrase_file=passphrase_file)
        values = dict(
            output_dir=output_dir,
            username="user@example.com",
            encryption=encryption,
        )
        values.update(overrides)
        return RunConfiguration(**values)

    return _make


@pytest.fixture
def bank_vault() -> FakeVaultClient:
    """The single-item vault used by the end-to-end examples."""
    return FakeVaultClient(
        items=[VaultItem("0-1", "Bank", "Finance/Bank", "https://bank.example")],
        details={"0-1": b'{"id":"0-1"}'},
        attachments={"0-1": ["att-1: statement.pdf"]},
        blobs={("0-1", "att-1"): PDF_BYTES},
    )


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Drop handlers bound to per-test streams once the test is done."""
    yield
    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
