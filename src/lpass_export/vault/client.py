"""Vault client contract.

The export pipeline never talks to the vault protocol directly. It goes
through a ``VaultClient``: one logged-in session, shared by every item
fetch of a run.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

GROUP_URL = "http://group"


class ItemFormat(str, Enum):
    """Serialization of exported item metadata."""

    TEXT = "text"
    JSON = "json"

    @property
    def extension(self) -> str:
        return "json" if self is ItemFormat.JSON else "txt"


@dataclass(frozen=True)
class VaultItem:
    """One vault entry as listed by the service. Read-only."""

    item_id: str
    name: str = ""
    fullname: str = ""
    url: str = ""

    @property
    def is_group(self) -> bool:
        """``lpass`` lists folders as items whose URL is ``http://group``."""
        return self.url == GROUP_URL

    def index_line(self) -> str:
        return f"{self.item_id}|{self.name}|{self.fullname}"


@dataclass(frozen=True)
class AttachmentDescriptor:
    """An attachment reference: ``att-<n>`` id plus optional declared name."""

    attachment_id: str
    name: str = ""

    @property
    def needs_sniff(self) -> bool:
        """Unnamed attachments get their extension from their content."""
        return not self.name

    @property
    def filename(self) -> str:
        return self.name or self.attachment_id


def parse_attachment_line(line: str) -> AttachmentDescriptor:
    """Parse ``"att-1: statement.pdf"`` style descriptor lines.

    Splits on the first ``:`` and trims both halves. A line without a colon
    is an attachment with no declared name. The id may come back empty;
    callers treat that as a malformed descriptor.
    """
    attachment_id, _, name = line.partition(":")
    return AttachmentDescriptor(attachment_id.strip(), name.strip())


class VaultClient(ABC):
    """Operations the exporter needs from the vault service.

    Lifecycle:
        1. ``login()`` once
        2. any number of ``list_items`` / ``get_*`` calls, possibly from
           several worker threads
        3. ``logout()`` unless the caller wants to stay logged in

    Raises:
        AuthError: ``login`` failed.
        ItemFetchError: listing or item detail failed.
        AttachmentFetchError: attachment bytes could not be fetched.
    """

    @abstractmethod
    def login(self, identity: str) -> None:
        """Open (or reuse) a session for ``identity``."""

    @abstractmethod
    def logout(self) -> None:
        """End the session."""

    @abstractmethod
    def list_items(self) -> List[VaultItem]:
        """All items, in vault enumeration order."""

    @abstractmethod
    def get_item_detail(self, item_id: str, item_format: ItemFormat) -> bytes:
        """Item metadata serialized as ``item_format``."""

    @abstractmethod
    def list_attachments(self, item_id: str) -> List[str]:
        """Raw ``"attId: name"`` descriptor lines for ``item_id``."""

    @abstractmethod
    def get_attachment(self, item_id: str, attachment_id: str) -> bytes:
        """Attachment bytes."""

    def session_user(self) -> Optional[str]:
        """User of an already open session, if the service can tell."""
        return None
