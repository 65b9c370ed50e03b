"""Vault service access: the client contract and its ``lpass`` implementation."""

from .client import (
    AttachmentDescriptor,
    ItemFormat,
    VaultClient,
    VaultItem,
    parse_attachment_line,
)
from .lpass import LpassClient

__all__ = [
    "AttachmentDescriptor",
    "ItemFormat",
    "LpassClient",
    "VaultClient",
    "VaultItem",
    "parse_attachment_line",
]
