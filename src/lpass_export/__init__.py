"""lpass-export: export LastPass items and attachments to a local directory.

Each item's metadata and every attachment become files under the output
directory, optionally encrypted (OpenSSL-compatible AES or OpenPGP), with an
optional ``id|name|fullname`` index and a tar+gzip archive of the result.
"""

__version__ = "1.0.0"
__description__ = "Export LastPass vault items and attachments"

from .config import EncryptionSettings, RunConfiguration
from .errors import (
    AttachmentFetchError,
    AuthError,
    ConfigError,
    DependencyMissingError,
    EncryptionConfigError,
    ExportError,
    ItemFetchError,
    NothingToDoError,
    OutputIOError,
)
from .orchestrator import ExportOrchestrator, ExportPhase, RunSummary

__all__ = [
    "__version__",
    "EncryptionSettings",
    "RunConfiguration",
    "ExportOrchestrator",
    "ExportPhase",
    "RunSummary",
    "ExportError",
    "ConfigError",
    "NothingToDoError",
    "EncryptionConfigError",
    "DependencyMissingError",
    "AuthError",
    "ItemFetchError",
    "AttachmentFetchError",
    "OutputIOError",
]
