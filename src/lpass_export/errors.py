"""Exception taxonomy for the export pipeline.

Fatal errors (configuration, dependencies, login) stop the run before any
artifact is written. Fetch and output errors are recoverable: the exporters
catch them per artifact, log them, and count them in the run summary.
"""


class ExportError(Exception):
    """Base class for every error raised by lpass_export."""


# ── Fatal ────────────────────────────────────────────────────────────


class ConfigError(ExportError):
    """Bad or missing options. Raised before the vault is contacted."""


class NothingToDoError(ConfigError):
    """Both item export and index generation are disabled."""


class EncryptionConfigError(ConfigError):
    """Encryption requested but the passphrase source is unusable."""


class DependencyMissingError(ExportError):
    """A required external program is not on PATH."""

    def __init__(self, program: str):
        super().__init__(f"Dependency '{program}' is missing.")
        self.program = program


class AuthError(ExportError):
    """Login to the vault service failed."""


# ── Recoverable ──────────────────────────────────────────────────────


class VaultError(ExportError):
    """A vault service call failed after login."""


class ItemFetchError(VaultError):
    """Item listing or item detail could not be fetched."""


class AttachmentFetchError(VaultError):
    """Attachment bytes could not be fetched."""


class OutputIOError(ExportError):
    """Writing an artifact to disk failed (disk full, permissions, ...)."""

    def __init__(self, path, cause: Exception):
        super().__init__(f"Failed to write {path}: {cause}")
        self.path = path
        self.cause = cause
