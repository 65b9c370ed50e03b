"""Run configuration.

One ``RunConfiguration`` is built at startup from the parsed command line
and handed to every pipeline component. It is frozen: components read it,
nothing rewrites it mid-run.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from .crypto import read_passphrase
from .errors import ConfigError, NothingToDoError
from .vault.client import ItemFormat

COLOR_MODES = ("auto", "never", "always")
SNIFFERS = ("signature", "file")
ENGINES = ("none", "openssl", "gpg")

DEFAULT_CIPHERS = {
    "openssl": "aes-256-cbc",
    "gpg": "AES256",
}
DEFAULT_KDF = "pbkdf2"
DEFAULT_ENCRYPTED_EXTENSION = "enc"
DEFAULT_INDEX_NAME = "index.txt"

USERNAME_ENV = "LPASS_EXPORT_USERNAME"


@dataclass(frozen=True)
class EncryptionSettings:
    """Which engine encrypts artifacts, and with what parameters."""

    engine: str = "none"
    passphrase_file: Optional[Path] = None
    cipher: Optional[str] = None
    kdf: str = DEFAULT_KDF
    extension: str = DEFAULT_ENCRYPTED_EXTENSION

    @property
    def enabled(self) -> bool:
        return self.engine != "none"

    @property
    def effective_cipher(self) -> Optional[str]:
        if not self.enabled:
            return None
        return self.cipher or DEFAULT_CIPHERS[self.engine]

    def suffixed(self, name: str) -> str:
        """Append the encrypted-file extension to ``name`` when enabled."""
        if not self.enabled:
            return name
        return f"{name}.{self.extension}"


@dataclass(frozen=True)
class RunConfiguration:
    """Resolved options for a single export invocation."""

    output_dir: Path
    username: str = ""
    overwrite: bool = False
    item_format: ItemFormat = ItemFormat.TEXT
    encryption: EncryptionSettings = field(default_factory=EncryptionSettings)
    export_items: bool = True
    index_enabled: bool = False
    index_name: str = DEFAULT_INDEX_NAME
    sort_index: bool = False
    archive_path: Optional[Path] = None
    stay_logged_in: bool = False
    quiet: bool = False
    debug: bool = False
    color: str = "never"
    workers: int = 1
    sniffer: str = "signature"
    event_log: Optional[Path] = None

    # ── Derived paths ────────────────────────────────────────────────

    @property
    def item_extension(self) -> str:
        """``txt``/``json``, plus the encrypted extension when enabled."""
        return self.encryption.suffixed(self.item_format.extension)

    @property
    def index_path(self) -> Path:
        return self.output_dir / self.encryption.suffixed(self.index_name)

    def item_path(self, item_id: str) -> Path:
        return self.output_dir / f"{item_id}.{self.item_extension}"

    def attachments_dir(self, item_id: str) -> Path:
        return self.output_dir / item_id

    # ── Construction ─────────────────────────────────────────────────

    @classmethod
    def from_args(cls, args, environ: Optional[Mapping[str, str]] = None) -> "RunConfiguration":
        """Build the configuration from an argparse namespace.

        Relative paths are resolved against the current working directory.
        Passing ``-p`` turns encryption on; ``-e`` only picks the engine.
        """
        environ = os.environ if environ is None else environ

        if args.passphrase_file:
            encryption = EncryptionSettings(
                engine=args.encryption_program,
                passphrase_file=Path(args.passphrase_file).expanduser().resolve(),
                cipher=args.algorithm,
                kdf=args.kdf or DEFAULT_KDF,
                extension=args.encrypted_extension or DEFAULT_ENCRYPTED_EXTENSION,
            )
        else:
            encryption = EncryptionSettings()

        archive = None
        if args.archive:
            archive = Path(args.archive).expanduser().resolve()

        event_log = None
        if args.event_log:
            event_log = Path(args.event_log).expanduser().resolve()

        return cls(
            output_dir=Path(args.output_dir).expanduser().resolve(),
            username=args.username or environ.get(USERNAME_ENV, ""),
            overwrite=args.force,
            item_format=ItemFormat.JSON if args.json else ItemFormat.TEXT,
            encryption=encryption,
            export_items=not args.skip_items,
            index_enabled=args.index,
            index_name=args.index_name or DEFAULT_INDEX_NAME,
            sort_index=args.sort_index,
            archive_path=archive,
            stay_logged_in=args.stay_logged_in,
            quiet=args.quiet,
            debug=args.debug,
            color=args.color,
            workers=args.workers,
            sniffer=args.sniffer,
            event_log=event_log,
        )


def validate_configuration(config: RunConfiguration) -> bytes:
    """Fail fast on anything that would make the run pointless or unsafe.

    Returns the passphrase bytes (``b""`` when encryption is off) so the
    caller reads the passphrase file exactly once.

    Raises:
        NothingToDoError: Item export and index are both disabled.
        ConfigError: Missing username, bad output directory, bad options.
        EncryptionConfigError: Passphrase file missing, unreadable or empty.
    """
    if not config.export_items and not config.index_enabled:
        raise NothingToDoError(
            "Nothing to do: item export is skipped and no index was requested."
        )

    if not config.username:
        raise ConfigError(f"Missing username (use -u or set {USERNAME_ENV}).")

    if not config.output_dir.is_dir():
        raise ConfigError(f"Output directory '{config.output_dir}' is not a directory.")

    if config.color not in COLOR_MODES:
        raise ConfigError(f"Invalid color option '{config.color}'.")

    if config.sniffer not in SNIFFERS:
        raise ConfigError(f"Unknown sniffer '{config.sniffer}'.")

    if config.workers < 1:
        raise ConfigError("Worker count must be at least 1.")

    if not config.index_name or "/" in config.index_name or os.sep in config.index_name:
        raise ConfigError(f"Invalid index file name '{config.index_name}'.")

    if config.archive_path is not None:
        try:
            config.archive_path.relative_to(config.output_dir)
        except ValueError:
            pass
        else:
            raise ConfigError("Archive file must not be inside the output directory.")

    encryption = config.encryption
    if encryption.engine not in ENGINES:
        raise ConfigError(f"Unknown encryption program '{encryption.engine}'.")

    if not encryption.enabled:
        return b""

    if not encryption.extension or "/" in encryption.extension:
        raise ConfigError(f"Invalid encrypted extension '{encryption.extension}'.")

    return read_passphrase(encryption.passphrase_file)
