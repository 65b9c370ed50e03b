"""Artifact encryption.

Every artifact passes through a ``StreamCipher``. Which one is decided once,
from the run configuration, by ``build_cipher``:

- ``NoEncryption``: identity, bytes reach the file untouched.
- ``CipherKdfEngine``: in-process AES via ``cryptography`` with a PBKDF2
  derived key. The envelope is the one ``openssl enc -pbkdf2`` writes:
  ``b"Salted__" + salt(8) + ciphertext``, so exported files can be
  decrypted without this tool.
- ``PgpSymmetricEngine``: OpenPGP symmetric encryption through ``gpg``.

Each wrapped sink gets its own salt, hence its own key and IV.
"""

import io
import logging
import os
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import BinaryIO, Optional

from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import EncryptionConfigError

logger = logging.getLogger(__name__)

OPENSSL_MAGIC = b"Salted__"
SALT_LENGTH = 8
IV_LENGTH = 16
PBKDF2_ITERATIONS = 10_000  # openssl enc -pbkdf2 default

# cipher name -> (key length, mode, needs padding)
_CIPHERS = {
    "aes-256-cbc": (32, modes.CBC, True),
    "aes-192-cbc": (24, modes.CBC, True),
    "aes-128-cbc": (16, modes.CBC, True),
    "aes-256-ctr": (32, modes.CTR, False),
    "aes-128-ctr": (16, modes.CTR, False),
}

_KDF_DIGESTS = {
    "pbkdf2": hashes.SHA256,
    "pbkdf2-sha256": hashes.SHA256,
    "pbkdf2-sha512": hashes.SHA512,
}

GPG_CIPHERS = ("AES", "AES192", "AES256", "TWOFISH", "CAMELLIA128", "CAMELLIA192", "CAMELLIA256")


def read_passphrase(path: Optional[Path]) -> bytes:
    """Read the passphrase: the first line of ``path``, without its newline.

    Both ``openssl -pass file:`` and ``gpg --passphrase-file`` use the first
    line only, so this does too.

    Raises:
        EncryptionConfigError: File missing, unreadable, or empty.
    """
    if path is None:
        raise EncryptionConfigError("Encryption requested, but no passphrase file was given.")
    try:
        data = Path(path).read_bytes()
    except OSError as exc:
        raise EncryptionConfigError(
            f"Encryption requested, but passphrase file '{path}' cannot be read: {exc.strerror}"
        ) from exc

    lines = data.splitlines()
    passphrase = lines[0] if lines else b""
    if not passphrase:
        raise EncryptionConfigError(
            "Encryption requested, but passphrase file does not exist or is empty."
        )
    return passphrase


# ── Strategy interface ───────────────────────────────────────────────


class StreamCipher(ABC):
    """Turns an output sink into an encrypting sink."""

    #: Short engine name, used in log output.
    name = "abstract"

    @abstractmethod
    def wrap(self, sink: BinaryIO) -> BinaryIO:
        """Return a writable stream whose bytes reach ``sink`` encrypted.

        Closing the returned stream finalises the envelope. ``sink`` itself
        is never closed; the caller owns it.
        """

    @property
    def enabled(self) -> bool:
        return True

    def encrypt_bytes(self, data: bytes) -> bytes:
        """Convenience wrapper: encrypt a whole buffer."""
        out = io.BytesIO()
        wrapped = self.wrap(out)
        wrapped.write(data)
        if wrapped is not out:
            wrapped.close()
        return out.getvalue()


class NoEncryption(StreamCipher):
    """Pass-through: ``wrap(sink) is sink``."""

    name = "none"

    def wrap(self, sink: BinaryIO) -> BinaryIO:
        return sink

    @property
    def enabled(self) -> bool:
        return False


class _EncryptingSink(io.RawIOBase):
    """Feeds written bytes through a ``cryptography`` context into a sink."""

    def __init__(self, sink: BinaryIO, encryptor, padder=None):
        super().__init__()
        self._sink = sink
        self._encryptor = encryptor
        self._padder = padder

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        if self.closed:
            raise ValueError("write to closed encrypting sink")
        data = bytes(data)
        chunk = self._padder.update(data) if self._padder else data
        self._sink.write(self._encryptor.update(chunk))
        return len(data)

    def close(self) -> None:
        if self.closed:
            return
        tail = self._padder.finalize() if self._padder else b""
        self._sink.write(self._encryptor.update(tail) + self._encryptor.finalize())
        self._sink.flush()
        super().close()


class CipherKdfEngine(StreamCipher):
    """AES with a PBKDF2-derived key and IV, OpenSSL ``enc`` compatible.

    Equivalent decryption:
    ``openssl enc -d -aes-256-cbc -pbkdf2 -md sha256 -pass file:PASSFILE``.
    """

    name = "openssl"

    def __init__(
        self,
        passphrase: bytes,
        cipher: str = "aes-256-cbc",
        kdf: str = "pbkdf2",
        iterations: int = PBKDF2_ITERATIONS,
    ):
        cipher = cipher.lower()
        kdf = kdf.lower()
        if cipher not in _CIPHERS:
            raise EncryptionConfigError(
                f"Unsupported cipher '{cipher}'. Choose one of: {', '.join(sorted(_CIPHERS))}"
            )
        if kdf not in _KDF_DIGESTS:
            raise EncryptionConfigError(
                f"Unsupported key derivation function '{kdf}'. "
                f"Choose one of: {', '.join(sorted(_KDF_DIGESTS))}"
            )
        if not passphrase:
            raise EncryptionConfigError("Empty passphrase.")

        self._passphrase = passphrase
        self.cipher = cipher
        self.kdf = kdf
        self.iterations = iterations
        self._key_length, self._mode, self._padded = _CIPHERS[cipher]

    def _derive(self, salt: bytes):
        kdf = PBKDF2HMAC(
            algorithm=_KDF_DIGESTS[self.kdf](),
            length=self._key_length + IV_LENGTH,
            salt=salt,
            iterations=self.iterations,
            backend=default_backend(),
        )
        material = kdf.derive(self._passphrase)
        return material[: self._key_length], material[self._key_length :]

    def _cipher(self, salt: bytes) -> Cipher:
        key, iv = self._derive(salt)
        return Cipher(algorithms.AES(key), self._mode(iv), backend=default_backend())

    def wrap(self, sink: BinaryIO) -> BinaryIO:
        salt = os.urandom(SALT_LENGTH)
        sink.write(OPENSSL_MAGIC + salt)
        padder = padding.PKCS7(algorithms.AES.block_size).padder() if self._padded else None
        return _EncryptingSink(sink, self._cipher(salt).encryptor(), padder)

    def decrypt_bytes(self, blob: bytes) -> bytes:
        """Reverse ``encrypt_bytes``.

        Raises:
            ValueError: Not an OpenSSL salted envelope, or bad padding
                (usually a wrong passphrase).
        """
        header = len(OPENSSL_MAGIC) + SALT_LENGTH
        if len(blob) < header or not blob.startswith(OPENSSL_MAGIC):
            raise ValueError("Data is not an OpenSSL salted envelope.")
        salt = blob[len(OPENSSL_MAGIC) : header]
        decryptor = self._cipher(salt).decryptor()
        plain = decryptor.update(blob[header:]) + decryptor.finalize()
        if not self._padded:
            return plain
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        return unpadder.update(plain) + unpadder.finalize()


class _ProcessSink(io.RawIOBase):
    """Buffers written bytes, then pipes them through a command on close."""

    def __init__(self, sink: BinaryIO, command):
        super().__init__()
        self._sink = sink
        self._command = command
        self._buffer = io.BytesIO()

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        if self.closed:
            raise ValueError("write to closed process sink")
        return self._buffer.write(bytes(data))

    def close(self) -> None:
        if self.closed:
            return
        try:
            result = subprocess.run(
                self._command,
                input=self._buffer.getvalue(),
                capture_output=True,
            )
        finally:
            self._buffer = io.BytesIO()
            super().close()
        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", "replace").strip()
            raise OSError(f"{self._command[0]} exited with status {result.returncode}: {stderr}")
        self._sink.write(result.stdout)
        self._sink.flush()


class PgpSymmetricEngine(StreamCipher):
    """OpenPGP symmetric encryption via ``gpg --symmetric``.

    gpg salts and derives its own session key per message (S2K), so there is
    no separate KDF choice here.
    """

    name = "gpg"

    def __init__(self, passphrase_file: Path, cipher: str = "AES256", program: str = "gpg"):
        cipher = cipher.upper()
        if cipher not in GPG_CIPHERS:
            raise EncryptionConfigError(
                f"Unsupported gpg cipher '{cipher}'. Choose one of: {', '.join(GPG_CIPHERS)}"
            )
        self.passphrase_file = Path(passphrase_file)
        self.cipher = cipher
        self.program = program

    def command(self):
        return [
            self.program,
            "--batch",
            "--yes",
            "--quiet",
            "--pinentry-mode", "loopback",
            "--passphrase-file", str(self.passphrase_file),
            "--symmetric",
            "--cipher-algo", self.cipher,
            "--output", "-",
        ]

    def wrap(self, sink: BinaryIO) -> BinaryIO:
        return _ProcessSink(sink, self.command())


def build_cipher(settings, passphrase: bytes = b"") -> StreamCipher:
    """Pick the engine for this run from ``EncryptionSettings``."""
    if not settings.enabled:
        return NoEncryption()

    if settings.engine == "openssl":
        engine = CipherKdfEngine(passphrase, cipher=settings.effective_cipher, kdf=settings.kdf)
        logger.debug("Encrypting with %s (%s)", engine.cipher, engine.kdf)
        return engine

    if settings.engine == "gpg":
        engine = PgpSymmetricEngine(settings.passphrase_file, cipher=settings.effective_cipher)
        logger.debug("Encrypting with gpg (%s)", engine.cipher)
        return engine

    raise EncryptionConfigError(f"Unknown encryption program '{settings.engine}'.")
