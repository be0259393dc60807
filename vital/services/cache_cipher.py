"""
Cache Cipher.

Seals persistent-cache values with AES-256-GCM so profile snapshots and
the resumable registration identity (email, phone) are not stored in
plain text on shared machines.

Security model
--------------
- The key is derived from machine identity (hostname + OS username) via
  PBKDF2-HMAC-SHA256 with a per-machine random salt file.  It is held in
  memory only.
- GCM authenticates every value: a tampered, truncated, or foreign value
  fails to open and the cache treats it as a miss.
- If the machine identity changes, existing values become unreadable,
  which is harmless because the cache is advisory.
"""

from __future__ import annotations

import base64
import getpass
import os
import platform
import socket
import stat
import threading
from pathlib import Path
from typing import Optional

from Crypto.Cipher import AES
from Crypto.Hash import SHA256
from Crypto.Protocol.KDF import PBKDF2

from vital.logger import StructuredLogger

_NONCE_LENGTH: int = 16
_TAG_LENGTH: int = 16


class CacheCipher:
    """AES-256-GCM sealing for cache values.

    Parameters
    ----------
    logger:
        Structured logger.
    iterations:
        PBKDF2 iteration count.  Derivation happens once per instance.
    salt_path:
        Location of the per-machine salt.  Defaults to
        ``~/.vital_cache_salt``.
    """

    _KEY_LENGTH: int = 32  # 256 bits

    def __init__(
        self,
        logger: StructuredLogger,
        iterations: int = 600_000,
        salt_path: Optional[Path] = None,
    ) -> None:
        self._logger: StructuredLogger = logger
        self._iterations: int = iterations
        self._salt_path: Path = salt_path or (Path.home() / ".vital_cache_salt")
        self._key: Optional[bytes] = None
        self._key_lock: threading.Lock = threading.Lock()

    def seal(self, plaintext: bytes, associated_data: bytes = b"") -> str:
        """Encrypt *plaintext* and return ``base64(nonce || tag || ciphertext)``.

        *associated_data* is authenticated but not stored; the same bytes
        must be passed to :meth:`open`.

        Raises
        ------
        OSError
            If the salt file cannot be created or read.
        """
        cipher = AES.new(self._derive_key(), AES.MODE_GCM, nonce=os.urandom(_NONCE_LENGTH))
        cipher.update(associated_data)
        ciphertext, tag = cipher.encrypt_and_digest(plaintext)
        return base64.b64encode(cipher.nonce + tag + ciphertext).decode("ascii")

    def open(self, token: str, associated_data: bytes = b"") -> bytes:
        """Decrypt a value produced by :meth:`seal`.

        Raises
        ------
        ValueError
            If the token is malformed or fails authentication.
        """
        raw: bytes = base64.b64decode(token.encode("ascii"), validate=True)
        if len(raw) < _NONCE_LENGTH + _TAG_LENGTH:
            raise ValueError("Sealed value is truncated.")
        nonce = raw[:_NONCE_LENGTH]
        tag = raw[_NONCE_LENGTH:_NONCE_LENGTH + _TAG_LENGTH]
        ciphertext = raw[_NONCE_LENGTH + _TAG_LENGTH:]
        cipher = AES.new(self._derive_key(), AES.MODE_GCM, nonce=nonce)
        cipher.update(associated_data)
        return cipher.decrypt_and_verify(ciphertext, tag)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _derive_key(self) -> bytes:
        with self._key_lock:
            if self._key is None:
                password: str = f"{socket.gethostname()}:{getpass.getuser()}"
                self._key = PBKDF2(
                    password=password,
                    salt=self._get_or_create_salt(),
                    dkLen=self._KEY_LENGTH,
                    count=self._iterations,
                    hmac_hash_module=SHA256,
                )
            return self._key

    def _get_or_create_salt(self) -> bytes:
        """Return the per-machine salt, creating it on first run.

        Raises
        ------
        OSError
            If the salt file cannot be read or written.
        """
        if self._salt_path.exists():
            data: bytes = self._salt_path.read_bytes()
            if len(data) == 32:
                return data
            self._logger.warning(
                "Cache salt file has unexpected length (%d); regenerating.",
                len(data),
            )
        salt: bytes = os.urandom(32)
        self._salt_path.parent.mkdir(parents=True, exist_ok=True)
        self._salt_path.write_bytes(salt)

        if platform.system() != "Windows":
            self._salt_path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 0o600

        self._logger.info("Per-machine cache salt created at %s.", self._salt_path)
        return salt
