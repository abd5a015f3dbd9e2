"""File-backed, encrypted credential storage for blogging platforms.

Credentials live in ~/.crosspost/credentials.json, separate from
config.json so they never show up in config dumps. Decrypted layout:

    {"mastodon": {"<user id>": {...}}, "bluesky": {"<user id>": {...}}}

On disk the JSON is sealed with AES-256-GCM under a key derived from a
passphrase with scrypt:

    MAGIC (5) | salt (16) | nonce (12) | ciphertext + tag

The salt is kept for the lifetime of the store so the key is derived once;
every write uses a fresh nonce. A plaintext JSON file from an older version
is still read and gets encrypted on the next write.

Writes are atomic (temp file + rename) and the file is chmod 0o600.
Each platform client defines a pydantic model for its own entry and
stores model_dump(mode="json") here.
"""

from __future__ import annotations

import contextlib
import json
import os
import threading
from pathlib import Path
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from loguru import logger

from crosspost.errors import CredentialStoreError

DEFAULT_CREDENTIALS_PATH = Path("~/.crosspost/credentials.json")

MAGIC = b"CPCS1"
SALT_SIZE = 16
NONCE_SIZE = 12
_HEADER_SIZE = len(MAGIC) + SALT_SIZE + NONCE_SIZE

# scrypt cost parameters (N=2^15, r=8, p=1), 256-bit key.
_SCRYPT_N = 2**15
_SCRYPT_R = 8
_SCRYPT_P = 1


def derive_key(passphrase: str, salt: bytes) -> bytes:
    kdf = Scrypt(salt=salt, length=32, n=_SCRYPT_N, r=_SCRYPT_R, p=_SCRYPT_P)
    return kdf.derive(passphrase.encode("utf-8"))


class CredentialStore:
    """Platform -> user -> credential dict, persisted as encrypted JSON."""

    def __init__(self, path: Path | None = None, passphrase: str = "") -> None:
        self._path = (path or DEFAULT_CREDENTIALS_PATH).expanduser()
        self._passphrase = passphrase
        self._salt: bytes | None = None
        self._key: bytes | None = None
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def get(self, platform: str, user_id: str) -> dict[str, Any] | None:
        """Stored credentials for user_id on platform, or None."""
        with self._lock:
            entry = self._read_all().get(platform, {}).get(user_id)
        return dict(entry) if entry is not None else None

    def save(self, platform: str, user_id: str, credentials: dict[str, Any]) -> None:
        """Create or replace the credentials for user_id on platform."""
        with self._lock:
            data = self._read_all()
            data.setdefault(platform, {})[user_id] = credentials
            self._write_all(data)
        logger.debug("Saved {} credentials for user {}", platform, user_id)

    def delete(self, platform: str, user_id: str) -> bool:
        """Forget credentials. Returns True if any were stored."""
        with self._lock:
            data = self._read_all()
            users = data.get(platform, {})
            if user_id not in users:
                return False
            del users[user_id]
            if not users:
                data.pop(platform, None)
            self._write_all(data)
        logger.debug("Deleted {} credentials for user {}", platform, user_id)
        return True

    def list_users(self, platform: str | None = None) -> dict[str, list[str]]:
        """User ids with stored credentials, grouped by platform."""
        with self._lock:
            data = self._read_all()
        if platform is not None:
            return {platform: sorted(data.get(platform, {}))}
        return {name: sorted(users) for name, users in sorted(data.items())}

    # ── Encryption ──

    def _key_for(self, salt: bytes) -> bytes:
        if self._key is None or salt != self._salt:
            self._key = derive_key(self._passphrase, salt)
            self._salt = salt
        return self._key

    def _seal(self, plaintext: bytes) -> bytes:
        salt = self._salt or os.urandom(SALT_SIZE)
        nonce = os.urandom(NONCE_SIZE)
        ciphertext = AESGCM(self._key_for(salt)).encrypt(nonce, plaintext, MAGIC)
        return MAGIC + salt + nonce + ciphertext

    def _open(self, blob: bytes) -> bytes:
        salt = blob[len(MAGIC) : len(MAGIC) + SALT_SIZE]
        nonce = blob[len(MAGIC) + SALT_SIZE : _HEADER_SIZE]
        try:
            return AESGCM(self._key_for(salt)).decrypt(nonce, blob[_HEADER_SIZE:], MAGIC)
        except InvalidTag as exc:
            raise CredentialStoreError(
                f"{self._path}: cannot decrypt credentials (wrong passphrase or damaged file)"
            ) from exc

    # ── File I/O ──

    def _read_all(self) -> dict[str, dict[str, dict[str, Any]]]:
        if not self._path.exists():
            return {}
        blob = self._path.read_bytes()
        if blob.startswith(MAGIC):
            plaintext = self._open(blob)
        else:
            logger.warning("Credential store {} is not encrypted yet", self._path)
            plaintext = blob
        try:
            return json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise CredentialStoreError(f"{self._path}: malformed credential data") from exc

    def _write_all(self, data: dict[str, dict[str, dict[str, Any]]]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        plaintext = json.dumps(data, ensure_ascii=False).encode("utf-8")
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_bytes(self._seal(plaintext))
        with contextlib.suppress(OSError):
            os.chmod(tmp_path, 0o600)
        tmp_path.replace(self._path)
