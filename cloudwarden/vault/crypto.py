"""
AES-256-GCM for stored provider secrets and personal bot tokens.

The master key is 32 random bytes at $CLOUDWARDEN_WORKSPACE/.vault-key
(chmod 600). Sealed values are nonce (12 bytes) + ciphertext + tag (16 bytes);
in the database they are kept base64-encoded in TEXT columns.
"""

from __future__ import annotations

import base64
import binascii
import os
import secrets
import stat
from pathlib import Path

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

KEY_FILE = ".vault-key"
NONCE_SIZE = 12
TAG_SIZE = 16


def key_path(workspace: Path | str | None = None) -> Path:
    if workspace is None:
        workspace = os.environ.get("CLOUDWARDEN_WORKSPACE", Path.home() / "cloudwarden")
    return Path(workspace) / KEY_FILE


def init_master_key(workspace: Path | str) -> Path:
    """Create the master key file unless one exists. Returns its path."""
    path = key_path(workspace)
    if path.exists():
        return path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(secrets.token_bytes(32))
    path.chmod(stat.S_IRUSR | stat.S_IWUSR)
    return path


def load_master_key(workspace: Path | str | None = None) -> bytes:
    path = key_path(workspace)
    if not path.exists():
        raise FileNotFoundError(
            f"Vault master key not found at {path}. Create one with init_master_key()."
        )
    key = path.read_bytes()
    if len(key) != 32:
        raise ValueError(f"Vault master key must be 32 bytes, got {len(key)}")
    return key


def seal(plaintext: str, master_key: bytes) -> bytes:
    nonce = secrets.token_bytes(NONCE_SIZE)
    return nonce + AESGCM(master_key).encrypt(nonce, plaintext.encode("utf-8"), None)


def unseal(data: bytes, master_key: bytes) -> str:
    if len(data) < NONCE_SIZE + TAG_SIZE:
        raise ValueError("Encrypted data too short")
    plaintext = AESGCM(master_key).decrypt(data[:NONCE_SIZE], data[NONCE_SIZE:], None)
    return plaintext.decode("utf-8")


class VaultDecryptor:
    """SecretDecryptor over a master key. Accepts raw bytes or base64 text."""

    def __init__(self, master_key: bytes) -> None:
        if len(master_key) != 32:
            raise ValueError(f"Vault master key must be 32 bytes, got {len(master_key)}")
        self._key = master_key

    @classmethod
    def from_workspace(cls, workspace: Path | str | None = None) -> VaultDecryptor:
        return cls(load_master_key(workspace))

    def encrypt(self, plaintext: str) -> str:
        """Seal and base64-encode, ready for a TEXT column."""
        return base64.b64encode(seal(plaintext, self._key)).decode("ascii")

    def decrypt(self, encrypted: str | bytes) -> str:
        if isinstance(encrypted, str):
            try:
                data = base64.b64decode(encrypted, validate=True)
            except binascii.Error as e:
                raise ValueError(f"Encrypted value is not valid base64: {e}") from e
        else:
            data = bytes(encrypted)
        return unseal(data, self._key)
