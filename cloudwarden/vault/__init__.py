"""
Cloudwarden vault — AES-256-GCM sealing of provider secrets.

Public API:
    VaultDecryptor.from_workspace()   → decryptor over $CLOUDWARDEN_WORKSPACE/.vault-key
    VaultDecryptor.encrypt(text)      → base64 sealed value
    VaultDecryptor.decrypt(value)     → plaintext
    init_master_key(workspace)        → create the key file if missing
"""

from __future__ import annotations

from cloudwarden.vault.crypto import VaultDecryptor, init_master_key, load_master_key

__all__ = ["VaultDecryptor", "init_master_key", "load_master_key"]
