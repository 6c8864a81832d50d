"""Credential Vault — Encrypted secret storage in a single local file.

Security Note (Threat Model):
    The master key passphrase (``keyA``) is kept in cleartext in the config
    file, and values are encrypted with a zero IV, so equal secrets produce
    equal ciphertexts. Anyone able to read both files can recover every
    secret. This is an accepted limitation of a single-operator local store.
"""

from .store import CredentialStore
from .key_rotation import rotate_master_key
from .crypto import Sm4Cipher, normalize_key
from .table import SecretTable
from .config import (
    ConfigStore,
    MasterKey,
    VaultConfig,
    generate_master_key,
)
from .exceptions import (
    VaultError,
    KeyExpired,
    InvalidCiphertext,
    MalformedStoreFile,
    StoreError,
    ConfigError,
)

__all__ = [
    "CredentialStore",
    "rotate_master_key",
    "Sm4Cipher",
    "normalize_key",
    "SecretTable",
    "ConfigStore",
    "MasterKey",
    "VaultConfig",
    "generate_master_key",
    "VaultError",
    "KeyExpired",
    "InvalidCiphertext",
    "MalformedStoreFile",
    "StoreError",
    "ConfigError",
]
