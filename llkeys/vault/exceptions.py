"""Vault exceptions.

Security Note:
    Messages carry key names and versions only. Never put plaintext,
    ciphertext or key material into an exception message.
"""


class VaultError(Exception):
    """Base class for every credential store failure."""


class KeyExpired(VaultError):
    """A write was attempted while the master key TTL has elapsed."""

    def __init__(self, version: int, expires_at: str):
        self.version = version
        self.expires_at = expires_at
        super().__init__(
            f"Master key v{version} expired at {expires_at}; "
            "run 'rotate' to generate a new key"
        )


class InvalidCiphertext(VaultError, ValueError):
    """Ciphertext could not be decrypted under the active key."""


class MalformedStoreFile(VaultError, ValueError):
    """Decrypted store payload has a bad magic tag, version or layout."""


class StoreError(VaultError):
    """The encrypted store file could not be written."""


class ConfigError(VaultError):
    """The configuration file could not be written."""
