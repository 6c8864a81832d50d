"""
Vault Crypto Core — SM4 block cipher engine for the credential store.

All values and the store file itself are encrypted with:
    SM4 (128-bit key) → CBC mode → PKCS#7 padding → all-zero IV

Encryption is deterministic: the same plaintext under the same key always
produces the same ciphertext, so equal secrets are visible as equal
ciphertexts. This matches the on-disk format of existing ``keys.llk`` files.

Security Note:
    Never log plaintext or ciphertext values.
"""
import base64
import binascii
import logging
from typing import Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .exceptions import InvalidCiphertext, VaultError

logger = logging.getLogger("llkeys.vault")

KEY_LENGTH = 16  # SM4 is a 128-bit cipher
BLOCK_SIZE = 16
ZERO_IV = bytes(BLOCK_SIZE)


# ---------------------------------------------------------------------------
# Key normalization
# ---------------------------------------------------------------------------

def normalize_key(passphrase: str) -> bytes:
    """Turn a passphrase into exactly 16 bytes of key material.

    The UTF-8 encoding is right-padded with spaces when shorter and
    truncated when longer.

    Args:
        passphrase: Configured passphrase (``keyA``).

    Returns:
        16-byte key.
    """
    raw = passphrase.encode("utf-8")[:KEY_LENGTH]
    return raw.ljust(KEY_LENGTH, b" ")


def wipe(buffer: Optional[bytearray]) -> None:
    """Overwrite a mutable key buffer with zeros in place."""
    if buffer is None:
        return
    for i in range(len(buffer)):
        buffer[i] = 0


# ---------------------------------------------------------------------------
# Cipher engine
# ---------------------------------------------------------------------------

class Sm4Cipher:
    """SM4-CBC/PKCS7 cipher bound to one active key.

    The only mutable state is the active key. ``set_key`` is not safe to
    race with ``encrypt``/``decrypt``; callers that share an instance
    across threads serialize access themselves.
    """

    def __init__(self, passphrase: Optional[str] = None):
        self._key: Optional[bytearray] = None
        if passphrase is not None:
            self.set_key(passphrase)

    @property
    def has_key(self) -> bool:
        return self._key is not None

    def set_key(self, passphrase: str) -> None:
        """Normalize ``passphrase`` and make it the active key.

        The previously active key bytes are zeroed.
        """
        previous = self._key
        self._key = bytearray(normalize_key(passphrase))
        wipe(previous)

    def clear_key(self) -> None:
        """Zero and drop the active key."""
        wipe(self._key)
        self._key = None

    def _cipher(self) -> Cipher:
        if self._key is None:
            raise VaultError("No active key set on the cipher engine")
        return Cipher(algorithms.SM4(bytes(self._key)), modes.CBC(ZERO_IV))

    def encrypt(self, plaintext: bytes) -> bytes:
        """Encrypt bytes with PKCS#7 padding under the active key.

        Args:
            plaintext: Data to encrypt (may be empty).

        Returns:
            Ciphertext, a non-empty multiple of 16 bytes.
        """
        padder = padding.PKCS7(BLOCK_SIZE * 8).padder()
        padded = padder.update(plaintext) + padder.finalize()
        encryptor = self._cipher().encryptor()
        return encryptor.update(padded) + encryptor.finalize()

    def decrypt(self, ciphertext: bytes) -> bytes:
        """Decrypt bytes produced by :meth:`encrypt`.

        Raises:
            InvalidCiphertext: If the length is not a positive multiple of
                the block size or the padding is malformed (usually a
                wrong key).
        """
        if not ciphertext or len(ciphertext) % BLOCK_SIZE:
            raise InvalidCiphertext(
                f"Ciphertext length {len(ciphertext)} is not a positive "
                f"multiple of {BLOCK_SIZE}"
            )
        decryptor = self._cipher().decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()
        unpadder = padding.PKCS7(BLOCK_SIZE * 8).unpadder()
        try:
            return unpadder.update(padded) + unpadder.finalize()
        except ValueError as err:
            raise InvalidCiphertext("Invalid padding after decryption") from err

    # ------------------------------------------------------------------
    # Text helpers
    # ------------------------------------------------------------------

    def encrypt_text(self, plaintext: str) -> str:
        """Encrypt a string and return base64 text."""
        ct = self.encrypt(plaintext.encode("utf-8"))
        return base64.b64encode(ct).decode("ascii")

    def decrypt_text(self, ciphertext: str) -> str:
        """Decrypt base64 text produced by :meth:`encrypt_text`.

        Raises:
            InvalidCiphertext: On bad base64, bad padding or non UTF-8
                plaintext.
        """
        try:
            raw = base64.b64decode(ciphertext, validate=True)
        except (binascii.Error, ValueError) as err:
            raise InvalidCiphertext("Ciphertext is not valid base64") from err
        plaintext = self.decrypt(raw)
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as err:
            raise InvalidCiphertext(
                "Decrypted value is not valid UTF-8"
            ) from err
