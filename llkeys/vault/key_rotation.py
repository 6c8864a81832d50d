"""
Vault Key Rotation — Re-encryption of every secret under a new master key.

Rotation is all-or-nothing: the re-encrypted entries go into a new table and
the source table is never touched. If any entry fails to decrypt under the
old key the whole rotation is aborted, so the store keeps satisfying "every
ciphertext decrypts under the current key".

Security Note:
    Plaintext exists in memory only during re-encryption of each entry.
    Never log plaintext or ciphertext values.
"""
import logging

from .config import MasterKey
from .crypto import Sm4Cipher
from .exceptions import InvalidCiphertext
from .table import SecretTable

logger = logging.getLogger("llkeys.vault")


def rotate_master_key(
    table: SecretTable,
    old_key: MasterKey,
    new_key: MasterKey,
) -> tuple[SecretTable, dict]:
    """Re-encrypt all entries of ``table`` from ``old_key`` to ``new_key``.

    Args:
        table: Current table, encrypted under ``old_key``. Not modified.
        old_key: Key the entries are currently encrypted with.
        new_key: Key to re-encrypt them with.

    Returns:
        ``(new_table, stats)`` where stats has keys: total, rotated,
        old_version, new_version.

    Raises:
        InvalidCiphertext: If an entry cannot be decrypted with ``old_key``.
    """
    old_cipher = Sm4Cipher(old_key.passphrase)
    new_cipher = Sm4Cipher(new_key.passphrase)
    stats = {
        "total": len(table),
        "rotated": 0,
        "old_version": old_key.version,
        "new_version": new_key.version,
    }

    logger.info(
        "Starting key rotation from v%d to v%d (%d secret(s))",
        old_key.version, new_key.version, len(table),
    )

    rotated = SecretTable()
    try:
        for name, ciphertext in table.items():
            try:
                rotated[name] = new_cipher.encrypt_text(
                    old_cipher.decrypt_text(ciphertext)
                )
            except InvalidCiphertext as err:
                logger.error(
                    "Aborting rotation: secret %r does not decrypt under v%d",
                    name, old_key.version,
                )
                raise InvalidCiphertext(
                    f"Secret {name!r} cannot be decrypted with key "
                    f"v{old_key.version}; rotation aborted"
                ) from err
            stats["rotated"] += 1
    finally:
        old_cipher.clear_key()
        new_cipher.clear_key()

    rotated.is_changed = False
    logger.info("Key rotation re-encrypted: %s", stats)
    return rotated, stats
