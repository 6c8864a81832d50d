"""
CredentialStore — Master key lifecycle and the encrypted secret table.

Provides the public API of the credential store:
- ``add(name, value)`` — encrypt and persist a secret (refused once the key expired)
- ``get(name, reveal)`` — ciphertext by default, plaintext only when asked
- ``list()`` / ``items(reveal)`` / ``search(keyword, reveal)`` — enumerate secrets
- ``remove(name)`` — delete a secret
- ``import_csv(rows)`` — bulk import of ``name,url,username,password,note`` rows
- ``rotate()`` — new master key, every secret re-encrypted under it

Every mutation rewrites the whole store file atomically. A single lock
serializes key and table changes, so rotation never interleaves with a write.

Security Note:
    Never log plaintext or ciphertext values. Only log secret names, counts
    and key versions.
"""
from __future__ import annotations

import csv
import shutil
import logging
import threading
from pathlib import Path
from datetime import datetime, timezone
from typing import Callable, Optional
from collections.abc import Iterable, Sequence

from .config import (
    ConfigStore,
    MasterKey,
    VaultConfig,
    generate_master_key,
    resolve_ttl_hours,
    utcnow,
)
from .crypto import Sm4Cipher
from .exceptions import (
    ConfigError,
    InvalidCiphertext,
    KeyExpired,
    MalformedStoreFile,
    StoreError,
)
from .files import commit, discard, write_temp
from .key_rotation import rotate_master_key
from .table import SecretTable

logger = logging.getLogger("llkeys.vault")

FIELD_SEPARATOR = "|"
CSV_MIN_FIELDS = 5
CORRUPT_SUFFIX = ".corrupt"


class CredentialStore:
    """Encrypted name → secret store backed by one file.

    Keys are loaded lazily: the first operation calls :meth:`load_keys`,
    which creates a master key when the config file has none.
    """

    def __init__(
        self,
        config: VaultConfig,
        config_store: Optional[ConfigStore] = None,
        cipher: Optional[Sm4Cipher] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._settings = config
        self._config = config_store or ConfigStore(config.config_path)
        self._path = Path(config.store_path)
        self._cipher = cipher or Sm4Cipher()
        self._clock = clock
        self._lock = threading.RLock()
        self._key: Optional[MasterKey] = None
        self._table = SecretTable()
        self._loaded = False

    @property
    def path(self) -> Path:
        return self._path

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def master_key(self) -> MasterKey:
        self.load_keys()
        return self._key

    @property
    def is_expired(self) -> bool:
        self.load_keys()
        return self._key.is_expired(self._clock())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def load_keys(self) -> None:
        """Load or create the master key, then load the store file.

        Idempotent: later calls return immediately.

        Raises:
            ConfigError: If key metadata is invalid or cannot be written.
            StoreError: If the store file exists but cannot be read.
        """
        with self._lock:
            if self._loaded:
                return
            now = self._clock()
            ttl_hours = resolve_ttl_hours(
                self._config, self._settings.key_ttl_hours,
            )
            key, complete = MasterKey.from_config(self._config, ttl_hours, now)
            if key is None:
                key = generate_master_key(version=1, ttl_hours=ttl_hours, now=now)
                self._config.set_values(key.to_config())
                logger.info(
                    "Generated master key v%d (expires %s)",
                    key.version, key.expires_iso,
                )
            elif not complete:
                self._config.set_values(key.to_config())
                logger.info(
                    "Completed metadata for master key v%d (expires %s)",
                    key.version, key.expires_iso,
                )
            self._key = key
            self._cipher.set_key(key.passphrase)
            self._table = self._read_table()
            self._loaded = True
            logger.info(
                "Credential store loaded: %d secret(s), key v%d",
                len(self._table), key.version,
            )

    def close(self) -> None:
        """Zero the key material held in memory and forget the table."""
        with self._lock:
            self._cipher.clear_key()
            if self._key is not None:
                self._key.wipe()
            self._key = None
            self._table = SecretTable()
            self._loaded = False

    def _read_table(self) -> SecretTable:
        if not self._path.exists():
            return SecretTable()
        try:
            data = self._path.read_bytes()
        except OSError as err:
            raise StoreError(
                f"Cannot read store file {self._path}: {err}"
            ) from err
        try:
            return SecretTable.decode(self._cipher.decrypt(data))
        except (InvalidCiphertext, MalformedStoreFile) as err:
            self._preserve_unreadable(err)
            return SecretTable()

    def _backup_path(self) -> Path:
        """``<store>.corrupt-<UTC timestamp>``, never an existing file."""
        stamp = self._clock().astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        base = f"{self._path.name}{CORRUPT_SUFFIX}-{stamp}"
        backup = self._path.with_name(base)
        counter = 1
        while backup.exists():
            counter += 1
            backup = self._path.with_name(f"{base}-{counter}")
        return backup

    def _preserve_unreadable(self, err: Exception) -> None:
        """Keep a copy of a store file that cannot be loaded."""
        backup = self._backup_path()
        try:
            shutil.copy2(self._path, backup)
        except OSError as copy_err:
            logger.error(
                "Store file %s is unreadable (%s) and could not be "
                "copied to %s: %s", self._path, err, backup, copy_err,
            )
            return
        logger.warning(
            "Store file %s is unreadable (%s); continuing with an empty "
            "table, original kept at %s", self._path, err, backup,
        )

    def _write_table(self, table: SecretTable) -> None:
        payload = self._cipher.encrypt(table.encode())
        try:
            tmp_path = write_temp(self._path, payload)
            try:
                commit(tmp_path, self._path)
            except OSError:
                discard(tmp_path)
                raise
        except OSError as err:
            raise StoreError(
                f"Cannot write store file {self._path}: {err}"
            ) from err
        table.is_changed = False
        logger.debug("Store saved: %d secret(s)", len(table))

    def _require_writable(self) -> None:
        if self._key.is_expired(self._clock()):
            logger.warning(
                "Write refused: master key v%d expired at %s",
                self._key.version, self._key.expires_iso,
            )
            raise KeyExpired(self._key.version, self._key.expires_iso)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def add(self, name: str, value: str) -> None:
        """Encrypt and store a secret, overwriting any existing entry.

        Raises:
            ValueError: If ``name`` is empty.
            KeyExpired: If the master key TTL has elapsed.
            StoreError: If the store file cannot be written.
        """
        if not name:
            raise ValueError("Secret name cannot be empty")
        with self._lock:
            self.load_keys()
            self._require_writable()
            table = self._table.copy()
            table[name] = self._cipher.encrypt_text(value)
            self._write_table(table)
            self._table = table
        logger.debug("Secret added: %r", name)

    def get(self, name: str, reveal: bool = False) -> Optional[str]:
        """Return the stored ciphertext, or the plaintext when ``reveal``.

        Returns:
            None if no secret has that name.

        Raises:
            InvalidCiphertext: If ``reveal`` and the value does not decrypt.
        """
        with self._lock:
            self.load_keys()
            ciphertext = self._table.get(name)
            if ciphertext is None or not reveal:
                return ciphertext
            return self._cipher.decrypt_text(ciphertext)

    def list(self) -> set[str]:
        with self._lock:
            self.load_keys()
            return set(self._table)

    def items(self, reveal: bool = False) -> list[tuple[str, str]]:
        """All ``(name, value)`` pairs sorted by name.

        Values are ciphertext unless ``reveal`` is set.
        """
        with self._lock:
            self.load_keys()
            return [
                (
                    name,
                    self._cipher.decrypt_text(ct) if reveal else ct,
                )
                for name, ct in sorted(self._table.items())
            ]

    def remove(self, name: str) -> bool:
        """Delete a secret.

        Returns:
            True if it existed, False otherwise (nothing is written).
        """
        with self._lock:
            self.load_keys()
            if name not in self._table:
                return False
            table = self._table.copy()
            del table[name]
            self._write_table(table)
            self._table = table
        logger.debug("Secret removed: %r", name)
        return True

    def search(
        self, keyword: str, reveal: bool = False,
    ) -> list[tuple[str, str, str]]:
        """Case-insensitive substring search over secret names.

        Returns:
            ``(name, field1, field2)`` tuples. Without ``reveal`` field1
            holds the ciphertext and field2 is empty. With ``reveal`` the
            plaintext is split on the first ``|`` (username / password).
        """
        needle = keyword.casefold()
        results = []
        with self._lock:
            self.load_keys()
            for name, ciphertext in self._table.items():
                if needle not in name.casefold():
                    continue
                if not reveal:
                    results.append((name, ciphertext, ""))
                    continue
                plaintext = self._cipher.decrypt_text(ciphertext)
                first, _, second = plaintext.partition(FIELD_SEPARATOR)
                results.append((name, first, second))
        return results

    def import_csv(self, rows: Iterable[Sequence[str]]) -> int:
        """Import password-manager CSV rows.

        The first row is a header and is skipped. Each data row with at
        least five fields ``name, url, username, password, note`` is stored
        as ``name|url|note`` → ``username|password``; shorter rows are
        skipped. The file is rewritten once for the whole batch.

        Returns:
            Number of imported rows.

        Raises:
            KeyExpired: If the master key TTL has elapsed.
        """
        with self._lock:
            self.load_keys()
            self._require_writable()
            table = self._table.copy()
            imported = 0
            rows = iter(rows)
            next(rows, None)
            for lineno, row in enumerate(rows, start=2):
                if len(row) < CSV_MIN_FIELDS:
                    logger.debug(
                        "Skipping CSV row %d: %d field(s)", lineno, len(row),
                    )
                    continue
                name, url, username, password, note = (
                    field.strip('"') for field in row[:CSV_MIN_FIELDS]
                )
                key = FIELD_SEPARATOR.join((name, url, note))
                table[key] = self._cipher.encrypt_text(
                    FIELD_SEPARATOR.join((username, password))
                )
                imported += 1
            if imported:
                self._write_table(table)
                self._table = table
        logger.info("Imported %d secret(s) from CSV", imported)
        return imported

    def import_csv_file(self, path) -> int:
        """Read a UTF-8 CSV file and pass its rows to :meth:`import_csv`."""
        with open(path, newline="", encoding="utf-8-sig") as fh:
            return self.import_csv(csv.reader(fh))

    def rotate(self) -> dict:
        """Replace the master key and re-encrypt every secret under it.

        All-or-nothing: on failure the previous key stays in the config
        file, the previous store file stays on disk and the in-memory
        state is untouched.

        Returns:
            Rotation stats (total, rotated, old_version, new_version).

        Raises:
            InvalidCiphertext: If an existing secret does not decrypt.
            ConfigError: If the new key cannot be persisted.
            StoreError: If the new store file cannot be written.
        """
        with self._lock:
            self.load_keys()
            old_key = self._key
            now = self._clock()
            ttl_hours = resolve_ttl_hours(
                self._config, self._settings.key_ttl_hours,
            )
            new_key = generate_master_key(
                version=old_key.version + 1, ttl_hours=ttl_hours, now=now,
            )
            table, stats = rotate_master_key(self._table, old_key, new_key)

            new_cipher = Sm4Cipher(new_key.passphrase)
            try:
                payload = new_cipher.encrypt(table.encode())
                try:
                    tmp_path = write_temp(self._path, payload)
                except OSError as err:
                    raise StoreError(
                        f"Cannot write store file {self._path}: {err}"
                    ) from err
                try:
                    self._config.set_values(new_key.to_config())
                except ConfigError:
                    discard(tmp_path)
                    raise
                try:
                    commit(tmp_path, self._path)
                except OSError as err:
                    discard(tmp_path)
                    self._restore_key_metadata(old_key)
                    raise StoreError(
                        f"Cannot replace store file {self._path}: {err}"
                    ) from err
            except BaseException:
                new_key.wipe()
                raise
            finally:
                new_cipher.clear_key()

            self._cipher.set_key(new_key.passphrase)
            old_key.wipe()
            self._key = new_key
            self._table = table
        logger.info(
            "Master key rotated v%d -> v%d (expires %s)",
            stats["old_version"], stats["new_version"], new_key.expires_iso,
        )
        return stats

    def _restore_key_metadata(self, old_key: MasterKey) -> None:
        try:
            self._config.set_values(old_key.to_config())
        except ConfigError as err:
            logger.critical(
                "Rotation failed and key v%d could not be restored in %s: %s",
                old_key.version, self._config.path, err,
            )

    def status(self) -> dict:
        """Key and table metadata. Never includes key material."""
        with self._lock:
            self.load_keys()
            return {
                "key_version": self._key.version,
                "expires_at": self._key.expires_iso,
                "expired": self._key.is_expired(self._clock()),
                "secrets": len(self._table),
                "store_path": str(self._path),
            }
