"""
Vault Configuration — settings, the key/value config file and the master key.

Master key metadata lives in a JSON config file under these key paths:
    keyA        = <passphrase, cleartext>
    keyVersion  = <integer>
    keyTtl      = <ISO-8601 expiry timestamp>
    keyTtlHours = <float, optional; TTL used when generating a key>

Settings are read from environment variables:
    LLKEYS_HOME, LLKEYS_STORE_PATH, LLKEYS_CONFIG_PATH, LLKEYS_KEY_TTL_HOURS

Security Note:
    Never log key material. Only log key versions and expiry times.
    ``keyA`` is stored in cleartext; whoever can read the config file can
    decrypt the store.
"""
import os
import math
import secrets
import logging
from pathlib import Path
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from collections.abc import Mapping

import orjson
from pydantic import (
    BaseModel,
    Field,
    PrivateAttr,
    ValidationError,
    field_validator,
)

from .crypto import normalize_key, wipe
from .exceptions import ConfigError
from .files import atomic_write

logger = logging.getLogger("llkeys.vault")

KEY_MATERIAL = "keyA"
KEY_VERSION = "keyVersion"
KEY_EXPIRY = "keyTtl"
KEY_TTL_HOURS = "keyTtlHours"

DEFAULT_TTL_HOURS = 0.5
PASSPHRASE_BYTES = 12  # token_urlsafe(12) → 16 characters


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Key/value config file
# ---------------------------------------------------------------------------

class ConfigStore:
    """JSON object file addressed by ``:``-separated key paths.

    Reads are forgiving: a missing or unreadable file behaves as empty.
    Writes replace the whole file atomically and raise ``ConfigError``.
    """

    def __init__(self, path: os.PathLike):
        self.path = Path(path)

    def load(self) -> dict:
        """Return the whole config object, ``{}`` if absent or unreadable."""
        try:
            data = orjson.loads(self.path.read_bytes())
        except FileNotFoundError:
            return {}
        except (OSError, orjson.JSONDecodeError) as err:
            logger.warning("Unreadable config file %s: %s", self.path, err)
            return {}
        return data if isinstance(data, dict) else {}

    def get_value(self, key_path: str, default: Any = None) -> Any:
        current: Any = self.load()
        for key in key_path.split(":"):
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return default
        return default if current is None else current

    def set_value(self, key_path: str, value: Any) -> None:
        self.set_values({key_path: value})

    def set_values(self, values: Mapping[str, Any]) -> None:
        """Set several key paths with a single file write."""
        data = self.load()
        for key_path, value in values.items():
            keys = key_path.split(":")
            current = data
            for key in keys[:-1]:
                if not isinstance(current.get(key), dict):
                    current[key] = {}
                current = current[key]
            current[keys[-1]] = value
        try:
            atomic_write(
                self.path,
                orjson.dumps(data, option=orjson.OPT_INDENT_2),
            )
        except (OSError, TypeError) as err:
            raise ConfigError(
                f"Cannot write config file {self.path}: {err}"
            ) from err


def resolve_ttl_hours(store: ConfigStore, default: float) -> float:
    """TTL for new keys: ``keyTtlHours`` from the config file, else ``default``."""
    raw = store.get_value(KEY_TTL_HOURS)
    if raw is None:
        return default
    try:
        hours = float(raw)
    except (TypeError, ValueError):
        logger.warning("Ignoring invalid %s=%r", KEY_TTL_HOURS, raw)
        return default
    if not math.isfinite(hours):
        logger.warning("Ignoring non-finite %s=%r", KEY_TTL_HOURS, raw)
        return default
    if hours <= 0:
        logger.warning("Ignoring non-positive %s=%r", KEY_TTL_HOURS, raw)
        return default
    return hours


# ---------------------------------------------------------------------------
# Master key
# ---------------------------------------------------------------------------

class MasterKey(BaseModel):
    """The single active master key and its lifecycle metadata.

    Immutable: rotation builds a new instance instead of editing one.
    """

    passphrase: str = Field(min_length=1, repr=False)
    version: int = Field(default=1, ge=1)
    expires_at: datetime

    _material: bytearray = PrivateAttr(default_factory=bytearray)

    model_config = {"frozen": True}

    @field_validator("expires_at")
    @classmethod
    def ensure_aware(cls, v: datetime) -> datetime:
        """Naive timestamps are taken as UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    def model_post_init(self, __context: Any) -> None:
        self._material = bytearray(normalize_key(self.passphrase))

    @property
    def material(self) -> bytes:
        return bytes(self._material)

    @property
    def expires_iso(self) -> str:
        return self.expires_at.isoformat()

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) > self.expires_at

    def wipe(self) -> None:
        """Zero the in-memory key bytes."""
        wipe(self._material)

    def to_config(self) -> dict[str, Any]:
        return {
            KEY_MATERIAL: self.passphrase,
            KEY_VERSION: self.version,
            KEY_EXPIRY: self.expires_iso,
        }

    @classmethod
    def from_config(
        cls,
        store: ConfigStore,
        ttl_hours: float,
        now: Optional[datetime] = None,
    ) -> tuple[Optional["MasterKey"], bool]:
        """Read the persisted master key.

        Returns:
            ``(key, complete)``. ``key`` is None when no ``keyA`` is
            configured. ``complete`` is False when version or expiry were
            missing or unreadable and have been filled with defaults, so the
            caller should persist the key again.

        Raises:
            ConfigError: If the persisted values fail validation.
        """
        passphrase = store.get_value(KEY_MATERIAL)
        if not passphrase:
            return None, True
        complete = True
        version = store.get_value(KEY_VERSION)
        if version is None:
            version = 1
            complete = False
        expires_at: Any = store.get_value(KEY_EXPIRY)
        if expires_at is not None:
            try:
                expires_at = datetime.fromisoformat(str(expires_at))
            except ValueError:
                logger.warning("Ignoring unreadable %s in config", KEY_EXPIRY)
                expires_at = None
        if expires_at is None:
            expires_at = (now or utcnow()) + timedelta(hours=ttl_hours)
            complete = False
        try:
            key = cls(
                passphrase=str(passphrase),
                version=version,
                expires_at=expires_at,
            )
        except ValidationError as err:
            raise ConfigError(
                f"Invalid master key metadata in {store.path}: "
                f"{err.error_count()} error(s)"
            ) from None
        return key, complete


def generate_passphrase() -> str:
    """Return a random 16-character URL-safe passphrase."""
    return secrets.token_urlsafe(PASSPHRASE_BYTES)


def generate_master_key(
    version: int = 1,
    ttl_hours: float = DEFAULT_TTL_HOURS,
    now: Optional[datetime] = None,
) -> MasterKey:
    """Generate a fresh random master key expiring ``ttl_hours`` from now."""
    return MasterKey(
        passphrase=generate_passphrase(),
        version=version,
        expires_at=(now or utcnow()) + timedelta(hours=ttl_hours),
    )


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

def default_home() -> Path:
    return Path(os.environ.get("LLKEYS_HOME", "~/.llkeys")).expanduser()


class VaultConfig(BaseModel):
    """Validated vault settings."""

    store_path: Path
    config_path: Path
    key_ttl_hours: float = Field(
        default=DEFAULT_TTL_HOURS, gt=0, allow_inf_nan=False,
    )

    @field_validator("store_path", "config_path")
    @classmethod
    def expand_path(cls, v: Path) -> Path:
        return v.expanduser()

    @classmethod
    def for_home(cls, home: os.PathLike, **kwargs) -> "VaultConfig":
        """Settings with both files placed in ``home``."""
        home = Path(home).expanduser()
        return cls(
            store_path=home / "keys.llk",
            config_path=home / "config.json",
            **kwargs,
        )

    @classmethod
    def from_env(cls, home: Optional[os.PathLike] = None) -> "VaultConfig":
        """Create VaultConfig from environment variables.

        Args:
            home: Directory overriding ``LLKEYS_HOME``.

        Returns:
            Populated VaultConfig instance.
        """
        base = Path(home).expanduser() if home else default_home()
        return cls(
            store_path=os.environ.get("LLKEYS_STORE_PATH", base / "keys.llk"),
            config_path=os.environ.get(
                "LLKEYS_CONFIG_PATH", base / "config.json",
            ),
            key_ttl_hours=os.environ.get(
                "LLKEYS_KEY_TTL_HOURS", DEFAULT_TTL_HOURS,
            ),
        )
