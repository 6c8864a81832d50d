"""
Secret Table — in-memory name → ciphertext mapping and its binary record.

Decrypted payload layout (little-endian)::

    <str "llk"> <int32 format version> <int32 count>
    count × (<str name> <str ciphertext>)

where ``<str>`` is an unsigned LEB128 byte count followed by UTF-8 bytes.
The whole payload is then encrypted end-to-end before it touches disk.
"""
import struct
from typing import Optional
from collections.abc import Iterator, Mapping, MutableMapping

from .exceptions import MalformedStoreFile

MAGIC = "llk"
FORMAT_VERSION = 1

_INT32 = struct.Struct("<i")


# ---------------------------------------------------------------------------
# Primitive readers / writers
# ---------------------------------------------------------------------------

def _write_varint(out: bytearray, value: int) -> None:
    while value >= 0x80:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)


def _write_str(out: bytearray, value: str) -> None:
    data = value.encode("utf-8")
    _write_varint(out, len(data))
    out += data


class _Reader:
    """Cursor over a decrypted payload."""

    def __init__(self, data: bytes):
        self._data = data
        self._pos = 0

    def _take(self, size: int) -> bytes:
        end = self._pos + size
        if end > len(self._data):
            raise MalformedStoreFile(
                f"Unexpected end of store payload at offset {self._pos}"
            )
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def varint(self) -> int:
        result = 0
        shift = 0
        while True:
            if shift > 28:
                raise MalformedStoreFile("Length prefix is too long")
            byte = self._take(1)[0]
            result |= (byte & 0x7F) << shift
            if not byte & 0x80:
                return result
            shift += 7

    @property
    def at_end(self) -> bool:
        return self._pos == len(self._data)

    def int32(self) -> int:
        return _INT32.unpack(self._take(_INT32.size))[0]

    def string(self) -> str:
        size = self.varint()
        try:
            return self._take(size).decode("utf-8")
        except UnicodeDecodeError as err:
            raise MalformedStoreFile("String is not valid UTF-8") from err


# ---------------------------------------------------------------------------
# SecretTable
# ---------------------------------------------------------------------------

class SecretTable(MutableMapping[str, str]):
    """Dict-like table of secret name → base64 ciphertext.

    Tracks whether it changed since it was loaded or last saved, so the
    store only rewrites the file after a real mutation.
    """

    def __init__(
        self,
        data: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._data: dict[str, str] = dict(data) if data else {}
        self._changed = False

    def __repr__(self) -> str:
        # names only: values are ciphertext
        return f'<SecretTable [changed:{self._changed}] names={sorted(self._data)!r}>'

    @property
    def is_changed(self) -> bool:
        return self._changed

    @is_changed.setter
    def is_changed(self, value: bool) -> None:
        self._changed = value

    def copy(self) -> "SecretTable":
        return SecretTable(self._data)

    # --- Magic Methods ---

    def __len__(self) -> int:
        return len(self._data)

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __getitem__(self, key: str) -> str:
        return self._data[key]

    def __setitem__(self, key: str, value: str) -> None:
        self._data[key] = value
        self._changed = True

    def __delitem__(self, key: str) -> None:
        del self._data[key]
        self._changed = True

    # --- Serialization ---

    def encode(self) -> bytes:
        """Serialize the table into the versioned binary record."""
        out = bytearray()
        _write_str(out, MAGIC)
        out += _INT32.pack(FORMAT_VERSION)
        out += _INT32.pack(len(self._data))
        for name, ciphertext in self._data.items():
            _write_str(out, name)
            _write_str(out, ciphertext)
        return bytes(out)

    @classmethod
    def decode(cls, payload: bytes) -> "SecretTable":
        """Parse a decrypted payload.

        Raises:
            MalformedStoreFile: Wrong magic tag, unsupported format version,
                negative count, truncated data or trailing bytes.
        """
        reader = _Reader(payload)
        magic = reader.string()
        if magic != MAGIC:
            raise MalformedStoreFile(f"Bad magic tag {magic!r}")
        version = reader.int32()
        if version != FORMAT_VERSION:
            raise MalformedStoreFile(
                f"Unsupported store format version {version}"
            )
        count = reader.int32()
        if count < 0:
            raise MalformedStoreFile(f"Negative entry count {count}")
        entries: dict[str, str] = {}
        for _ in range(count):
            name = reader.string()
            entries[name] = reader.string()
        if not reader.at_end:
            raise MalformedStoreFile("Trailing bytes after last entry")
        return cls(entries)
