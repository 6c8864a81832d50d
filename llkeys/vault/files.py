"""Whole-file writes that never leave a partially written target behind."""
import os
import tempfile
from pathlib import Path
from typing import Union


def write_temp(path: Union[str, Path], data: bytes) -> Path:
    """Write ``data`` to a new temp file next to ``path`` and fsync it.

    The caller either moves it into place with :func:`commit` or
    removes it with :func:`discard`.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.name}.", suffix=".tmp", dir=path.parent,
    )
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
    except BaseException:
        discard(tmp_name)
        raise
    return Path(tmp_name)


def commit(tmp_path: Union[str, Path], path: Union[str, Path]) -> None:
    os.replace(tmp_path, path)


def discard(tmp_path: Union[str, Path]) -> None:
    try:
        os.unlink(tmp_path)
    except FileNotFoundError:
        pass


def atomic_write(path: Union[str, Path], data: bytes) -> None:
    """Replace ``path`` with ``data`` in one rename."""
    tmp_path = write_temp(path, data)
    try:
        commit(tmp_path, path)
    except BaseException:
        discard(tmp_path)
        raise
