"""Crash-safe writes for run folders: whole-file replace and line appends."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

PathLike = str | os.PathLike[str]


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    """Replace ``path`` with ``data`` so readers see the old or the new file, never a mix.

    The parent directory must exist; a missing one raises ``FileNotFoundError``.
    """
    target = Path(path)
    payload = data.encode(encoding) if isinstance(data, str) else data
    with tempfile.NamedTemporaryFile(
        "wb", dir=target.parent, prefix=f".{target.name}.", suffix=".tmp", delete=False
    ) as handle:
        scratch = Path(handle.name)
        try:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        except BaseException:
            handle.close()
            scratch.unlink(missing_ok=True)
            raise
    try:
        os.replace(scratch, target)
    except OSError:
        scratch.unlink(missing_ok=True)
        raise


def append_line(path: PathLike, line: str, *, encoding: str = "utf-8") -> None:
    """Append one newline-terminated record."""
    if "\n" in line or "\r" in line:
        raise ValueError("a record must fit on one line")
    with open(path, "a", encoding=encoding) as handle:
        handle.write(f"{line}\n")


def ensure_dir(path: PathLike) -> Path:
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


__all__ = ["PathLike", "append_line", "atomic_write", "ensure_dir"]
