"""
packsmith — filesystem utilities

File: src/packsmith/utils/fs.py

Purpose
- Atomic writes for exported archives, proposal records and reports.

Functional requirements
- Atomic writes use temp files in the destination directory and replace in a single step.

Non-functional requirements
- Standard library only and cross-platform behavior where feasible.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from pathlib import Path

PathLike = str | os.PathLike[str]

__all__ = ["atomic_write", "read_bytes"]


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    """
    Atomically write ``data`` to ``path``.

    The write strategy is:
    1. create temp file in the same directory,
    2. write + flush + fsync file data,
    3. replace target via ``os.replace``.
    """

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target_parent = target.parent.resolve(strict=True)

    fd, temp_name = tempfile.mkstemp(
        prefix=f".{target.name}.",
        suffix=".tmp",
        dir=str(target_parent),
    )
    temp_path = Path(temp_name)

    try:
        payload = data if isinstance(data, bytes) else data.encode(encoding)
        with os.fdopen(fd, "wb") as file_handle:
            file_handle.write(payload)
            file_handle.flush()
            os.fsync(file_handle.fileno())

        os.replace(temp_path, target)
        _fsync_directory(target_parent)
    except Exception:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise


def read_bytes(path: PathLike) -> bytes:
    target = Path(path)
    if not target.is_file():
        raise FileNotFoundError(f"no such file: {target!s}")
    return target.read_bytes()


def _fsync_directory(path: Path) -> None:
    """Best-effort directory fsync for metadata durability after ``os.replace``."""

    if os.name == "nt":
        return

    flags = os.O_RDONLY
    if hasattr(os, "O_DIRECTORY"):
        flags |= os.O_DIRECTORY

    try:
        dir_fd = os.open(path, flags)
    except OSError:
        return

    try:
        os.fsync(dir_fd)
    except OSError:
        return
    finally:
        os.close(dir_fd)
