"""
packsmith — hashing utilities

File: src/packsmith/utils/hashing.py

Purpose
- Provide deterministic SHA-256 helpers for bytes, text, and files.
- Validate pack-relative paths and snapshot directories into path→bytes maps.

Functional requirements
- Digests are 64-char lowercase hex; truncation is for display only.
- Pack paths are relative POSIX strings with no empty, ``.`` or ``..`` segments.

Non-functional requirements
- Standard library only; behavior is cross-platform deterministic.
"""

from __future__ import annotations

import hashlib
import os
import stat
import string
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from packsmith.constants import SHORT_HASH_LENGTH

if TYPE_CHECKING:
    from collections.abc import Mapping

PathLike = str | os.PathLike[str]

_SHA256_HEX_LENGTH = 64
_FILE_READ_CHUNK_BYTES = 1024 * 1024
_LOWER_HEX_DIGITS = frozenset(string.digits + "abcdef")
_FORBIDDEN_PATH_CHARS = frozenset({"\\", "\x00", "\n", "\r"})

__all__ = [
    "hash_file_map",
    "is_sha256_hex",
    "read_directory_files",
    "sha256_bytes",
    "sha256_file",
    "sha256_text",
    "short_hash",
    "validate_pack_path",
]


def sha256_bytes(data: bytes) -> str:
    """Return SHA-256 hex digest for raw bytes."""

    return hashlib.sha256(data).hexdigest()


def sha256_text(text: str, *, encoding: str = "utf-8") -> str:
    """Return SHA-256 hex digest for text encoded with ``encoding``."""

    return sha256_bytes(text.encode(encoding))


def sha256_file(path: PathLike, *, chunk_size: int = _FILE_READ_CHUNK_BYTES) -> str:
    """Return SHA-256 hex digest for a file read in chunks."""

    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")
    digest = hashlib.sha256()
    with Path(path).open("rb") as file_handle:
        while True:
            chunk = file_handle.read(chunk_size)
            if not chunk:
                break
            digest.update(chunk)
    return digest.hexdigest()


def short_hash(digest: str, length: int = SHORT_HASH_LENGTH) -> str:
    """Truncate a digest for display. Never use the result as an identity."""

    if length <= 0:
        raise ValueError("length must be > 0")
    return digest[:length]


def is_sha256_hex(value: object) -> bool:
    return (
        isinstance(value, str)
        and len(value) == _SHA256_HEX_LENGTH
        and set(value).issubset(_LOWER_HEX_DIGITS)
    )


def validate_pack_path(path: str) -> str:
    """Return ``path`` unchanged if it is a safe relative POSIX path, else raise ``ValueError``."""

    if not isinstance(path, str) or not path:
        raise ValueError("pack path cannot be empty")
    if any(char in _FORBIDDEN_PATH_CHARS for char in path):
        raise ValueError(f"pack path contains a forbidden character: {path!r}")
    posix_path = PurePosixPath(path)
    if posix_path.is_absolute():
        raise ValueError(f"pack path must be relative: {path!r}")
    if any(part in {"", ".", ".."} for part in path.split("/")):
        raise ValueError(f"pack path is not safe: {path!r}")
    return path


def hash_file_map(files: Mapping[str, bytes]) -> dict[str, str]:
    """Return ``{path: sha256}`` sorted by path."""

    return {path: sha256_bytes(files[path]) for path in sorted(files)}


def read_directory_files(directory: PathLike) -> dict[str, bytes]:
    """
    Snapshot regular files under ``directory`` as ``{relative posix path: bytes}``.

    Symlinks are not followed and non-regular files are skipped. The mapping is
    sorted by path so callers get the same iteration order on every platform.
    """

    root = Path(directory).resolve(strict=True)
    if not root.is_dir():
        raise NotADirectoryError(f"{root!s} is not a directory")

    files: dict[str, bytes] = {}
    for current_dir, dir_names, file_names in os.walk(root, topdown=True, followlinks=False):
        dir_names.sort()
        file_names.sort()
        current = Path(current_dir)
        for file_name in file_names:
            file_path = current / file_name
            try:
                mode = file_path.lstat().st_mode
            except FileNotFoundError:
                # Vanished during traversal; callers rerun for a stable snapshot.
                continue
            if not stat.S_ISREG(mode):
                continue
            rel_path = validate_pack_path(file_path.relative_to(root).as_posix())
            files[rel_path] = file_path.read_bytes()

    return dict(sorted(files.items(), key=lambda item: item[0]))
