"""
packsmith — deterministic archive codec

File: src/packsmith/codec/archive.py

Purpose
- Encode a path→bytes mapping into a ZIP container whose bytes depend only on
  the sorted paths and file contents, and decode such containers safely.

Functional requirements
- Entries are written in ascending path order with a fixed 1980-01-01 timestamp,
  fixed permissions, fixed creator system, and a fixed DEFLATE level.
- Decoding rejects empty, truncated or garbled input, CRC failures, duplicate
  entries and unsafe entry names with ``ArchiveError``.
- ``decode_archive(encode_archive(files))`` returns ``files`` unchanged.

Non-functional requirements
- Works entirely in memory; callers own any file I/O.
"""

from __future__ import annotations

import io
import zipfile
import zlib
from typing import TYPE_CHECKING, Final

from packsmith.constants import DEFAULT_COMPRESSION_LEVEL, ZIP_FIXED_TIMESTAMP
from packsmith.domain.errors import ArchiveError
from packsmith.domain.result import Err, Ok
from packsmith.utils.hashing import validate_pack_path

if TYPE_CHECKING:
    from collections.abc import Mapping

_FILE_MODE: Final[int] = 0o100644
_CREATE_SYSTEM_UNIX: Final[int] = 3

# zlib.error and EOFError surface for truncated deflate streams; RuntimeError and
# NotImplementedError for encrypted or unsupported entries; ValueError for a
# central directory offset that points before the start of the buffer.
_DECODE_FAILURES: Final[tuple[type[BaseException], ...]] = (
    zipfile.BadZipFile,
    zlib.error,
    EOFError,
    RuntimeError,
    NotImplementedError,
    OSError,
    ValueError,
)

__all__ = ["decode_archive", "encode_archive"]


def encode_archive(
    files: Mapping[str, bytes],
    *,
    compression_level: int = DEFAULT_COMPRESSION_LEVEL,
) -> bytes:
    """Return deterministic ZIP bytes for ``files``."""

    if not 0 <= compression_level <= 9:
        raise ValueError("compression_level must be between 0 and 9")

    buffer = io.BytesIO()
    with zipfile.ZipFile(
        buffer,
        mode="w",
        compression=zipfile.ZIP_DEFLATED,
        compresslevel=compression_level,
        allowZip64=True,
    ) as archive:
        for path in sorted(files):
            data = files[path]
            if not isinstance(data, (bytes, bytearray)):
                raise TypeError(f"archive entry {path!r} must be bytes, got {type(data).__name__}")

            zip_info = zipfile.ZipInfo(filename=validate_pack_path(path))
            zip_info.date_time = ZIP_FIXED_TIMESTAMP
            zip_info.compress_type = zipfile.ZIP_DEFLATED
            zip_info.external_attr = (_FILE_MODE & 0xFFFF) << 16
            zip_info.create_system = _CREATE_SYSTEM_UNIX

            archive.writestr(zip_info, bytes(data), compresslevel=compression_level)

    return buffer.getvalue()


def decode_archive(data: bytes) -> Ok[dict[str, bytes]] | Err[ArchiveError]:
    """Return ``{path: bytes}`` sorted by path, or the reason the container is unreadable."""

    if not data:
        return Err(ArchiveError("archive is empty", code="empty"))

    files: dict[str, bytes] = {}
    try:
        with zipfile.ZipFile(io.BytesIO(data), mode="r") as archive:
            for info in archive.infolist():
                if info.is_dir():
                    continue
                name = info.filename
                try:
                    validate_pack_path(name)
                except ValueError as exc:
                    return Err(ArchiveError(str(exc), code="unsafe_path", entry=name))
                if name in files:
                    return Err(ArchiveError(f"duplicate archive entry {name!r}", entry=name))
                # ZipFile.read verifies the local header name and the CRC-32.
                files[name] = archive.read(info)
    except _DECODE_FAILURES as exc:
        return Err(ArchiveError(f"archive is corrupt: {exc}"))

    return Ok(dict(sorted(files.items(), key=lambda item: item[0])))
