"""
packsmith — pack model

File: src/packsmith/engine/pack.py

Purpose
- Build, serialize and parse spec packs: a manifest plus content files held in
  a deterministic archive whose SHA-256 is the pack identity.

Functional requirements
- Construction order and wall-clock time never influence ``pack_sha256``.
- ``parse_pack`` requires the manifest, validates it, and rejects any mismatch
  between ``contents`` and the archive's content paths.
- A parsed pack's identity is the hash of its canonical re-encoding, so
  incidental layout differences in the input bytes collapse to one identity.

Non-functional requirements
- Integrity failures (corrupt archive, schema errors) are logged at error level
  with full detail and returned, never raised.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import structlog

from packsmith.codec.archive import decode_archive, encode_archive
from packsmith.codec.canonical import canonical_bytes
from packsmith.constants import (
    DEFAULT_COMPRESSION_LEVEL,
    DEFAULT_PACK_VERSION,
    DETERMINISTIC_EPOCH_UTC,
    MANIFEST_PATH,
)
from packsmith.domain.errors import ArchiveError, SchemaError
from packsmith.domain.models import PackFile, PackManifest, Provenance, SpecPack
from packsmith.domain.result import Err, Ok
from packsmith.domain.schemas import manifest_from_raw

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = structlog.get_logger(__name__)

__all__ = [
    "assemble_pack",
    "build_pack",
    "describe_pack",
    "pack_file_map",
    "parse_pack",
    "serialize_pack",
    "try_build_pack",
]


def assemble_pack(manifest: PackManifest, files: Mapping[str, PackFile]) -> SpecPack:
    """Encode ``manifest`` + ``files`` canonically and return the resulting pack."""

    entries = {path: pack_file.data for path, pack_file in files.items()}
    entries[MANIFEST_PATH] = canonical_bytes(manifest.to_dict())
    archive = encode_archive(entries, compression_level=DEFAULT_COMPRESSION_LEVEL)
    return SpecPack(manifest=manifest, files=dict(files), archive=archive)


def build_pack(
    files: Mapping[str, bytes],
    *,
    project_id: str,
    created_at_utc: str = DETERMINISTIC_EPOCH_UTC,
    pack_version: str = DEFAULT_PACK_VERSION,
    provenance: Provenance | None = None,
) -> SpecPack:
    """
    Build a pack from a ``{path: bytes}`` mapping in any insertion order.

    A ``spec_pack_manifest.json`` key in ``files`` is ignored; the manifest is
    always regenerated. Invalid paths or metadata raise ``SchemaError``.
    """

    pack_files = {
        path: PackFile(path=path, data=data)
        for path, data in sorted(files.items(), key=lambda item: item[0])
        if path != MANIFEST_PATH
    }
    manifest = PackManifest(
        project_id=project_id,
        contents=tuple(pack_files),
        created_at_utc=created_at_utc,
        pack_version=pack_version,
        provenance=provenance if provenance is not None else Provenance(),
    )
    return assemble_pack(manifest, pack_files)


def try_build_pack(
    files: Mapping[str, bytes],
    *,
    project_id: str,
    created_at_utc: str = DETERMINISTIC_EPOCH_UTC,
    pack_version: str = DEFAULT_PACK_VERSION,
    provenance: Provenance | None = None,
) -> Ok[SpecPack] | Err[SchemaError]:
    try:
        return Ok(
            build_pack(
                files,
                project_id=project_id,
                created_at_utc=created_at_utc,
                pack_version=pack_version,
                provenance=provenance,
            )
        )
    except SchemaError as exc:
        return Err(exc)


def serialize_pack(pack: SpecPack, *, compression_level: int | None = None) -> bytes:
    """
    Return archive bytes for ``pack``.

    The canonical encoding (the one ``pack_sha256`` covers) is returned unless a
    different ``compression_level`` is requested for export.
    """

    if compression_level is None or compression_level == DEFAULT_COMPRESSION_LEVEL:
        return pack.archive
    entries = pack.file_map()
    entries[MANIFEST_PATH] = canonical_bytes(pack.manifest.to_dict())
    return encode_archive(entries, compression_level=compression_level)


def parse_pack(data: bytes) -> Ok[SpecPack] | Err[ArchiveError | SchemaError]:
    decoded = decode_archive(data)
    if isinstance(decoded, Err):
        logger.error("pack_rejected", **decoded.error.to_dict())
        return decoded
    entries = decoded.value

    result = _parse_entries(entries)
    if isinstance(result, Err):
        logger.error("pack_rejected", **result.error.to_dict())
        return result

    pack = result.value
    logger.debug(
        "pack_parsed",
        project_id=pack.project_id,
        pack_sha256=pack.pack_sha256,
        files=len(pack.files),
    )
    return result


def _parse_entries(entries: Mapping[str, bytes]) -> Ok[SpecPack] | Err[SchemaError]:
    raw_manifest = entries.get(MANIFEST_PATH)
    if raw_manifest is None:
        return Err(SchemaError(f"missing {MANIFEST_PATH}", code="manifest_missing"))

    try:
        manifest_json = json.loads(raw_manifest.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError, RecursionError) as exc:
        return Err(SchemaError(f"manifest JSON invalid: {exc}", code="manifest_invalid"))

    try:
        manifest = manifest_from_raw(manifest_json)
    except SchemaError as exc:
        return Err(exc)

    content_paths = {path for path in entries if path != MANIFEST_PATH}
    listed = set(manifest.contents)
    missing = tuple(sorted(listed - content_paths))
    extra = tuple(sorted(content_paths - listed))
    if missing or extra:
        return Err(
            SchemaError(
                f"manifest contents mismatch: missing={list(missing)} extra={list(extra)}",
                code="manifest_mismatch",
                missing=missing,
                extra=extra,
            )
        )

    try:
        files = {path: PackFile(path=path, data=entries[path]) for path in manifest.contents}
        return Ok(assemble_pack(manifest, files))
    except SchemaError as exc:
        return Err(exc)


def pack_file_map(pack: SpecPack) -> dict[str, bytes]:
    return pack.file_map()


def describe_pack(pack: SpecPack) -> str:
    return f"project={pack.project_id} files={len(pack.files)}"
