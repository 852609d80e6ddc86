"""
packsmith — patch builder and applier

File: src/packsmith/engine/patch.py

Purpose
- Package a diff into a replayable patch and merge a patch into a base pack.

Functional requirements
- ``build_patch`` is a pure function of its inputs and never consults governance.
- ``apply_patch`` checks every pre-image hash before touching anything; any
  divergence is a ``PatchConflictError`` listing every offending path.
- Text post-images are rebuilt by replaying ``patch_text``; binary post-images
  travel inline. Every post-image must hash to its recorded ``new_sha256``.
- The merged manifest keeps the base manifest's metadata with fresh contents.

Non-functional requirements
- Inputs are never mutated; applying the same patch to the same base always
  yields the same merged identity.
"""

from __future__ import annotations

import base64
from typing import TYPE_CHECKING

import structlog

from packsmith.codec.canonical import compact_json
from packsmith.domain.errors import (
    ConflictDetail,
    HashMismatchError,
    PatchConflictError,
)
from packsmith.domain.models import ChangeOp, FileChange, PackFile, Patch
from packsmith.domain.result import Err, Ok
from packsmith.engine.pack import assemble_pack
from packsmith.engine.text_diff import parse_patch_text, replay_file_patch
from packsmith.utils.hashing import sha256_bytes, sha256_text

if TYPE_CHECKING:
    from packsmith.domain.models import DiffReport, SpecPack
    from packsmith.engine.text_diff import FilePatch

logger = structlog.get_logger(__name__)

__all__ = ["apply_patch", "build_patch", "patch_digest"]


def _post_image(pack_file: PackFile, *, is_text: bool) -> str | None:
    if is_text:
        return None
    return base64.b64encode(pack_file.data).decode("ascii")


def build_patch(
    base: SpecPack,
    proposal: SpecPack,
    diff: DiffReport,
    *,
    summary: str,
    base_project_id: str,
) -> Patch:
    """Turn ``diff`` (computed from ``base`` to ``proposal``) into a ``Patch``."""

    added: list[FileChange] = []
    for path in diff.added:
        new = proposal.files[path]
        added.append(
            FileChange(
                path=path,
                op=ChangeOp.ADD,
                is_text=new.is_text,
                new_sha256=new.sha256,
                post_image_b64=_post_image(new, is_text=new.is_text),
            )
        )

    removed = [
        FileChange(
            path=path,
            op=ChangeOp.REMOVE,
            is_text=base.files[path].is_text,
            old_sha256=base.files[path].sha256,
        )
        for path in diff.removed
    ]

    modified: list[FileChange] = []
    for entry in diff.modified:
        new = proposal.files[entry.path]
        modified.append(
            FileChange(
                path=entry.path,
                op=ChangeOp.MODIFY,
                is_text=entry.is_text,
                old_sha256=entry.old_sha256,
                new_sha256=entry.new_sha256,
                post_image_b64=_post_image(new, is_text=entry.is_text),
            )
        )

    return Patch(
        base_project_id=base_project_id,
        patch_text=diff.full_patch,
        added=tuple(added),
        removed=tuple(removed),
        modified=tuple(modified),
        summary=summary,
    )


def _precondition_conflicts(base: SpecPack, patch: Patch) -> list[ConflictDetail]:
    conflicts: list[ConflictDetail] = []
    for change in (*patch.removed, *patch.modified):
        current = base.get(change.path)
        if current is None:
            conflicts.append(
                ConflictDetail(
                    path=change.path,
                    reason="missing_in_base",
                    expected_sha256=change.old_sha256,
                )
            )
        elif current.sha256 != change.old_sha256:
            conflicts.append(
                ConflictDetail(
                    path=change.path,
                    reason="base_diverged",
                    expected_sha256=change.old_sha256,
                    actual_sha256=current.sha256,
                )
            )
    for change in patch.added:
        current = base.get(change.path)
        if current is not None:
            conflicts.append(
                ConflictDetail(
                    path=change.path,
                    reason="already_exists",
                    actual_sha256=current.sha256,
                )
            )
    return sorted(conflicts, key=lambda item: item.path)


def _reconstruct(
    base: SpecPack,
    change: FileChange,
    sections: dict[str, FilePatch],
) -> bytes:
    post_image = change.post_image()
    if post_image is not None:
        return post_image

    section = sections.get(change.path)
    if section is None:
        raise PatchConflictError(
            f"{change.path}: patch text has no section for this file",
            code="malformed_patch",
            conflicts=(ConflictDetail(path=change.path, reason="missing_section"),),
        )
    current = base.get(change.path)
    old_text = "" if current is None else current.text()
    return replay_file_patch(old_text, section).encode("utf-8")


def apply_patch(
    base: SpecPack,
    patch: Patch,
) -> Ok[SpecPack] | Err[PatchConflictError | HashMismatchError]:
    if patch.base_project_id != base.project_id:
        error = PatchConflictError(
            f"patch targets project {patch.base_project_id!r}, base is {base.project_id!r}",
            code="project_mismatch",
        )
        logger.warning("patch_conflict", **error.to_dict())
        return Err(error)

    conflicts = _precondition_conflicts(base, patch)
    if conflicts:
        error = PatchConflictError(
            f"base has diverged at {len(conflicts)} path(s): "
            + ", ".join(item.path for item in conflicts),
            conflicts=tuple(conflicts),
        )
        logger.warning("patch_conflict", project_id=base.project_id, **error.to_dict())
        return Err(error)

    files: dict[str, PackFile] = dict(base.files)
    try:
        needs_text = any(c.is_text for c in (*patch.added, *patch.modified))
        sections = parse_patch_text(patch.patch_text) if needs_text else {}
        for change in patch.removed:
            del files[change.path]
        for change in (*patch.added, *patch.modified):
            data = _reconstruct(base, change, sections)
            actual = sha256_bytes(data)
            if actual != change.new_sha256:
                error = HashMismatchError(
                    change.path, expected=change.new_sha256 or "", actual=actual
                )
                logger.error("patch_hash_mismatch", project_id=base.project_id, **error.to_dict())
                return Err(error)
            files[change.path] = PackFile(path=change.path, data=data)
    except PatchConflictError as exc:
        logger.warning("patch_conflict", project_id=base.project_id, **exc.to_dict())
        return Err(exc)

    manifest = base.manifest.with_contents(tuple(sorted(files)))
    merged = assemble_pack(manifest, files)
    logger.info(
        "patch_applied",
        project_id=base.project_id,
        base_pack_sha256=base.pack_sha256,
        merged_pack_sha256=merged.pack_sha256,
        **patch.stats(),
    )
    return Ok(merged)


def patch_digest(patch: Patch) -> str:
    """SHA-256 of the patch's operations; independent of its prose summary."""

    return sha256_text(
        compact_json({"schema": patch.schema_id, "structured_changes": patch.structured_changes()})
    )
