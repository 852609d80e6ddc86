"""Async wrappers that offload pack transforms to worker threads."""

from __future__ import annotations

from typing import TYPE_CHECKING

from packsmith.constants import DEFAULT_DIFF_CONTEXT_LINES
from packsmith.engine.diff import diff_packs
from packsmith.engine.pack import parse_pack
from packsmith.engine.patch import apply_patch
from packsmith.utils.concurrency import map_in_workers, run_in_worker

if TYPE_CHECKING:
    from collections.abc import Iterable

    from packsmith.domain.errors import (
        ArchiveError,
        HashMismatchError,
        PatchConflictError,
        SchemaError,
    )
    from packsmith.domain.models import DiffReport, Patch, SpecPack
    from packsmith.domain.result import Err, Ok


async def aparse_pack(data: bytes) -> Ok[SpecPack] | Err[ArchiveError | SchemaError]:
    return await run_in_worker(parse_pack, data)


async def aparse_packs(
    archives: Iterable[bytes],
    *,
    max_concurrency: int = 4,
) -> list[Ok[SpecPack] | Err[ArchiveError | SchemaError]]:
    return await map_in_workers(parse_pack, archives, max_concurrency=max_concurrency)


async def adiff_packs(
    base: SpecPack,
    proposal: SpecPack,
    *,
    context_lines: int = DEFAULT_DIFF_CONTEXT_LINES,
) -> DiffReport:
    return await run_in_worker(diff_packs, base, proposal, context_lines=context_lines)


async def aapply_patch(
    base: SpecPack,
    patch: Patch,
) -> Ok[SpecPack] | Err[PatchConflictError | HashMismatchError]:
    return await run_in_worker(apply_patch, base, patch)


__all__ = ["aapply_patch", "adiff_packs", "aparse_pack", "aparse_packs"]
