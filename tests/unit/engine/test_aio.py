"""Async wrappers delegate to the synchronous engine on worker threads."""

from __future__ import annotations

import pytest

from packsmith.domain.result import Err, Ok
from packsmith.engine.aio import aapply_patch, adiff_packs, aparse_pack, aparse_packs
from packsmith.engine.patch import build_patch

from .. import SPEL_V2, make_pack, with_changes


@pytest.mark.asyncio
async def test_aparse_pack_matches_sync_result() -> None:
    pack = make_pack()
    parsed = await aparse_pack(pack.archive)
    assert isinstance(parsed, Ok)
    assert parsed.value == pack


@pytest.mark.asyncio
async def test_aparse_packs_keeps_input_order() -> None:
    first = make_pack()
    second = with_changes(first, upsert={"x.txt": "x\n"})
    results = await aparse_packs([second.archive, b"junk", first.archive], max_concurrency=2)
    assert isinstance(results[0], Ok) and results[0].value == second
    assert isinstance(results[1], Err)
    assert isinstance(results[2], Ok) and results[2].value == first


@pytest.mark.asyncio
async def test_adiff_then_aapply_round_trip() -> None:
    base = make_pack()
    proposal = with_changes(base, upsert={"spec/a.spel": SPEL_V2})
    diff = await adiff_packs(base, proposal, context_lines=1)
    patch = build_patch(base, proposal, diff, summary="s", base_project_id=base.project_id)
    merged = await aapply_patch(base, patch)
    assert isinstance(merged, Ok)
    assert merged.value == proposal
