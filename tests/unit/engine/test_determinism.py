"""Determinism report: hash inventory, lineage and stable digest."""

from __future__ import annotations

from packsmith.constants import DETERMINISM_REPORT_SCHEMA_ID
from packsmith.domain.models import GovernanceEvent, GovernanceEventKind, GovernanceState
from packsmith.engine.determinism import PackInput, build_determinism_report, report_digest
from packsmith.engine.diff import diff_packs
from packsmith.engine.pack import serialize_pack
from packsmith.engine.patch import build_patch, patch_digest

from .. import SPEL_V2, make_pack, with_changes


def test_report_lists_packs_and_patch_digest() -> None:
    base = make_pack()
    proposal = with_changes(base, upsert={"spec/a.spel": SPEL_V2})
    patch = build_patch(
        base, proposal, diff_packs(base, proposal), summary="s", base_project_id="demo"
    )
    report = build_determinism_report(
        project_id="demo",
        base=PackInput(pack=base),
        proposal=PackInput(pack=proposal),
        patch=patch,
        governance=GovernanceState(project_id="demo"),
    )

    assert report["schema"] == DETERMINISM_REPORT_SCHEMA_ID
    assert report["patch_ops_sha256"] == patch_digest(patch)
    packs = report["packs"]
    assert isinstance(packs, dict)
    assert packs["base"]["pack_sha256"] == base.pack_sha256  # type: ignore[index]
    assert packs["proposal"]["archive_sha256"] == proposal.pack_sha256  # type: ignore[index]
    assert report["checks"] == {"ok": True, "warnings": []}
    assert report["lineage"]["status"] == "unlocked"  # type: ignore[index]


def test_non_canonical_archive_bytes_raise_a_warning() -> None:
    base = make_pack()
    raw = serialize_pack(base, compression_level=0)
    report = build_determinism_report(project_id="demo", base=PackInput(pack=base, raw_archive=raw))
    checks = report["checks"]
    assert isinstance(checks, dict)
    assert checks["ok"] is False
    assert "not canonically encoded" in checks["warnings"][0]  # type: ignore[index]


def test_lock_drift_is_reported() -> None:
    base = make_pack()
    other = with_changes(base, upsert={"x.txt": "x\n"})
    locked = GovernanceState(
        project_id="demo",
        locked=True,
        locked_at_utc="2026-02-01T12:00:00.000Z",
        locked_pack_sha256=other.pack_sha256,
        history=(
            GovernanceEvent(
                at_utc="2026-02-01T12:00:00.000Z",
                event=GovernanceEventKind.LOCK,
                locked_pack_sha256=other.pack_sha256,
            ),
        ),
    )
    report = build_determinism_report(project_id="demo", base=PackInput(pack=base), governance=locked)
    lineage = report["lineage"]
    assert isinstance(lineage, dict)
    assert lineage["status"] == "locked"
    assert lineage["last_locked_pack_sha256"] == other.pack_sha256
    assert any("drift" in warning for warning in report["checks"]["warnings"])  # type: ignore[index]


def test_digest_ignores_generation_time() -> None:
    base = make_pack()
    first = build_determinism_report(project_id="demo", base=PackInput(pack=base))
    second = dict(first)
    second["generated_at_utc"] = "2030-01-01T00:00:00.000Z"
    assert report_digest(first) == report_digest(second)
