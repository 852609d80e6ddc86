"""
packsmith — determinism report

File: src/packsmith/engine/determinism.py

Purpose
- Summarize the hashes that prove a pack/patch pair is reproducible: archive and
  pack identities, per-file digests, the patch operations digest, and the
  project's lock lineage.

Functional requirements
- ``checks.ok`` is true only when no warning was raised.
- ``report_digest`` ignores ``generated_at_utc`` so two runs over the same
  inputs hash identically.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from packsmith import __version__
from packsmith.codec.canonical import JSONValue, compact_json
from packsmith.constants import (
    DETERMINISM_REPORT_SCHEMA_ID,
    GOVERNANCE_HISTORY_REPORT_LIMIT,
    VALIDATOR_VERSION,
)
from packsmith.domain.models import utc_now_iso
from packsmith.engine.patch import patch_digest
from packsmith.utils.hashing import sha256_bytes, sha256_text

if TYPE_CHECKING:
    from packsmith.domain.models import GovernanceState, Patch, SpecPack


@dataclass(frozen=True, slots=True)
class PackInput:
    """A pack plus, optionally, the raw bytes it was parsed from."""

    pack: SpecPack
    raw_archive: bytes | None = None


def _pack_ref(label: str, item: PackInput, warnings: list[str]) -> dict[str, JSONValue]:
    raw = item.raw_archive if item.raw_archive is not None else item.pack.archive
    archive_sha256 = sha256_bytes(raw)
    if archive_sha256 != item.pack.pack_sha256:
        warnings.append(
            f"{label} archive bytes are not canonically encoded; "
            "identity uses the canonical re-encoding."
        )
    return {
        "label": label,
        "archive_sha256": archive_sha256,
        "pack_sha256": item.pack.pack_sha256,
        "files": [
            {"path": pack_file.path, "sha256": pack_file.sha256, "size": pack_file.size}
            for pack_file in item.pack.files.values()
        ],
    }


def _lineage(
    governance: GovernanceState,
    base: PackInput | None,
    warnings: list[str],
) -> dict[str, JSONValue]:
    events = governance.history[-GOVERNANCE_HISTORY_REPORT_LIMIT:]
    last_locked = next(
        (event.locked_pack_sha256 for event in reversed(governance.history) if event.locked_pack_sha256),
        None,
    )
    if governance.locked:
        if base is None:
            warnings.append("Project is locked, but no base pack is available to compare.")
        elif base.pack.pack_sha256 != governance.locked_pack_sha256:
            warnings.append(
                "Locked pack hash drift: the base pack does not match the locked snapshot."
            )
    return {
        "status": "locked" if governance.locked else "unlocked",
        "last_locked_pack_sha256": last_locked,
        "events": [event.to_dict() for event in events],
    }


def build_determinism_report(
    *,
    project_id: str | None = None,
    base: PackInput | None = None,
    proposal: PackInput | None = None,
    patch: Patch | None = None,
    governance: GovernanceState | None = None,
) -> dict[str, JSONValue]:
    warnings: list[str] = []
    packs: dict[str, JSONValue] = {}
    if base is not None:
        packs["base"] = _pack_ref("Base", base, warnings)
    if proposal is not None:
        packs["proposal"] = _pack_ref("Proposal", proposal, warnings)

    report: dict[str, JSONValue] = {
        "schema": DETERMINISM_REPORT_SCHEMA_ID,
        "generated_at_utc": utc_now_iso(),
        "producer_version": __version__,
        "validator_version": VALIDATOR_VERSION,
        "project_id": project_id,
        "packs": packs,
        "patch_ops_sha256": None if patch is None else patch_digest(patch),
        "lineage": None if governance is None else _lineage(governance, base, warnings),
    }
    if patch is not None and base is not None and patch.base_project_id != base.pack.project_id:
        warnings.append("Patch targets a different project than the base pack.")

    report["checks"] = {"ok": not warnings, "warnings": list(warnings)}
    return report


def report_digest(report: dict[str, JSONValue]) -> str:
    stable = dict(report)
    stable["generated_at_utc"] = ""
    return sha256_text(compact_json(stable))


__all__ = ["PackInput", "build_determinism_report", "report_digest"]
