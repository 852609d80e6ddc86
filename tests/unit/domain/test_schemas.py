"""Schema variant detection and legacy upgrades."""

from __future__ import annotations

import pytest

from packsmith.constants import MANIFEST_SCHEMA_ID, PROPOSAL_KIND_LEGACY, PROPOSAL_SCHEMA_V1
from packsmith.domain.errors import SchemaError
from packsmith.domain.schemas import (
    SchemaVariant,
    detect_manifest_variant,
    detect_proposal_variant,
    manifest_from_raw,
    proposal_from_raw,
    upgrade_legacy_manifest,
)
from packsmith.governance.proposals import is_applyable


def _current_manifest() -> dict[str, object]:
    return {
        "schema": MANIFEST_SCHEMA_ID,
        "created_at_utc": "1980-01-01T00:00:00.000Z",
        "project_id": "demo",
        "spec_pack_version": "v1",
        "provenance": {"producer_version": "1.0.0", "validator_version": "1.0.0"},
        "contents": ["a.txt"],
    }


def test_current_manifest_is_detected() -> None:
    assert detect_manifest_variant(_current_manifest()) is SchemaVariant.MANIFEST_CURRENT


@pytest.mark.parametrize("drop", ["spec_pack_version", "created_at_utc"])
def test_missing_fields_mark_manifest_legacy(drop: str) -> None:
    raw = _current_manifest()
    del raw[drop]
    assert detect_manifest_variant(raw) is SchemaVariant.MANIFEST_LEGACY


def test_app_version_provenance_upgrades() -> None:
    raw = _current_manifest()
    raw["provenance"] = {"app_version": "0.5.0"}
    upgraded = upgrade_legacy_manifest(raw)
    assert upgraded["provenance"] == {"producer_version": "0.5.0", "validator_version": "unknown"}
    manifest = manifest_from_raw(raw)
    assert manifest.provenance.producer_version == "0.5.0"


def test_upgrade_keeps_existing_values() -> None:
    raw = _current_manifest()
    del raw["spec_pack_version"]
    raw["created_at_utc"] = "2020-05-05T05:05:05.000Z"
    upgraded = upgrade_legacy_manifest(raw)
    assert upgraded["created_at_utc"] == "2020-05-05T05:05:05.000Z"
    assert upgraded["spec_pack_version"] == "v1"


def test_manifest_must_be_object() -> None:
    with pytest.raises(SchemaError):
        manifest_from_raw(["not", "an", "object"])


def test_unknown_proposal_schema() -> None:
    with pytest.raises(SchemaError) as excinfo:
        detect_proposal_variant({"schema": "kindred.proposal.v7"})
    assert excinfo.value.code == "schema_unknown"


def test_v1_proposal_upgrades_to_unapplyable_legacy_record() -> None:
    raw = {
        "schema": PROPOSAL_SCHEMA_V1,
        "id": "proposal_legacy01",
        "created_at_utc": "2024-01-01T00:00:00.000Z",
        "summary": "old style",
        "base_project_id": "demo",
        "patch": "diff --git a/a.txt b/a.txt\n",
        "stats": {"added": 0, "removed": 0, "modified": 1},
    }
    proposal = proposal_from_raw(raw)
    assert proposal.kind == PROPOSAL_KIND_LEGACY
    assert proposal.is_legacy
    assert proposal.patch.is_empty
    assert proposal.patch.patch_text == raw["patch"]
    assert proposal.evidence.base_pack_sha256 is None
    assert not is_applyable(proposal, project_id="demo", current_base_sha256="a" * 64)


def test_v1_proposal_without_patch_text_is_rejected() -> None:
    with pytest.raises(SchemaError, match="legacy proposals"):
        proposal_from_raw({"schema": PROPOSAL_SCHEMA_V1, "id": "p", "patch": 3})
