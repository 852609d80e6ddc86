"""
packsmith — schema variants and upgrades

File: src/packsmith/domain/schemas.py

Purpose
- Classify raw manifest and proposal payloads into a closed set of variants and
  upgrade every legacy variant to the current record shape in one explicit step.

Functional requirements
- Manifest (``kindred.spec_pack_manifest.v1``): early producers omitted
  ``spec_pack_version`` and recorded ``provenance.app_version``; both upgrade to
  the current fields. A manifest listing itself in ``contents`` is normalized.
- Proposal: ``kindred.proposal.v1`` carried a bare patch string plus stats and
  upgrades to a v2 record of kind ``legacy_text_patch`` with no structured
  changes and no evidence hashes. Such proposals can be reviewed, never applied.
- Unknown schema tags raise ``SchemaError(code="schema_unknown")``.

Non-functional requirements
- Pure functions over plain mappings; no I/O.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum

from packsmith.constants import (
    DEFAULT_NEXT_STEP_HREF,
    DEFAULT_NEXT_STEP_LABEL,
    DEFAULT_PACK_VERSION,
    DETERMINISTIC_EPOCH_UTC,
    MANIFEST_PATH,
    MANIFEST_SCHEMA_ID,
    PATCH_SCHEMA_ID,
    PROPOSAL_KIND_LEGACY,
    PROPOSAL_SCHEMA_V1,
    PROPOSAL_SCHEMA_V2,
)
from packsmith.domain.errors import SchemaError
from packsmith.domain.models import PackManifest, Proposal

_UNKNOWN_VERSION = "unknown"


class SchemaVariant(StrEnum):
    MANIFEST_LEGACY = "manifest.v1.legacy"
    MANIFEST_CURRENT = "manifest.v1"
    PROPOSAL_V1 = "proposal.v1"
    PROPOSAL_V2 = "proposal.v2"


def detect_manifest_variant(raw: Mapping[str, object]) -> SchemaVariant:
    schema = raw.get("schema")
    if schema != MANIFEST_SCHEMA_ID:
        raise SchemaError(f"unknown manifest schema {schema!r}", code="schema_unknown")
    provenance = raw.get("provenance")
    if (
        "spec_pack_version" not in raw
        or "created_at_utc" not in raw
        or not isinstance(provenance, Mapping)
        or "app_version" in provenance
        or "producer_version" not in provenance
        or "validator_version" not in provenance
    ):
        return SchemaVariant.MANIFEST_LEGACY
    return SchemaVariant.MANIFEST_CURRENT


def detect_proposal_variant(raw: Mapping[str, object]) -> SchemaVariant:
    schema = raw.get("schema")
    if schema == PROPOSAL_SCHEMA_V2:
        return SchemaVariant.PROPOSAL_V2
    if schema == PROPOSAL_SCHEMA_V1:
        return SchemaVariant.PROPOSAL_V1
    raise SchemaError(f"unknown proposal schema {schema!r}", code="schema_unknown")


def upgrade_legacy_manifest(raw: Mapping[str, object]) -> dict[str, object]:
    """Fill fields early producers left out; existing values are kept."""

    upgraded = dict(raw)
    upgraded.setdefault("created_at_utc", DETERMINISTIC_EPOCH_UTC)
    upgraded.setdefault("spec_pack_version", DEFAULT_PACK_VERSION)

    provenance_raw = raw.get("provenance")
    provenance = dict(provenance_raw) if isinstance(provenance_raw, Mapping) else {}
    app_version = provenance.pop("app_version", None)
    provenance.setdefault("producer_version", app_version or _UNKNOWN_VERSION)
    provenance.setdefault("validator_version", _UNKNOWN_VERSION)
    upgraded["provenance"] = provenance

    contents = raw.get("contents")
    if isinstance(contents, list):
        upgraded["contents"] = [path for path in contents if path != MANIFEST_PATH]
    return upgraded


def manifest_from_raw(raw: object) -> PackManifest:
    if not isinstance(raw, Mapping):
        raise SchemaError("manifest must be a JSON object")
    variant = detect_manifest_variant(raw)
    if variant is SchemaVariant.MANIFEST_LEGACY:
        raw = upgrade_legacy_manifest(raw)
    return PackManifest.from_dict(raw)


def upgrade_proposal_v1(raw: Mapping[str, object]) -> dict[str, object]:
    """Wrap a v1 text-only proposal in the v2 record shape."""

    patch_text = raw.get("patch")
    if not isinstance(patch_text, str):
        raise SchemaError("Proposal.patch: legacy proposals carry the patch as a string")
    base_project_id = raw.get("base_project_id")
    if not isinstance(base_project_id, str) or not base_project_id:
        base_project_id = "unknown"
    summary = raw.get("summary", "")
    return {
        "schema": PROPOSAL_SCHEMA_V2,
        "id": raw.get("id"),
        "kind": PROPOSAL_KIND_LEGACY,
        "created_at_utc": raw.get("created_at_utc"),
        "summary": summary,
        "rationale": [],
        "patch": {
            "schema": PATCH_SCHEMA_ID,
            "base_project_id": base_project_id,
            "patch_text": patch_text,
            "structured_changes": {"added": [], "removed": [], "modified": []},
            "summary": summary,
        },
        "evidence": {
            "base_pack_sha256": None,
            "proposal_pack_sha256": None,
            "spel_file_sha256": None,
        },
        "apply": {
            "next_step_href": DEFAULT_NEXT_STEP_HREF,
            "next_step_label": DEFAULT_NEXT_STEP_LABEL,
        },
    }


def proposal_from_raw(raw: object) -> Proposal:
    if not isinstance(raw, Mapping):
        raise SchemaError("proposal must be a JSON object", code="schema_unknown")
    if detect_proposal_variant(raw) is SchemaVariant.PROPOSAL_V1:
        raw = upgrade_proposal_v1(raw)
    return Proposal.from_dict(raw)


__all__ = [
    "SchemaVariant",
    "detect_manifest_variant",
    "detect_proposal_variant",
    "manifest_from_raw",
    "proposal_from_raw",
    "upgrade_legacy_manifest",
    "upgrade_proposal_v1",
]
