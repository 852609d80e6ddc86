"""Stable constants shared across the pack engine, governance and CLI."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Wire schema tags. These strings are persisted inside archives and proposal
# records produced by earlier releases and must not change.
MANIFEST_SCHEMA_ID: Final[str] = "kindred.spec_pack_manifest.v1"
PATCH_SCHEMA_ID: Final[str] = "kindred.spec_pack_patch.v1"
PROPOSAL_SCHEMA_V1: Final[str] = "kindred.proposal.v1"
PROPOSAL_SCHEMA_V2: Final[str] = "kindred.proposal.v2"
DETERMINISM_REPORT_SCHEMA_ID: Final[str] = "kindred.determinism_report.v1"

MANIFEST_PATH: Final[str] = "spec_pack_manifest.json"
DEFAULT_PACK_VERSION: Final[str] = "v1"

# Producer/validator versions recorded in manifest provenance.
PRODUCER_VERSION: Final[str] = "1.1.1"
VALIDATOR_VERSION: Final[str] = "1.1.1"

# Every archive entry carries this timestamp; it is the earliest ZIP can encode.
DETERMINISTIC_EPOCH_UTC: Final[str] = "1980-01-01T00:00:00.000Z"
ZIP_FIXED_TIMESTAMP: Final[tuple[int, int, int, int, int, int]] = (1980, 1, 1, 0, 0, 0)
DEFAULT_COMPRESSION_LEVEL: Final[int] = 6

DEFAULT_DIFF_CONTEXT_LINES: Final[int] = 3
SHORT_HASH_LENGTH: Final[int] = 12

PROPOSAL_ID_PREFIX: Final[str] = "proposal_"
PROPOSAL_KIND_PATCH: Final[str] = "spec_pack_patch"
PROPOSAL_KIND_LEGACY: Final[str] = "legacy_text_patch"
DEFAULT_NEXT_STEP_HREF: Final[str] = "/director/proposals"
DEFAULT_NEXT_STEP_LABEL: Final[str] = "Review proposals"

GOVERNANCE_HISTORY_REPORT_LIMIT: Final[int] = 20

STATE_DB_SCHEMA_VERSION: Final[int] = 1
CONFIG_SCHEMA_VERSION: Final[int] = 1
STATE_DIR: Final[PurePosixPath] = PurePosixPath("state")
DEFAULT_STATE_DB_PATH: Final[PurePosixPath] = STATE_DIR / "packsmith.sqlite3"

__all__ = [
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_COMPRESSION_LEVEL",
    "DEFAULT_DIFF_CONTEXT_LINES",
    "DEFAULT_NEXT_STEP_HREF",
    "DEFAULT_NEXT_STEP_LABEL",
    "DEFAULT_PACK_VERSION",
    "DEFAULT_STATE_DB_PATH",
    "DETERMINISM_REPORT_SCHEMA_ID",
    "DETERMINISTIC_EPOCH_UTC",
    "GOVERNANCE_HISTORY_REPORT_LIMIT",
    "MANIFEST_PATH",
    "MANIFEST_SCHEMA_ID",
    "PATCH_SCHEMA_ID",
    "PRODUCER_VERSION",
    "PROPOSAL_ID_PREFIX",
    "PROPOSAL_KIND_LEGACY",
    "PROPOSAL_KIND_PATCH",
    "PROPOSAL_SCHEMA_V1",
    "PROPOSAL_SCHEMA_V2",
    "SHORT_HASH_LENGTH",
    "STATE_DB_SCHEMA_VERSION",
    "STATE_DIR",
    "VALIDATOR_VERSION",
    "ZIP_FIXED_TIMESTAMP",
]
