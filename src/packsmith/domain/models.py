"""Frozen domain records with strict validation and canonical dict serialization."""

from __future__ import annotations

import base64
import binascii
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from types import MappingProxyType
from typing import NoReturn, TypeVar

from packsmith.codec.canonical import JSONValue, normalize_json_value
from packsmith.codec.file_kinds import is_text_file
from packsmith.constants import (
    DEFAULT_NEXT_STEP_HREF,
    DEFAULT_NEXT_STEP_LABEL,
    DEFAULT_PACK_VERSION,
    DETERMINISTIC_EPOCH_UTC,
    MANIFEST_PATH,
    MANIFEST_SCHEMA_ID,
    PATCH_SCHEMA_ID,
    PRODUCER_VERSION,
    PROPOSAL_KIND_LEGACY,
    PROPOSAL_KIND_PATCH,
    PROPOSAL_SCHEMA_V2,
    VALIDATOR_VERSION,
)
from packsmith.domain.errors import SchemaError
from packsmith.utils.hashing import sha256_bytes, validate_pack_path

UTC = timezone.utc

TEnum = TypeVar("TEnum", bound=StrEnum)

_MAX_TEXT = 8192
_SHA256_RE = re.compile(r"^[0-9a-f]{64}$")
_PROJECT_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._:-]{0,127}$")


class ChangeOp(StrEnum):
    ADD = "add"
    REMOVE = "remove"
    MODIFY = "modify"


class GovernanceEventKind(StrEnum):
    LOCK = "lock"
    UNLOCK = "unlock"


class EvidenceKind(StrEnum):
    SPEC_LOCK = "spec_lock"
    SPEC_UNLOCK = "spec_unlock"
    PROPOSAL_CREATED = "proposal_created"
    PROPOSAL_ADOPTED = "proposal_adopted"


def utc_now_iso() -> str:
    """Current time as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""

    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# --------------------------------------------------------------------------- validators


def _fail(path: str, message: str) -> NoReturn:
    raise SchemaError(f"{path}: {message}")


def _expect_object(
    value: object,
    path: str,
    *,
    required: set[str],
    optional: set[str] | None = None,
) -> dict[str, object]:
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")

    parsed: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            _fail(path, f"object keys must be strings, got {type(key).__name__}")
        parsed[key] = item

    allowed = required | (optional or set())
    unknown = sorted(key for key in parsed if key not in allowed)
    if unknown:
        _fail(path, f"unexpected fields: {unknown}")

    missing = sorted(key for key in required if key not in parsed)
    if missing:
        _fail(path, f"missing required fields: {missing}")

    return parsed


def _as_str(value: object, path: str, *, min_len: int = 1, max_len: int = _MAX_TEXT) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    if len(value) < min_len:
        _fail(path, f"must be at least {min_len} character(s)")
    if len(value) > max_len:
        _fail(path, f"must be <= {max_len} characters")
    return value


def _as_text(value: object, path: str) -> str:
    """Unbounded, possibly empty text such as patch bodies."""

    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    return value


def _as_bool(value: object, path: str) -> bool:
    if isinstance(value, bool):
        return value
    _fail(path, f"expected boolean, got {type(value).__name__}")


def _as_enum(enum_type: type[TEnum], value: object, path: str) -> TEnum:
    if isinstance(value, enum_type):
        return value
    if not isinstance(value, str):
        _fail(path, f"expected string enum value, got {type(value).__name__}")
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(sorted(item.value for item in enum_type))
        _fail(path, f"invalid value {value!r}; expected one of: {allowed}")


def _as_sequence(value: object, path: str) -> list[object]:
    if isinstance(value, (list, tuple)):
        return list(value)
    _fail(path, f"expected array, got {type(value).__name__}")


def _as_str_tuple(value: object, path: str, *, unique: bool = False) -> tuple[str, ...]:
    parsed = tuple(
        _as_str(item, f"{path}[{index}]") for index, item in enumerate(_as_sequence(value, path))
    )
    if unique and len(set(parsed)) != len(parsed):
        _fail(path, "contains duplicate values")
    return parsed


def _as_project_id(value: object, path: str) -> str:
    parsed = _as_str(value, path, max_len=128)
    if not _PROJECT_ID_RE.fullmatch(parsed):
        _fail(path, "must match [A-Za-z0-9][A-Za-z0-9._:-]*")
    return parsed


def _as_pack_path(value: object, path: str) -> str:
    parsed = _as_str(value, path, max_len=1024)
    try:
        return validate_pack_path(parsed)
    except ValueError as exc:
        _fail(path, str(exc))


def _as_sha256(value: object, path: str) -> str:
    parsed = _as_str(value, path, min_len=64, max_len=64)
    if not _SHA256_RE.fullmatch(parsed):
        _fail(path, "must be a 64-character lowercase hex SHA-256 digest")
    return parsed


def _as_optional_sha256(value: object, path: str) -> str | None:
    if value is None:
        return None
    return _as_sha256(value, path)


def _as_timestamp(value: object, path: str) -> str:
    parsed = _as_str(value, path, max_len=64)
    text = parsed[:-1] + "+00:00" if parsed.endswith("Z") else parsed
    try:
        moment = datetime.fromisoformat(text)
    except ValueError as exc:
        _fail(path, f"invalid ISO-8601 timestamp: {parsed!r} ({exc})")
    if moment.tzinfo is None or moment.utcoffset() is None:
        _fail(path, "timestamp must be timezone-aware UTC")
    return parsed


def _as_b64(value: object, path: str) -> str:
    parsed = _as_text(value, path)
    try:
        base64.b64decode(parsed, validate=True)
    except (binascii.Error, ValueError) as exc:
        _fail(path, f"invalid base64: {exc}")
    return parsed


def _as_json_object(value: object, path: str) -> dict[str, JSONValue]:
    normalized = normalize_json_value(value)
    if not isinstance(normalized, dict):
        _fail(path, "expected JSON object")
    return normalized


# --------------------------------------------------------------------------- pack records


@dataclass(frozen=True, slots=True)
class PackFile:
    """One content file. ``sha256``, ``size`` and ``is_text`` derive from ``data``."""

    path: str
    data: bytes = field(repr=False)
    sha256: str = field(init=False)
    size: int = field(init=False)
    is_text: bool = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", _as_pack_path(self.path, "PackFile.path"))
        if self.path == MANIFEST_PATH:
            _fail("PackFile.path", f"{MANIFEST_PATH} is reserved for the manifest")
        if not isinstance(self.data, (bytes, bytearray)):
            _fail("PackFile.data", f"expected bytes, got {type(self.data).__name__}")
        data = bytes(self.data)
        object.__setattr__(self, "data", data)
        object.__setattr__(self, "sha256", sha256_bytes(data))
        object.__setattr__(self, "size", len(data))
        object.__setattr__(self, "is_text", is_text_file(self.path, data))

    def text(self) -> str:
        return self.data.decode("utf-8")


@dataclass(frozen=True, slots=True)
class Provenance:
    producer_version: str = PRODUCER_VERSION
    validator_version: str = VALIDATOR_VERSION

    def __post_init__(self) -> None:
        _as_str(self.producer_version, "Provenance.producer_version", max_len=64)
        _as_str(self.validator_version, "Provenance.validator_version", max_len=64)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "producer_version": self.producer_version,
            "validator_version": self.validator_version,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Provenance:
        parsed = _expect_object(
            data,
            "Provenance",
            required={"producer_version", "validator_version"},
        )
        return cls(
            producer_version=_as_str(parsed["producer_version"], "Provenance.producer_version"),
            validator_version=_as_str(parsed["validator_version"], "Provenance.validator_version"),
        )


@dataclass(frozen=True, slots=True)
class PackManifest:
    """Metadata stored at ``spec_pack_manifest.json``; ``contents`` lists every content path."""

    project_id: str
    contents: tuple[str, ...]
    created_at_utc: str = DETERMINISTIC_EPOCH_UTC
    pack_version: str = DEFAULT_PACK_VERSION
    provenance: Provenance = field(default_factory=Provenance)
    schema_id: str = MANIFEST_SCHEMA_ID

    def __post_init__(self) -> None:
        if self.schema_id != MANIFEST_SCHEMA_ID:
            _fail("PackManifest.schema", f"unsupported schema {self.schema_id!r}")
        _as_project_id(self.project_id, "PackManifest.project_id")
        _as_timestamp(self.created_at_utc, "PackManifest.created_at_utc")
        _as_str(self.pack_version, "PackManifest.spec_pack_version", max_len=32)
        contents = _as_str_tuple(self.contents, "PackManifest.contents", unique=True)
        for index, path in enumerate(contents):
            _as_pack_path(path, f"PackManifest.contents[{index}]")
        object.__setattr__(self, "contents", tuple(sorted(contents)))

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "schema": self.schema_id,
            "created_at_utc": self.created_at_utc,
            "project_id": self.project_id,
            "spec_pack_version": self.pack_version,
            "provenance": self.provenance.to_dict(),
            "contents": list(self.contents),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> PackManifest:
        parsed = _expect_object(
            data,
            "PackManifest",
            required={
                "schema",
                "created_at_utc",
                "project_id",
                "spec_pack_version",
                "provenance",
                "contents",
            },
        )
        provenance = parsed["provenance"]
        if not isinstance(provenance, Mapping):
            _fail("PackManifest.provenance", "expected object")
        return cls(
            schema_id=_as_str(parsed["schema"], "PackManifest.schema"),
            created_at_utc=_as_timestamp(parsed["created_at_utc"], "PackManifest.created_at_utc"),
            project_id=_as_project_id(parsed["project_id"], "PackManifest.project_id"),
            pack_version=_as_str(parsed["spec_pack_version"], "PackManifest.spec_pack_version"),
            provenance=Provenance.from_dict(provenance),
            contents=_as_str_tuple(parsed["contents"], "PackManifest.contents", unique=True),
        )

    def with_contents(self, contents: tuple[str, ...]) -> PackManifest:
        return PackManifest(
            project_id=self.project_id,
            contents=contents,
            created_at_utc=self.created_at_utc,
            pack_version=self.pack_version,
            provenance=self.provenance,
            schema_id=self.schema_id,
        )


@dataclass(frozen=True, slots=True, eq=False)
class SpecPack:
    """
    Immutable pack: manifest, content files keyed by path, and the canonical archive.

    Built only by ``packsmith.engine.pack``; ``pack_sha256`` is the SHA-256 of
    ``archive``. Two packs are equal exactly when their identities are equal.
    """

    manifest: PackManifest
    files: Mapping[str, PackFile]
    archive: bytes = field(repr=False)
    pack_sha256: str = field(init=False)

    def __post_init__(self) -> None:
        ordered = {path: self.files[path] for path in sorted(self.files)}
        for path, pack_file in ordered.items():
            if pack_file.path != path:
                _fail("SpecPack.files", f"key {path!r} does not match file path {pack_file.path!r}")
        if tuple(ordered) != self.manifest.contents:
            _fail("SpecPack.manifest.contents", "must list exactly the pack's content paths")
        object.__setattr__(self, "files", MappingProxyType(ordered))
        object.__setattr__(self, "pack_sha256", sha256_bytes(self.archive))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SpecPack):
            return NotImplemented
        return self.pack_sha256 == other.pack_sha256

    def __hash__(self) -> int:
        return hash(self.pack_sha256)

    def __contains__(self, path: object) -> bool:
        return path in self.files

    @property
    def project_id(self) -> str:
        return self.manifest.project_id

    @property
    def paths(self) -> tuple[str, ...]:
        return tuple(self.files)

    def get(self, path: str) -> PackFile | None:
        return self.files.get(path)

    def file_map(self) -> dict[str, bytes]:
        return {path: pack_file.data for path, pack_file in self.files.items()}


# --------------------------------------------------------------------------- diff records


@dataclass(frozen=True, slots=True)
class ModifiedEntry:
    path: str
    is_text: bool
    old_sha256: str
    new_sha256: str
    unified_diff: str | None = None

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "path": self.path,
            "is_text": self.is_text,
            "old_sha256": self.old_sha256,
            "new_sha256": self.new_sha256,
            "unified_diff": self.unified_diff,
        }


@dataclass(frozen=True, slots=True)
class DiffReport:
    """Path-level difference between two packs. Every tuple is sorted by path."""

    added: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()
    modified: tuple[ModifiedEntry, ...] = ()
    full_patch: str = ""

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.modified)

    def stats(self) -> dict[str, int]:
        return {
            "added": len(self.added),
            "removed": len(self.removed),
            "modified": len(self.modified),
        }

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "added": list(self.added),
            "removed": list(self.removed),
            "modified": [entry.to_dict() for entry in self.modified],
            "full_patch": self.full_patch,
        }


# --------------------------------------------------------------------------- patch records


@dataclass(frozen=True, slots=True)
class FileChange:
    """
    One path-level operation in a patch.

    ``old_sha256`` is the pre-image the base must still hold; ``new_sha256`` is
    the post-image the merge must produce. Binary post-images travel inline as
    ``post_image_b64`` because no line diff can reconstruct them.
    """

    path: str
    op: ChangeOp
    is_text: bool
    old_sha256: str | None = None
    new_sha256: str | None = None
    post_image_b64: str | None = None

    def __post_init__(self) -> None:
        label = f"FileChange[{self.path!r}]"
        _as_pack_path(self.path, f"{label}.path")
        object.__setattr__(self, "op", _as_enum(ChangeOp, self.op, f"{label}.op"))
        _as_bool(self.is_text, f"{label}.is_text")
        _as_optional_sha256(self.old_sha256, f"{label}.old_sha256")
        _as_optional_sha256(self.new_sha256, f"{label}.new_sha256")
        needs_old = self.op in {ChangeOp.REMOVE, ChangeOp.MODIFY}
        needs_new = self.op in {ChangeOp.ADD, ChangeOp.MODIFY}
        if needs_old != (self.old_sha256 is not None):
            _fail(f"{label}.old_sha256", f"{'required' if needs_old else 'not allowed'} for {self.op}")
        if needs_new != (self.new_sha256 is not None):
            _fail(f"{label}.new_sha256", f"{'required' if needs_new else 'not allowed'} for {self.op}")
        if self.post_image_b64 is not None:
            if not needs_new or self.is_text:
                _fail(f"{label}.post_image_b64", "only binary add/modify carry a post-image")
            _as_b64(self.post_image_b64, f"{label}.post_image_b64")
        elif needs_new and not self.is_text:
            _fail(f"{label}.post_image_b64", "binary add/modify requires a post-image")

    def post_image(self) -> bytes | None:
        if self.post_image_b64 is None:
            return None
        return base64.b64decode(self.post_image_b64, validate=True)

    def to_dict(self) -> dict[str, JSONValue]:
        out: dict[str, JSONValue] = {
            "path": self.path,
            "op": str(self.op),
            "is_text": self.is_text,
            "old_sha256": self.old_sha256,
            "new_sha256": self.new_sha256,
        }
        if self.post_image_b64 is not None:
            out["post_image_b64"] = self.post_image_b64
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> FileChange:
        parsed = _expect_object(
            data,
            "FileChange",
            required={"path", "op", "is_text", "old_sha256", "new_sha256"},
            optional={"post_image_b64"},
        )
        post_image = parsed.get("post_image_b64")
        return cls(
            path=_as_pack_path(parsed["path"], "FileChange.path"),
            op=_as_enum(ChangeOp, parsed["op"], "FileChange.op"),
            is_text=_as_bool(parsed["is_text"], "FileChange.is_text"),
            old_sha256=_as_optional_sha256(parsed["old_sha256"], "FileChange.old_sha256"),
            new_sha256=_as_optional_sha256(parsed["new_sha256"], "FileChange.new_sha256"),
            post_image_b64=None if post_image is None else _as_b64(post_image, "FileChange.post_image_b64"),
        )


def _parse_changes(value: object, path: str, op: ChangeOp) -> tuple[FileChange, ...]:
    changes: list[FileChange] = []
    for index, item in enumerate(_as_sequence(value, path)):
        if not isinstance(item, Mapping):
            _fail(f"{path}[{index}]", "expected object")
        change = FileChange.from_dict(item)
        if change.op is not op:
            _fail(f"{path}[{index}].op", f"expected {op}, got {change.op}")
        changes.append(change)
    paths = [change.path for change in changes]
    if paths != sorted(set(paths)):
        _fail(path, "paths must be unique and sorted")
    return tuple(changes)


@dataclass(frozen=True, slots=True)
class Patch:
    """Replayable difference between two packs, scoped to ``base_project_id``."""

    base_project_id: str
    patch_text: str
    added: tuple[FileChange, ...] = ()
    removed: tuple[FileChange, ...] = ()
    modified: tuple[FileChange, ...] = ()
    summary: str = ""
    schema_id: str = PATCH_SCHEMA_ID

    def __post_init__(self) -> None:
        if self.schema_id != PATCH_SCHEMA_ID:
            _fail("Patch.schema", f"unsupported schema {self.schema_id!r}")
        _as_project_id(self.base_project_id, "Patch.base_project_id")
        _as_text(self.patch_text, "Patch.patch_text")
        _as_text(self.summary, "Patch.summary")
        seen: set[str] = set()
        for change in (*self.added, *self.removed, *self.modified):
            if change.path in seen:
                _fail("Patch.structured_changes", f"path {change.path!r} appears more than once")
            seen.add(change.path)

    @property
    def changes(self) -> tuple[FileChange, ...]:
        return tuple(sorted((*self.added, *self.removed, *self.modified), key=lambda c: c.path))

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.modified)

    def structured_changes(self) -> dict[str, JSONValue]:
        return {
            "added": [change.to_dict() for change in self.added],
            "removed": [change.to_dict() for change in self.removed],
            "modified": [change.to_dict() for change in self.modified],
        }

    def stats(self) -> dict[str, int]:
        return {
            "added": len(self.added),
            "removed": len(self.removed),
            "modified": len(self.modified),
        }

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "schema": self.schema_id,
            "base_project_id": self.base_project_id,
            "patch_text": self.patch_text,
            "structured_changes": self.structured_changes(),
            "summary": self.summary,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Patch:
        parsed = _expect_object(
            data,
            "Patch",
            required={"schema", "base_project_id", "patch_text", "structured_changes", "summary"},
        )
        structured = _expect_object(
            parsed["structured_changes"],
            "Patch.structured_changes",
            required={"added", "removed", "modified"},
        )
        return cls(
            schema_id=_as_str(parsed["schema"], "Patch.schema"),
            base_project_id=_as_project_id(parsed["base_project_id"], "Patch.base_project_id"),
            patch_text=_as_text(parsed["patch_text"], "Patch.patch_text"),
            added=_parse_changes(structured["added"], "Patch.structured_changes.added", ChangeOp.ADD),
            removed=_parse_changes(
                structured["removed"], "Patch.structured_changes.removed", ChangeOp.REMOVE
            ),
            modified=_parse_changes(
                structured["modified"], "Patch.structured_changes.modified", ChangeOp.MODIFY
            ),
            summary=_as_text(parsed["summary"], "Patch.summary"),
        )


# --------------------------------------------------------------------------- proposals


@dataclass(frozen=True, slots=True)
class ProposalEvidence:
    """Hashes proving what a proposal was computed from. Legacy proposals carry none."""

    base_pack_sha256: str | None
    proposal_pack_sha256: str | None
    spel_file_sha256: str | None = None

    def __post_init__(self) -> None:
        _as_optional_sha256(self.base_pack_sha256, "ProposalEvidence.base_pack_sha256")
        _as_optional_sha256(self.proposal_pack_sha256, "ProposalEvidence.proposal_pack_sha256")
        _as_optional_sha256(self.spel_file_sha256, "ProposalEvidence.spel_file_sha256")

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "base_pack_sha256": self.base_pack_sha256,
            "proposal_pack_sha256": self.proposal_pack_sha256,
            "spel_file_sha256": self.spel_file_sha256,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> ProposalEvidence:
        parsed = _expect_object(
            data,
            "ProposalEvidence",
            required={"base_pack_sha256", "proposal_pack_sha256"},
            optional={"spel_file_sha256"},
        )
        return cls(
            base_pack_sha256=_as_optional_sha256(
                parsed["base_pack_sha256"], "ProposalEvidence.base_pack_sha256"
            ),
            proposal_pack_sha256=_as_optional_sha256(
                parsed["proposal_pack_sha256"], "ProposalEvidence.proposal_pack_sha256"
            ),
            spel_file_sha256=_as_optional_sha256(
                parsed.get("spel_file_sha256"), "ProposalEvidence.spel_file_sha256"
            ),
        )


@dataclass(frozen=True, slots=True)
class ProposalApply:
    next_step_href: str = DEFAULT_NEXT_STEP_HREF
    next_step_label: str = DEFAULT_NEXT_STEP_LABEL

    def to_dict(self) -> dict[str, JSONValue]:
        return {"next_step_href": self.next_step_href, "next_step_label": self.next_step_label}

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> ProposalApply:
        parsed = _expect_object(
            data, "ProposalApply", required={"next_step_href", "next_step_label"}
        )
        return cls(
            next_step_href=_as_str(parsed["next_step_href"], "ProposalApply.next_step_href"),
            next_step_label=_as_str(parsed["next_step_label"], "ProposalApply.next_step_label"),
        )


@dataclass(frozen=True, slots=True)
class Proposal:
    """Immutable, content-addressed record wrapping a reviewable patch."""

    id: str
    kind: str
    created_at_utc: str
    summary: str
    rationale: tuple[str, ...]
    patch: Patch
    evidence: ProposalEvidence
    apply: ProposalApply = field(default_factory=ProposalApply)
    schema_id: str = PROPOSAL_SCHEMA_V2

    def __post_init__(self) -> None:
        if self.schema_id != PROPOSAL_SCHEMA_V2:
            _fail("Proposal.schema", f"unsupported schema {self.schema_id!r}")
        _as_str(self.id, "Proposal.id", max_len=128)
        _as_str(self.kind, "Proposal.kind", max_len=64)
        _as_timestamp(self.created_at_utc, "Proposal.created_at_utc")
        _as_text(self.summary, "Proposal.summary")
        object.__setattr__(self, "rationale", _as_str_tuple(self.rationale, "Proposal.rationale"))

    @property
    def project_id(self) -> str:
        return self.patch.base_project_id

    @property
    def is_legacy(self) -> bool:
        return self.kind == PROPOSAL_KIND_LEGACY

    @property
    def is_patch_kind(self) -> bool:
        return self.kind == PROPOSAL_KIND_PATCH

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "schema": self.schema_id,
            "id": self.id,
            "kind": self.kind,
            "created_at_utc": self.created_at_utc,
            "summary": self.summary,
            "rationale": list(self.rationale),
            "patch": self.patch.to_dict(),
            "evidence": self.evidence.to_dict(),
            "apply": self.apply.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Proposal:
        parsed = _expect_object(
            data,
            "Proposal",
            required={
                "schema",
                "id",
                "kind",
                "created_at_utc",
                "summary",
                "rationale",
                "patch",
                "evidence",
                "apply",
            },
        )
        patch = parsed["patch"]
        evidence = parsed["evidence"]
        apply = parsed["apply"]
        if not isinstance(patch, Mapping):
            _fail("Proposal.patch", "expected object")
        if not isinstance(evidence, Mapping):
            _fail("Proposal.evidence", "expected object")
        if not isinstance(apply, Mapping):
            _fail("Proposal.apply", "expected object")
        return cls(
            schema_id=_as_str(parsed["schema"], "Proposal.schema"),
            id=_as_str(parsed["id"], "Proposal.id"),
            kind=_as_str(parsed["kind"], "Proposal.kind"),
            created_at_utc=_as_timestamp(parsed["created_at_utc"], "Proposal.created_at_utc"),
            summary=_as_text(parsed["summary"], "Proposal.summary"),
            rationale=_as_str_tuple(parsed["rationale"], "Proposal.rationale"),
            patch=Patch.from_dict(patch),
            evidence=ProposalEvidence.from_dict(evidence),
            apply=ProposalApply.from_dict(apply),
        )


# --------------------------------------------------------------------------- governance


@dataclass(frozen=True, slots=True)
class GovernanceEvent:
    at_utc: str
    event: GovernanceEventKind
    locked_pack_sha256: str | None = None

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "at_utc": self.at_utc,
            "event": str(self.event),
            "locked_pack_sha256": self.locked_pack_sha256,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> GovernanceEvent:
        parsed = _expect_object(
            data,
            "GovernanceEvent",
            required={"at_utc", "event"},
            optional={"locked_pack_sha256"},
        )
        return cls(
            at_utc=_as_timestamp(parsed["at_utc"], "GovernanceEvent.at_utc"),
            event=_as_enum(GovernanceEventKind, parsed["event"], "GovernanceEvent.event"),
            locked_pack_sha256=_as_optional_sha256(
                parsed.get("locked_pack_sha256"), "GovernanceEvent.locked_pack_sha256"
            ),
        )


@dataclass(frozen=True, slots=True)
class GovernanceState:
    project_id: str
    locked: bool = False
    locked_at_utc: str | None = None
    locked_pack_sha256: str | None = None
    history: tuple[GovernanceEvent, ...] = ()

    def __post_init__(self) -> None:
        _as_project_id(self.project_id, "GovernanceState.project_id")
        _as_bool(self.locked, "GovernanceState.locked")
        _as_optional_sha256(self.locked_pack_sha256, "GovernanceState.locked_pack_sha256")
        if self.locked and self.locked_pack_sha256 is None:
            _fail("GovernanceState.locked_pack_sha256", "required while locked")

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "project_id": self.project_id,
            "locked": self.locked,
            "locked_at_utc": self.locked_at_utc,
            "locked_pack_sha256": self.locked_pack_sha256,
            "history": [event.to_dict() for event in self.history],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> GovernanceState:
        parsed = _expect_object(
            data,
            "GovernanceState",
            required={"project_id", "locked"},
            optional={"locked_at_utc", "locked_pack_sha256", "history"},
        )
        locked_at = parsed.get("locked_at_utc")
        history: list[GovernanceEvent] = []
        for index, item in enumerate(_as_sequence(parsed.get("history", []), "GovernanceState.history")):
            if not isinstance(item, Mapping):
                _fail(f"GovernanceState.history[{index}]", "expected object")
            history.append(GovernanceEvent.from_dict(item))
        return cls(
            project_id=_as_project_id(parsed["project_id"], "GovernanceState.project_id"),
            locked=_as_bool(parsed["locked"], "GovernanceState.locked"),
            locked_at_utc=None
            if locked_at is None
            else _as_timestamp(locked_at, "GovernanceState.locked_at_utc"),
            locked_pack_sha256=_as_optional_sha256(
                parsed.get("locked_pack_sha256"), "GovernanceState.locked_pack_sha256"
            ),
            history=tuple(history),
        )


# --------------------------------------------------------------------------- evidence ledger


@dataclass(frozen=True, slots=True)
class EvidenceCard:
    """Append-only ledger entry recording a governance or adoption action."""

    id: str
    project_id: str
    kind: EvidenceKind
    created_at_utc: str
    title: str
    summary: str
    data: Mapping[str, JSONValue] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _as_str(self.id, "EvidenceCard.id", max_len=128)
        _as_project_id(self.project_id, "EvidenceCard.project_id")
        object.__setattr__(self, "kind", _as_enum(EvidenceKind, self.kind, "EvidenceCard.kind"))
        _as_timestamp(self.created_at_utc, "EvidenceCard.created_at_utc")
        _as_str(self.title, "EvidenceCard.title")
        _as_text(self.summary, "EvidenceCard.summary")
        object.__setattr__(
            self, "data", MappingProxyType(_as_json_object(dict(self.data), "EvidenceCard.data"))
        )

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "kind": str(self.kind),
            "created_at_utc": self.created_at_utc,
            "title": self.title,
            "summary": self.summary,
            "data": dict(self.data),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> EvidenceCard:
        parsed = _expect_object(
            data,
            "EvidenceCard",
            required={"id", "project_id", "kind", "created_at_utc", "title", "summary", "data"},
        )
        return cls(
            id=_as_str(parsed["id"], "EvidenceCard.id"),
            project_id=_as_project_id(parsed["project_id"], "EvidenceCard.project_id"),
            kind=_as_enum(EvidenceKind, parsed["kind"], "EvidenceCard.kind"),
            created_at_utc=_as_timestamp(parsed["created_at_utc"], "EvidenceCard.created_at_utc"),
            title=_as_str(parsed["title"], "EvidenceCard.title"),
            summary=_as_text(parsed["summary"], "EvidenceCard.summary"),
            data=_as_json_object(parsed["data"], "EvidenceCard.data"),
        )


def as_project_id(value: object) -> str:
    """Validate a project id outside of a record, raising ``SchemaError``."""

    return _as_project_id(value, "project_id")


__all__ = [
    "ChangeOp",
    "DiffReport",
    "EvidenceCard",
    "EvidenceKind",
    "FileChange",
    "GovernanceEvent",
    "GovernanceEventKind",
    "GovernanceState",
    "ModifiedEntry",
    "PackFile",
    "PackManifest",
    "Patch",
    "Proposal",
    "ProposalApply",
    "ProposalEvidence",
    "Provenance",
    "SpecPack",
    "as_project_id",
    "utc_now_iso",
]
