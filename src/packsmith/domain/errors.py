"""
packsmith — error taxonomy

File: src/packsmith/domain/errors.py

Purpose
- One exception class per failure family the engine and governance layers report.

Functional requirements
- Every error carries a stable ``code`` plus the structured detail a caller needs
  to act on it (paths, expected vs actual hashes, project ids).
- ``to_dict`` renders the detail as JSON-ready data for logs and CLI output.

Non-functional requirements
- No I/O and no logging here; callers decide how to surface errors.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar


class PackError(Exception):
    """Base class for every error the pack engine reports."""

    default_code: ClassVar[str] = "error"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def to_dict(self) -> dict[str, object]:
        return {"error": type(self).__name__, "code": self.code, "message": self.message}


class SerializationError(PackError, ValueError):
    """Value cannot be rendered as canonical JSON."""

    default_code = "unserializable"

    def __init__(self, message: str, *, path: str = "$") -> None:
        super().__init__(f"{path}: {message}")
        self.path = path

    def to_dict(self) -> dict[str, object]:
        out = super().to_dict()
        out["path"] = self.path
        return out


class ArchiveError(PackError):
    """Archive bytes are corrupt, truncated or contain unsafe entries."""

    default_code = "corrupt"

    def __init__(self, message: str, *, code: str | None = None, entry: str | None = None) -> None:
        super().__init__(message, code=code)
        self.entry = entry

    def to_dict(self) -> dict[str, object]:
        out = super().to_dict()
        if self.entry is not None:
            out["entry"] = self.entry
        return out


class SchemaError(PackError, ValueError):
    """Manifest or record fails structural validation."""

    default_code = "manifest_invalid"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        missing: tuple[str, ...] = (),
        extra: tuple[str, ...] = (),
    ) -> None:
        super().__init__(message, code=code)
        self.missing = missing
        self.extra = extra

    def to_dict(self) -> dict[str, object]:
        out = super().to_dict()
        if self.missing or self.extra:
            out["missing"] = list(self.missing)
            out["extra"] = list(self.extra)
        return out


class HashMismatchError(PackError):
    """Reconstructed content does not hash to the digest recorded in the patch."""

    default_code = "hash_mismatch"

    def __init__(self, path: str, *, expected: str, actual: str) -> None:
        super().__init__(f"{path}: expected sha256 {expected}, got {actual}")
        self.path = path
        self.expected = expected
        self.actual = actual

    def to_dict(self) -> dict[str, object]:
        out = super().to_dict()
        out.update({"path": self.path, "expected": self.expected, "actual": self.actual})
        return out


@dataclass(frozen=True, slots=True)
class ConflictDetail:
    """One path that blocks a patch from applying."""

    path: str
    reason: str
    expected_sha256: str | None = None
    actual_sha256: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "path": self.path,
            "reason": self.reason,
            "expected_sha256": self.expected_sha256,
            "actual_sha256": self.actual_sha256,
        }


class PatchConflictError(PackError):
    """Patch pre-image or base pointer does not match the current state."""

    default_code = "conflict"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        conflicts: tuple[ConflictDetail, ...] = (),
    ) -> None:
        super().__init__(message, code=code)
        self.conflicts = conflicts

    @property
    def paths(self) -> tuple[str, ...]:
        return tuple(item.path for item in self.conflicts)

    def to_dict(self) -> dict[str, object]:
        out = super().to_dict()
        out["conflicts"] = [item.to_dict() for item in self.conflicts]
        return out


class LockedPackError(PackError):
    """Project is governance-locked; adoption-intended work is refused."""

    default_code = "locked"

    def __init__(self, project_id: str, *, locked_pack_sha256: str | None = None) -> None:
        super().__init__(f"project {project_id!r} is locked")
        self.project_id = project_id
        self.locked_pack_sha256 = locked_pack_sha256

    def to_dict(self) -> dict[str, object]:
        out = super().to_dict()
        out["project_id"] = self.project_id
        out["locked_pack_sha256"] = self.locked_pack_sha256
        return out


__all__ = [
    "ArchiveError",
    "ConflictDetail",
    "HashMismatchError",
    "LockedPackError",
    "PackError",
    "PatchConflictError",
    "SchemaError",
    "SerializationError",
]
