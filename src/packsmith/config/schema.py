"""
packsmith — configuration schema and validation.

File: src/packsmith/config/schema.py

Purpose
- Define authoritative configuration defaults and strict validation rules.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Unknown sections and fields are rejected rather than ignored.

Non-functional requirements
- Keep rules deterministic and easy to audit.
"""

from __future__ import annotations

import copy
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, NotRequired, TypedDict

from packsmith.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_COMPRESSION_LEVEL,
    DEFAULT_DIFF_CONTEXT_LINES,
    DEFAULT_NEXT_STEP_HREF,
    DEFAULT_NEXT_STEP_LABEL,
    DEFAULT_PACK_VERSION,
    DEFAULT_STATE_DB_PATH,
    PRODUCER_VERSION,
    SHORT_HASH_LENGTH,
    VALIDATOR_VERSION,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")
LOG_FORMATS: Final[tuple[str, ...]] = ("json", "text")

# Config paths that should be normalized relative to config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("paths", "state_db"),
    ("observability", "log_file"),
)


class MetaConfig(TypedDict):
    schema_version: int


class ArchiveConfig(TypedDict):
    compression_level: int


class DiffConfig(TypedDict):
    context_lines: int


class PackConfig(TypedDict):
    producer_version: str
    validator_version: str
    pack_version: str


class ProposalsConfig(TypedDict):
    id_prefix_length: int
    next_step_href: str
    next_step_label: str


class PathsConfig(TypedDict):
    state_db: str


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_format: Literal["json", "text"]
    log_file: NotRequired[str]


class PacksmithConfig(TypedDict):
    meta: MetaConfig
    archive: ArchiveConfig
    diff: DiffConfig
    pack: PackConfig
    proposals: ProposalsConfig
    paths: PathsConfig
    observability: ObservabilityConfig


DEFAULT_CONFIG: Final[PacksmithConfig] = {
    "meta": {"schema_version": ConfigSchemaVersion},
    "archive": {"compression_level": DEFAULT_COMPRESSION_LEVEL},
    "diff": {"context_lines": DEFAULT_DIFF_CONTEXT_LINES},
    "pack": {
        "producer_version": PRODUCER_VERSION,
        "validator_version": VALIDATOR_VERSION,
        "pack_version": DEFAULT_PACK_VERSION,
    },
    "proposals": {
        "id_prefix_length": SHORT_HASH_LENGTH,
        "next_step_href": DEFAULT_NEXT_STEP_HREF,
        "next_step_label": DEFAULT_NEXT_STEP_LABEL,
    },
    "paths": {"state_db": str(DEFAULT_STATE_DB_PATH)},
    "observability": {"log_level": "INFO", "log_format": "json"},
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> PacksmithConfig:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade packsmith.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade packsmith"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    normalized = _validate_root(root, issues)
    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def _validate_root(payload: Mapping[str, object], issues: _IssueCollector) -> dict[str, Any]:
    validators: dict[str, Callable[[dict[str, object], str, _IssueCollector], dict[str, Any]]] = {
        "meta": _validate_meta,
        "archive": _validate_archive,
        "diff": _validate_diff,
        "pack": _validate_pack,
        "proposals": _validate_proposals,
        "paths": _validate_paths,
        "observability": _validate_observability,
    }
    _reject_unknown_keys(payload, set(validators), "", issues)
    _require_keys(payload, set(validators), "", issues)

    out: dict[str, Any] = {}
    for key in sorted(validators):
        raw = payload.get(key)
        if raw is None:
            continue
        section = _as_object(raw, key, issues)
        if section is None:
            continue
        out[key] = validators[key](section, key, issues)
    return out


def _validate_meta(payload: dict[str, object], path: str, issues: _IssueCollector) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"schema_version"}, path, issues)
    _require_keys(payload, {"schema_version"}, path, issues)
    out: dict[str, Any] = {}
    if "schema_version" in payload:
        parsed = _as_int(payload["schema_version"], _join(path, "schema_version"), issues, minimum=1)
        if parsed is not None:
            out["schema_version"] = parsed
            if parsed != ConfigSchemaVersion:
                issues.add(_join(path, "schema_version"), migration_guidance(parsed))
    return out


def _validate_archive(
    payload: dict[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"compression_level"}, path, issues)
    _require_keys(payload, {"compression_level"}, path, issues)
    out: dict[str, Any] = {}
    if "compression_level" in payload:
        parsed = _as_int(
            payload["compression_level"],
            _join(path, "compression_level"),
            issues,
            minimum=0,
            maximum=9,
        )
        if parsed is not None:
            out["compression_level"] = parsed
    return out


def _validate_diff(payload: dict[str, object], path: str, issues: _IssueCollector) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"context_lines"}, path, issues)
    _require_keys(payload, {"context_lines"}, path, issues)
    out: dict[str, Any] = {}
    if "context_lines" in payload:
        parsed = _as_int(payload["context_lines"], _join(path, "context_lines"), issues, minimum=0)
        if parsed is not None:
            out["context_lines"] = parsed
    return out


def _validate_pack(payload: dict[str, object], path: str, issues: _IssueCollector) -> dict[str, Any]:
    allowed = {"producer_version", "validator_version", "pack_version"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)
    out: dict[str, Any] = {}
    for key in sorted(allowed & set(payload)):
        parsed = _as_str(payload[key], _join(path, key), issues)
        if parsed is not None:
            out[key] = parsed
    return out


def _validate_proposals(
    payload: dict[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"id_prefix_length", "next_step_href", "next_step_label"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)
    out: dict[str, Any] = {}
    if "id_prefix_length" in payload:
        parsed = _as_int(
            payload["id_prefix_length"],
            _join(path, "id_prefix_length"),
            issues,
            minimum=8,
            maximum=64,
        )
        if parsed is not None:
            out["id_prefix_length"] = parsed
    for key in ("next_step_href", "next_step_label"):
        if key in payload:
            parsed_text = _as_str(payload[key], _join(path, key), issues)
            if parsed_text is not None:
                out[key] = parsed_text
    return out


def _validate_paths(payload: dict[str, object], path: str, issues: _IssueCollector) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"state_db"}, path, issues)
    _require_keys(payload, {"state_db"}, path, issues)
    out: dict[str, Any] = {}
    if "state_db" in payload:
        parsed = _as_path_text(payload["state_db"], _join(path, "state_db"), issues)
        if parsed is not None:
            out["state_db"] = parsed
    return out


def _validate_observability(
    payload: dict[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"log_level", "log_format", "log_file"}, path, issues)
    _require_keys(payload, {"log_level", "log_format"}, path, issues)
    out: dict[str, Any] = {}
    if "log_level" in payload:
        level = _as_enum(
            payload["log_level"], _join(path, "log_level"), issues, allowed_values=LOG_LEVELS
        )
        if level is not None:
            out["log_level"] = level
    if "log_format" in payload:
        log_format = _as_enum(
            payload["log_format"], _join(path, "log_format"), issues, allowed_values=LOG_FORMATS
        )
        if log_format is not None:
            out["log_format"] = log_format
    if "log_file" in payload:
        log_file = _as_path_text(payload["log_file"], _join(path, "log_file"), issues)
        if log_file is not None:
            out["log_file"] = log_file
    return out


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_path_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if "\x00" in parsed:
        issues.add(path, "must not contain NUL bytes")
        return None
    return parsed


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
    maximum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    if maximum is not None and value > maximum:
        issues.add(path, f"must be <= {maximum}")
        return None
    return value


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key not in allowed:
            issues.add(_join(path, key), "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            if isinstance(existing, dict):
                _merge_into(existing, value)
            else:
                nested: dict[str, Any] = {}
                _merge_into(nested, value)
                target[key] = nested
        else:
            target[key] = copy.deepcopy(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key in sorted(value):
        item = value[key]
        out[key] = _deep_copy_mapping(item) if isinstance(item, Mapping) else copy.deepcopy(item)
    return out


__all__ = [
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "LOG_FORMATS",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "PacksmithConfig",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "validate_config",
]
