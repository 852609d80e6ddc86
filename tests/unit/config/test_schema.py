"""Strict config schema validation and structured issues."""

from __future__ import annotations

import pytest

from packsmith.config import (
    ConfigSchemaVersion,
    ConfigValidationError,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
    validate_config,
)


def test_defaults_are_valid() -> None:
    result = validate_config(default_config())
    assert result.is_valid
    assert result.config is not None
    assert result.config["meta"]["schema_version"] == ConfigSchemaVersion


def test_default_config_is_a_copy() -> None:
    config = default_config()
    config["archive"]["compression_level"] = 0
    assert default_config()["archive"]["compression_level"] == 6


def test_unknown_sections_and_fields_are_rejected() -> None:
    payload = merge_config(default_config(), {"archive": {"zip64": True}, "plugins": {}})
    result = validate_config(payload)
    assert not result.is_valid
    assert [issue.path for issue in result.issues] == ["plugins", "archive.zip64"]
    assert all(issue.message == "unknown field" for issue in result.issues)


@pytest.mark.parametrize(
    ("overlay", "path"),
    [
        ({"archive": {"compression_level": -1}}, "archive.compression_level"),
        ({"archive": {"compression_level": True}}, "archive.compression_level"),
        ({"diff": {"context_lines": -2}}, "diff.context_lines"),
        ({"proposals": {"id_prefix_length": 7}}, "proposals.id_prefix_length"),
        ({"proposals": {"id_prefix_length": 65}}, "proposals.id_prefix_length"),
        ({"pack": {"producer_version": "  "}}, "pack.producer_version"),
        ({"observability": {"log_level": "TRACE"}}, "observability.log_level"),
        ({"observability": {"log_format": "xml"}}, "observability.log_format"),
        ({"paths": {"state_db": "a\x00b"}}, "paths.state_db"),
    ],
)
def test_invalid_values_report_their_path(overlay: dict[str, object], path: str) -> None:
    with pytest.raises(ConfigValidationError) as excinfo:
        assert_valid_config(merge_config(default_config(), overlay))
    assert [issue.path for issue in excinfo.value.issues] == [path]
    assert path in str(excinfo.value)


def test_missing_sections_are_reported() -> None:
    payload = dict(default_config())
    del payload["diff"]
    result = validate_config(payload)
    assert [(issue.path, issue.message) for issue in result.issues] == [
        ("diff", "missing required field")
    ]


def test_non_mapping_root_is_rejected() -> None:
    result = validate_config(["not", "a", "mapping"])
    assert result.config is None
    assert result.issues[0].path == "<root>"


def test_schema_version_mismatch_carries_migration_guidance() -> None:
    payload = merge_config(default_config(), {"meta": {"schema_version": ConfigSchemaVersion + 1}})
    result = validate_config(payload)
    assert result.issues[0].path == "meta.schema_version"
    assert "upgrade packsmith" in result.issues[0].message


def test_migration_guidance_variants() -> None:
    assert migration_guidance(ConfigSchemaVersion) == "schema version is current"
    assert "newer" in migration_guidance(ConfigSchemaVersion + 1)
    assert "older" in migration_guidance(0)
