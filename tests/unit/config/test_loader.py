"""Config loading precedence, env coercion, and path normalization."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from packsmith.config import (
    ENV_BINDINGS,
    ConfigLoadError,
    ConfigValidationError,
    default_config,
    dump_effective_config,
    load_config,
)
from packsmith.constants import DEFAULT_STATE_DB_PATH

if TYPE_CHECKING:
    from pathlib import Path


def _write(path: Path, body: str) -> Path:
    path.write_text(body, encoding="utf-8")
    return path


def test_defaults_apply_without_a_config_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    config = load_config(environ={})
    expected = default_config()
    assert config["archive"] == expected["archive"]
    assert config["proposals"]["id_prefix_length"] == 12
    assert config["paths"]["state_db"] == (tmp_path.resolve() / str(DEFAULT_STATE_DB_PATH)).as_posix()


def test_precedence_is_cli_then_env_then_file(tmp_path: Path) -> None:
    config_path = _write(
        tmp_path / "packsmith.toml",
        """
[archive]
compression_level = 3

[diff]
context_lines = 5
""",
    )
    environ = {"PACKSMITH_ARCHIVE_COMPRESSION_LEVEL": "7", "PACKSMITH_DIFF_CONTEXT_LINES": "1"}

    from_file = load_config(config_path, environ={})
    from_env = load_config(config_path, environ=environ)
    from_cli = load_config(
        config_path, environ=environ, cli_overrides={"archive.compression_level": 9, "diff.context_lines": None}
    )

    assert from_file["archive"]["compression_level"] == 3
    assert from_env["archive"]["compression_level"] == 7
    assert from_env["diff"]["context_lines"] == 1
    assert from_cli["archive"]["compression_level"] == 9
    assert from_cli["diff"]["context_lines"] == 1


def test_env_values_are_coerced_and_optional_log_file_is_bound(tmp_path: Path) -> None:
    config_path = _write(tmp_path / "packsmith.toml", "")
    config = load_config(
        config_path,
        environ={
            "PACKSMITH_OBSERVABILITY_LOG_FILE": "logs/packsmith.jsonl",
            "PACKSMITH_OBSERVABILITY_LOG_LEVEL": "DEBUG",
        },
    )
    assert config["observability"]["log_level"] == "DEBUG"
    assert config["observability"]["log_file"] == (tmp_path.resolve() / "logs" / "packsmith.jsonl").as_posix()


def test_non_integer_env_value_is_a_load_error(tmp_path: Path) -> None:
    config_path = _write(tmp_path / "packsmith.toml", "")
    with pytest.raises(ConfigLoadError, match="PACKSMITH_ARCHIVE_COMPRESSION_LEVEL"):
        load_config(config_path, environ={"PACKSMITH_ARCHIVE_COMPRESSION_LEVEL": "high"})


def test_missing_explicit_file_and_invalid_toml_are_load_errors(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="not found"):
        load_config(tmp_path / "absent.toml", environ={})

    broken = _write(tmp_path / "broken.toml", "[archive\ncompression_level = 1\n")
    with pytest.raises(ConfigLoadError, match="invalid TOML"):
        load_config(broken, environ={})


def test_relative_paths_resolve_against_the_config_directory(tmp_path: Path) -> None:
    nested = tmp_path / "project"
    nested.mkdir()
    config_path = _write(nested / "packsmith.toml", '[paths]\nstate_db = "state/db.sqlite3"\n')
    config = load_config(config_path, environ={})
    assert config["paths"]["state_db"] == (nested.resolve() / "state" / "db.sqlite3").as_posix()


def test_out_of_range_values_fail_validation(tmp_path: Path) -> None:
    config_path = _write(tmp_path / "packsmith.toml", "[archive]\ncompression_level = 12\n")
    with pytest.raises(ConfigValidationError) as excinfo:
        load_config(config_path, environ={})
    assert [issue.path for issue in excinfo.value.issues] == ["archive.compression_level"]


def test_dump_is_deterministic(tmp_path: Path) -> None:
    config_path = _write(tmp_path / "packsmith.toml", "")
    first = dump_effective_config(load_config(config_path, environ={}))
    second = dump_effective_config(load_config(config_path, environ={}))
    assert first == second
    assert first.endswith("}\n")
    assert first.index('"archive"') < first.index('"diff"') < first.index('"observability"')


def test_every_env_binding_names_a_config_key() -> None:
    defaults = default_config()
    for env_name, dotted in ENV_BINDINGS.items():
        section, key = dotted.split(".")
        assert env_name == "PACKSMITH_" + dotted.replace(".", "_").upper()
        assert section in defaults
        assert key in defaults[section] or dotted == "observability.log_file"


def test_env_log_level_is_case_insensitive_and_unbound_names_are_ignored(tmp_path: Path) -> None:
    config_path = _write(tmp_path / "packsmith.toml", "")
    config = load_config(
        config_path,
        environ={
            "PACKSMITH_OBSERVABILITY_LOG_LEVEL": "warning",
            "PACKSMITH_META_SCHEMA_VERSION": "99",
            "PACKSMITH_UNRELATED": "x",
        },
    )
    assert config["observability"]["log_level"] == "WARNING"
    assert config["meta"]["schema_version"] == default_config()["meta"]["schema_version"]


def test_invalid_file_is_reported_even_when_env_would_fix_it(tmp_path: Path) -> None:
    config_path = _write(tmp_path / "packsmith.toml", "[diff]\ncontext_lines = -1\n")
    with pytest.raises(ConfigValidationError) as excinfo:
        load_config(config_path, environ={"PACKSMITH_DIFF_CONTEXT_LINES": "3"})
    assert [issue.path for issue in excinfo.value.issues] == ["diff.context_lines"]
