"""
packsmith — runtime config loader.

File: src/packsmith/config/loader.py

Purpose
- Produce the effective packsmith settings (archive level, diff context, pack
  provenance, proposal ids, state DB location, logging) from four layers.

Functional requirements
- Layers apply in order defaults, ``packsmith.toml``, ``PACKSMITH_*`` env vars,
  CLI overrides; a later layer wins key by key.
- Only the keys listed in ``ENV_BINDINGS`` are read from the environment, each
  with its own parser; a value that does not parse names the variable.
- A missing ``packsmith.toml`` in the working directory is fine; a missing file
  passed explicitly is a ``ConfigLoadError``.
- ``paths.state_db`` and ``observability.log_file`` resolve against the config
  file's directory, so a project's settings work from any cwd.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, Final

from packsmith.config.schema import (
    PATH_FIELDS,
    assert_valid_config,
    default_config,
    merge_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "packsmith.toml"
ENV_PREFIX: Final[str] = "PACKSMITH_"


class ConfigLoadError(ValueError):
    """Config file or override values could not be read."""


def _parse_int(raw: str) -> int:
    return int(raw.strip())


def _parse_text(raw: str) -> str:
    return raw.strip()


def _parse_level(raw: str) -> str:
    return raw.strip().upper()


def _env_name(dotted: str) -> str:
    return ENV_PREFIX + dotted.replace(".", "_").upper()


# dotted config key -> parser for its environment value
_ENV_KEYS: Final[tuple[tuple[str, Callable[[str], object]], ...]] = (
    ("archive.compression_level", _parse_int),
    ("diff.context_lines", _parse_int),
    ("pack.producer_version", _parse_text),
    ("pack.validator_version", _parse_text),
    ("pack.pack_version", _parse_text),
    ("proposals.id_prefix_length", _parse_int),
    ("proposals.next_step_href", _parse_text),
    ("proposals.next_step_label", _parse_text),
    ("paths.state_db", _parse_text),
    ("observability.log_level", _parse_level),
    ("observability.log_format", _parse_text),
    ("observability.log_file", _parse_text),
)

ENV_BINDINGS: Final[Mapping[str, str]] = {_env_name(key): key for key, _ in _ENV_KEYS}


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return the validated effective config with paths made absolute.

    ``cli_overrides`` maps dotted keys (``"archive.compression_level"``) to
    values; ``None`` values mean "not given" and are skipped.
    """

    file_path = _locate(config_path)
    from_file = _read_toml(file_path, required=config_path is not None)
    # File errors are reported before env/CLI layers can mask them.
    config = assert_valid_config(merge_config(default_config(), from_file))

    env = os.environ if environ is None else environ
    config = merge_config(config, _env_layer(env))
    config = merge_config(config, _dotted_layer(cli_overrides or {}))
    return assert_valid_config(resolve_config_paths(config, base_dir=file_path.parent))


def resolve_config_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Copy ``config`` with every path field made absolute against ``base_dir``."""

    resolved = merge_config({}, config)
    for field in PATH_FIELDS:
        section = resolved.get(field[0])
        if isinstance(section, dict) and isinstance(section.get(field[1]), str):
            section[field[1]] = _absolute(section[field[1]], base_dir)
    return resolved


def dump_effective_config(config: Mapping[str, object]) -> str:
    return json.dumps(dict(config), sort_keys=True, indent=2, ensure_ascii=False) + "\n"


def _locate(config_path: str | Path | None) -> Path:
    if config_path is None:
        return (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
    return Path(config_path).expanduser().resolve()


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.is_file():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _env_layer(environ: Mapping[str, str]) -> dict[str, Any]:
    values: dict[str, object] = {}
    for key, parse in _ENV_KEYS:
        name = _env_name(key)
        if name not in environ:
            continue
        try:
            values[key] = parse(environ[name])
        except ValueError as exc:
            raise ConfigLoadError(f"{name} ({key}): cannot parse {environ[name]!r}") from exc
    return _dotted_layer(values)


def _dotted_layer(values: Mapping[str, object]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for dotted in sorted(values):
        value = values[dotted]
        if value is None:
            continue
        *sections, leaf = dotted.split(".")
        if not leaf or not all(sections):
            raise ConfigLoadError(f"invalid override key {dotted!r}")
        node = layer
        for section in sections:
            node = node.setdefault(section, {})
        node[leaf] = value
    return layer


def _absolute(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(candidate)).as_posix()


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_BINDINGS",
    "ENV_PREFIX",
    "dump_effective_config",
    "load_config",
    "resolve_config_paths",
]
