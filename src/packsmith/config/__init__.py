"""
packsmith config package public API.

File: src/packsmith/config/__init__.py

Purpose
- Export config loading/validation entrypoints and public error types.

Functional requirements
- Support loading from ``packsmith.toml`` + ``PACKSMITH_`` env overrides.
- Fail fast with clear structured validation/load errors.
"""

from packsmith.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_BINDINGS,
    ENV_PREFIX,
    ConfigLoadError,
    dump_effective_config,
    load_config,
    resolve_config_paths,
)
from packsmith.config.schema import (
    DEFAULT_CONFIG,
    PATH_FIELDS,
    ConfigSchemaVersion,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    PacksmithConfig,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
    validate_config,
)

__all__ = [
    "ConfigLoadError",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
    "ENV_BINDINGS",
    "ENV_PREFIX",
    "PATH_FIELDS",
    "PacksmithConfig",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "load_config",
    "merge_config",
    "migration_guidance",
    "resolve_config_paths",
    "validate_config",
]
