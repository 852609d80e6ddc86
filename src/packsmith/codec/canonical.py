"""
packsmith — canonical JSON

File: src/packsmith/codec/canonical.py

Purpose
- Render JSON-compatible values to one byte-stable text form so semantically
  equal manifests, patches and records always hash identically.

Functional requirements
- Object keys sorted by code point at every nesting level.
- Two-space indentation, UTF-8 text, single trailing newline.
- Integral floats render as integers; NaN and infinities are rejected.
- Cycles, non-string keys and unsupported types raise ``SerializationError``.

Non-functional requirements
- Standard library ``json`` does the rendering; this module only normalizes.
"""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from typing import Final

from packsmith.domain.errors import SerializationError
from packsmith.domain.result import Err, Ok

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

_INDENT: Final[int] = 2

__all__ = [
    "JSONValue",
    "canonical_bytes",
    "canonical_json",
    "compact_json",
    "normalize_json_value",
    "try_canonical_json",
]


def normalize_json_value(value: object) -> JSONValue:
    """Return a plain JSON tree for ``value`` or raise ``SerializationError``."""

    return _normalize(value, "$", set())


def canonical_json(value: object) -> str:
    normalized = normalize_json_value(value)
    rendered = json.dumps(
        normalized,
        sort_keys=True,
        indent=_INDENT,
        ensure_ascii=False,
        allow_nan=False,
    )
    return rendered + "\n"


def canonical_bytes(value: object) -> bytes:
    return canonical_json(value).encode("utf-8")


def compact_json(value: object) -> str:
    """Single-line canonical form used for digests and log payloads."""

    normalized = normalize_json_value(value)
    return json.dumps(
        normalized,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def try_canonical_json(value: object) -> Ok[str] | Err[SerializationError]:
    try:
        return Ok(canonical_json(value))
    except SerializationError as exc:
        return Err(exc)


def _normalize(value: object, path: str, active: set[int]) -> JSONValue:
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, int):
        return int(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise SerializationError("non-finite numbers are not representable", path=path)
        if value.is_integer():
            return int(value)
        return value

    if isinstance(value, Mapping):
        marker = id(value)
        if marker in active:
            raise SerializationError("cyclic structure", path=path)
        active.add(marker)
        try:
            out: dict[str, JSONValue] = {}
            for key, item in value.items():
                if not isinstance(key, str):
                    raise SerializationError(
                        f"object keys must be strings, got {type(key).__name__}", path=path
                    )
                out[key] = _normalize(item, f"{path}.{key}", active)
            return out
        finally:
            active.discard(marker)

    if isinstance(value, (list, tuple)):
        marker = id(value)
        if marker in active:
            raise SerializationError("cyclic structure", path=path)
        active.add(marker)
        try:
            return [_normalize(item, f"{path}[{index}]", active) for index, item in enumerate(value)]
        finally:
            active.discard(marker)

    raise SerializationError(f"unsupported type {type(value).__name__}", path=path)
