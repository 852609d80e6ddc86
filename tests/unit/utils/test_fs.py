"""Atomic writes and strict reads."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from packsmith.utils.fs import atomic_write, read_bytes

if TYPE_CHECKING:
    from pathlib import Path


def test_atomic_write_creates_parents_and_replaces(tmp_path: Path) -> None:
    target = tmp_path / "out" / "pack.zip"
    atomic_write(target, b"first")
    atomic_write(target, "second")

    assert target.read_bytes() == b"second"
    assert sorted(path.name for path in target.parent.iterdir()) == ["pack.zip"]


def test_failed_write_leaves_no_temp_file(tmp_path: Path) -> None:
    target = tmp_path / "report.json"
    with pytest.raises(LookupError):
        atomic_write(target, "payload", encoding="no-such-codec")
    assert list(tmp_path.iterdir()) == []


def test_read_bytes_requires_a_file(tmp_path: Path) -> None:
    (tmp_path / "a.bin").write_bytes(b"\x00\x01")
    assert read_bytes(tmp_path / "a.bin") == b"\x00\x01"
    with pytest.raises(FileNotFoundError):
        read_bytes(tmp_path / "missing.bin")
    with pytest.raises(FileNotFoundError):
        read_bytes(tmp_path)
