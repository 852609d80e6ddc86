"""Text vs binary classification for pack files."""

from __future__ import annotations

from typing import Final

_TEXT_EXTENSIONS: Final[frozenset[str]] = frozenset(
    {
        "css",
        "csv",
        "env",
        "gitignore",
        "html",
        "js",
        "json",
        "jsx",
        "md",
        "spel",
        "toml",
        "ts",
        "tsx",
        "txt",
        "xml",
        "yaml",
        "yml",
    }
)
_SNIFF_BYTES: Final[int] = 2048
_MAX_NON_PRINTABLE_RATIO: Final[float] = 0.22
_PRINTABLE_CONTROL: Final[frozenset[int]] = frozenset({9, 10, 13})


def extension(path: str) -> str:
    _, dot, suffix = path.rpartition(".")
    return suffix.lower() if dot else ""


def looks_binary(data: bytes) -> bool:
    sample = data[:_SNIFF_BYTES]
    if not sample:
        return False
    if 0 in sample:
        return True
    non_printable = sum(
        1 for byte in sample if not (32 <= byte <= 126 or byte in _PRINTABLE_CONTROL)
    )
    return non_printable / len(sample) > _MAX_NON_PRINTABLE_RATIO


def is_text_file(path: str, data: bytes) -> bool:
    """
    Return ``True`` when ``data`` can take part in line-based diffs.

    Content must decode as UTF-8. Known text extensions are trusted beyond that;
    anything else must also pass the binary sniff of its first 2 KiB.
    """

    try:
        data.decode("utf-8")
    except UnicodeDecodeError:
        return False
    if extension(path) in _TEXT_EXTENSIONS:
        return True
    return not looks_binary(data)


__all__ = ["extension", "is_text_file", "looks_binary"]
