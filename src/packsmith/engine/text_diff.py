"""
packsmith — line-based unified diffs

File: src/packsmith/engine/text_diff.py

Purpose
- Render git-style unified diff sections for one file, parse a multi-file
  patch text back into per-file hunks, and replay hunks against a base text.

Functional requirements
- Text splits on ``\\n`` only; ``\\r`` stays part of a line's content.
- A final line without a newline is followed by ``\\ No newline at end of file``
  so replay reproduces the post-image byte for byte.
- Replay verifies every context and removed line against the base and raises
  ``PatchConflictError`` on the first disagreement.

Non-functional requirements
- ``difflib.SequenceMatcher`` with autojunk disabled computes the opcodes.
"""

from __future__ import annotations

import difflib
import re
from dataclasses import dataclass
from typing import Final

from packsmith.constants import DEFAULT_DIFF_CONTEXT_LINES
from packsmith.domain.errors import ConflictDetail, PatchConflictError

_NO_NEWLINE_MARKER: Final[str] = "\\ No newline at end of file"
_DEV_NULL: Final[str] = "/dev/null"
_SECTION_PREFIX: Final[str] = "diff --git "
_HUNK_HEADER_RE: Final[re.Pattern[str]] = re.compile(
    r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@"
)

Line = tuple[str, bool]

__all__ = [
    "FilePatch",
    "Hunk",
    "HunkLine",
    "binary_section",
    "parse_patch_text",
    "replay_file_patch",
    "split_lines",
    "unified_diff",
]


@dataclass(frozen=True, slots=True)
class HunkLine:
    tag: str
    content: str
    newline: bool = True


@dataclass(frozen=True, slots=True)
class Hunk:
    old_start: int
    old_len: int
    new_start: int
    new_len: int
    lines: tuple[HunkLine, ...]

    @property
    def old_index(self) -> int:
        """Zero-based index of the first base line this hunk touches."""

        return self.old_start if self.old_len == 0 else self.old_start - 1


@dataclass(frozen=True, slots=True)
class FilePatch:
    path: str
    old_missing: bool = False
    new_missing: bool = False
    binary: bool = False
    hunks: tuple[Hunk, ...] = ()


def split_lines(text: str) -> list[Line]:
    """Split on ``\\n`` into ``(content, has_newline)`` records."""

    if not text:
        return []
    parts = text.split("\n")
    if parts[-1] == "":
        return [(part, True) for part in parts[:-1]]
    return [(part, True) for part in parts[:-1]] + [(parts[-1], False)]


def _join_lines(lines: list[Line]) -> str:
    return "".join(content + ("\n" if newline else "") for content, newline in lines)


def _range(start: int, length: int) -> str:
    # An empty range names the line before the insertion point.
    return f"{start + 1 if length else start},{length}"


def _section_header(path: str, *, old_missing: bool, new_missing: bool) -> list[str]:
    return [
        f"{_SECTION_PREFIX}a/{path} b/{path}",
        f"--- {_DEV_NULL if old_missing else 'a/' + path}",
        f"+++ {_DEV_NULL if new_missing else 'b/' + path}",
    ]


def _render_line(prefix: str, line: Line) -> list[str]:
    content, newline = line
    rendered = [prefix + content]
    if not newline:
        rendered.append(_NO_NEWLINE_MARKER)
    return rendered


def unified_diff(
    path: str,
    old: str | None,
    new: str | None,
    *,
    context_lines: int = DEFAULT_DIFF_CONTEXT_LINES,
) -> str:
    """
    Return one file's diff section. ``old=None`` means added, ``new=None`` removed.

    The section always ends with a newline; identical inputs yield a header
    with no hunks.
    """

    if context_lines < 0:
        raise ValueError("context_lines must be >= 0")
    a = split_lines(old or "")
    b = split_lines(new or "")
    out = _section_header(path, old_missing=old is None, new_missing=new is None)

    matcher = difflib.SequenceMatcher(a=a, b=b, autojunk=False)
    for group in matcher.get_grouped_opcodes(context_lines):
        if all(tag == "equal" for tag, *_ in group):
            continue
        i1, i2 = group[0][1], group[-1][2]
        j1, j2 = group[0][3], group[-1][4]
        out.append(f"@@ -{_range(i1, i2 - i1)} +{_range(j1, j2 - j1)} @@")
        for tag, g_i1, g_i2, g_j1, g_j2 in group:
            if tag == "equal":
                for line in a[g_i1:g_i2]:
                    out.extend(_render_line(" ", line))
                continue
            if tag in {"replace", "delete"}:
                for line in a[g_i1:g_i2]:
                    out.extend(_render_line("-", line))
            if tag in {"replace", "insert"}:
                for line in b[g_j1:g_j2]:
                    out.extend(_render_line("+", line))
    return "\n".join(out) + "\n"


def binary_section(path: str, *, old_missing: bool, new_missing: bool) -> str:
    old_label = _DEV_NULL if old_missing else f"a/{path}"
    new_label = _DEV_NULL if new_missing else f"b/{path}"
    return (
        f"{_SECTION_PREFIX}a/{path} b/{path}\n"
        f"Binary files {old_label} and {new_label} differ\n"
    )


def _malformed(message: str, *, path: str = "<patch>") -> PatchConflictError:
    return PatchConflictError(
        f"patch text is malformed: {message}",
        code="malformed_patch",
        conflicts=(ConflictDetail(path=path, reason="malformed_patch"),),
    )


def _section_path(line: str) -> str:
    rest = line[len(_SECTION_PREFIX) :]
    length = (len(rest) - 5) // 2
    path = rest[2 : 2 + length]
    if length <= 0 or rest != f"a/{path} b/{path}":
        raise _malformed(f"cannot read path from {line!r}")
    return path


class _Cursor:
    __slots__ = ("index", "lines")

    def __init__(self, lines: list[str]) -> None:
        self.lines = lines
        self.index = 0

    def peek(self) -> str | None:
        return self.lines[self.index] if self.index < len(self.lines) else None

    def take(self) -> str:
        line = self.lines[self.index]
        self.index += 1
        return line


def _parse_hunk(header: str, cursor: _Cursor, path: str) -> Hunk:
    match = _HUNK_HEADER_RE.match(header)
    if match is None:
        raise _malformed(f"bad hunk header {header!r}", path=path)
    old_start = int(match.group(1))
    old_len = int(match.group(2)) if match.group(2) is not None else 1
    new_start = int(match.group(3))
    new_len = int(match.group(4)) if match.group(4) is not None else 1

    lines: list[HunkLine] = []
    old_seen = new_seen = 0
    while old_seen < old_len or new_seen < new_len:
        raw = cursor.peek()
        if raw is None:
            raise _malformed("hunk is truncated", path=path)
        cursor.take()
        tag, content = (raw[:1], raw[1:]) if raw else (" ", "")
        if tag == " ":
            old_seen += 1
            new_seen += 1
        elif tag == "-":
            old_seen += 1
        elif tag == "+":
            new_seen += 1
        else:
            raise _malformed(f"unexpected hunk line {raw!r}", path=path)
        newline = True
        if cursor.peek() == _NO_NEWLINE_MARKER:
            cursor.take()
            newline = False
        lines.append(HunkLine(tag=tag, content=content, newline=newline))

    if old_seen != old_len or new_seen != new_len:
        raise _malformed("hunk line counts do not match its header", path=path)
    return Hunk(
        old_start=old_start,
        old_len=old_len,
        new_start=new_start,
        new_len=new_len,
        lines=tuple(lines),
    )


def parse_patch_text(patch_text: str) -> dict[str, FilePatch]:
    """Parse a multi-file patch into ``{path: FilePatch}``; raises ``PatchConflictError``."""

    raw_lines = patch_text.split("\n")
    if raw_lines and raw_lines[-1] == "":
        raw_lines.pop()
    cursor = _Cursor(raw_lines)
    patches: dict[str, FilePatch] = {}

    while cursor.peek() is not None:
        line = cursor.take()
        if not line.startswith(_SECTION_PREFIX):
            raise _malformed(f"expected a file section, got {line!r}")
        path = _section_path(line)
        if path in patches:
            raise _malformed("file appears in more than one section", path=path)

        old_missing = new_missing = binary = False
        hunks: list[Hunk] = []
        while (following := cursor.peek()) is not None and not following.startswith(
            _SECTION_PREFIX
        ):
            cursor.take()
            if following.startswith("--- "):
                old_missing = following[4:] == _DEV_NULL
            elif following.startswith("+++ "):
                new_missing = following[4:] == _DEV_NULL
            elif following.startswith("Binary files "):
                binary = True
                old_missing = following.startswith(f"Binary files {_DEV_NULL} ")
                new_missing = following.endswith(f" and {_DEV_NULL} differ")
            elif following.startswith("@@ "):
                hunks.append(_parse_hunk(following, cursor, path))
            else:
                raise _malformed(f"unexpected line {following!r}", path=path)

        patches[path] = FilePatch(
            path=path,
            old_missing=old_missing,
            new_missing=new_missing,
            binary=binary,
            hunks=tuple(hunks),
        )
    return patches


def replay_file_patch(old_text: str, file_patch: FilePatch) -> str:
    """Apply ``file_patch`` hunks to ``old_text`` and return the post-image text."""

    path = file_patch.path
    if file_patch.binary:
        raise _malformed("binary sections cannot be replayed", path=path)
    base = split_lines(old_text)
    out: list[Line] = []
    cursor = 0

    for hunk in file_patch.hunks:
        start = hunk.old_index
        if start < cursor or start > len(base):
            raise PatchConflictError(
                f"{path}: hunk at line {hunk.old_start} is out of range",
                conflicts=(ConflictDetail(path=path, reason="hunk_out_of_range"),),
            )
        out.extend(base[cursor:start])
        cursor = start
        for hunk_line in hunk.lines:
            record = (hunk_line.content, hunk_line.newline)
            if hunk_line.tag == "+":
                out.append(record)
                continue
            if cursor >= len(base) or base[cursor] != record:
                raise PatchConflictError(
                    f"{path}: base disagrees with patch context at line {cursor + 1}",
                    conflicts=(ConflictDetail(path=path, reason="context_mismatch"),),
                )
            if hunk_line.tag == " ":
                out.append(record)
            cursor += 1

    out.extend(base[cursor:])
    return _join_lines(out)
