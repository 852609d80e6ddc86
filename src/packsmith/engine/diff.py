"""Path-level and line-level comparison of two packs."""

from __future__ import annotations

from typing import TYPE_CHECKING

from packsmith.constants import DEFAULT_DIFF_CONTEXT_LINES
from packsmith.domain.models import DiffReport, ModifiedEntry
from packsmith.engine.text_diff import binary_section, unified_diff

if TYPE_CHECKING:
    from packsmith.domain.models import PackFile, SpecPack

__all__ = ["diff_packs", "render_file_section"]


def render_file_section(
    path: str,
    old: PackFile | None,
    new: PackFile | None,
    *,
    context_lines: int = DEFAULT_DIFF_CONTEXT_LINES,
) -> str:
    """Diff section for one path; binary on either side renders a placeholder."""

    if all(item is None or item.is_text for item in (old, new)):
        return unified_diff(
            path,
            None if old is None else old.text(),
            None if new is None else new.text(),
            context_lines=context_lines,
        )
    return binary_section(path, old_missing=old is None, new_missing=new is None)


def diff_packs(
    base: SpecPack,
    proposal: SpecPack,
    *,
    context_lines: int = DEFAULT_DIFF_CONTEXT_LINES,
) -> DiffReport:
    """
    Compare ``base`` with ``proposal``.

    Shared paths compare by SHA-256 and unchanged files are omitted. Text-to-text
    modifications carry a unified diff; any binary side leaves ``unified_diff``
    empty. ``full_patch`` concatenates every section in path order.
    """

    base_paths = set(base.files)
    proposal_paths = set(proposal.files)
    added = tuple(sorted(proposal_paths - base_paths))
    removed = tuple(sorted(base_paths - proposal_paths))

    modified: list[ModifiedEntry] = []
    sections: list[str] = []
    for path in sorted(base_paths | proposal_paths):
        old = base.get(path)
        new = proposal.get(path)
        if old is not None and new is not None and old.sha256 == new.sha256:
            continue
        section = render_file_section(path, old, new, context_lines=context_lines)
        sections.append(section)
        if old is not None and new is not None:
            is_text = old.is_text and new.is_text
            modified.append(
                ModifiedEntry(
                    path=path,
                    is_text=is_text,
                    old_sha256=old.sha256,
                    new_sha256=new.sha256,
                    unified_diff=section if is_text else None,
                )
            )

    return DiffReport(
        added=added,
        removed=removed,
        modified=tuple(modified),
        full_patch="".join(sections),
    )
