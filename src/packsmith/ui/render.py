"""Output rendering for the packsmith CLI.

File: src/packsmith/ui/render.py

Purpose
- Provide a thin plain-text rendering layer for CLI output, plus the
  pack/proposal/governance views the commands share.

Functional requirements
- Plain-text rendering must always work without external dependencies.
- Hashes are shown truncated; JSON output elsewhere always carries full digests.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from packsmith.utils.hashing import short_hash

if TYPE_CHECKING:
    from collections.abc import Sequence

    from packsmith.domain.models import (
        DiffReport,
        EvidenceCard,
        GovernanceState,
        Proposal,
        SpecPack,
    )


class CLIRenderer:
    """Thin CLI output renderer producing deterministic plain text."""

    def __init__(self, *, verbose: bool = False) -> None:
        self.verbose = verbose

    def kv(self, key: str, value: object) -> None:
        print(f"{key}: {value}")

    def text(self, line: str) -> None:
        print(line)

    def section(self, title: str) -> None:
        print(f"\n{title}")

    def warning(self, text: str) -> None:
        print(f"  Warning: {text}")

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        for entry in entries:
            print(f"  {prefix}{entry}")

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[str]],
        *,
        title: str | None = None,
    ) -> None:
        """Print a formatted ASCII table; nothing is printed for zero rows."""

        if not rows:
            return

        col_count = len(headers)
        widths = [len(h) for h in headers]
        for row in rows:
            for i in range(min(len(row), col_count)):
                widths[i] = max(widths[i], len(str(row[i])))

        def _pad(cells: Sequence[str]) -> str:
            parts: list[str] = []
            for i in range(col_count):
                cell = str(cells[i]) if i < len(cells) else ""
                parts.append(cell.ljust(widths[i]))
            return "  ".join(parts).rstrip()

        if title:
            self.section(title)
        print(f"  {_pad(list(headers))}")
        print(f"  {'  '.join('-' * w for w in widths)}")
        for row in rows:
            print(f"  {_pad(list(row))}")

    def next_steps(self, steps: Sequence[str]) -> None:
        if not steps:
            return
        self.section("Next steps:")
        for step in steps:
            print(f"  $ {step}")


def create_renderer(*, verbose: bool = False) -> CLIRenderer:
    return CLIRenderer(verbose=verbose)


def render_pack(renderer: CLIRenderer, pack: SpecPack) -> None:
    manifest = pack.manifest
    renderer.kv("Project", pack.project_id)
    renderer.kv("Pack sha256", pack.pack_sha256)
    renderer.kv("Pack version", manifest.pack_version)
    renderer.kv("Created", manifest.created_at_utc)
    renderer.kv(
        "Provenance",
        f"producer {manifest.provenance.producer_version}, "
        f"validator {manifest.provenance.validator_version}",
    )
    renderer.table(
        ("PATH", "SIZE", "KIND", "SHA256"),
        [
            (
                pack_file.path,
                str(pack_file.size),
                "text" if pack_file.is_text else "binary",
                short_hash(pack_file.sha256),
            )
            for pack_file in pack.files.values()
        ],
        title="Files:",
    )


def render_diff(renderer: CLIRenderer, report: DiffReport) -> None:
    if report.is_empty:
        renderer.text("No differences.")
        return
    stats = report.stats()
    renderer.text(
        f"{stats['added']} added, {stats['removed']} removed, {stats['modified']} modified"
    )
    renderer.text("")
    renderer.text(report.full_patch.rstrip("\n"))


def render_proposals(renderer: CLIRenderer, proposals: Sequence[Proposal]) -> None:
    if not proposals:
        renderer.text("No proposals.")
        return
    renderer.table(
        ("ID", "CREATED", "KIND", "BASE", "SUMMARY"),
        [
            (
                proposal.id,
                proposal.created_at_utc,
                proposal.kind,
                short_hash(proposal.evidence.base_pack_sha256)
                if proposal.evidence.base_pack_sha256
                else "-",
                proposal.summary,
            )
            for proposal in proposals
        ],
    )


def render_governance(
    renderer: CLIRenderer,
    state: GovernanceState,
    *,
    base_sha256: str | None,
    cards: Sequence[EvidenceCard] = (),
) -> None:
    renderer.kv("Project", state.project_id)
    renderer.kv("Base", base_sha256 or "(none)")
    if state.locked and state.locked_pack_sha256 is not None:
        renderer.kv("Governance", f"locked at {short_hash(state.locked_pack_sha256)}")
        renderer.kv("Locked since", state.locked_at_utc or "-")
        if base_sha256 is not None and base_sha256 != state.locked_pack_sha256:
            renderer.warning("base pack does not match the locked snapshot")
    else:
        renderer.kv("Governance", "unlocked")
    if cards:
        renderer.section("Recent evidence:")
        renderer.items([f"{card.created_at_utc} {card.kind}: {card.summary}" for card in cards])


__all__ = [
    "CLIRenderer",
    "create_renderer",
    "render_diff",
    "render_governance",
    "render_pack",
    "render_proposals",
]
