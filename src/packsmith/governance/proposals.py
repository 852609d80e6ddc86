"""
packsmith — proposal store

File: src/packsmith/governance/proposals.py

Purpose
- Create content-addressed proposals and decide whether one may still be applied.

Functional requirements
- The proposal id is ``proposal_`` plus a prefix of the proposal-pack hash, so the
  same candidate content always maps to the same id.
- Re-creating a proposal with identical evidence returns the stored record.
  A record whose base evidence differs is superseded by the new one.
- A proposal is applyable only for its own project and only while its recorded
  base hash equals the project's current base hash. Legacy text-only
  proposals are never applyable.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, Protocol

import structlog

from packsmith.constants import PROPOSAL_ID_PREFIX, PROPOSAL_KIND_PATCH, SHORT_HASH_LENGTH
from packsmith.domain.models import Proposal, ProposalApply, utc_now_iso
from packsmith.utils.hashing import short_hash

if TYPE_CHECKING:
    from collections.abc import Sequence

    from packsmith.domain.models import Patch, ProposalEvidence, SpecPack

logger = structlog.get_logger(__name__)


class ProposalRepository(Protocol):
    def get(self, proposal_id: str) -> Proposal | None: ...

    def put(self, proposal: Proposal) -> None: ...

    def list(self, project_id: str) -> list[Proposal]: ...


class InMemoryProposalRepository:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._proposals: dict[str, Proposal] = {}

    def get(self, proposal_id: str) -> Proposal | None:
        with self._lock:
            return self._proposals.get(proposal_id)

    def put(self, proposal: Proposal) -> None:
        with self._lock:
            self._proposals[proposal.id] = proposal

    def list(self, project_id: str) -> list[Proposal]:
        with self._lock:
            return [item for item in self._proposals.values() if item.project_id == project_id]


def proposal_id_for(proposal_pack_sha256: str, *, prefix_length: int = SHORT_HASH_LENGTH) -> str:
    return f"{PROPOSAL_ID_PREFIX}{short_hash(proposal_pack_sha256, prefix_length)}"


def find_spel_file(pack: SpecPack, spel_path: str | None = None) -> str | None:
    """Hash of ``spel_path``, or of the first ``.spel`` file when no path is given."""

    if spel_path is not None:
        pack_file = pack.get(spel_path)
        return None if pack_file is None else pack_file.sha256
    for path, pack_file in pack.files.items():
        if path.endswith(".spel"):
            return pack_file.sha256
    return None


def sort_newest_first(proposals: Sequence[Proposal]) -> list[Proposal]:
    by_id = sorted(proposals, key=lambda item: item.id)
    return sorted(by_id, key=lambda item: item.created_at_utc, reverse=True)


class ProposalStore:
    def __init__(
        self,
        repository: ProposalRepository,
        *,
        clock: Callable[[], str] = utc_now_iso,
        id_prefix_length: int = SHORT_HASH_LENGTH,
        default_apply: ProposalApply | None = None,
    ) -> None:
        if not 8 <= id_prefix_length <= 64:
            raise ValueError("id_prefix_length must be between 8 and 64")
        self._repository = repository
        self._clock = clock
        self._id_prefix_length = id_prefix_length
        self._default_apply = default_apply if default_apply is not None else ProposalApply()

    def create(
        self,
        patch: Patch,
        evidence: ProposalEvidence,
        *,
        summary: str,
        rationale: Sequence[str] = (),
        kind: str = PROPOSAL_KIND_PATCH,
        apply: ProposalApply | None = None,
        created_at_utc: str | None = None,
    ) -> Proposal:
        if evidence.proposal_pack_sha256 is None:
            raise ValueError("evidence.proposal_pack_sha256 is required to derive a proposal id")
        proposal_id = proposal_id_for(
            evidence.proposal_pack_sha256, prefix_length=self._id_prefix_length
        )

        existing = self._repository.get(proposal_id)
        if existing is not None and existing.evidence == evidence and existing.patch == patch:
            logger.info("proposal_deduplicated", proposal_id=proposal_id)
            return existing

        proposal = Proposal(
            id=proposal_id,
            kind=kind,
            created_at_utc=created_at_utc if created_at_utc is not None else self._clock(),
            summary=summary,
            rationale=tuple(rationale),
            patch=patch,
            evidence=evidence,
            apply=apply if apply is not None else self._default_apply,
        )
        self._repository.put(proposal)
        logger.info(
            "proposal_created",
            proposal_id=proposal_id,
            project_id=proposal.project_id,
            superseded=existing is not None,
            **patch.stats(),
        )
        return proposal

    def get(self, proposal_id: str) -> Proposal | None:
        return self._repository.get(proposal_id)

    def list(self, project_id: str) -> list[Proposal]:
        return sort_newest_first(self._repository.list(project_id))

    def put_existing(self, proposal: Proposal) -> None:
        """Store an already-built record, e.g. one upgraded from a legacy file."""

        self._repository.put(proposal)

    def is_applyable(
        self,
        proposal: Proposal,
        *,
        project_id: str,
        current_base_sha256: str | None,
    ) -> bool:
        return is_applyable(
            proposal, project_id=project_id, current_base_sha256=current_base_sha256
        )

    def staleness(
        self,
        proposal: Proposal,
        *,
        project_id: str,
        current_base_sha256: str | None,
    ) -> str | None:
        return staleness(proposal, project_id=project_id, current_base_sha256=current_base_sha256)


def staleness(
    proposal: Proposal,
    *,
    project_id: str,
    current_base_sha256: str | None,
) -> str | None:
    """Reason ``proposal`` cannot be applied now, or ``None`` when it can."""

    if proposal.is_legacy or not proposal.is_patch_kind:
        return f"{proposal.kind} proposals carry no structured changes and must be regenerated"
    if proposal.project_id != project_id:
        return f"proposal targets project {proposal.project_id!r}, not {project_id!r}"
    if current_base_sha256 is None:
        return "project has no base pack"
    if proposal.evidence.base_pack_sha256 != current_base_sha256:
        return "base pack has changed since this proposal was computed"
    return None


def is_applyable(
    proposal: Proposal,
    *,
    project_id: str,
    current_base_sha256: str | None,
) -> bool:
    return staleness(proposal, project_id=project_id, current_base_sha256=current_base_sha256) is None


__all__ = [
    "InMemoryProposalRepository",
    "ProposalRepository",
    "ProposalStore",
    "find_spel_file",
    "is_applyable",
    "proposal_id_for",
    "sort_newest_first",
    "staleness",
]
