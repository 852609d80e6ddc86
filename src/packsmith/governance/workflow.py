"""
packsmith — adoption workflow

File: src/packsmith/governance/workflow.py

Purpose
- Tie the pure engine to the caller-owned stores: propose a candidate against
  the current base, adopt a proposal, and lock or unlock a project.

Functional requirements
- Every adoption-intended entry point checks the governance gate first and
  returns ``LockedPackError`` without touching any store when locked.
- Adoption swaps the base pointer with compare-and-swap and re-checks the lock
  inside the swap; a lock landing first returns ``LockedPackError`` and losing
  the race returns ``PatchConflictError(code="base_moved")``.
- Stale proposals return ``PatchConflictError(code="stale_proposal")`` and are
  never force-applied.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from packsmith.constants import DEFAULT_DIFF_CONTEXT_LINES, PROPOSAL_KIND_PATCH
from packsmith.domain.errors import (
    ConflictDetail,
    HashMismatchError,
    LockedPackError,
    PatchConflictError,
)
from packsmith.domain.models import ProposalEvidence
from packsmith.domain.result import Err, Ok
from packsmith.engine.diff import diff_packs
from packsmith.engine.patch import apply_patch, build_patch, patch_digest
from packsmith.governance.proposals import find_spel_file

if TYPE_CHECKING:
    from collections.abc import Sequence

    from packsmith.domain.models import GovernanceState, Patch, Proposal, SpecPack
    from packsmith.governance.evidence import EvidenceLedger
    from packsmith.governance.gate import GovernanceGate
    from packsmith.governance.proposals import ProposalStore
    from packsmith.governance.repository import ProjectRepository

logger = structlog.get_logger(__name__)

AdoptionError = LockedPackError | PatchConflictError | HashMismatchError


@dataclass(frozen=True, slots=True)
class AdoptionReceipt:
    project_id: str
    proposal_id: str
    previous_base_sha256: str
    merged_pack_sha256: str
    patch_ops_sha256: str

    def to_dict(self) -> dict[str, str]:
        return {
            "project_id": self.project_id,
            "proposal_id": self.proposal_id,
            "previous_base_sha256": self.previous_base_sha256,
            "merged_pack_sha256": self.merged_pack_sha256,
            "patch_ops_sha256": self.patch_ops_sha256,
        }


class PackWorkflow:
    def __init__(
        self,
        repository: ProjectRepository,
        gate: GovernanceGate,
        proposals: ProposalStore,
        *,
        ledger: EvidenceLedger | None = None,
        context_lines: int = DEFAULT_DIFF_CONTEXT_LINES,
    ) -> None:
        self._repository = repository
        self._gate = gate
        self._proposals = proposals
        self._ledger = ledger
        self._context_lines = context_lines

    @property
    def gate(self) -> GovernanceGate:
        return self._gate

    @property
    def proposals(self) -> ProposalStore:
        return self._proposals

    def current_base(self, project_id: str) -> SpecPack | None:
        return self._repository.get_base(project_id)

    def seed_base(self, project_id: str, pack: SpecPack) -> Ok[SpecPack] | Err[AdoptionError]:
        """Install the first base pack for a project that has none."""

        gate = self._gate.require_unlocked(project_id)
        if isinstance(gate, Err):
            return gate
        if not self._repository.try_set_base(
            project_id, None, pack, guard=lambda: not self._gate.is_locked(project_id)
        ):
            gate = self._gate.require_unlocked(project_id)
            if isinstance(gate, Err):
                return gate
            return Err(
                PatchConflictError(
                    f"project {project_id!r} already has a base pack",
                    code="base_moved",
                )
            )
        logger.info("base_seeded", project_id=project_id, pack_sha256=pack.pack_sha256)
        return Ok(pack)

    def build_patch_for_adoption(
        self,
        base: SpecPack,
        candidate: SpecPack,
        *,
        summary: str,
    ) -> Ok[Patch] | Err[LockedPackError]:
        gate = self._gate.require_unlocked(base.project_id)
        if isinstance(gate, Err):
            return gate
        diff = diff_packs(base, candidate, context_lines=self._context_lines)
        return Ok(build_patch(base, candidate, diff, summary=summary, base_project_id=base.project_id))

    def apply_for_adoption(
        self,
        base: SpecPack,
        patch: Patch,
    ) -> Ok[SpecPack] | Err[AdoptionError]:
        gate = self._gate.require_unlocked(base.project_id)
        if isinstance(gate, Err):
            return gate
        return apply_patch(base, patch)

    def propose(
        self,
        project_id: str,
        candidate: SpecPack,
        *,
        summary: str,
        rationale: Sequence[str] = (),
        kind: str = PROPOSAL_KIND_PATCH,
        spel_path: str | None = None,
    ) -> Ok[Proposal] | Err[AdoptionError]:
        base = self._repository.get_base(project_id)
        if base is None:
            return Err(
                PatchConflictError(
                    f"project {project_id!r} has no base pack; seed one first",
                    code="no_base",
                )
            )
        if candidate.project_id != project_id:
            return Err(
                PatchConflictError(
                    f"candidate belongs to project {candidate.project_id!r}",
                    code="project_mismatch",
                )
            )

        built = self.build_patch_for_adoption(base, candidate, summary=summary)
        if isinstance(built, Err):
            return built

        evidence = ProposalEvidence(
            base_pack_sha256=base.pack_sha256,
            proposal_pack_sha256=candidate.pack_sha256,
            spel_file_sha256=find_spel_file(candidate, spel_path),
        )
        proposal = self._proposals.create(
            built.value,
            evidence,
            summary=summary,
            rationale=rationale,
            kind=kind,
        )
        if self._ledger is not None:
            self._ledger.record_proposal_created(proposal)
        return Ok(proposal)

    def adopt(self, project_id: str, proposal_id: str) -> Ok[AdoptionReceipt] | Err[AdoptionError]:
        gate = self._gate.require_unlocked(project_id)
        if isinstance(gate, Err):
            return gate

        proposal = self._proposals.get(proposal_id)
        if proposal is None:
            return Err(
                PatchConflictError(f"unknown proposal {proposal_id!r}", code="unknown_proposal")
            )

        base = self._repository.get_base(project_id)
        base_hash = None if base is None else base.pack_sha256
        reason = self._proposals.staleness(
            proposal, project_id=project_id, current_base_sha256=base_hash
        )
        if reason is not None or base is None:
            error = PatchConflictError(
                f"{proposal_id}: {reason}",
                code="stale_proposal",
                conflicts=(
                    ConflictDetail(
                        path="<base>",
                        reason="stale_proposal",
                        expected_sha256=proposal.evidence.base_pack_sha256,
                        actual_sha256=base_hash,
                    ),
                ),
            )
            logger.info("adoption_refused", project_id=project_id, **error.to_dict())
            return Err(error)

        merged = self.apply_for_adoption(base, proposal.patch)
        if isinstance(merged, Err):
            return merged

        if not self._repository.try_set_base(
            project_id,
            base.pack_sha256,
            merged.value,
            guard=lambda: not self._gate.is_locked(project_id),
        ):
            # Lock state may have changed while the merge was computed.
            gate = self._gate.require_unlocked(project_id)
            if isinstance(gate, Err):
                return gate
            error = PatchConflictError(
                f"base for {project_id!r} moved during adoption of {proposal_id}",
                code="base_moved",
            )
            logger.warning("adoption_lost_race", project_id=project_id, proposal_id=proposal_id)
            return Err(error)

        receipt = AdoptionReceipt(
            project_id=project_id,
            proposal_id=proposal_id,
            previous_base_sha256=base.pack_sha256,
            merged_pack_sha256=merged.value.pack_sha256,
            patch_ops_sha256=patch_digest(proposal.patch),
        )
        if self._ledger is not None:
            self._ledger.record_adoption(
                proposal,
                previous_base_sha256=receipt.previous_base_sha256,
                merged_pack_sha256=receipt.merged_pack_sha256,
                patch_ops_sha256=receipt.patch_ops_sha256,
            )
        logger.info("proposal_adopted", **receipt.to_dict())
        return Ok(receipt)

    def lock_current(self, project_id: str) -> Ok[GovernanceState] | Err[PatchConflictError]:
        base = self._repository.get_base(project_id)
        if base is None:
            return Err(
                PatchConflictError(
                    f"project {project_id!r} has no base pack to lock", code="no_base"
                )
            )
        return Ok(self._gate.lock(project_id, base.pack_sha256))

    def unlock(self, project_id: str) -> GovernanceState:
        return self._gate.unlock(project_id)


__all__ = ["AdoptionError", "AdoptionReceipt", "PackWorkflow"]
