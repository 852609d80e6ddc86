"""End-to-end adoption workflow over the in-memory stores."""

from __future__ import annotations

from collections.abc import Callable

from packsmith.constants import PROPOSAL_SCHEMA_V1
from packsmith.domain.errors import LockedPackError, PatchConflictError
from packsmith.domain.models import EvidenceKind, SpecPack
from packsmith.domain.result import Err, Ok
from packsmith.domain.schemas import proposal_from_raw
from packsmith.governance.repository import InMemoryProjectRepository

from .. import PROJECT_ID, SPEL_V2, WorkflowHarness, make_pack, make_workflow, with_changes


class _RacingRepository(InMemoryProjectRepository):
    """Repository that can lose its next compare-and-swap or run a hook just before it."""

    def __init__(self) -> None:
        super().__init__()
        self.lose_next_swap = False
        self.before_next_swap: Callable[[], object] | None = None

    def try_set_base(
        self,
        project_id: str,
        expected_prior_hash: str | None,
        new_pack: SpecPack,
        *,
        guard: Callable[[], bool] | None = None,
    ) -> bool:
        if self.before_next_swap is not None:
            hook, self.before_next_swap = self.before_next_swap, None
            hook()
        if self.lose_next_swap:
            self.lose_next_swap = False
            return False
        return super().try_set_base(project_id, expected_prior_hash, new_pack, guard=guard)


def _seeded(repository: InMemoryProjectRepository | None = None) -> tuple[WorkflowHarness, SpecPack]:
    harness = make_workflow(repository=repository)
    base = make_pack()
    assert isinstance(harness.workflow.seed_base(PROJECT_ID, base), Ok)
    return harness, base


def test_seed_installs_first_base_only_once() -> None:
    harness, base = _seeded()
    assert harness.workflow.current_base(PROJECT_ID) == base

    again = harness.workflow.seed_base(PROJECT_ID, make_pack({"x.txt": "x"}))
    assert isinstance(again, Err)
    assert again.error.code == "base_moved"
    assert harness.workflow.current_base(PROJECT_ID) == base


def test_propose_requires_a_base() -> None:
    harness = make_workflow()
    result = harness.workflow.propose(PROJECT_ID, make_pack(), summary="first")
    assert isinstance(result, Err)
    assert result.error.code == "no_base"
    assert harness.proposals.list(PROJECT_ID) == []


def test_propose_rejects_foreign_candidate() -> None:
    harness, _ = _seeded()
    foreign = make_pack(project_id="elsewhere")
    result = harness.workflow.propose(PROJECT_ID, foreign, summary="wrong project")
    assert isinstance(result, Err)
    assert result.error.code == "project_mismatch"


def test_propose_records_evidence_and_adopt_moves_base() -> None:
    harness, base = _seeded()
    candidate = with_changes(base, upsert={"spec/a.spel": SPEL_V2}, remove=("README.md",))

    proposed = harness.workflow.propose(
        PROJECT_ID, candidate, summary="add email", rationale=["customers asked"]
    )
    assert isinstance(proposed, Ok)
    proposal = proposed.value
    assert proposal.evidence.base_pack_sha256 == base.pack_sha256
    assert proposal.evidence.proposal_pack_sha256 == candidate.pack_sha256
    assert proposal.evidence.spel_file_sha256 is not None
    assert proposal.rationale == ("customers asked",)

    adopted = harness.workflow.adopt(PROJECT_ID, proposal.id)
    assert isinstance(adopted, Ok)
    receipt = adopted.value
    assert receipt.previous_base_sha256 == base.pack_sha256
    assert receipt.merged_pack_sha256 == candidate.pack_sha256

    current = harness.workflow.current_base(PROJECT_ID)
    assert current is not None
    assert current.pack_sha256 == candidate.pack_sha256

    kinds = [card.kind for card in harness.ledger.cards(PROJECT_ID)]
    assert kinds == [EvidenceKind.PROPOSAL_ADOPTED, EvidenceKind.PROPOSAL_CREATED]
    adopted_card = harness.ledger.cards(PROJECT_ID)[0]
    assert adopted_card.data["proposal_id"] == proposal.id
    assert adopted_card.data["patch_ops_sha256"] == receipt.patch_ops_sha256


def test_lock_blocks_every_adoption_path_without_side_effects() -> None:
    harness, base = _seeded()
    candidate = with_changes(base, upsert={"spec/a.spel": SPEL_V2})
    proposal = harness.workflow.propose(PROJECT_ID, candidate, summary="before lock").unwrap()

    locked = harness.workflow.lock_current(PROJECT_ID)
    assert isinstance(locked, Ok)
    assert locked.value.locked_pack_sha256 == base.pack_sha256

    refused_propose = harness.workflow.propose(
        PROJECT_ID, with_changes(base, upsert={"new.txt": "n"}), summary="during lock"
    )
    refused_adopt = harness.workflow.adopt(PROJECT_ID, proposal.id)
    refused_seed = harness.workflow.seed_base("fresh", make_pack(project_id="fresh"))
    refused_apply = harness.workflow.apply_for_adoption(base, proposal.patch)

    assert isinstance(refused_propose, Err)
    assert isinstance(refused_propose.error, LockedPackError)
    assert isinstance(refused_adopt, Err)
    assert isinstance(refused_adopt.error, LockedPackError)
    assert isinstance(refused_apply, Err)
    # "fresh" is a different project and carries its own lock state.
    assert isinstance(refused_seed, Ok)

    assert harness.workflow.current_base(PROJECT_ID) == base
    assert [p.id for p in harness.proposals.list(PROJECT_ID)] == [proposal.id]

    harness.workflow.unlock(PROJECT_ID)
    assert isinstance(harness.workflow.adopt(PROJECT_ID, proposal.id), Ok)


def test_second_proposal_goes_stale_after_adoption() -> None:
    harness, base = _seeded()
    first = harness.workflow.propose(
        PROJECT_ID, with_changes(base, upsert={"spec/a.spel": SPEL_V2}), summary="one"
    ).unwrap()
    second = harness.workflow.propose(
        PROJECT_ID, with_changes(base, upsert={"notes.txt": "hi\n"}), summary="two"
    ).unwrap()

    assert isinstance(harness.workflow.adopt(PROJECT_ID, first.id), Ok)
    moved = harness.workflow.current_base(PROJECT_ID)

    result = harness.workflow.adopt(PROJECT_ID, second.id)
    assert isinstance(result, Err)
    assert isinstance(result.error, PatchConflictError)
    assert result.error.code == "stale_proposal"
    assert result.error.conflicts[0].expected_sha256 == base.pack_sha256
    assert harness.workflow.current_base(PROJECT_ID) == moved


def test_unknown_proposal_is_reported() -> None:
    harness, _ = _seeded()
    result = harness.workflow.adopt(PROJECT_ID, "proposal_000000000000")
    assert isinstance(result, Err)
    assert result.error.code == "unknown_proposal"


def test_lost_compare_and_swap_reports_base_moved() -> None:
    repository = _RacingRepository()
    harness, base = _seeded(repository=repository)
    proposal = harness.workflow.propose(
        PROJECT_ID, with_changes(base, upsert={"spec/a.spel": SPEL_V2}), summary="race"
    ).unwrap()

    repository.lose_next_swap = True
    result = harness.workflow.adopt(PROJECT_ID, proposal.id)
    assert isinstance(result, Err)
    assert result.error.code == "base_moved"
    assert harness.workflow.current_base(PROJECT_ID) == base
    kinds = [card.kind for card in harness.ledger.cards(PROJECT_ID)]
    assert EvidenceKind.PROPOSAL_ADOPTED not in kinds


def test_lock_landing_before_the_swap_refuses_adoption() -> None:
    repository = _RacingRepository()
    harness, base = _seeded(repository=repository)
    proposal = harness.workflow.propose(
        PROJECT_ID, with_changes(base, upsert={"spec/a.spel": SPEL_V2}), summary="late lock"
    ).unwrap()

    repository.before_next_swap = lambda: harness.gate.lock(PROJECT_ID, base.pack_sha256)
    result = harness.workflow.adopt(PROJECT_ID, proposal.id)
    assert isinstance(result, Err)
    assert isinstance(result.error, LockedPackError)
    assert result.error.locked_pack_sha256 == base.pack_sha256
    assert harness.workflow.current_base(PROJECT_ID) == base
    kinds = [card.kind for card in harness.ledger.cards(PROJECT_ID)]
    assert EvidenceKind.PROPOSAL_ADOPTED not in kinds


def test_identical_candidates_share_one_proposal() -> None:
    harness, base = _seeded()
    candidate = with_changes(base, upsert={"spec/a.spel": SPEL_V2})
    first = harness.workflow.propose(PROJECT_ID, candidate, summary="same").unwrap()
    second = harness.workflow.propose(PROJECT_ID, candidate, summary="same").unwrap()
    assert first == second
    assert len(harness.proposals.list(PROJECT_ID)) == 1


def test_lock_current_needs_a_base() -> None:
    harness = make_workflow()
    result = harness.workflow.lock_current(PROJECT_ID)
    assert isinstance(result, Err)
    assert result.error.code == "no_base"
    assert not harness.gate.is_locked(PROJECT_ID)


def test_unlock_records_previous_lock() -> None:
    harness, base = _seeded()
    harness.workflow.lock_current(PROJECT_ID)
    state = harness.workflow.unlock(PROJECT_ID)
    assert not state.locked
    assert state.history[-1].locked_pack_sha256 == base.pack_sha256
    card = harness.ledger.cards(PROJECT_ID)[0]
    assert card.kind == EvidenceKind.SPEC_UNLOCK
    assert card.data["previous_locked_pack_sha256"] == base.pack_sha256


def test_legacy_proposal_is_never_adopted() -> None:
    harness, base = _seeded()
    legacy = proposal_from_raw(
        {
            "schema": PROPOSAL_SCHEMA_V1,
            "id": "proposal_legacy01",
            "created_at_utc": "2024-01-01T00:00:00.000Z",
            "summary": "old style",
            "base_project_id": PROJECT_ID,
            "patch": "diff --git a/README.md b/README.md\n",
        }
    )
    harness.proposals.put_existing(legacy)

    result = harness.workflow.adopt(PROJECT_ID, legacy.id)
    assert isinstance(result, Err)
    assert result.error.code == "stale_proposal"
    assert "regenerated" in result.error.message
    assert harness.workflow.current_base(PROJECT_ID) == base
