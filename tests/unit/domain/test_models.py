"""Strict validation and dict round-trips for domain records."""

from __future__ import annotations

import pytest

from packsmith.domain.errors import (
    ConflictDetail,
    HashMismatchError,
    LockedPackError,
    PatchConflictError,
    SchemaError,
)
from packsmith.domain.models import (
    ChangeOp,
    EvidenceCard,
    EvidenceKind,
    FileChange,
    GovernanceState,
    PackFile,
    Patch,
    Proposal,
    ProposalEvidence,
)
from packsmith.domain.result import Err, Ok

_SHA_A = "a" * 64
_SHA_B = "b" * 64


def test_pack_file_derives_hash_size_and_kind() -> None:
    pack_file = PackFile(path="spec/a.spel", data=b"model A {}\n")
    assert pack_file.size == 11
    assert pack_file.is_text is True
    assert len(pack_file.sha256) == 64


def test_pack_file_refuses_manifest_path() -> None:
    with pytest.raises(SchemaError, match="reserved"):
        PackFile(path="spec_pack_manifest.json", data=b"{}")


@pytest.mark.parametrize(
    "kwargs",
    [
        {"op": ChangeOp.ADD, "is_text": True},
        {"op": ChangeOp.REMOVE, "is_text": True, "new_sha256": _SHA_A},
        {"op": ChangeOp.MODIFY, "is_text": False, "old_sha256": _SHA_A, "new_sha256": _SHA_B},
        {"op": ChangeOp.ADD, "is_text": True, "new_sha256": _SHA_A, "post_image_b64": "AA=="},
        {"op": ChangeOp.REMOVE, "is_text": True, "old_sha256": "ABC"},
    ],
)
def test_file_change_invariants(kwargs: dict[str, object]) -> None:
    with pytest.raises(SchemaError):
        FileChange(path="a.txt", **kwargs)  # type: ignore[arg-type]


def test_patch_rejects_duplicate_paths() -> None:
    add = FileChange(path="a.txt", op=ChangeOp.ADD, is_text=True, new_sha256=_SHA_A)
    remove = FileChange(path="a.txt", op=ChangeOp.REMOVE, is_text=True, old_sha256=_SHA_B)
    with pytest.raises(SchemaError, match="more than once"):
        Patch(base_project_id="demo", patch_text="", added=(add,), removed=(remove,))


def test_patch_dict_round_trip() -> None:
    patch = Patch(
        base_project_id="demo",
        patch_text="diff --git a/a.txt b/a.txt\n",
        added=(FileChange(path="a.txt", op=ChangeOp.ADD, is_text=True, new_sha256=_SHA_A),),
        summary="add a",
    )
    assert Patch.from_dict(patch.to_dict()) == patch


def test_patch_from_dict_requires_sorted_unique_changes() -> None:
    payload = Patch(base_project_id="demo", patch_text="").to_dict()
    payload["structured_changes"] = {
        "added": [
            FileChange(path="b.txt", op=ChangeOp.ADD, is_text=True, new_sha256=_SHA_A).to_dict(),
            FileChange(path="a.txt", op=ChangeOp.ADD, is_text=True, new_sha256=_SHA_A).to_dict(),
        ],
        "removed": [],
        "modified": [],
    }
    with pytest.raises(SchemaError, match="sorted"):
        Patch.from_dict(payload)


def test_proposal_round_trip_and_flags() -> None:
    proposal = Proposal(
        id="proposal_aaaaaaaaaaaa",
        kind="spec_pack_patch",
        created_at_utc="2026-02-01T12:00:00.000Z",
        summary="s",
        rationale=("because",),
        patch=Patch(base_project_id="demo", patch_text=""),
        evidence=ProposalEvidence(base_pack_sha256=_SHA_A, proposal_pack_sha256=_SHA_B),
    )
    assert Proposal.from_dict(proposal.to_dict()) == proposal
    assert proposal.project_id == "demo"
    assert proposal.is_patch_kind and not proposal.is_legacy


def test_proposal_rejects_naive_timestamp() -> None:
    with pytest.raises(SchemaError, match="timezone"):
        Proposal(
            id="proposal_x",
            kind="spec_pack_patch",
            created_at_utc="2026-02-01T12:00:00",
            summary="",
            rationale=(),
            patch=Patch(base_project_id="demo", patch_text=""),
            evidence=ProposalEvidence(base_pack_sha256=None, proposal_pack_sha256=None),
        )


def test_governance_state_requires_hash_when_locked() -> None:
    with pytest.raises(SchemaError, match="required while locked"):
        GovernanceState(project_id="demo", locked=True)


def test_governance_state_round_trip() -> None:
    state = GovernanceState(
        project_id="demo",
        locked=True,
        locked_at_utc="2026-02-01T12:00:00.000Z",
        locked_pack_sha256=_SHA_A,
    )
    assert GovernanceState.from_dict(state.to_dict()) == state


def test_evidence_card_data_is_read_only() -> None:
    card = EvidenceCard(
        id="ev_1",
        project_id="demo",
        kind=EvidenceKind.SPEC_LOCK,
        created_at_utc="2026-02-01T12:00:00.000Z",
        title="t",
        summary="s",
        data={"pack_sha256": _SHA_A},
    )
    with pytest.raises(TypeError):
        card.data["pack_sha256"] = "x"  # type: ignore[index]
    assert EvidenceCard.from_dict(card.to_dict()) == card


def test_error_payloads_carry_structured_detail() -> None:
    conflict = PatchConflictError(
        "diverged",
        conflicts=(ConflictDetail(path="a.txt", reason="base_diverged", expected_sha256=_SHA_A),),
    )
    assert conflict.to_dict()["conflicts"] == [
        {"path": "a.txt", "reason": "base_diverged", "expected_sha256": _SHA_A, "actual_sha256": None}
    ]
    assert HashMismatchError("a.txt", expected=_SHA_A, actual=_SHA_B).code == "hash_mismatch"
    locked = LockedPackError("demo", locked_pack_sha256=_SHA_A)
    assert locked.to_dict()["locked_pack_sha256"] == _SHA_A
    assert locked.code == "locked"


def test_result_unwrap() -> None:
    assert Ok(3).unwrap() == 3
    with pytest.raises(SchemaError):
        Err(SchemaError("bad")).unwrap()
