"""Evidence ledger: card ids, ordering and per-project scoping."""

from __future__ import annotations

from packsmith.domain.models import EvidenceKind
from packsmith.governance.evidence import EvidenceLedger, InMemoryEvidenceStore, evidence_card_id

from .. import StepClock


def test_card_id_is_stamped_and_content_addressed() -> None:
    card_id = evidence_card_id(
        project_id="demo",
        kind=EvidenceKind.SPEC_LOCK,
        created_at_utc="2026-02-01T12:00:00.000Z",
        title="t",
        summary="s",
        data={},
    )
    assert card_id.startswith("ev_20260201120000_")
    assert len(card_id) == len("ev_20260201120000_") + 8
    assert card_id == evidence_card_id(
        project_id="demo",
        kind=EvidenceKind.SPEC_LOCK,
        created_at_utc="2026-02-01T12:00:00.000Z",
        title="t",
        summary="s",
        data={},
    )


def test_cards_are_newest_first_and_limited() -> None:
    ledger = EvidenceLedger(InMemoryEvidenceStore(), clock=StepClock())
    ledger.record_lock("demo", "a" * 64)
    ledger.record_unlock("demo", "a" * 64)
    ledger.record_lock("other", "b" * 64)

    cards = ledger.cards("demo")
    assert [card.kind for card in cards] == [EvidenceKind.SPEC_UNLOCK, EvidenceKind.SPEC_LOCK]
    assert ledger.cards("demo", limit=1)[0].kind == EvidenceKind.SPEC_UNLOCK
    assert [card.project_id for card in ledger.cards("other")] == ["other"]


def test_unlock_without_prior_lock_is_recorded() -> None:
    ledger = EvidenceLedger(InMemoryEvidenceStore(), clock=StepClock())
    card = ledger.record_unlock("demo", None)
    assert card.summary == "Unlocked (previous lock none)."
    assert card.data["previous_locked_pack_sha256"] is None
