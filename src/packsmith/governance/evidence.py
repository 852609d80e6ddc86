"""
packsmith — evidence ledger

File: src/packsmith/governance/evidence.py

Purpose
- Append-only record of governance and adoption actions, carrying the hashes
  that prove what was locked, proposed and adopted.

Functional requirements
- Cards are never updated or deleted once appended.
- Card ids embed the creation time and a digest of the card body, so two
  distinct actions at the same instant still receive distinct ids.
- Listing is newest first and capped per project.
"""

from __future__ import annotations

import re
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, Final, Protocol

import structlog

from packsmith.codec.canonical import JSONValue, compact_json
from packsmith.domain.models import EvidenceCard, EvidenceKind, utc_now_iso
from packsmith.utils.hashing import sha256_text, short_hash

if TYPE_CHECKING:
    from packsmith.domain.models import Proposal

DEFAULT_LEDGER_LIMIT: Final[int] = 250
_NON_DIGITS: Final[re.Pattern[str]] = re.compile(r"[^0-9]")

logger = structlog.get_logger(__name__)


class EvidenceStore(Protocol):
    def append(self, card: EvidenceCard) -> None: ...

    def list(self, project_id: str, *, limit: int = DEFAULT_LEDGER_LIMIT) -> list[EvidenceCard]: ...


class InMemoryEvidenceStore:
    """Process-local evidence store; cards are kept in append order."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cards: list[EvidenceCard] = []

    def append(self, card: EvidenceCard) -> None:
        with self._lock:
            if any(existing.id == card.id for existing in self._cards):
                raise ValueError(f"evidence card {card.id!r} already exists")
            self._cards.append(card)

    def list(self, project_id: str, *, limit: int = DEFAULT_LEDGER_LIMIT) -> list[EvidenceCard]:
        with self._lock:
            matching = [card for card in self._cards if card.project_id == project_id]
        return list(reversed(matching))[:limit]


def evidence_card_id(
    *,
    project_id: str,
    kind: EvidenceKind,
    created_at_utc: str,
    title: str,
    summary: str,
    data: dict[str, JSONValue],
) -> str:
    body = {
        "project_id": project_id,
        "kind": str(kind),
        "created_at_utc": created_at_utc,
        "title": title,
        "summary": summary,
        "data": data,
    }
    stamp = _NON_DIGITS.sub("", created_at_utc)[:14]
    return f"ev_{stamp}_{short_hash(sha256_text(compact_json(body)), 8)}"


class EvidenceLedger:
    """Builds evidence cards for governance actions and appends them to a store."""

    def __init__(
        self,
        store: EvidenceStore,
        *,
        clock: Callable[[], str] = utc_now_iso,
    ) -> None:
        self._store = store
        self._clock = clock

    def append(
        self,
        project_id: str,
        kind: EvidenceKind,
        *,
        title: str,
        summary: str,
        data: dict[str, JSONValue] | None = None,
    ) -> EvidenceCard:
        created_at = self._clock()
        payload = dict(data or {})
        card = EvidenceCard(
            id=evidence_card_id(
                project_id=project_id,
                kind=kind,
                created_at_utc=created_at,
                title=title,
                summary=summary,
                data=payload,
            ),
            project_id=project_id,
            kind=kind,
            created_at_utc=created_at,
            title=title,
            summary=summary,
            data=payload,
        )
        self._store.append(card)
        logger.info("evidence_appended", project_id=project_id, kind=str(kind), card_id=card.id)
        return card

    def cards(self, project_id: str, *, limit: int = DEFAULT_LEDGER_LIMIT) -> list[EvidenceCard]:
        return self._store.list(project_id, limit=limit)

    def record_lock(self, project_id: str, pack_sha256: str) -> EvidenceCard:
        return self.append(
            project_id,
            EvidenceKind.SPEC_LOCK,
            title="Spec pack locked",
            summary=f"Locked pack {short_hash(pack_sha256)}.",
            data={"pack_sha256": pack_sha256},
        )

    def record_unlock(self, project_id: str, previous_pack_sha256: str | None) -> EvidenceCard:
        label = short_hash(previous_pack_sha256) if previous_pack_sha256 else "none"
        return self.append(
            project_id,
            EvidenceKind.SPEC_UNLOCK,
            title="Spec pack unlocked",
            summary=f"Unlocked (previous lock {label}).",
            data={"previous_locked_pack_sha256": previous_pack_sha256},
        )

    def record_proposal_created(self, proposal: Proposal) -> EvidenceCard:
        return self.append(
            proposal.project_id,
            EvidenceKind.PROPOSAL_CREATED,
            title="Proposal created",
            summary=proposal.summary or proposal.id,
            data={"proposal_id": proposal.id, **proposal.evidence.to_dict()},
        )

    def record_adoption(
        self,
        proposal: Proposal,
        *,
        previous_base_sha256: str | None,
        merged_pack_sha256: str,
        patch_ops_sha256: str,
    ) -> EvidenceCard:
        return self.append(
            proposal.project_id,
            EvidenceKind.PROPOSAL_ADOPTED,
            title="Proposal adopted",
            summary=f"Base moved to {short_hash(merged_pack_sha256)}.",
            data={
                "proposal_id": proposal.id,
                "previous_base_sha256": previous_base_sha256,
                "merged_pack_sha256": merged_pack_sha256,
                "patch_ops_sha256": patch_ops_sha256,
            },
        )


__all__ = [
    "DEFAULT_LEDGER_LIMIT",
    "EvidenceLedger",
    "EvidenceStore",
    "InMemoryEvidenceStore",
    "evidence_card_id",
]
