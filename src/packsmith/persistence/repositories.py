"""
packsmith — SQLite-backed stores

File: src/packsmith/persistence/repositories.py

Purpose
- Durable implementations of the project, governance, proposal, and evidence
  store protocols on top of ``StateDB``.

Functional requirements
- ``SQLiteProjectRepository.try_set_base`` is a compare-and-swap executed in one
  ``BEGIN IMMEDIATE`` transaction so concurrent processes serialize on it; its
  guard runs while that transaction holds the write lock.
- ``SQLiteGovernanceStore.update`` reads and writes a project's state in one
  ``BEGIN IMMEDIATE`` transaction.
- Base packs are stored as their canonical archive bytes and re-parsed on read;
  a stored archive that no longer parses raises ``StateDBError``.
- Evidence cards are insert-only; duplicates raise ``ValueError``.
"""

from __future__ import annotations

import json
import sqlite3
from typing import TYPE_CHECKING

from packsmith.codec.canonical import compact_json
from packsmith.domain.models import EvidenceCard, GovernanceState, utc_now_iso
from packsmith.domain.result import Err
from packsmith.domain.schemas import proposal_from_raw
from packsmith.engine.pack import parse_pack
from packsmith.governance.evidence import DEFAULT_LEDGER_LIMIT
from packsmith.persistence.state_db import RowValue, StateDB, StateDBError

if TYPE_CHECKING:
    from collections.abc import Callable

    from packsmith.domain.models import Proposal, SpecPack


def _load_json(value: RowValue, column: str) -> dict[str, object]:
    if not isinstance(value, str):
        raise StateDBError(f"{column} must be text")
    decoded = json.loads(value)
    if not isinstance(decoded, dict):
        raise StateDBError(f"{column} must decode to an object")
    return decoded


class _BaseRepo:
    def __init__(self, db: StateDB) -> None:
        self._db = db


class SQLiteProjectRepository(_BaseRepo):
    def get_base(self, project_id: str) -> SpecPack | None:
        row = self._db.query_one(
            "SELECT pack_sha256, archive FROM project_bases WHERE project_id = ?",
            (project_id,),
        )
        if row is None:
            return None
        archive = row["archive"]
        if not isinstance(archive, bytes):
            raise StateDBError(f"project_bases.archive for {project_id!r} must be a blob")
        parsed = parse_pack(archive)
        if isinstance(parsed, Err):
            raise StateDBError(
                f"stored base for {project_id!r} no longer parses: {parsed.error}"
            ) from parsed.error
        if parsed.value.pack_sha256 != row["pack_sha256"]:
            raise StateDBError(f"stored base for {project_id!r} does not match its recorded hash")
        return parsed.value

    def base_sha256(self, project_id: str) -> str | None:
        row = self._db.query_one(
            "SELECT pack_sha256 FROM project_bases WHERE project_id = ?", (project_id,)
        )
        if row is None:
            return None
        value = row["pack_sha256"]
        return value if isinstance(value, str) else None

    def try_set_base(
        self,
        project_id: str,
        expected_prior_hash: str | None,
        new_pack: SpecPack,
        *,
        guard: Callable[[], bool] | None = None,
    ) -> bool:
        if new_pack.project_id != project_id:
            raise ValueError(
                f"pack belongs to project {new_pack.project_id!r}, not {project_id!r}"
            )
        with self._db.transaction(immediate=True) as tx:
            row = self._db.query_one(
                "SELECT pack_sha256 FROM project_bases WHERE project_id = ?",
                (project_id,),
                conn=tx,
            )
            current_hash = None if row is None else row["pack_sha256"]
            if current_hash != expected_prior_hash:
                return False
            if guard is not None and not guard():
                return False
            self._db.execute(
                """
                INSERT INTO project_bases (project_id, pack_sha256, archive, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(project_id) DO UPDATE SET
                    pack_sha256=excluded.pack_sha256,
                    archive=excluded.archive,
                    updated_at=excluded.updated_at
                """,
                (project_id, new_pack.pack_sha256, new_pack.archive, utc_now_iso()),
                conn=tx,
            )
        return True

    def project_ids(self) -> list[str]:
        rows = self._db.query_all("SELECT project_id FROM project_bases ORDER BY project_id ASC")
        return [str(row["project_id"]) for row in rows]


class SQLiteGovernanceStore(_BaseRepo):
    def load(
        self, project_id: str, *, conn: sqlite3.Connection | None = None
    ) -> GovernanceState | None:
        row = self._db.query_one(
            "SELECT payload_json FROM governance_states WHERE project_id = ?",
            (project_id,),
            conn=conn,
        )
        if row is None:
            return None
        return GovernanceState.from_dict(
            _load_json(row["payload_json"], "governance_states.payload_json")
        )

    def save(self, state: GovernanceState, *, conn: sqlite3.Connection | None = None) -> None:
        self._db.execute(
            """
            INSERT INTO governance_states (
                project_id, locked, locked_pack_sha256, payload_json, updated_at
            ) VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(project_id) DO UPDATE SET
                locked=excluded.locked,
                locked_pack_sha256=excluded.locked_pack_sha256,
                payload_json=excluded.payload_json,
                updated_at=excluded.updated_at
            """,
            (
                state.project_id,
                1 if state.locked else 0,
                state.locked_pack_sha256,
                compact_json(state.to_dict()),
                utc_now_iso(),
            ),
            conn=conn,
        )

    def update(
        self,
        project_id: str,
        transition: Callable[[GovernanceState | None], GovernanceState],
    ) -> GovernanceState:
        with self._db.transaction(immediate=True) as tx:
            updated = transition(self.load(project_id, conn=tx))
            if updated.project_id != project_id:
                raise ValueError(
                    f"transition produced state for {updated.project_id!r}, not {project_id!r}"
                )
            self.save(updated, conn=tx)
        return updated


class SQLiteProposalRepository(_BaseRepo):
    def get(self, proposal_id: str) -> Proposal | None:
        row = self._db.query_one("SELECT payload_json FROM proposals WHERE id = ?", (proposal_id,))
        if row is None:
            return None
        return proposal_from_raw(_load_json(row["payload_json"], "proposals.payload_json"))

    def put(self, proposal: Proposal) -> None:
        self._db.execute(
            """
            INSERT INTO proposals (id, project_id, kind, base_pack_sha256, created_at, payload_json)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                project_id=excluded.project_id,
                kind=excluded.kind,
                base_pack_sha256=excluded.base_pack_sha256,
                created_at=excluded.created_at,
                payload_json=excluded.payload_json
            """,
            (
                proposal.id,
                proposal.project_id,
                proposal.kind,
                proposal.evidence.base_pack_sha256,
                proposal.created_at_utc,
                compact_json(proposal.to_dict()),
            ),
        )

    def list(self, project_id: str) -> list[Proposal]:
        rows = self._db.query_all(
            """
            SELECT payload_json FROM proposals
            WHERE project_id = ?
            ORDER BY created_at DESC, id ASC
            """,
            (project_id,),
        )
        return [
            proposal_from_raw(_load_json(row["payload_json"], "proposals.payload_json"))
            for row in rows
        ]


class SQLiteEvidenceStore(_BaseRepo):
    def append(self, card: EvidenceCard) -> None:
        try:
            self._db.execute(
                """
                INSERT INTO evidence_cards (id, seq, project_id, kind, created_at, payload_json)
                VALUES (?, (SELECT COALESCE(MAX(seq), 0) + 1 FROM evidence_cards), ?, ?, ?, ?)
                """,
                (
                    card.id,
                    card.project_id,
                    str(card.kind),
                    card.created_at_utc,
                    compact_json(card.to_dict()),
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise ValueError(f"evidence card {card.id!r} already exists") from exc

    def list(self, project_id: str, *, limit: int = DEFAULT_LEDGER_LIMIT) -> list[EvidenceCard]:
        if limit <= 0:
            return []
        rows = self._db.query_all(
            """
            SELECT payload_json FROM evidence_cards
            WHERE project_id = ?
            ORDER BY seq DESC
            LIMIT ?
            """,
            (project_id, limit),
        )
        return [
            EvidenceCard.from_dict(_load_json(row["payload_json"], "evidence_cards.payload_json"))
            for row in rows
        ]


__all__ = [
    "SQLiteEvidenceStore",
    "SQLiteGovernanceStore",
    "SQLiteProjectRepository",
    "SQLiteProposalRepository",
]
