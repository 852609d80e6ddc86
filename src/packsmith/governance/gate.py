"""
packsmith — governance gate

File: src/packsmith/governance/gate.py

Purpose
- Per-project lock state. Locking freezes a project at a pack hash; while
  locked, every adoption-intended entry point fails fast with ``LockedPackError``.

Functional requirements
- Transitions happen only through explicit ``lock``/``unlock`` calls and each is
  appended to the project's history.
- Locking an already-locked project re-records the snapshot hash.
- Unknown projects are unlocked with empty history.

Non-functional requirements
- The store is caller-supplied; the gate keeps no state of its own.
- Each transition is one atomic read-modify-write through ``GovernanceStore.update``,
  so concurrent transitions never drop a history event.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Protocol

import structlog

from packsmith.domain.errors import LockedPackError
from packsmith.domain.models import (
    GovernanceEvent,
    GovernanceEventKind,
    GovernanceState,
    as_project_id,
    utc_now_iso,
)
from packsmith.domain.result import Err, Ok

if TYPE_CHECKING:
    from packsmith.governance.evidence import EvidenceLedger


class GovernanceStore(Protocol):
    def load(self, project_id: str) -> GovernanceState | None: ...

    def save(self, state: GovernanceState) -> None: ...

    def update(
        self,
        project_id: str,
        transition: Callable[[GovernanceState | None], GovernanceState],
    ) -> GovernanceState: ...


class InMemoryGovernanceStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._states: dict[str, GovernanceState] = {}

    def load(self, project_id: str) -> GovernanceState | None:
        with self._lock:
            return self._states.get(project_id)

    def save(self, state: GovernanceState) -> None:
        with self._lock:
            self._states[state.project_id] = state

    def update(
        self,
        project_id: str,
        transition: Callable[[GovernanceState | None], GovernanceState],
    ) -> GovernanceState:
        with self._lock:
            updated = transition(self._states.get(project_id))
            self._states[project_id] = updated
            return updated


class GovernanceGate:
    def __init__(
        self,
        store: GovernanceStore,
        *,
        ledger: EvidenceLedger | None = None,
        clock: Callable[[], str] = utc_now_iso,
        logger: Any | None = None,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._clock = clock
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def state(self, project_id: str) -> GovernanceState:
        project_id = as_project_id(project_id)
        existing = self._store.load(project_id)
        return existing if existing is not None else GovernanceState(project_id=project_id)

    def is_locked(self, project_id: str) -> bool:
        return self.state(project_id).locked

    def require_unlocked(self, project_id: str) -> Ok[None] | Err[LockedPackError]:
        current = self.state(project_id)
        if current.locked:
            error = LockedPackError(project_id, locked_pack_sha256=current.locked_pack_sha256)
            self._logger.info("governance_refused", **error.to_dict())
            return Err(error)
        return Ok(None)

    def lock(self, project_id: str, pack_sha256: str) -> GovernanceState:
        project_id = as_project_id(project_id)

        def _transition(previous: GovernanceState | None) -> GovernanceState:
            current = previous if previous is not None else GovernanceState(project_id=project_id)
            now = self._clock()
            return replace(
                current,
                locked=True,
                locked_at_utc=now,
                locked_pack_sha256=pack_sha256,
                history=(
                    *current.history,
                    GovernanceEvent(
                        at_utc=now,
                        event=GovernanceEventKind.LOCK,
                        locked_pack_sha256=pack_sha256,
                    ),
                ),
            )

        updated = self._store.update(project_id, _transition)
        self._logger.info("governance_locked", project_id=project_id, pack_sha256=pack_sha256)
        if self._ledger is not None:
            self._ledger.record_lock(project_id, pack_sha256)
        return updated

    def unlock(self, project_id: str) -> GovernanceState:
        project_id = as_project_id(project_id)

        def _transition(previous: GovernanceState | None) -> GovernanceState:
            current = previous if previous is not None else GovernanceState(project_id=project_id)
            return replace(
                current,
                locked=False,
                locked_at_utc=None,
                locked_pack_sha256=None,
                history=(
                    *current.history,
                    GovernanceEvent(
                        at_utc=self._clock(),
                        event=GovernanceEventKind.UNLOCK,
                        locked_pack_sha256=current.locked_pack_sha256,
                    ),
                ),
            )

        updated = self._store.update(project_id, _transition)
        # The unlock event carries the hash that was locked when the transition ran.
        previous_hash = updated.history[-1].locked_pack_sha256
        self._logger.info(
            "governance_unlocked",
            project_id=project_id,
            previous_pack_sha256=previous_hash,
        )
        if self._ledger is not None:
            self._ledger.record_unlock(project_id, previous_hash)
        return updated


__all__ = ["GovernanceGate", "GovernanceStore", "InMemoryGovernanceStore"]
