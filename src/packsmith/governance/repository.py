"""
packsmith — base pack pointer

File: src/packsmith/governance/repository.py

Purpose
- Hold the current Base pack per project behind a compare-and-swap update, so
  two concurrent adoptions can never silently overwrite each other.

Functional requirements
- ``try_set_base`` succeeds only when the stored base hash equals
  ``expected_prior_hash`` (``None`` meaning "no base yet").
- An optional ``guard`` is evaluated inside the swap's critical section; when it
  returns false nothing is written and the swap reports failure.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Callable

    from packsmith.domain.models import SpecPack


class ProjectRepository(Protocol):
    def get_base(self, project_id: str) -> SpecPack | None: ...

    def try_set_base(
        self,
        project_id: str,
        expected_prior_hash: str | None,
        new_pack: SpecPack,
        *,
        guard: Callable[[], bool] | None = None,
    ) -> bool: ...


class InMemoryProjectRepository:
    """Process-local base pointers; ``guard`` runs under this repository's lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._bases: dict[str, SpecPack] = {}

    def get_base(self, project_id: str) -> SpecPack | None:
        with self._lock:
            return self._bases.get(project_id)

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
        with self._lock:
            current = self._bases.get(project_id)
            current_hash = None if current is None else current.pack_sha256
            if current_hash != expected_prior_hash:
                return False
            if guard is not None and not guard():
                return False
            self._bases[project_id] = new_pack
            return True


__all__ = ["InMemoryProjectRepository", "ProjectRepository"]
