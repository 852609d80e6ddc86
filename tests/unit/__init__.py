"""Shared deterministic fixtures and builders for packsmith unit tests."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Final

from packsmith.domain.models import ProposalApply
from packsmith.engine.pack import build_pack
from packsmith.governance.evidence import EvidenceLedger, InMemoryEvidenceStore
from packsmith.governance.gate import GovernanceGate, InMemoryGovernanceStore
from packsmith.governance.proposals import InMemoryProposalRepository, ProposalStore
from packsmith.governance.repository import InMemoryProjectRepository
from packsmith.governance.workflow import PackWorkflow

if TYPE_CHECKING:
    from collections.abc import Mapping

    from packsmith.domain.models import SpecPack
    from packsmith.governance.evidence import EvidenceStore
    from packsmith.governance.gate import GovernanceStore
    from packsmith.governance.proposals import ProposalRepository
    from packsmith.governance.repository import ProjectRepository

_BASE_TS: Final[datetime] = datetime(2026, 2, 1, 12, 0, 0, tzinfo=timezone.utc)

PROJECT_ID: Final[str] = "demo"

# Not valid UTF-8, so always classified as binary.
PNG_BYTES: Final[bytes] = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00\x01"

SPEL_V1: Final[bytes] = b"model Demo {\n  field name: text\n}\n"
SPEL_V2: Final[bytes] = b"model Demo {\n  field name: text\n  field email: text\n}\n"


class StepClock:
    """Clock returning strictly increasing millisecond timestamps."""

    def __init__(self, start: datetime = _BASE_TS, step: timedelta = timedelta(seconds=1)) -> None:
        self._current = start
        self._step = step

    def __call__(self) -> str:
        value = self._current
        self._current += self._step
        return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def base_files() -> dict[str, bytes]:
    return {
        "README.md": b"# Demo\n\nA demo spec pack.\n",
        "assets/logo.png": PNG_BYTES,
        "spec/a.spel": SPEL_V1,
    }


def make_pack(
    files: Mapping[str, bytes | str] | None = None,
    *,
    project_id: str = PROJECT_ID,
) -> SpecPack:
    payload = base_files() if files is None else files
    return build_pack(
        {path: data.encode("utf-8") if isinstance(data, str) else data for path, data in payload.items()},
        project_id=project_id,
    )


def with_changes(
    pack: SpecPack,
    *,
    upsert: Mapping[str, bytes | str] | None = None,
    remove: tuple[str, ...] = (),
) -> SpecPack:
    """Return a pack derived from ``pack`` with ``upsert`` written and ``remove`` dropped."""

    files: dict[str, bytes | str] = dict(pack.file_map())
    for path in remove:
        files.pop(path, None)
    files.update(upsert or {})
    return make_pack(files, project_id=pack.project_id)


@dataclass(frozen=True, slots=True)
class WorkflowHarness:
    workflow: PackWorkflow
    repository: ProjectRepository
    gate: GovernanceGate
    ledger: EvidenceLedger
    proposals: ProposalStore
    evidence_store: EvidenceStore


def make_workflow(
    *,
    repository: ProjectRepository | None = None,
    governance_store: GovernanceStore | None = None,
    proposal_repository: ProposalRepository | None = None,
    evidence_store: EvidenceStore | None = None,
    clock: StepClock | None = None,
    id_prefix_length: int = 12,
) -> WorkflowHarness:
    tick = clock if clock is not None else StepClock()
    resolved_evidence = evidence_store if evidence_store is not None else InMemoryEvidenceStore()
    resolved_repository = repository if repository is not None else InMemoryProjectRepository()
    ledger = EvidenceLedger(resolved_evidence, clock=tick)
    gate = GovernanceGate(
        governance_store if governance_store is not None else InMemoryGovernanceStore(),
        ledger=ledger,
        clock=tick,
    )
    proposals = ProposalStore(
        proposal_repository if proposal_repository is not None else InMemoryProposalRepository(),
        clock=tick,
        id_prefix_length=id_prefix_length,
        default_apply=ProposalApply(),
    )
    workflow = PackWorkflow(resolved_repository, gate, proposals, ledger=ledger)
    return WorkflowHarness(
        workflow=workflow,
        repository=resolved_repository,
        gate=gate,
        ledger=ledger,
        proposals=proposals,
        evidence_store=resolved_evidence,
    )


__all__ = [
    "PNG_BYTES",
    "PROJECT_ID",
    "SPEL_V1",
    "SPEL_V2",
    "StepClock",
    "WorkflowHarness",
    "base_files",
    "make_pack",
    "make_workflow",
    "with_changes",
]
