"""Command-line interface router for packsmith."""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar

import structlog

from packsmith.codec.canonical import canonical_json
from packsmith.config import (
    ConfigLoadError,
    ConfigValidationError,
    dump_effective_config,
    load_config,
)
from packsmith.constants import DETERMINISTIC_EPOCH_UTC
from packsmith.domain.errors import PackError
from packsmith.domain.models import ProposalApply, Provenance, SpecPack
from packsmith.domain.result import Err, Ok
from packsmith.engine.determinism import PackInput, build_determinism_report, report_digest
from packsmith.engine.diff import diff_packs
from packsmith.engine.pack import build_pack, parse_pack, serialize_pack
from packsmith.governance.evidence import EvidenceLedger
from packsmith.governance.gate import GovernanceGate
from packsmith.governance.proposals import ProposalStore
from packsmith.governance.workflow import PackWorkflow
from packsmith.observability.logging import setup_logging, shutdown_logging
from packsmith.persistence.repositories import (
    SQLiteEvidenceStore,
    SQLiteGovernanceStore,
    SQLiteProjectRepository,
    SQLiteProposalRepository,
)
from packsmith.persistence.state_db import StateDB
from packsmith.ui.render import (
    CLIRenderer,
    create_renderer,
    render_diff,
    render_governance,
    render_pack,
    render_proposals,
)
from packsmith.utils.fs import atomic_write, read_bytes
from packsmith.utils.hashing import read_directory_files, sha256_bytes

T = TypeVar("T")

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True, slots=True)
class _Services:
    config: Mapping[str, Any]
    repository: SQLiteProjectRepository
    ledger: EvidenceLedger
    workflow: PackWorkflow


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="packsmith",
        description=(
            "packsmith: deterministic spec packs with governed adoption.\n\n"
            "Common workflows:\n"
            "  packsmith build specs/ --project demo --out demo.zip\n"
            "  packsmith seed demo demo.zip\n"
            "  packsmith propose demo candidate.zip --summary 'Add b.spel'\n"
            "  packsmith adopt demo proposal_<id>\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to packsmith TOML config (default: ./packsmith.toml if present).",
    )
    common.add_argument("--state-db", default=None, help="Override paths.state_db.")
    common.add_argument("--log-level", default=None, help="Override observability.log_level.")
    common.add_argument("--json", action="store_true", help="Emit deterministic JSON output")
    common.add_argument("--verbose", "-v", action="store_true", default=False)

    subparsers = parser.add_subparsers(dest="command", required=True)

    hash_parser = subparsers.add_parser("hash", parents=[common], help="Print a pack's identity")
    hash_parser.add_argument("archive")
    hash_parser.set_defaults(handler=_cmd_hash)

    inspect_parser = subparsers.add_parser(
        "inspect", parents=[common], help="Show a pack's manifest and files"
    )
    inspect_parser.add_argument("archive")
    inspect_parser.set_defaults(handler=_cmd_inspect)

    build_parser_ = subparsers.add_parser(
        "build", parents=[common], help="Build a canonical pack from a directory"
    )
    build_parser_.add_argument("directory")
    build_parser_.add_argument("--project", required=True, help="Project id for the manifest")
    build_parser_.add_argument("--out", required=True, help="Archive output path")
    build_parser_.add_argument(
        "--created-at",
        default=DETERMINISTIC_EPOCH_UTC,
        help=f"Manifest created_at_utc (default: {DETERMINISTIC_EPOCH_UTC})",
    )
    build_parser_.set_defaults(handler=_cmd_build)

    diff_parser = subparsers.add_parser("diff", parents=[common], help="Diff two packs")
    diff_parser.add_argument("base")
    diff_parser.add_argument("proposal")
    diff_parser.set_defaults(handler=_cmd_diff)

    seed_parser = subparsers.add_parser(
        "seed", parents=[common], help="Install the first base pack for a project"
    )
    seed_parser.add_argument("project")
    seed_parser.add_argument("archive")
    seed_parser.set_defaults(handler=_cmd_seed)

    propose_parser = subparsers.add_parser(
        "propose", parents=[common], help="Record a proposal against the current base"
    )
    propose_parser.add_argument("project")
    propose_parser.add_argument("candidate")
    propose_parser.add_argument("--summary", default="", help="One-line proposal summary")
    propose_parser.add_argument(
        "--rationale", action="append", default=[], help="Rationale line (repeatable)"
    )
    propose_parser.add_argument("--spel-path", default=None, help="Pack path of the .spel file")
    propose_parser.add_argument("--write", default=None, help="Also write the record to a file")
    propose_parser.set_defaults(handler=_cmd_propose)

    proposals_parser = subparsers.add_parser(
        "proposals", parents=[common], help="List a project's proposals"
    )
    proposals_parser.add_argument("project")
    proposals_parser.set_defaults(handler=_cmd_proposals)

    adopt_parser = subparsers.add_parser(
        "adopt", parents=[common], help="Apply a proposal and move the base"
    )
    adopt_parser.add_argument("project")
    adopt_parser.add_argument("proposal_id")
    adopt_parser.set_defaults(handler=_cmd_adopt)

    lock_parser = subparsers.add_parser(
        "lock", parents=[common], help="Freeze the project at its current base"
    )
    lock_parser.add_argument("project")
    lock_parser.set_defaults(handler=_cmd_lock)

    unlock_parser = subparsers.add_parser("unlock", parents=[common], help="Lift a lock")
    unlock_parser.add_argument("project")
    unlock_parser.set_defaults(handler=_cmd_unlock)

    status_parser = subparsers.add_parser(
        "status", parents=[common], help="Show base, lock state and recent evidence"
    )
    status_parser.add_argument("project")
    status_parser.set_defaults(handler=_cmd_status)

    export_parser = subparsers.add_parser(
        "export", parents=[common], help="Write the current base archive to a file"
    )
    export_parser.add_argument("project")
    export_parser.add_argument("out")
    export_parser.set_defaults(handler=_cmd_export)

    report_parser = subparsers.add_parser(
        "report", parents=[common], help="Emit a determinism report for the project"
    )
    report_parser.add_argument("project")
    report_parser.add_argument("--candidate", default=None, help="Candidate archive to include")
    report_parser.add_argument("--proposal-id", default=None, help="Proposal whose patch to include")
    report_parser.set_defaults(handler=_cmd_report)

    config_parser = subparsers.add_parser(
        "config", parents=[common], help="Print the effective configuration"
    )
    config_parser.set_defaults(handler=_cmd_config)

    return parser


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        config = _load_effective_config(namespace)
        observability = config["observability"]
        setup_logging(
            observability["log_level"],
            observability.get("log_file"),
            observability["log_format"] == "json",
        )
        try:
            result = handler(namespace, config)
        finally:
            shutdown_logging()
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_hash(args: argparse.Namespace, config: Mapping[str, Any]) -> int:
    raw = _read_archive(args.archive)
    pack = _unwrap(parse_pack(raw))
    payload = {
        "command": "hash",
        "pack_sha256": pack.pack_sha256,
        "archive_sha256": sha256_bytes(raw),
        "canonical": sha256_bytes(raw) == pack.pack_sha256,
    }
    if _flag(args, "json"):
        _emit_json(payload)
        return 0
    print(pack.pack_sha256)
    return 0


def _cmd_inspect(args: argparse.Namespace, config: Mapping[str, Any]) -> int:
    pack = _unwrap(parse_pack(_read_archive(args.archive)))
    if _flag(args, "json"):
        _emit_json(
            {
                "command": "inspect",
                "pack_sha256": pack.pack_sha256,
                "manifest": pack.manifest.to_dict(),
                "files": [
                    {"path": f.path, "sha256": f.sha256, "size": f.size, "is_text": f.is_text}
                    for f in pack.files.values()
                ],
            }
        )
        return 0
    render_pack(_get_renderer(args), pack)
    return 0


def _cmd_build(args: argparse.Namespace, config: Mapping[str, Any]) -> int:
    try:
        files = read_directory_files(args.directory)
    except (FileNotFoundError, NotADirectoryError) as exc:
        raise CLIError(f"not a directory: {args.directory}", exit_code=2) from exc

    pack_config = config["pack"]
    pack = build_pack(
        files,
        project_id=args.project,
        created_at_utc=args.created_at,
        pack_version=pack_config["pack_version"],
        provenance=Provenance(
            producer_version=pack_config["producer_version"],
            validator_version=pack_config["validator_version"],
        ),
    )
    atomic_write(
        args.out,
        serialize_pack(pack, compression_level=config["archive"]["compression_level"]),
    )
    logger.info("pack_built", project_id=pack.project_id, pack_sha256=pack.pack_sha256, out=args.out)
    if _flag(args, "json"):
        _emit_json({"command": "build", "pack_sha256": pack.pack_sha256, "out": args.out})
        return 0
    print(pack.pack_sha256)
    return 0


def _cmd_diff(args: argparse.Namespace, config: Mapping[str, Any]) -> int:
    base = _unwrap(parse_pack(_read_archive(args.base)))
    proposal = _unwrap(parse_pack(_read_archive(args.proposal)))
    report = diff_packs(base, proposal, context_lines=config["diff"]["context_lines"])
    if _flag(args, "json"):
        _emit_json({"command": "diff", **report.to_dict()})
        return 0
    render_diff(_get_renderer(args), report)
    return 0


def _cmd_seed(args: argparse.Namespace, config: Mapping[str, Any]) -> int:
    services = _open_services(config)
    pack = _unwrap(parse_pack(_read_archive(args.archive)))
    seeded = _unwrap(services.workflow.seed_base(args.project, pack))
    if _flag(args, "json"):
        _emit_json({"command": "seed", "project_id": args.project, "pack_sha256": seeded.pack_sha256})
        return 0
    print(seeded.pack_sha256)
    return 0


def _cmd_propose(args: argparse.Namespace, config: Mapping[str, Any]) -> int:
    services = _open_services(config)
    candidate = _unwrap(parse_pack(_read_archive(args.candidate)))
    proposal = _unwrap(
        services.workflow.propose(
            args.project,
            candidate,
            summary=args.summary,
            rationale=_string_sequence(args.rationale),
            spel_path=args.spel_path,
        )
    )
    if args.write:
        atomic_write(args.write, canonical_json(proposal.to_dict()))
    if _flag(args, "json"):
        _emit_json({"command": "propose", "proposal": proposal.to_dict()})
        return 0
    renderer = _get_renderer(args)
    renderer.kv("Proposal", proposal.id)
    stats = proposal.patch.stats()
    renderer.kv(
        "Changes",
        f"{stats['added']} added, {stats['removed']} removed, {stats['modified']} modified",
    )
    renderer.next_steps([f"packsmith adopt {args.project} {proposal.id}"])
    return 0


def _cmd_proposals(args: argparse.Namespace, config: Mapping[str, Any]) -> int:
    services = _open_services(config)
    proposals = services.workflow.proposals.list(args.project)
    base_sha256 = services.repository.base_sha256(args.project)
    if _flag(args, "json"):
        _emit_json(
            {
                "command": "proposals",
                "project_id": args.project,
                "proposals": [
                    {
                        **proposal.to_dict(),
                        "applyable": services.workflow.proposals.is_applyable(
                            proposal, project_id=args.project, current_base_sha256=base_sha256
                        ),
                    }
                    for proposal in proposals
                ],
            }
        )
        return 0
    render_proposals(_get_renderer(args), proposals)
    return 0


def _cmd_adopt(args: argparse.Namespace, config: Mapping[str, Any]) -> int:
    services = _open_services(config)
    receipt = _unwrap(services.workflow.adopt(args.project, args.proposal_id))
    if _flag(args, "json"):
        _emit_json({"command": "adopt", **receipt.to_dict()})
        return 0
    renderer = _get_renderer(args)
    renderer.kv("Adopted", receipt.proposal_id)
    renderer.kv("Previous base", receipt.previous_base_sha256)
    renderer.kv("New base", receipt.merged_pack_sha256)
    return 0


def _cmd_lock(args: argparse.Namespace, config: Mapping[str, Any]) -> int:
    services = _open_services(config)
    state = _unwrap(services.workflow.lock_current(args.project))
    if _flag(args, "json"):
        _emit_json({"command": "lock", "governance": state.to_dict()})
        return 0
    print(f"locked {args.project} at {state.locked_pack_sha256}")
    return 0


def _cmd_unlock(args: argparse.Namespace, config: Mapping[str, Any]) -> int:
    services = _open_services(config)
    state = services.workflow.unlock(args.project)
    if _flag(args, "json"):
        _emit_json({"command": "unlock", "governance": state.to_dict()})
        return 0
    print(f"unlocked {args.project}")
    return 0


def _cmd_status(args: argparse.Namespace, config: Mapping[str, Any]) -> int:
    services = _open_services(config)
    state = services.workflow.gate.state(args.project)
    base_sha256 = services.repository.base_sha256(args.project)
    cards = services.ledger.cards(args.project, limit=10)
    if _flag(args, "json"):
        _emit_json(
            {
                "command": "status",
                "project_id": args.project,
                "base_pack_sha256": base_sha256,
                "governance": state.to_dict(),
                "evidence": [card.to_dict() for card in cards],
            }
        )
        return 0
    render_governance(_get_renderer(args), state, base_sha256=base_sha256, cards=cards)
    return 0


def _cmd_export(args: argparse.Namespace, config: Mapping[str, Any]) -> int:
    services = _open_services(config)
    base = _require_base(services, args.project)
    atomic_write(
        args.out,
        serialize_pack(base, compression_level=config["archive"]["compression_level"]),
    )
    if _flag(args, "json"):
        _emit_json({"command": "export", "pack_sha256": base.pack_sha256, "out": args.out})
        return 0
    print(base.pack_sha256)
    return 0


def _cmd_report(args: argparse.Namespace, config: Mapping[str, Any]) -> int:
    services = _open_services(config)
    base = services.repository.get_base(args.project)

    candidate: PackInput | None = None
    if args.candidate is not None:
        raw = _read_archive(args.candidate)
        candidate = PackInput(pack=_unwrap(parse_pack(raw)), raw_archive=raw)

    patch = None
    if args.proposal_id is not None:
        proposal = services.workflow.proposals.get(args.proposal_id)
        if proposal is None:
            raise CLIError(f"unknown proposal {args.proposal_id!r}", exit_code=1)
        patch = proposal.patch

    report = build_determinism_report(
        project_id=args.project,
        base=None if base is None else PackInput(pack=base),
        proposal=candidate,
        patch=patch,
        governance=services.workflow.gate.state(args.project),
    )
    report["report_sha256"] = report_digest(report)
    print(canonical_json(report), end="")
    checks = report["checks"]
    return 0 if isinstance(checks, Mapping) and checks.get("ok") else 1


def _cmd_config(args: argparse.Namespace, config: Mapping[str, Any]) -> int:
    print(dump_effective_config(config), end="")
    return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(verbose=_flag(args, "verbose"))


def _load_effective_config(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, object] = {}
    state_db = _optional_str(getattr(args, "state_db", None))
    if state_db is not None:
        overrides["paths.state_db"] = str(Path(state_db).expanduser().resolve())
    log_level = _optional_str(getattr(args, "log_level", None))
    if log_level is not None:
        overrides["observability.log_level"] = log_level.upper()

    try:
        return load_config(
            _optional_str(getattr(args, "config_path", None)), cli_overrides=overrides
        )
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _open_services(config: Mapping[str, Any]) -> _Services:
    state_db = StateDB(config["paths"]["state_db"])
    state_db.migrate()

    proposals_config = config["proposals"]
    repository = SQLiteProjectRepository(state_db)
    ledger = EvidenceLedger(SQLiteEvidenceStore(state_db))
    gate = GovernanceGate(SQLiteGovernanceStore(state_db), ledger=ledger)
    store = ProposalStore(
        SQLiteProposalRepository(state_db),
        id_prefix_length=proposals_config["id_prefix_length"],
        default_apply=ProposalApply(
            next_step_href=proposals_config["next_step_href"],
            next_step_label=proposals_config["next_step_label"],
        ),
    )
    workflow = PackWorkflow(
        repository,
        gate,
        store,
        ledger=ledger,
        context_lines=config["diff"]["context_lines"],
    )
    return _Services(config=config, repository=repository, ledger=ledger, workflow=workflow)


def _require_base(services: _Services, project_id: str) -> SpecPack:
    base = services.repository.get_base(project_id)
    if base is None:
        raise CLIError(f"project {project_id!r} has no base pack", exit_code=1)
    return base


def _read_archive(path_arg: str) -> bytes:
    try:
        return read_bytes(path_arg)
    except (FileNotFoundError, IsADirectoryError) as exc:
        raise CLIError(f"archive not found: {path_arg}", exit_code=2) from exc


def _unwrap(result: Ok[T] | Err[PackError]) -> T:
    if isinstance(result, Err):
        error = result.error
        raise CLIError(f"[{error.code}] {error}", exit_code=1) from error
    return result.value


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise CLIError("invalid optional string argument", exit_code=2)
    cleaned = value.strip()
    return cleaned or None


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


def _string_sequence(value: object) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        cleaned = value.strip()
        return () if not cleaned else (cleaned,)
    if not isinstance(value, Sequence):
        raise CLIError("invalid sequence argument", exit_code=2)
    return tuple(item.strip() for item in value if isinstance(item, str) and item.strip())


__all__ = ["CLIError", "build_parser", "run_cli"]
