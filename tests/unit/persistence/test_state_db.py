"""State DB migrations, pragmas, append-only evidence, transactions and busy handling."""

from __future__ import annotations

import sqlite3
import threading
import time
from typing import TYPE_CHECKING

import pytest

from packsmith.constants import STATE_DB_SCHEMA_VERSION
from packsmith.persistence.state_db import MIGRATIONS, StateDB, StateDBBusyError, StateDBError

if TYPE_CHECKING:
    from pathlib import Path


def _insert_card(db: StateDB, card_id: str, seq: int, *, conn: sqlite3.Connection | None = None) -> None:
    db.execute(
        """
        INSERT INTO evidence_cards (id, seq, project_id, kind, created_at, payload_json)
        VALUES (?, ?, 'demo', 'spec_lock', '2026-02-01T12:00:00.000Z', '{}')
        """,
        (card_id, seq),
        conn=conn,
    )


def test_migration_idempotence_schema_version_and_pragmas(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "state" / "packsmith.sqlite3", busy_timeout_ms=4_321)

    assert db.migrate() == STATE_DB_SCHEMA_VERSION
    assert db.migrate() == STATE_DB_SCHEMA_VERSION

    with db.connection() as conn:
        tables = {
            str(row[0])
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
        }
        assert {
            "schema_versions",
            "project_bases",
            "governance_states",
            "proposals",
            "evidence_cards",
        }.issubset(tables)

        triggers = {
            str(row[0])
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'trigger'").fetchall()
        }
        assert triggers == {
            "evidence_cards_append_only_update",
            "evidence_cards_append_only_delete",
        }

        pragma_fk = conn.execute("PRAGMA foreign_keys").fetchone()
        pragma_journal = conn.execute("PRAGMA journal_mode").fetchone()
        pragma_busy_timeout = conn.execute("PRAGMA busy_timeout").fetchone()
        assert pragma_fk is not None and int(pragma_fk[0]) == 1
        assert pragma_journal is not None and str(pragma_journal[0]).lower() == "wal"
        assert pragma_busy_timeout is not None and int(pragma_busy_timeout[0]) == 4_321

    recorded = db.query_all("SELECT version, name, checksum FROM schema_versions ORDER BY version")
    assert recorded == [
        {"version": migration.version, "name": migration.name, "checksum": migration.checksum}
        for migration in MIGRATIONS
    ]
    assert len(recorded) == STATE_DB_SCHEMA_VERSION


def test_changed_migration_checksum_is_refused(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "packsmith.sqlite3")
    db.migrate()
    with db.connection() as conn:
        conn.execute("UPDATE schema_versions SET checksum = ? WHERE version = 1", ("0" * 64,))

    with pytest.raises(StateDBError, match="checksum mismatch"):
        db.migrate()


def test_newer_database_is_refused(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "packsmith.sqlite3")
    db.migrate()
    db.execute(
        "INSERT INTO schema_versions (version, name, checksum, applied_at) VALUES (?, ?, ?, ?)",
        (STATE_DB_SCHEMA_VERSION + 1, "future", "f" * 64, "2030-01-01T00:00:00.000Z"),
    )

    with pytest.raises(StateDBError, match="newer"):
        db.migrate()


def test_evidence_cards_are_append_only(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "packsmith.sqlite3")
    db.migrate()
    _insert_card(db, "ev_1", 1)

    with pytest.raises(sqlite3.IntegrityError, match="append-only"):
        db.execute("UPDATE evidence_cards SET kind = 'spec_unlock' WHERE id = 'ev_1'")
    with pytest.raises(sqlite3.IntegrityError, match="append-only"):
        db.execute("DELETE FROM evidence_cards WHERE id = 'ev_1'")

    row = db.query_one("SELECT kind FROM evidence_cards WHERE id = 'ev_1'")
    assert row == {"kind": "spec_lock"}


def test_transaction_rolls_back_and_savepoints_nest(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "packsmith.sqlite3")
    db.migrate()

    with pytest.raises(RuntimeError):
        with db.transaction() as tx:
            _insert_card(db, "ev_rolled_back", 1, conn=tx)
            raise RuntimeError("abort")
    assert db.query_one("SELECT id FROM evidence_cards WHERE id = 'ev_rolled_back'") is None

    with db.transaction() as tx:
        _insert_card(db, "ev_outer", 2, conn=tx)
        with pytest.raises(RuntimeError):
            with db.transaction(conn=tx):
                _insert_card(db, "ev_inner", 3, conn=tx)
                raise RuntimeError("inner only")

    ids = [row["id"] for row in db.query_all("SELECT id FROM evidence_cards ORDER BY seq")]
    assert ids == ["ev_outer"]


def test_invalid_tuning_values_are_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        StateDB(tmp_path / "x.sqlite3", busy_timeout_ms=-1)
    with pytest.raises(ValueError):
        StateDB(tmp_path / "x.sqlite3", busy_retry_limit=-1)


def test_wal_allows_reader_during_open_writer_transaction(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "state" / "packsmith.sqlite3")
    db.migrate()
    _insert_card(db, "ev_wal", 1)

    writer_conn = db.connect()
    reader_conn = db.connect()
    writer_started = threading.Event()
    reader_finished = threading.Event()
    errors: list[str] = []
    reader_count: int | None = None
    reader_elapsed: float | None = None

    def writer() -> None:
        try:
            writer_conn.execute("BEGIN IMMEDIATE")
            writer_conn.execute(
                "INSERT INTO proposals (id, project_id, kind, base_pack_sha256, created_at, payload_json)"
                " VALUES ('p', 'demo', 'spec_pack_patch', NULL, '2026-02-01T12:00:00.000Z', '{}')"
            )
            writer_started.set()
            if not reader_finished.wait(timeout=2.0):
                errors.append("reader did not finish while writer transaction was open")
            writer_conn.execute("ROLLBACK")
        except sqlite3.Error as exc:
            errors.append(f"writer failed: {exc}")

    def reader() -> None:
        nonlocal reader_count, reader_elapsed
        if not writer_started.wait(timeout=2.0):
            errors.append("writer did not start")
            reader_finished.set()
            return
        try:
            start = time.monotonic()
            row = reader_conn.execute("SELECT COUNT(*) FROM evidence_cards").fetchone()
            reader_elapsed = time.monotonic() - start
            reader_count = None if row is None else int(row[0])
        except sqlite3.Error as exc:
            errors.append(f"reader failed: {exc}")
        finally:
            reader_finished.set()

    threads = [
        threading.Thread(target=writer, name="state-db-writer", daemon=True),
        threading.Thread(target=reader, name="state-db-reader", daemon=True),
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5.0)
    writer_conn.close()
    reader_conn.close()

    assert not errors
    assert reader_count == 1
    assert reader_elapsed is not None and reader_elapsed < 0.75



def test_busy_writer_exhausts_bounded_retries(tmp_path: Path) -> None:
    path = tmp_path / "packsmith.sqlite3"
    StateDB(path).migrate()
    impatient = StateDB(path, busy_timeout_ms=0, busy_retry_limit=2, busy_retry_backoff_ms=1)

    holder = StateDB(path).connect()
    try:
        holder.execute("BEGIN IMMEDIATE")
        with pytest.raises(StateDBBusyError, match="3 attempt"):
            _insert_card(impatient, "ev_blocked", 1)
        # Readers are not blocked by the open writer.
        assert impatient.query_one("SELECT COUNT(*) AS n FROM evidence_cards") == {"n": 0}
    finally:
        holder.execute("ROLLBACK")
        holder.close()

    _insert_card(impatient, "ev_after", 1)
    assert impatient.query_one("SELECT id FROM evidence_cards") == {"id": "ev_after"}


def test_statement_errors_are_wrapped(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "packsmith.sqlite3")
    db.migrate()
    with pytest.raises(StateDBError, match="no such table"):
        db.query_all("SELECT * FROM missing_table")
