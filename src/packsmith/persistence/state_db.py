"""
packsmith — state database

File: src/packsmith/persistence/state_db.py

Purpose
- Own the SQLite file behind the durable stores: base pointers, governance
  states, proposals and the evidence ledger.

Functional requirements
- ``migrate`` creates the pack-state tables once and records a checksum per
  migration; an edited migration or a database written by a newer packsmith is
  refused with ``StateDBMigrationError``.
- Evidence cards are append-only; triggers abort any UPDATE or DELETE.
- ``transaction`` opens ``BEGIN IMMEDIATE`` so read-check-write sequences such
  as the base compare-and-swap serialize across processes. Nested calls on the
  same connection become savepoints.

Non-functional requirements
- One short-lived connection per call; WAL keeps readers off the writer's path.
- SQLITE_BUSY is retried a bounded number of times with exponential backoff.
"""

from __future__ import annotations

import hashlib
import itertools
import sqlite3
import time
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Final, NamedTuple

import structlog

from packsmith.constants import STATE_DB_SCHEMA_VERSION
from packsmith.domain.models import utc_now_iso

SQLValue = str | int | float | bytes | None
SQLParams = Sequence[SQLValue]
RowValue = str | int | float | bytes | None

DEFAULT_BUSY_TIMEOUT_MS: Final[int] = 5_000
DEFAULT_BUSY_RETRY_LIMIT: Final[int] = 4
DEFAULT_BUSY_RETRY_BACKOFF_MS: Final[int] = 25

logger = structlog.get_logger(__name__)

_VERSIONS_DDL: Final[str] = """
CREATE TABLE IF NOT EXISTS schema_versions (
    version INTEGER PRIMARY KEY CHECK (version > 0),
    name TEXT NOT NULL,
    checksum TEXT NOT NULL CHECK (length(checksum) = 64),
    applied_at TEXT NOT NULL
)
"""

_PACK_STATE_DDL: Final[tuple[str, ...]] = (
    """
    CREATE TABLE IF NOT EXISTS project_bases (
        project_id TEXT PRIMARY KEY,
        pack_sha256 TEXT NOT NULL CHECK (length(pack_sha256) = 64),
        archive BLOB NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS governance_states (
        project_id TEXT PRIMARY KEY,
        locked INTEGER NOT NULL CHECK (locked IN (0, 1)),
        locked_pack_sha256 TEXT,
        payload_json TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        CHECK (locked = 0 OR locked_pack_sha256 IS NOT NULL)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS proposals (
        id TEXT PRIMARY KEY,
        project_id TEXT NOT NULL,
        kind TEXT NOT NULL,
        base_pack_sha256 TEXT,
        created_at TEXT NOT NULL,
        payload_json TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS evidence_cards (
        id TEXT PRIMARY KEY,
        seq INTEGER NOT NULL UNIQUE,
        project_id TEXT NOT NULL,
        kind TEXT NOT NULL,
        created_at TEXT NOT NULL,
        payload_json TEXT NOT NULL
    )
    """,
    """
    CREATE TRIGGER IF NOT EXISTS evidence_cards_append_only_update
    BEFORE UPDATE ON evidence_cards
    BEGIN
        SELECT RAISE(ABORT, 'evidence cards are append-only');
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS evidence_cards_append_only_delete
    BEFORE DELETE ON evidence_cards
    BEGIN
        SELECT RAISE(ABORT, 'evidence cards are append-only');
    END
    """,
    "CREATE INDEX IF NOT EXISTS idx_proposals_project_created ON proposals(project_id, created_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_evidence_cards_project_seq ON evidence_cards(project_id, seq DESC)",
)


class Migration(NamedTuple):
    version: int
    name: str
    statements: tuple[str, ...]

    @property
    def checksum(self) -> str:
        # Whitespace at line ends is ignored so reformatting SQL keeps the checksum.
        digest = hashlib.sha256(f"{self.version}:{self.name}\n".encode())
        for statement in self.statements:
            lines = (line.rstrip() for line in statement.strip().splitlines())
            digest.update("\n".join(lines).encode("utf-8") + b"\n--\n")
        return digest.hexdigest()


MIGRATIONS: Final[tuple[Migration, ...]] = (
    Migration(1, "initial_pack_state_schema", _PACK_STATE_DDL),
)

_BUSY_CODES: Final[frozenset[int]] = frozenset(
    code
    for code in (
        getattr(sqlite3, "SQLITE_BUSY", None),
        getattr(sqlite3, "SQLITE_BUSY_SNAPSHOT", None),
        getattr(sqlite3, "SQLITE_LOCKED", None),
    )
    if isinstance(code, int)
)
_BUSY_MESSAGES: Final[tuple[str, ...]] = ("database is locked", "database table is locked")


class StateDBError(RuntimeError):
    """The state database could not complete an operation."""


class StateDBBusyError(StateDBError):
    """SQLITE_BUSY persisted through every retry."""


class StateDBMigrationError(StateDBError):
    """The on-disk schema cannot be brought to the version this build expects."""


def _is_busy(exc: sqlite3.Error) -> bool:
    if getattr(exc, "sqlite_errorcode", None) in _BUSY_CODES:
        return True
    message = str(exc).lower()
    return any(fragment in message for fragment in _BUSY_MESSAGES)


class StateDB:
    """Connection factory and query helpers for the packsmith state file."""

    def __init__(
        self,
        path: str | Path,
        *,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        busy_retry_limit: int = DEFAULT_BUSY_RETRY_LIMIT,
        busy_retry_backoff_ms: int = DEFAULT_BUSY_RETRY_BACKOFF_MS,
    ) -> None:
        for name, value in (
            ("busy_timeout_ms", busy_timeout_ms),
            ("busy_retry_limit", busy_retry_limit),
            ("busy_retry_backoff_ms", busy_retry_backoff_ms),
        ):
            if value < 0:
                raise ValueError(f"{name} must be >= 0")

        self.path = Path(path).expanduser()
        self._busy_timeout_ms = busy_timeout_ms
        self._retry_limit = busy_retry_limit
        self._backoff_s = busy_retry_backoff_ms / 1000.0
        self._savepoints = itertools.count(1)

    def connect(self) -> sqlite3.Connection:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            self.path,
            timeout=self._busy_timeout_ms / 1000.0,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        conn.execute(f"PRAGMA busy_timeout={self._busy_timeout_ms}")
        (mode,) = conn.execute("PRAGMA journal_mode=WAL").fetchone()
        if str(mode).lower() != "wal":
            conn.close()
            raise StateDBError(f"{self.path}: journal_mode must be WAL, got {mode!r}")
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self.connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(
        self,
        *,
        conn: sqlite3.Connection | None = None,
        immediate: bool = True,
    ) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside a transaction; commit on success, roll back on error."""

        if conn is None:
            with self.connection() as owned, self.transaction(conn=owned, immediate=immediate) as tx:
                yield tx
            return

        if conn.in_transaction:
            name = f"sp_{next(self._savepoints)}"
            self._run(conn, f"SAVEPOINT {name}")
            try:
                yield conn
            except Exception:
                self._run(conn, f"ROLLBACK TO SAVEPOINT {name}")
                self._run(conn, f"RELEASE SAVEPOINT {name}")
                raise
            self._run(conn, f"RELEASE SAVEPOINT {name}")
            return

        self._run(conn, "BEGIN IMMEDIATE" if immediate else "BEGIN")
        try:
            yield conn
        except Exception:
            self._run(conn, "ROLLBACK")
            raise
        self._run(conn, "COMMIT")

    def migrate(self) -> int:
        """Bring the file to ``STATE_DB_SCHEMA_VERSION`` and return the version."""

        known = {migration.version: migration for migration in MIGRATIONS}
        if sorted(known) != list(range(1, STATE_DB_SCHEMA_VERSION + 1)):
            raise StateDBMigrationError(
                f"migrations {sorted(known)} do not cover schema version {STATE_DB_SCHEMA_VERSION}"
            )

        with self.connection() as conn:
            self._run(conn, _VERSIONS_DDL)
            applied = {
                int(row["version"]): str(row["checksum"])
                for row in self.query_all("SELECT version, checksum FROM schema_versions", conn=conn)
            }
            newest = max(applied, default=0)
            if newest > STATE_DB_SCHEMA_VERSION:
                raise StateDBMigrationError(
                    f"{self.path} was written by a newer packsmith "
                    f"(db schema {newest}, supported {STATE_DB_SCHEMA_VERSION})"
                )

            for version, migration in sorted(known.items()):
                if version in applied:
                    if applied[version] != migration.checksum:
                        raise StateDBMigrationError(
                            f"migration {version} ({migration.name}) checksum mismatch: "
                            f"db={applied[version]} code={migration.checksum}"
                        )
                    continue
                with self.transaction(conn=conn) as tx:
                    for statement in migration.statements:
                        self._run(tx, statement)
                    self._run(
                        tx,
                        "INSERT INTO schema_versions (version, name, checksum, applied_at)"
                        " VALUES (?, ?, ?, ?)",
                        (version, migration.name, migration.checksum, utc_now_iso()),
                    )
                logger.info("state_db_migrated", path=str(self.path), version=version)

        return STATE_DB_SCHEMA_VERSION

    def execute(
        self,
        sql: str,
        params: SQLParams = (),
        *,
        conn: sqlite3.Connection | None = None,
    ) -> int:
        """Run a write statement and return the affected row count."""

        if conn is not None:
            return self._run(conn, sql, params).rowcount
        with self.transaction() as tx:
            return self._run(tx, sql, params).rowcount

    def query_all(
        self,
        sql: str,
        params: SQLParams = (),
        *,
        conn: sqlite3.Connection | None = None,
    ) -> list[dict[str, RowValue]]:
        if conn is not None:
            return [dict(row) for row in self._run(conn, sql, params).fetchall()]
        with self.connection() as owned:
            return [dict(row) for row in self._run(owned, sql, params).fetchall()]

    def query_one(
        self,
        sql: str,
        params: SQLParams = (),
        *,
        conn: sqlite3.Connection | None = None,
    ) -> dict[str, RowValue] | None:
        rows = self.query_all(sql, params, conn=conn)
        return rows[0] if rows else None

    def _run(
        self,
        conn: sqlite3.Connection,
        sql: str,
        params: SQLParams = (),
    ) -> sqlite3.Cursor:
        attempt = 0
        while True:
            try:
                return conn.execute(sql, tuple(params))
            except sqlite3.IntegrityError:
                raise
            except sqlite3.Error as exc:
                if not _is_busy(exc):
                    raise StateDBError(f"{self.path}: {exc}") from exc
                if attempt >= self._retry_limit:
                    raise StateDBBusyError(
                        f"{self.path}: still busy after {attempt + 1} attempt(s): {exc}"
                    ) from exc
                logger.debug("state_db_busy_retry", path=str(self.path), attempt=attempt + 1)
                time.sleep(self._backoff_s * (2**attempt))
                attempt += 1


__all__ = [
    "DEFAULT_BUSY_RETRY_BACKOFF_MS",
    "DEFAULT_BUSY_RETRY_LIMIT",
    "DEFAULT_BUSY_TIMEOUT_MS",
    "MIGRATIONS",
    "Migration",
    "RowValue",
    "SQLParams",
    "SQLValue",
    "StateDB",
    "StateDBBusyError",
    "StateDBError",
    "StateDBMigrationError",
]
