"""SQLite database shared by the graph, contribution, audit and community stores.

One connection per Database instance. ``transaction()`` is re-entrant: the
outermost block issues ``BEGIN IMMEDIATE`` and commits or rolls back, nested
blocks join the enclosing transaction so a composite operation (claim a
contribution, mutate the graph, append an audit row) is a single unit.
"""
from __future__ import annotations

import json
import sqlite3
import threading
from collections.abc import Generator
from contextlib import contextmanager
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any

import structlog

from .exceptions import NotFoundOrForbidden, PersistenceError

logger = structlog.get_logger(__name__)


SCHEMA_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);

-- Graph: persons and families with denormalized link arrays (JSON)
CREATE TABLE IF NOT EXISTS people (
    handle TEXT PRIMARY KEY,
    display_name TEXT NOT NULL,
    gender TEXT NOT NULL DEFAULT 'unknown',
    generation INTEGER NOT NULL,
    birth_date TEXT,
    death_date TEXT,
    birth_year INTEGER,
    death_year INTEGER,
    is_living INTEGER NOT NULL DEFAULT 1,
    is_patrilineal INTEGER NOT NULL DEFAULT 0,
    is_privacy_filtered INTEGER NOT NULL DEFAULT 0,
    surname TEXT,
    first_name TEXT,
    nick_name TEXT,
    occupation TEXT,
    company TEXT,
    education TEXT,
    phone TEXT,
    email TEXT,
    zalo TEXT,
    facebook TEXT,
    hometown TEXT,
    current_address TEXT,
    biography TEXT,
    notes TEXT,
    families TEXT NOT NULL DEFAULT '[]',
    parent_families TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_people_generation ON people(generation, display_name);

CREATE TABLE IF NOT EXISTS families (
    handle TEXT PRIMARY KEY,
    father_handle TEXT,
    mother_handle TEXT,
    children TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_families_father ON families(father_handle);
CREATE INDEX IF NOT EXISTS idx_families_mother ON families(mother_handle);

-- Highest sequence number ever issued per handle prefix
CREATE TABLE IF NOT EXISTS handle_counters (
    prefix TEXT PRIMARY KEY,
    last_number INTEGER NOT NULL
);

-- Moderation queue
CREATE TABLE IF NOT EXISTS contributions (
    id TEXT PRIMARY KEY,
    author_id TEXT NOT NULL,
    author_email TEXT,
    person_handle TEXT,
    person_name TEXT,
    field_name TEXT NOT NULL,
    field_label TEXT,
    old_value TEXT,
    new_value TEXT NOT NULL,
    note TEXT,
    status TEXT NOT NULL DEFAULT 'pending',
    admin_note TEXT,
    reviewed_by TEXT,
    reviewed_at TEXT,
    applied_at TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_contributions_status ON contributions(status, created_at);
CREATE INDEX IF NOT EXISTS idx_contributions_author ON contributions(author_id, created_at);

-- Append-only audit trail
CREATE TABLE IF NOT EXISTS audit_logs (
    id TEXT PRIMARY KEY,
    actor_id TEXT NOT NULL,
    action TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    entity_id TEXT,
    entity_name TEXT,
    metadata TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_audit_logs_entity ON audit_logs(entity_id, entity_type);
CREATE INDEX IF NOT EXISTS idx_audit_logs_created ON audit_logs(created_at);

-- Community side collections (outside the graph invariants)
CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    description TEXT,
    start_at TEXT NOT NULL,
    location TEXT,
    type TEXT NOT NULL DEFAULT 'OTHER',
    creator_id TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS posts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    author_id TEXT,
    title TEXT,
    body TEXT NOT NULL,
    type TEXT NOT NULL DEFAULT 'general',
    status TEXT NOT NULL DEFAULT 'published',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS family_questions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    question TEXT NOT NULL,
    correct_answer TEXT NOT NULL,
    hint TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);
"""


def utc_now() -> datetime:
    """Return current UTC time (for use as default_factory)."""
    return datetime.now(UTC)


class Database:
    """SQLite database holding every table of the registry."""

    def __init__(self, db_path: Path | str = ":memory:", busy_timeout_ms: int = 5000):
        """Initialize the database.

        Args:
            db_path: Path to SQLite database file, or ":memory:" for in-memory
            busy_timeout_ms: How long a writer waits on a locked database
        """
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._busy_timeout_ms = busy_timeout_ms
        self._connection: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self._depth = 0
        self._initialize_schema()

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._connection is None:
            # Autocommit mode: transactions are opened explicitly in transaction().
            self._connection = sqlite3.connect(
                self.db_path, isolation_level=None, check_same_thread=False
            )
            self._connection.row_factory = sqlite3.Row
            self._connection.execute("PRAGMA foreign_keys=ON;")
            self._connection.execute(f"PRAGMA busy_timeout={int(self._busy_timeout_ms)};")
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode=WAL;")
        return self._connection

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Cursor, None, None]:
        """Context manager for database transactions.

        Storage failures surface as PersistenceError; registry errors raised
        inside the block roll back the outermost transaction unchanged.
        """
        with self._lock:
            conn = self._get_connection()
            outermost = self._depth == 0
            cursor = conn.cursor()
            try:
                if outermost:
                    cursor.execute("BEGIN IMMEDIATE")
                self._depth += 1
                try:
                    yield cursor
                finally:
                    self._depth -= 1
                if outermost:
                    conn.commit()
            except sqlite3.Error as exc:
                if outermost:
                    conn.rollback()
                logger.error("db.transaction_failed", error=str(exc), db_path=self.db_path)
                raise PersistenceError(str(exc)) from exc
            except BaseException:
                if outermost:
                    conn.rollback()
                raise
            finally:
                cursor.close()

    def _initialize_schema(self) -> None:
        """Initialize database schema."""
        conn = self._get_connection()
        conn.executescript(SCHEMA_SQL)
        row = conn.execute(
            "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
        ).fetchone()
        if row is None:
            conn.execute(
                "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                (SCHEMA_VERSION, utc_now().isoformat()),
            )

    def close(self) -> None:
        """Close database connection."""
        if self._connection:
            self._connection.close()
            self._connection = None

    # =========================================================================
    # Verified writes
    # =========================================================================

    @staticmethod
    def execute_verified(
        cursor: sqlite3.Cursor,
        sql: str,
        params: tuple[Any, ...],
        *,
        table: str,
        key: str,
    ) -> int:
        """Execute a write and fail when it touched no rows.

        Zero affected rows means the target is missing (or filtered away by
        the statement's conditions); it is never reported as a storage error.
        """
        cursor.execute(sql, params)
        if cursor.rowcount == 0:
            raise NotFoundOrForbidden(
                f"No {table} row updated for {key}", table=table, key=key
            )
        return cursor.rowcount

    # =========================================================================
    # Serialization Helpers
    # =========================================================================

    @staticmethod
    def serialize_datetime(dt: datetime | None) -> str | None:
        """Serialize datetime to ISO format."""
        return dt.isoformat() if dt else None

    @staticmethod
    def deserialize_datetime(s: str | None) -> datetime | None:
        """Deserialize ISO format to datetime."""
        if not s:
            return None
        return datetime.fromisoformat(s)

    @staticmethod
    def serialize_date(d: date | None) -> str | None:
        return d.isoformat() if d else None

    @staticmethod
    def deserialize_date(s: str | None) -> date | None:
        if not s:
            return None
        return date.fromisoformat(s)

    @staticmethod
    def serialize_json(obj: Any) -> str | None:
        """Serialize object to JSON string."""
        if obj is None:
            return None
        return json.dumps(obj, default=str, ensure_ascii=False)

    @staticmethod
    def deserialize_json(s: str | None) -> Any:
        """Deserialize JSON string to object."""
        if not s:
            return None
        return json.loads(s)

    def __enter__(self) -> Database:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False
