"""SQLite database management for the onboarding local cache.

Handles connection lifecycle, schema creation, and migrations.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path

logger = logging.getLogger(__name__)

# Current schema version
SCHEMA_VERSION = 2

# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------

_SCHEMA_V1 = """
-- One row per (user, onboarding section); payload is an encrypted JSON document
CREATE TABLE IF NOT EXISTS local_cache (
    user_id     TEXT NOT NULL,
    section     TEXT NOT NULL,
    payload_enc TEXT NOT NULL,
    revision    TEXT,
    sync_state  TEXT NOT NULL DEFAULT 'saved_local',
    updated_at  TEXT NOT NULL,
    PRIMARY KEY (user_id, section)
);

CREATE TABLE IF NOT EXISTS schema_version (
    version    INTEGER NOT NULL,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_cache_sync_state ON local_cache(sync_state);
"""

# ---------------------------------------------------------------------------
# V2: Audit log table (tool calls, sync writes, compensating deletes)
# ---------------------------------------------------------------------------

_SCHEMA_V2 = """
CREATE TABLE IF NOT EXISTS audit_log (
    id              TEXT PRIMARY KEY,
    timestamp       TEXT NOT NULL DEFAULT (datetime('now')),
    action          TEXT NOT NULL,
    tool_name       TEXT,
    tool_input_hash TEXT,
    user_hash       TEXT,
    entity          TEXT,
    duration_ms     REAL,
    status          TEXT NOT NULL DEFAULT 'success',
    error_type      TEXT,
    metadata_json   TEXT
);

CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log(timestamp);
CREATE INDEX IF NOT EXISTS idx_audit_action    ON audit_log(action);
CREATE INDEX IF NOT EXISTS idx_audit_entity    ON audit_log(entity);
"""


class DatabaseError(Exception):
    """Raised when database operations fail."""


class CacheDatabase:
    """SQLite database manager for the onboarding local cache.

    Supports both file-based and in-memory (`:memory:`) databases.
    In-memory mode is used for testing.

    The connection is shared across threads (the onboarding tracker
    autosaves from a timer thread), so every statement that touches it
    should run under ``db.lock``.

    Usage::

        db = CacheDatabase(":memory:")
        db.initialize()
        with db.lock:
            db.connection.execute(...)
        db.close()
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        """Initialize database manager.

        Args:
            db_path: Path to SQLite file, or ":memory:" for in-memory DB.
        """
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self.lock = threading.RLock()

    @property
    def connection(self) -> sqlite3.Connection:
        """Get the active database connection.

        Raises:
            DatabaseError: If the database has not been initialized.
        """
        if self._conn is None:
            raise DatabaseError("Database not initialized. Call initialize() first.")
        return self._conn

    def initialize(self) -> None:
        """Create the database connection and ensure schema exists.

        For file-based databases, creates parent directories if needed.
        Idempotent: safe to call multiple times.
        """
        if self._conn is not None:
            return

        try:
            if self._db_path != ":memory:":
                db_file = Path(self._db_path).expanduser()
                db_file.parent.mkdir(parents=True, exist_ok=True)
                self._conn = sqlite3.connect(str(db_file), check_same_thread=False)
            else:
                self._conn = sqlite3.connect(":memory:", check_same_thread=False)
        except (sqlite3.Error, OSError) as exc:
            raise DatabaseError(f"Cannot open database {self._db_path}: {exc}") from exc

        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")

        self._ensure_schema()
        logger.info("Onboarding cache database initialized: %s", self._db_path)

    def _ensure_schema(self) -> None:
        """Create tables if they don't exist and apply migrations."""
        conn = self.connection

        with self.lock:
            conn.executescript(_SCHEMA_V1)

            row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
            current_version = row[0] if row[0] is not None else 0

            if current_version < 2:
                conn.executescript(_SCHEMA_V2)
                logger.info("Applied schema migration V2: audit_log table")

            if current_version < SCHEMA_VERSION:
                conn.execute(
                    "INSERT INTO schema_version (version) VALUES (?)",
                    (SCHEMA_VERSION,),
                )
                conn.commit()
                logger.info(
                    "Schema updated from version %d to %d", current_version, SCHEMA_VERSION
                )

    def get_schema_version(self) -> int:
        """Return the current schema version."""
        with self.lock:
            row = self.connection.execute("SELECT MAX(version) FROM schema_version").fetchone()
        return row[0] if row[0] is not None else 0

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            with self.lock:
                self._conn.close()
                self._conn = None
            logger.info("Onboarding cache database closed")

    def __enter__(self) -> CacheDatabase:
        self.initialize()
        return self

    def __exit__(self, *args) -> None:
        self.close()
