"""Tests for CacheDatabase: schema creation, versioning, lifecycle."""

from __future__ import annotations

import pytest

from fitplan.core.storage.database import SCHEMA_VERSION, CacheDatabase, DatabaseError


class TestInitialization:
    def test_in_memory_initialize(self):
        db = CacheDatabase(":memory:")
        db.initialize()
        assert db.connection is not None
        db.close()

    def test_double_initialize_is_idempotent(self):
        db = CacheDatabase(":memory:")
        db.initialize()
        conn1 = db.connection
        db.initialize()
        assert db.connection is conn1
        db.close()

    def test_connection_before_init_raises(self):
        db = CacheDatabase(":memory:")
        with pytest.raises(DatabaseError, match="not initialized"):
            _ = db.connection

    def test_context_manager(self):
        with CacheDatabase(":memory:") as db:
            assert db.connection is not None
        with pytest.raises(DatabaseError):
            _ = db.connection


class TestSchema:
    def test_schema_version_recorded(self):
        with CacheDatabase(":memory:") as db:
            assert db.get_schema_version() == SCHEMA_VERSION

    def test_tables_created(self):
        with CacheDatabase(":memory:") as db:
            cursor = db.connection.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'"
            )
            tables = {row[0] for row in cursor.fetchall()}
        assert {"local_cache", "schema_version", "audit_log"} <= tables

    def test_indexes_created(self):
        expected = {
            "idx_cache_sync_state",
            "idx_audit_timestamp",
            "idx_audit_action",
            "idx_audit_entity",
        }
        with CacheDatabase(":memory:") as db:
            cursor = db.connection.execute("SELECT name FROM sqlite_master WHERE type='index'")
            indexes = {row[0] for row in cursor.fetchall()}
        for idx in expected:
            assert idx in indexes, f"Missing index: {idx}"

    def test_wal_mode_enabled(self):
        with CacheDatabase(":memory:") as db:
            mode = db.connection.execute("PRAGMA journal_mode").fetchone()[0].lower()
            # In-memory databases report 'memory' instead of 'wal'
            assert mode in ("wal", "memory")


class TestFileDatabase:
    def test_creates_parent_directories(self, tmp_path):
        db_path = tmp_path / "nested" / "dir" / "onboarding.db"
        db = CacheDatabase(str(db_path))
        db.initialize()
        assert db_path.exists()
        assert db.get_schema_version() == SCHEMA_VERSION
        db.close()

    def test_reopen_does_not_duplicate_version_rows(self, tmp_path):
        db_path = str(tmp_path / "onboarding.db")
        with CacheDatabase(db_path):
            pass
        with CacheDatabase(db_path) as db:
            rows = db.connection.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
            assert rows == 1
            assert db.get_schema_version() == SCHEMA_VERSION


class TestClose:
    def test_close_makes_connection_unavailable(self):
        db = CacheDatabase(":memory:")
        db.initialize()
        db.close()
        with pytest.raises(DatabaseError, match="not initialized"):
            _ = db.connection

    def test_double_close_is_safe(self):
        db = CacheDatabase(":memory:")
        db.initialize()
        db.close()
        db.close()
