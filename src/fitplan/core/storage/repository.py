"""Local cache repository: encrypted CRUD keyed by (user_id, section).

The repository mediates between ``CacheEntry`` objects and the SQLite
database, using FieldEncryptor to encrypt/decrypt section documents.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone

from fitplan.core.storage.database import CacheDatabase
from fitplan.core.storage.encryption import EncryptionError, FieldEncryptor
from fitplan.core.storage.models import CacheEntry

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Raised when repository operations fail."""


class CacheRepository:
    """CRUD repository for encrypted onboarding section documents.

    Usage::

        db = CacheDatabase(":memory:")
        db.initialize()
        repo = CacheRepository(db, FieldEncryptor(key="..."))

        repo.upsert(CacheEntry(user_id="u1", section="personal_info", document={...}))
        entry = repo.get("u1", "personal_info")
    """

    def __init__(self, database: CacheDatabase, encryptor: FieldEncryptor) -> None:
        self._db = database
        self._enc = encryptor

    @staticmethod
    def _now_iso() -> str:
        return datetime.now(timezone.utc).isoformat()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, entry: CacheEntry) -> CacheEntry:
        """Insert or replace the document for ``(entry.user_id, entry.section)``.

        Returns:
            The stored entry, with ``updated_at`` filled in.

        Raises:
            RepositoryError: If the entry lacks a key or the write fails.
        """
        if not entry.user_id or not entry.section:
            raise RepositoryError("Cache entries need both user_id and section")

        updated_at = entry.updated_at or self._now_iso()
        try:
            payload = self._enc.encrypt(entry.document)
        except EncryptionError as exc:
            raise RepositoryError(f"Cannot encrypt {entry.section}: {exc}") from exc

        try:
            with self._db.lock:
                conn = self._db.connection
                conn.execute(
                    """INSERT INTO local_cache
                       (user_id, section, payload_enc, revision, sync_state, updated_at)
                       VALUES (?, ?, ?, ?, ?, ?)
                       ON CONFLICT(user_id, section) DO UPDATE SET
                           payload_enc = excluded.payload_enc,
                           revision    = excluded.revision,
                           sync_state  = excluded.sync_state,
                           updated_at  = excluded.updated_at""",
                    (
                        entry.user_id,
                        entry.section,
                        payload,
                        entry.revision,
                        entry.sync_state,
                        updated_at,
                    ),
                )
                conn.commit()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Cache write failed for {entry.section}: {exc}") from exc

        logger.debug("Cached %s for user %s (%s)", entry.section, entry.user_id, entry.sync_state)
        return CacheEntry(
            user_id=entry.user_id,
            section=entry.section,
            document=entry.document,
            revision=entry.revision,
            sync_state=entry.sync_state,
            updated_at=updated_at,
        )

    def set_sync_state(self, user_id: str, section: str, sync_state: str) -> bool:
        """Update only the sync state of a cached section.

        Returns:
            True if a row was updated.
        """
        with self._db.lock:
            cursor = self._db.connection.execute(
                "UPDATE local_cache SET sync_state = ? WHERE user_id = ? AND section = ?",
                (sync_state, user_id, section),
            )
            self._db.connection.commit()
        return cursor.rowcount > 0

    def delete(self, user_id: str, section: str) -> bool:
        """Delete one cached section. Returns True if it existed."""
        with self._db.lock:
            cursor = self._db.connection.execute(
                "DELETE FROM local_cache WHERE user_id = ? AND section = ?",
                (user_id, section),
            )
            self._db.connection.commit()
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, user_id: str, section: str) -> CacheEntry | None:
        """Return the decrypted entry, or None if nothing is cached."""
        with self._db.lock:
            row = self._db.connection.execute(
                "SELECT * FROM local_cache WHERE user_id = ? AND section = ?",
                (user_id, section),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_entry(row)

    def list_entries(self, user_id: str) -> list[CacheEntry]:
        """Return every cached section of a user, ordered by section name."""
        with self._db.lock:
            rows = self._db.connection.execute(
                "SELECT * FROM local_cache WHERE user_id = ? ORDER BY section", (user_id,)
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def sections_in_state(self, user_id: str, sync_state: str) -> list[str]:
        """Section names of a user currently in ``sync_state``."""
        with self._db.lock:
            rows = self._db.connection.execute(
                "SELECT section FROM local_cache WHERE user_id = ? AND sync_state = ? "
                "ORDER BY section",
                (user_id, sync_state),
            ).fetchall()
        return [row["section"] for row in rows]

    def count_entries(self) -> int:
        """Total number of cached sections across all users."""
        with self._db.lock:
            row = self._db.connection.execute("SELECT COUNT(*) FROM local_cache").fetchone()
        return row[0]

    def _row_to_entry(self, row: sqlite3.Row) -> CacheEntry:
        try:
            document = self._enc.decrypt(row["payload_enc"]) or {}
        except EncryptionError as exc:
            raise RepositoryError(
                f"Cannot decrypt cached {row['section']} for user {row['user_id']}: {exc}"
            ) from exc
        return CacheEntry(
            user_id=row["user_id"],
            section=row["section"],
            document=document,
            revision=row["revision"],
            sync_state=row["sync_state"],
            updated_at=row["updated_at"],
        )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def rotate_keys(self) -> int:
        """Re-encrypt every cached payload under the primary key.

        Returns:
            Number of rows rewritten.
        """
        with self._db.lock:
            conn = self._db.connection
            rows = conn.execute("SELECT user_id, section, payload_enc FROM local_cache").fetchall()
            for row in rows:
                try:
                    token = self._enc.rotate(row["payload_enc"])
                except EncryptionError as exc:
                    raise RepositoryError(
                        f"Key rotation failed for {row['section']}: {exc}"
                    ) from exc
                conn.execute(
                    "UPDATE local_cache SET payload_enc = ? WHERE user_id = ? AND section = ?",
                    (token, row["user_id"], row["section"]),
                )
            conn.commit()
        logger.info("Rotated encryption for %d cached sections", len(rows))
        return len(rows)
