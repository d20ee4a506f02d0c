"""Audit logger: PHI-free trail of tool calls, sync writes and deletions.

Every MCP tool invocation, every entity write performed by the sync
coordinator and every compensating or user-requested delete is recorded:

* ``tool_input_hash`` is the SHA-256 of canonical JSON (no raw health data).
* ``user_hash`` is the SHA-256 of the user id, so the trail can be joined
  per user without storing the identifier itself.
* ``entity`` names the onboarding section a sync event touched.
"""

from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from fitplan.core.storage.database import CacheDatabase

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------

def hash_payload(data: Any) -> str:
    """SHA-256 hash of canonical JSON.

    Returns:
        Hex-encoded digest, or empty string when ``data`` is not serializable.
    """
    try:
        canonical = json.dumps(data, sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError):
        return ""
    return hashlib.sha256(canonical.encode()).hexdigest()


# ---------------------------------------------------------------------------
# AuditEvent dataclass
# ---------------------------------------------------------------------------

@dataclass
class AuditEvent:
    """A single audit log entry."""

    action: str                          # 'tool_invocation' | 'sync_write' | 'data_delete'
    tool_name: str = ""
    tool_input_hash: str = ""
    user_hash: str | None = None
    entity: str | None = None
    duration_ms: float | None = None
    status: str = "success"              # 'success' | 'failure'
    error_type: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# AuditLogger
# ---------------------------------------------------------------------------

class AuditLogger:
    """Records audit events to the ``audit_log`` SQLite table.

    Writes are committed immediately. A failed audit write is logged and
    reported as an empty event id; it never propagates into the caller.

    Usage::

        audit = AuditLogger(cache_db)
        audit.log_sync_write(user_id="u1", entity="personal_info", status="success")
    """

    def __init__(self, database: CacheDatabase) -> None:
        self._db = database

    # ---------------------------------------------------------------
    # Write
    # ---------------------------------------------------------------

    def log_event(self, event: AuditEvent) -> str:
        """Insert an audit event and return its UUID."""
        event_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc).isoformat()
        metadata_json = (
            json.dumps(event.metadata, separators=(",", ":"), sort_keys=True)
            if event.metadata
            else None
        )

        try:
            with self._db.lock:
                conn = self._db.connection
                conn.execute(
                    """INSERT INTO audit_log
                       (id, timestamp, action, tool_name, tool_input_hash, user_hash,
                        entity, duration_ms, status, error_type, metadata_json)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        event_id,
                        now,
                        event.action,
                        event.tool_name or None,
                        event.tool_input_hash or None,
                        event.user_hash,
                        event.entity,
                        event.duration_ms,
                        event.status,
                        event.error_type,
                        metadata_json,
                    ),
                )
                conn.commit()
        except sqlite3.Error:
            logger.exception("Failed to write audit event %s", event.action)
            return ""

        return event_id

    def log_tool_call(
        self,
        tool_name: str,
        tool_input: Any = None,
        *,
        user_id: str | None = None,
        duration_ms: float | None = None,
        status: str = "success",
        error_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Log an MCP tool invocation. ``tool_input`` is hashed, never stored."""
        return self.log_event(AuditEvent(
            action="tool_invocation",
            tool_name=tool_name,
            tool_input_hash=hash_payload(tool_input) if tool_input else "",
            user_hash=hash_payload(user_id) if user_id else None,
            duration_ms=duration_ms,
            status=status,
            error_type=error_type,
            metadata=metadata or {},
        ))

    def log_sync_write(
        self,
        *,
        user_id: str,
        entity: str,
        status: str = "success",
        error_type: str | None = None,
        duration_ms: float | None = None,
        conflict: bool = False,
    ) -> str:
        """Log the outcome of one entity write performed by the sync coordinator."""
        return self.log_event(AuditEvent(
            action="sync_write",
            user_hash=hash_payload(user_id),
            entity=entity,
            duration_ms=duration_ms,
            status=status,
            error_type=error_type,
            metadata={"conflict": True} if conflict else {},
        ))

    def log_data_delete(
        self,
        *,
        user_id: str,
        entity: str | None = None,
        tool_name: str = "",
        count: int = 0,
        reason: str = "user_request",
    ) -> str:
        """Log a deletion (user request or compensating rollback)."""
        return self.log_event(AuditEvent(
            action="data_delete",
            tool_name=tool_name,
            user_hash=hash_payload(user_id),
            entity=entity,
            metadata={"records_deleted": count, "reason": reason},
        ))

    # ---------------------------------------------------------------
    # Read
    # ---------------------------------------------------------------

    def get_events(
        self,
        *,
        action: str | None = None,
        entity: str | None = None,
        user_id: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Query audit events with optional filters, newest first."""
        conditions: list[str] = []
        params: list[Any] = []

        if action:
            conditions.append("action = ?")
            params.append(action)
        if entity:
            conditions.append("entity = ?")
            params.append(entity)
        if user_id:
            conditions.append("user_hash = ?")
            params.append(hash_payload(user_id))

        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
        query = f"SELECT * FROM audit_log{where} ORDER BY timestamp DESC LIMIT ?"
        params.append(limit)

        with self._db.lock:
            rows = self._db.connection.execute(query, params).fetchall()
        return [dict(row) for row in rows]

    def count_events(self, *, action: str | None = None) -> int:
        """Count audit events, optionally of one action type."""
        with self._db.lock:
            if action:
                row = self._db.connection.execute(
                    "SELECT COUNT(*) FROM audit_log WHERE action = ?", (action,)
                ).fetchone()
            else:
                row = self._db.connection.execute("SELECT COUNT(*) FROM audit_log").fetchone()
        return row[0]
