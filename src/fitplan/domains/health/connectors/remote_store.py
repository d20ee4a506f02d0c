"""In-process remote store.

Stands in for the hosted database when none is configured (local
development and tests). Records are deep-copied on the way in and out so
callers can never mutate stored state by reference. Each call completes
without yielding, so no lock is needed inside one event loop.
"""

from __future__ import annotations

import copy
import logging
from typing import Any

logger = logging.getLogger(__name__)


class InMemoryRemoteStore:
    """RemoteStore implementation holding ``{table: {user_id: record}}``.

    Usage::

        remote = InMemoryRemoteStore()
        await remote.upsert("u1", "profiles", {"user_id": "u1", ...})
        record, found = await remote.get("u1", "profiles")
    """

    def __init__(self) -> None:
        self._tables: dict[str, dict[str, dict[str, Any]]] = {}
        self.upsert_count = 0

    async def upsert(self, user_id: str, table: str, record: dict[str, Any]) -> None:
        self._tables.setdefault(table, {})[user_id] = copy.deepcopy(record)
        self.upsert_count += 1
        logger.debug("Remote upsert %s for user %s", table, user_id)

    async def get(self, user_id: str, table: str) -> tuple[dict[str, Any] | None, bool]:
        record = self._tables.get(table, {}).get(user_id)
        if record is None:
            return None, False
        return copy.deepcopy(record), True

    async def delete(self, user_id: str, table: str) -> bool:
        return self._tables.get(table, {}).pop(user_id, None) is not None

    def record_count(self, table: str | None = None) -> int:
        """Number of stored records, in one table or overall."""
        if table is not None:
            return len(self._tables.get(table, {}))
        return sum(len(rows) for rows in self._tables.values())
