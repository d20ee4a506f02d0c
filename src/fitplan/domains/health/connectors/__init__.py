"""Store connectors: the two persistence boundaries of the onboarding core."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class LocalCacheStore(Protocol):
    """Fast on-device document store keyed by ``(user_id, section)``.

    Documents are the camelCase shapes produced by
    ``connectors.adapters.to_local_document``.
    """

    def get(self, user_id: str, section: str) -> tuple[dict[str, Any] | None, bool]:
        """Return ``(document, found)``."""
        ...

    def put(self, user_id: str, section: str, document: dict[str, Any]) -> None:
        """Insert or replace the document."""
        ...

    def delete(self, user_id: str, section: str) -> bool:
        """Delete the document. Returns True if it existed."""
        ...


@runtime_checkable
class RemoteStore(Protocol):
    """Authoritative remote store with per-entity upsert semantics.

    ``table`` is the remote table name for an entity (see
    ``connectors.adapters.REMOTE_TABLES``). Implementations raise
    ``StoreError`` on failure; no multi-entity transaction is assumed.
    """

    async def upsert(self, user_id: str, table: str, record: dict[str, Any]) -> None:
        """Insert or replace the record for this user."""
        ...

    async def get(self, user_id: str, table: str) -> tuple[dict[str, Any] | None, bool]:
        """Return ``(record, found)``."""
        ...

    async def delete(self, user_id: str, table: str) -> bool:
        """Delete the record. Returns True if it existed."""
        ...
