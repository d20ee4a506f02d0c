"""SQLite-backed local cache: LocalCacheStore over the encrypted repository."""

from __future__ import annotations

import logging
from typing import Any

from fitplan.core.storage.models import CacheEntry
from fitplan.core.storage.repository import CacheRepository, RepositoryError
from fitplan.domains.health.errors import StoreError

logger = logging.getLogger(__name__)


class SqliteLocalCache:
    """LocalCacheStore implementation backed by ``CacheRepository``.

    The document's ``revision`` and ``syncState`` are mirrored into clear
    text columns so pending sections can be listed without decrypting.

    Usage::

        cache = SqliteLocalCache(CacheRepository(db, encryptor))
        cache.put("u1", "personal_info", {"data": {...}, "syncState": "saved_local"})
        doc, found = cache.get("u1", "personal_info")
    """

    def __init__(self, repository: CacheRepository) -> None:
        self._repo = repository

    def get(self, user_id: str, section: str) -> tuple[dict[str, Any] | None, bool]:
        try:
            entry = self._repo.get(user_id, section)
        except RepositoryError as exc:
            raise StoreError(f"Local cache read failed for {section}: {exc}") from exc
        if entry is None:
            return None, False
        return entry.document, True

    def put(self, user_id: str, section: str, document: dict[str, Any]) -> None:
        entry = CacheEntry(
            user_id=user_id,
            section=section,
            document=document,
            revision=document.get("revision"),
            sync_state=document.get("syncState", "saved_local"),
            updated_at=document.get("savedAt", ""),
        )
        try:
            self._repo.upsert(entry)
        except RepositoryError as exc:
            raise StoreError(f"Local cache write failed for {section}: {exc}") from exc

    def delete(self, user_id: str, section: str) -> bool:
        try:
            return self._repo.delete(user_id, section)
        except RepositoryError as exc:
            raise StoreError(f"Local cache delete failed for {section}: {exc}") from exc
