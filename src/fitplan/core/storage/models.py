"""Data models for the local cache persistence layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class CacheEntry:
    """One cached onboarding section for one user.

    ``document`` is stored encrypted at rest. ``revision`` and
    ``sync_state`` stay in clear text for sync bookkeeping queries.
    """

    user_id: str
    section: str
    document: dict[str, Any] = field(default_factory=dict)
    revision: str | None = None
    sync_state: str = "saved_local"  # 'not_saved' | 'saved_local' | 'saved_remote' | 'conflict'
    updated_at: str = ""
