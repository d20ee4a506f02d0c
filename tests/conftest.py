"""Shared test fixtures for FitPlan onboarding tests."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any

import pytest

# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENCRYPTION_KEY", "")
    monkeypatch.setenv("PREVIOUS_ENCRYPTION_KEYS", "")
    monkeypatch.setenv("DB_PATH", ":memory:")
    monkeypatch.setenv("AUTOSAVE_DEBOUNCE_SECONDS", "0.05")

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from fitplan.domains.health.connectors.remote_store import InMemoryRemoteStore  # noqa: E402
from fitplan.domains.health.domain_logic.models import (  # noqa: E402
    BodyAnalysis,
    DietPreferences,
    OnboardingSections,
    PersonalInfo,
    WorkoutPreferences,
)
from fitplan.domains.health.errors import StoreError  # noqa: E402


# ---------------------------------------------------------------------------
# Onboarding section builders
# ---------------------------------------------------------------------------

def _make_sections(
    *,
    personal: dict[str, Any] | None = None,
    body: dict[str, Any] | None = None,
    diet: dict[str, Any] | None = None,
    workout: dict[str, Any] | None = None,
) -> OnboardingSections:
    """A complete, valid onboarding (70 kg / 175 cm / 30 y male, maintenance).

    Each keyword overrides fields of one section.
    """
    return OnboardingSections(
        personal_info=PersonalInfo(**{
            "first_name": "Alex",
            "last_name": "Rivera",
            "age": 30,
            "gender": "male",
            "country": "US",
            "state": "CA",
            "wake_time": "06:30",
            "sleep_time": "22:30",
            "occupation_type": "desk_job",
            **(personal or {}),
        }),
        body_analysis=BodyAnalysis(**{
            "height_cm": 175.0,
            "current_weight_kg": 70.0,
            **(body or {}),
        }),
        diet_preferences=DietPreferences(**{
            "diet_type": "non-veg",
            "drinks_enough_water": True,
            **(diet or {}),
        }),
        workout_preferences=WorkoutPreferences(**{
            "location": "gym",
            "intensity": "intermediate",
            "primary_goals": ["general_fitness"],
            "activity_level": "moderate",
            "workout_frequency_per_week": 4,
            "time_preference": 45,
            **(workout or {}),
        }),
    )


@pytest.fixture
def make_sections():
    """Factory for complete onboarding sections with per-section overrides."""
    return _make_sections


@pytest.fixture
def sections() -> OnboardingSections:
    return _make_sections()


# ---------------------------------------------------------------------------
# Remote store with injectable failures
# ---------------------------------------------------------------------------

class FlakyRemoteStore(InMemoryRemoteStore):
    """InMemoryRemoteStore that fails, hangs or loses acks on chosen tables."""

    def __init__(
        self,
        *,
        fail_upsert: tuple[str, ...] = (),
        fail_get: tuple[str, ...] = (),
        fail_delete: tuple[str, ...] = (),
        hang_upsert: tuple[str, ...] = (),
        commit_then_fail: tuple[str, ...] = (),
        hang_seconds: float = 1.0,
    ) -> None:
        super().__init__()
        self.fail_upsert = set(fail_upsert)
        self.fail_get = set(fail_get)
        self.fail_delete = set(fail_delete)
        self.hang_upsert = set(hang_upsert)
        self.commit_then_fail = set(commit_then_fail)
        self.hang_seconds = hang_seconds
        self.calls: list[tuple[str, str]] = []

    async def upsert(self, user_id: str, table: str, record: dict[str, Any]) -> None:
        self.calls.append(("upsert", table))
        if table in self.hang_upsert:
            await asyncio.sleep(self.hang_seconds)
        if table in self.fail_upsert:
            raise StoreError(f"{table} unavailable")
        await super().upsert(user_id, table, record)
        if table in self.commit_then_fail:
            raise StoreError(f"{table} acknowledgement lost")

    async def get(self, user_id: str, table: str):
        self.calls.append(("get", table))
        if table in self.fail_get:
            raise StoreError(f"{table} unavailable")
        return await super().get(user_id, table)

    async def delete(self, user_id: str, table: str) -> bool:
        self.calls.append(("delete", table))
        if table in self.fail_delete:
            raise StoreError(f"{table} unavailable")
        return await super().delete(user_id, table)

    def upserted_tables(self) -> list[str]:
        return [table for op, table in self.calls if op == "upsert"]


# ---------------------------------------------------------------------------
# In-memory storage fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def cache_db():
    """Create an in-memory CacheDatabase for testing."""
    from fitplan.core.storage.database import CacheDatabase

    db = CacheDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def field_encryptor():
    """Create a FieldEncryptor with a test key."""
    from fitplan.core.storage.encryption import FieldEncryptor

    return FieldEncryptor(FieldEncryptor.generate_key())


@pytest.fixture
def cache_repository(cache_db, field_encryptor):
    """Create a CacheRepository backed by in-memory SQLite."""
    from fitplan.core.storage.repository import CacheRepository

    return CacheRepository(cache_db, field_encryptor)


@pytest.fixture
def audit_logger(cache_db):
    """Create an AuditLogger backed by in-memory SQLite."""
    from fitplan.core.audit.logger import AuditLogger

    return AuditLogger(cache_db)


@pytest.fixture
def local_cache(cache_repository):
    from fitplan.domains.health.connectors.local_cache import SqliteLocalCache

    return SqliteLocalCache(cache_repository)


@pytest.fixture
def remote_store() -> FlakyRemoteStore:
    """A remote store with no failures configured (tests add them)."""
    return FlakyRemoteStore()


@pytest.fixture
def coordinator(local_cache, remote_store, audit_logger):
    from fitplan.domains.health.sync.coordinator import SyncCoordinator

    return SyncCoordinator(local_cache, remote_store, audit_logger=audit_logger, timeout_seconds=0.2)
