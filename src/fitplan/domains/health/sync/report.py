"""SyncReport: the explicit outcome of one sync run, entity by entity."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from fitplan.domains.health.errors import (
    PersistenceCriticalFailure,
    PersistenceError,
    PersistencePartialFailure,
)


@dataclass
class SyncReport:
    """Per-entity result of a sync run.

    ``failed`` maps entity -> ``"ErrorType: message"``. ``not_attempted`` lists
    entities left out by an abort or cancellation, ``skipped`` those with no
    data to send. ``states`` holds the sync state each attempted entity
    ended in, with ``conflict`` reported for entities whose remote copy was
    overwritten by a diverging local one.
    Two reports for the same outcome compare equal regardless of timing.
    """

    user_id: str
    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    not_attempted: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)
    states: dict[str, str] = field(default_factory=dict)
    compensated: list[str] = field(default_factory=list)
    critical_failure: bool = False
    cancelled: bool = False
    duration_ms: float = field(default=0.0, compare=False)

    @property
    def status(self) -> str:
        if self.critical_failure:
            return "critical_failure"
        if self.cancelled:
            return "cancelled"
        if self.failed:
            return "partial"
        return "success"

    @property
    def retry_entities(self) -> list[str]:
        """Entities a later resync should send again."""
        return list(self.failed) + list(self.not_attempted)

    @property
    def error(self) -> PersistenceError | None:
        if self.critical_failure:
            reason = next(iter(self.failed.values()), "critical entity not written")
            return PersistenceCriticalFailure(f"Profile sync failed: {reason}", self)
        if self.failed:
            names = ", ".join(self.failed)
            return PersistencePartialFailure(f"Some sections failed to sync: {names}", self)
        return None

    def raise_for_status(self) -> None:
        """Raise the typed persistence error for a failed run, if any."""
        error = self.error
        if error is not None:
            raise error

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "status": self.status,
            "succeeded": list(self.succeeded),
            "failed": dict(self.failed),
            "not_attempted": list(self.not_attempted),
            "skipped": list(self.skipped),
            "conflicts": list(self.conflicts),
            "states": dict(self.states),
            "compensated": list(self.compensated),
            "critical_failure": self.critical_failure,
            "cancelled": self.cancelled,
            "duration_ms": round(self.duration_ms, 2),
        }
