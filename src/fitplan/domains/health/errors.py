"""Typed failures of the onboarding core.

InputError and SafetyBlocked are resolved locally (re-prompt the user) and
never reach the sync coordinator. The persistence errors wrap a SyncReport
so the caller can retry exactly the entities that failed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fitplan.domains.health.domain_logic.models import ValidationIssue, ValidationVerdict
    from fitplan.domains.health.sync.report import SyncReport


class FitPlanError(Exception):
    """Base class for every error raised by the onboarding core."""


class InputError(FitPlanError):
    """Mandatory minimum data is missing (height and weight both absent)."""

    def __init__(self, message: str, missing: list[str] | None = None) -> None:
        super().__init__(message)
        self.missing = missing or []


class SafetyBlocked(FitPlanError):
    """The verdict is ``blocked``; the plan must not be persisted."""

    def __init__(self, verdict: ValidationVerdict) -> None:
        reason = verdict.errors[0].message if verdict.errors else "plan blocked"
        super().__init__(reason)
        self.verdict = verdict


class SafetyWarning(FitPlanError):
    """Non-fatal issue. Never raised by the core; see ``as_exceptions``."""

    def __init__(self, issue: ValidationIssue) -> None:
        super().__init__(issue.message)
        self.issue = issue


def as_exceptions(verdict: ValidationVerdict) -> list[FitPlanError]:
    """Map a verdict onto the exception taxonomy for type-based branching."""
    result: list[FitPlanError] = []
    if verdict.is_blocked:
        result.append(SafetyBlocked(verdict))
    result.extend(SafetyWarning(issue) for issue in verdict.warnings)
    return result


class StoreError(FitPlanError):
    """A local or remote store rejected an operation."""


class StoreTimeout(StoreError):
    """A remote call exceeded its deadline."""


class PersistenceError(FitPlanError):
    def __init__(self, message: str, report: SyncReport) -> None:
        super().__init__(message)
        self.report = report


class PersistenceCriticalFailure(PersistenceError):
    """PersonalInfo could not be written; nothing else was attempted."""


class PersistencePartialFailure(PersistenceError):
    """The critical entity succeeded but some best-effort entities failed."""
