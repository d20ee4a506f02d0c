"""Caller-facing facade of the onboarding core.

``evaluate`` is a dry run, ``finalize`` computes, validates and syncs in
one call, ``resync`` retries what a previous run left behind. Input and
safety failures are raised before any store is touched.
"""

from __future__ import annotations

import logging

from fitplan.domains.health.connectors import LocalCacheStore
from fitplan.domains.health.domain_logic.calculation_engine import HealthCalculationEngine
from fitplan.domains.health.domain_logic.models import (
    ENTITY_ORDER,
    ComputedMetrics,
    OnboardingSections,
    ValidationVerdict,
)
from fitplan.domains.health.domain_logic.validation_engine import ValidationEngine
from fitplan.domains.health.errors import SafetyBlocked
from fitplan.domains.health.onboarding.tracker import DEFAULT_DEBOUNCE_SECONDS, OnboardingTracker
from fitplan.domains.health.sync.coordinator import CancelToken, SyncCoordinator
from fitplan.domains.health.sync.report import SyncReport

logger = logging.getLogger(__name__)


class OnboardingService:
    """Evaluate, finalize and resync onboarding data for one user at a time.

    Usage::

        service = OnboardingService(engine, validator, coordinator, local_cache)
        verdict = service.evaluate(sections)
        metrics, report = await service.finalize("u1", sections)
        if report.status == "partial":
            report = await service.resync("u1", report.retry_entities)
    """

    def __init__(
        self,
        engine: HealthCalculationEngine,
        validator: ValidationEngine,
        coordinator: SyncCoordinator,
        local_cache: LocalCacheStore,
        *,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
    ) -> None:
        self._engine = engine
        self._validator = validator
        self._coordinator = coordinator
        self._local = local_cache
        self._debounce = debounce_seconds

    def compute(self, sections: OnboardingSections) -> ComputedMetrics:
        """Metrics with their validation verdict attached. Raises InputError."""
        metrics = self._engine.compute(sections)
        metrics.validation = self._validator.evaluate(sections, metrics)
        return metrics

    def evaluate(self, sections: OnboardingSections) -> ValidationVerdict:
        """Dry run: validate without persisting anything."""
        return self._validator.evaluate(sections, self._engine.compute(sections))

    async def finalize(
        self,
        user_id: str,
        sections: OnboardingSections,
        *,
        cancel_token: CancelToken | None = None,
    ) -> tuple[ComputedMetrics, SyncReport]:
        """Compute, validate and sync.

        Raises:
            InputError: Neither height nor weight is present.
            SafetyBlocked: The plan failed a blocking safety rule.
        """
        metrics = self.compute(sections)
        if metrics.validation is not None and metrics.validation.is_blocked:
            logger.info(
                "Finalize blocked for user %s: %s", user_id, metrics.validation.kinds()[0]
            )
            raise SafetyBlocked(metrics.validation)

        report = await self._coordinator.sync(
            user_id, sections, metrics, cancel_token=cancel_token
        )
        return metrics, report

    async def resync(
        self,
        user_id: str,
        failed_entities: list[str] | None = None,
        *,
        cancel_token: CancelToken | None = None,
    ) -> SyncReport:
        """Retry entities from the local cache (``None``: all pending)."""
        unknown = sorted(set(failed_entities or ()) - set(ENTITY_ORDER))
        if unknown:
            raise ValueError(f"Unknown entities: {', '.join(unknown)}")
        return await self._coordinator.resync(
            user_id, failed_entities, cancel_token=cancel_token
        )

    def pending_entities(self, user_id: str) -> list[str]:
        return self._coordinator.pending_entities(user_id)

    def new_tracker(self, user_id: str, *, restore: bool = False) -> OnboardingTracker:
        """A tracker wired to the same engines and local cache."""
        kwargs = {
            "engine": self._engine,
            "validator": self._validator,
            "debounce_seconds": self._debounce,
        }
        if restore:
            return OnboardingTracker.restore(user_id, self._local, **kwargs)
        return OnboardingTracker(user_id, local_cache=self._local, **kwargs)

    async def delete_user_data(self, user_id: str) -> dict[str, list[str]]:
        """Remove every local and remote entity of a user."""
        local = [entity for entity in ENTITY_ORDER if self._local.delete(user_id, entity)]
        remote = await self._coordinator.delete_remote(user_id)
        return {"local": local, "remote": remote}
