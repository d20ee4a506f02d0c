"""Onboarding state tracker: the single writer of in-memory onboarding state.

Every edit goes through ``_mutate``, which (under one lock) applies the
change, re-derives dependent fields, re-runs section validation, the
calculation engine and the safety engine against the new state, and
publishes an immutable snapshot before returning. Readers only ever see
snapshots, so validation can never observe a torn write.

Autosave to the local cache is debounced on a ``threading.Timer`` and
runs outside the state lock, so saving never blocks an edit.
"""

from __future__ import annotations

import copy
import dataclasses
import logging
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from fitplan.domains.health.connectors import LocalCacheStore, adapters
from fitplan.domains.health.domain_logic import formulas, section_rules
from fitplan.domains.health.domain_logic.calculation_engine import HealthCalculationEngine
from fitplan.domains.health.domain_logic.models import (
    ENTITY_ORDER,
    SECTIONS,
    BodyAnalysis,
    ComputedMetrics,
    DietPreferences,
    OnboardingSections,
    PersonalInfo,
    ValidationVerdict,
    WorkoutPreferences,
)
from fitplan.domains.health.domain_logic.section_rules import SectionValidation
from fitplan.domains.health.domain_logic.validation_engine import ValidationEngine
from fitplan.domains.health.errors import InputError
from fitplan.domains.health.sync.report import SyncReport

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 2.0

# Editable section -> (attribute on OnboardingSections, dataclass)
_EDITABLE = {
    "personal_info": ("personal_info", PersonalInfo),
    "diet": ("diet_preferences", DietPreferences),
    "body": ("body_analysis", BodyAnalysis),
    "workout": ("workout_preferences", WorkoutPreferences),
}

_STATE_RANK = {"empty": 0, "partial": 1, "complete": 2}

EQUIPMENT_BY_LOCATION = {
    "home": ["bodyweight"],
    "gym": ["barbell", "dumbbells", "machines", "cables", "bench"],
}
EQUIPMENT_BY_LOCATION["both"] = EQUIPMENT_BY_LOCATION["home"] + EQUIPMENT_BY_LOCATION["gym"]


@dataclass(frozen=True)
class TrackerSnapshot:
    """Immutable view of the tracker after one mutation."""

    user_id: str
    version: int
    sections: OnboardingSections
    section_states: Mapping[str, str]
    section_validation: Mapping[str, SectionValidation]
    needs_review: frozenset[str]
    metrics: ComputedMetrics | None
    metrics_error: str | None
    completion_percentage: int
    sync_states: Mapping[str, str]
    last_save_error: str | None = None

    @property
    def verdict(self) -> ValidationVerdict | None:
        return self.metrics.validation if self.metrics is not None else None

    def is_complete(self) -> bool:
        return all(state == "complete" for state in self.section_states.values())


@dataclass
class _Derived:
    activity_level: str | None = None
    weekly_weight_loss_goal: float | None = None
    equipment: list[str] = field(default_factory=list)


class OnboardingTracker:
    """Owns the five onboarding sections for one user.

    Usage::

        tracker = OnboardingTracker("u1", local_cache=cache)
        snap = tracker.update("body", height_cm=175, current_weight_kg=70)
        snap.section_states["body"], snap.verdict
        tracker.flush()
        tracker.close()
    """

    def __init__(
        self,
        user_id: str,
        *,
        engine: HealthCalculationEngine | None = None,
        validator: ValidationEngine | None = None,
        local_cache: LocalCacheStore | None = None,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        sections: OnboardingSections | None = None,
        sync_states: dict[str, str] | None = None,
    ) -> None:
        self.user_id = user_id
        self._engine = engine or HealthCalculationEngine()
        self._validator = validator or ValidationEngine()
        self._cache = local_cache
        self._debounce = debounce_seconds

        self._lock = threading.RLock()
        self._save_lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._closed = False

        self._sections = copy.deepcopy(sections) if sections else OnboardingSections()
        self._states: dict[str, str] = {name: "empty" for name in SECTIONS}
        self._validation: dict[str, SectionValidation] = {}
        self._needs_review: set[str] = set()
        self._metrics: ComputedMetrics | None = None
        self._metrics_error: str | None = None
        self._sync_states = {entity: "not_saved" for entity in ENTITY_ORDER}
        if sync_states:
            self._sync_states.update(sync_states)
        self._dirty: set[str] = set()
        self._last_save_error: str | None = None
        self._version = 0

        with self._lock:
            self._evaluate(edited=None)
            self._publish()

    # ------------------------------------------------------------------
    # Construction from the cache
    # ------------------------------------------------------------------

    @classmethod
    def restore(
        cls, user_id: str, local_cache: LocalCacheStore, **kwargs: Any
    ) -> OnboardingTracker:
        """Rebuild a tracker from the sections cached for ``user_id``."""
        canonical: dict[str, dict[str, Any] | None] = {}
        sync_states: dict[str, str] = {}
        for entity in ENTITY_ORDER:
            document, found = local_cache.get(user_id, entity)
            if not found:
                canonical[entity] = None
                continue
            canonical[entity], _, sync_states[entity] = adapters.from_local_document(document)
        sections, _ = adapters.entities_to_sections(canonical)
        logger.info("Restored onboarding for user %s (%d cached entities)", user_id, len(sync_states))
        return cls(
            user_id, local_cache=local_cache, sections=sections, sync_states=sync_states, **kwargs
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def snapshot(self) -> TrackerSnapshot:
        """The latest published state. Safe to read from any thread."""
        return self._snapshot

    def is_complete(self) -> bool:
        return self._snapshot.is_complete()

    @property
    def completion_percentage(self) -> int:
        return self._snapshot.completion_percentage

    @property
    def sync_states(self) -> dict[str, str]:
        return dict(self._snapshot.sync_states)

    # ------------------------------------------------------------------
    # Mutations (all funnel through _mutate)
    # ------------------------------------------------------------------

    def update(self, section: str, **changes: Any) -> TrackerSnapshot:
        """Apply field changes to one editable section."""
        return self._mutate(section, changes)

    def update_personal_info(self, **changes: Any) -> TrackerSnapshot:
        return self._mutate("personal_info", changes)

    def update_body(self, **changes: Any) -> TrackerSnapshot:
        return self._mutate("body", changes)

    def update_diet(self, **changes: Any) -> TrackerSnapshot:
        return self._mutate("diet", changes)

    def update_workout(self, **changes: Any) -> TrackerSnapshot:
        return self._mutate("workout", changes)

    def confirm_section(self, section: str) -> TrackerSnapshot:
        """Clear ``needs_review`` after the user looked at a re-derived section."""
        if section not in SECTIONS:
            raise ValueError(f"Unknown section: {section}")
        with self._lock:
            self._needs_review.discard(section)
            transitioned = self._evaluate(edited=section)
            self._publish()
        self._after_mutation(transitioned)
        return self._snapshot

    def apply_sync_report(self, report: SyncReport) -> TrackerSnapshot:
        """Adopt the per-entity states a sync run ended in."""
        with self._lock:
            self._sync_states.update(report.states)
            self._publish()
        return self._snapshot

    def _mutate(self, section: str, changes: dict[str, Any]) -> TrackerSnapshot:
        if section not in _EDITABLE:
            raise ValueError(f"Section {section!r} is not editable")
        attr, cls = _EDITABLE[section]
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(changes) - known)
        if unknown:
            raise ValueError(f"Unknown {section} fields: {', '.join(unknown)}")

        with self._lock:
            if self._closed:
                raise RuntimeError("Tracker is closed")
            before = self._derived()
            saved = self._save_state()

            current = getattr(self._sections, attr) or cls()
            if section == "workout":
                for name in ("activity_level", "weekly_weight_loss_goal"):
                    if name in changes:
                        changes = {**changes, f"{name}_user_set": changes[name] is not None}
            try:
                setattr(self._sections, attr, dataclasses.replace(current, **changes))
                self._dirty.add(adapters.SECTION_ENTITIES[section])

                self._apply_derivations()
                after = self._derived()
                if section != "workout" and after != before:
                    self._revert_dependent("workout")

                transitioned = self._evaluate(edited=section)
            except Exception:
                self._restore_state(saved)
                raise
            self._version += 1
            self._publish()

        logger.debug("User %s edited %s (v%d)", self.user_id, section, self._version)
        self._after_mutation(transitioned)
        return self._snapshot

    def _save_state(self) -> tuple:
        return (
            copy.deepcopy(self._sections),
            dict(self._states),
            dict(self._validation),
            set(self._needs_review),
            self._metrics,
            self._metrics_error,
            set(self._dirty),
        )

    def _restore_state(self, saved: tuple) -> None:
        (
            self._sections,
            self._states,
            self._validation,
            self._needs_review,
            self._metrics,
            self._metrics_error,
            self._dirty,
        ) = saved
        logger.warning("Rolled back a failed edit for user %s", self.user_id)

    # ------------------------------------------------------------------
    # Derivations
    # ------------------------------------------------------------------

    def _derived(self) -> _Derived:
        workout = self._sections.workout_preferences
        if workout is None:
            return _Derived()
        return _Derived(
            activity_level=workout.activity_level,
            weekly_weight_loss_goal=workout.weekly_weight_loss_goal,
            equipment=list(workout.equipment),
        )

    def _apply_derivations(self) -> None:
        workout = self._sections.workout_preferences
        if workout is None:
            return
        personal = self._sections.personal_info
        body = self._sections.body_analysis

        if not workout.activity_level_user_set and personal and personal.occupation_type:
            workout.activity_level = formulas.activity_level_for_occupation(
                personal.occupation_type
            )
        if not workout.equipment and workout.location in EQUIPMENT_BY_LOCATION:
            workout.equipment = list(EQUIPMENT_BY_LOCATION[workout.location])
        if workout.weekly_weight_loss_goal_user_set:
            return
        if (
            body
            and body.current_weight_kg
            and body.has_usable_timeline
            and body.target_weight_kg < body.current_weight_kg
        ):
            workout.weekly_weight_loss_goal = formulas.weekly_rate_kg(
                body.current_weight_kg, body.target_weight_kg, body.target_timeline_weeks
            )
        else:
            workout.weekly_weight_loss_goal = None

    def _revert_dependent(self, section: str) -> None:
        if self._states.get(section) == "complete":
            self._states[section] = "partial"
            self._needs_review.add(section)
            logger.info("Section %s needs review after a dependency changed", section)
        self._dirty.add(adapters.SECTION_ENTITIES[section])

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def _evaluate(self, edited: str | None) -> bool:
        """Re-validate everything. Returns True if a section became complete."""
        s = self._sections
        self._validation = {
            "personal_info": section_rules.validate_personal_info(s.personal_info),
            "diet": section_rules.validate_diet(s.diet_preferences),
            "body": section_rules.validate_body(s.body_analysis),
            "workout": section_rules.validate_workout(s.workout_preferences),
        }

        previous_metrics = self._metrics
        try:
            metrics = self._engine.compute(s)
        except InputError as exc:
            self._metrics, self._metrics_error = None, str(exc)
        else:
            metrics.validation = self._validator.evaluate(s, metrics)
            self._metrics, self._metrics_error = metrics, None
        if self._metrics != previous_metrics:
            self._dirty.add("computed_metrics")

        transitioned = False
        for name in _EDITABLE:
            attr, _ = _EDITABLE[name]
            candidate = self._candidate_state(getattr(s, attr), self._validation[name])
            if name in self._needs_review:
                candidate = "partial" if candidate == "complete" else candidate
            current = self._states[name]
            if name == edited or _STATE_RANK[candidate] > _STATE_RANK[current]:
                new = candidate
            else:
                new = current
            transitioned |= new == "complete" and current != "complete"
            self._states[name] = new

        inputs_complete = all(self._states[name] == "complete" for name in _EDITABLE)
        review = section_rules.validate_review(self._metrics, inputs_complete)
        self._validation["review"] = review
        if self._metrics is None:
            review_state = "empty"
        else:
            review_state = "complete" if review.is_valid else "partial"
        transitioned |= review_state == "complete" and self._states["review"] != "complete"
        self._states["review"] = review_state
        return transitioned

    @staticmethod
    def _candidate_state(value: Any, validation: SectionValidation) -> str:
        if value is None:
            return "empty"
        if validation.is_valid and validation.completion_percentage > 0:
            return "complete"
        return "partial"

    def _publish(self) -> None:
        percentages = [self._validation[name].completion_percentage for name in SECTIONS]
        self._snapshot = TrackerSnapshot(
            user_id=self.user_id,
            version=self._version,
            sections=copy.deepcopy(self._sections),
            section_states=MappingProxyType(dict(self._states)),
            section_validation=MappingProxyType(copy.deepcopy(self._validation)),
            needs_review=frozenset(self._needs_review),
            metrics=copy.deepcopy(self._metrics),
            metrics_error=self._metrics_error,
            completion_percentage=section_rules.overall_completion(percentages),
            sync_states=MappingProxyType(dict(self._sync_states)),
            last_save_error=self._last_save_error,
        )

    # ------------------------------------------------------------------
    # Autosave
    # ------------------------------------------------------------------

    def _after_mutation(self, section_completed: bool) -> None:
        if self._cache is None:
            return
        if section_completed:
            self.flush()
        else:
            self._schedule_autosave()

    def _schedule_autosave(self) -> None:
        with self._lock:
            if self._closed:
                return
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self._debounce, self.flush)
            self._timer.daemon = True
            self._timer.start()

    def flush(self) -> list[str]:
        """Write every dirty entity to the local cache now.

        Returns:
            Entities saved. Entities that failed stay dirty for the next save.
        """
        if self._cache is None:
            return []
        with self._save_lock:
            with self._lock:
                if self._timer is not None:
                    self._timer.cancel()
                    self._timer = None
                entities = adapters.sections_to_entities(self._sections, self._metrics)
                pending = {
                    entity: copy.deepcopy(entities[entity])
                    for entity in ENTITY_ORDER
                    if entity in self._dirty and entities[entity] is not None
                }
                self._dirty.difference_update(pending)

            saved: list[str] = []
            errors: list[str] = []
            for entity, canonical in pending.items():
                try:
                    self._cache.put(
                        self.user_id,
                        entity,
                        adapters.to_local_document(canonical, sync_state="saved_local"),
                    )
                except Exception as exc:
                    logger.exception("Autosave of %s failed for user %s", entity, self.user_id)
                    errors.append(f"{entity}: {type(exc).__name__}: {exc}")
                else:
                    saved.append(entity)

            with self._lock:
                for entity in saved:
                    self._sync_states[entity] = "saved_local"
                self._dirty.update(e for e in pending if e not in saved)
                self._last_save_error = "; ".join(errors) or None
                self._publish()

        if saved:
            logger.debug("Autosaved %s for user %s", ",".join(saved), self.user_id)
        return saved

    def close(self, *, flush: bool = True) -> None:
        """Stop autosaving. Pending edits are written first unless ``flush=False``."""
        if flush:
            self.flush()
        with self._lock:
            self._closed = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
