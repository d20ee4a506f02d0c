"""Tests for the OnboardingTracker: derivations, section states, autosave."""

from __future__ import annotations

import dataclasses
import time

import pytest

from fitplan.domains.health.domain_logic.calculation_engine import HealthCalculationEngine
from fitplan.domains.health.domain_logic.models import OnboardingSections
from fitplan.domains.health.errors import StoreError
from fitplan.domains.health.onboarding.tracker import EQUIPMENT_BY_LOCATION, OnboardingTracker
from fitplan.domains.health.sync.report import SyncReport


def _fill(tracker: OnboardingTracker, sections: OnboardingSections):
    tracker.update_personal_info(**sections.personal_info.to_dict())
    tracker.update_diet(**sections.diet_preferences.to_dict())
    tracker.update_body(**sections.body_analysis.to_dict())
    return tracker.update_workout(**sections.workout_preferences.to_dict())


class _BrokenCache:
    """LocalCacheStore whose writes always fail."""

    def get(self, user_id, section):
        return None, False

    def put(self, user_id, section, document):
        raise StoreError("disk full")

    def delete(self, user_id, section):
        return False


class _FlakyEngine(HealthCalculationEngine):
    """Calculation engine that raises while ``fail`` is set."""

    fail = False

    def compute(self, sections):
        if self.fail:
            raise RuntimeError("engine down")
        return super().compute(sections)


class TestInitialState:
    def test_everything_empty(self):
        snap = OnboardingTracker("u1").snapshot()
        assert snap.version == 0
        assert set(snap.section_states.values()) == {"empty"}
        assert snap.metrics is None
        assert "Height or weight" in snap.metrics_error
        assert snap.completion_percentage == 0
        assert set(snap.sync_states.values()) == {"not_saved"}
        assert not snap.is_complete()


class TestSectionStates:
    def test_full_onboarding_completes_every_section(self, sections):
        tracker = OnboardingTracker("u1")
        snap = _fill(tracker, sections)
        assert dict(snap.section_states) == {
            "personal_info": "complete",
            "diet": "complete",
            "body": "complete",
            "workout": "complete",
            "review": "complete",
        }
        assert snap.is_complete()
        assert snap.verdict.status == "passed"
        assert snap.metrics.bmr == 1695.7
        assert snap.version == 4

    def test_partial_section(self):
        tracker = OnboardingTracker("u1")
        snap = tracker.update_personal_info(first_name="Alex")
        assert snap.section_states["personal_info"] == "partial"
        assert snap.section_validation["personal_info"].completion_percentage == 11

    def test_metrics_follow_body_edits(self, sections):
        tracker = OnboardingTracker("u1")
        _fill(tracker, sections)
        snap = tracker.update_body(current_weight_kg=80.0)
        assert snap.metrics.bmi == 26.1
        assert snap.verdict.kinds() == ["BMI_OUTSIDE_HEALTHY_RANGE"]

    def test_edited_section_can_regress(self, sections):
        tracker = OnboardingTracker("u1")
        _fill(tracker, sections)
        snap = tracker.update_personal_info(age=12)
        assert snap.section_states["personal_info"] == "partial"
        assert snap.section_states["body"] == "complete"
        assert snap.section_states["review"] == "partial"

    def test_blocked_plan_keeps_review_partial(self, sections):
        tracker = OnboardingTracker("u1")
        _fill(tracker, sections)
        snap = tracker.update_body(target_weight_kg=45.0, target_timeline_weeks=20)
        assert snap.verdict.is_blocked
        assert snap.section_states["review"] == "partial"
        assert snap.section_states["body"] == "complete"

    def test_unknown_section_and_fields_rejected(self):
        tracker = OnboardingTracker("u1")
        with pytest.raises(ValueError, match="not editable"):
            tracker.update("review", status="done")
        with pytest.raises(ValueError, match="favourite_colour"):
            tracker.update_body(favourite_colour="blue")
        with pytest.raises(ValueError):
            tracker.confirm_section("billing")


class TestDerivations:
    def test_activity_level_derived_from_occupation(self):
        tracker = OnboardingTracker("u1")
        tracker.update_personal_info(occupation_type="heavy_labor")
        snap = tracker.update_workout(location="home", intensity="beginner", primary_goals=["strength"])
        workout = snap.sections.workout_preferences
        assert workout.activity_level == "active"
        assert workout.activity_level_user_set is False
        assert workout.equipment == EQUIPMENT_BY_LOCATION["home"]

    def test_user_set_activity_level_is_kept(self):
        tracker = OnboardingTracker("u1")
        tracker.update_workout(location="gym", activity_level="extreme")
        snap = tracker.update_personal_info(occupation_type="desk_job")
        assert snap.sections.workout_preferences.activity_level == "extreme"

    def test_weekly_goal_derived_from_target(self, sections):
        tracker = OnboardingTracker("u1")
        _fill(tracker, sections)
        snap = tracker.update_body(target_weight_kg=65.0, target_timeline_weeks=10)
        assert snap.sections.workout_preferences.weekly_weight_loss_goal == 0.5

    def test_weekly_goal_cleared_with_target(self, sections):
        tracker = OnboardingTracker("u1")
        _fill(tracker, sections)
        snap = tracker.update_body(
            current_weight_kg=80.0, target_weight_kg=70.0, target_timeline_weeks=20
        )
        assert snap.sections.workout_preferences.weekly_weight_loss_goal == 0.5
        assert snap.metrics.goal_type == "weight_loss"

        snap = tracker.update_body(target_weight_kg=None, target_timeline_weeks=None)
        assert snap.sections.workout_preferences.weekly_weight_loss_goal is None
        assert snap.metrics.goal_type == "maintenance"
        assert snap.metrics.daily_calories == round(snap.metrics.tdee)

    def test_weekly_goal_cleared_when_target_becomes_gain(self, sections):
        tracker = OnboardingTracker("u1")
        _fill(tracker, sections)
        tracker.update_body(target_weight_kg=65.0, target_timeline_weeks=10)
        snap = tracker.update_body(target_weight_kg=75.0)
        assert snap.sections.workout_preferences.weekly_weight_loss_goal is None
        assert snap.metrics.goal_type == "weight_gain"

    def test_user_set_weekly_goal_is_kept(self, sections):
        tracker = OnboardingTracker("u1")
        _fill(tracker, sections)
        tracker.update_workout(weekly_weight_loss_goal=0.25)
        snap = tracker.update_body(target_weight_kg=None, target_timeline_weeks=None)
        workout = snap.sections.workout_preferences
        assert workout.weekly_weight_loss_goal == 0.25
        assert workout.weekly_weight_loss_goal_user_set is True
        assert snap.metrics.goal_type == "weight_loss"

    def test_dependency_change_reverts_workout_for_review(self, sections):
        tracker = OnboardingTracker("u1")
        _fill(tracker, sections)
        snap = tracker.update_body(target_weight_kg=65.0, target_timeline_weeks=10)
        assert snap.section_states["workout"] == "partial"
        assert "workout" in snap.needs_review
        assert not snap.is_complete()

        snap = tracker.confirm_section("workout")
        assert snap.section_states["workout"] == "complete"
        assert snap.needs_review == frozenset()

    def test_unrelated_edit_does_not_revert(self, sections):
        tracker = OnboardingTracker("u1")
        _fill(tracker, sections)
        snap = tracker.update_diet(cooking_skill_level="advanced")
        assert snap.section_states["workout"] == "complete"
        assert snap.needs_review == frozenset()


class TestSnapshots:
    def test_snapshot_is_frozen(self, sections):
        tracker = OnboardingTracker("u1")
        snap = _fill(tracker, sections)
        with pytest.raises(dataclasses.FrozenInstanceError):
            snap.version = 99
        with pytest.raises(TypeError):
            snap.section_states["body"] = "empty"

    def test_snapshot_is_detached_from_live_state(self, sections):
        tracker = OnboardingTracker("u1")
        snap = _fill(tracker, sections)
        snap.sections.body_analysis.current_weight_kg = 150.0
        later = tracker.update_diet(budget_level="low")
        assert later.sections.body_analysis.current_weight_kg == 70.0
        assert snap.version == 4
        assert later.version == 5

    def test_apply_sync_report(self, sections):
        tracker = OnboardingTracker("u1")
        _fill(tracker, sections)
        report = SyncReport(
            user_id="u1", states={"personal_info": "saved_remote", "body_analysis": "saved_local"},
        )
        snap = tracker.apply_sync_report(report)
        assert snap.sync_states["personal_info"] == "saved_remote"
        assert snap.sync_states["body_analysis"] == "saved_local"
        assert snap.sync_states["computed_metrics"] == "not_saved"


class TestBadEdits:
    @pytest.mark.parametrize("weeks", [0, -4])
    def test_non_positive_timeline_is_a_section_error(self, sections, weeks):
        tracker = OnboardingTracker("u1")
        _fill(tracker, sections)
        snap = tracker.update_body(target_weight_kg=65.0, target_timeline_weeks=weeks)
        assert snap.version == 5
        assert snap.section_states["body"] == "partial"
        assert snap.section_validation["body"].errors == ["Timeline must be at least 1 week"]
        assert snap.sections.workout_preferences.weekly_weight_loss_goal is None
        assert snap.metrics.goal_type == "maintenance"

        snap = tracker.update_diet(diet_type="vegan")
        assert snap.version == 6
        assert snap.sections.diet_preferences.diet_type == "vegan"

    def test_failed_edit_is_rolled_back(self, sections):
        engine = _FlakyEngine()
        tracker = OnboardingTracker("u1", engine=engine)
        _fill(tracker, sections)

        engine.fail = True
        with pytest.raises(RuntimeError, match="engine down"):
            tracker.update_body(current_weight_kg=90.0)
        assert tracker.snapshot().version == 4

        engine.fail = False
        snap = tracker.update_diet(diet_type="vegan")
        assert snap.sections.body_analysis.current_weight_kg == 70.0
        assert snap.metrics.bmr == 1695.7
        assert snap.is_complete()


class TestAutosave:
    def test_partial_edit_waits_for_debounce(self, local_cache):
        tracker = OnboardingTracker("u1", local_cache=local_cache, debounce_seconds=60)
        tracker.update_personal_info(first_name="Alex")
        assert local_cache.get("u1", "personal_info") == (None, False)

        assert tracker.flush() == ["personal_info"]
        document, found = local_cache.get("u1", "personal_info")
        assert found
        assert document["data"]["firstName"] == "Alex"
        assert document["syncState"] == "saved_local"
        assert tracker.sync_states["personal_info"] == "saved_local"
        tracker.close(flush=False)

    def test_debounced_save_fires(self, local_cache):
        tracker = OnboardingTracker("u1", local_cache=local_cache, debounce_seconds=0.05)
        tracker.update_personal_info(first_name="Alex")
        deadline = time.monotonic() + 5
        while time.monotonic() < deadline and not local_cache.get("u1", "personal_info")[1]:
            time.sleep(0.02)
        assert local_cache.get("u1", "personal_info")[1]
        tracker.close()

    def test_completed_section_saves_immediately(self, local_cache, sections):
        tracker = OnboardingTracker("u1", local_cache=local_cache, debounce_seconds=60)
        tracker.update_personal_info(**sections.personal_info.to_dict())
        assert local_cache.get("u1", "personal_info")[1]
        tracker.close(flush=False)

    def test_flush_with_nothing_dirty(self, local_cache):
        tracker = OnboardingTracker("u1", local_cache=local_cache, debounce_seconds=60)
        assert tracker.flush() == []

    def test_failed_save_stays_dirty(self):
        tracker = OnboardingTracker("u1", local_cache=_BrokenCache(), debounce_seconds=60)
        tracker.update_personal_info(first_name="Alex")
        assert tracker.flush() == []
        snap = tracker.snapshot()
        assert "personal_info: StoreError: disk full" in snap.last_save_error
        assert snap.sync_states["personal_info"] == "not_saved"
        tracker.close(flush=False)

    def test_no_cache_means_no_saves(self):
        tracker = OnboardingTracker("u1")
        tracker.update_personal_info(first_name="Alex")
        assert tracker.flush() == []

    def test_closed_tracker_rejects_edits(self, local_cache):
        tracker = OnboardingTracker("u1", local_cache=local_cache)
        tracker.update_personal_info(first_name="Alex")
        tracker.close()
        assert local_cache.get("u1", "personal_info")[1]
        with pytest.raises(RuntimeError, match="closed"):
            tracker.update_personal_info(last_name="Rivera")


class TestRestore:
    def test_restore_rebuilds_sections(self, local_cache, sections):
        tracker = OnboardingTracker("u1", local_cache=local_cache, debounce_seconds=60)
        original = _fill(tracker, sections)
        tracker.close()

        restored = OnboardingTracker.restore("u1", local_cache, debounce_seconds=60)
        snap = restored.snapshot()
        assert snap.sections == original.sections
        assert snap.is_complete()
        assert snap.sync_states["personal_info"] == "saved_local"
        assert snap.metrics == original.metrics
        restored.close(flush=False)

    def test_restore_unknown_user_is_empty(self, local_cache):
        snap = OnboardingTracker.restore("nobody", local_cache).snapshot()
        assert set(snap.section_states.values()) == {"empty"}
        assert set(snap.sync_states.values()) == {"not_saved"}
