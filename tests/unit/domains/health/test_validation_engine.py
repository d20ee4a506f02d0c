"""Tests for the ValidationEngine: blocking rules, warnings, refeed planning."""

from __future__ import annotations

import pytest

from fitplan.domains.health.domain_logic.calculation_engine import HealthCalculationEngine
from fitplan.domains.health.domain_logic.models import ComputedMetrics, ValidationVerdict
from fitplan.domains.health.domain_logic.validation_engine import (
    ABSOLUTE_CALORIE_FLOOR,
    ValidationEngine,
    deficit_fraction,
    medical_adjustments,
    normalize_condition,
    plan_refeeds,
    safe_deficit_limit,
)
from fitplan.domains.health.errors import SafetyBlocked, SafetyWarning, as_exceptions


@pytest.fixture
def validator() -> ValidationEngine:
    return ValidationEngine()


def _metrics(**overrides) -> ComputedMetrics:
    """Hand-built metrics for a healthy maintenance plan."""
    defaults = dict(
        bmr=1600.0,
        bmr_formula="harris_benedict",
        bmr_accuracy="±10%",
        confidence=85,
        tdee=2200.0,
        daily_calories=2200,
        protein_g=138,
        carbs_g=247,
        fat_g=73,
        water_ml=3450,
        bmi=22.9,
        bmi_category="Normal",
        sleep_hours=8.0,
    )
    defaults.update(overrides)
    return ComputedMetrics(**defaults)


class TestPassed:
    def test_reference_plan_passes(self, validator, sections):
        metrics = HealthCalculationEngine().compute(sections)
        verdict = validator.evaluate(sections, metrics)
        assert verdict.status == "passed"
        assert verdict.errors == []
        assert verdict.warnings == []
        assert verdict.refeed_schedule is None
        assert verdict.medical_adjustments == []

    def test_evaluation_is_deterministic(self, validator, make_sections):
        sections = make_sections(
            body={"medical_conditions": ["PCOS", "hypertension", "asthma"]},
            diet={"drinks_alcohol": True},
        )
        metrics = _metrics(tdee=2500.0, daily_calories=1900)
        assert validator.evaluate(sections, metrics) == validator.evaluate(sections, metrics)


# ---------------------------------------------------------------------------
# Blocking rules
# ---------------------------------------------------------------------------

class TestBlocking:
    def test_below_absolute_floor(self, validator, sections):
        verdict = validator.evaluate(sections, _metrics(daily_calories=1100))
        assert verdict.status == "blocked"
        assert verdict.kinds()[0] == "BELOW_ABSOLUTE_MINIMUM"
        assert verdict.errors[0].current == 1100
        assert verdict.errors[0].target == ABSOLUTE_CALORIE_FLOOR

    def test_floor_wins_and_is_the_only_error(self, validator, make_sections):
        sections = make_sections(
            personal={"gender": "female"},
            body={"pregnancy_status": True, "breastfeeding_status": True},
            diet={
                "breakfast_enabled": False, "lunch_enabled": False,
                "dinner_enabled": False, "snacks_enabled": False,
            },
        )
        verdict = validator.evaluate(sections, _metrics(daily_calories=900))
        assert [e.kind for e in verdict.errors] == ["BELOW_ABSOLUTE_MINIMUM"]

    @pytest.mark.parametrize("daily", [1200, 2200, 3500])
    def test_pregnant_and_breastfeeding_always_blocked(self, validator, make_sections, daily):
        sections = make_sections(
            personal={"gender": "female"},
            body={"pregnancy_status": True, "pregnancy_trimester": 2, "breastfeeding_status": True},
        )
        verdict = validator.evaluate(sections, _metrics(daily_calories=daily))
        assert verdict.status == "blocked"
        assert verdict.errors[0].kind == "CONFLICTING_PHYSIOLOGICAL_STATES"

    def test_no_meals_enabled(self, validator, make_sections):
        sections = make_sections(diet={
            "breakfast_enabled": False, "lunch_enabled": False,
            "dinner_enabled": False, "snacks_enabled": False,
        })
        verdict = validator.evaluate(sections, _metrics())
        assert verdict.kinds() == ["NO_MEALS_ENABLED"]

    def test_missing_diet_is_not_a_meal_error(self, validator, sections):
        sections.diet_preferences = None
        assert validator.evaluate(sections, _metrics()).status == "passed"

    def test_conflicting_goals(self, validator, make_sections):
        sections = make_sections(workout={"primary_goals": ["Weight Loss", "weight-gain"]})
        verdict = validator.evaluate(sections, _metrics())
        assert verdict.errors[0].kind == "CONFLICTING_GOALS"

    def test_underweight_target(self, validator, make_sections):
        sections = make_sections(body={"target_weight_kg": 50.0, "target_timeline_weeks": 40})
        verdict = validator.evaluate(
            sections, _metrics(goal_type="weight_loss", weekly_rate_kg=0.5, daily_calories=1650)
        )
        error = verdict.errors[0]
        assert error.kind == "TARGET_BMI_UNDERWEIGHT"
        assert error.current == 16.3
        assert error.recommendations == ["Minimum safe weight: 57 kg"]

    def test_target_bmi_only_checked_for_weight_loss(self, validator, make_sections):
        sections = make_sections(body={"target_weight_kg": 50.0, "target_timeline_weeks": 40})
        verdict = validator.evaluate(sections, _metrics(goal_type="maintenance"))
        assert "TARGET_BMI_UNDERWEIGHT" not in verdict.kinds()

    @pytest.mark.parametrize("gender,body_fat,blocked", [
        ("male", 5.0, True),
        ("male", 6.0, False),
        ("female", 12.0, True),
        ("female", 13.0, False),
        ("other", 8.5, True),
    ])
    def test_essential_body_fat(self, validator, make_sections, gender, body_fat, blocked):
        sections = make_sections(
            personal={"gender": gender}, body={"body_fat_percentage": body_fat},
        )
        verdict = validator.evaluate(
            sections, _metrics(goal_type="weight_loss", weekly_rate_kg=0.3, daily_calories=1900)
        )
        assert ("AT_ESSENTIAL_BODY_FAT" in verdict.kinds()) is blocked


# ---------------------------------------------------------------------------
# Aggressive deficits and refeeds
# ---------------------------------------------------------------------------

class TestRefeeds:
    def test_aggressive_deficit_downgrades_to_warning(self, validator, sections):
        verdict = validator.evaluate(
            sections, _metrics(tdee=2500.0, daily_calories=1900, goal_type="weight_loss")
        )
        assert verdict.status == "warnings"
        assert "AGGRESSIVE_DEFICIT" in verdict.kinds()
        schedule = verdict.refeed_schedule
        assert schedule is not None and schedule.days
        assert schedule.refeeds_per_week == 1
        assert schedule.max_continuous_deficit_days == 6
        assert {d.day for d in schedule.days} == {7}
        assert all(d.calories == 2500 for d in schedule.days)
        assert len(schedule.days) == 12

    def test_very_aggressive_deficit_gets_two_refeeds(self, validator, sections):
        verdict = validator.evaluate(sections, _metrics(tdee=2500.0, daily_calories=1700))
        schedule = verdict.refeed_schedule
        assert schedule.refeeds_per_week == 2
        assert schedule.max_continuous_deficit_days == 3
        assert {d.day for d in schedule.days} == {4, 7}

    def test_safe_deficit_has_no_schedule(self, validator, sections):
        verdict = validator.evaluate(sections, _metrics(tdee=2500.0, daily_calories=2000))
        assert verdict.refeed_schedule is None
        assert "AGGRESSIVE_DEFICIT" not in verdict.kinds()

    def test_high_stress_lowers_safe_deficit(self, validator, make_sections):
        sections = make_sections(body={"stress_level": "high"})
        verdict = validator.evaluate(sections, _metrics(tdee=2500.0, daily_calories=2075))
        assert verdict.refeed_schedule is not None
        warning = next(w for w in verdict.warnings if w.kind == "AGGRESSIVE_DEFICIT")
        assert warning.target == 15.0
        assert "high stress level" in warning.message

    def test_medical_conditions_lower_safe_deficit(self, validator, make_sections):
        sections = make_sections(body={"medical_conditions": ["asthma"]})
        verdict = validator.evaluate(sections, _metrics(tdee=2500.0, daily_calories=2075))
        assert verdict.kinds() == ["MEDICAL_CONDITIONS", "AGGRESSIVE_DEFICIT"]
        assert verdict.warnings[1].target == 15.0
        assert "medical conditions" in verdict.warnings[1].message

    def test_moderate_stress_keeps_standard_limit(self, validator, make_sections):
        sections = make_sections(body={"stress_level": "moderate"})
        verdict = validator.evaluate(sections, _metrics(tdee=2500.0, daily_calories=2075))
        assert verdict.refeed_schedule is None
        assert verdict.status == "passed"

    def test_safe_deficit_limit(self, make_sections):
        body = make_sections().body_analysis
        assert safe_deficit_limit(body) == (0.20, "recommended safety limits")
        body.stress_level = "High"
        assert safe_deficit_limit(body) == (0.15, "high stress level")

    def test_blocked_plan_gets_no_schedule(self, validator, sections):
        verdict = validator.evaluate(sections, _metrics(tdee=2500.0, daily_calories=1100))
        assert verdict.status == "blocked"
        assert verdict.refeed_schedule is None
        assert "AGGRESSIVE_DEFICIT" not in verdict.kinds()

    def test_non_positive_timeline_uses_default_plan_length(self):
        assert plan_refeeds(0.25, 2400.0, -4).plan_weeks == 12
        assert plan_refeeds(0.25, 2400.0, 0).plan_weeks == 12

    def test_long_plan_gets_diet_break(self):
        schedule = plan_refeeds(0.25, 2400.0, 20)
        assert schedule.diet_break_week == 10
        assert 10 not in {d.week for d in schedule.days}
        assert len(schedule.days) == 19
        assert any("diet break" in note for note in schedule.notes)

    def test_short_plan_has_no_diet_break(self):
        assert plan_refeeds(0.25, 2400.0, 12).diet_break_week is None

    def test_deficit_fraction(self):
        assert deficit_fraction(_metrics(tdee=2500.0, daily_calories=2000)) == pytest.approx(0.2)
        assert deficit_fraction(_metrics(tdee=2000.0, daily_calories=2300)) == 0.0
        assert deficit_fraction(_metrics(tdee=0.0, daily_calories=1500)) == 0.0

    def test_schedule_serializes(self, validator, sections):
        verdict = validator.evaluate(sections, _metrics(tdee=2500.0, daily_calories=1700))
        assert ValidationVerdict.from_dict(verdict.to_dict()) == verdict


# ---------------------------------------------------------------------------
# Warnings
# ---------------------------------------------------------------------------

class TestWarnings:
    def test_bmi_outside_range(self, validator, sections):
        verdict = validator.evaluate(sections, _metrics(bmi=27.0))
        assert verdict.kinds() == ["BMI_OUTSIDE_HEALTHY_RANGE"]
        assert verdict.warnings[0].target == 24.9

    def test_bmi_range_is_population_specific(self, validator, sections):
        standard = validator.evaluate(sections, _metrics(bmi=24.0))
        asian = validator.evaluate(sections, _metrics(bmi=24.0, bmi_population="asian"))
        assert standard.status == "passed"
        assert asian.kinds() == ["BMI_OUTSIDE_HEALTHY_RANGE"]

    def test_unrealistic_timeline(self, validator, make_sections):
        sections = make_sections(body={
            "current_weight_kg": 80.0, "target_weight_kg": 68.0, "target_timeline_weeks": 10,
        })
        verdict = validator.evaluate(
            sections, _metrics(goal_type="weight_loss", weekly_rate_kg=1.2, daily_calories=2000)
        )
        warning = next(w for w in verdict.warnings if w.kind == "UNREALISTIC_TIMELINE")
        assert warning.target == 0.8
        assert warning.recommendations == ["A safe timeline is at least 15 weeks"]

    def test_gain_uses_half_percent_rate(self, validator, make_sections):
        sections = make_sections(body={"target_weight_kg": 76.0, "target_timeline_weeks": 12})
        verdict = validator.evaluate(
            sections, _metrics(goal_type="weight_gain", weekly_rate_kg=0.5, daily_calories=2750)
        )
        assert "UNREALISTIC_TIMELINE" in verdict.kinds()

    def test_pregnancy_shortfall(self, validator, make_sections):
        sections = make_sections(
            personal={"gender": "female"},
            body={"pregnancy_status": True, "pregnancy_trimester": 3},
        )
        verdict = validator.evaluate(sections, _metrics(tdee=2000.0, daily_calories=2000))
        warning = next(w for w in verdict.warnings if w.kind == "PREGNANCY_CALORIE_SHORTFALL")
        assert warning.target == 2450
        assert verdict.status == "warnings"

    def test_below_bmr(self, validator, sections):
        verdict = validator.evaluate(sections, _metrics(bmr=1800.0, tdee=2000.0, daily_calories=1700))
        assert "BELOW_BMR" in verdict.kinds()

    def test_lifestyle_warnings_in_fixed_order(self, validator, make_sections):
        sections = make_sections(
            personal={"age": 80},
            body={
                "medical_conditions": ["hypothyroid"],
                "medications": ["Levothyroxine 50mcg", "vitamin D"],
                "physical_limitations": ["bad knee"],
            },
            diet={"drinks_alcohol": True, "smokes_tobacco": True},
            workout={"workout_frequency_per_week": 7},
        )
        verdict = validator.evaluate(sections, _metrics(bmi=31.0, sleep_hours=5.5))
        assert verdict.kinds() == [
            "BMI_OUTSIDE_HEALTHY_RANGE",
            "MEDICAL_CONDITIONS",
            "ELDERLY_USER",
            "INSUFFICIENT_SLEEP",
            "ALCOHOL_IMPACT",
            "TOBACCO_IMPACT",
            "MEDICATION_EFFECTS",
            "PHYSICAL_LIMITATIONS",
            "EXCESSIVE_TRAINING_VOLUME",
        ]
        medication = next(w for w in verdict.warnings if w.kind == "MEDICATION_EFFECTS")
        assert "vitamin D" not in medication.message

    def test_menopause_range(self, validator, make_sections):
        sections = make_sections(personal={"gender": "female", "age": 50})
        assert validator.evaluate(sections, _metrics()).kinds() == ["MENOPAUSE_AGE_RANGE"]

    def test_no_exercise_with_loss_goal(self, validator, make_sections):
        sections = make_sections(workout={"workout_frequency_per_week": 0})
        loss = validator.evaluate(
            sections, _metrics(goal_type="weight_loss", weekly_rate_kg=0.3, daily_calories=1900)
        )
        maintenance = validator.evaluate(sections, _metrics())
        assert "NO_EXERCISE_PLANNED" in loss.kinds()
        assert "NO_EXERCISE_PLANNED" not in maintenance.kinds()


# ---------------------------------------------------------------------------
# Medical adjustments
# ---------------------------------------------------------------------------

class TestMedicalAdjustments:
    def test_normalize_condition(self):
        assert normalize_condition("Type-2 Diabetes") == "diabetes"
        assert normalize_condition("  Underactive   Thyroid ") == "hypothyroidism"
        assert normalize_condition("High_Blood_Pressure") == "hypertension"
        assert normalize_condition("Asthma") == "asthma"

    def test_sorted_and_deduplicated(self):
        adjustments = medical_adjustments(
            ["Type 2 Diabetes", "hypothyroid", "Asthma", "diabetes", ""]
        )
        assert [(a.condition, a.kind) for a in adjustments] == [
            ("asthma", "monitoring"),
            ("diabetes", "macro"),
            ("hypothyroidism", "calorie"),
        ]
        assert adjustments[1].carbs_percent == -25.0
        assert adjustments[2].calorie_percent == -10.0

    def test_input_order_does_not_matter(self):
        a = medical_adjustments(["pcos", "heart disease", "hyperthyroidism"])
        b = medical_adjustments(["hyperthyroidism", "pcos", "heart disease"])
        assert a == b

    def test_adjustments_are_advisory(self, validator, make_sections):
        sections = make_sections(body={"medical_conditions": ["hypothyroidism"]})
        metrics = _metrics()
        verdict = validator.evaluate(sections, metrics)
        assert verdict.medical_adjustments[0].calorie_percent == -10.0
        assert metrics.daily_calories == 2200
        assert verdict.status == "warnings"


# ---------------------------------------------------------------------------
# Exception mapping
# ---------------------------------------------------------------------------

class TestAsExceptions:
    def test_blocked_verdict_maps_to_safety_blocked(self, validator, sections):
        verdict = validator.evaluate(sections, _metrics(daily_calories=1000, bmi=27.0))
        errors = as_exceptions(verdict)
        assert isinstance(errors[0], SafetyBlocked)
        assert errors[0].verdict is verdict
        assert isinstance(errors[1], SafetyWarning)

    def test_passed_verdict_maps_to_nothing(self, validator, sections):
        assert as_exceptions(validator.evaluate(sections, _metrics())) == []
