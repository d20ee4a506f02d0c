"""Per-section validation and completion for the onboarding tabs.

Each validator returns a SectionValidation: blocking field errors, soft
warnings, and a completion percentage. Section errors only gate the
section's own ``complete`` state; plan safety is judged separately by the
ValidationEngine.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from fitplan.domains.health.domain_logic import formulas
from fitplan.domains.health.domain_logic.models import (
    BodyAnalysis,
    ComputedMetrics,
    DietPreferences,
    PersonalInfo,
    WorkoutPreferences,
)

logger = logging.getLogger(__name__)

MIN_AGE, MAX_AGE = 13, 120
HEIGHT_RANGE_CM = (100, 250)
WEIGHT_RANGE_KG = (30, 300)
TIMELINE_RANGE_WEEKS = (4, 104)
MAX_SAFE_WEEKLY_RATE_KG = 1.0
MIN_USEFUL_WEEKLY_RATE_KG = 0.25
MIN_SESSION_MINUTES = 15

REQUIRED_WEIGHT = 0.7
OPTIONAL_WEIGHT = 0.3


@dataclass
class SectionValidation:
    is_valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    completion_percentage: int = 0

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "completion_percentage": self.completion_percentage,
        }


def _filled(value) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) > 0
    return True


def _share(values: list) -> float:
    return sum(1 for v in values if _filled(v)) / len(values) if values else 0.0


def _result(errors: list[str], warnings: list[str], completion: float) -> SectionValidation:
    return SectionValidation(
        is_valid=not errors,
        errors=errors,
        warnings=warnings,
        completion_percentage=int(round(max(0.0, min(1.0, completion)) * 100)),
    )


# ---------------------------------------------------------------------------
# Personal info
# ---------------------------------------------------------------------------

def validate_personal_info(info: PersonalInfo | None) -> SectionValidation:
    info = info or PersonalInfo()
    errors: list[str] = []
    warnings: list[str] = []

    if not _filled(info.first_name):
        errors.append("First name is required")
    if not _filled(info.last_name):
        errors.append("Last name is required")
    if info.age is None:
        errors.append("Age is required")
    elif not MIN_AGE <= info.age <= MAX_AGE:
        errors.append(f"Age must be between {MIN_AGE} and {MAX_AGE}")
    if info.gender not in ("male", "female", "other"):
        errors.append("Gender is required")
    if not _filled(info.country):
        errors.append("Country is required")
    if not _filled(info.state):
        errors.append("State or region is required")
    if not _filled(info.occupation_type):
        errors.append("Occupation type is required")
    if not _filled(info.wake_time):
        errors.append("Wake time is required")
    if not _filled(info.sleep_time):
        errors.append("Sleep time is required")

    sleep = formulas.sleep_duration_hours(info.wake_time, info.sleep_time)
    if sleep is not None and sleep < 6:
        warnings.append("Less than 6 hours of sleep may hinder your progress")
    elif sleep is not None and sleep > 10:
        warnings.append("More than 10 hours of sleep is unusually long")

    required = [
        info.first_name,
        info.last_name,
        info.age,
        info.gender if info.gender != "unspecified" else None,
        info.country,
        info.state,
        info.occupation_type,
        info.wake_time,
        info.sleep_time,
    ]
    return _result(errors, warnings, _share(required))


# ---------------------------------------------------------------------------
# Diet
# ---------------------------------------------------------------------------

def validate_diet(diet: DietPreferences | None) -> SectionValidation:
    if diet is None:
        return _result(["Diet type is required"], [], 0.0)
    errors: list[str] = []
    warnings: list[str] = []

    if not _filled(diet.diet_type):
        errors.append("Diet type is required")
    if diet.meals_enabled == 0:
        errors.append("At least one meal must be enabled")

    if not diet.breakfast_enabled:
        warnings.append("Skipping breakfast can make morning energy harder to manage")
    if diet.smokes_tobacco:
        warnings.append("Smoking significantly impacts health and fitness goals")
    if diet.drinks_alcohol and not diet.limits_sugary_drinks:
        warnings.append("Alcohol combined with sugary drinks adds a lot of hidden calories")
    if not diet.drinks_enough_water:
        warnings.append("Aim for at least 3-4 litres of water daily")
    if diet.eats_processed_foods and not diet.eats_5_servings_fruits_veggies:
        warnings.append("Balance processed foods with more fruit and vegetables")

    optional = [
        diet.allergies,
        diet.restrictions,
        diet.cuisine_preferences,
        diet.cooking_skill_level,
        diet.max_prep_time_minutes,
        diet.budget_level,
    ]
    completion = (REQUIRED_WEIGHT if _filled(diet.diet_type) else 0.0) + OPTIONAL_WEIGHT * _share(optional)
    return _result(errors, warnings, completion)


# ---------------------------------------------------------------------------
# Body
# ---------------------------------------------------------------------------

def validate_body(body: BodyAnalysis | None) -> SectionValidation:
    if body is None or (not body.height_cm and not body.current_weight_kg):
        return _result([], ["Body analysis skipped; calculations will use defaults"], 0.0)
    errors: list[str] = []
    warnings: list[str] = []

    low_h, high_h = HEIGHT_RANGE_CM
    low_w, high_w = WEIGHT_RANGE_KG
    low_t, high_t = TIMELINE_RANGE_WEEKS

    if body.height_cm and not low_h <= body.height_cm <= high_h:
        errors.append(f"Height must be between {low_h} and {high_h} cm")
    if body.current_weight_kg and not low_w <= body.current_weight_kg <= high_w:
        errors.append(f"Weight must be between {low_w} and {high_w} kg")
    if body.target_weight_kg and not low_w <= body.target_weight_kg <= high_w:
        warnings.append(f"Target weight should be between {low_w} and {high_w} kg")
    if body.target_timeline_weeks is not None and body.target_timeline_weeks <= 0:
        errors.append("Timeline must be at least 1 week")
    elif body.target_timeline_weeks and not low_t <= body.target_timeline_weeks <= high_t:
        warnings.append(f"Timeline should be between {low_t} and {high_t} weeks")

    if body.current_weight_kg and body.has_usable_timeline:
        rate = formulas.weekly_rate_kg(
            body.current_weight_kg, body.target_weight_kg, body.target_timeline_weeks
        )
        if rate > MAX_SAFE_WEEKLY_RATE_KG:
            warnings.append(
                f"{rate:.2f} kg/week may be too aggressive; aim for at most 1 kg/week"
            )
        elif 0 < rate < MIN_USEFUL_WEEKLY_RATE_KG:
            warnings.append("Your timeline is very conservative; progress may feel slow")

    if body.height_cm and body.current_weight_kg and not errors:
        bmi = formulas.calculate_bmi(body.current_weight_kg, body.height_cm)
        if bmi < formulas.UNDERWEIGHT_BMI:
            warnings.append(f"BMI {bmi} is below the healthy range")
        elif bmi > 30:
            warnings.append(f"BMI {bmi} is above the healthy range")

    if body.medical_conditions:
        warnings.append("Consult your healthcare provider about your medical conditions")

    basic = _share([body.height_cm, body.current_weight_kg])
    goal = _share([body.target_weight_kg, body.target_timeline_weeks])
    optional = _share([
        body.body_fat_percentage,
        body.waist_cm,
        body.hip_cm,
        body.chest_cm,
        body.medical_conditions,
    ])
    return _result(errors, warnings, 0.4 * basic + 0.3 * goal + 0.3 * optional)


# ---------------------------------------------------------------------------
# Workout
# ---------------------------------------------------------------------------

def validate_workout(workout: WorkoutPreferences | None) -> SectionValidation:
    workout = workout or WorkoutPreferences()
    errors: list[str] = []
    warnings: list[str] = []

    if not _filled(workout.location):
        errors.append("Workout location is required")
    if not _filled(workout.intensity):
        errors.append("Workout intensity is required")
    if not _filled(workout.activity_level):
        errors.append("Activity level is required")
    if not workout.primary_goals:
        errors.append("At least one fitness goal is required")

    frequency = workout.workout_frequency_per_week
    if frequency == 0:
        warnings.append("Regular exercise is recommended for health and weight goals")
    elif frequency is not None and frequency > 6:
        warnings.append("Training more than 6 days a week leaves little time to recover")
    if workout.time_preference is not None and workout.time_preference < MIN_SESSION_MINUTES:
        warnings.append("Sessions under 15 minutes have limited training effect")

    required = [
        workout.location,
        workout.intensity,
        workout.activity_level,
        workout.primary_goals,
    ]
    flags = [
        workout.enjoys_cardio,
        workout.enjoys_strength_training,
        workout.enjoys_group_classes,
        workout.prefers_outdoor_activities,
        workout.needs_motivation,
        workout.prefers_variety,
    ]
    optional = [
        workout.equipment,
        workout.time_preference,
        workout.workout_experience_years,
        workout.workout_frequency_per_week,
        workout.can_do_pushups,
        workout.can_run_minutes,
        workout.flexibility_level,
        workout.preferred_workout_times,
        *[True if flag else None for flag in flags],
    ]
    completion = REQUIRED_WEIGHT * _share(required) + OPTIONAL_WEIGHT * _share(optional)
    return _result(errors, warnings, completion)


# ---------------------------------------------------------------------------
# Review
# ---------------------------------------------------------------------------

def validate_review(
    metrics: ComputedMetrics | None, inputs_complete: bool
) -> SectionValidation:
    """The review tab completes once a safe plan exists for complete inputs."""
    errors: list[str] = []
    if metrics is None:
        errors.append("Metrics have not been calculated yet")
    elif metrics.validation is not None and metrics.validation.is_blocked:
        errors.extend(issue.message for issue in metrics.validation.errors)
    if not inputs_complete:
        errors.append("Complete every section before reviewing your plan")
    return _result(errors, [], 1.0 if not errors else 0.0)


def overall_completion(percentages: list[int]) -> int:
    """Rounded mean of the section completion percentages."""
    if not percentages:
        return 0
    return int(round(sum(percentages) / len(percentages)))
