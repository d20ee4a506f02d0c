"""Health calculation engine: onboarding sections -> ComputedMetrics.

Orchestrates the context detector and the formula library into one
aggregate result. The only hard failure is missing both height and
weight; every other gap degrades to a documented default (recorded in
``defaults_applied`` and reflected in ``confidence``) or a null field.
"""

from __future__ import annotations

import logging

from fitplan.domains.health.domain_logic import formulas
from fitplan.domains.health.domain_logic.context_detector import FormulaContext, detect_context
from fitplan.domains.health.domain_logic.models import (
    BodyAnalysis,
    ComputedMetrics,
    OnboardingSections,
    PersonalInfo,
    WorkoutPreferences,
)
from fitplan.domains.health.errors import InputError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Documented defaults for missing optional inputs
# ---------------------------------------------------------------------------

DEFAULT_AGE = 30
DEFAULT_HEIGHT_CM = {"male": 175.0, "female": 162.0}
DEFAULT_HEIGHT_OTHER_CM = 168.5
DEFAULT_WEIGHT_BMI = 22.0
DEFAULT_INTENSITY = "beginner"

CONFIDENCE_LEAN_MASS = 95
CONFIDENCE_STANDARD = 85
CONFIDENCE_PER_DEFAULT = 10
CONFIDENCE_UNSPECIFIED_GENDER = 5
CONFIDENCE_FLOOR = 30

_BIOMETRIC_DEFAULTS = ("age", "height_cm", "current_weight_kg")


class HealthCalculationEngine:
    """Turns raw onboarding sections into one ComputedMetrics aggregate.

    Usage::

        engine = HealthCalculationEngine()
        metrics = engine.compute(sections)   # raises InputError without height and weight
        metrics.bmr_formula, metrics.bmr_accuracy
    """

    def compute(self, sections: OnboardingSections) -> ComputedMetrics:
        """Compute the aggregate result.

        Raises:
            InputError: If neither height nor weight is present, or a
                biometric value is physically impossible.
        """
        personal = sections.personal_info or PersonalInfo()
        body = sections.body_analysis
        diet = sections.diet_preferences
        workout = sections.workout_preferences

        if body is None or (not body.height_cm and not body.current_weight_kg):
            raise InputError(
                "Height or weight is required before any calculation can run",
                missing=["height_cm", "current_weight_kg"],
            )

        defaults: list[str] = []
        gender = personal.gender if personal.gender in ("male", "female", "other") else "unspecified"
        if gender == "unspecified":
            defaults.append("gender")

        age = personal.age
        if not age:
            age = DEFAULT_AGE
            defaults.append("age")

        height_measured = bool(body.height_cm)
        weight_measured = bool(body.current_weight_kg)
        height = body.height_cm if height_measured else DEFAULT_HEIGHT_CM.get(gender, DEFAULT_HEIGHT_OTHER_CM)
        if not height_measured:
            defaults.append("height_cm")
        weight = (
            body.current_weight_kg
            if weight_measured
            else formulas.weight_at_bmi(height, DEFAULT_WEIGHT_BMI)
        )
        if not weight_measured:
            defaults.append("current_weight_kg")

        occupation = personal.occupation_type
        if occupation not in formulas.OCCUPATION_MULTIPLIERS:
            occupation = formulas.DEFAULT_OCCUPATION
            defaults.append("occupation_type")

        context = detect_context(
            personal.country, personal.state, diet.diet_type if diet else None
        )

        try:
            bmr = formulas.select_bmr(weight, height, age, gender, body.body_fat_percentage)
        except ValueError as exc:
            raise InputError(str(exc), missing=["body_fat_percentage"]) from exc

        activity_level = self._activity_level(workout, occupation)
        exercise_kcal = self._exercise_calories(workout, weight)
        tdee = formulas.calculate_tdee(
            bmr.value, occupation, exercise_kcal, context.tdee_multiplier
        )

        goal_type, weekly_rate, target = self._goal_target(
            body, workout, tdee, weight, weight_measured
        )
        bonus = formulas.pregnancy_calorie_bonus(
            body.pregnancy_status, body.pregnancy_trimester, body.breastfeeding_status
        )
        if body.pregnancy_status or body.breastfeeding_status:
            # Goal deficits are suspended; the physiological bonus adds to maintenance
            if goal_type != "maintenance":
                logger.info("Weight goal suspended during pregnancy or breastfeeding")
            goal_type, weekly_rate, target = "maintenance", 0.0, tdee + bonus
        daily_calories = max(0, int(round(target)))

        split = formulas.select_macro_split(
            keto=bool(diet and diet.keto_ready),
            high_protein=bool(diet and diet.high_protein_ready),
            low_carb=bool(diet and diet.low_carb_ready),
            goals=workout.primary_goals if workout else (),
        )
        split = formulas.apply_protein_factor(split, context.protein_factor)
        protein_g, carbs_g, fat_g = formulas.calculate_macros(daily_calories, split)

        metrics = ComputedMetrics(
            bmr=bmr.value,
            bmr_formula=bmr.formula,
            bmr_accuracy=bmr.accuracy,
            confidence=self._confidence(bmr.formula, defaults),
            tdee=tdee,
            daily_calories=daily_calories,
            protein_g=protein_g,
            carbs_g=carbs_g,
            fat_g=fat_g,
            water_ml=formulas.water_intake_ml(
                weight, activity_level, context.water_bonus_ml_per_kg
            ),
            bmi_population=context.bmi_population,
            occupation_multiplier=formulas.occupation_multiplier(occupation),
            exercise_calories=exercise_kcal,
            climate=context.climate,
            ethnicity=context.ethnicity,
            macro_split=split.as_dict(),
            fiber_g=formulas.fiber_target_g(daily_calories),
            goal_type=goal_type,
            weekly_rate_kg=weekly_rate,
            pregnancy_bonus_kcal=bonus,
            sleep_hours=formulas.sleep_duration_hours(personal.wake_time, personal.sleep_time),
            defaults_applied=defaults,
        )

        self._body_composition(metrics, body, context, age, gender, height_measured, weight_measured)
        self._cardio(metrics, body, age, gender, activity_level)

        metrics.health_score = formulas.health_score(
            bmi=metrics.bmi,
            activity_level=activity_level,
            diet=diet,
            sleep_hours=metrics.sleep_hours,
            experience_years=workout.workout_experience_years if workout else None,
            sessions_per_week=workout.workout_frequency_per_week if workout else None,
        )
        metrics.health_grade = formulas.health_grade(metrics.health_score)
        if diet is not None:
            metrics.diet_readiness_score = formulas.diet_readiness_score(diet)

        logger.debug(
            "Computed metrics (formula=%s, confidence=%d, defaults=%s)",
            metrics.bmr_formula,
            metrics.confidence,
            ",".join(defaults) or "none",
        )
        return metrics

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    @staticmethod
    def _activity_level(workout: WorkoutPreferences | None, occupation: str) -> str:
        if workout is not None and workout.activity_level:
            return workout.activity_level
        return formulas.activity_level_for_occupation(occupation)

    @staticmethod
    def _exercise_calories(workout: WorkoutPreferences | None, weight: float) -> float:
        if workout is None:
            return 0.0
        return formulas.exercise_calories_per_day(
            weight,
            workout.time_preference,
            workout.workout_frequency_per_week,
            workout.intensity or DEFAULT_INTENSITY,
            workout.workout_types,
        )

    @staticmethod
    def _goal_target(
        body: BodyAnalysis,
        workout: WorkoutPreferences | None,
        tdee: float,
        weight: float,
        weight_measured: bool,
    ) -> tuple[str, float, float]:
        """Return (goal type, weekly rate kg, calorie target before pregnancy handling)."""
        if weight_measured and body.has_usable_timeline:
            rate = formulas.weekly_rate_kg(
                weight, body.target_weight_kg, body.target_timeline_weeks
            )
            delta = formulas.daily_energy_delta(rate)
            if body.target_weight_kg < weight:
                return "weight_loss", rate, tdee - delta
            if body.target_weight_kg > weight:
                return "weight_gain", rate, tdee + delta
            return "maintenance", 0.0, tdee

        if workout is not None and workout.weekly_weight_loss_goal:
            rate = round(workout.weekly_weight_loss_goal, 3)
            return "weight_loss", rate, tdee - formulas.daily_energy_delta(rate)

        return "maintenance", 0.0, tdee

    @staticmethod
    def _body_composition(
        metrics: ComputedMetrics,
        body: BodyAnalysis,
        context: FormulaContext,
        age: int,
        gender: str,
        height_measured: bool,
        weight_measured: bool,
    ) -> None:
        if height_measured:
            metrics.ideal_weight_min, metrics.ideal_weight_max = formulas.ideal_weight_range(
                body.height_cm, context.bmi_population
            )
        if height_measured and weight_measured:
            metrics.bmi = formulas.calculate_bmi(body.current_weight_kg, body.height_cm)
            metrics.bmi_category, metrics.bmi_health_risk = formulas.classify_bmi(
                metrics.bmi, context.bmi_population
            )

        metrics.waist_hip_ratio = formulas.waist_hip_ratio(body.waist_cm, body.hip_cm)

        if body.body_fat_percentage is not None:
            metrics.body_fat_percentage = body.body_fat_percentage
        elif metrics.bmi is not None:
            metrics.body_fat_percentage = formulas.estimate_body_fat(metrics.bmi, age, gender)
            metrics.body_fat_estimated = True

    @staticmethod
    def _cardio(
        metrics: ComputedMetrics,
        body: BodyAnalysis,
        age: int,
        gender: str,
        activity_level: str,
    ) -> None:
        # Never estimated from age alone
        rhr = body.resting_heart_rate
        if not rhr:
            return
        try:
            metrics.heart_rate_zones = formulas.heart_rate_zones(age, rhr, gender)
        except ValueError as exc:
            raise InputError(str(exc), missing=["resting_heart_rate"]) from exc
        metrics.max_heart_rate = formulas.max_heart_rate(age, gender)
        metrics.vo2max = formulas.estimate_vo2max(age, gender, rhr, activity_level)
        metrics.vo2max_classification = formulas.classify_vo2max(metrics.vo2max, age, gender)

    @staticmethod
    def _confidence(formula: str, defaults: list[str]) -> int:
        score = (
            CONFIDENCE_LEAN_MASS
            if formula == formulas.LEAN_MASS_BMR_FORMULA
            else CONFIDENCE_STANDARD
        )
        score -= CONFIDENCE_PER_DEFAULT * sum(1 for d in defaults if d in _BIOMETRIC_DEFAULTS)
        if "gender" in defaults:
            score -= CONFIDENCE_UNSPECIFIED_GENDER
        return max(CONFIDENCE_FLOOR, score)
