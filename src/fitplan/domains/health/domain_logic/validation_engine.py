"""Validation & safety engine: (sections, metrics) -> ValidationVerdict.

Blocking rules run in priority order and the first one that fires is the
only error. Non-blocking issues all accumulate as warnings, in a fixed
order, so the same input always yields the same verdict.

An aggressive deficit above the absolute floor is not blocked: a refeed
schedule is attached instead, which caps every continuous deficit run.
"""

from __future__ import annotations

import logging
from typing import Callable

from fitplan.domains.health.domain_logic import formulas
from fitplan.domains.health.domain_logic.models import (
    BodyAnalysis,
    ComputedMetrics,
    DietPreferences,
    MedicalAdjustment,
    OnboardingSections,
    PersonalInfo,
    RefeedDay,
    RefeedSchedule,
    ValidationIssue,
    ValidationVerdict,
    WorkoutPreferences,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Safety constants (not configurable)
# ---------------------------------------------------------------------------

ABSOLUTE_CALORIE_FLOOR = 1200
SAFE_DEFICIT_FRACTION = 0.20
CONSERVATIVE_DEFICIT_FRACTION = 0.15  # high stress or medical conditions
DOUBLE_REFEED_DEFICIT_FRACTION = 0.30
SAFE_WEEKLY_LOSS_FRACTION = 0.01      # of body weight
SAFE_WEEKLY_GAIN_FRACTION = 0.005
DEFAULT_PLAN_WEEKS = 12
DIET_BREAK_MIN_WEEKS = 16
MIN_TARGET_BMI = 17.5
ESSENTIAL_BODY_FAT = {"male": 5.0, "female": 12.0}
ESSENTIAL_BODY_FAT_OTHER = 8.5
ELDERLY_AGE = 75
MENOPAUSE_AGE_RANGE = (45, 55)
RECOMMENDED_SLEEP_HOURS = 7
MAX_WEEKLY_SESSIONS = 6

METABOLIC_MEDICATIONS = (
    "levothyroxine",
    "synthroid",
    "antidepressant",
    "beta-blocker",
    "beta blocker",
    "prednisone",
    "insulin",
)

# ---------------------------------------------------------------------------
# Medical conditions
# ---------------------------------------------------------------------------

_CONDITION_ALIASES = {
    "hypothyroid": "hypothyroidism",
    "hypothyroidism": "hypothyroidism",
    "underactive thyroid": "hypothyroidism",
    "hyperthyroid": "hyperthyroidism",
    "hyperthyroidism": "hyperthyroidism",
    "overactive thyroid": "hyperthyroidism",
    "pcos": "pcos",
    "polycystic ovary syndrome": "pcos",
    "diabetes": "diabetes",
    "type 1 diabetes": "diabetes",
    "type 2 diabetes": "diabetes",
    "diabetes type 1": "diabetes",
    "diabetes type 2": "diabetes",
    "hypertension": "hypertension",
    "high blood pressure": "hypertension",
    "heart disease": "heart disease",
    "cardiovascular disease": "heart disease",
    "coronary artery disease": "heart disease",
}

_CONDITION_RULES: dict[str, dict] = {
    "hypothyroidism": {
        "kind": "calorie",
        "calorie_percent": -10.0,
        "note": "TDEE reduced 10% for slower thyroid-driven metabolism",
    },
    "hyperthyroidism": {
        "kind": "calorie",
        "calorie_percent": 15.0,
        "note": "TDEE raised 15% for elevated thyroid-driven metabolism",
    },
    "pcos": {
        "kind": "macro",
        "carbs_percent": -25.0,
        "note": "Carbohydrates reduced 25%, calories moved to fat, for insulin resistance",
    },
    "diabetes": {
        "kind": "macro",
        "carbs_percent": -25.0,
        "note": "Carbohydrates reduced 25%, calories moved to fat; monitor blood glucose",
    },
    "hypertension": {
        "kind": "intensity",
        "note": "Avoid heavy isometric and breath-holding lifts; limit sodium",
    },
    "heart disease": {
        "kind": "intensity",
        "note": "Medical clearance required; cap cardio at heart-rate zone 3",
    },
}


def normalize_condition(condition: str) -> str:
    """Canonical condition name (case, separators and aliases folded)."""
    folded = " ".join(condition.lower().replace("_", " ").replace("-", " ").split())
    return _CONDITION_ALIASES.get(folded, folded)


def medical_adjustments(conditions: list[str]) -> list[MedicalAdjustment]:
    """One advisory adjustment per distinct condition, sorted by name."""
    adjustments = []
    for name in sorted({normalize_condition(c) for c in conditions if c and c.strip()}):
        rule = _CONDITION_RULES.get(name)
        if rule is None:
            adjustments.append(MedicalAdjustment(
                condition=name,
                kind="monitoring",
                note="Consult your healthcare provider before starting this plan",
            ))
        else:
            adjustments.append(MedicalAdjustment(condition=name, **rule))
    return adjustments


# ---------------------------------------------------------------------------
# Refeed planning
# ---------------------------------------------------------------------------

def plan_refeeds(deficit_fraction: float, tdee: float, plan_weeks: int | None) -> RefeedSchedule:
    """Insert maintenance days into an aggressive deficit.

    One refeed per week (day 7) keeps continuous deficit runs at six days;
    above a 30% deficit a second refeed (day 4) keeps them at three. Plans
    of 16+ weeks also get a full diet-break week halfway through.
    """
    weeks = plan_weeks if plan_weeks and plan_weeks > 0 else DEFAULT_PLAN_WEEKS
    refeed_days = (4, 7) if deficit_fraction > DOUBLE_REFEED_DEFICIT_FRACTION else (7,)
    diet_break = weeks // 2 if weeks >= DIET_BREAK_MIN_WEEKS else None
    calories = int(round(tdee))

    notes = [
        f"{len(refeed_days)} refeed day(s) per week at maintenance ({calories} kcal)",
        "Raise carbohydrates by 100-150 g on refeed days; keep protein unchanged",
    ]
    if diet_break:
        notes.append(f"Week {diet_break}: full week at maintenance calories (diet break)")

    return RefeedSchedule(
        plan_weeks=weeks,
        refeeds_per_week=len(refeed_days),
        refeed_calories=calories,
        days=[
            RefeedDay(week=week, day=day, calories=calories)
            for week in range(1, weeks + 1)
            if week != diet_break
            for day in refeed_days
        ],
        diet_break_week=diet_break,
        max_continuous_deficit_days=3 if len(refeed_days) == 2 else 6,
        notes=notes,
    )


def deficit_fraction(metrics: ComputedMetrics) -> float:
    """Share of TDEE removed by the daily target (0 when not in deficit)."""
    if metrics.tdee <= 0:
        return 0.0
    return max(0.0, (metrics.tdee - metrics.daily_calories) / metrics.tdee)


def safe_deficit_limit(body: BodyAnalysis) -> tuple[float, str]:
    """Largest deficit fraction treated as safe, and why.

    High stress or any medical condition lowers the limit from 20% to 15%.
    """
    if (body.stress_level or "").lower() == "high":
        return CONSERVATIVE_DEFICIT_FRACTION, "high stress level"
    if any(c and c.strip() for c in body.medical_conditions):
        return CONSERVATIVE_DEFICIT_FRACTION, "medical conditions"
    return SAFE_DEFICIT_FRACTION, "recommended safety limits"


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class ValidationEngine:
    """Evaluates a computed plan against safety rules.

    Usage::

        verdict = ValidationEngine().evaluate(sections, metrics)
        if verdict.is_blocked:
            ...
    """

    def evaluate(
        self, sections: OnboardingSections, metrics: ComputedMetrics
    ) -> ValidationVerdict:
        personal = sections.personal_info or PersonalInfo()
        body = sections.body_analysis or BodyAnalysis()
        diet = sections.diet_preferences
        workout = sections.workout_preferences

        verdict = ValidationVerdict(
            medical_adjustments=medical_adjustments(body.medical_conditions)
        )

        blocking_rules: list[Callable[[], ValidationIssue | None]] = [
            lambda: self._calorie_floor(metrics),
            lambda: self._physiological_conflict(body),
            lambda: self._no_meals(diet),
            lambda: self._conflicting_goals(workout),
            lambda: self._target_bmi(body, metrics),
            lambda: self._essential_body_fat(body, personal, metrics),
        ]
        for rule in blocking_rules:
            issue = rule()
            if issue is not None:
                verdict.errors.append(issue)
                break

        deficit = deficit_fraction(metrics)
        limit, limit_reason = safe_deficit_limit(body)
        if deficit > limit and metrics.daily_calories >= ABSOLUTE_CALORIE_FLOOR:
            verdict.refeed_schedule = plan_refeeds(
                deficit, metrics.tdee, body.target_timeline_weeks
            )

        checks = (
            self._bmi_range(metrics),
            self._medical_conditions(verdict.medical_adjustments),
            self._timeline(body, metrics),
            self._pregnancy_shortfall(body, metrics),
            self._aggressive_deficit(deficit, limit, limit_reason, verdict.refeed_schedule),
            self._below_bmr(metrics),
            self._elderly(personal),
            self._menopause(personal),
            self._sleep(metrics),
            *self._substances(diet),
            self._medications(body),
            self._physical_limitations(body),
            self._training_volume(workout),
            self._no_exercise(workout, metrics),
        )
        verdict.warnings.extend(issue for issue in checks if issue is not None)

        if verdict.errors:
            verdict.status = "blocked"
        elif verdict.warnings:
            verdict.status = "warnings"
        else:
            verdict.status = "passed"

        logger.debug(
            "Validation verdict %s (%d errors, %d warnings)",
            verdict.status,
            len(verdict.errors),
            len(verdict.warnings),
        )
        return verdict

    # ------------------------------------------------------------------
    # Blocking rules
    # ------------------------------------------------------------------

    @staticmethod
    def _calorie_floor(metrics: ComputedMetrics) -> ValidationIssue | None:
        if metrics.daily_calories >= ABSOLUTE_CALORIE_FLOOR:
            return None
        return ValidationIssue(
            kind="BELOW_ABSOLUTE_MINIMUM",
            message=(
                f"Daily target of {metrics.daily_calories} kcal is below the "
                f"{ABSOLUTE_CALORIE_FLOOR} kcal safety minimum"
            ),
            severity="error",
            current=metrics.daily_calories,
            target=ABSOLUTE_CALORIE_FLOOR,
            recommendations=["Extend the timeline or reduce the weight-loss target"],
        )

    @staticmethod
    def _physiological_conflict(body: BodyAnalysis) -> ValidationIssue | None:
        if not (body.pregnancy_status and body.breastfeeding_status):
            return None
        return ValidationIssue(
            kind="CONFLICTING_PHYSIOLOGICAL_STATES",
            message="Pregnancy and breastfeeding are both set; confirm which one applies",
            severity="error",
        )

    @staticmethod
    def _no_meals(diet: DietPreferences | None) -> ValidationIssue | None:
        if diet is None or diet.meals_enabled > 0:
            return None
        return ValidationIssue(
            kind="NO_MEALS_ENABLED",
            message="At least one meal must be enabled to build a meal plan",
            severity="error",
        )

    @staticmethod
    def _conflicting_goals(workout: WorkoutPreferences | None) -> ValidationIssue | None:
        if workout is None:
            return None
        goals = formulas.normalize_goals(workout.primary_goals)
        if not {"weight_loss", "weight_gain"} <= goals:
            return None
        return ValidationIssue(
            kind="CONFLICTING_GOALS",
            message="Cannot lose weight and gain weight at the same time",
            severity="error",
            recommendations=["Choose weight loss or weight gain as the primary goal"],
        )

    @staticmethod
    def _target_bmi(body: BodyAnalysis, metrics: ComputedMetrics) -> ValidationIssue | None:
        if metrics.goal_type != "weight_loss" or not body.target_weight_kg or not body.height_cm:
            return None
        target_bmi = body.target_weight_kg / (body.height_cm / 100) ** 2
        if target_bmi >= MIN_TARGET_BMI:
            return None
        return ValidationIssue(
            kind="TARGET_BMI_UNDERWEIGHT",
            message=f"Target BMI {target_bmi:.1f} is clinically underweight",
            severity="error",
            current=round(target_bmi, 1),
            target=MIN_TARGET_BMI,
            recommendations=[
                f"Minimum safe weight: {formulas.weight_at_bmi(body.height_cm, 18.5):.0f} kg"
            ],
        )

    @staticmethod
    def _essential_body_fat(
        body: BodyAnalysis, personal: PersonalInfo, metrics: ComputedMetrics
    ) -> ValidationIssue | None:
        if metrics.goal_type != "weight_loss" or body.body_fat_percentage is None:
            return None
        minimum = ESSENTIAL_BODY_FAT.get(personal.gender, ESSENTIAL_BODY_FAT_OTHER)
        if body.body_fat_percentage > minimum:
            return None
        return ValidationIssue(
            kind="AT_ESSENTIAL_BODY_FAT",
            message=f"Body fat of {body.body_fat_percentage}% is at the essential minimum",
            severity="error",
            current=body.body_fat_percentage,
            target=minimum,
            recommendations=["Switch to maintenance or a lean bulk"],
        )

    # ------------------------------------------------------------------
    # Warnings
    # ------------------------------------------------------------------

    @staticmethod
    def _bmi_range(metrics: ComputedMetrics) -> ValidationIssue | None:
        if metrics.bmi is None:
            return None
        low, high = formulas.healthy_bmi_range(metrics.bmi_population)
        if low <= metrics.bmi <= high:
            return None
        return ValidationIssue(
            kind="BMI_OUTSIDE_HEALTHY_RANGE",
            message=(
                f"BMI {metrics.bmi} is outside the healthy range {low}-{high} "
                f"for the {metrics.bmi_population} population"
            ),
            current=metrics.bmi,
            target=low if metrics.bmi < low else high,
        )

    @staticmethod
    def _medical_conditions(adjustments: list[MedicalAdjustment]) -> ValidationIssue | None:
        if not adjustments:
            return None
        names = ", ".join(a.condition for a in adjustments)
        return ValidationIssue(
            kind="MEDICAL_CONDITIONS",
            message=f"Medical supervision recommended ({names})",
            recommendations=[f"{a.condition}: {a.note}" for a in adjustments],
        )

    @staticmethod
    def _timeline(body: BodyAnalysis, metrics: ComputedMetrics) -> ValidationIssue | None:
        weight = body.current_weight_kg
        if not weight or metrics.weekly_rate_kg <= 0:
            return None
        if metrics.goal_type == "weight_loss":
            safe = weight * SAFE_WEEKLY_LOSS_FRACTION
        elif metrics.goal_type == "weight_gain":
            safe = weight * SAFE_WEEKLY_GAIN_FRACTION
        else:
            return None
        if metrics.weekly_rate_kg <= safe:
            return None
        recommendations = []
        if body.target_weight_kg:
            weeks = abs(body.target_weight_kg - weight) / safe
            recommendations.append(f"A safe timeline is at least {weeks:.0f} weeks")
        return ValidationIssue(
            kind="UNREALISTIC_TIMELINE",
            message=(
                f"{metrics.weekly_rate_kg:.2f} kg/week exceeds the safe rate of "
                f"{safe:.2f} kg/week"
            ),
            current=metrics.weekly_rate_kg,
            target=round(safe, 2),
            recommendations=recommendations,
        )

    @staticmethod
    def _pregnancy_shortfall(body: BodyAnalysis, metrics: ComputedMetrics) -> ValidationIssue | None:
        if not (body.pregnancy_status or body.breastfeeding_status):
            return None
        bonus = formulas.pregnancy_calorie_bonus(
            body.pregnancy_status, body.pregnancy_trimester, body.breastfeeding_status
        )
        required = int(round(metrics.tdee + bonus))
        if metrics.daily_calories >= required:
            return None
        stage = (
            "breastfeeding"
            if body.breastfeeding_status
            else f"trimester {body.pregnancy_trimester or 1}"
        )
        return ValidationIssue(
            kind="PREGNANCY_CALORIE_SHORTFALL",
            message=f"Daily target is below the {stage} requirement of {required} kcal",
            current=metrics.daily_calories,
            target=required,
        )

    @staticmethod
    def _aggressive_deficit(
        deficit: float, limit: float, reason: str, schedule: RefeedSchedule | None
    ) -> ValidationIssue | None:
        if schedule is None:
            return None
        return ValidationIssue(
            kind="AGGRESSIVE_DEFICIT",
            message=(
                f"A {deficit:.0%} deficit exceeds the safe {limit:.0%} ({reason}); "
                "refeed days have been scheduled"
            ),
            current=round(deficit * 100, 1),
            target=round(limit * 100, 1),
            recommendations=list(schedule.notes),
        )

    @staticmethod
    def _below_bmr(metrics: ComputedMetrics) -> ValidationIssue | None:
        if metrics.daily_calories >= metrics.bmr or metrics.daily_calories < ABSOLUTE_CALORIE_FLOOR:
            return None
        return ValidationIssue(
            kind="BELOW_BMR",
            message="Daily target is below your basal metabolic rate",
            current=metrics.daily_calories,
            target=round(metrics.bmr),
        )

    @staticmethod
    def _elderly(personal: PersonalInfo) -> ValidationIssue | None:
        if not personal.age or personal.age < ELDERLY_AGE:
            return None
        return ValidationIssue(
            kind="ELDERLY_USER",
            message="Prioritise protein, balance and joint-friendly training at 75+",
        )

    @staticmethod
    def _menopause(personal: PersonalInfo) -> ValidationIssue | None:
        low, high = MENOPAUSE_AGE_RANGE
        if personal.gender != "female" or not personal.age or not low <= personal.age <= high:
            return None
        return ValidationIssue(
            kind="MENOPAUSE_AGE_RANGE",
            message="Perimenopause can shift metabolism; calorie needs may be lower",
        )

    @staticmethod
    def _sleep(metrics: ComputedMetrics) -> ValidationIssue | None:
        if metrics.sleep_hours is None or metrics.sleep_hours >= RECOMMENDED_SLEEP_HOURS:
            return None
        return ValidationIssue(
            kind="INSUFFICIENT_SLEEP",
            message=f"{metrics.sleep_hours:.1f} h of sleep slows recovery and fat loss",
            current=metrics.sleep_hours,
            target=RECOMMENDED_SLEEP_HOURS,
        )

    @staticmethod
    def _substances(diet: DietPreferences | None) -> list[ValidationIssue | None]:
        if diet is None:
            return []
        return [
            ValidationIssue(
                kind="ALCOHOL_IMPACT",
                message="Alcohol adds empty calories and impairs recovery",
            ) if diet.drinks_alcohol else None,
            ValidationIssue(
                kind="TOBACCO_IMPACT",
                message="Smoking significantly limits cardiovascular progress",
            ) if diet.smokes_tobacco else None,
        ]

    @staticmethod
    def _medications(body: BodyAnalysis) -> ValidationIssue | None:
        matched = sorted({
            med for med in body.medications
            if any(known in med.lower() for known in METABOLIC_MEDICATIONS)
        })
        if not matched:
            return None
        return ValidationIssue(
            kind="MEDICATION_EFFECTS",
            message=f"Medications may affect metabolism: {', '.join(matched)}",
            recommendations=["Discuss this plan with your prescribing doctor"],
        )

    @staticmethod
    def _physical_limitations(body: BodyAnalysis) -> ValidationIssue | None:
        if not body.physical_limitations:
            return None
        return ValidationIssue(
            kind="PHYSICAL_LIMITATIONS",
            message="Training intensity will be adapted to your physical limitations",
        )

    @staticmethod
    def _training_volume(workout: WorkoutPreferences | None) -> ValidationIssue | None:
        sessions = workout.workout_frequency_per_week if workout else None
        if not sessions or sessions <= MAX_WEEKLY_SESSIONS:
            return None
        return ValidationIssue(
            kind="EXCESSIVE_TRAINING_VOLUME",
            message="Training more than 6 days a week leaves too little recovery",
            current=sessions,
            target=MAX_WEEKLY_SESSIONS,
        )

    @staticmethod
    def _no_exercise(
        workout: WorkoutPreferences | None, metrics: ComputedMetrics
    ) -> ValidationIssue | None:
        if workout is None or metrics.goal_type != "weight_loss":
            return None
        if workout.workout_frequency_per_week != 0:
            return None
        return ValidationIssue(
            kind="NO_EXERCISE_PLANNED",
            message="Weight loss without exercise risks losing muscle mass",
            current=0,
            target=3,
        )
