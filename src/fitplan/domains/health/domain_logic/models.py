"""Canonical onboarding schema: input sections, computed metrics, verdicts.

One dataclass per entity. Store-specific shapes (camelCase local documents,
renamed remote columns) are produced only by the adapters in
``connectors.adapters``; everything inside the core passes these objects.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Literal

# ---------------------------------------------------------------------------
# Domain vocabulary
# ---------------------------------------------------------------------------

Gender = Literal["male", "female", "other", "unspecified"]
SyncState = Literal["not_saved", "saved_local", "saved_remote", "conflict"]
SectionState = Literal["empty", "partial", "complete"]
VerdictStatus = Literal["passed", "warnings", "blocked"]

GENDERS = ("male", "female", "other", "unspecified")
INTENSITIES = ("beginner", "intermediate", "advanced")
ACTIVITY_LEVELS = ("sedentary", "light", "moderate", "active", "extreme")
OCCUPATIONS = ("desk_job", "light_active", "moderate_active", "heavy_labor", "very_active")
DIET_TYPES = ("non-veg", "vegetarian", "vegan", "pescatarian")
LOCATIONS = ("home", "gym", "both")

# Tracker section names, in onboarding order
SECTIONS = ("personal_info", "diet", "body", "workout", "review")

# Sync entity names, in write (dependency) order
ENTITY_ORDER = (
    "personal_info",
    "body_analysis",
    "diet_preferences",
    "workout_preferences",
    "computed_metrics",
)
CRITICAL_ENTITY = "personal_info"

READINESS_FLAGS = (
    "keto_ready",
    "intermittent_fasting_ready",
    "paleo_ready",
    "mediterranean_ready",
    "low_carb_ready",
    "high_protein_ready",
)
MEAL_FLAGS = ("breakfast_enabled", "lunch_enabled", "dinner_enabled", "snacks_enabled")
HEALTH_HABITS = (
    "drinks_enough_water",
    "limits_sugary_drinks",
    "eats_regular_meals",
    "avoids_late_night_eating",
    "controls_portion_sizes",
    "reads_nutrition_labels",
    "eats_processed_foods",
    "eats_5_servings_fruits_veggies",
    "limits_refined_sugar",
    "includes_healthy_fats",
    "drinks_alcohol",
    "smokes_tobacco",
    "drinks_coffee",
    "takes_supplements",
)


def _build(cls, data: dict[str, Any] | None):
    """Instantiate a flat dataclass from a dict, ignoring unknown keys."""
    if data is None:
        return None
    names = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in names})


# ---------------------------------------------------------------------------
# Input sections
# ---------------------------------------------------------------------------

@dataclass
class PersonalInfo:
    """Who the user is. The critical sync entity."""

    first_name: str = ""
    last_name: str = ""
    age: int | None = None                 # 13-120
    gender: str = "unspecified"            # male | female | other | unspecified
    country: str = ""                      # ISO-2 code or English name
    state: str = ""
    wake_time: str | None = None           # "HH:MM"
    sleep_time: str | None = None          # "HH:MM"
    occupation_type: str | None = None     # drives the activity multiplier

    @property
    def name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> PersonalInfo | None:
        return _build(cls, data)


@dataclass
class BodyAnalysis:
    """Biometrics, goals and medical context."""

    height_cm: float | None = None
    current_weight_kg: float | None = None
    target_weight_kg: float | None = None
    target_timeline_weeks: int | None = None
    body_fat_percentage: float | None = None
    waist_cm: float | None = None
    hip_cm: float | None = None
    chest_cm: float | None = None
    resting_heart_rate: int | None = None
    medical_conditions: list[str] = field(default_factory=list)
    medications: list[str] = field(default_factory=list)
    physical_limitations: list[str] = field(default_factory=list)
    pregnancy_status: bool = False
    pregnancy_trimester: int | None = None  # 1-3
    breastfeeding_status: bool = False
    stress_level: str | None = None         # low | moderate | high

    @property
    def has_usable_timeline(self) -> bool:
        """A target weight with a positive timeline to reach it."""
        return bool(
            self.target_weight_kg
            and self.target_timeline_weeks is not None
            and self.target_timeline_weeks > 0
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> BodyAnalysis | None:
        return _build(cls, data)


@dataclass
class DietPreferences:
    """Diet type, readiness flags, meal toggles and health habits.

    Health habits only feed the health and diet-readiness scores.
    """

    diet_type: str | None = None
    allergies: list[str] = field(default_factory=list)
    restrictions: list[str] = field(default_factory=list)
    cuisine_preferences: list[str] = field(default_factory=list)

    keto_ready: bool = False
    intermittent_fasting_ready: bool = False
    paleo_ready: bool = False
    mediterranean_ready: bool = False
    low_carb_ready: bool = False
    high_protein_ready: bool = False

    breakfast_enabled: bool = True
    lunch_enabled: bool = True
    dinner_enabled: bool = True
    snacks_enabled: bool = True

    cooking_skill_level: str | None = None
    max_prep_time_minutes: int | None = None
    budget_level: str | None = None

    drinks_enough_water: bool = False
    limits_sugary_drinks: bool = False
    eats_regular_meals: bool = False
    avoids_late_night_eating: bool = False
    controls_portion_sizes: bool = False
    reads_nutrition_labels: bool = False
    eats_processed_foods: bool = False
    eats_5_servings_fruits_veggies: bool = False
    limits_refined_sugar: bool = False
    includes_healthy_fats: bool = False
    drinks_alcohol: bool = False
    smokes_tobacco: bool = False
    drinks_coffee: bool = False
    takes_supplements: bool = False

    @property
    def meals_enabled(self) -> int:
        return sum(1 for flag in MEAL_FLAGS if getattr(self, flag))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> DietPreferences | None:
        return _build(cls, data)


@dataclass
class WorkoutPreferences:
    """Training context. ``activity_level`` and ``weekly_weight_loss_goal``
    are derived by the tracker unless the user set them explicitly."""

    location: str | None = None
    equipment: list[str] = field(default_factory=list)
    time_preference: int | None = None          # session minutes
    intensity: str | None = None
    workout_types: list[str] = field(default_factory=list)
    primary_goals: list[str] = field(default_factory=list)
    activity_level: str | None = None
    activity_level_user_set: bool = False
    workout_experience_years: int | None = None
    workout_frequency_per_week: int | None = None
    can_do_pushups: int | None = None
    can_run_minutes: int | None = None
    flexibility_level: str | None = None
    weekly_weight_loss_goal: float | None = None  # kg/week
    weekly_weight_loss_goal_user_set: bool = False
    preferred_workout_times: list[str] = field(default_factory=list)
    enjoys_cardio: bool = False
    enjoys_strength_training: bool = False
    enjoys_group_classes: bool = False
    prefers_outdoor_activities: bool = False
    needs_motivation: bool = False
    prefers_variety: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> WorkoutPreferences | None:
        return _build(cls, data)


@dataclass
class OnboardingSections:
    """The four user-edited sections. Any of them may still be missing."""

    personal_info: PersonalInfo | None = None
    body_analysis: BodyAnalysis | None = None
    diet_preferences: DietPreferences | None = None
    workout_preferences: WorkoutPreferences | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "personal_info": self.personal_info.to_dict() if self.personal_info else None,
            "body_analysis": self.body_analysis.to_dict() if self.body_analysis else None,
            "diet_preferences": (
                self.diet_preferences.to_dict() if self.diet_preferences else None
            ),
            "workout_preferences": (
                self.workout_preferences.to_dict() if self.workout_preferences else None
            ),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> OnboardingSections:
        data = data or {}
        return cls(
            personal_info=PersonalInfo.from_dict(data.get("personal_info")),
            body_analysis=BodyAnalysis.from_dict(data.get("body_analysis")),
            diet_preferences=DietPreferences.from_dict(data.get("diet_preferences")),
            workout_preferences=WorkoutPreferences.from_dict(data.get("workout_preferences")),
        )


# ---------------------------------------------------------------------------
# Validation verdict
# ---------------------------------------------------------------------------

@dataclass
class ValidationIssue:
    """One typed error or warning."""

    kind: str                       # machine-readable, e.g. 'AGGRESSIVE_DEFICIT'
    message: str
    severity: str = "warning"       # 'error' | 'warning'
    current: float | None = None
    target: float | None = None
    recommendations: list[str] = field(default_factory=list)


@dataclass
class MedicalAdjustment:
    """Advisory adjustment attached to a medical condition."""

    condition: str                  # normalised condition name
    kind: str                       # 'calorie' | 'macro' | 'intensity' | 'monitoring'
    note: str
    calorie_percent: float | None = None   # e.g. -10.0
    carbs_percent: float | None = None     # e.g. -25.0


@dataclass
class RefeedDay:
    week: int
    day: int                        # 1-7 within the week
    calories: int


@dataclass
class RefeedSchedule:
    """Maintenance-calorie days inserted into an aggressive deficit."""

    plan_weeks: int
    refeeds_per_week: int
    refeed_calories: int
    days: list[RefeedDay] = field(default_factory=list)
    diet_break_week: int | None = None
    max_continuous_deficit_days: int = 6
    notes: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RefeedSchedule | None:
        if not data:
            return None
        payload = dict(data)
        payload["days"] = [RefeedDay(**d) for d in payload.get("days", [])]
        return _build(cls, payload)


@dataclass
class ValidationVerdict:
    status: str = "passed"          # passed | warnings | blocked
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)
    refeed_schedule: RefeedSchedule | None = None
    medical_adjustments: list[MedicalAdjustment] = field(default_factory=list)

    @property
    def is_blocked(self) -> bool:
        return self.status == "blocked"

    def kinds(self) -> list[str]:
        """All issue kinds, errors first."""
        return [i.kind for i in self.errors] + [i.kind for i in self.warnings]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ValidationVerdict | None:
        if data is None:
            return None
        return cls(
            status=data.get("status", "passed"),
            errors=[ValidationIssue(**i) for i in data.get("errors", [])],
            warnings=[ValidationIssue(**i) for i in data.get("warnings", [])],
            refeed_schedule=RefeedSchedule.from_dict(data.get("refeed_schedule")),
            medical_adjustments=[
                MedicalAdjustment(**m) for m in data.get("medical_adjustments", [])
            ],
        )


# ---------------------------------------------------------------------------
# Computed metrics
# ---------------------------------------------------------------------------

@dataclass
class HeartRateZone:
    zone: int
    name: str
    min_bpm: int
    max_bpm: int


@dataclass
class ComputedMetrics:
    """Aggregate engine output. Never user-edited."""

    bmr: float
    bmr_formula: str                # 'harris_benedict' | 'katch_mcardle'
    bmr_accuracy: str               # '±10%' | '±5%'
    confidence: int                 # 0-100
    tdee: float
    daily_calories: int
    protein_g: int
    carbs_g: int
    fat_g: int
    water_ml: int

    bmi: float | None = None
    bmi_category: str | None = None
    bmi_health_risk: str | None = None
    bmi_population: str = "standard"
    ideal_weight_min: float | None = None
    ideal_weight_max: float | None = None
    waist_hip_ratio: float | None = None
    body_fat_percentage: float | None = None
    body_fat_estimated: bool = False

    occupation_multiplier: float = 1.25
    exercise_calories: float = 0.0
    climate: str = "temperate"
    ethnicity: str = "general"
    macro_split: dict[str, float] = field(default_factory=dict)
    fiber_g: int = 0
    goal_type: str = "maintenance"  # 'weight_loss' | 'weight_gain' | 'maintenance'
    weekly_rate_kg: float = 0.0
    pregnancy_bonus_kcal: int = 0

    max_heart_rate: int | None = None
    heart_rate_zones: list[HeartRateZone] | None = None
    vo2max: float | None = None
    vo2max_classification: str | None = None

    health_score: int = 0
    health_grade: str = "F"
    diet_readiness_score: int | None = None
    sleep_hours: float | None = None

    defaults_applied: list[str] = field(default_factory=list)
    validation: ValidationVerdict | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ComputedMetrics | None:
        if data is None:
            return None
        payload = dict(data)
        zones = payload.get("heart_rate_zones")
        if zones is not None:
            payload["heart_rate_zones"] = [HeartRateZone(**z) for z in zones]
        payload["validation"] = ValidationVerdict.from_dict(payload.get("validation"))
        return _build(cls, payload)
