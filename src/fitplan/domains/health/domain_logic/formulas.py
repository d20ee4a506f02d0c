"""Formula library: deterministic health and nutrition formulas.

Pure functions only: no state, no I/O. Callers (the calculation engine)
decide which formula applies; the library just computes. Inputs use
metric units (kg, cm, years, bpm, minutes).
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable

from fitplan.domains.health.domain_logic.models import DietPreferences, HeartRateZone

KCAL_PER_KG = 7700
KCAL_PER_G_PROTEIN = 4
KCAL_PER_G_CARBS = 4
KCAL_PER_G_FAT = 9


def _clamp(value: float, lo: float, hi: float) -> float:
    """Clamp a value to [lo, hi]."""
    return max(lo, min(hi, value))


def _by_gender(table: dict[str, tuple[float, ...]], gender: str | None) -> tuple[float, ...]:
    """Constant set for a gender; other/unspecified averages male and female."""
    if gender in table:
        return table[gender]
    male, female = table["male"], table["female"]
    return tuple((m + f) / 2 for m, f in zip(male, female))


# ---------------------------------------------------------------------------
# BMR
# ---------------------------------------------------------------------------

# (constant, weight coef, height coef, age coef); Roza & Shizgal 1984 revision
_HARRIS_BENEDICT = {
    "male": (88.362, 13.397, 4.799, 5.677),
    "female": (447.593, 9.247, 3.098, 4.330),
}
_MIFFLIN_OFFSET = {"male": (5.0,), "female": (-161.0,)}

STANDARD_BMR_FORMULA = "harris_benedict"
LEAN_MASS_BMR_FORMULA = "katch_mcardle"

BMR_ACCURACY = {
    "harris_benedict": "±10%",
    "mifflin_st_jeor": "±10%",
    "katch_mcardle": "±5%",
    "cunningham": "±5%",
}


@dataclass(frozen=True)
class BmrResult:
    value: float
    formula: str
    accuracy: str


def lean_body_mass(weight_kg: float, body_fat_pct: float) -> float:
    """Fat-free mass in kg."""
    if not 0 <= body_fat_pct < 100:
        raise ValueError(f"Body fat percentage out of range: {body_fat_pct}")
    return weight_kg * (1 - body_fat_pct / 100)


def bmr_harris_benedict(weight_kg: float, height_cm: float, age: float, gender: str | None) -> float:
    const, w, h, a = _by_gender(_HARRIS_BENEDICT, gender)
    return const + w * weight_kg + h * height_cm - a * age


def bmr_mifflin_st_jeor(weight_kg: float, height_cm: float, age: float, gender: str | None) -> float:
    (offset,) = _by_gender(_MIFFLIN_OFFSET, gender)
    return 10 * weight_kg + 6.25 * height_cm - 5 * age + offset


def bmr_katch_mcardle(weight_kg: float, body_fat_pct: float) -> float:
    return 370 + 21.6 * lean_body_mass(weight_kg, body_fat_pct)


def bmr_cunningham(weight_kg: float, body_fat_pct: float) -> float:
    return 500 + 22 * lean_body_mass(weight_kg, body_fat_pct)


def select_bmr(
    weight_kg: float,
    height_cm: float,
    age: float,
    gender: str | None,
    body_fat_pct: float | None = None,
) -> BmrResult:
    """Pick the BMR formula by data availability and compute it.

    Known body fat selects the lean-mass formula (Katch-McArdle); otherwise
    the standard weight/height/age formula (revised Harris-Benedict). No
    other formula is ever selected here.
    """
    if body_fat_pct is not None:
        value = bmr_katch_mcardle(weight_kg, body_fat_pct)
        formula = LEAN_MASS_BMR_FORMULA
    else:
        value = bmr_harris_benedict(weight_kg, height_cm, age, gender)
        formula = STANDARD_BMR_FORMULA
    return BmrResult(value=round(value, 1), formula=formula, accuracy=BMR_ACCURACY[formula])


# ---------------------------------------------------------------------------
# BMI
# ---------------------------------------------------------------------------

# Lower bounds of (overweight, obese); underweight below 18.5 everywhere
BMI_CUTOFFS = {
    "standard": (25.0, 30.0),
    "asian": (23.0, 27.5),
    "african": (27.0, 32.0),
}
UNDERWEIGHT_BMI = 18.5

BMI_CATEGORIES = (
    ("Underweight", "moderate"),
    ("Normal", "low"),
    ("Overweight", "moderate"),
    ("Obese", "high"),
)


def calculate_bmi(weight_kg: float, height_cm: float) -> float:
    """Body-mass index, one decimal."""
    if height_cm <= 0 or weight_kg <= 0:
        raise ValueError("Height and weight must be positive")
    return round(weight_kg / (height_cm / 100) ** 2, 1)


def classify_bmi(bmi: float, population: str = "standard") -> tuple[str, str]:
    """Return (category, health risk) using population-specific cutoffs."""
    overweight, obese = BMI_CUTOFFS.get(population, BMI_CUTOFFS["standard"])
    if bmi < UNDERWEIGHT_BMI:
        index = 0
    elif bmi < overweight:
        index = 1
    elif bmi < obese:
        index = 2
    else:
        index = 3
    return BMI_CATEGORIES[index]


def healthy_bmi_range(population: str = "standard") -> tuple[float, float]:
    """Healthy BMI band, e.g. (18.5, 24.9) for the WHO population."""
    overweight, _ = BMI_CUTOFFS.get(population, BMI_CUTOFFS["standard"])
    return UNDERWEIGHT_BMI, round(overweight - 0.1, 1)


def ideal_weight_range(height_cm: float, population: str = "standard") -> tuple[float, float]:
    """Weight range (kg) matching the healthy BMI band at this height."""
    low, high = healthy_bmi_range(population)
    h2 = (height_cm / 100) ** 2
    return round(low * h2, 1), round(high * h2, 1)


def weight_at_bmi(height_cm: float, bmi: float) -> float:
    return round(bmi * (height_cm / 100) ** 2, 1)


# ---------------------------------------------------------------------------
# TDEE
# ---------------------------------------------------------------------------

OCCUPATION_MULTIPLIERS = {
    "desk_job": 1.25,
    "light_active": 1.35,
    "moderate_active": 1.45,
    "heavy_labor": 1.60,
    "very_active": 1.70,
}
DEFAULT_OCCUPATION = "desk_job"

OCCUPATION_ACTIVITY_LEVEL = {
    "desk_job": "sedentary",
    "light_active": "light",
    "moderate_active": "moderate",
    "heavy_labor": "active",
    "very_active": "extreme",
}

MET_VALUES = {
    "beginner": {
        "strength": 3.5, "cardio": 5.0, "sports": 4.5, "yoga": 2.5, "hiit": 6.0,
        "pilates": 3.0, "flexibility": 2.5, "functional": 4.0, "mixed": 4.0,
    },
    "intermediate": {
        "strength": 5.0, "cardio": 7.0, "sports": 6.5, "yoga": 3.5, "hiit": 8.0,
        "pilates": 4.5, "flexibility": 3.0, "functional": 6.0, "mixed": 6.0,
    },
    "advanced": {
        "strength": 6.5, "cardio": 9.0, "sports": 8.5, "yoga": 4.5, "hiit": 10.0,
        "pilates": 6.0, "flexibility": 4.0, "functional": 7.5, "mixed": 7.5,
    },
}


def occupation_multiplier(occupation: str | None) -> float:
    return OCCUPATION_MULTIPLIERS.get(occupation or "", OCCUPATION_MULTIPLIERS[DEFAULT_OCCUPATION])


def activity_level_for_occupation(occupation: str | None) -> str:
    return OCCUPATION_ACTIVITY_LEVEL.get(occupation or "", "sedentary")


def exercise_met(intensity: str | None, workout_types: Iterable[str] = ()) -> float:
    """Mean MET over the listed workout types (``mixed`` when none are known)."""
    table = MET_VALUES.get(intensity or "", MET_VALUES["beginner"])
    values = [table[t] for t in (wt.lower() for wt in workout_types) if t in table]
    if not values:
        return table["mixed"]
    return sum(values) / len(values)


def exercise_calories_per_day(
    weight_kg: float,
    session_minutes: float | None,
    sessions_per_week: float | None,
    intensity: str | None,
    workout_types: Iterable[str] = (),
) -> float:
    """MET × kg × hours × weekly sessions, averaged over seven days."""
    if not session_minutes or not sessions_per_week:
        return 0.0
    met = exercise_met(intensity, workout_types)
    weekly = met * weight_kg * (session_minutes / 60) * sessions_per_week
    return round(weekly / 7, 1)


def calculate_tdee(
    bmr: float,
    occupation: str | None,
    exercise_kcal: float = 0.0,
    climate_multiplier: float = 1.0,
) -> float:
    """Occupation term and exercise term are computed apart, then summed."""
    base = bmr * occupation_multiplier(occupation)
    return round((base + exercise_kcal) * climate_multiplier, 1)


# ---------------------------------------------------------------------------
# Water
# ---------------------------------------------------------------------------

BASE_WATER_ML_PER_KG = 35
ACTIVITY_WATER_BONUS_ML = {
    "sedentary": 0,
    "light": 500,
    "moderate": 1000,
    "active": 1500,
    "extreme": 2000,
}


def water_intake_ml(
    weight_kg: float,
    activity_level: str | None = None,
    climate_bonus_ml_per_kg: float = 0.0,
) -> int:
    """Daily water target, rounded to the nearest 50 ml."""
    raw = (
        weight_kg * (BASE_WATER_ML_PER_KG + climate_bonus_ml_per_kg)
        + ACTIVITY_WATER_BONUS_ML.get(activity_level or "", 0)
    )
    return int(round(raw / 50) * 50)


# ---------------------------------------------------------------------------
# Macros
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MacroSplit:
    """Calorie shares in percent; always sums to 100."""

    protein_pct: float
    carbs_pct: float
    fat_pct: float
    source: str

    def as_dict(self) -> dict[str, float]:
        return {
            "protein_pct": round(self.protein_pct, 2),
            "carbs_pct": round(self.carbs_pct, 2),
            "fat_pct": round(self.fat_pct, 2),
        }


MACRO_SPLITS = {
    "keto": (25.0, 5.0, 70.0),
    "high_protein": (35.0, 35.0, 30.0),
    "low_carb": (30.0, 25.0, 45.0),
    "muscle_gain": (30.0, 40.0, 30.0),
    "default": (25.0, 45.0, 30.0),
}


def normalize_goals(goals: Iterable[str]) -> set[str]:
    """``'Weight-Loss'`` and ``'weight_loss'`` name the same goal."""
    return {g.strip().lower().replace("-", "_").replace(" ", "_") for g in goals}


def select_macro_split(
    *,
    keto: bool = False,
    high_protein: bool = False,
    low_carb: bool = False,
    goals: Iterable[str] = (),
) -> MacroSplit:
    """Readiness flags win in keto > high-protein > low-carb order; otherwise
    the goal picks the default split."""
    if keto:
        source = "keto"
    elif high_protein:
        source = "high_protein"
    elif low_carb:
        source = "low_carb"
    elif "muscle_gain" in normalize_goals(goals):
        source = "muscle_gain"
    else:
        source = "default"
    return MacroSplit(*MACRO_SPLITS[source], source=source)


def apply_protein_factor(split: MacroSplit, factor: float) -> MacroSplit:
    """Boost the protein share; the extra comes out of carbs, then fat."""
    if factor == 1.0:
        return split
    protein = split.protein_pct * factor
    extra = protein - split.protein_pct
    from_carbs = min(split.carbs_pct, extra)
    carbs = split.carbs_pct - from_carbs
    fat = split.fat_pct - (extra - from_carbs)
    return MacroSplit(protein, carbs, fat, source=split.source)


def calculate_macros(daily_calories: int, split: MacroSplit) -> tuple[int, int, int]:
    """Gram targets (protein, carbs, fat).

    Carbs take the rounding remainder so that 4p + 4c + 9f stays within
    2 kcal of ``daily_calories``.
    """
    fat = round(daily_calories * split.fat_pct / 100 / KCAL_PER_G_FAT)
    protein = round(daily_calories * split.protein_pct / 100 / KCAL_PER_G_PROTEIN)
    remainder = daily_calories - protein * KCAL_PER_G_PROTEIN - fat * KCAL_PER_G_FAT
    if remainder < 0:
        fat = math.floor((daily_calories - protein * KCAL_PER_G_PROTEIN) / KCAL_PER_G_FAT)
        remainder = daily_calories - protein * KCAL_PER_G_PROTEIN - fat * KCAL_PER_G_FAT
    carbs = round(remainder / KCAL_PER_G_CARBS)
    return int(protein), int(carbs), int(fat)


def fiber_target_g(daily_calories: float) -> int:
    """14 g per 1000 kcal."""
    return round(daily_calories / 1000 * 14)


# ---------------------------------------------------------------------------
# Body composition
# ---------------------------------------------------------------------------

def waist_hip_ratio(waist_cm: float | None, hip_cm: float | None) -> float | None:
    if not waist_cm or not hip_cm:
        return None
    return round(waist_cm / hip_cm, 2)


def estimate_body_fat(bmi: float, age: float, gender: str | None) -> float:
    """Deurenberg estimate from BMI (used only when body fat is not measured)."""
    sex = {"male": 1.0, "female": 0.0}.get(gender or "", 0.5)
    return round(_clamp(1.2 * bmi + 0.23 * age - 10.8 * sex - 5.4, 3.0, 60.0), 1)


# ---------------------------------------------------------------------------
# Heart rate and VO2max (require a measured resting heart rate)
# ---------------------------------------------------------------------------

HR_ZONES = (
    (1, "Recovery", 0.50, 0.60),
    (2, "Fat Burn", 0.60, 0.70),
    (3, "Aerobic", 0.70, 0.80),
    (4, "Threshold", 0.80, 0.90),
    (5, "Peak", 0.90, 1.00),
)


def max_heart_rate(age: float, gender: str | None = None) -> int:
    """Tanaka (208 − 0.7·age); Gulati (206 − 0.88·age) for women."""
    if gender == "female":
        return round(206 - 0.88 * age)
    return round(208 - 0.7 * age)


def heart_rate_zones(age: float, resting_hr: float, gender: str | None = None) -> list[HeartRateZone]:
    """Karvonen training zones on heart-rate reserve."""
    max_hr = max_heart_rate(age, gender)
    reserve = max_hr - resting_hr
    if reserve <= 0:
        raise ValueError("Resting heart rate must be below maximum heart rate")
    return [
        HeartRateZone(
            zone=zone,
            name=name,
            min_bpm=round(resting_hr + reserve * lo),
            max_bpm=round(resting_hr + reserve * hi),
        )
        for zone, name, lo, hi in HR_ZONES
    ]


ACTIVITY_INDEX = {"sedentary": 0, "light": 2, "moderate": 4, "active": 6, "extreme": 7}

# (constant, activity coef, age coef, resting-HR/10 coef, male offset)
_VO2MAX = {
    "male": (56.363, 1.921, 0.381, 0.754, 10.987),
    "female": (50.513, 1.589, 0.289, 0.552, 0.0),
}

# Lower bounds of fair / good / excellent for ages up to 30; decline 2 per decade after
_VO2MAX_CLASS_BOUNDS = {"male": (35.0, 42.0, 50.0), "female": (30.0, 36.0, 44.0)}


def estimate_vo2max(
    age: float, gender: str | None, resting_hr: float, activity_level: str | None
) -> float:
    """Non-exercise VO2max estimate (ml/kg/min)."""
    const, act, age_coef, rhr_coef, offset = _by_gender(_VO2MAX, gender)
    index = ACTIVITY_INDEX.get(activity_level or "", 0)
    value = const + act * index - age_coef * age - rhr_coef * (resting_hr / 10) + offset
    return round(max(10.0, value), 1)


def classify_vo2max(vo2max: float, age: float, gender: str | None) -> str:
    fair, good, excellent = _by_gender(_VO2MAX_CLASS_BOUNDS, gender)
    decline = max(0.0, (age - 30) / 10) * 2
    if vo2max >= excellent - decline:
        return "excellent"
    if vo2max >= good - decline:
        return "good"
    if vo2max >= fair - decline:
        return "fair"
    return "poor"


# ---------------------------------------------------------------------------
# Scores
# ---------------------------------------------------------------------------

_ACTIVITY_SCORE = {"sedentary": -15, "light": -5, "moderate": 5, "active": 10, "extreme": 15}


def health_score(
    *,
    bmi: float | None,
    activity_level: str | None,
    diet: DietPreferences | None,
    sleep_hours: float | None,
    experience_years: int | None = None,
    sessions_per_week: int | None = None,
) -> int:
    """Overall health score 0-100 from BMI, activity, habits, sleep and training."""
    score = 100

    if bmi is not None:
        if bmi < 18.5 or bmi > 25:
            score -= 10
        if bmi > 30:
            score -= 20
        if 18.5 <= bmi <= 24.9:
            score += 5

    score += _ACTIVITY_SCORE.get(activity_level or "", 0)

    if diet is not None:
        if diet.drinks_enough_water:
            score += 5
        if diet.eats_5_servings_fruits_veggies:
            score += 10
        if diet.limits_refined_sugar:
            score += 5
        if diet.eats_processed_foods:
            score -= 10
        if diet.smokes_tobacco:
            score -= 25
        if diet.drinks_alcohol:
            score -= 5

    if sleep_hours is not None:
        if 7 <= sleep_hours <= 9:
            score += 10
        elif sleep_hours < 6:
            score -= 15

    if experience_years and experience_years > 0:
        score += 5
    if sessions_per_week and sessions_per_week >= 3:
        score += 10

    return int(_clamp(score, 0, 100))


def health_grade(score: int) -> str:
    for threshold, grade in ((90, "A"), (80, "B"), (70, "C"), (60, "D")):
        if score >= threshold:
            return grade
    return "F"


# Positive habits add, negative habits subtract; range [-45, 155]
DIET_HABIT_WEIGHTS = {
    "drinks_enough_water": 20,
    "limits_sugary_drinks": 15,
    "eats_regular_meals": 15,
    "avoids_late_night_eating": 10,
    "controls_portion_sizes": 20,
    "reads_nutrition_labels": 15,
    "eats_5_servings_fruits_veggies": 25,
    "limits_refined_sugar": 15,
    "includes_healthy_fats": 10,
    "takes_supplements": 10,
    "drinks_coffee": 0,
    "eats_processed_foods": -15,
    "drinks_alcohol": -10,
    "smokes_tobacco": -20,
}


def diet_readiness_score(diet: DietPreferences) -> int:
    """Habit-weighted readiness normalised to 0-100."""
    raw = sum(w for habit, w in DIET_HABIT_WEIGHTS.items() if getattr(diet, habit))
    return round((raw + 45) / 200 * 100)


# ---------------------------------------------------------------------------
# Sleep, goals, pregnancy
# ---------------------------------------------------------------------------

def _minutes(hhmm: str) -> int:
    hours, minutes = hhmm.strip().split(":")[:2]
    return int(hours) * 60 + int(minutes)


def sleep_duration_hours(wake_time: str | None, sleep_time: str | None) -> float | None:
    """Hours between bedtime and wake time, wrapping past midnight."""
    if not wake_time or not sleep_time:
        return None
    try:
        minutes = (_minutes(wake_time) - _minutes(sleep_time)) % (24 * 60)
    except ValueError:
        return None
    return round(minutes / 60, 2)


def weekly_rate_kg(current_kg: float, target_kg: float, weeks: float) -> float:
    """Absolute weight change per week needed to hit the target."""
    if weeks <= 0:
        raise ValueError("Timeline must be positive")
    return round(abs(target_kg - current_kg) / weeks, 3)


def daily_energy_delta(weekly_rate: float) -> float:
    """Daily kcal deficit (or surplus) for a weekly weight change."""
    return weekly_rate * KCAL_PER_KG / 7


PREGNANCY_CALORIE_BONUS = {1: 0, 2: 340, 3: 450}
BREASTFEEDING_CALORIE_BONUS = 500


def pregnancy_calorie_bonus(
    pregnant: bool, trimester: int | None, breastfeeding: bool
) -> int:
    """Additive kcal on top of the base target. Breastfeeding takes precedence."""
    if breastfeeding:
        return BREASTFEEDING_CALORIE_BONUS
    if pregnant:
        return PREGNANCY_CALORIE_BONUS.get(trimester or 1, 0)
    return 0
