"""Formula-selection context from coarse user attributes.

Maps country/region and diet type onto the context the Formula Library
needs: climate class (TDEE and water modifiers), ethnicity class (BMI
cutoff population) and the protein bioavailability factor. Tables are
loaded once from ``data/regions.yaml``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

_REGIONS_FILE = Path(__file__).resolve().parent.parent / "data" / "regions.yaml"

DEFAULT_CLIMATE = "temperate"
DEFAULT_ETHNICITY = "general"
DEFAULT_BMI_POPULATION = "standard"

# Protein target boost compensating plant-protein bioavailability
DIET_PROTEIN_FACTORS = {
    "vegetarian": 1.15,
    "vegan": 1.25,
}


@dataclass(frozen=True)
class FormulaContext:
    """Everything the formula caller needs besides the raw numbers."""

    climate: str = DEFAULT_CLIMATE
    climate_source: str = "default"       # 'state_table' | 'country_table' | 'default'
    climate_confidence: int = 50
    tdee_multiplier: float = 1.0
    water_bonus_ml_per_kg: float = 0.0
    ethnicity: str = DEFAULT_ETHNICITY
    ethnicity_confidence: int = 40
    bmi_population: str = DEFAULT_BMI_POPULATION
    protein_factor: float = 1.0


@lru_cache(maxsize=1)
def load_region_tables(path: str = str(_REGIONS_FILE)) -> dict[str, Any]:
    """Parse the region tables YAML (cached)."""
    with open(path, encoding="utf-8") as f:
        data: dict[str, Any] = yaml.safe_load(f)
    logger.debug("Loaded region tables from %s", path)
    return data


def normalize_country(country: str | None) -> str:
    """Return an upper-case ISO-2 code for a code or common English name."""
    if not country:
        return ""
    value = country.strip()
    if len(value) == 2:
        return value.upper()
    aliases = load_region_tables()["country_aliases"]
    return aliases.get(value.lower(), value.upper())


def detect_climate(country: str | None, state: str | None = None) -> tuple[str, str, int]:
    """Classify climate from country and optional state.

    Returns:
        (climate class, source, confidence 0-100)
    """
    tables = load_region_tables()["climate"]
    code = normalize_country(country)
    state_code = (state or "").strip().upper()

    state_table = tables["states"].get(code)
    if state_table and state_code:
        for climate, states in state_table.items():
            if state_code in states:
                return climate, "state_table", 90

    for climate, countries in tables["countries"].items():
        if code in countries:
            return climate, "country_table", 85

    return DEFAULT_CLIMATE, "default", 50


def detect_ethnicity(country: str | None) -> tuple[str, int]:
    """Infer the ethnicity class used for BMI cutoffs.

    Returns:
        (ethnicity class, confidence 0-100). Unknown countries map to
        ``general``; high-diversity countries map to ``mixed``.
    """
    tables = load_region_tables()["ethnicity"]
    code = normalize_country(country)
    if code:
        for ethnicity, countries in tables["countries"].items():
            if code in countries:
                return ethnicity, 50 if ethnicity == "mixed" else 80
    return DEFAULT_ETHNICITY, 40


def bmi_population_for(ethnicity: str) -> str:
    """BMI cutoff population (``standard``, ``asian``, ``african``)."""
    mapping = load_region_tables()["ethnicity"]["bmi_population"]
    return mapping.get(ethnicity, DEFAULT_BMI_POPULATION)


def protein_factor_for(diet_type: str | None) -> float:
    return DIET_PROTEIN_FACTORS.get((diet_type or "").lower(), 1.0)


def detect_context(
    country: str | None,
    state: str | None = None,
    diet_type: str | None = None,
) -> FormulaContext:
    """Build the full formula context for one user."""
    climate, source, climate_confidence = detect_climate(country, state)
    modifiers = load_region_tables()["climate"]["classes"][climate]
    ethnicity, ethnicity_confidence = detect_ethnicity(country)

    return FormulaContext(
        climate=climate,
        climate_source=source,
        climate_confidence=climate_confidence,
        tdee_multiplier=float(modifiers["tdee_multiplier"]),
        water_bonus_ml_per_kg=float(modifiers["water_bonus_ml_per_kg"]),
        ethnicity=ethnicity,
        ethnicity_confidence=ethnicity_confidence,
        bmi_population=bmi_population_for(ethnicity),
        protein_factor=protein_factor_for(diet_type),
    )
