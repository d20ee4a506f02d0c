"""Boundary adapters between the canonical schema and the two stores.

Inside the core every entity is a canonical snake_case dict (the
``to_dict()`` of its dataclass). Only these functions know the store
shapes:

* local cache: ``{"data": <camelCase dict>, "revision", "syncState", "savedAt"}``
* remote store: flat snake_case record with a few renamed columns plus
  ``user_id``, ``revision`` and ``updated_at``.
"""

from __future__ import annotations

import dataclasses
import re
from datetime import datetime, timezone
from typing import Any

from fitplan.core.audit.logger import hash_payload
from fitplan.domains.health.domain_logic import models

# ---------------------------------------------------------------------------
# Entity naming
# ---------------------------------------------------------------------------

REMOTE_TABLES = {
    "personal_info": "profiles",
    "body_analysis": "body_analysis",
    "diet_preferences": "diet_preferences",
    "workout_preferences": "workout_preferences",
    "computed_metrics": "advanced_review",
}

# Canonical field -> remote column, per entity
REMOTE_RENAMES = {
    "personal_info": {"occupation_type": "occupation"},
    "body_analysis": {"pregnancy_trimester": "trimester"},
    "workout_preferences": {"time_preference": "session_minutes"},
}

_BOOKKEEPING_COLUMNS = ("user_id", "revision", "updated_at")

# Tracker section -> sync entity
SECTION_ENTITIES = {
    "personal_info": "personal_info",
    "body": "body_analysis",
    "diet": "diet_preferences",
    "workout": "workout_preferences",
    "review": "computed_metrics",
}


def remote_table(entity: str) -> str:
    try:
        return REMOTE_TABLES[entity]
    except KeyError:
        raise ValueError(f"Unknown entity: {entity}") from None


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def revision_for(canonical: dict[str, Any]) -> str:
    """Content revision marker: SHA-256 of the canonical JSON."""
    return hash_payload(canonical)


# ---------------------------------------------------------------------------
# Key casing
# ---------------------------------------------------------------------------

def snake_to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def _model_field_names() -> set[str]:
    names: set[str] = set()
    for obj in vars(models).values():
        if isinstance(obj, type) and dataclasses.is_dataclass(obj):
            names.update(f.name for f in dataclasses.fields(obj))
    return names


# Explicit reverse table so names with digits (eats_5_servings_..., vo2max)
# round-trip exactly
_SNAKE_BY_CAMEL = {snake_to_camel(name): name for name in _model_field_names()}


def camel_to_snake(name: str) -> str:
    known = _SNAKE_BY_CAMEL.get(name)
    if known is not None:
        return known
    return re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", name).lower()


def _rekey(value: Any, convert) -> Any:
    if isinstance(value, dict):
        return {convert(k): _rekey(v, convert) for k, v in value.items()}
    if isinstance(value, list):
        return [_rekey(item, convert) for item in value]
    return value


# ---------------------------------------------------------------------------
# Local cache documents
# ---------------------------------------------------------------------------

def to_local_document(
    canonical: dict[str, Any],
    *,
    sync_state: str = "saved_local",
    revision: str | None = None,
    saved_at: str | None = None,
) -> dict[str, Any]:
    return {
        "data": _rekey(canonical, snake_to_camel),
        "revision": revision or revision_for(canonical),
        "syncState": sync_state,
        "savedAt": saved_at or utc_now(),
    }


def from_local_document(document: dict[str, Any]) -> tuple[dict[str, Any], str, str]:
    """Return ``(canonical dict, revision, sync state)``."""
    canonical = _rekey(document.get("data") or {}, camel_to_snake)
    revision = document.get("revision") or revision_for(canonical)
    return canonical, revision, document.get("syncState", "saved_local")


def with_sync_state(document: dict[str, Any], sync_state: str) -> dict[str, Any]:
    return {**document, "syncState": sync_state}


# ---------------------------------------------------------------------------
# Remote records
# ---------------------------------------------------------------------------

def to_remote_record(
    entity: str,
    user_id: str,
    canonical: dict[str, Any],
    *,
    revision: str | None = None,
    updated_at: str | None = None,
) -> dict[str, Any]:
    renames = REMOTE_RENAMES.get(entity, {})
    record = {renames.get(key, key): value for key, value in canonical.items()}
    record["user_id"] = user_id
    record["revision"] = revision or revision_for(canonical)
    record["updated_at"] = updated_at or utc_now()
    return record


def from_remote_record(entity: str, record: dict[str, Any]) -> dict[str, Any]:
    """Canonical dict of a remote record (bookkeeping columns dropped)."""
    reverse = {column: key for key, column in REMOTE_RENAMES.get(entity, {}).items()}
    return {
        reverse.get(column, column): value
        for column, value in record.items()
        if column not in _BOOKKEEPING_COLUMNS
    }


def merge_local_wins(remote: dict[str, Any] | None, local: dict[str, Any]) -> dict[str, Any]:
    """Local fields override; columns only the remote knows are kept."""
    if not remote:
        return dict(local)
    return {**remote, **local}


# ---------------------------------------------------------------------------
# Canonical <-> dataclasses
# ---------------------------------------------------------------------------

def sections_to_entities(
    sections: models.OnboardingSections,
    metrics: models.ComputedMetrics | None = None,
) -> dict[str, dict[str, Any] | None]:
    """Canonical dict per sync entity (None for a missing section)."""
    entities = sections.to_dict()
    entities["computed_metrics"] = metrics.to_dict() if metrics is not None else None
    return entities


def entities_to_sections(
    entities: dict[str, dict[str, Any] | None],
) -> tuple[models.OnboardingSections, models.ComputedMetrics | None]:
    sections = models.OnboardingSections.from_dict(entities)
    metrics = models.ComputedMetrics.from_dict(entities.get("computed_metrics"))
    return sections, metrics
