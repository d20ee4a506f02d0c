"""MCP tools exposing the onboarding core: evaluate, finalize, resync.

Section payloads use the canonical snake_case schema, e.g.::

    {"personal_info": {...}, "body_analysis": {...},
     "diet_preferences": {...}, "workout_preferences": {...}}

Every call is audit-logged with a hash of its input; no health values
ever reach the audit trail or the log.
"""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

from fitplan.domains.health.domain_logic.models import OnboardingSections
from fitplan.domains.health.errors import InputError, SafetyBlocked, StoreError

if TYPE_CHECKING:
    from fitplan.core.audit.logger import AuditLogger
    from fitplan.domains.health.domain_logic.calculation_engine import HealthCalculationEngine
    from fitplan.domains.health.domain_logic.validation_engine import ValidationEngine
    from fitplan.domains.health.service import OnboardingService

logger = logging.getLogger(__name__)

_NO_STORAGE = (
    "Persistence is disabled: set ENCRYPTION_KEY to enable the local cache "
    "before finalizing or syncing onboarding data."
)


def _input_error(exc: InputError) -> str:
    return json.dumps({"status": "input_error", "message": str(exc), "missing": exc.missing})


def register_onboarding_tools(
    mcp: FastMCP,
    engine: HealthCalculationEngine,
    validator: ValidationEngine,
    service: OnboardingService | None = None,
    audit_logger: AuditLogger | None = None,
) -> None:
    """Register onboarding tools on the MCP server.

    ``evaluate_onboarding`` always works. The persistence tools answer with
    an error payload when ``service`` is None (no encryption key).
    """

    def audit(
        tool_name: str,
        tool_input: Any,
        start_time: float,
        *,
        user_id: str | None = None,
        status: str = "success",
        error_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        if audit_logger is None:
            return
        audit_logger.log_tool_call(
            tool_name,
            tool_input,
            user_id=user_id,
            duration_ms=(time.monotonic() - start_time) * 1000,
            status=status,
            error_type=error_type,
            metadata=metadata,
        )

    @mcp.tool
    async def evaluate_onboarding(ctx: Context, sections: dict) -> str:
        """Dry-run the health calculation and safety checks. Nothing is stored.

        Args:
            sections: Onboarding sections keyed personal_info, body_analysis,
                diet_preferences, workout_preferences.
        """
        start_time = time.monotonic()
        parsed = OnboardingSections.from_dict(sections)
        try:
            metrics = engine.compute(parsed)
        except InputError as exc:
            audit("evaluate_onboarding", sections, start_time,
                  status="failure", error_type="InputError")
            return _input_error(exc)

        verdict = validator.evaluate(parsed, metrics)
        metrics.validation = verdict
        audit("evaluate_onboarding", sections, start_time, metadata={"verdict": verdict.status})
        return json.dumps({
            "status": verdict.status,
            "verdict": verdict.to_dict(),
            "metrics": metrics.to_dict(),
        })

    @mcp.tool
    async def finalize_onboarding(ctx: Context, user_id: str, sections: dict) -> str:
        """Compute, validate and persist onboarding data (local cache, then remote).

        Blocked plans are never persisted. A ``partial`` result lists the
        sections to retry with ``resync_onboarding``.

        Args:
            user_id: The user whose onboarding is being completed.
            sections: Onboarding sections keyed personal_info, body_analysis,
                diet_preferences, workout_preferences.
        """
        start_time = time.monotonic()
        if service is None:
            return json.dumps({"status": "error", "message": _NO_STORAGE})

        try:
            metrics, report = await service.finalize(user_id, OnboardingSections.from_dict(sections))
        except InputError as exc:
            audit("finalize_onboarding", sections, start_time, user_id=user_id,
                  status="failure", error_type="InputError")
            return _input_error(exc)
        except SafetyBlocked as exc:
            audit("finalize_onboarding", sections, start_time, user_id=user_id,
                  status="failure", error_type="SafetyBlocked")
            return json.dumps({
                "status": "blocked",
                "message": str(exc),
                "verdict": exc.verdict.to_dict(),
            })

        audit(
            "finalize_onboarding", sections, start_time, user_id=user_id,
            status="success" if report.error is None else "failure",
            error_type=type(report.error).__name__ if report.error else None,
            metadata={"sync_status": report.status},
        )
        return json.dumps({
            "status": report.status,
            "sync": report.to_dict(),
            "metrics": metrics.to_dict(),
        })

    @mcp.tool
    async def resync_onboarding(
        ctx: Context,
        user_id: str,
        entities: list[str] | None = None,
    ) -> str:
        """Retry syncing cached sections to the remote store.

        Args:
            user_id: The user to resync.
            entities: Entities to resend (personal_info, body_analysis,
                diet_preferences, workout_preferences, computed_metrics).
                Omit to resend everything not yet saved remotely.
        """
        start_time = time.monotonic()
        if service is None:
            return json.dumps({"status": "error", "message": _NO_STORAGE})
        try:
            report = await service.resync(user_id, entities)
        except ValueError as exc:
            audit("resync_onboarding", {"entities": entities}, start_time, user_id=user_id,
                  status="failure", error_type="ValueError")
            return json.dumps({"status": "error", "message": str(exc)})

        audit(
            "resync_onboarding", {"entities": entities}, start_time, user_id=user_id,
            status="success" if report.error is None else "failure",
            error_type=type(report.error).__name__ if report.error else None,
            metadata={"sync_status": report.status},
        )
        return json.dumps({"status": report.status, "sync": report.to_dict()})

    @mcp.tool
    async def get_sync_status(ctx: Context, user_id: str) -> str:
        """List cached onboarding sections that have not reached the remote store.

        Args:
            user_id: The user to inspect.
        """
        if service is None:
            return json.dumps({"status": "error", "message": _NO_STORAGE})
        pending = service.pending_entities(user_id)
        return json.dumps({
            "status": "pending" if pending else "synced",
            "pending_entities": pending,
        })

    @mcp.tool
    async def delete_onboarding_data(
        ctx: Context,
        user_id: str,
        confirm: str = "",
    ) -> str:
        """Permanently delete a user's onboarding data, locally and remotely.

        Args:
            user_id: The user whose data is deleted.
            confirm: Must be exactly 'DELETE' to proceed. Safety gate.
        """
        if confirm != "DELETE":
            return json.dumps({
                "status": "cancelled",
                "message": (
                    "To delete onboarding data, call this tool with "
                    "confirm='DELETE'. This action cannot be undone."
                ),
            })
        if service is None:
            return json.dumps({"status": "error", "message": _NO_STORAGE})

        start_time = time.monotonic()
        try:
            deleted = await service.delete_user_data(user_id)
        except StoreError as exc:
            audit("delete_onboarding_data", {"user_id": user_id}, start_time, user_id=user_id,
                  status="failure", error_type=type(exc).__name__)
            logger.error("Remote delete failed for user %s: %s", user_id, exc)
            return json.dumps({
                "status": "error",
                "message": (
                    f"Remote delete failed ({exc}). Local data was removed; "
                    "call this tool again to finish deleting the remote copy."
                ),
            })
        elapsed_ms = (time.monotonic() - start_time) * 1000
        if audit_logger is not None:
            audit_logger.log_data_delete(
                user_id=user_id,
                tool_name="delete_onboarding_data",
                count=len(deleted["local"]),
                reason="user_request",
            )

        logger.warning(
            "Onboarding data deleted for user %s (%d local, %d remote)",
            user_id,
            len(deleted["local"]),
            len(deleted["remote"]),
        )
        return json.dumps({
            "status": "deleted",
            "local_deleted": deleted["local"],
            "remote_deleted": deleted["remote"],
            "duration_ms": round(elapsed_ms, 1),
        })
