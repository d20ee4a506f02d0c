"""FitPlan onboarding MCP server: application factory.

This module provides:
- create_app() for testability (integration tests create fresh server instances)
- Module-level `mcp` variable for FastMCP discovery
"""

from __future__ import annotations

import logging

from fastmcp import FastMCP

from fitplan.core.audit.logger import AuditLogger
from fitplan.core.config.settings import get_settings
from fitplan.core.storage.database import CacheDatabase, DatabaseError
from fitplan.core.storage.encryption import EncryptionError, FieldEncryptor
from fitplan.core.storage.repository import CacheRepository
from fitplan.domains.health.connectors import RemoteStore
from fitplan.domains.health.connectors.local_cache import SqliteLocalCache
from fitplan.domains.health.connectors.remote_store import InMemoryRemoteStore
from fitplan.domains.health.domain_logic.calculation_engine import HealthCalculationEngine
from fitplan.domains.health.domain_logic.validation_engine import ValidationEngine
from fitplan.domains.health.service import OnboardingService
from fitplan.domains.health.sync.coordinator import SyncCoordinator
from fitplan.domains.health.tools.onboarding_tools import register_onboarding_tools

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def create_app(
    *,
    service_override: OnboardingService | None = None,
    remote_store_override: RemoteStore | None = None,
) -> FastMCP:
    """Create and configure the FitPlan onboarding MCP server.

    This is the main application factory. It:
    1. Creates the FastMCP server instance
    2. Builds the calculation and validation engines
    3. Initializes the encrypted local cache and audit trail (needs ENCRYPTION_KEY)
    4. Wires the sync coordinator and onboarding service
    5. Registers all tools
    """
    settings = get_settings()

    # --- Server instance ---
    server = FastMCP(
        "FitPlan Onboarding",
        instructions=(
            "FitPlan onboarding server. Computes personalised health metrics "
            "(BMR, TDEE, BMI, macros, heart-rate zones), checks the resulting "
            "plan against safety rules, and syncs onboarding data to storage."
        ),
    )

    engine = HealthCalculationEngine()
    validator = ValidationEngine()

    # --- Initialize encrypted local cache + audit trail ---
    database: CacheDatabase | None = None
    audit_logger: AuditLogger | None = None
    service: OnboardingService | None = service_override
    if service is None and settings.encryption_key:
        try:
            encryptor = FieldEncryptor(settings.encryption_key, settings.retired_keys)
            database = CacheDatabase(settings.db_path)
            database.initialize()
        except (EncryptionError, DatabaseError) as exc:
            logger.error("Failed to initialize local cache: %s", exc)
            logger.warning("Continuing without persistence; finalize and resync are disabled")
            database = None
        else:
            audit_logger = AuditLogger(database)
            local_cache = SqliteLocalCache(CacheRepository(database, encryptor))
            if remote_store_override is not None:
                remote_store = remote_store_override
            else:
                remote_store = InMemoryRemoteStore()
                logger.info("Using in-process remote store")
            coordinator = SyncCoordinator(
                local_cache,
                remote_store,
                audit_logger=audit_logger,
                timeout_seconds=settings.sync_timeout_seconds,
                concurrent_best_effort=settings.sync_concurrent_best_effort,
            )
            service = OnboardingService(
                engine,
                validator,
                coordinator,
                local_cache,
                debounce_seconds=settings.autosave_debounce_seconds,
            )
            logger.info(
                "Local cache initialized: %s (schema v%d)",
                settings.db_path,
                database.get_schema_version(),
            )
    elif service is None:
        logger.info(
            "No ENCRYPTION_KEY configured, running without persistence. "
            "Set ENCRYPTION_KEY to enable finalize and resync."
        )

    # --- Register tools ---
    @server.tool
    def health_check() -> dict:
        """Check server health and return basic status information."""
        status = {
            "status": "ok",
            "server": "FitPlan Onboarding",
            "version": VERSION,
            "storage_enabled": service is not None,
        }
        if database is not None:
            status["schema_version"] = database.get_schema_version()
        return status

    register_onboarding_tools(server, engine, validator, service, audit_logger)
    logger.info("Onboarding tools registered (persistence %s)", "on" if service else "off")

    return server


# Module-level instance for FastMCP discovery.
# Lazy: only created when this module is loaded directly (not when tests import create_app).
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
