"""FitPlan server entry point: ``python -m fitplan.core.server.main``."""

from __future__ import annotations

import logging
from ipaddress import ip_address

from fitplan.core.config.settings import get_settings
from fitplan.core.server.app import create_app


def _is_loopback_host(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def run() -> None:
    """Start the FitPlan MCP server with Streamable HTTP transport."""
    settings = get_settings()
    logging.basicConfig(level=getattr(logging, settings.fitplan_log_level.upper(), logging.INFO))

    logger = logging.getLogger(__name__)
    if not settings.fitplan_allow_insecure_bind and not _is_loopback_host(settings.fitplan_host):
        raise RuntimeError(
            "Refusing to bind the onboarding server to a non-loopback host without an "
            "auth layer. Set FITPLAN_ALLOW_INSECURE_BIND=true to override (unsafe)."
        )
    logger.info(
        "Starting FitPlan onboarding server on %s:%d",
        settings.fitplan_host,
        settings.fitplan_port,
    )

    mcp = create_app()
    mcp.run(
        transport="streamable-http",
        host=settings.fitplan_host,
        port=settings.fitplan_port,
    )


if __name__ == "__main__":
    run()
