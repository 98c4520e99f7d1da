"""Health check tool for Ellipsa Memory."""

import json
import time

from fastmcp import FastMCP

from ..logging import get_logger
from ..services.factory import ServiceHandle
from ..services.health import check_health
from ..utils.correlation import generate_correlation_id, set_correlation_id
from ..version import __version__

__all__ = ["register_health_tools"]


def register_health_tools(mcp: FastMCP, handle: ServiceHandle) -> None:
    """Register health check tools with the MCP server."""
    logger = get_logger("tools.health")

    async def health_check() -> str:
        """Check the relational, graph and vector backends.

        Returns ``ok``, ``degraded`` (graph or vector unreachable, writes still
        succeed) or ``error`` (relational store unreachable).
        """
        correlation_id = generate_correlation_id("health")
        set_correlation_id(correlation_id)

        start_time = time.perf_counter()
        logger.info("Health check requested", operation="health_check", version=__version__)

        report = await check_health(await handle.get())

        logger.info(
            "Health check completed",
            operation="health_check",
            status=report["status"],
            total_time_ms=round((time.perf_counter() - start_time) * 1000, 2),
            checks_passed=sum(1 for status in report["checks"].values() if status == "ok"),
        )
        return json.dumps({**report, "correlation_id": correlation_id}, indent=2, default=str)

    mcp.tool(health_check)
    logger.debug("Health check tools registered")
