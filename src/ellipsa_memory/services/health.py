"""Dependency health checks shared by the HTTP and MCP surfaces."""

import time
from collections.abc import Awaitable, Callable
from typing import Any

from ..logging import get_logger
from ..utils.time import current_utc
from ..version import __version__
from .factory import MemoryServices

logger = get_logger("services.health")


async def _timed_check(name: str, check: Callable[[], Awaitable[Any]]) -> tuple[str, float]:
    start = time.perf_counter()
    try:
        result = await check()
        status = "ok" if result is not False else "error: check returned false"
    except Exception as e:
        status = f"error: {e}"
        logger.error(
            "Health check failed", service=name, error=str(e), error_type=type(e).__name__
        )
    return status, round((time.perf_counter() - start) * 1000, 2)


async def check_health(services: MemoryServices) -> dict[str, Any]:
    """Probe every backend.

    Only the relational store can make the status ``error``; graph and vector
    problems leave it ``degraded`` because writes still succeed without them.
    """
    checks: dict[str, str] = {}
    timings: dict[str, float] = {}

    checks["relational"], timings["relational"] = await _timed_check(
        "relational", services.database.ping
    )
    if services.graph is not None:
        checks["graph"], timings["graph"] = await _timed_check(
            "graph", services.graph.is_connected
        )
    if services.vectors is not None:
        checks["vector"], timings["vector"] = await _timed_check(
            "vector", services.vectors.list_collections
        )

    if checks["relational"] != "ok":
        status = "error"
    elif any(value != "ok" for value in checks.values()):
        status = "degraded"
    else:
        status = "ok"

    logger.info("Health check completed", status=status, **{f"{k}_time_ms": v for k, v in timings.items()})
    return {
        "status": status,
        "version": __version__,
        "checks": checks,
        "pipeline": {
            "running": services.pipeline.running,
            "pending": services.pipeline.pending,
        },
        "timestamp": current_utc(),
    }
