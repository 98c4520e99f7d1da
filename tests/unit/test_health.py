"""Unit tests for the dependency health checks."""

from unittest.mock import AsyncMock

from ellipsa_memory.db.graph import GraphStore
from ellipsa_memory.db.vector import VectorIndex
from ellipsa_memory.services.health import check_health
from ellipsa_memory.version import __version__


async def test_relational_only_is_ok(services):
    report = await check_health(services)

    assert report["status"] == "ok"
    assert report["version"] == __version__
    assert report["checks"] == {"relational": "ok"}
    assert report["pipeline"] == {"running": False, "pending": 0}
    assert isinstance(report["timestamp"], str)


async def test_all_backends_ok(services):
    services.graph = AsyncMock(spec=GraphStore)
    services.graph.is_connected.return_value = True
    services.vectors = AsyncMock(spec=VectorIndex)
    services.vectors.list_collections.return_value = ["entities", "events"]

    report = await check_health(services)

    assert report["status"] == "ok"
    assert report["checks"] == {"relational": "ok", "graph": "ok", "vector": "ok"}


async def test_secondary_failure_degrades(services):
    services.graph = AsyncMock(spec=GraphStore)
    services.graph.is_connected.return_value = False
    services.vectors = AsyncMock(spec=VectorIndex)
    services.vectors.list_collections.side_effect = ConnectionError("qdrant down")

    report = await check_health(services)

    assert report["status"] == "degraded"
    assert report["checks"]["relational"] == "ok"
    assert report["checks"]["graph"].startswith("error")
    assert report["checks"]["vector"] == "error: qdrant down"


async def test_relational_failure_is_error(services, monkeypatch):
    monkeypatch.setattr(services.database, "ping", AsyncMock(side_effect=RuntimeError("locked")))

    report = await check_health(services)

    assert report["status"] == "error"
    assert report["checks"]["relational"] == "error: locked"


async def test_pipeline_state_is_reported(services):
    await services.pipeline.start()

    report = await check_health(services)

    assert report["pipeline"]["running"] is True
