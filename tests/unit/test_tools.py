"""Unit tests for the MCP tools."""

import json

import pytest
from fastmcp import FastMCP

from ellipsa_memory.server import create_server
from ellipsa_memory.services.factory import ServiceHandle
from ellipsa_memory.tools import (
    register_get_entity_tools,
    register_get_relationships_tools,
    register_health_tools,
    register_remember_event_tools,
    register_search_memories_tools,
    register_update_task_status_tools,
)
from ellipsa_memory.version import __version__


class MockMCP:
    """Mock MCP server for testing tool registration."""

    def __init__(self):
        self.tools = {}

    def tool(self, func):
        self.tools[func.__name__] = func
        return func


@pytest.fixture
def tools(services):
    mcp = MockMCP()
    handle = ServiceHandle(services=services)
    for register in (
        register_health_tools,
        register_remember_event_tools,
        register_search_memories_tools,
        register_get_entity_tools,
        register_get_relationships_tools,
        register_update_task_status_tools,
    ):
        register(mcp, handle)
    return mcp.tools


def test_all_tools_registered(tools):
    assert set(tools) == {
        "health_check",
        "remember_event",
        "search_memories",
        "get_entity",
        "get_relationships",
        "update_task_status",
    }


def test_create_server():
    assert isinstance(create_server(ServiceHandle()), FastMCP)


async def test_health_check(tools):
    data = json.loads(await tools["health_check"]())

    assert data["status"] == "ok"
    assert data["version"] == __version__
    assert data["correlation_id"].startswith("health_")


async def test_remember_then_search(tools):
    stored = json.loads(
        await tools["remember_event"]("Budget review with finance", event_type="meeting")
    )
    assert stored["success"] is True
    assert stored["degraded"] is False

    found = json.loads(await tools["search_memories"]("budget review", limit=3))
    assert found["success"] is True
    assert found["results"][0]["id"] == stored["event"]["id"]


async def test_get_entity_and_relationships(tools, services):
    alice = await services.entities.create({"name": "Alice", "type": "person"})
    acme = await services.entities.create({"name": "Acme", "type": "organization"})
    await services.entities.create_relationship(
        {"source_id": alice.id, "target_id": acme.id, "type": "WORKS_AT"}
    )

    entity = json.loads(await tools["get_entity"](alice.id))
    assert entity["success"] is True
    assert entity["entity"]["name"] == "Alice"

    relationships = json.loads(await tools["get_relationships"](acme.id))
    assert relationships["total_relationships"] == 1
    assert relationships["incoming_relationships"][0]["source_id"] == alice.id
    assert relationships["outgoing_relationships"] == []


async def test_get_missing_entity(tools):
    data = json.loads(await tools["get_entity"]("ghost"))

    assert data["success"] is False
    assert data["error"]["type"] == "not_found"
    assert data["error_type"] == "NotFoundError"


async def test_update_task_status(tools, services):
    task = await services.tasks.create({"title": "Renew passport"})

    done = json.loads(await tools["update_task_status"](task.id, "completed"))
    assert done["task"]["status"] == "completed"

    invalid = json.loads(await tools["update_task_status"](task.id, "whenever"))
    assert invalid["success"] is False
    assert invalid["error"]["type"] == "validation_error"
