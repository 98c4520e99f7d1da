"""Unit tests for the graph and vector backend wrappers with their drivers mocked."""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from ellipsa_memory.db.graph import GraphStore, _graph_safe
from ellipsa_memory.db.vector import VectorIndex


class TestGraphStore:
    async def test_run_requires_connection(self):
        store = GraphStore("bolt://localhost:7687")

        with pytest.raises(ConnectionError):
            await store.run("RETURN 1")
        assert await store.is_connected() is False

    async def test_upsert_node_merges_by_label(self):
        store = GraphStore("bolt://localhost:7687")
        store.run = AsyncMock(return_value=[])

        await store.upsert_node("entity", "e-1", {"name": "Alice", "description": None})

        query, params = store.run.await_args.args
        assert "MERGE (n:Entity {id: $id})" in query
        assert params == {"id": "e-1", "properties": {"name": "Alice"}}

    async def test_merge_relationship_sets_weight(self):
        store = GraphStore("bolt://localhost:7687")
        store.run = AsyncMock(return_value=[])

        await store.merge_relationship(
            "event", "ev-1", "entity", "e-1", "MENTIONS", relationship_id="r-1", weight=3
        )

        query, params = store.run.await_args.args
        assert "MERGE (s:Event {id: $source_id})" in query
        assert "[r:MENTIONS]" in query
        assert params["weight"] == 3

    async def test_rejects_unsafe_identifiers(self):
        store = GraphStore("bolt://localhost:7687")
        store.run = AsyncMock(return_value=[])

        with pytest.raises(ValueError):
            await store.merge_relationship(
                "entity", "a", "entity", "b", "KNOWS]->() DETACH DELETE", relationship_id="r"
            )
        with pytest.raises(ValueError):
            await store.upsert_node("person", "a", {})

    def test_graph_safe_flattens_documents(self):
        safe = _graph_safe({"n": 1, "tags": ["a", "b"], "nested": {"k": "v"}, "skip": None})

        assert safe == {"n": 1, "tags": ["a", "b"], "nested": "{'k': 'v'}"}


class TestVectorIndex:
    @pytest.fixture
    def index(self):
        index = VectorIndex("http://localhost:6333", dimensions=3)
        index.client = AsyncMock()
        index.client.collection_exists.return_value = True
        return index

    async def test_collection_created_once(self, index):
        index.client.collection_exists.return_value = False

        await index.ensure_collection("entities")
        await index.ensure_collection("entities")

        index.client.create_collection.assert_awaited_once()

    async def test_query_maps_points_and_filters(self, index):
        index.client.query_points.return_value = SimpleNamespace(
            points=[SimpleNamespace(id="e-1", score=0.91, payload={"type": "person"})]
        )

        matches = await index.query("entities", [0.1, 0.2, 0.3], 5, {"type": "person"})

        assert [(m.id, m.score) for m in matches] == [("e-1", 0.91)]
        kwargs = index.client.query_points.await_args.kwargs
        assert kwargs["limit"] == 5
        assert kwargs["query_filter"].must[0].key == "type"

    async def test_upsert_and_delete(self, index):
        await index.upsert("events", "ev-1", [1.0, 0.0, 0.0], {"title": "Standup"})
        await index.delete("events", "ev-1")

        point = index.client.upsert.await_args.kwargs["points"][0]
        assert point.id == "ev-1"
        index.client.delete.assert_awaited_once()
