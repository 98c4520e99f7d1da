"""Unit tests for the entity store, its relationships and duplicate handling."""

from unittest.mock import AsyncMock

import pytest

from ellipsa_memory.db.vector import VectorIndex, VectorMatch
from ellipsa_memory.errors import NotFoundError, ValidationError
from ellipsa_memory.schemas.records import EntityType, RelationshipType
from ellipsa_memory.stores.entities import EntityStore


async def make(store, name, entity_type="person", **extra):
    return await store.create({"name": name, "type": entity_type, **extra})


class TestCreate:
    async def test_create_writes_all_backends(self, entity_store, graph):
        entity = await make(entity_store, "Alice Johnson", description="Product lead")

        assert entity.id
        assert entity.type == EntityType.PERSON
        assert len(entity.embedding) == entity_store.embeddings.dimensions
        assert not entity_store.embeddings.is_placeholder(entity.embedding)
        graph.upsert_node.assert_awaited_once()
        assert graph.upsert_node.await_args.args[:2] == ("entity", entity.id)

    async def test_validation_reports_every_field(self, entity_store):
        with pytest.raises(ValidationError) as exc_info:
            await entity_store.create({"name": "   ", "type": "spaceship", "colour": "red"})

        fields = {issue.field for issue in exc_info.value.issues}
        assert {"name", "type", "colour"} <= fields

    async def test_placeholder_embedding_when_provider_fails(self, entity_store, embeddings):
        embeddings.fail = True
        entity = await make(entity_store, "Bob")

        assert entity.embedding == [0.0] * embeddings.dimensions

        embeddings.fail = False
        updated = await entity_store.update(entity.id, {"metadata": {"team": "infra"}})

        assert not embeddings.is_placeholder(updated.embedding)

    async def test_secondary_index_failures_do_not_fail_writes(self, database, embeddings, graph):
        graph.upsert_node.side_effect = RuntimeError("graph down")
        vectors = AsyncMock(spec=VectorIndex)
        vectors.upsert.side_effect = RuntimeError("qdrant down")
        store = EntityStore(database, embeddings, graph, vectors, collection="entities")
        vectors.query.side_effect = RuntimeError("qdrant down")

        entity = await make(store, "Carol")

        assert (await store.get(entity.id)).name == "Carol"
        vectors.upsert.assert_awaited_once()


class TestReadsAndUpdates:
    async def test_soft_delete_hides_record(self, entity_store):
        entity = await make(entity_store, "Dana")

        await entity_store.delete(entity.id)

        assert await entity_store.find_by_id(entity.id) is None
        assert (await entity_store.find_by_id(entity.id, include_deleted=True)).deleted_at
        with pytest.raises(NotFoundError):
            await entity_store.get(entity.id)
        assert (await entity_store.find_all()).pagination.total_items == 0
        assert (await entity_store.find_all(include_deleted=True)).pagination.total_items == 1

    async def test_soft_delete_drops_vector_point_and_restore_reindexes(
        self, database, embeddings, graph
    ):
        vectors = AsyncMock(spec=VectorIndex)
        vectors.query.return_value = []
        store = EntityStore(database, embeddings, graph, vectors, collection="entities")
        entity = await make(store, "Eve")

        await store.delete(entity.id)
        vectors.delete.assert_awaited_once_with("entities", entity.id)

        restored = await store.restore(entity.id)
        assert restored.deleted_at is None
        assert vectors.upsert.await_count == 2
        assert vectors.upsert.await_args.args[:2] == ("entities", entity.id)

        restored = await entity_store.restore(entity.id)
        assert restored.deleted_at is None

    async def test_delete_missing_raises(self, entity_store):
        with pytest.raises(NotFoundError):
            await entity_store.delete("missing")

    async def test_update_reembeds_only_when_text_changes(self, entity_store, embeddings):
        entity = await make(entity_store, "Erin", metadata={"team": "design"})
        encoded = len(embeddings.encoded)

        updated = await entity_store.update(entity.id, {"metadata": {"city": "Oslo"}})
        assert len(embeddings.encoded) == encoded
        assert updated.metadata == {"team": "design", "city": "Oslo"}
        assert updated.embedding == entity.embedding

        renamed = await entity_store.update(entity.id, {"description": "Visual designer"})
        assert len(embeddings.encoded) == encoded + 1
        assert renamed.embedding != entity.embedding

    async def test_update_rejects_null_for_required_field(self, entity_store):
        entity = await make(entity_store, "Finn")

        with pytest.raises(ValidationError):
            await entity_store.update(entity.id, {"name": None})

    async def test_find_all_pages_and_sorts(self, entity_store):
        for name in ["Gina", "Hugo", "Ivan"]:
            await make(entity_store, name)

        page = await entity_store.find_all(page=1, page_size=2, sort_by="name", sort_order="asc")

        assert [e.name for e in page.data] == ["Gina", "Hugo"]
        assert page.pagination.total_items == 3
        assert page.pagination.total_pages == 2
        assert page.pagination.has_next_page

    async def test_find_all_rejects_unknown_sort_and_filter(self, entity_store):
        with pytest.raises(ValidationError):
            await entity_store.find_all(sort_by="embedding")
        with pytest.raises(ValidationError):
            await entity_store.find_all({"embedding": []})

    async def test_find_by_name_is_case_insensitive(self, entity_store):
        entity = await make(entity_store, "Acme Corp", "organization")

        assert (await entity_store.find_by_name("acme corp")).id == entity.id
        assert await entity_store.find_by_name("acme corp", EntityType.PERSON) is None


class TestDuplicates:
    async def test_duplicates_are_reported_not_blocked(self, entity_store):
        first = await make(entity_store, "Alice Johnson")

        creation = await entity_store.create_checked({"name": "Alice Johnson", "type": "person"})

        assert creation.entity.id != first.id
        assert [d.entity.id for d in creation.duplicates] == [first.id]
        assert creation.duplicates[0].similarity == pytest.approx(1.0)

    async def test_duplicates_only_within_type(self, entity_store):
        await make(entity_store, "Mercury", "concept")

        creation = await entity_store.create_checked({"name": "Mercury", "type": "location"})

        assert creation.duplicates == []

    async def test_find_similar_uses_vector_index(self, database, embeddings, graph):
        vectors = AsyncMock(spec=VectorIndex)
        store = EntityStore(database, embeddings, graph, vectors, collection="entities")
        vectors.query.return_value = []
        entity = await make(store, "Jonas")
        vectors.query.return_value = [VectorMatch(id=entity.id, score=0.93)]

        matches = await store.find_similar("Jonas", threshold=0.5)

        assert [(m.entity.id, m.similarity) for m in matches] == [(entity.id, 0.93)]
        assert vectors.query.await_args.args[0] == "entities"

    async def test_find_similar_falls_back_to_relational_scan(self, database, embeddings, graph):
        vectors = AsyncMock(spec=VectorIndex)
        vectors.query.side_effect = RuntimeError("qdrant down")
        store = EntityStore(database, embeddings, graph, vectors, collection="entities")
        entity = await make(store, "Katya Ivanova")
        await make(store, "Unrelated Person")

        matches = await store.find_similar("Katya Ivanova", threshold=0.9)

        assert [m.entity.id for m in matches] == [entity.id]

    async def test_stale_vector_points_do_not_starve_matches(self, database, embeddings, graph):
        vectors = AsyncMock(spec=VectorIndex)
        vectors.query.return_value = []
        store = EntityStore(database, embeddings, graph, vectors, collection="entities")
        stale = [await make(store, f"Old Jonas {i}") for i in range(4)]
        for entity in stale:
            await store.delete(entity.id)
        live = [await make(store, f"Jonas {i}") for i in range(2)]
        ranked = [VectorMatch(id=e.id, score=0.99) for e in stale]
        ranked += [VectorMatch(id=e.id, score=0.9) for e in live]
        vectors.query.reset_mock()
        vectors.query.side_effect = lambda collection, embedding, limit, filters=None: ranked[:limit]

        matches = await store.find_similar("Jonas", limit=2, threshold=0.5)

        assert {m.entity.id for m in matches} == {e.id for e in live}
        assert [call.args[2] for call in vectors.query.await_args_list] == [4, 8]


class TestRelationships:
    async def test_reasserting_increments_weight(self, entity_store, graph):
        alice = await make(entity_store, "Alice")
        acme = await make(entity_store, "Acme", "organization")
        data = {"source_id": alice.id, "target_id": acme.id, "type": "WORKS_AT"}

        first = await entity_store.create_relationship({**data, "metadata": {"since": 2020}})
        second = await entity_store.create_relationship({**data, "metadata": {"role": "lead"}})

        assert second.id == first.id
        assert second.weight == 2
        assert second.metadata == {"since": 2020, "role": "lead"}
        assert len(await entity_store.get_relationships(alice.id)) == 1
        assert graph.merge_relationship.await_args.kwargs["weight"] == 2

    async def test_missing_endpoint_raises(self, entity_store):
        alice = await make(entity_store, "Alice")

        with pytest.raises(NotFoundError):
            await entity_store.create_relationship(
                {"source_id": alice.id, "target_id": "nobody", "type": "KNOWS"}
            )

    async def test_direction_and_type_filters(self, entity_store):
        alice = await make(entity_store, "Alice")
        bob = await make(entity_store, "Bob")
        acme = await make(entity_store, "Acme", "organization")
        await entity_store.create_relationship({"source_id": alice.id, "target_id": bob.id, "type": "KNOWS"})
        await entity_store.create_relationship({"source_id": bob.id, "target_id": alice.id, "type": "KNOWS"})
        await entity_store.create_relationship({"source_id": alice.id, "target_id": acme.id, "type": "WORKS_AT"})

        assert len(await entity_store.get_relationships(alice.id)) == 3
        assert len(await entity_store.get_relationships(alice.id, direction="outgoing")) == 2
        assert len(await entity_store.get_relationships(alice.id, direction="incoming")) == 1
        works_at = await entity_store.get_relationships(alice.id, RelationshipType.WORKS_AT)
        assert [r.target_id for r in works_at] == [acme.id]

    async def test_remove_relationship(self, entity_store):
        alice = await make(entity_store, "Alice")
        bob = await make(entity_store, "Bob")
        rel = await entity_store.create_relationship(
            {"source_id": alice.id, "target_id": bob.id, "type": "KNOWS"}
        )

        await entity_store.remove_relationship(rel.id)

        assert await entity_store.get_relationships(alice.id) == []
        with pytest.raises(NotFoundError):
            await entity_store.remove_relationship(rel.id)

    async def test_hard_delete_removes_relationships(self, entity_store):
        alice = await make(entity_store, "Alice")
        bob = await make(entity_store, "Bob")
        await entity_store.create_relationship({"source_id": alice.id, "target_id": bob.id, "type": "KNOWS"})

        await entity_store.hard_delete(bob.id)

        assert await entity_store.find_by_id(bob.id, include_deleted=True) is None
        assert await entity_store.get_relationships(alice.id) == []


class TestMerge:
    async def test_merge_repoints_and_collapses_edges(self, entity_store):
        primary = await make(entity_store, "Alice Johnson", metadata={"email": "alice@example.com"})
        duplicate = await make(entity_store, "Alice J.", metadata={"phone": "555-0100", "email": "old@example.com"})
        carol = await make(entity_store, "Carol")

        await entity_store.create_relationship({"source_id": primary.id, "target_id": carol.id, "type": "KNOWS"})
        await entity_store.create_relationship({"source_id": duplicate.id, "target_id": carol.id, "type": "KNOWS"})
        await entity_store.create_relationship({"source_id": carol.id, "target_id": duplicate.id, "type": "KNOWS"})
        await entity_store.create_relationship({"source_id": primary.id, "target_id": duplicate.id, "type": "RELATED_TO"})

        merged = await entity_store.merge_entities(primary.id, [duplicate.id])

        assert merged.metadata["email"] == "alice@example.com"
        assert merged.metadata["phone"] == "555-0100"
        assert merged.metadata["merged_from"] == [duplicate.id]
        assert await entity_store.find_by_id(duplicate.id, include_deleted=True) is None

        relationships = await entity_store.get_relationships(primary.id)
        edges = {(r.source_id, r.target_id, r.type.value): r.weight for r in relationships}
        assert edges == {
            (primary.id, carol.id, "KNOWS"): 2,
            (carol.id, primary.id, "KNOWS"): 1,
        }

    async def test_merge_with_missing_duplicate_raises(self, entity_store):
        primary = await make(entity_store, "Alice")

        with pytest.raises(NotFoundError):
            await entity_store.merge_entities(primary.id, ["ghost"])

    async def test_merge_moves_participations_and_assignments(
        self, entity_store, event_store, task_store, graph
    ):
        primary = await make(entity_store, "Alice Johnson")
        duplicate = await make(entity_store, "Alice J.")
        bob = await make(entity_store, "Bob")
        start = "2026-06-01T10:00:00Z"
        planning = await event_store.create(
            {
                "type": "meeting",
                "title": "Planning",
                "start_time": start,
                "participants": [{"entity_id": duplicate.id, "role": "host"}, {"entity_id": bob.id}],
            }
        )
        standup = await event_store.create(
            {
                "type": "meeting",
                "title": "Standup",
                "start_time": start,
                "participants": [{"entity_id": primary.id, "role": "attendee"}, {"entity_id": duplicate.id}],
            }
        )
        task = await task_store.create(
            {"title": "Send budget", "assignee_id": duplicate.id, "related_entity_id": duplicate.id}
        )
        graph.reset_mock()

        await entity_store.merge_entities(primary.id, [duplicate.id])

        moved = await event_store.get(planning.id)
        assert [(p.entity_id, p.role) for p in moved.participants] == [
            (primary.id, "host"),
            (bob.id, None),
        ]
        collapsed = await event_store.get(standup.id)
        assert [(p.entity_id, p.role) for p in collapsed.participants] == [(primary.id, "attendee")]
        assert {e.id for e in await event_store.find_by_participant(primary.id)} == {
            planning.id,
            standup.id,
        }
        assert await event_store.find_by_participant(duplicate.id) == []

        reassigned = await task_store.get(task.id)
        assert reassigned.assignee_id == primary.id
        assert reassigned.related_entity_id == primary.id

        graph.delete_node.assert_awaited_once_with("entity", duplicate.id)
        linked = {
            (call.args[1], call.args[3], call.args[4])
            for call in graph.merge_relationship.await_args_list
        }
        assert {
            (primary.id, planning.id, "ATTENDED"),
            (primary.id, task.id, "ASSIGNED_TO"),
            (task.id, primary.id, "RELATED_TO"),
        } <= linked

    async def test_hard_delete_clears_column_references(self, entity_store, event_store, task_store):
        alice = await make(entity_store, "Alice")
        bob = await make(entity_store, "Bob")
        event = await event_store.create(
            {
                "type": "meeting",
                "title": "Sync",
                "start_time": "2026-06-01T10:00:00Z",
                "participants": [{"entity_id": alice.id}, {"entity_id": bob.id}],
            }
        )
        task = await task_store.create({"title": "Follow up", "assignee_id": alice.id})

        await entity_store.hard_delete(alice.id)

        assert (await event_store.get(event.id)).participant_ids == [bob.id]
        assert (await task_store.get(task.id)).assignee_id is None
