"""Unit tests for the task store."""

import pytest

from ellipsa_memory.errors import NotFoundError, ValidationError
from ellipsa_memory.schemas.records import TaskPriority, TaskStatus


async def test_create_defaults(task_store):
    task = await task_store.create({"title": "Write the report"})

    assert task.status == TaskStatus.PENDING
    assert task.priority == TaskPriority.MEDIUM
    assert task.completed_at is None
    assert not task_store.embeddings.is_placeholder(task.embedding)


async def test_completed_at_follows_status(task_store):
    task = await task_store.create({"title": "Book flights"})

    done = await task_store.update_status(task.id, "completed")
    assert done.status == TaskStatus.COMPLETED
    assert done.completed_at is not None

    # Any status may follow any other
    reopened = await task_store.update_status(done.id, TaskStatus.PENDING)
    assert reopened.status == TaskStatus.PENDING
    assert reopened.completed_at is None


async def test_created_completed_gets_timestamp(task_store):
    task = await task_store.create({"title": "Already done", "status": "completed"})
    assert task.completed_at is not None


async def test_invalid_status_is_a_validation_error(task_store):
    task = await task_store.create({"title": "Call the bank"})

    with pytest.raises(ValidationError) as exc_info:
        await task_store.update_status(task.id, "finished-ish")

    assert [issue.field for issue in exc_info.value.issues] == ["status"]


async def test_update_status_of_missing_task(task_store):
    with pytest.raises(NotFoundError):
        await task_store.update_status("missing", "completed")


async def test_find_by_assignee_and_event(task_store, entity_store, event_store, graph):
    alice = await entity_store.create({"name": "Alice", "type": "person"})
    event = await event_store.create(
        {"type": "meeting", "title": "Planning", "start_time": "2026-06-01T09:00:00Z"}
    )
    task = await task_store.create(
        {"title": "Send notes", "assignee_id": alice.id, "related_event_id": event.id}
    )
    await task_store.create({"title": "Unrelated"})

    assert [t.id for t in (await task_store.find_by_assignee(alice.id)).data] == [task.id]
    assert [t.id for t in (await task_store.find_by_event(event.id)).data] == [task.id]

    edges = {call.args[4] for call in graph.merge_relationship.await_args_list}
    assert {"ASSIGNED_TO", "RELATED_TO"} <= edges
