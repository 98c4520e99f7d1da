"""Task store: action items extracted from events."""

from typing import Any

from ..db.relational import TaskRow
from ..logging import get_logger
from ..schemas.records import (
    Page,
    RecordKind,
    RelationshipType,
    Task,
    TaskCreate,
    TaskStatus,
    TaskUpdate,
)
from ..utils.time import utc_now
from .base import BaseStore, iso

logger = get_logger("stores.tasks")


class TaskStore(BaseStore[Task]):
    """Tasks have no vector collection; their embedding lives on the row only.

    Status changes are deliberately unchecked: any status may follow any other.
    """

    kind = RecordKind.TASK
    row_type = TaskRow
    record_type = Task
    create_schema = TaskCreate
    update_schema = TaskUpdate
    embedding_fields = ("title", "description")
    sortable_fields = frozenset(
        {"title", "status", "priority", "due_date", "created_at", "updated_at", "completed_at"}
    )
    filterable_fields = frozenset(
        {"status", "priority", "assignee_id", "created_by", "related_entity_id", "related_event_id"}
    )

    def graph_properties(self, record: Task) -> dict[str, Any]:
        return {
            "title": record.title,
            "status": record.status.value,
            "priority": record.priority.value,
            "due_date": iso(record.due_date),
            "completed_at": iso(record.completed_at),
        }

    def prepare_create(self, values: dict[str, Any]) -> dict[str, Any]:
        if values.get("status") == TaskStatus.COMPLETED:
            values["completed_at"] = utc_now()
        return values

    def prepare_update(self, existing: Task, changes: dict[str, Any]) -> dict[str, Any]:
        status = changes.get("status")
        if status is not None and status != existing.status and "completed_at" not in changes:
            changes["completed_at"] = utc_now() if status == TaskStatus.COMPLETED else None
        return changes

    async def sync_edges(self, record: Task, previous: Task | None) -> None:
        if self.graph is None:
            return

        if record.assignee_id and (previous is None or previous.assignee_id != record.assignee_id):
            if previous is not None and previous.assignee_id:
                await self._best_effort(
                    "graph",
                    "unlink_assignee",
                    record.id,
                    lambda: self.graph.delete_edges(
                        RecordKind.TASK.value,
                        record.id,
                        RelationshipType.ASSIGNED_TO.value,
                        direction="incoming",
                    ),
                )
            await self._link(
                RecordKind.ENTITY.value,
                record.assignee_id,
                RecordKind.TASK.value,
                record.id,
                RelationshipType.ASSIGNED_TO.value,
            )

        related_changed = previous is None or (
            previous.related_entity_id != record.related_entity_id
            or previous.related_event_id != record.related_event_id
        )
        if not related_changed:
            return
        if previous is not None:
            await self._best_effort(
                "graph",
                "unlink_related",
                record.id,
                lambda: self.graph.delete_edges(
                    RecordKind.TASK.value,
                    record.id,
                    RelationshipType.RELATED_TO.value,
                    direction="outgoing",
                ),
            )
        if record.related_entity_id:
            await self._link(
                RecordKind.TASK.value,
                record.id,
                RecordKind.ENTITY.value,
                record.related_entity_id,
                RelationshipType.RELATED_TO.value,
            )
        if record.related_event_id:
            await self._link(
                RecordKind.TASK.value,
                record.id,
                RecordKind.EVENT.value,
                record.related_event_id,
                RelationshipType.RELATED_TO.value,
            )

    async def update_status(self, task_id: str, status: TaskStatus | str) -> Task:
        """Set the status; ``completed_at`` follows moves into and out of completed."""
        return await self.update(task_id, {"status": status})

    async def find_by_assignee(self, entity_id: str, **kwargs) -> Page[Task]:
        return await self.find_all({"assignee_id": entity_id}, **kwargs)

    async def find_by_event(self, event_id: str, **kwargs) -> Page[Task]:
        return await self.find_all({"related_event_id": event_id}, **kwargs)
