"""Event store: the timeline of observed meetings, captures and audio segments."""

from typing import Any

from sqlalchemy import update

from ..db.relational import EventRow, TaskRow
from ..logging import get_logger
from ..schemas.records import (
    Event,
    EventCreate,
    EventUpdate,
    Page,
    RecordKind,
    RelationshipType,
    TimeWindow,
)
from ..utils.time import ensure_utc, utc_now
from .base import BaseStore, iso

logger = get_logger("stores.events")


class EventStore(BaseStore[Event]):
    kind = RecordKind.EVENT
    row_type = EventRow
    record_type = Event
    create_schema = EventCreate
    update_schema = EventUpdate
    embedding_fields = ("title", "description")
    sortable_fields = frozenset({"start_time", "end_time", "created_at", "updated_at", "title", "type"})
    filterable_fields = frozenset({"type", "source", "source_id"})
    default_sort = "start_time"

    def graph_properties(self, record: Event) -> dict[str, Any]:
        return {
            "title": record.title,
            "type": record.type.value,
            "start_time": iso(record.start_time),
            "end_time": iso(record.end_time),
            "source": record.source,
            "source_id": record.source_id,
        }

    def vector_payload(self, record: Event) -> dict[str, Any]:
        return {
            "title": record.title,
            "type": record.type.value,
            "start_time": iso(record.start_time),
        }

    async def sync_edges(self, record: Event, previous: Event | None) -> None:
        """One ATTENDED edge per participant that was not already linked."""
        already_linked = set(previous.participant_ids) if previous else set()
        for participant in record.participants:
            if participant.entity_id in already_linked:
                continue
            await self._link(
                RecordKind.ENTITY.value,
                participant.entity_id,
                RecordKind.EVENT.value,
                record.id,
                RelationshipType.ATTENDED.value,
                {"role": participant.role},
            )

    async def detach_references(self, session: Any, record_id: str) -> None:
        await session.execute(
            update(TaskRow)
            .where(TaskRow.related_event_id == record_id)
            .values(related_event_id=None, updated_at=utc_now())
        )

    @staticmethod
    def _window_conditions(time_window: TimeWindow | None) -> list:
        conditions = []
        if time_window is not None:
            if time_window.start is not None:
                conditions.append(EventRow.start_time >= ensure_utc(time_window.start))
            if time_window.end is not None:
                conditions.append(EventRow.start_time <= ensure_utc(time_window.end))
        return conditions

    async def find_all(
        self,
        filters: dict[str, Any] | None = None,
        *,
        time_window: TimeWindow | None = None,
        **kwargs,
    ) -> Page[Event]:
        return await super().find_all(
            filters, conditions=self._window_conditions(time_window), **kwargs
        )

    async def scan(
        self,
        filters: dict[str, Any] | None = None,
        conditions=(),
        time_window: TimeWindow | None = None,
    ) -> list[Event]:
        return await super().scan(
            filters, [*conditions, *self._window_conditions(time_window)]
        )

    async def find_by_participant(self, entity_id: str, limit: int = 20) -> list[Event]:
        """Most recent live events listing ``entity_id`` as a participant."""
        # Participants are a JSON document; filtered here to stay dialect-neutral
        events = [event for event in await self.scan() if entity_id in event.participant_ids]
        events.sort(key=lambda event: (event.start_time, event.id), reverse=True)
        return events[:limit]
