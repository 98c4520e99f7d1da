"""Pydantic models for stored records and their create/update payloads."""

from datetime import datetime
from enum import StrEnum
from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..utils.time import ensure_utc

# Open key/value document attached to every record
Metadata = dict[str, Any]


class RecordKind(StrEnum):
    ENTITY = "entity"
    EVENT = "event"
    TASK = "task"


class EntityType(StrEnum):
    PERSON = "person"
    ORGANIZATION = "organization"
    LOCATION = "location"
    EVENT = "event"
    DOCUMENT = "document"
    CONCEPT = "concept"
    TASK = "task"
    OTHER = "other"

    @classmethod
    def coerce(cls, value: str | None) -> "EntityType":
        """Map free-form type names (as produced by extraction) onto the enum."""
        name = (value or "").strip().lower()
        name = _ENTITY_TYPE_ALIASES.get(name, name)
        try:
            return cls(name)
        except ValueError:
            return cls.OTHER


_ENTITY_TYPE_ALIASES = {
    "org": "organization",
    "organisation": "organization",
    "company": "organization",
    "place": "location",
    "loc": "location",
    "people": "person",
    "topic": "concept",
}


class EventType(StrEnum):
    MEETING = "meeting"
    SCREEN_CAPTURE = "screen_capture"
    AUDIO = "audio"
    NOTE = "note"
    EMAIL = "email"
    MESSAGE = "message"
    OTHER = "other"


class TaskStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"
    CANCELLED = "cancelled"


class TaskPriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class RelationshipType(StrEnum):
    MENTIONS = "MENTIONS"
    ASSIGNED_TO = "ASSIGNED_TO"
    RELATED_TO = "RELATED_TO"
    PART_OF = "PART_OF"
    WORKS_AT = "WORKS_AT"
    KNOWS = "KNOWS"
    ATTENDED = "ATTENDED"
    AUTHORED = "AUTHORED"
    CREATED = "CREATED"
    CUSTOM = "CUSTOM"


def _strip_required(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("must not be blank")
    return value


class _Input(BaseModel):
    model_config = ConfigDict(extra="forbid")


# Entities


class EntityCreate(_Input):
    name: str = Field(max_length=255)
    type: EntityType
    description: str | None = None
    metadata: Metadata = Field(default_factory=dict)
    last_seen_at: datetime | None = None

    check_name = field_validator("name")(_strip_required)


class EntityUpdate(_Input):
    # Explicit nulls are rejected for non-nullable fields; omitted fields are untouched
    name: str = Field(default=None, max_length=255)
    type: EntityType = None
    description: str | None = None
    metadata: Metadata = None
    last_seen_at: datetime = None

    check_name = field_validator("name")(_strip_required)


class Entity(BaseModel):
    id: str
    name: str
    type: EntityType
    description: str | None = None
    metadata: Metadata = Field(default_factory=dict)
    embedding: list[float] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None
    last_seen_at: datetime | None = None


class SimilarEntity(BaseModel):
    entity: Entity
    similarity: float


class EntityCreation(BaseModel):
    """A newly created entity plus any near-duplicates found beforehand."""

    entity: Entity
    duplicates: list[SimilarEntity] = Field(default_factory=list)


# Events


class Participant(BaseModel):
    entity_id: str = Field(min_length=1)
    role: str | None = None
    metadata: Metadata = Field(default_factory=dict)


class EventCreate(_Input):
    type: EventType
    title: str = Field(max_length=500)
    description: str | None = None
    start_time: datetime
    end_time: datetime | None = None
    participants: list[Participant] = Field(default_factory=list)
    source: str | None = None
    source_id: str | None = None
    metadata: Metadata = Field(default_factory=dict)

    check_title = field_validator("title")(_strip_required)


class EventUpdate(_Input):
    type: EventType = None
    title: str = Field(default=None, max_length=500)
    description: str | None = None
    start_time: datetime = None
    end_time: datetime | None = None
    participants: list[Participant] = None
    source: str | None = None
    source_id: str | None = None
    metadata: Metadata = None

    check_title = field_validator("title")(_strip_required)


class Event(BaseModel):
    id: str
    type: EventType
    title: str
    description: str | None = None
    start_time: datetime
    end_time: datetime | None = None
    participants: list[Participant] = Field(default_factory=list)
    source: str | None = None
    source_id: str | None = None
    metadata: Metadata = Field(default_factory=dict)
    embedding: list[float] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None

    @property
    def participant_ids(self) -> list[str]:
        return [participant.entity_id for participant in self.participants]


# Tasks


class TaskCreate(_Input):
    title: str = Field(max_length=500)
    description: str | None = None
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: datetime | None = None
    assignee_id: str | None = None
    created_by: str | None = None
    related_entity_id: str | None = None
    related_event_id: str | None = None
    metadata: Metadata = Field(default_factory=dict)

    check_title = field_validator("title")(_strip_required)


class TaskUpdate(_Input):
    title: str = Field(default=None, max_length=500)
    description: str | None = None
    status: TaskStatus = None
    priority: TaskPriority = None
    due_date: datetime | None = None
    completed_at: datetime | None = None
    assignee_id: str | None = None
    related_entity_id: str | None = None
    related_event_id: str | None = None
    metadata: Metadata = None

    check_title = field_validator("title")(_strip_required)


class Task(BaseModel):
    id: str
    title: str
    description: str | None = None
    status: TaskStatus
    priority: TaskPriority
    due_date: datetime | None = None
    completed_at: datetime | None = None
    assignee_id: str | None = None
    created_by: str | None = None
    related_entity_id: str | None = None
    related_event_id: str | None = None
    metadata: Metadata = Field(default_factory=dict)
    embedding: list[float] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None


# Relationships


class RelationshipCreate(_Input):
    source_id: str = Field(min_length=1)
    target_id: str = Field(min_length=1)
    type: RelationshipType
    metadata: Metadata = Field(default_factory=dict)
    source_kind: RecordKind = RecordKind.ENTITY
    target_kind: RecordKind = RecordKind.ENTITY


class Relationship(BaseModel):
    id: str
    source_id: str
    source_kind: RecordKind
    target_id: str
    target_kind: RecordKind
    type: RelationshipType
    weight: int = 1
    metadata: Metadata = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime


# Pagination

RecordT = TypeVar("RecordT")


class PageRequest(_Input):
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=10, ge=1, le=1000)
    sort_by: str | None = None
    sort_order: Literal["asc", "desc"] = "desc"
    include_deleted: bool = False


class PaginationInfo(BaseModel):
    page: int
    page_size: int
    total_items: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool

    @classmethod
    def build(cls, page: int, page_size: int, total_items: int) -> "PaginationInfo":
        total_pages = (total_items + page_size - 1) // page_size
        return cls(
            page=page,
            page_size=page_size,
            total_items=total_items,
            total_pages=total_pages,
            has_next_page=page < total_pages,
            has_previous_page=page > 1,
        )


class Page(BaseModel, Generic[RecordT]):
    data: list[RecordT]
    pagination: PaginationInfo


class TimeWindow(BaseModel):
    start: datetime | None = None
    end: datetime | None = None

    @field_validator("start", "end")
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _check_order(self) -> "TimeWindow":
        if self.start and self.end and self.start > self.end:
            raise ValueError("time window start must not be after end")
        return self
