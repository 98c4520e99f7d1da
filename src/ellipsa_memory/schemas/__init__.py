"""Pydantic schemas for Ellipsa Memory."""

from .extraction import ExtractedActionItem, ExtractedEntity, ExtractionResult
from .records import (
    Entity,
    EntityCreate,
    EntityCreation,
    EntityType,
    EntityUpdate,
    Event,
    EventCreate,
    EventType,
    EventUpdate,
    Metadata,
    Page,
    PageRequest,
    PaginationInfo,
    Participant,
    RecordKind,
    Relationship,
    RelationshipCreate,
    RelationshipType,
    SimilarEntity,
    Task,
    TaskCreate,
    TaskPriority,
    TaskStatus,
    TaskUpdate,
    TimeWindow,
)
from .retrieval import (
    RetrievalContext,
    RetrievalOptions,
    RetrievalRequest,
    RetrievalResult,
    ScoreBreakdown,
    ScoringWeights,
    SourceType,
)

__all__ = [
    "Entity",
    "EntityCreate",
    "EntityCreation",
    "EntityType",
    "EntityUpdate",
    "Event",
    "EventCreate",
    "EventType",
    "EventUpdate",
    "ExtractedActionItem",
    "ExtractedEntity",
    "ExtractionResult",
    "Metadata",
    "Page",
    "PageRequest",
    "PaginationInfo",
    "Participant",
    "RecordKind",
    "Relationship",
    "RelationshipCreate",
    "RelationshipType",
    "RetrievalContext",
    "RetrievalOptions",
    "RetrievalRequest",
    "RetrievalResult",
    "ScoreBreakdown",
    "ScoringWeights",
    "SimilarEntity",
    "SourceType",
    "Task",
    "TaskCreate",
    "TaskPriority",
    "TaskStatus",
    "TaskUpdate",
    "TimeWindow",
]
