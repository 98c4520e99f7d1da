"""Storage backends: relational (authoritative), vector index and graph."""

from .graph import GraphStore
from .relational import Database, EntityRow, EventRow, RelationshipRow, TaskRow
from .vector import VectorIndex, VectorMatch

__all__ = [
    "Database",
    "EntityRow",
    "EventRow",
    "GraphStore",
    "RelationshipRow",
    "TaskRow",
    "VectorIndex",
    "VectorMatch",
]
