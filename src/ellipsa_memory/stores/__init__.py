"""Store adapters: one per record type, each spanning the relational row,
its vector-index entry and its graph node."""

from .base import BaseStore
from .entities import EntityStore
from .events import EventStore
from .tasks import TaskStore

__all__ = ["BaseStore", "EntityStore", "EventStore", "TaskStore"]
