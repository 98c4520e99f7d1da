"""Ellipsa Memory MCP tools."""

from .get_entity import register_get_entity_tools
from .get_relationships import register_get_relationships_tools
from .health import register_health_tools
from .remember_event import register_remember_event_tools
from .search_memories import register_search_memories_tools
from .update_task_status import register_update_task_status_tools

__all__ = [
    "register_health_tools",
    "register_remember_event_tools",
    "register_search_memories_tools",
    "register_get_entity_tools",
    "register_get_relationships_tools",
    "register_update_task_status_tools",
]
