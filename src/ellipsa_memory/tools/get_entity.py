"""Get entity tool for direct entity access with recent events."""

from fastmcp import FastMCP

from ..logging import get_logger
from ..services.factory import ServiceHandle
from ..utils.correlation import generate_correlation_id, set_correlation_id
from .responses import error_response, success_response

__all__ = ["register_get_entity_tools"]


def register_get_entity_tools(mcp: FastMCP, handle: ServiceHandle) -> None:
    """Register the get_entity tool with the MCP server."""
    logger = get_logger("tools.get_entity")

    async def get_entity(entity_id: str, events_limit: int = 10) -> str:
        """Get an entity along with the most recent events it took part in.

        Args:
            entity_id: The id of the entity to retrieve
            events_limit: How many recent events to include

        Returns:
            JSON string with entity data and recent events
        """
        correlation_id = generate_correlation_id("get_entity")
        set_correlation_id(correlation_id)

        logger.info("Get entity requested", entity_id=entity_id)

        try:
            services = await handle.get()
            entity = await services.entities.get(entity_id)
            events = await services.events.find_by_participant(entity_id, limit=events_limit)
        except Exception as e:
            logger.error(
                "Get entity failed",
                entity_id=entity_id,
                error=str(e),
                error_type=e.__class__.__name__,
            )
            return error_response(e, correlation_id)

        logger.info("Get entity completed successfully", entity_id=entity_id, events=len(events))
        return success_response(
            correlation_id,
            entity=entity.model_dump(mode="json", exclude={"embedding"}),
            recent_events=[
                event.model_dump(mode="json", exclude={"embedding"}) for event in events
            ],
        )

    mcp.tool(get_entity)
    logger.debug("Get entity tool registered")
