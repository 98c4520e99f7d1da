"""Get relationships tool for entity relationship browsing."""

from fastmcp import FastMCP

from ..logging import get_logger
from ..services.factory import ServiceHandle
from ..utils.correlation import generate_correlation_id, set_correlation_id
from .responses import error_response, success_response

__all__ = ["register_get_relationships_tools"]


def register_get_relationships_tools(mcp: FastMCP, handle: ServiceHandle) -> None:
    """Register the get_relationships tool with the MCP server."""
    logger = get_logger("tools.get_relationships")

    async def get_relationships(
        entity_id: str, relationship_type: str | None = None, direction: str = "both"
    ) -> str:
        """Get the relationships of an entity, heaviest first.

        Args:
            entity_id: The entity to get relationships for
            relationship_type: Only this type (e.g. KNOWS, WORKS_AT, MENTIONS)
            direction: both, incoming or outgoing

        Returns:
            JSON string with the relationships split by direction
        """
        correlation_id = generate_correlation_id("get_rel")
        set_correlation_id(correlation_id)

        logger.info(
            "Get relationships requested",
            entity_id=entity_id,
            relationship_type=relationship_type,
            direction=direction,
        )

        try:
            services = await handle.get()
            await services.entities.get(entity_id)
            relationships = await services.entities.get_relationships(
                entity_id, relationship_type, direction
            )
        except Exception as e:
            logger.error(
                "Get relationships failed",
                entity_id=entity_id,
                error=str(e),
                error_type=e.__class__.__name__,
            )
            return error_response(e, correlation_id)

        outgoing = [r.model_dump(mode="json") for r in relationships if r.source_id == entity_id]
        incoming = [r.model_dump(mode="json") for r in relationships if r.target_id == entity_id]

        logger.info(
            "Get relationships completed successfully",
            entity_id=entity_id,
            outgoing_count=len(outgoing),
            incoming_count=len(incoming),
        )
        return success_response(
            correlation_id,
            entity_id=entity_id,
            outgoing_relationships=outgoing,
            incoming_relationships=incoming,
            total_relationships=len(relationships),
        )

    mcp.tool(get_relationships)
    logger.debug("Get relationships tool registered")
