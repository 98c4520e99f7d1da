"""Search memories tool: hybrid retrieval over events, entities and tasks."""

import time

from fastmcp import FastMCP

from ..logging import get_logger
from ..schemas.retrieval import RetrievalOptions
from ..services.factory import ServiceHandle
from ..utils.correlation import generate_correlation_id, set_correlation_id
from .responses import error_response, success_response

__all__ = ["register_search_memories_tools"]


def register_search_memories_tools(mcp: FastMCP, handle: ServiceHandle) -> None:
    """Register the search_memories tool with the MCP server."""
    logger = get_logger("tools.search_memories")

    async def search_memories(
        query: str,
        limit: int = 10,
        entity_ids: list[str] | None = None,
        types: list[str] | None = None,
        start: str | None = None,
        end: str | None = None,
    ) -> str:
        """Find the memories most relevant to a query.

        Results are ranked by a blend of semantic similarity, recency and
        overlap with the given entities.

        Args:
            query: What to look for
            limit: Maximum number of results
            entity_ids: Entities the caller is currently focused on
            types: Restrict to event, entity and/or task
            start: Only events at or after this time (ISO 8601)
            end: Only events at or before this time (ISO 8601)

        Returns:
            JSON string with ranked results and their score breakdowns
        """
        correlation_id = generate_correlation_id("search")
        set_correlation_id(correlation_id)
        start_time = time.perf_counter()

        logger.info(
            "Memory search requested",
            query=query[:100],
            limit=limit,
            entity_context=len(entity_ids or []),
        )

        try:
            options = RetrievalOptions.model_validate(
                {
                    "limit": limit,
                    "entity_context": entity_ids or [],
                    "types": types,
                    "time_window": {"start": start, "end": end} if start or end else None,
                }
            )
            services = await handle.get()
            results = await services.retrieval.retrieve(query, options)
        except Exception as e:
            logger.error("Memory search failed", error=str(e), error_type=e.__class__.__name__)
            return error_response(e, correlation_id)

        logger.info(
            "Memory search completed",
            results=len(results),
            total_time_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        return success_response(
            correlation_id,
            query=query,
            results=[result.model_dump(mode="json") for result in results],
        )

    mcp.tool(search_memories)
    logger.debug("Search memories tool registered")
