"""Remember event tool: push one observation through the processing pipeline."""

import time

from fastmcp import FastMCP

from ..logging import get_logger
from ..services.factory import ServiceHandle
from ..utils.correlation import generate_correlation_id, set_correlation_id
from .responses import error_response, success_response

__all__ = ["register_remember_event_tools"]


def register_remember_event_tools(mcp: FastMCP, handle: ServiceHandle) -> None:
    """Register the remember_event tool with the MCP server."""
    logger = get_logger("tools.remember_event")

    async def remember_event(
        content: str,
        event_type: str | None = None,
        source: str | None = None,
        title: str | None = None,
        timestamp: str | None = None,
        participant_ids: list[str] | None = None,
    ) -> str:
        """Record an observation as an event, extracting entities and tasks from it.

        Args:
            content: The observed text (meeting notes, screen text, a message)
            event_type: meeting, screen_capture, audio, note, email, message or other
            source: Where the observation came from
            title: Optional title; defaults to the start of the extracted summary
            timestamp: When it happened (ISO 8601); defaults to now
            participant_ids: Ids of entities known to have taken part

        Returns:
            JSON string with the event id, the entities it touched and any tasks
        """
        correlation_id = generate_correlation_id("remember_event")
        set_correlation_id(correlation_id)
        start_time = time.perf_counter()

        logger.info(
            "Processing observation",
            content_length=len(content),
            content_preview=content[:100] + "..." if len(content) > 100 else content,
            event_type=event_type,
        )

        metadata = {
            "type": event_type,
            "source": source,
            "title": title,
            "timestamp": timestamp,
            "participants": [
                {"entity_id": entity_id, "role": "participant"}
                for entity_id in participant_ids or []
            ],
        }
        metadata = {key: value for key, value in metadata.items() if value}

        try:
            services = await handle.get()
            result = await services.pipeline.process_event(content, metadata)
        except Exception as e:
            logger.error(
                "Remember event failed", error=str(e), error_type=e.__class__.__name__
            )
            return error_response(e, correlation_id)

        logger.info(
            "Observation stored",
            event_id=result.event.id,
            entities=len(result.entities),
            tasks=len(result.tasks),
            degraded=result.degraded,
            total_time_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        return success_response(
            correlation_id,
            event={
                "id": result.event.id,
                "type": result.event.type.value,
                "title": result.event.title,
                "summary": result.event.description,
                "start_time": result.event.start_time.isoformat(),
            },
            entities=[
                {"id": entity.id, "name": entity.name, "type": entity.type.value}
                for entity in result.entities
            ],
            tasks=[
                {"id": task.id, "title": task.title, "priority": task.priority.value}
                for task in result.tasks
            ],
            degraded=result.degraded,
            pipeline_correlation_id=result.correlation_id,
        )

    mcp.tool(remember_event)
    logger.debug("Remember event tool registered")
