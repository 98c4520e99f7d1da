"""Update task status tool."""

from fastmcp import FastMCP

from ..logging import get_logger
from ..services.factory import ServiceHandle
from ..utils.correlation import generate_correlation_id, set_correlation_id
from .responses import error_response, success_response

__all__ = ["register_update_task_status_tools"]


def register_update_task_status_tools(mcp: FastMCP, handle: ServiceHandle) -> None:
    """Register the update_task_status tool with the MCP server."""
    logger = get_logger("tools.update_task_status")

    async def update_task_status(task_id: str, status: str) -> str:
        """Move a task to a new status.

        Args:
            task_id: The task to update
            status: pending, in_progress, completed, blocked or cancelled

        Returns:
            JSON string with the updated task
        """
        correlation_id = generate_correlation_id("task_status")
        set_correlation_id(correlation_id)

        logger.info("Task status update requested", task_id=task_id, status=status)

        try:
            services = await handle.get()
            task = await services.tasks.update_status(task_id, status)
        except Exception as e:
            logger.error(
                "Task status update failed",
                task_id=task_id,
                error=str(e),
                error_type=e.__class__.__name__,
            )
            return error_response(e, correlation_id)

        logger.info("Task status updated", task_id=task_id, status=task.status.value)
        return success_response(
            correlation_id, task=task.model_dump(mode="json", exclude={"embedding"})
        )

    mcp.tool(update_task_status)
    logger.debug("Update task status tool registered")
