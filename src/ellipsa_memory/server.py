"""Ellipsa Memory MCP server implementation."""

from fastmcp import FastMCP

from .config import settings
from .logging import configure_logging, get_logger
from .services.factory import ServiceHandle
from .tools import (
    register_get_entity_tools,
    register_get_relationships_tools,
    register_health_tools,
    register_remember_event_tools,
    register_search_memories_tools,
    register_update_task_status_tools,
)
from .version import __version__


def create_server(handle: ServiceHandle | None = None) -> FastMCP:
    """Create and configure the FastMCP server."""
    logger = get_logger("server")

    handle = handle or ServiceHandle(config=settings)
    mcp = FastMCP("ellipsa-memory")
    logger.debug("FastMCP instance created")

    register_health_tools(mcp, handle)
    register_remember_event_tools(mcp, handle)
    register_search_memories_tools(mcp, handle)
    register_get_entity_tools(mcp, handle)
    register_get_relationships_tools(mcp, handle)
    register_update_task_status_tools(mcp, handle)

    logger.debug("All tools registered")
    return mcp


def main():
    """Main entry point for the Ellipsa Memory MCP server."""
    logger = configure_logging()

    transport = settings.mcp_transport
    logger.info(
        "Starting Ellipsa Memory",
        version=__version__,
        transport=transport,
        host=settings.host,
        port=settings.mcp_port or "default",
        log_format=settings.log_format,
        log_level=settings.log_level,
    )

    try:
        mcp = create_server()
        logger.info("Server created successfully", server_name="ellipsa-memory")

        if transport == "stdio":
            mcp.run(transport="stdio")
        else:
            mcp.run(transport=transport, host=settings.host, port=settings.mcp_port or 8001)
    except Exception as e:
        logger.error(
            "Failed to start server",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise


if __name__ == "__main__":
    main()
