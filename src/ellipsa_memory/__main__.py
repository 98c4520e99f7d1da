"""Run the Ellipsa Memory MCP server with ``python -m ellipsa_memory``."""

from .server import main

if __name__ == "__main__":
    main()
