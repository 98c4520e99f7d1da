"""Structured logging configuration for Ellipsa Memory."""

import logging
import sys

import structlog
from rich.console import Console
from rich.json import JSON

from .config import EllipsaMemorySettings, settings


class RichJSONRenderer:
    """structlog renderer that pretty-prints each event dict as JSON through Rich."""

    def __init__(self, console: Console | None = None):
        self.console = console or Console(file=sys.stderr)

    def __call__(self, logger, method_name, event_dict):
        self.console.print(JSON.from_data(event_dict, default=str))
        return ""


def _renderer_for(log_format: str):
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    if log_format == "rich_json":
        return RichJSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=True)


def configure_logging(
    config: EllipsaMemorySettings | None = None,
) -> structlog.stdlib.BoundLogger:
    """Configure structlog and the stdlib root logger from settings.

    Logs go to stderr so the MCP stdio transport keeps stdout to itself.
    """
    config = config or settings
    level = getattr(logging, config.log_level.upper())

    logging.basicConfig(level=level, format="%(message)s", handlers=[])

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        _renderer_for(config.log_format),
    ]

    handler = logging.StreamHandler(sys.stderr)
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Chatty third-party loggers
    for noisy in ("httpx", "neo4j", "sentence_transformers", "aiosqlite"):
        logging.getLogger(noisy).setLevel(max(level, logging.WARNING))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger("ellipsa_memory")


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger for the given name."""
    return structlog.get_logger(name)
