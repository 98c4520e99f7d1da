"""Ellipsa Memory: entity, event and task memory with hybrid retrieval."""

from .version import __version__

__all__ = ["__version__"]
