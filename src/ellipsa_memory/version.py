"""Version information for Ellipsa Memory."""

__version__ = "0.1.0"
