"""Shared helpers for Ellipsa Memory."""
