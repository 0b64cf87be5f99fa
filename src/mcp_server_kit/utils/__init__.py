"""Utility modules for the MCP server."""

from .logging import setup_logging

__all__ = ["setup_logging"]
