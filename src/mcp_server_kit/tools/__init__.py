"""
MCP tools implementation.

Executor interfaces for server authors plus the built-in tools the server
can expose.
"""

from .base import (
    BaseTool,
    FunctionTool,
    ToolError,
    ToolExecutionError,
    ToolExecutor,
    ToolValidationError,
)
from .echo import EchoTool
from .search_files import SearchFilesTool

__all__ = [
    "BaseTool",
    "FunctionTool",
    "ToolError",
    "ToolExecutionError",
    "ToolExecutor",
    "ToolValidationError",
    "EchoTool",
    "SearchFilesTool",
]
