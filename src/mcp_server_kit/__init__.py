"""
MCP Server Kit

A Model Context Protocol server runtime: capability negotiation, request
dispatch to registered resource and tool handlers, and structured error
propagation over stdio or TCP.
"""

__version__ = "0.1.0"
__license__ = "MIT"

from .config.settings import Config, load_config
from .protocol.registry import CapabilityRegistry
from .protocol.schemas import Resource, ResourceData, Tool, ToolResult, ToolSchema
from .protocol.session import Session
from .resources.base import ResourceReader
from .server import MCPServer
from .tools.base import BaseTool, FunctionTool, ToolError, ToolExecutor

__all__ = [
    "MCPServer",
    "Session",
    "CapabilityRegistry",
    "Config",
    "load_config",
    "Resource",
    "ResourceData",
    "ResourceReader",
    "Tool",
    "ToolResult",
    "ToolSchema",
    "BaseTool",
    "FunctionTool",
    "ToolError",
    "ToolExecutor",
    "__version__",
    "__license__",
]
