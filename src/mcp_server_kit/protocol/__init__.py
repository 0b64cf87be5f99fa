"""
MCP protocol implementation.

Message schemas, the wire codec and transports live here; the session,
dispatcher, handshake and registry modules build on them.
"""

from .codec import EncodeError, MessageCodec
from .schemas import (
    ErrorCode,
    MCPError,
    MCPErrorResponse,
    MCPNotification,
    MCPRequest,
    MCPResponse,
    Resource,
    ResourceData,
    ResourceNotFoundError,
    Tool,
    ToolResult,
    ToolSchema,
)
from .transport import MemoryTransport, StdioTransport, StreamTransport, Transport, TransportError

__all__ = [
    "EncodeError",
    "ErrorCode",
    "MCPError",
    "MCPErrorResponse",
    "MCPNotification",
    "MCPRequest",
    "MCPResponse",
    "MemoryTransport",
    "MessageCodec",
    "Resource",
    "ResourceData",
    "ResourceNotFoundError",
    "StdioTransport",
    "StreamTransport",
    "Tool",
    "ToolResult",
    "ToolSchema",
    "Transport",
    "TransportError",
]
