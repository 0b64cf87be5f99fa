"""
MCP Protocol message schemas and data structures.

Defines the JSON-RPC 2.0 message formats for the Model Context Protocol,
the resource and tool declarations exchanged with hosts, and the error
types that map onto JSON-RPC error objects.
"""

import base64
import json
from enum import IntEnum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr

RequestId = Union[StrictStr, StrictInt]

LATEST_PROTOCOL_VERSION = "2025-06-18"
SUPPORTED_PROTOCOL_VERSIONS = ("2024-11-05", "2025-03-26", "2025-06-18")


class ErrorCode(IntEnum):
    """JSON-RPC error codes used by the server."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603
    RESOURCE_NOT_FOUND = -32002


class MCPError(Exception):
    """Base exception for MCP protocol errors."""

    def __init__(
        self,
        message: str,
        code: int = ErrorCode.INTERNAL_ERROR,
        data: Optional[Dict[str, Any]] = None,
        request_id: Optional[RequestId] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = int(code)
        self.data = data or {}
        self.request_id = request_id

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to JSON-RPC error format."""
        error_dict = {
            "code": self.code,
            "message": self.message,
        }
        if self.data:
            error_dict["data"] = self.data
        return error_dict


class ParseError(MCPError):
    """Frame was not valid JSON."""

    def __init__(self, message: str = "Parse error", data: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=ErrorCode.PARSE_ERROR, data=data)


class InvalidRequestError(MCPError):
    """Message is not a valid request, or is not acceptable in the session state."""

    def __init__(
        self,
        message: str,
        data: Optional[Dict[str, Any]] = None,
        request_id: Optional[RequestId] = None,
    ):
        super().__init__(message, code=ErrorCode.INVALID_REQUEST, data=data, request_id=request_id)


class MCPValidationError(MCPError):
    """Error for invalid request parameters."""

    def __init__(self, message: str, data: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=ErrorCode.INVALID_PARAMS, data=data)


class MCPMethodNotFoundError(MCPError):
    """Error for unknown method calls."""

    def __init__(self, method: str, message: Optional[str] = None):
        super().__init__(message or f"Method not found: {method}", code=ErrorCode.METHOD_NOT_FOUND)


class MCPInternalError(MCPError):
    """Error for internal server issues."""

    def __init__(self, message: str, data: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=ErrorCode.INTERNAL_ERROR, data=data)


class ResourceNotFoundError(MCPError):
    """Requested resource uri is not known to the server."""

    def __init__(self, uri: str):
        super().__init__(
            f"Resource not found: {uri}",
            code=ErrorCode.RESOURCE_NOT_FOUND,
            data={"uri": uri},
        )
        self.uri = uri


# Base message types
class MCPMessage(BaseModel):
    """Base class for all MCP messages."""

    model_config = ConfigDict(extra="forbid")

    jsonrpc: Literal["2.0"] = Field(default="2.0", description="JSON-RPC version")

    def to_dict(self) -> Dict[str, Any]:
        """Wire representation; fields that were never set are omitted."""
        data: Dict[str, Any] = {"jsonrpc": self.jsonrpc}
        data.update(self.model_dump(exclude_unset=True, exclude={"jsonrpc"}))
        return data


class MCPRequest(MCPMessage):
    """Request from the host; always answered with a response or an error."""

    id: RequestId = Field(description="Request ID")
    method: StrictStr = Field(description="Method name")
    params: Optional[Dict[str, Any]] = Field(default=None, description="Method parameters")


class MCPNotification(MCPMessage):
    """Base class for MCP notifications (no response expected)."""

    method: StrictStr = Field(description="Method name")
    params: Optional[Dict[str, Any]] = Field(default=None, description="Method parameters")


class MCPResponse(MCPMessage):
    """Successful response to a request."""

    id: RequestId = Field(description="Request ID")
    result: Dict[str, Any] = Field(description="Response result")


class ErrorObject(BaseModel):
    """JSON-RPC error object."""

    model_config = ConfigDict(extra="forbid")

    code: StrictInt
    message: StrictStr
    data: Optional[Any] = None


class MCPErrorResponse(MCPMessage):
    """Error response; id is null when the request id could not be recovered."""

    id: Optional[RequestId] = Field(description="Request ID")
    error: ErrorObject

    @classmethod
    def from_error(cls, request_id: Optional[RequestId], error: MCPError) -> "MCPErrorResponse":
        return cls(id=request_id, error=ErrorObject(**error.to_dict()))


Message = Union[MCPRequest, MCPNotification, MCPResponse, MCPErrorResponse]


# Client info structures
class ClientInfo(BaseModel):
    """Information about the MCP client."""

    name: str = Field(description="Client name")
    version: str = Field(description="Client version")


class ServerInfo(BaseModel):
    """Information about the MCP server."""

    name: str = Field(default="mcp-server-kit", description="Server name")
    version: str = Field(default="0.1.0", description="Server version")


# Resource structures
class Resource(BaseModel):
    """Resource declaration as advertised by resources/list."""

    model_config = ConfigDict(frozen=True)

    uri: str = Field(description="Stable resource identifier")
    name: str = Field(description="Display label")
    description: Optional[str] = Field(default=None, description="Resource description")
    mimeType: Optional[str] = Field(default=None, description="Content MIME type")

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class ResourceData(BaseModel):
    """Content returned by a resource reader."""

    content: Union[str, bytes]
    mime_type: Optional[str] = None

    def to_contents(self, uri: str) -> Dict[str, Any]:
        """Render as text or base64 blob resource contents."""
        contents: Dict[str, Any] = {"uri": uri}
        if self.mime_type:
            contents["mimeType"] = self.mime_type
        if isinstance(self.content, bytes):
            contents["blob"] = base64.b64encode(self.content).decode("ascii")
        else:
            contents["text"] = self.content
        return contents


# Tool structures
class ToolSchema(BaseModel):
    """Tool input schema definition (a JSON Schema object)."""

    model_config = ConfigDict(extra="allow")

    type: Literal["object"] = Field(default="object", description="Schema type")
    properties: Dict[str, Dict[str, Any]] = Field(default_factory=dict, description="Tool parameters")
    required: List[str] = Field(default_factory=list, description="Required parameters")
    additionalProperties: Optional[bool] = Field(default=None)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class Tool(BaseModel):
    """Tool definition."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1, description="Tool name")
    description: str = Field(default="", description="Tool description")
    inputSchema: ToolSchema = Field(default_factory=ToolSchema, description="Tool input schema")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.inputSchema.to_dict(),
        }


# Content blocks
class TextContent(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImageContent(BaseModel):
    type: Literal["image"] = "image"
    data: str = Field(description="Base64-encoded image data")
    mimeType: str


class EmbeddedResource(BaseModel):
    type: Literal["resource"] = "resource"
    resource: Dict[str, Any] = Field(description="Text or blob resource contents")


ContentBlock = Annotated[
    Union[TextContent, ImageContent, EmbeddedResource], Field(discriminator="type")
]


class ToolResult(BaseModel):
    """
    Result of tool execution.

    ``isError`` marks a domain failure the model can read and react to; it
    travels as a normal response, never as a protocol error.
    """

    content: List[ContentBlock] = Field(default_factory=list, description="Tool result content")
    isError: bool = Field(default=False, description="Whether result is an error")

    @classmethod
    def success(cls, text: str, data: Optional[Dict[str, Any]] = None) -> "ToolResult":
        """Create a successful result with text content."""
        if data:
            text += f"\n\nStructured Data:\n```json\n{json.dumps(data, indent=2)}\n```"
        return cls(content=[TextContent(text=text)])

    @classmethod
    def error(
        cls,
        message: str,
        error_code: str = "tool_error",
        details: Optional[Dict[str, Any]] = None,
    ) -> "ToolResult":
        """Create an error result."""
        error_text = f"Error: {message}"
        if details:
            payload = {"error_code": error_code, "details": details}
            error_text += f"\n\nError Details:\n```json\n{json.dumps(payload, indent=2)}\n```"
        return cls(content=[TextContent(text=error_text)], isError=True)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format for MCP response."""
        return {
            "content": [block.model_dump() for block in self.content],
            "isError": self.isError,
        }


# Initialize protocol
class InitializeParams(BaseModel):
    """Parameters of the initialize request."""

    protocolVersion: StrictStr
    capabilities: Dict[str, Any] = Field(default_factory=dict)
    clientInfo: Optional[ClientInfo] = None
