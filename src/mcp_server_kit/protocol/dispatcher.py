"""
MCP request dispatcher.

Routes decoded requests to the handshake coordinator or to registered
resource and tool handlers, and turns handler outcomes into responses or
JSON-RPC errors.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import structlog

from ..tools.base import ToolError
from .handshake import HandshakeCoordinator
from .registry import CapabilityRegistry, NotFoundError
from .schemas import (
    MCPError,
    MCPErrorResponse,
    MCPInternalError,
    MCPMethodNotFoundError,
    MCPRequest,
    MCPResponse,
    MCPValidationError,
    ResourceData,
    ResourceNotFoundError,
    ToolResult,
)

logger = structlog.get_logger(__name__)

RouteHandler = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


class RequestDispatcher:
    """
    Protocol-level request router for one session.

    Every request produces exactly one response or error response carrying
    the request's id. Tool failures raised as ``ToolError`` stay in-band as
    ``isError`` results; unexpected exceptions become internal errors.
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        coordinator: HandshakeCoordinator,
        request_timeout: Optional[float] = None,
    ):
        self.registry = registry
        self.coordinator = coordinator
        self.request_timeout = request_timeout
        self._routes: Dict[str, RouteHandler] = {
            "ping": self._handle_ping,
            "resources/list": self._handle_list_resources,
            "resources/read": self._handle_read_resource,
            "tools/list": self._handle_list_tools,
            "tools/call": self._handle_call_tool,
        }

    async def dispatch(self, request: MCPRequest) -> Union[MCPResponse, MCPErrorResponse]:
        """
        Handle incoming MCP request.

        Args:
            request: Incoming request

        Returns:
            Response to send back to client
        """
        logger.debug("Handling request", method=request.method, request_id=request.id)
        params = request.params or {}

        try:
            if request.method == "initialize":
                result = self.coordinator.negotiate(request.params)
            else:
                self.coordinator.require_ready()
                result = await self._route(request.method)(params)
            return MCPResponse(id=request.id, result=result)

        except MCPError as e:
            logger.warning(
                "MCP error handling request",
                method=request.method,
                request_id=request.id,
                error_code=e.code,
                error_message=e.message,
            )
            return MCPErrorResponse.from_error(request.id, e)

        except Exception as e:
            logger.error(
                "Unexpected error handling request",
                method=request.method,
                request_id=request.id,
                error=str(e),
                exc_info=True,
            )
            return MCPErrorResponse.from_error(
                request.id, MCPInternalError("Internal error", data={"details": str(e)})
            )

    def _route(self, method: str) -> RouteHandler:
        handler = self._routes.get(method)
        if handler is None:
            raise MCPMethodNotFoundError(method)

        category = method.split("/", 1)[0]
        if category in ("resources", "tools") and not self.coordinator.supports(category):
            raise MCPMethodNotFoundError(
                method, f"Capability not advertised by this server: {category}"
            )
        return handler

    async def _handle_ping(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {}

    async def _handle_list_resources(self, params: Dict[str, Any]) -> Dict[str, Any]:
        resources = self.registry.list_resources()
        logger.info("Listing resources", resource_count=len(resources))
        return {"resources": [resource.to_dict() for resource in resources]}

    async def _handle_read_resource(self, params: Dict[str, Any]) -> Dict[str, Any]:
        uri = params.get("uri")
        if not isinstance(uri, str) or not uri:
            raise MCPValidationError("Parameter 'uri' must be a non-empty string")

        try:
            resource = self.registry.get_resource(uri)
            reader = self.registry.get_resource_reader(uri)
        except NotFoundError:
            raise ResourceNotFoundError(uri) from None

        logger.info("Reading resource", uri=uri)
        data = await self._run_handler(reader.read(uri), f"resources/read {uri}")
        if not isinstance(data, ResourceData):
            raise MCPInternalError(
                f"Resource reader returned {type(data).__name__}, expected ResourceData"
            )
        if data.mime_type is None and resource.mimeType:
            data = ResourceData(content=data.content, mime_type=resource.mimeType)
        return {"contents": [data.to_contents(uri)]}

    async def _handle_list_tools(self, params: Dict[str, Any]) -> Dict[str, Any]:
        tools = self.registry.list_tools()
        logger.info("Listing tools", tool_count=len(tools))
        return {"tools": [tool.to_dict() for tool in tools]}

    async def _handle_call_tool(self, params: Dict[str, Any]) -> Dict[str, Any]:
        tool_name = params.get("name")
        if not isinstance(tool_name, str) or not tool_name:
            raise MCPValidationError("Parameter 'name' must be a non-empty string")

        arguments = params.get("arguments")
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise MCPValidationError("Parameter 'arguments' must be an object")

        try:
            executor = self.registry.get_tool_executor(tool_name)
        except NotFoundError:
            raise MCPMethodNotFoundError("tools/call", f"Unknown tool: {tool_name}") from None

        errors = self.registry.validate_arguments(tool_name, arguments)
        if errors:
            raise MCPValidationError(
                f"Invalid arguments for tool {tool_name}: {errors[0]['message']}",
                data={"tool": tool_name, "errors": errors},
            )

        logger.info("Calling tool", tool_name=tool_name, arguments=arguments)

        try:
            result = await self._run_handler(executor.call(arguments), f"tools/call {tool_name}")
        except ToolError as e:
            logger.warning(
                "Tool execution failed",
                tool_name=tool_name,
                error_code=e.code,
                error_message=e.message,
            )
            result = ToolResult.error(e.message, e.code, e.details)

        if not isinstance(result, ToolResult):
            raise MCPInternalError(
                f"Tool {tool_name} returned {type(result).__name__}, expected ToolResult"
            )

        logger.info("Tool execution completed", tool_name=tool_name, success=not result.isError)
        return result.to_dict()

    async def _run_handler(self, awaitable: Awaitable[Any], label: str) -> Any:
        if self.request_timeout is None:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, self.request_timeout)
        except asyncio.TimeoutError:
            raise MCPInternalError(
                f"Handler timed out: {label}",
                data={"timeout_seconds": self.request_timeout},
            ) from None
