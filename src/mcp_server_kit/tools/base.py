"""
Base classes for MCP tools.

A tool executor receives arguments that already passed the tool's input
schema and returns a ``ToolResult``. Failures the calling model should see
are raised as ``ToolError`` and become ``isError`` results; anything else
escaping ``call`` is treated as an internal server fault.
"""

import inspect
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

from ..protocol.schemas import Tool, ToolResult, ToolSchema

logger = structlog.get_logger(__name__)


class ToolError(Exception):
    """Base exception for tool execution errors."""

    def __init__(
        self, message: str, code: str = "tool_error", details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}


class ToolValidationError(ToolError):
    """Error for arguments that pass the schema but are semantically invalid."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="validation_error", details=details)


class ToolExecutionError(ToolError):
    """Error during tool execution."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="execution_error", details=details)


class ToolExecutor(ABC):
    """Anything the dispatcher can invoke for a ``tools/call`` request."""

    @abstractmethod
    async def call(self, arguments: Dict[str, Any]) -> ToolResult:
        """
        Run the tool.

        Args:
            arguments: Arguments validated against the tool's input schema

        Returns:
            Tool execution result

        Raises:
            ToolError: For failures reported back to the model
        """


class BaseTool(ToolExecutor):
    """
    Base class for class-based tools.

    Subclasses set ``name`` and ``description``, describe their input with
    ``get_schema`` and implement ``execute``.
    """

    # Tool metadata (must be defined by subclasses)
    name: str = ""
    description: str = ""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize tool with configuration.

        Args:
            config: Tool-specific configuration
        """
        self.config = config or {}
        self.logger = logger.bind(tool=self.name)

    @abstractmethod
    def get_schema(self) -> Tool:
        """Get the tool schema definition."""

    @abstractmethod
    async def execute(self, arguments: Dict[str, Any]) -> ToolResult:
        """Execute the tool with validated arguments."""

    async def call(self, arguments: Dict[str, Any]) -> ToolResult:
        self.logger.debug("Executing tool", arguments=arguments)
        result = await self.execute(arguments)
        self.logger.info("Tool execution completed", success=not result.isError)
        return result

    def _create_parameter(
        self,
        param_type: str,
        description: str,
        enum: Optional[List[str]] = None,
        default: Optional[Any] = None,
        minimum: Optional[float] = None,
        maximum: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Helper to create JSON Schema parameter definitions."""
        param: Dict[str, Any] = {
            "type": param_type,
            "description": description,
        }

        if enum is not None:
            param["enum"] = enum
        if default is not None:
            param["default"] = default
        if minimum is not None:
            param["minimum"] = minimum
        if maximum is not None:
            param["maximum"] = maximum

        return param

    def _create_schema(
        self,
        parameters: Dict[str, Any],
        required: List[str],
    ) -> Tool:
        """Helper to create tool schema with proper JSON Schema format."""
        return Tool(
            name=self.name,
            description=self.description,
            inputSchema=ToolSchema(
                type="object",
                properties=parameters,
                required=required,
                additionalProperties=False,
            ),
        )


ToolFunction = Callable[[Dict[str, Any]], Awaitable[Any]]


class FunctionTool(ToolExecutor):
    """
    Adapts a plain async function to the executor interface.

    The function may return a ``ToolResult`` or a string, which is wrapped
    as a single text block.
    """

    def __init__(self, func: ToolFunction):
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"Tool function {func!r} must be an async function")
        self.func = func

    async def call(self, arguments: Dict[str, Any]) -> ToolResult:
        result = await self.func(arguments)
        if isinstance(result, ToolResult):
            return result
        if isinstance(result, str):
            return ToolResult.success(result)
        raise TypeError(
            f"Tool function {self.func.__name__} returned {type(result).__name__}, "
            "expected ToolResult or str"
        )
