"""
Echo tool.

Returns its input unchanged; handy for checking a host's wiring end to end.
"""

from typing import Any, Dict

from ..protocol.schemas import Tool, ToolResult
from .base import BaseTool, ToolValidationError


class EchoTool(BaseTool):
    """Tool that echoes a message back to the caller."""

    name = "echo"
    description = "Echo a message back, optionally repeated"

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.max_repeat = config.get("max_repeat", 10)

    def get_schema(self) -> Tool:
        return self._create_schema(
            parameters={
                "message": self._create_parameter("string", "Message to echo"),
                "repeat": self._create_parameter(
                    "integer",
                    f"How many times to repeat the message (1-{self.max_repeat})",
                    default=1,
                    minimum=1,
                    maximum=self.max_repeat,
                ),
            },
            required=["message"],
        )

    async def execute(self, arguments: Dict[str, Any]) -> ToolResult:
        message = arguments["message"]
        repeat = arguments.get("repeat", 1)

        if not message.strip():
            raise ToolValidationError("Message cannot be empty")

        return ToolResult.success("\n".join([message] * repeat))
