"""
JSON-RPC message codec.

Turns transport frames into typed MCP messages and back. Decoding checks
the structural shape of a message before it reaches the dispatcher;
encoding is total for well-typed messages built by the server.
"""

import json
from typing import Any, Dict, Optional, Union

import structlog
from pydantic import ValidationError

from .schemas import (
    InvalidRequestError,
    MCPErrorResponse,
    MCPMessage,
    MCPNotification,
    MCPRequest,
    MCPResponse,
    Message,
    ParseError,
    RequestId,
)

logger = structlog.get_logger(__name__)


class EncodeError(Exception):
    """A message could not be serialized. Always a programming defect."""


def _recover_id(data: Dict[str, Any]) -> Optional[RequestId]:
    """Return the message id if it is present and well-typed."""
    request_id = data.get("id")
    if isinstance(request_id, bool):
        return None
    if isinstance(request_id, (str, int)):
        return request_id
    return None


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not valid JSON")


class MessageCodec:
    """Newline-free JSON codec for MCP messages."""

    def decode(self, frame: Union[bytes, str]) -> Message:
        """
        Decode a single frame.

        Args:
            frame: Raw frame as received from the transport

        Returns:
            The decoded message

        Raises:
            ParseError: If the frame is not valid JSON
            InvalidRequestError: If the JSON is not a valid message; carries
                the request id when one could be recovered
        """
        try:
            data = json.loads(frame, parse_constant=_reject_constant)
        except ValueError as e:
            # Also covers JSONDecodeError and UnicodeDecodeError
            raise ParseError(data={"details": str(e)})

        if isinstance(data, list):
            raise InvalidRequestError("Batch requests are not supported")
        if not isinstance(data, dict):
            raise InvalidRequestError("Message must be a JSON object")

        request_id = _recover_id(data)
        if "id" in data and data["id"] is not None and request_id is None:
            raise InvalidRequestError("Request id must be a string or an integer")

        # Responses from the peer are never answered
        if "method" not in data and ("result" in data or "error" in data):
            request_id = None

        if data.get("jsonrpc") != "2.0":
            raise InvalidRequestError(
                "Message must declare jsonrpc version 2.0", request_id=request_id
            )

        if "method" in data:
            model = MCPRequest if "id" in data else MCPNotification
        elif "error" in data:
            model = MCPErrorResponse
        elif "result" in data:
            model = MCPResponse
        else:
            raise InvalidRequestError(
                "Message is neither a request, a notification nor a response",
                request_id=request_id,
            )

        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise InvalidRequestError(
                f"Invalid {model.__name__} message",
                data={"errors": _summarize(e)},
                request_id=request_id,
            )

    def encode(self, message: MCPMessage) -> bytes:
        """
        Encode a message as a compact UTF-8 JSON frame (no trailing newline).

        Raises:
            EncodeError: If the message holds values JSON cannot represent
        """
        try:
            return json.dumps(
                message.to_dict(), separators=(",", ":"), ensure_ascii=False, allow_nan=False
            ).encode("utf-8")
        except (TypeError, ValueError) as e:
            logger.error(
                "Failed to encode message",
                message_type=type(message).__name__,
                error=str(e),
                exc_info=True,
            )
            raise EncodeError(f"Failed to encode {type(message).__name__}: {e}") from e


def _summarize(error: ValidationError) -> list:
    return [
        {"loc": ".".join(str(part) for part in item["loc"]), "msg": item["msg"]}
        for item in error.errors()
    ]
