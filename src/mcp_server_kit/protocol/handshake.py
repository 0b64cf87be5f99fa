"""
Handshake coordination for an MCP session.

Tracks the one-time initialize exchange. Until it completes, only an
``initialize`` request is serviced; a second ``initialize`` leaves the
session unusable.
"""

from enum import Enum
from typing import Any, Dict, Optional

import structlog
from pydantic import ValidationError

from .registry import CapabilityRegistry
from .schemas import (
    LATEST_PROTOCOL_VERSION,
    SUPPORTED_PROTOCOL_VERSIONS,
    ClientInfo,
    InitializeParams,
    InvalidRequestError,
    MCPValidationError,
    ServerInfo,
)

logger = structlog.get_logger(__name__)


class SessionState(str, Enum):
    UNSTARTED = "unstarted"
    AWAITING_INITIALIZE = "awaiting_initialize"
    NEGOTIATING = "negotiating"
    READY = "ready"
    CLOSED = "closed"
    FAILED = "failed"


TERMINAL_STATES = frozenset({SessionState.CLOSED, SessionState.FAILED})


class HandshakeCoordinator:
    """State machine for the initialize/capabilities exchange."""

    def __init__(
        self,
        registry: CapabilityRegistry,
        server_info: Optional[ServerInfo] = None,
        instructions: Optional[str] = None,
    ):
        self.registry = registry
        self.server_info = server_info or ServerInfo()
        self.instructions = instructions
        self.state = SessionState.UNSTARTED
        self.protocol_version: Optional[str] = None
        self.client_info: Optional[ClientInfo] = None
        self.client_capabilities: Dict[str, Any] = {}
        self.server_capabilities: Dict[str, Any] = {}
        self.failure_reason: Optional[str] = None

    def begin(self) -> None:
        """Transport is open; wait for initialize."""
        if self.state is SessionState.UNSTARTED:
            self._transition(SessionState.AWAITING_INITIALIZE)

    def negotiate(self, params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Process an initialize request.

        Args:
            params: The request's params object

        Returns:
            The initialize result to send back

        Raises:
            InvalidRequestError: If a handshake already happened or the
                session is no longer usable
            MCPValidationError: If the params are malformed
        """
        if self.state is SessionState.UNSTARTED:
            self.begin()

        if self.state is not SessionState.AWAITING_INITIALIZE:
            previous = self.state
            if previous not in TERMINAL_STATES:
                self.fail("repeated initialize")
            raise InvalidRequestError(
                "Session already initialized",
                data={"state": previous.value},
            )

        self._transition(SessionState.NEGOTIATING)

        try:
            init = InitializeParams.model_validate(params or {})
        except ValidationError as e:
            self.fail("malformed initialize")
            raise MCPValidationError(
                "Invalid initialize params",
                data={"errors": [err["msg"] for err in e.errors()]},
            )

        if init.protocolVersion in SUPPORTED_PROTOCOL_VERSIONS:
            self.protocol_version = init.protocolVersion
        else:
            logger.warning(
                "Unsupported protocol version",
                requested=init.protocolVersion,
                supported=SUPPORTED_PROTOCOL_VERSIONS,
            )
            self.protocol_version = LATEST_PROTOCOL_VERSION

        self.client_info = init.clientInfo
        self.client_capabilities = init.capabilities
        self.server_capabilities = self._build_capabilities()

        logger.info(
            "Initializing MCP session",
            protocol_version=self.protocol_version,
            client_info=init.clientInfo.model_dump() if init.clientInfo else None,
            capabilities=list(self.server_capabilities),
        )

        result: Dict[str, Any] = {
            "protocolVersion": self.protocol_version,
            "capabilities": self.server_capabilities,
            "serverInfo": self.server_info.model_dump(),
        }
        if self.instructions:
            result["instructions"] = self.instructions
        return result

    def complete(self) -> None:
        """The initialize response was sent."""
        if self.state is SessionState.NEGOTIATING:
            self._transition(SessionState.READY)

    def require_ready(self) -> None:
        """
        Raises:
            InvalidRequestError: If the session is not ready for requests
        """
        if self.state is SessionState.READY:
            return
        if self.state in TERMINAL_STATES:
            raise InvalidRequestError("Session is not active", data={"state": self.state.value})
        raise InvalidRequestError("handshake required", data={"state": self.state.value})

    def supports(self, category: str) -> bool:
        return category in self.server_capabilities

    def fail(self, reason: str) -> None:
        if self.state not in TERMINAL_STATES:
            self.failure_reason = reason
            self._transition(SessionState.FAILED)

    def close(self) -> None:
        if self.state not in TERMINAL_STATES:
            self._transition(SessionState.CLOSED)

    @property
    def ready(self) -> bool:
        return self.state is SessionState.READY

    @property
    def terminated(self) -> bool:
        return self.state in TERMINAL_STATES

    def _build_capabilities(self) -> Dict[str, Any]:
        capabilities: Dict[str, Any] = {}
        if self.registry.has_resources:
            capabilities["resources"] = {"subscribe": False, "listChanged": False}
        if self.registry.has_tools:
            capabilities["tools"] = {"listChanged": False}
        return capabilities

    def _transition(self, new_state: SessionState) -> None:
        logger.debug("Session state change", old=self.state.value, new=new_state.value)
        self.state = new_state
