"""
Per-connection MCP session.

Reads frames from a transport, decodes them, gates them on the handshake
state and dispatches requests. Requests that arrive after the handshake run
concurrently; their responses are written in completion order, each
carrying its own request id.
"""

import asyncio
from typing import Dict, Optional, Set, Union

import structlog

from .codec import EncodeError, MessageCodec
from .dispatcher import RequestDispatcher
from .handshake import HandshakeCoordinator, SessionState
from .registry import CapabilityRegistry
from .schemas import (
    InvalidRequestError,
    MCPError,
    MCPErrorResponse,
    MCPInternalError,
    MCPMessage,
    MCPNotification,
    MCPRequest,
    MCPResponse,
    RequestId,
    ServerInfo,
)
from .transport import Transport, TransportError

logger = structlog.get_logger(__name__)


class Session:
    """
    One MCP session bound to one transport connection.

    The session owns its handshake state and in-flight request bookkeeping;
    the only thing it shares with other sessions is the read-only registry.
    """

    def __init__(
        self,
        transport: Transport,
        registry: CapabilityRegistry,
        server_info: Optional[ServerInfo] = None,
        instructions: Optional[str] = None,
        max_concurrent_requests: int = 10,
        request_timeout: Optional[float] = None,
        codec: Optional[MessageCodec] = None,
    ):
        self.transport = transport
        self.codec = codec or MessageCodec()
        self.coordinator = HandshakeCoordinator(registry, server_info, instructions)
        self.dispatcher = RequestDispatcher(registry, self.coordinator, request_timeout)
        self._semaphore = asyncio.Semaphore(max_concurrent_requests)
        self._write_lock = asyncio.Lock()
        self._in_flight: Dict[RequestId, asyncio.Task] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False
        self.log = logger.bind(session=hex(id(self)))

    @property
    def state(self) -> SessionState:
        return self.coordinator.state

    async def run(self) -> None:
        """
        Serve the connection until the transport closes or the session fails.

        Transport failures end the session; they are logged, not raised.
        """
        self.coordinator.begin()
        self.log.info("Session started")

        try:
            async for frame in self.transport.receive():
                await self._handle_frame(frame)
                if self.coordinator.terminated:
                    break
        except TransportError as e:
            self.log.error("Transport failure, terminating session", error=str(e))
            self.coordinator.fail(f"transport error: {e}")
        finally:
            await self.close()

    async def close(self) -> None:
        """Close the session and abandon any in-flight requests."""
        if self._closed:
            return
        self._closed = True
        self.coordinator.close()

        pending = [task for task in self._tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            self.log.info("Abandoned in-flight requests", count=len(pending))

        await self.transport.close()
        self.log.info(
            "Session closed",
            state=self.coordinator.state.value,
            reason=self.coordinator.failure_reason,
        )

    async def _handle_frame(self, frame: bytes) -> None:
        try:
            message = self.codec.decode(frame)
        except MCPError as e:
            if e.request_id is None:
                self.log.warning(
                    "Dropping undecodable frame",
                    error_code=e.code,
                    error_message=e.message,
                    frame=frame[:100],
                )
                return
            self.log.warning("Rejecting malformed request", request_id=e.request_id, error=e.message)
            await self._send(MCPErrorResponse.from_error(e.request_id, e))
            return

        if isinstance(message, MCPRequest):
            await self._handle_request(message)
        elif isinstance(message, MCPNotification):
            self._handle_notification(message)
        else:
            self.log.warning("Received response in server mode", response_id=message.id)

    async def _handle_request(self, request: MCPRequest) -> None:
        if request.id in self._in_flight:
            error = InvalidRequestError(
                f"Request id already in flight: {request.id}", request_id=request.id
            )
            await self._send(MCPErrorResponse.from_error(request.id, error))
            return

        if request.method == "initialize" or not self.coordinator.ready:
            # Handshake traffic is serviced inline so later frames observe its outcome
            response = await self.dispatcher.dispatch(request)
            sent = await self._respond(request, response)
            if request.method == "initialize" and isinstance(sent, MCPResponse):
                self.coordinator.complete()
                self.log.info("Handshake complete", protocol_version=self.coordinator.protocol_version)
            return

        task = asyncio.create_task(self._process(request))
        self._in_flight[request.id] = task
        self._tasks.add(task)
        task.add_done_callback(lambda t, rid=request.id: self._forget(rid, t))

    async def _process(self, request: MCPRequest) -> None:
        async with self._semaphore:
            response = await self.dispatcher.dispatch(request)
        try:
            await self._respond(request, response)
        except TransportError as e:
            self.log.error("Failed to send response", request_id=request.id, error=str(e))
            self.coordinator.fail(f"transport error: {e}")
            await self.transport.close()

    def _forget(self, request_id: RequestId, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if self._in_flight.get(request_id) is task:
            del self._in_flight[request_id]

    def _handle_notification(self, notification: MCPNotification) -> None:
        if notification.method == "notifications/initialized":
            self.log.debug("Client reported initialized")
        elif notification.method == "notifications/cancelled":
            # No cancellation semantics; the request runs to completion
            self.log.info("Ignoring cancellation notification", params=notification.params)
        else:
            self.log.debug("Ignoring notification", method=notification.method)

    async def _send(self, message: MCPMessage) -> None:
        frame = self.codec.encode(message)
        async with self._write_lock:
            await self.transport.send(frame)
        self.log.debug(
            "Sent message",
            message_type=type(message).__name__,
            message_id=getattr(message, "id", None),
        )

    async def _respond(
        self, request: MCPRequest, response: Union[MCPResponse, MCPErrorResponse]
    ) -> MCPMessage:
        """
        Send the response to a request, substituting an internal error when
        the handler's payload cannot be encoded.

        Returns:
            The message that was actually sent
        """
        try:
            await self._send(response)
            return response
        except EncodeError as e:
            self.log.error("Dropping unencodable response", request_id=request.id, error=str(e))

        fallback = MCPErrorResponse.from_error(
            request.id, MCPInternalError("Response could not be encoded")
        )
        await self._send(fallback)
        return fallback
