"""
MCP server implementation.

Owns the configuration and the capability registry, registers the built-in
handlers, and runs one session per connection over stdio or TCP.
"""

import asyncio
import signal
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import structlog

from .config.settings import Config
from .protocol.registry import CapabilityRegistry
from .protocol.schemas import Resource, ServerInfo, Tool, ToolSchema
from .protocol.session import Session
from .protocol.transport import StdioTransport, StreamTransport, Transport
from .resources.base import ResourceReader
from .resources.files import FileResourceReader
from .tools.base import FunctionTool, ToolExecutor, ToolFunction
from .tools.echo import EchoTool
from .tools.search_files import SearchFilesTool

logger = structlog.get_logger(__name__)


class MCPServer:
    """
    MCP server hosting one or more independent sessions.

    Capabilities are registered before the server starts serving; after
    that the registry is frozen and shared by all sessions.
    """

    def __init__(self, config: Optional[Config] = None):
        """
        Initialize the MCP server.

        Args:
            config: Server configuration
        """
        self.config = config or Config()
        self.registry = CapabilityRegistry()
        self.server_info = ServerInfo(name=self.config.server.name, version=self.config.version)
        self._running = False
        self._shutdown_event = asyncio.Event()
        self._sessions: Set[Session] = set()
        self._tcp_server: Optional[asyncio.AbstractServer] = None
        self._shutdown_task: Optional["asyncio.Task[None]"] = None

    def register_tool(self, tool: Tool, executor: ToolExecutor) -> None:
        self.registry.register_tool(tool, executor)

    def register_resource(self, resource: Resource, reader: ResourceReader) -> None:
        self.registry.register_resource(resource, reader)

    def tool(
        self,
        name: Optional[str] = None,
        description: Optional[str] = None,
        input_schema: Optional[Dict[str, Any]] = None,
    ) -> Callable[[ToolFunction], ToolFunction]:
        """
        Decorator registering an async function as a tool.

        The function receives the validated arguments dict and returns a
        ``ToolResult`` or a string.
        """

        def decorator(func: ToolFunction) -> ToolFunction:
            tool = Tool(
                name=name or func.__name__,
                description=description or (func.__doc__ or "").strip(),
                inputSchema=ToolSchema(**(input_schema or {})),
            )
            self.register_tool(tool, FunctionTool(func))
            return func

        return decorator

    async def start(self) -> None:
        """Register built-in handlers and freeze the registry."""
        if self._running:
            return

        logger.info("Starting MCP server", name=self.server_info.name)
        self._register_builtin_handlers()
        self.registry.freeze()
        self._running = True

        logger.info(
            "Server started successfully",
            tools_registered=len(self.registry.list_tools()),
            resources_registered=len(self.registry.list_resources()),
        )

    async def stop(self) -> None:
        """Close every live session and stop accepting connections."""
        if not self._running:
            return

        logger.info("Stopping MCP server")
        self._running = False
        self._shutdown_event.set()

        tcp_server, self._tcp_server = self._tcp_server, None
        if tcp_server is not None:
            tcp_server.close()

        sessions = list(self._sessions)
        if sessions:
            await asyncio.gather(*(session.close() for session in sessions))

        # Waits for open connections too, so sessions must be closed first
        if tcp_server is not None:
            await tcp_server.wait_closed()

        logger.info("Server stopped")

    def create_session(self, transport: Transport) -> Session:
        server_config = self.config.server
        return Session(
            transport,
            self.registry,
            server_info=self.server_info,
            instructions=server_config.instructions,
            max_concurrent_requests=server_config.max_concurrent_requests,
            request_timeout=server_config.request_timeout_seconds,
        )

    async def run_session(self, transport: Transport) -> Session:
        """Serve a single connection to completion."""
        session = self.create_session(transport)
        self._sessions.add(session)
        try:
            await session.run()
        finally:
            self._sessions.discard(session)
        return session

    async def run_stdio(self) -> None:
        """
        Run the server with stdio transport.

        This is the entry point for hosts that launch the server as a
        subprocess.
        """
        await self.start()
        transport = StdioTransport(max_frame_bytes=self.config.server.max_frame_bytes)
        self._setup_signal_handlers()

        try:
            await self.run_session(transport)
        finally:
            await self.stop()

    async def start_tcp(
        self, host: Optional[str] = None, port: Optional[int] = None
    ) -> List[Tuple[Any, ...]]:
        """
        Start accepting TCP connections, one session per connection.

        Returns:
            The socket names the server is listening on
        """
        await self.start()
        host = host or self.config.transport.host
        port = self.config.transport.port if port is None else port

        self._tcp_server = await asyncio.start_server(
            self._handle_connection,
            host,
            port,
            limit=self.config.server.max_frame_bytes + 1,
        )
        addresses = [sock.getsockname() for sock in self._tcp_server.sockets]
        logger.info("Listening for TCP connections", addresses=[str(a) for a in addresses])
        return addresses

    async def serve_tcp(self, host: Optional[str] = None, port: Optional[int] = None) -> None:
        """Serve TCP connections until a shutdown signal arrives."""
        await self.start_tcp(host, port)
        self._setup_signal_handlers()
        try:
            await self._shutdown_event.wait()
        finally:
            await self.stop()

    async def _handle_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        transport = StreamTransport(reader, writer, self.config.server.max_frame_bytes)
        logger.info("Accepted connection", peer=transport.peer)
        await self.run_session(transport)

    def _register_builtin_handlers(self) -> None:
        """Register the file resources and built-in tools enabled in configuration."""
        file_reader: Optional[FileResourceReader] = None
        file_resources: List[Resource] = []

        resources_config = self.config.resources
        if resources_config.enabled and resources_config.roots:
            file_reader = FileResourceReader(
                [Path(root) for root in resources_config.roots],
                max_file_size=resources_config.max_file_size,
            )
            file_resources = file_reader.discover()
            for resource in file_resources:
                self.register_resource(resource, file_reader)

        tools_config = self.config.tools
        if tools_config.echo.enabled:
            echo_tool = EchoTool(tools_config.echo.model_dump())
            self.register_tool(echo_tool.get_schema(), echo_tool)

        if tools_config.search_files.enabled and file_reader is not None:
            search_tool = SearchFilesTool(
                file_reader, file_resources, tools_config.search_files.model_dump()
            )
            self.register_tool(search_tool.get_schema(), search_tool)

    def _setup_signal_handlers(self) -> None:
        """Wire SIGINT/SIGTERM to a graceful shutdown."""
        if sys.platform == "win32":
            return

        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, self._request_shutdown, signum)

    def _request_shutdown(self, signum: int) -> None:
        logger.info("Received signal, initiating shutdown", signal=signum)
        if self._shutdown_task is None or self._shutdown_task.done():
            self._shutdown_task = asyncio.get_running_loop().create_task(self.stop())

    @property
    def running(self) -> bool:
        """Check if server is running."""
        return self._running

    @property
    def sessions(self) -> List[Session]:
        return list(self._sessions)

    def status(self) -> Dict[str, Any]:
        """Summary of server state for diagnostics."""
        return {
            "server_running": self._running,
            "active_sessions": len(self._sessions),
            "session_states": [session.state.value for session in self._sessions],
            "tools": [tool.name for tool in self.registry.list_tools()],
            "resource_count": len(self.registry.list_resources()),
        }
