"""
Transport layer for MCP protocol communication.

Transports move newline-delimited frames between host and server. They know
nothing about the protocol; a session reads frames from ``receive()`` and
writes encoded messages with ``send()``.
"""

import asyncio
import sys
import threading
from abc import ABC, abstractmethod
from typing import AsyncIterator, List, Optional, Union

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_MAX_FRAME_BYTES = 4 * 1024 * 1024


class TransportError(Exception):
    """Base exception for transport errors."""

    pass


class Transport(ABC):
    """Bidirectional frame channel. Ordering is preserved per direction."""

    @abstractmethod
    async def send(self, frame: bytes) -> None:
        """
        Write one frame.

        Raises:
            TransportError: If the frame could not be written
        """

    @abstractmethod
    def receive(self) -> AsyncIterator[bytes]:
        """Iterate over incoming frames until the peer closes the channel."""

    @abstractmethod
    async def close(self) -> None:
        """Close the channel. Safe to call more than once."""


class StreamTransport(Transport):
    """
    Transport over an asyncio stream pair.

    Used for socket connections; each accepted connection gets its own
    instance.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES,
    ):
        self._reader = reader
        self._writer = writer
        self._max_frame_bytes = max_frame_bytes
        self._closed = False

    @property
    def peer(self) -> Optional[str]:
        peername = self._writer.get_extra_info("peername")
        return str(peername) if peername else None

    async def send(self, frame: bytes) -> None:
        if self._closed:
            raise TransportError("Transport is closed")
        try:
            self._writer.write(frame + b"\n")
            await self._writer.drain()
        except (ConnectionError, OSError) as e:
            logger.error("Failed to send frame", error=str(e))
            raise TransportError(f"Failed to send frame: {e}") from e

    async def receive(self) -> AsyncIterator[bytes]:
        while not self._closed:
            try:
                line = await self._reader.readuntil(b"\n")
            except asyncio.IncompleteReadError as e:
                # EOF; a trailing unterminated frame is still delivered
                if e.partial.strip():
                    yield self._check_size(e.partial.strip())
                logger.info("Peer closed the stream")
                return
            except asyncio.LimitOverrunError as e:
                raise TransportError(f"Frame exceeds stream buffer limit: {e}") from e
            except (ConnectionError, OSError) as e:
                raise TransportError(f"Failed to read frame: {e}") from e

            line = line.strip()
            if line:
                yield self._check_size(line)

    def _check_size(self, frame: bytes) -> bytes:
        if len(frame) > self._max_frame_bytes:
            raise TransportError(
                f"Frame of {len(frame)} bytes exceeds limit of {self._max_frame_bytes}"
            )
        return frame

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except (ConnectionError, OSError):
            pass


class StdioTransport(Transport):
    """
    Stdio transport for MCP communication.

    Handles JSON-RPC message exchange over stdin/stdout for hosts that
    launch the server as a subprocess. Stdin is read by a daemon thread so
    a blocked read never holds up shutdown; writes run in the default
    executor.
    """

    def __init__(self, max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES):
        self._max_frame_bytes = max_frame_bytes
        self._closed = False
        self._inbox: Optional["asyncio.Queue[Union[bytes, Exception, None]]"] = None
        self._reader_thread: Optional[threading.Thread] = None

    async def send(self, frame: bytes) -> None:
        if self._closed:
            raise TransportError("Transport is closed")
        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._write_stdout_sync, frame)
        except (OSError, ValueError) as e:
            logger.error("Failed to send frame", error=str(e))
            raise TransportError(f"Failed to send frame: {e}") from e

    def _write_stdout_sync(self, frame: bytes) -> None:
        """Synchronous stdout write with immediate flush."""
        sys.stdout.buffer.write(frame + b"\n")
        sys.stdout.buffer.flush()

    async def receive(self) -> AsyncIterator[bytes]:
        loop = asyncio.get_running_loop()
        self._inbox = asyncio.Queue()
        self._reader_thread = threading.Thread(
            target=self._read_stdin_sync,
            args=(loop, self._inbox),
            name="mcp-stdin-reader",
            daemon=True,
        )
        self._reader_thread.start()

        while not self._closed:
            item = await self._inbox.get()
            if item is None:
                logger.info("Received EOF on stdin")
                return
            if isinstance(item, Exception):
                raise TransportError(f"Failed to read from stdin: {item}") from item

            if len(item) > self._max_frame_bytes and not item.endswith(b"\n"):
                raise TransportError(f"Frame exceeds limit of {self._max_frame_bytes} bytes")

            line = item.strip()
            if line:
                yield line

    def _read_stdin_sync(
        self, loop: asyncio.AbstractEventLoop, inbox: "asyncio.Queue[Union[bytes, Exception, None]]"
    ) -> None:
        """Blocking reader loop; hands each line to the event loop."""
        while True:
            try:
                line = sys.stdin.buffer.readline(self._max_frame_bytes + 1)
            except (OSError, ValueError) as e:
                item: Union[bytes, Exception, None] = e
            else:
                item = line or None

            try:
                loop.call_soon_threadsafe(inbox.put_nowait, item)
            except RuntimeError:
                # Event loop already closed
                return
            if not isinstance(item, bytes):
                return

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._inbox is not None:
            self._inbox.put_nowait(None)


class MemoryTransport(Transport):
    """
    In-process transport backed by queues.

    The embedding side pushes frames with ``feed()`` and signals the end of
    input with ``feed_eof()``; frames written by the server are collected in
    ``sent`` and can be awaited with ``next_sent()``.
    """

    def __init__(self) -> None:
        self._inbox: "asyncio.Queue[Optional[bytes]]" = asyncio.Queue()
        self._outbox: "asyncio.Queue[bytes]" = asyncio.Queue()
        self.sent: List[bytes] = []
        self.closed = False

    def feed(self, frame: bytes) -> None:
        self._inbox.put_nowait(frame)

    def feed_eof(self) -> None:
        self._inbox.put_nowait(None)

    async def next_sent(self, timeout: float = 5.0) -> bytes:
        return await asyncio.wait_for(self._outbox.get(), timeout)

    async def send(self, frame: bytes) -> None:
        if self.closed:
            raise TransportError("Transport is closed")
        self.sent.append(frame)
        self._outbox.put_nowait(frame)

    async def receive(self) -> AsyncIterator[bytes]:
        while not self.closed:
            frame = await self._inbox.get()
            if frame is None:
                return
            yield frame

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(None)
