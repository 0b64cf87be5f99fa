"""
Unit tests for the per-connection session loop.
"""

import asyncio
import json

import pytest

from mcp_server_kit.protocol.handshake import SessionState
from mcp_server_kit.protocol.registry import CapabilityRegistry
from mcp_server_kit.protocol.schemas import EmbeddedResource, Tool, ToolResult, ToolSchema
from mcp_server_kit.protocol.session import Session
from mcp_server_kit.protocol.transport import MemoryTransport, TransportError
from mcp_server_kit.tools.base import FunctionTool


def feed(transport, payload):
    transport.feed(json.dumps(payload).encode("utf-8"))


async def receive(transport):
    return json.loads(await transport.next_sent())


def start(registry, **kwargs):
    transport = MemoryTransport()
    session = Session(transport, registry, **kwargs)
    task = asyncio.create_task(session.run())
    return transport, session, task


async def handshake(transport, init_params):
    feed(transport, {"jsonrpc": "2.0", "id": 0, "method": "initialize", "params": init_params})
    response = await receive(transport)
    feed(transport, {"jsonrpc": "2.0", "method": "notifications/initialized"})
    return response


def call(request_id, name, arguments):
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "method": "tools/call",
        "params": {"name": name, "arguments": arguments},
    }


class GatedTool:
    """Tool whose calls block until the test opens their gate."""

    def __init__(self, count):
        self.gates = [asyncio.Event() for _ in range(count)]
        self.started = 0
        self.all_started = asyncio.Event()
        self.cancelled = 0

    async def run(self, arguments):
        n = arguments["n"]
        self.started += 1
        if self.started == len(self.gates):
            self.all_started.set()
        try:
            await self.gates[n].wait()
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        return f"done {n}"

    def register(self, registry):
        tool = Tool(
            name="gated",
            inputSchema=ToolSchema(properties={"n": {"type": "integer"}}, required=["n"]),
        )
        registry.register_tool(tool, FunctionTool(self.run))


class BrokenPipeTransport(MemoryTransport):
    async def send(self, frame):
        raise TransportError("broken pipe")


class TestSession:
    """Test sessions end to end over an in-memory transport."""

    @pytest.mark.asyncio
    async def test_forecast_conversation(self, registry, init_params):
        transport, session, task = start(registry)

        init = await handshake(transport, init_params)
        assert init["id"] == 0
        assert init["result"]["protocolVersion"] == "2024-11-05"
        assert "tools" in init["result"]["capabilities"]

        feed(transport, {"jsonrpc": "2.0", "id": 1, "method": "tools/list"})
        listing = await receive(transport)
        assert listing["result"]["tools"][0]["name"] == "get_forecast"

        feed(transport, call(2, "get_forecast", {"city": "Paris"}))
        forecast = await receive(transport)
        assert forecast == {
            "jsonrpc": "2.0",
            "id": 2,
            "result": {
                "content": [{"type": "text", "text": "1-day forecast for Paris: sunny"}],
                "isError": False,
            },
        }

        feed(transport, call(3, "get_forecast", {"city": "Atlantis"}))
        failure = await receive(transport)
        assert failure["id"] == 3
        assert failure["result"]["isError"] is True

        feed(transport, call(4, "get_forecast", {"city": "Paris", "days": 30}))
        invalid = await receive(transport)
        assert invalid["error"]["code"] == -32602

        transport.feed_eof()
        await asyncio.wait_for(task, 1)

        assert session.state is SessionState.CLOSED
        assert transport.closed
        assert len(transport.sent) == 5

    @pytest.mark.asyncio
    async def test_request_before_initialize(self, registry, init_params):
        transport, session, task = start(registry)

        feed(transport, {"jsonrpc": "2.0", "id": "early", "method": "tools/list"})
        early = await receive(transport)

        assert early["id"] == "early"
        assert early["error"]["code"] == -32600
        assert early["error"]["message"] == "handshake required"

        # The connection stays usable
        init = await handshake(transport, init_params)
        assert "result" in init
        assert session.state is SessionState.READY

        transport.feed_eof()
        await asyncio.wait_for(task, 1)

    @pytest.mark.asyncio
    async def test_second_initialize_terminates_session(self, registry, init_params):
        transport, session, task = start(registry)
        await handshake(transport, init_params)
        feed(transport, {"jsonrpc": "2.0", "id": 1, "method": "ping"})
        await receive(transport)
        negotiated = dict(session.coordinator.server_capabilities)

        feed(transport, {"jsonrpc": "2.0", "id": 9, "method": "initialize", "params": init_params})
        rejected = await receive(transport)

        assert rejected["id"] == 9
        assert rejected["error"]["code"] == -32600
        await asyncio.wait_for(task, 1)
        assert session.state is SessionState.FAILED
        assert session.coordinator.server_capabilities == negotiated
        assert transport.closed

    @pytest.mark.asyncio
    async def test_malformed_initialize_terminates_session(self, registry):
        transport, session, task = start(registry)

        feed(transport, {"jsonrpc": "2.0", "id": 0, "method": "initialize", "params": {}})
        rejected = await receive(transport)

        assert rejected["error"]["code"] == -32602
        await asyncio.wait_for(task, 1)
        assert session.state is SessionState.FAILED

    @pytest.mark.asyncio
    async def test_undecodable_frames_are_dropped(self, registry, init_params):
        transport, session, task = start(registry)
        await handshake(transport, init_params)

        transport.feed(b"{not json")
        transport.feed(b'[{"jsonrpc":"2.0","id":1,"method":"ping"}]')
        transport.feed(b'{"jsonrpc":"2.0","id":true,"method":"ping"}')
        feed(transport, {"jsonrpc": "2.0", "id": 2, "method": "ping"})

        pong = await receive(transport)
        assert pong == {"jsonrpc": "2.0", "id": 2, "result": {}}
        assert len(transport.sent) == 2
        assert session.state is SessionState.READY

        transport.feed_eof()
        await asyncio.wait_for(task, 1)

    @pytest.mark.asyncio
    async def test_unencodable_result_still_answered(self, init_params):
        async def raw_blob(arguments):
            return ToolResult(content=[EmbeddedResource(resource={"uri": "x", "blob": b"raw"})])

        registry = CapabilityRegistry()
        registry.register_tool(Tool(name="raw_blob"), FunctionTool(raw_blob))
        transport, session, task = start(registry)
        await handshake(transport, init_params)

        feed(transport, call(2, "raw_blob", {}))
        feed(transport, {"jsonrpc": "2.0", "id": 3, "method": "ping"})
        responses = {}
        for _ in range(2):
            response = await receive(transport)
            responses[response["id"]] = response

        assert responses[2]["error"]["code"] == -32603
        assert "raw" not in json.dumps(responses[2])
        assert responses[3]["result"] == {}
        assert session.state is SessionState.READY

        transport.feed_eof()
        await asyncio.wait_for(task, 1)

    @pytest.mark.asyncio
    async def test_malformed_request_with_recoverable_id(self, registry, init_params):
        transport, session, task = start(registry)
        await handshake(transport, init_params)

        feed(transport, {"jsonrpc": "2.0", "id": 5, "method": 7})
        error = await receive(transport)

        assert error["id"] == 5
        assert error["error"]["code"] == -32600

        transport.feed_eof()
        await asyncio.wait_for(task, 1)

    @pytest.mark.asyncio
    async def test_notifications_and_responses_get_no_reply(self, registry, init_params):
        transport, session, task = start(registry)
        await handshake(transport, init_params)

        feed(
            transport,
            {"jsonrpc": "2.0", "method": "notifications/cancelled", "params": {"requestId": 1}},
        )
        feed(transport, {"jsonrpc": "2.0", "method": "notifications/unknown"})
        feed(transport, {"jsonrpc": "2.0", "id": 99, "result": {}})
        feed(transport, {"jsonrpc": "2.0", "id": 3, "method": "ping"})

        pong = await receive(transport)
        assert pong["id"] == 3
        assert len(transport.sent) == 2

        transport.feed_eof()
        await asyncio.wait_for(task, 1)

    @pytest.mark.asyncio
    async def test_concurrent_calls_correlate_out_of_order(self, init_params):
        count = 5
        gated = GatedTool(count)
        registry = CapabilityRegistry()
        gated.register(registry)
        transport, session, task = start(registry)
        await handshake(transport, init_params)

        for n in range(count):
            feed(transport, call(f"req-{n}", "gated", {"n": n}))
        await asyncio.wait_for(gated.all_started.wait(), 1)

        for n in reversed(range(count)):
            gated.gates[n].set()
            response = await receive(transport)
            assert response["id"] == f"req-{n}"
            assert response["result"]["content"][0]["text"] == f"done {n}"

        transport.feed_eof()
        await asyncio.wait_for(task, 1)

    @pytest.mark.asyncio
    async def test_concurrency_limit(self, init_params):
        gated = GatedTool(3)
        registry = CapabilityRegistry()
        gated.register(registry)
        transport, session, task = start(registry, max_concurrent_requests=2)
        await handshake(transport, init_params)

        for n in range(3):
            feed(transport, call(n, "gated", {"n": n}))
        feed(transport, {"jsonrpc": "2.0", "id": "marker", "method": "ping"})
        # The ping waits behind the full semaphore too
        await asyncio.sleep(0.05)
        assert gated.started == 2

        gated.gates[0].set()
        first = await receive(transport)
        assert first["id"] == 0
        await asyncio.sleep(0.05)
        assert gated.started == 3

        for gate in gated.gates:
            gate.set()
        ids = {(await receive(transport))["id"] for _ in range(3)}
        assert ids == {1, 2, "marker"}

        transport.feed_eof()
        await asyncio.wait_for(task, 1)

    @pytest.mark.asyncio
    async def test_duplicate_in_flight_id_rejected(self, init_params):
        gated = GatedTool(1)
        registry = CapabilityRegistry()
        gated.register(registry)
        transport, session, task = start(registry)
        await handshake(transport, init_params)

        feed(transport, call(7, "gated", {"n": 0}))
        await asyncio.wait_for(gated.all_started.wait(), 1)
        feed(transport, call(7, "gated", {"n": 0}))

        duplicate = await receive(transport)
        assert duplicate["id"] == 7
        assert duplicate["error"]["code"] == -32600

        gated.gates[0].set()
        original = await receive(transport)
        assert original["id"] == 7
        assert original["result"]["content"][0]["text"] == "done 0"

        await asyncio.sleep(0)
        # Once answered, the id may be reused
        feed(transport, {"jsonrpc": "2.0", "id": 7, "method": "ping"})
        reused = await receive(transport)
        assert reused == {"jsonrpc": "2.0", "id": 7, "result": {}}

        transport.feed_eof()
        await asyncio.wait_for(task, 1)

    @pytest.mark.asyncio
    async def test_close_abandons_in_flight_requests(self, init_params):
        gated = GatedTool(2)
        registry = CapabilityRegistry()
        gated.register(registry)
        transport, session, task = start(registry)
        await handshake(transport, init_params)

        feed(transport, call(1, "gated", {"n": 0}))
        feed(transport, call(2, "gated", {"n": 1}))
        await asyncio.wait_for(gated.all_started.wait(), 1)

        await session.close()
        await asyncio.wait_for(task, 1)

        assert gated.cancelled == 2
        assert session.state is SessionState.CLOSED
        assert transport.closed
        assert len(transport.sent) == 1

    @pytest.mark.asyncio
    async def test_eof_abandons_in_flight_requests(self, init_params):
        gated = GatedTool(1)
        registry = CapabilityRegistry()
        gated.register(registry)
        transport, session, task = start(registry)
        await handshake(transport, init_params)

        feed(transport, call(1, "gated", {"n": 0}))
        await asyncio.wait_for(gated.all_started.wait(), 1)
        transport.feed_eof()
        await asyncio.wait_for(task, 1)

        assert gated.cancelled == 1
        assert len(transport.sent) == 1

    @pytest.mark.asyncio
    async def test_transport_failure_fails_session(self, registry, init_params):
        transport = BrokenPipeTransport()
        session = Session(transport, registry)
        feed(transport, {"jsonrpc": "2.0", "id": 0, "method": "initialize", "params": init_params})

        await asyncio.wait_for(session.run(), 1)

        assert session.state is SessionState.FAILED
        assert session.coordinator.failure_reason.startswith("transport error")
        assert transport.closed

    @pytest.mark.asyncio
    async def test_sessions_are_isolated(self, registry, init_params):
        first_transport, first, first_task = start(registry)
        second_transport, second, second_task = start(registry)

        await handshake(first_transport, init_params)
        feed(second_transport, {"jsonrpc": "2.0", "id": 1, "method": "tools/list"})
        rejected = await receive(second_transport)

        assert first.state is SessionState.READY
        assert second.state is SessionState.AWAITING_INITIALIZE
        assert rejected["error"]["code"] == -32600

        first_transport.feed_eof()
        second_transport.feed_eof()
        await asyncio.wait_for(asyncio.gather(first_task, second_task), 1)
