"""
Pytest configuration and fixtures for MCP Server Kit tests.
"""

from typing import Any, Dict, List

import pytest

from mcp_server_kit.config.settings import Config, ServerConfig, ToolsConfig, ToolConfig
from mcp_server_kit.protocol.registry import CapabilityRegistry
from mcp_server_kit.protocol.schemas import (
    Resource,
    ResourceData,
    ResourceNotFoundError,
    Tool,
    ToolResult,
)
from mcp_server_kit.resources.base import ResourceReader
from mcp_server_kit.tools.base import BaseTool, ToolExecutionError


class ForecastTool(BaseTool):
    """Weather-shaped tool used to exercise the two-tier error contract."""

    name = "get_forecast"
    description = "Get a weather forecast for a city"

    def __init__(self) -> None:
        super().__init__({})
        self.calls: List[Dict[str, Any]] = []

    def get_schema(self) -> Tool:
        return self._create_schema(
            parameters={
                "city": self._create_parameter("string", "City name"),
                "days": self._create_parameter("number", "Days to forecast", minimum=1, maximum=7),
            },
            required=["city"],
        )

    async def execute(self, arguments: Dict[str, Any]) -> ToolResult:
        self.calls.append(dict(arguments))
        city = arguments["city"]
        days = arguments.get("days", 1)

        if city == "Atlantis":
            raise ToolExecutionError("Upstream forecast service has no data for Atlantis")
        if city == "Crash":
            raise RuntimeError("forecast backend exploded")

        return ToolResult.success(f"{days}-day forecast for {city}: sunny")


class StaticResourceReader(ResourceReader):
    """Serves in-memory content keyed by uri."""

    def __init__(self, contents: Dict[str, Any]):
        self.contents = contents

    async def read(self, uri: str) -> ResourceData:
        if uri not in self.contents:
            raise ResourceNotFoundError(uri)
        return ResourceData(content=self.contents[uri])


@pytest.fixture
def forecast_tool():
    return ForecastTool()


@pytest.fixture
def static_reader():
    return StaticResourceReader(
        {
            "memo://readme": "Read me first",
            "memo://logo": b"\x89PNG\r\n",
            "memo://stale": "registered, but the reader lost it",
        }
    )


@pytest.fixture
def registry(forecast_tool, static_reader):
    """Registry with one tool and a handful of resources."""
    registry = CapabilityRegistry()
    registry.register_tool(forecast_tool.get_schema(), forecast_tool)
    registry.register_resource(
        Resource(uri="memo://readme", name="Readme", mimeType="text/plain"), static_reader
    )
    registry.register_resource(
        Resource(uri="memo://logo", name="Logo", mimeType="image/png"), static_reader
    )
    registry.register_resource(Resource(uri="memo://gone", name="Gone"), static_reader)
    return registry


@pytest.fixture
def init_params():
    return {
        "protocolVersion": "2024-11-05",
        "clientInfo": {"name": "test-client", "version": "1.0.0"},
        "capabilities": {},
    }


@pytest.fixture
def test_config(tmp_path):
    """Create a test configuration exposing a temporary directory."""
    (tmp_path / "notes.txt").write_text("alpha\nBeta release notes\ngamma\n")
    (tmp_path / "data.json").write_text('{"release": "beta"}')
    (tmp_path / ".secret").write_text("beta secret")
    return Config(
        version="0.1.0-test",
        server=ServerConfig(log_level="DEBUG", max_concurrent_requests=5, request_timeout_ms=5000),
        resources={"roots": [str(tmp_path)]},
        tools=ToolsConfig(echo=ToolConfig(), search_files=ToolConfig(max_results=20)),
    )
