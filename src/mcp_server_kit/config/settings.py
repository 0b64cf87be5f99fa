"""
Configuration management for the MCP server.

Handles loading, validation, and management of server configuration
from files and environment variables.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

CONFIG_PATH_ENV = "MCP_SERVER_KIT_CONFIG_PATH"
LOG_LEVEL_ENV = "MCP_SERVER_KIT_LOG_LEVEL"


def resolve_env_reference(value: Optional[str]) -> Optional[str]:
    """Resolve ``${VAR}`` references to environment variable values."""
    if isinstance(value, str) and value.startswith("${") and value.endswith("}"):
        return os.getenv(value[2:-1])
    return value


class ServerConfig(BaseModel):
    """Configuration for MCP server behavior."""

    name: str = Field(default="mcp-server-kit", description="Server name reported to hosts")
    log_level: str = Field(default="INFO", description="Logging level")
    instructions: Optional[str] = Field(
        default=None, description="Usage hints returned from initialize"
    )
    max_concurrent_requests: int = Field(
        default=10, ge=1, description="Maximum concurrent requests per session"
    )
    request_timeout_ms: Optional[int] = Field(
        default=30000, ge=1, description="Handler timeout in milliseconds; null disables it"
    )
    max_frame_bytes: int = Field(
        default=4 * 1024 * 1024, ge=1024, description="Maximum size of one message frame"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper

    @property
    def request_timeout_seconds(self) -> Optional[float]:
        if self.request_timeout_ms is None:
            return None
        return self.request_timeout_ms / 1000.0


class TransportConfig(BaseModel):
    """Configuration for the transport the server listens on."""

    type: Literal["stdio", "tcp"] = Field(default="stdio", description="Transport type")
    host: str = Field(default="127.0.0.1", description="TCP bind address")
    port: int = Field(default=8765, ge=0, le=65535, description="TCP port")


class ResourcesConfig(BaseModel):
    """Configuration for file resources."""

    enabled: bool = Field(default=True, description="Expose files as resources")
    roots: List[str] = Field(default_factory=list, description="Directories to expose")
    max_file_size: int = Field(default=1048576, ge=1, description="Maximum readable file size")

    @field_validator("roots", mode="before")
    @classmethod
    def resolve_roots(cls, v: Any) -> Any:
        """Resolve ``${VAR}`` entries and drop the ones that are unset."""
        if isinstance(v, list):
            resolved = [resolve_env_reference(item) for item in v]
            return [item for item in resolved if item]
        return v


class ToolConfig(BaseModel):
    """Configuration for individual tools."""

    model_config = ConfigDict(extra="allow")

    enabled: bool = Field(default=True, description="Whether tool is enabled")
    max_results: int = Field(default=100, description="Maximum results to return")
    default_limit: int = Field(default=10, description="Default result limit")


class ToolsConfig(BaseModel):
    """Configuration for the built-in tools."""

    echo: ToolConfig = Field(default_factory=ToolConfig)
    search_files: ToolConfig = Field(default_factory=ToolConfig)


class Config(BaseModel):
    """Main configuration object."""

    model_config = ConfigDict(extra="forbid")

    version: str = Field(default="0.1.0", description="Configuration version")
    server: ServerConfig = Field(default_factory=ServerConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    resources: ResourcesConfig = Field(default_factory=ResourcesConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from file and environment variables.

    Args:
        config_path: Path to configuration file. If None, looks for
                    the MCP_SERVER_KIT_CONFIG_PATH environment variable.

    Returns:
        Loaded and validated configuration

    Raises:
        FileNotFoundError: If config file specified but not found
        ValueError: If configuration is invalid
    """
    if config_path is None:
        env_path = os.getenv(CONFIG_PATH_ENV)
        if env_path:
            config_path = Path(env_path)

    config_data: Dict[str, Any] = {}
    if config_path and config_path.exists():
        with open(config_path, "r") as f:
            config_data = json.load(f)
    elif config_path:
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    env_overrides: Dict[str, Any] = {}

    log_level = os.getenv(LOG_LEVEL_ENV)
    if log_level:
        env_overrides.setdefault("server", {})["log_level"] = log_level

    if env_overrides:
        config_data = _deep_merge(config_data, env_overrides)

    return Config(**config_data)


def create_default_config(config_path: Path) -> None:
    """
    Create a default configuration file.

    Args:
        config_path: Path where to create the configuration file
    """
    default_config = {
        "version": "0.1.0",
        "server": {
            "name": "mcp-server-kit",
            "log_level": "INFO",
            "max_concurrent_requests": 10,
            "request_timeout_ms": 30000,
            "max_frame_bytes": 4194304,
        },
        "transport": {
            "type": "stdio",
            "host": "127.0.0.1",
            "port": 8765,
        },
        "resources": {
            "enabled": True,
            "roots": ["${MCP_SERVER_KIT_ROOT}"],
            "max_file_size": 1048576,
        },
        "tools": {
            "echo": {"enabled": True, "max_repeat": 10},
            "search_files": {"enabled": True, "max_results": 100, "default_limit": 10},
        },
    }

    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, "w") as f:
        json.dump(default_config, f, indent=2)


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep merge two dictionaries.

    Args:
        base: Base dictionary
        override: Override dictionary

    Returns:
        Merged dictionary
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result
