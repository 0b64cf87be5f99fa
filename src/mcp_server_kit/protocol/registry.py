"""
Capability registry.

Holds the resources and tools a server exposes together with the handlers
that serve them. Registration happens at startup; once the server starts
serving, the registry is frozen and shared read-only by every session.
"""

from dataclasses import dataclass
from typing import Any, Dict, List

import structlog
from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError

from ..resources.base import ResourceReader
from ..tools.base import ToolExecutor
from .schemas import Resource, Tool

logger = structlog.get_logger(__name__)


class RegistryError(Exception):
    """Base exception for registry errors."""

    pass


class DuplicateNameError(RegistryError):
    """A tool name or resource uri is already registered."""

    def __init__(self, kind: str, key: str):
        super().__init__(f"{kind} already registered: {key}")
        self.kind = kind
        self.key = key


class NotFoundError(RegistryError):
    """No tool or resource is registered under the given key."""

    def __init__(self, kind: str, key: str):
        super().__init__(f"{kind} not found: {key}")
        self.kind = kind
        self.key = key


class InvalidSchemaError(RegistryError):
    """A tool's input schema is not a valid JSON Schema."""


class RegistryFrozenError(RegistryError):
    """Registration was attempted after the server started serving."""


@dataclass(frozen=True)
class _ToolEntry:
    tool: Tool
    executor: ToolExecutor
    validator: Draft202012Validator


@dataclass(frozen=True)
class _ResourceEntry:
    resource: Resource
    reader: ResourceReader


class CapabilityRegistry:
    """Registration-ordered store of tools and resources."""

    def __init__(self) -> None:
        self._tools: Dict[str, _ToolEntry] = {}
        self._resources: Dict[str, _ResourceEntry] = {}
        self._frozen = False

    def register_tool(self, tool: Tool, executor: ToolExecutor) -> None:
        """
        Register a tool with its executor.

        Args:
            tool: Tool definition
            executor: Object implementing ``call(arguments)``

        Raises:
            DuplicateNameError: If a tool with the same name exists
            InvalidSchemaError: If the input schema is not valid JSON Schema
            RegistryFrozenError: If the registry is frozen
        """
        self._check_mutable()
        if tool.name in self._tools:
            raise DuplicateNameError("Tool", tool.name)

        schema = tool.inputSchema.to_dict()
        try:
            Draft202012Validator.check_schema(schema)
        except SchemaError as e:
            raise InvalidSchemaError(f"Invalid input schema for tool {tool.name}: {e.message}")

        self._tools[tool.name] = _ToolEntry(tool, executor, Draft202012Validator(schema))
        logger.info("Registered tool", tool_name=tool.name)

    def register_resource(self, resource: Resource, reader: ResourceReader) -> None:
        """
        Register a resource with the reader that serves its content.

        Raises:
            DuplicateNameError: If a resource with the same uri exists
            RegistryFrozenError: If the registry is frozen
        """
        self._check_mutable()
        if resource.uri in self._resources:
            raise DuplicateNameError("Resource", resource.uri)

        self._resources[resource.uri] = _ResourceEntry(resource, reader)
        logger.debug("Registered resource", uri=resource.uri)

    def freeze(self) -> None:
        if not self._frozen:
            self._frozen = True
            logger.info(
                "Capability registry frozen",
                tool_count=len(self._tools),
                resource_count=len(self._resources),
            )

    @property
    def frozen(self) -> bool:
        return self._frozen

    def list_tools(self) -> List[Tool]:
        return [entry.tool for entry in self._tools.values()]

    def list_resources(self) -> List[Resource]:
        return [entry.resource for entry in self._resources.values()]

    def get_tool(self, name: str) -> Tool:
        return self._tool_entry(name).tool

    def get_tool_executor(self, name: str) -> ToolExecutor:
        return self._tool_entry(name).executor

    def get_resource(self, uri: str) -> Resource:
        return self._resource_entry(uri).resource

    def get_resource_reader(self, uri: str) -> ResourceReader:
        return self._resource_entry(uri).reader

    def validate_arguments(self, name: str, arguments: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Validate tool arguments against the tool's input schema.

        Returns:
            One entry per violation, ordered by argument path; empty when valid
        """
        validator = self._tool_entry(name).validator
        errors = sorted(validator.iter_errors(arguments), key=lambda e: list(map(str, e.path)))
        return [
            {"path": "/".join(str(part) for part in error.path), "message": error.message}
            for error in errors
        ]

    @property
    def has_tools(self) -> bool:
        return bool(self._tools)

    @property
    def has_resources(self) -> bool:
        return bool(self._resources)

    def _tool_entry(self, name: str) -> _ToolEntry:
        try:
            return self._tools[name]
        except KeyError:
            raise NotFoundError("Tool", name) from None

    def _resource_entry(self, uri: str) -> _ResourceEntry:
        try:
            return self._resources[uri]
        except KeyError:
            raise NotFoundError("Resource", uri) from None

    def _check_mutable(self) -> None:
        if self._frozen:
            raise RegistryFrozenError("Registry is frozen; register capabilities before serving")
