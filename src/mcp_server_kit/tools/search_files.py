"""
Search Files tool.

Case-insensitive substring search over the text files exposed as
resources, reporting matching uris with line numbers.
"""

import asyncio
from typing import Any, Dict, List, Sequence

from ..protocol.schemas import Resource, ResourceNotFoundError, Tool, ToolResult
from ..resources.files import FileResourceReader, is_text_mime_type
from .base import BaseTool, ToolValidationError


class SearchFilesTool(BaseTool):
    """Search the contents of file resources."""

    name = "search_files"
    description = "Search the text of exposed file resources for a phrase"

    def __init__(
        self,
        reader: FileResourceReader,
        resources: Sequence[Resource],
        config: Dict[str, Any],
    ):
        super().__init__(config)
        self.reader = reader
        self.resources = [
            r for r in resources if r.mimeType and is_text_mime_type(r.mimeType)
        ]
        self.max_results = config.get("max_results", 100)
        self.default_limit = config.get("default_limit", 10)

    def get_schema(self) -> Tool:
        return self._create_schema(
            parameters={
                "query": self._create_parameter("string", "Text to look for"),
                "limit": self._create_parameter(
                    "integer",
                    f"Maximum matches (1-{self.max_results})",
                    default=self.default_limit,
                    minimum=1,
                    maximum=self.max_results,
                ),
            },
            required=["query"],
        )

    async def execute(self, arguments: Dict[str, Any]) -> ToolResult:
        query = arguments["query"].strip()
        limit = arguments.get("limit", self.default_limit)

        if not query:
            raise ToolValidationError("Query cannot be empty")

        needle = query.lower()
        matches: List[Dict[str, Any]] = []
        for resource in self.resources:
            try:
                path = self.reader.resolve(resource.uri)
                text = await asyncio.to_thread(path.read_text, encoding="utf-8")
            except (ResourceNotFoundError, UnicodeDecodeError, OSError) as e:
                self.logger.debug("Skipping unreadable file", uri=resource.uri, error=str(e))
                continue

            for number, line in enumerate(text.splitlines(), start=1):
                if needle in line.lower():
                    matches.append({"uri": resource.uri, "line": number, "text": line.strip()})
                    if len(matches) >= limit:
                        break
            if len(matches) >= limit:
                break

        if not matches:
            return ToolResult.success(f"No matches for '{query}'")

        summary = f"Found {len(matches)} match(es) for '{query}':"
        for match in matches:
            summary += f"\n• {match['uri']}:{match['line']}: {match['text']}"
        return ToolResult.success(summary, data={"matches": matches, "count": len(matches)})
