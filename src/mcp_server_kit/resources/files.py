"""
File resources.

Exposes the files below a set of root directories as ``file://``
resources. Only files discovered at startup are registered; reads are
confined to the configured roots.
"""

import asyncio
import mimetypes
from pathlib import Path
from typing import List, Sequence
from urllib.parse import unquote, urlparse

import structlog

from ..protocol.schemas import MCPInternalError, Resource, ResourceData, ResourceNotFoundError
from .base import ResourceReader

logger = structlog.get_logger(__name__)

TEXT_MIME_TYPES = {"application/json", "application/xml", "application/x-yaml", "application/toml"}


def guess_mime_type(path: Path) -> str:
    mime_type, _ = mimetypes.guess_type(path.name)
    return mime_type or "application/octet-stream"


def is_text_mime_type(mime_type: str) -> bool:
    return mime_type.startswith("text/") or mime_type in TEXT_MIME_TYPES


class FileResourceReader(ResourceReader):
    """Serves files from configured root directories."""

    def __init__(self, roots: Sequence[Path], max_file_size: int = 1048576):
        self.roots = [Path(root).expanduser().resolve() for root in roots]
        self.max_file_size = max_file_size

    def discover(self) -> List[Resource]:
        """
        Walk the roots and describe every regular, non-hidden file.

        Missing roots are skipped with a warning.
        """
        resources: List[Resource] = []
        for root in self.roots:
            if not root.is_dir():
                logger.warning("Resource root is not a directory", root=str(root))
                continue

            for path in sorted(root.rglob("*")):
                relative = path.relative_to(root)
                if any(part.startswith(".") for part in relative.parts) or not path.is_file():
                    continue
                if not self._within_roots(path.resolve()):
                    logger.warning("Skipping link that leaves resource roots", path=str(path))
                    continue
                resources.append(
                    Resource(
                        uri=path.as_uri(),
                        name=relative.as_posix(),
                        description=f"File {relative.as_posix()} under {root.name or root}",
                        mimeType=guess_mime_type(path),
                    )
                )

        logger.info("Discovered file resources", count=len(resources), roots=len(self.roots))
        return resources

    def _within_roots(self, path: Path) -> bool:
        return any(path == root or root in path.parents for root in self.roots)

    def resolve(self, uri: str) -> Path:
        """
        Map a ``file://`` uri to a path inside one of the roots.

        Raises:
            ResourceNotFoundError: If the uri is not a file uri inside a root,
                or the file does not exist
        """
        parsed = urlparse(uri)
        if parsed.scheme != "file":
            raise ResourceNotFoundError(uri)

        path = Path(unquote(parsed.path)).resolve()
        if not self._within_roots(path):
            logger.warning("Rejected file uri outside resource roots", uri=uri)
            raise ResourceNotFoundError(uri)
        if not path.is_file():
            raise ResourceNotFoundError(uri)
        return path

    async def read(self, uri: str) -> ResourceData:
        path = self.resolve(uri)
        size = path.stat().st_size
        if size > self.max_file_size:
            raise MCPInternalError(
                f"Resource exceeds maximum size of {self.max_file_size} bytes",
                data={"uri": uri, "size": size},
            )

        raw = await asyncio.to_thread(path.read_bytes)
        mime_type = guess_mime_type(path)
        if is_text_mime_type(mime_type):
            try:
                return ResourceData(content=raw.decode("utf-8"), mime_type=mime_type)
            except UnicodeDecodeError:
                logger.debug("Text resource is not UTF-8, serving as blob", uri=uri)
        return ResourceData(content=raw, mime_type=mime_type)
