"""Base interface for resource readers."""

from abc import ABC, abstractmethod

from ..protocol.schemas import ResourceData


class ResourceReader(ABC):
    """Serves the content of one or more registered resources."""

    @abstractmethod
    async def read(self, uri: str) -> ResourceData:
        """
        Read the content behind a resource uri.

        Raises:
            ResourceNotFoundError: If the reader has no content for the uri
        """
