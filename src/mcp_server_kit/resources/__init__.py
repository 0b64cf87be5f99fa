"""Resource readers."""

from .base import ResourceReader
from .files import FileResourceReader

__all__ = ["ResourceReader", "FileResourceReader"]
