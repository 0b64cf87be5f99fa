"""
Logging utilities for the MCP server.

Log records are rendered as JSON on stderr, since stdout carries the
protocol when the server runs over stdio. Every record carries the name
of the server that emitted it so hosts running several servers can tell
their stderr streams apart.
"""

import logging
import sys
from typing import Union

import structlog

from ..config.settings import ServerConfig

# Chatty below WARNING and of no interest to hosts
QUIET_LOGGERS = ("asyncio",)


def setup_logging(server: Union[ServerConfig, str] = "INFO") -> None:
    """
    Set up structured logging for the MCP server.

    Args:
        server: Server configuration, or a bare level name (DEBUG, INFO,
            WARNING, ERROR, CRITICAL)

    Raises:
        ValueError: If the level name is unknown
    """
    if isinstance(server, str):
        server = ServerConfig(log_level=server)

    level = logging.getLevelName(server.log_level)
    if not isinstance(level, int):
        raise ValueError(f"Invalid log level: {server.log_level}")

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(server=server.name)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level, force=True)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
