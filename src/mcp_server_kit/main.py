"""
Main entry point for the MCP server.

This module provides the command-line interface for the MCP server,
handling startup, configuration, and transport selection.
"""

import asyncio
import sys
from pathlib import Path
from typing import Optional, Tuple

import click
import structlog

from .config.settings import create_default_config, load_config
from .server import MCPServer
from .utils.logging import setup_logging


@click.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Set logging level",
)
@click.option(
    "--transport",
    type=click.Choice(["stdio", "tcp"], case_sensitive=False),
    help="Serve one host over stdio, or many hosts over TCP (default: from config)",
)
@click.option("--host", help="TCP bind address")
@click.option("--port", type=int, help="TCP port")
@click.option(
    "--root",
    "roots",
    multiple=True,
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Directory to expose as file resources (repeatable)",
)
def serve(
    config: Optional[Path] = None,
    log_level: Optional[str] = None,
    transport: Optional[str] = None,
    host: Optional[str] = None,
    port: Optional[int] = None,
    roots: Tuple[Path, ...] = (),
) -> None:
    """
    Run the MCP server.

    Exposes the configured file resources and tools to MCP hosts over the
    Model Context Protocol.
    """
    logger = structlog.get_logger()
    try:
        config_data = load_config(config_path=config)

        if log_level:
            config_data.server.log_level = log_level.upper()
        if roots:
            config_data.resources.roots.extend(str(root) for root in roots)
        if transport:
            config_data.transport.type = transport.lower()

        setup_logging(config_data.server)

        logger.info(
            "Starting MCP server",
            version=config_data.version,
            config_file=str(config) if config else "default",
            log_level=config_data.server.log_level,
            transport=config_data.transport.type,
        )

        server = MCPServer(config_data)

        if config_data.transport.type == "stdio":
            asyncio.run(server.run_stdio())
        else:
            asyncio.run(server.serve_tcp(host, port))

    except KeyboardInterrupt:
        logger.info("Server shutdown requested")
        sys.exit(0)
    except Exception as e:
        logger.error("Server startup failed", error=str(e), exc_info=True)
        sys.exit(1)


@click.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(path_type=Path),
    help="Path to save configuration file",
)
def init_config(config: Optional[Path] = None) -> None:
    """Initialize a configuration file with default settings."""
    config_path = config or Path("config.json")

    if config_path.exists():
        click.echo(f"Configuration file already exists: {config_path}")
        if not click.confirm("Overwrite?"):
            return

    try:
        create_default_config(config_path)
        click.echo(f"Created configuration file: {config_path}")
        click.echo("\nNext steps:")
        click.echo("1. Point the server at a directory to expose:")
        click.echo("   export MCP_SERVER_KIT_ROOT=/path/to/files")
        click.echo("2. Register the server with your MCP host, for example:")
        click.echo(f"   command: mcp-server-kit serve --config {config_path}")
    except OSError as e:
        click.echo(f"Failed to create configuration file: {e}", err=True)
        sys.exit(1)


@click.group()
@click.version_option(package_name="mcp-server-kit")
def cli() -> None:
    """MCP server CLI."""
    pass


cli.add_command(serve, name="serve")
cli.add_command(init_config, name="init")


if __name__ == "__main__":
    cli()
