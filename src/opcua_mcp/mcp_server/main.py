"""
CLI entrypoint for the OPC UA MCP server.

This module sets up logging and global exception handling before starting the MCP server.
It provides a command-line interface to launch the server with a specified transport
(stdio, sse, or streamable-http).

See the project README for configuration details, available tools, and usage examples.
"""

from .._logging import setup_global_exception_logging, setup_logging  # noqa: E402

# Ensure logging is set up before any other imports
setup_logging()
# Ensure global exception logging is set up before any server code runs
setup_global_exception_logging()

import asyncio  # noqa: E402
import logging  # noqa: E402
import os  # noqa: E402
from typing import Literal  # noqa: E402

from ..config import ConfigManager, McpConfigurationError  # noqa: E402
from ._tools.mcp_server import mcp_server  # noqa: E402

_LOGGER = logging.getLogger(__name__)


def _apply_server_section() -> None:
    """
    Apply the `server` configuration section to the HTTP transport settings.

    OPCUA_MCP_HOST and OPCUA_MCP_PORT take precedence over the configuration file.
    """
    try:
        config = asyncio.run(ConfigManager().get_config())
    except McpConfigurationError as e:
        # The lifespan reloads the config and reports the same error on startup
        _LOGGER.warning(f"Could not read server settings from configuration: {e}")
        return

    server_section = config.get("server", {})
    if "host" in server_section and "OPCUA_MCP_HOST" not in os.environ:
        mcp_server.settings.host = server_section["host"]
    if "port" in server_section and "OPCUA_MCP_PORT" not in os.environ:
        mcp_server.settings.port = server_section["port"]


def run_server(
    transport: Literal["stdio", "sse", "streamable-http"],
) -> None:
    """
    Start the MCP server with the specified transport.

    Args:
        transport (str): The transport type ('stdio', 'sse', or 'streamable-http')
    """
    if transport != "stdio":
        _apply_server_section()

    try:
        _LOGGER.warning(
            f"Starting MCP server '{mcp_server.name}' with transport={transport} "
            f"(host={mcp_server.settings.host}, port={mcp_server.settings.port})"
        )
        mcp_server.run(transport=transport)
    finally:
        _LOGGER.info(f"MCP server '{mcp_server.name}' stopped.")


def main() -> None:
    """
    Command-line entry point for the OPC UA MCP server.

    Arguments:
        -t, --transport: Transport type for the MCP server ('stdio', 'sse', or 'streamable-http'). Default: 'stdio'.
    """
    import argparse

    parser = argparse.ArgumentParser(description="Start the OPC UA MCP server.")
    parser.add_argument(
        "-t",
        "--transport",
        choices=["stdio", "sse", "streamable-http"],
        default="stdio",
        help="Transport type for the MCP server (stdio, sse, or streamable-http). Default: stdio",
    )
    args = parser.parse_args()
    _LOGGER.info(f"CLI args: {vars(args)}")
    run_server(args.transport)


if __name__ == "__main__":
    main()
