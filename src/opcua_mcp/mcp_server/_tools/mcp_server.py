"""
MCP Server Infrastructure - FastMCP Server Instance and Application Lifespan.

Provides core MCP server infrastructure:
- mcp_server: The FastMCP server instance with registered tools
- app_lifespan: Application lifecycle manager that owns the connection manager
- health_check: GET /health route for the HTTP transports

Environment Variables:
    OPCUA_MCP_HOST: Host the HTTP transports bind to (default 127.0.0.1).
    OPCUA_MCP_PORT: Port the HTTP transports bind to (default 8000, or PORT if set).
"""

import logging
import os
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from mcp.server.fastmcp import FastMCP
from starlette.requests import Request
from starlette.responses import JSONResponse

from opcua_mcp._exceptions import McpError
from opcua_mcp.config import (
    ConfigManager,
    client_options_from_config,
    resolve_connection_config,
)
from opcua_mcp.resource_manager import ConnectionManager

_LOGGER = logging.getLogger(__name__)

mcp_host: str = os.environ.get("OPCUA_MCP_HOST", "127.0.0.1")
"""str: The host to bind the HTTP transports to. Defaults to 127.0.0.1 (localhost)."""

mcp_port: int = int(os.environ.get("OPCUA_MCP_PORT", os.environ.get("PORT", "8000")))
"""int: The port to bind the HTTP transports to. Defaults to 8000."""

_STARTED_AT = time.monotonic()

_lifespan_state: dict[str, Any] = {}
"""Objects created by the running lifespan, for routes that have no MCP context."""


async def _auto_connect(
    connection_manager: ConnectionManager, connection_defaults: dict[str, Any]
) -> None:
    try:
        config = resolve_connection_config(None, defaults=connection_defaults)
        await connection_manager.connect(config)
        _LOGGER.info(
            f"[mcp_server:app_lifespan] Auto-connected to {config.endpoint}"
        )
    except McpError as e:
        # The server still starts; opcua_connect can be retried by the client.
        _LOGGER.error(f"[mcp_server:app_lifespan] Auto-connect failed: {e}")


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[dict[str, object]]:
    """
    Async context manager for the FastMCP server application lifespan.

    Startup Process:
      - Creates a ConfigManager and loads and validates the configuration before the server
        accepts requests.
      - Creates the ConnectionManager from the `client` configuration section.
      - Connects to the configured endpoint if `connection.auto_connect` is set. A failed
        auto-connect is logged; the server still starts.

    Shutdown Process:
      - Disconnects, releasing subscriptions, registered nodes, the session and the transport.
      - This cleanup runs on normal shutdown, SIGTERM, or SIGINT signals.

    Args:
        server (FastMCP): The FastMCP server instance (required by the FastMCP lifespan API).

    Yields:
        dict[str, object]: A context dictionary for dependency injection into MCP tool requests:
            - 'config_manager' (ConfigManager): Instance for accessing configuration.
            - 'connection_manager' (ConnectionManager): The shared connection manager.
    """
    _LOGGER.info(f"[mcp_server:app_lifespan] Starting MCP server '{server.name}'")
    connection_manager = None

    try:
        config_manager = ConfigManager()

        _LOGGER.info("[mcp_server:app_lifespan] Loading configuration...")
        config = await config_manager.get_config()
        _LOGGER.info("[mcp_server:app_lifespan] Configuration loaded.")

        connection_manager = ConnectionManager.from_options(
            client_options_from_config(config.get("client"))
        )
        _lifespan_state["connection_manager"] = connection_manager

        connection_defaults = config.get("connection", {})
        if connection_defaults.get("auto_connect"):
            await _auto_connect(connection_manager, connection_defaults)

        yield {
            "config_manager": config_manager,
            "connection_manager": connection_manager,
        }
    finally:
        _LOGGER.info(
            f"[mcp_server:app_lifespan] Shutting down MCP server '{server.name}'"
        )
        _lifespan_state.pop("connection_manager", None)
        if connection_manager is not None:
            await connection_manager.disconnect()
        _LOGGER.info(f"[mcp_server:app_lifespan] MCP server '{server.name}' shut down.")


mcp_server = FastMCP("opcua-mcp", host=mcp_host, port=mcp_port, lifespan=app_lifespan)
"""
FastMCP Server Instance for the OPC UA MCP tools.

All functions decorated with @mcp_server.tool() in the sibling tool modules are registered
here. This object should not be instantiated more than once per process.
"""


@mcp_server.custom_route("/health", methods=["GET"])  # type: ignore[misc]
async def health_check(request: Request) -> JSONResponse:
    """
    Health Check Endpoint
    ---------------------
    Exposes a simple HTTP GET endpoint at /health for liveness and readiness checks.

    The connection flag is the manager's cached state; no server round-trip is made.

    Response:
        - HTTP 200 with JSON body:
          {"status": "ok", "connected": bool, "timestamp": ISO 8601, "uptime": seconds}
    """
    connection_manager: ConnectionManager | None = _lifespan_state.get(
        "connection_manager"
    )
    return JSONResponse(
        {
            "status": "ok",
            "connected": bool(
                connection_manager is not None and connection_manager.is_connected
            ),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(time.monotonic() - _STARTED_AT, 3),
        }
    )
