"""
Shared Utilities - Internal Helper Functions.

Provides internal helper functions used across the MCP tool modules:
- Access to the lifespan objects from the MCP context
- The common error response shape

This module contains private helper functions not exposed as MCP tools.
"""

import logging

from mcp.server.fastmcp import Context

from opcua_mcp.config import ConfigManager
from opcua_mcp.resource_manager import ConnectionManager

_LOGGER = logging.getLogger(__name__)


def _get_connection_manager(function_name: str, context: Context) -> ConnectionManager:
    """
    Get the shared ConnectionManager from the MCP context.

    Args:
        function_name (str): Name of calling function for logging purposes
        context (Context): The MCP context object containing lifespan context

    Returns:
        ConnectionManager: The connection manager created by the lifespan.

    Raises:
        KeyError: If the lifespan context holds no connection manager.
    """
    _LOGGER.debug(
        f"[mcp_server:{function_name}] Accessing connection manager from context"
    )
    connection_manager: ConnectionManager = context.request_context.lifespan_context[
        "connection_manager"
    ]
    return connection_manager


def _get_config_manager(function_name: str, context: Context) -> ConfigManager:
    """Get the shared ConfigManager from the MCP context."""
    _LOGGER.debug(f"[mcp_server:{function_name}] Accessing config manager from context")
    config_manager: ConfigManager = context.request_context.lifespan_context[
        "config_manager"
    ]
    return config_manager


def _error_response(function_name: str, error: Exception) -> dict:
    """
    Log a tool failure and build the structured error response.

    Returns:
        dict: {'success': False, 'error': str, 'error_type': str, 'isError': True}
    """
    _LOGGER.error(
        f"[mcp_server:{function_name}] Failed: {error!r}",
        exc_info=True,
    )
    return {
        "success": False,
        "error": str(error),
        "error_type": type(error).__name__,
        "isError": True,
    }


def _validation_error(function_name: str, message: str) -> dict:
    """Build the error response for a missing or invalid tool argument."""
    _LOGGER.warning(f"[mcp_server:{function_name}] Invalid arguments: {message}")
    return {
        "success": False,
        "error": message,
        "error_type": "ValidationError",
        "isError": True,
    }
