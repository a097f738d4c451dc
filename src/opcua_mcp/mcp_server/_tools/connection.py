"""
Connection MCP Tools - Connect, Disconnect and Status.

Provides MCP tools for the lifecycle of the single OPC UA connection:
- opcua_connect: Open a session to an OPC UA server
- opcua_disconnect: Release all resources and close the session
- opcua_status: Probe the server and report the connection state
"""

import logging

from mcp.server.fastmcp import Context

from opcua_mcp.config import get_connection_defaults, resolve_connection_config
from opcua_mcp.formatters._json import format_status
from opcua_mcp.mcp_server._tools.mcp_server import mcp_server
from opcua_mcp.mcp_server._tools.shared import (
    _error_response,
    _get_config_manager,
    _get_connection_manager,
)

_LOGGER = logging.getLogger(__name__)


@mcp_server.tool()
async def opcua_connect(
    context: Context,
    endpoint: str | None = None,
    security_policy: str | None = None,
    security_mode: str | None = None,
    auth_type: str | None = None,
    username: str | None = None,
    password: str | None = None,
) -> dict:
    """
    MCP Tool: Connect to an OPC UA server.

    Opens a session to the server. Only one connection exists at a time; disconnect first to
    switch servers. Arguments left out fall back to the `connection` section of the
    configuration file.

    AI Agent Usage:
    - Call this before any read, write, browse, register or subscribe tool
    - Use opcua_status to check whether a connection is already open
    - On failure, 'error_type' tells timeouts, refused connections and configuration problems apart

    Args:
        context (Context): The MCP context object.
        endpoint (str, optional): Endpoint URL, e.g. "opc.tcp://192.168.0.1:4840".
        security_policy (str, optional): None, Basic128Rsa15, Basic256, Basic256Sha256,
            Aes128Sha256RsaOaep or Aes256Sha256RsaPss. Unknown values mean None.
        security_mode (str, optional): None, Sign or SignAndEncrypt. Unknown values mean None.
        auth_type (str, optional): "Anonymous" (default) or "UserPassword".
        username (str, optional): Username for UserPassword authentication.
        password (str, optional): Password for UserPassword authentication.

    Returns:
        dict: Structured result object with keys:
            - 'success' (bool): True if the connection was opened.
            - 'endpoint' (str): The connected endpoint.
            - 'error' (str, optional): Error message if the connection failed.
            - 'error_type' (str, optional): Exception class name, e.g. 'OpcUaConnectionError'.
            - 'isError' (bool, optional): Present and True if this is an error response.

    Example Successful Response:
        {'success': True, 'endpoint': 'opc.tcp://192.168.0.1:4840'}

    Example Error Response:
        {'success': False, 'error': 'Already connected. Disconnect first.',
         'error_type': 'AlreadyConnectedError', 'isError': True}
    """
    _LOGGER.info(f"[mcp_server:opcua_connect] Invoked: endpoint={endpoint!r}")
    try:
        connection_manager = _get_connection_manager("opcua_connect", context)
        config_manager = _get_config_manager("opcua_connect", context)
        defaults = await get_connection_defaults(config_manager)

        config = resolve_connection_config(
            endpoint,
            security_policy=security_policy,
            security_mode=security_mode,
            auth_type=auth_type,
            username=username,
            password=password,
            defaults=defaults,
        )
        connected = await connection_manager.connect(config)
        _LOGGER.info(f"[mcp_server:opcua_connect] Success: connected to {connected}")
        return {"success": True, "endpoint": connected}
    except Exception as e:
        return _error_response("opcua_connect", e)


@mcp_server.tool()
async def opcua_disconnect(context: Context) -> dict:
    """
    MCP Tool: Disconnect from the OPC UA server.

    Terminates all subscriptions, releases all registered nodes, closes the session and the
    transport. Safe to call when not connected. Teardown problems on the server side do not
    make this tool fail; local state is always reset.

    Args:
        context (Context): The MCP context object.

    Returns:
        dict: Structured result object with keys:
            - 'success' (bool): True once the connection is closed.
            - 'error' (str, optional): Error message if the context was unusable.
            - 'isError' (bool, optional): Present and True if this is an error response.

    Example Successful Response:
        {'success': True}
    """
    _LOGGER.info("[mcp_server:opcua_disconnect] Invoked")
    try:
        connection_manager = _get_connection_manager("opcua_disconnect", context)
        await connection_manager.disconnect()
        if connection_manager.last_cleanup_error is not None:
            _LOGGER.warning(
                f"[mcp_server:opcua_disconnect] Teardown reported errors: "
                f"{connection_manager.last_cleanup_error}"
            )
        return {"success": True}
    except Exception as e:
        return _error_response("opcua_disconnect", e)


@mcp_server.tool()
async def opcua_status(context: Context) -> dict:
    """
    MCP Tool: Report the connection status.

    While connected, reads the server state to verify the session is alive. If the check
    fails, the connection is marked faulted, cleanup starts in the background and
    'connected' is False.

    Args:
        context (Context): The MCP context object.

    Returns:
        dict: Structured result object with keys:
            - 'success' (bool): True if the status was determined.
            - 'connected' (bool): True if connected and the server answered the liveness check.
            - 'endpoint' (str | None): Endpoint of the current connection.
            - 'sessionActive' (bool): True if a session is held and not faulted.
            - 'state' (str): 'disconnected', 'connecting', 'connected' or 'faulted'.
            - 'lastFaultReason' (str, optional): Why the last fault happened, if any.
            - 'error' (str, optional): Error message if the status could not be determined.
            - 'isError' (bool, optional): Present and True if this is an error response.

    Example Successful Response:
        {'success': True, 'connected': True, 'endpoint': 'opc.tcp://plc:4840',
         'sessionActive': True, 'state': 'connected'}
    """
    _LOGGER.debug("[mcp_server:opcua_status] Invoked")
    try:
        connection_manager = _get_connection_manager("opcua_status", context)
        status = await connection_manager.get_status()
        result: dict = {"success": True, **format_status(status)}
        if connection_manager.last_fault_reason is not None:
            result["lastFaultReason"] = connection_manager.last_fault_reason
        return result
    except Exception as e:
        return _error_response("opcua_status", e)
