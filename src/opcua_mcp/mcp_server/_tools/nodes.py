"""
Node MCP Tools - Read, Write, Browse and Node Registration.

Provides MCP tools for working with individual nodes:
- opcua_read: Read the value of a node
- opcua_write: Write the value of a node
- opcua_browse: List the children of a node
- opcua_register_node: Register a node for optimized repeated access
- opcua_unregister_node: Release a registered node and its dependent subscriptions
- opcua_registered_nodes_list: List registered nodes

Node ids use the standard string form, e.g. 'ns=3;s="Motor"."Speed"' or 'i=2253'.
"""

import logging
from typing import Any

from mcp.server.fastmcp import Context

from opcua_mcp.client import ROOT_FOLDER_TOKEN
from opcua_mcp.formatters._json import (
    format_browse_entry,
    format_cached_value,
    format_registered_node,
)
from opcua_mcp.mcp_server._tools.mcp_server import mcp_server
from opcua_mcp.mcp_server._tools.shared import (
    _error_response,
    _get_connection_manager,
    _validation_error,
)

_LOGGER = logging.getLogger(__name__)


@mcp_server.tool()
async def opcua_read(context: Context, node_id: str) -> dict:
    """
    MCP Tool: Read the current value of a node.

    Args:
        context (Context): The MCP context object.
        node_id (str): The node to read, or a registered handle.

    Returns:
        dict: Structured result object with keys:
            - 'success' (bool): True if the server returned a good value.
            - 'value' (Any): The value, converted to JSON (timestamps as ISO 8601, bytes as base64).
            - 'dataType' (str): OPC UA data type name, e.g. 'Double'.
            - 'qualityCode' (str): Status code name, e.g. 'Good'.
            - 'timestamp' (str): Server timestamp in ISO 8601.
            - 'error' (str, optional): Error message on failure.
            - 'error_type' (str, optional): 'NotConnectedError', 'ReadRejectedError', ...
            - 'isError' (bool, optional): Present and True if this is an error response.

    Example Successful Response:
        {'success': True, 'value': 1450.0, 'dataType': 'Double', 'qualityCode': 'Good',
         'timestamp': '2025-01-01T12:00:00+00:00'}
    """
    _LOGGER.debug(f"[mcp_server:opcua_read] Invoked: node_id={node_id!r}")
    if not node_id:
        return _validation_error("opcua_read", "node_id is required")
    try:
        connection_manager = _get_connection_manager("opcua_read", context)
        value = await connection_manager.read(node_id)
        return {"success": True, **format_cached_value(value)}
    except Exception as e:
        return _error_response("opcua_read", e)


@mcp_server.tool()
async def opcua_write(
    context: Context,
    node_id: str,
    value: Any = None,
    data_type: str | None = None,
) -> dict:
    """
    MCP Tool: Write the value of a node.

    Args:
        context (Context): The MCP context object.
        node_id (str): The node to write, or a registered handle.
        value (Any): The value to write. Strings are converted to the data type.
        data_type (str, optional): Boolean, SByte, Byte, Int16, UInt16, Int32, UInt32, Int64,
            UInt64, Float, Double or String. Defaults to Double. Must match the node's type.

    Returns:
        dict: Structured result object with keys:
            - 'success' (bool): True if the server accepted the write.
            - 'qualityCode' (str): Status code name returned by the server.
            - 'dataType' (str): The data type that was written.
            - 'error' (str, optional): Error message on failure, e.g. "Write failed for '...': BadTypeMismatch".
            - 'error_type' (str, optional): 'WriteRejectedError', 'ValueError', ...
            - 'isError' (bool, optional): Present and True if this is an error response.
    """
    _LOGGER.info(
        f"[mcp_server:opcua_write] Invoked: node_id={node_id!r}, data_type={data_type!r}"
    )
    if not node_id or value is None:
        return _validation_error("opcua_write", "node_id and value are required")
    try:
        connection_manager = _get_connection_manager("opcua_write", context)
        quality_code, written_type = await connection_manager.write(
            node_id, value, data_type
        )
        return {"success": True, "qualityCode": quality_code, "dataType": written_type}
    except Exception as e:
        return _error_response("opcua_write", e)


@mcp_server.tool()
async def opcua_browse(context: Context, node_id: str = ROOT_FOLDER_TOKEN) -> dict:
    """
    MCP Tool: Browse the children of a node.

    Args:
        context (Context): The MCP context object.
        node_id (str, optional): The node to browse. Defaults to "RootFolder". The names
            ObjectsFolder, TypesFolder, ViewsFolder and Server are accepted too.

    Returns:
        dict: Structured result object with keys:
            - 'success' (bool): True if the browse succeeded.
            - 'nodes' (list[dict]): One entry per child with 'nodeId', 'browseName',
              'displayName', 'nodeClass' and 'isForward'.
            - 'error' (str, optional): Error message on failure.
            - 'isError' (bool, optional): Present and True if this is an error response.
    """
    _LOGGER.debug(f"[mcp_server:opcua_browse] Invoked: node_id={node_id!r}")
    try:
        connection_manager = _get_connection_manager("opcua_browse", context)
        entries = await connection_manager.browse(node_id or ROOT_FOLDER_TOKEN)
        return {"success": True, "nodes": [format_browse_entry(e) for e in entries]}
    except Exception as e:
        return _error_response("opcua_browse", e)


@mcp_server.tool()
async def opcua_register_node(context: Context, node_id: str) -> dict:
    """
    MCP Tool: Register a node for optimized repeated access.

    The node is read first; registration is refused if the read is not good. The returned
    handle can be used with opcua_read, opcua_write and opcua_subscribe (is_registered=True).

    Args:
        context (Context): The MCP context object.
        node_id (str): The node to register.

    Returns:
        dict: Structured result object with keys:
            - 'success' (bool): True if the node was registered.
            - 'registeredHandle' (str): The server-issued handle.
            - 'nodeId' (str): The registered node.
            - 'registeredAt' (str): Registration time in ISO 8601.
            - 'error' (str, optional): Error message on failure.
            - 'error_type' (str, optional): 'NodeNotAccessibleError', 'NotConnectedError', ...
            - 'isError' (bool, optional): Present and True if this is an error response.
    """
    _LOGGER.info(f"[mcp_server:opcua_register_node] Invoked: node_id={node_id!r}")
    if not node_id:
        return _validation_error("opcua_register_node", "node_id is required")
    try:
        connection_manager = _get_connection_manager("opcua_register_node", context)
        entry = await connection_manager.register_node(node_id)
        return {"success": True, **format_registered_node(entry)}
    except Exception as e:
        return _error_response("opcua_register_node", e)


@mcp_server.tool()
async def opcua_unregister_node(context: Context, registered_handle: str) -> dict:
    """
    MCP Tool: Release a registered node.

    Subscriptions targeting the handle are cancelled first.

    Args:
        context (Context): The MCP context object.
        registered_handle (str): Handle returned by opcua_register_node.

    Returns:
        dict: Structured result object with keys:
            - 'success' (bool): True if the node was released.
            - 'cascadedSubscriptionCount' (int): Number of subscriptions cancelled.
            - 'error' (str, optional): Error message on failure.
            - 'error_type' (str, optional): 'RegisteredNodeNotFoundError', ...
            - 'isError' (bool, optional): Present and True if this is an error response.
    """
    _LOGGER.info(
        f"[mcp_server:opcua_unregister_node] Invoked: registered_handle={registered_handle!r}"
    )
    if not registered_handle:
        return _validation_error(
            "opcua_unregister_node", "registered_handle is required"
        )
    try:
        connection_manager = _get_connection_manager("opcua_unregister_node", context)
        cascaded = await connection_manager.unregister_node(registered_handle)
        return {"success": True, "cascadedSubscriptionCount": cascaded}
    except Exception as e:
        return _error_response("opcua_unregister_node", e)


@mcp_server.tool()
async def opcua_registered_nodes_list(context: Context) -> dict:
    """
    MCP Tool: List registered nodes.

    Args:
        context (Context): The MCP context object.

    Returns:
        dict: Structured result object with keys:
            - 'success' (bool): True on success.
            - 'nodes' (list[dict]): Entries with 'registeredHandle', 'nodeId' and 'registeredAt'.
            - 'error' (str, optional): Error message on failure.
            - 'isError' (bool, optional): Present and True if this is an error response.
    """
    try:
        connection_manager = _get_connection_manager(
            "opcua_registered_nodes_list", context
        )
        nodes = await connection_manager.list_registered_nodes()
        return {"success": True, "nodes": [format_registered_node(n) for n in nodes]}
    except Exception as e:
        return _error_response("opcua_registered_nodes_list", e)
