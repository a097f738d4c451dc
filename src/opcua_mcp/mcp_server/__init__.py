"""
OPC UA MCP Server.

This package exposes an OPC UA client as MCP (Model Context Protocol) tools. A single
connection to one OPC UA server is shared by all requests; nodes registered and
subscriptions created through the tools live on that connection until it is closed or fails.

Tools Provided:
    Connection:
    - opcua_connect: Open a session to an OPC UA server.
    - opcua_disconnect: Release all resources and close the session.
    - opcua_status: Probe the server and report the connection state.

    Node Access:
    - opcua_read: Read the value of a node.
    - opcua_write: Write the value of a node with a data type hint.
    - opcua_browse: List the children of a node (default: the root folder).

    Node Registration:
    - opcua_register_node: Register a readable node for optimized access.
    - opcua_unregister_node: Release a registered node, cancelling dependent subscriptions.
    - opcua_registered_nodes_list: List registered nodes.

    Subscriptions:
    - opcua_subscribe: Monitor a node or registered handle for value changes.
    - opcua_unsubscribe: Stop monitoring.
    - opcua_subscriptions_list: List active subscriptions.
    - opcua_subscription_value: Get the latest cached value of a subscription.

Return Types:
    - All tools return structured dict objects, never raise exceptions to the MCP layer.
    - On success, 'success': True. On error, 'success': False, 'error': str,
      'error_type': str and 'isError': True.

See individual tool docstrings for full argument, return, and error details.
"""

from opcua_mcp.mcp_server._tools.mcp_server import mcp_server

__all__ = [
    "mcp_server",
]
