"""
OPC UA MCP Server Tools Package.

This package contains the implementation of all OPC UA MCP tools organized by
functional area. Each module provides MCP tools decorated with @mcp_server.tool()
that are registered with the FastMCP server instance when the module is imported.

Modules:
    mcp_server: Server instance, lifespan and health route
    connection: Connect, disconnect and status
    nodes: Read, write, browse and node registration
    subscription: Subscriptions and cached values
    shared: Internal utility functions (not MCP tools)

All MCP tools follow consistent patterns:
    - Return structured dict responses with 'success' and 'error' keys
    - Never raise exceptions to the MCP layer
    - Use async/await for all I/O operations
"""

from . import connection, nodes, subscription  # noqa: F401
