"""
OPC UA MCP server.

Connects MCP clients to a single OPC UA controller (e.g. a Siemens S7-1500 PLC) and manages
the resources created on top of that session: the connection itself, server-side node
registrations and live subscriptions.

Subpackages:
    - config: configuration loading, validation and connect-parameter resolution.
    - client: the protocol session contract and its asyncua adapter.
    - resource_manager: connection supervisor, node/subscription registries, cleanup coordinator.
    - formatters: JSON-safe rendering of OPC UA values.
    - mcp_server: the FastMCP server exposing the manager as tools.
"""

import logging

from ._version import __version__

__all__ = ["__version__"]

_LOGGER = logging.getLogger(__name__)
_LOGGER.addHandler(logging.NullHandler())
