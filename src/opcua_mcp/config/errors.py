"""
Custom exceptions for OPC UA MCP configuration files.
"""


class McpConfigurationError(Exception):
    """Base class for all OPC UA MCP configuration file errors."""

    pass


class ConnectionSectionConfigurationError(McpConfigurationError):
    """Raised when the `connection` section of the configuration file is invalid."""

    pass


class ClientSectionConfigurationError(McpConfigurationError):
    """Raised when the `client` or `server` section of the configuration file is invalid."""

    pass


__all__ = [
    "McpConfigurationError",
    "ConnectionSectionConfigurationError",
    "ClientSectionConfigurationError",
]
