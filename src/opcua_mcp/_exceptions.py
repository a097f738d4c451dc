"""Custom exception types for the OPC UA MCP server.

Defines the exception hierarchy used by the connection supervisor, the node and
subscription registries, and the protocol session adapter. Every exception raised
on purpose by this package derives from `McpError`, so callers can catch the whole
family with a single except clause while still dispatching on the specific type.

Exception Hierarchy:
    - Base exceptions: McpError, InternalError (extends McpError and RuntimeError)
    - Configuration exceptions: ConfigError (extends McpError and ValueError)
    - Connection state exceptions: ConnectionStateError, AlreadyConnectedError, NotConnectedError
    - Connection exceptions: OpcUaConnectionError (carries a ConnectionErrorKind and the raw error text)
    - Quality exceptions: QualityError, NodeNotAccessibleError, ReadRejectedError, WriteRejectedError
    - Resource exceptions: ResourceError, RegistryItemNotFoundError (extends ResourceError and KeyError),
      RegisteredNodeNotFoundError, SubscriptionNotFoundError
    - Teardown exceptions: CleanupError (aggregate of teardown step failures)

Usage Example:
    ```python
    from opcua_mcp._exceptions import NotConnectedError, ReadRejectedError

    try:
        result = await manager.read("ns=3;s=\"Motor\".\"Speed\"")
    except NotConnectedError:
        logger.warning("Connect first")
    except ReadRejectedError as e:
        logger.error(f"Server rejected read: {e.quality_code}")
    ```
"""

import enum

__all__ = [
    # Base exceptions
    "McpError",
    "InternalError",
    # Configuration exceptions
    "ConfigError",
    # Connection state exceptions
    "ConnectionStateError",
    "AlreadyConnectedError",
    "NotConnectedError",
    # Connection exceptions
    "ConnectionErrorKind",
    "OpcUaConnectionError",
    # Quality exceptions
    "QualityError",
    "NodeNotAccessibleError",
    "ReadRejectedError",
    "WriteRejectedError",
    # Resource exceptions
    "ResourceError",
    "RegistryItemNotFoundError",
    "RegisteredNodeNotFoundError",
    "SubscriptionNotFoundError",
    # Teardown exceptions
    "CleanupError",
]


# Base Exceptions


class McpError(Exception):
    """Base exception for all OPC UA MCP errors.

    All exceptions raised deliberately by this package inherit from this class,
    either directly or through one of the more specific base classes.
    """

    pass


class InternalError(McpError, RuntimeError):
    """Internal errors indicating bugs in the implementation.

    Raised when an internal invariant is violated, e.g. the supervisor reports
    `CONNECTED` but holds no protocol session.
    """

    pass


# Configuration Exceptions


class ConfigError(McpError, ValueError):
    """Exception raised when connection parameters are incomplete or inconsistent.

    Raised by connect-parameter resolution before any network activity happens:
    - No endpoint was supplied
    - Password authentication was requested without both username and password
    - A secured security policy was requested without a client certificate and key
    """

    pass


# Connection State Exceptions


class ConnectionStateError(McpError):
    """Base exception for operations issued in the wrong connection state."""

    pass


class AlreadyConnectedError(ConnectionStateError):
    """Raised when `connect` is issued while the connection is not `DISCONNECTED`."""

    def __init__(self, message: str = "Already connected. Disconnect first."):
        super().__init__(message)


class NotConnectedError(ConnectionStateError):
    """Raised when an operation requiring an active session is issued while not `CONNECTED`."""

    def __init__(self, message: str = "Not connected to PLC"):
        super().__init__(message)


# Connection Exceptions


class ConnectionErrorKind(str, enum.Enum):
    """Coarse classification of connection-layer failures.

    Attributes:
        TIMEOUT: The server did not answer within the transport or request timeout.
        REFUSED: The endpoint actively refused the TCP connection.
        KEEPALIVE_MISCONFIGURED: The server rejected the requested keep-alive or
            lifetime parameters, or the session timed out because of them.
        UNKNOWN: Anything else; the raw error text is still preserved.
    """

    TIMEOUT = "timeout"
    REFUSED = "refused"
    KEEPALIVE_MISCONFIGURED = "keepalive_misconfigured"
    UNKNOWN = "unknown"


class OpcUaConnectionError(McpError):
    """Exception raised when connecting to the OPC UA server fails.

    The message carries an actionable diagnostic for the failure category, while
    `raw` preserves the text of the underlying error verbatim.

    Attributes:
        kind (ConnectionErrorKind): The failure category.
        raw (str): The underlying error text.
    """

    def __init__(self, kind: ConnectionErrorKind, message: str, raw: str):
        """Initialize the exception.

        Args:
            kind (ConnectionErrorKind): The failure category.
            message (str): Human-readable diagnostic for the category.
            raw (str): Text of the underlying error.
        """
        super().__init__(f"{message} (cause: {raw})")
        self.kind = kind
        self.raw = raw


# Quality Exceptions


class QualityError(McpError):
    """Base exception for operations the server answered with a non-good status code.

    Attributes:
        quality_code (str): The symbolic status code returned by the server.
    """

    def __init__(self, message: str, quality_code: str):
        super().__init__(message)
        self.quality_code = quality_code


class NodeNotAccessibleError(QualityError):
    """Raised by `register_node` when the verification read does not return a good status."""

    def __init__(self, node_id: str, quality_code: str):
        super().__init__(
            f"Node '{node_id}' is not accessible: {quality_code}", quality_code
        )
        self.node_id = node_id


class ReadRejectedError(QualityError):
    """Raised when a read completes at the transport level but returns a bad status."""

    def __init__(self, node_id: str, quality_code: str):
        super().__init__(f"Read failed for '{node_id}': {quality_code}", quality_code)
        self.node_id = node_id


class WriteRejectedError(QualityError):
    """Raised when a write completes at the transport level but returns a bad status."""

    def __init__(self, node_id: str, quality_code: str):
        super().__init__(f"Write failed for '{node_id}': {quality_code}", quality_code)
        self.node_id = node_id


# Resource Exceptions


class ResourceError(McpError):
    """Base exception for registry and resource bookkeeping errors."""

    pass


class RegistryItemNotFoundError(ResourceError, KeyError):
    """Exception raised when a handle is not present in a registry.

    Inherits from KeyError so that callers treating registries as mappings can
    keep catching KeyError.
    """

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message
        return str(self.args[0]) if self.args else ""


class RegisteredNodeNotFoundError(RegistryItemNotFoundError):
    """Raised when a registered-node handle is unknown to the node registry."""

    def __init__(self, registered_handle: str):
        super().__init__(f"Registered node '{registered_handle}' not found")
        self.registered_handle = registered_handle


class SubscriptionNotFoundError(RegistryItemNotFoundError):
    """Raised when a subscription handle is unknown to the subscription registry."""

    def __init__(self, subscription_handle: str):
        super().__init__(f"Subscription '{subscription_handle}' not found")
        self.subscription_handle = subscription_handle


# Teardown Exceptions


class CleanupError(McpError):
    """Aggregate of the step failures recorded during a teardown pass.

    Never raised to callers of `disconnect` or fault recovery; it is recorded on
    the supervisor (`last_cleanup_error`) and logged.

    Attributes:
        errors (list[tuple[str, BaseException]]): (step name, exception) pairs in
            the order they occurred.
    """

    def __init__(self, errors: list[tuple[str, BaseException]]):
        steps = ", ".join(f"{step}: {exc!r}" for step, exc in errors)
        super().__init__(f"{len(errors)} teardown step(s) failed: {steps}")
        self.errors = errors
