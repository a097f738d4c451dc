"""
Connection and resource management for the OPC UA MCP server.

This package supervises the single OPC UA connection and the server-side resources
created on top of it.

Key Classes:
    ConnectionManager: Connection state machine, node registration, subscriptions and fault recovery.
    NodeRegistry: Registered-node entries keyed by server-issued handle.
    SubscriptionRegistry: Subscription entries with cached latest values.
    CleanupCoordinator: Ordered, best-effort teardown of subscriptions, registrations, session and transport.
    ConnectionState: DISCONNECTED, CONNECTING, CONNECTED, FAULTED.
    RegisteredNode, Subscription, SubscriptionTiming, ConnectionStatus: Data model.

Usage:
    Create one `ConnectionManager` per server (see `ConnectionManager.from_options`) and share it
    across requests. Always call `disconnect()` on shutdown.
"""

from ._cleanup import CleanupCoordinator, TeardownStep, run_teardown
from ._models import (
    ConnectionState,
    ConnectionStatus,
    RegisteredNode,
    Subscription,
    SubscriptionTiming,
)
from ._registry import (
    BaseRegistry,
    HandleGenerator,
    NodeRegistry,
    RegistrySnapshot,
    SubscriptionRegistry,
)
from ._supervisor import ConnectionManager
from ._utils import classify_connection_error, is_connection_loss

__all__ = [
    "CleanupCoordinator",
    "TeardownStep",
    "run_teardown",
    "ConnectionState",
    "ConnectionStatus",
    "RegisteredNode",
    "Subscription",
    "SubscriptionTiming",
    "BaseRegistry",
    "HandleGenerator",
    "NodeRegistry",
    "RegistrySnapshot",
    "SubscriptionRegistry",
    "ConnectionManager",
    "classify_connection_error",
    "is_connection_loss",
]
