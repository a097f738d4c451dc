"""The protocol session contract consumed by the connection manager.

`ProtocolSession` is the seam between the resource manager and the OPC UA stack.
`OpcUaSession` implements it on top of asyncua; tests substitute a fake.
"""

import asyncio
from collections.abc import Callable
from typing import Any, Protocol

from opcua_mcp.config import ConnectionConfig

from ._types import BrowseEntry, CachedValue, SessionEvent


class ProtocolSession(Protocol):
    """Protocol for a single OPC UA session plus its transport.

    A session instance is used for exactly one connect/teardown cycle. Asynchronous
    lifecycle events and value notifications are posted to `events` in arrival order;
    nothing is delivered through callbacks into the caller.

    Teardown is split so a caller can release server-side resources in order:
    `delete_subscription` and `unregister_nodes` first, then `close_session`,
    then `disconnect`. Each teardown method may raise; callers decide whether to continue.
    """

    events: "asyncio.Queue[SessionEvent]"

    async def connect(self, config: ConnectionConfig) -> None:
        """Open the transport and create and activate a session.

        Raises:
            ConfigError: If the configuration cannot be applied (e.g. a secured
                policy without a client certificate). No network activity happens.
            Exception: Any transport or service error, unclassified.
        """
        ...  # pragma: no cover

    async def close_session(self) -> None:
        """Close the session on the server."""
        ...  # pragma: no cover

    async def disconnect(self) -> None:
        """Close the secure channel and the transport."""
        ...  # pragma: no cover

    async def read(self, node_id: str) -> CachedValue:
        """Read the value attribute of a node.

        A non-good status is returned in `quality_code`, not raised.
        """
        ...  # pragma: no cover

    async def write(self, node_id: str, value: Any, data_type: str) -> str:
        """Write the value attribute of a node and return the symbolic status code."""
        ...  # pragma: no cover

    async def browse(self, node_id: str) -> list[BrowseEntry]:
        """Return the forward hierarchical references of a node."""
        ...  # pragma: no cover

    async def register_nodes(self, node_ids: list[str]) -> list[str]:
        """Register nodes for optimized access and return the server-issued handles, in order."""
        ...  # pragma: no cover

    async def unregister_nodes(self, registered_handles: list[str]) -> None:
        """Release registered node handles in a single request."""
        ...  # pragma: no cover

    async def create_subscription(
        self,
        subscription_handle: str,
        node_id: str,
        publishing_interval_ms: float,
        keepalive_count: int,
        lifetime_count: int,
        queue_size: int,
    ) -> None:
        """Create a publish cycle with one discard-oldest monitored item on `node_id`.

        Value changes are posted as VALUE_CHANGED events tagged with `subscription_handle`.
        """
        ...  # pragma: no cover

    async def delete_subscription(self, subscription_handle: str) -> None:
        """Terminate the publish cycle created for `subscription_handle`."""
        ...  # pragma: no cover


SessionFactory = Callable[[], ProtocolSession]
"""Zero-argument callable producing a fresh `ProtocolSession` for each connect."""
