"""Data model of the connection manager: connection state, registry entries and subscription timing."""

import enum
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone

from opcua_mcp.client import CachedValue
from opcua_mcp.client._constants import (
    KEEPALIVE_WINDOW_MS,
    LIFETIME_TO_KEEPALIVE_RATIO,
    MIN_KEEPALIVE_COUNT,
)


class ConnectionState(str, enum.Enum):
    """State of the single connection owned by a `ConnectionManager`.

    Transitions:
        DISCONNECTED -> CONNECTING on connect.
        CONNECTING -> CONNECTED on success, -> DISCONNECTED after cleanup on failure.
        CONNECTED -> DISCONNECTED on explicit disconnect.
        CONNECTED -> FAULTED on a failed liveness probe or a session failure event.
        FAULTED -> DISCONNECTED once cleanup completes.
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAULTED = "faulted"


@dataclass(frozen=True)
class SubscriptionTiming:
    """Publish-cycle parameters derived from a publishing interval.

    Attributes:
        publishing_interval_ms: Requested publishing interval in milliseconds.
        keepalive_count: Publishing intervals without data before the server sends a keep-alive.
        lifetime_count: Publishing intervals without a publish request before the server
            discards the subscription.
    """

    publishing_interval_ms: float
    keepalive_count: int
    lifetime_count: int

    @classmethod
    def derive(cls, publishing_interval_ms: float) -> "SubscriptionTiming":
        """Derive keep-alive and lifetime counts from the publishing interval.

        The keep-alive count covers at least ten seconds and is never below 10; the
        lifetime count is three keep-alive periods.

        Args:
            publishing_interval_ms (float): Publishing interval in milliseconds. Must be positive.

        Returns:
            SubscriptionTiming: The derived parameters.

        Raises:
            ValueError: If the interval is not positive.

        Example:
            >>> SubscriptionTiming.derive(500)
            SubscriptionTiming(publishing_interval_ms=500, keepalive_count=20, lifetime_count=60)
        """
        if publishing_interval_ms <= 0:
            raise ValueError(
                f"Publishing interval must be positive, got {publishing_interval_ms}"
            )
        keepalive_count = max(
            MIN_KEEPALIVE_COUNT, math.ceil(KEEPALIVE_WINDOW_MS / publishing_interval_ms)
        )
        return cls(
            publishing_interval_ms=publishing_interval_ms,
            keepalive_count=keepalive_count,
            lifetime_count=keepalive_count * LIFETIME_TO_KEEPALIVE_RATIO,
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RegisteredNode:
    """A server-side node registration.

    Attributes:
        registered_handle: Server-issued node id alias.
        node_id: The node id that was registered.
        registered_at: When the registration completed.
    """

    registered_handle: str
    node_id: str
    registered_at: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class Subscription:
    """A live subscription with one monitored item.

    Entries are immutable; a value update replaces the entry with a copy carrying the new
    `latest_value`.

    Attributes:
        subscription_handle: Locally generated handle.
        target: Node id or registered handle the monitored item watches.
        is_registered_target: True if `target` is a registered handle.
        timing: Derived publish-cycle parameters.
        latest_value: Most recent value, or None until the first seed read or notification.
        created_at: When the subscription was created.
    """

    subscription_handle: str
    target: str
    is_registered_target: bool
    timing: SubscriptionTiming
    latest_value: CachedValue | None = None
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def has_cached_value(self) -> bool:
        return self.latest_value is not None


@dataclass(frozen=True)
class ConnectionStatus:
    """Result of a status query.

    Attributes:
        connected: True only if the connection is CONNECTED and the liveness probe passed.
        endpoint: Endpoint of the current connection, or None.
        session_active: True if a protocol session is held and not faulted.
        state: The connection state after the query.
    """

    connected: bool
    endpoint: str | None
    session_active: bool
    state: ConnectionState
