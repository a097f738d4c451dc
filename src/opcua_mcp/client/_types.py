"""Value types exchanged between the protocol session and the resource manager."""

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


def is_good_quality(quality_code: str) -> bool:
    """True if a symbolic OPC UA status code name denotes a good result."""
    return quality_code.startswith("Good")


@dataclass(frozen=True)
class CachedValue:
    """Immutable snapshot of a node value as delivered by a read or a change notification.

    Attributes:
        value: The decoded value payload.
        data_type: Variant type name, e.g. "Double" or "Boolean".
        quality_code: Symbolic status code name, e.g. "Good" or "BadNodeIdUnknown".
        timestamp: Server timestamp of the value.
    """

    value: Any
    data_type: str
    quality_code: str
    timestamp: datetime

    @property
    def is_good(self) -> bool:
        return is_good_quality(self.quality_code)


@dataclass(frozen=True)
class BrowseEntry:
    """A single forward reference returned by browse."""

    node_id: str
    browse_name: str
    display_name: str
    node_class: str
    is_forward: bool = True


class SessionEventKind(str, enum.Enum):
    """Asynchronous events a protocol session posts to its event queue.

    Attributes:
        SESSION_CLOSED: The server closed or invalidated the session.
        KEEPALIVE_FAILURE: Keep-alive or publish responses stopped arriving in time.
        CONNECTION_LOST: The transport connection dropped.
        VALUE_CHANGED: A monitored item delivered a new value.
    """

    SESSION_CLOSED = "session_closed"
    KEEPALIVE_FAILURE = "keepalive_failure"
    CONNECTION_LOST = "connection_lost"
    VALUE_CHANGED = "value_changed"

    @property
    def is_failure(self) -> bool:
        return self is not SessionEventKind.VALUE_CHANGED


@dataclass(frozen=True)
class SessionEvent:
    """An event posted by a protocol session.

    Failure events carry a `detail` text. VALUE_CHANGED events carry the local
    subscription handle and the new value.
    """

    kind: SessionEventKind
    detail: str = ""
    subscription_handle: str | None = None
    value: CachedValue | None = field(default=None, compare=False)
