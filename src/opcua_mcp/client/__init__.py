"""OPC UA client interface.

This package holds the protocol session seam used by the connection manager.

The package includes:
- The `ProtocolSession` contract and the `SessionFactory` type
- `OpcUaSession`, the asyncua implementation of the contract
- Value and event types passed from the session to the manager
- Token tables for well-known nodes and write data types

Classes:
    ProtocolSession: Protocol a session implementation must satisfy
    OpcUaSession: asyncua-backed session with a server-state watchdog
    CachedValue: Immutable value snapshot (value, data type, quality, timestamp)
    BrowseEntry: One browse result
    SessionEvent, SessionEventKind: Asynchronous session events
"""

from ._constants import (
    DATA_TYPES,
    DEFAULT_DATA_TYPE,
    MONITORED_ITEM_QUEUE_SIZE,
    ROOT_FOLDER_TOKEN,
    SERVER_STATE_NODE_ID,
    SERVER_STATE_RUNNING,
    coerce_value,
    resolve_data_type,
    resolve_node_id,
)
from ._protocol import ProtocolSession, SessionFactory
from ._session import OpcUaSession, classify_failure, data_value_to_cached
from ._types import (
    BrowseEntry,
    CachedValue,
    SessionEvent,
    SessionEventKind,
    is_good_quality,
)

__all__ = [
    "DATA_TYPES",
    "DEFAULT_DATA_TYPE",
    "MONITORED_ITEM_QUEUE_SIZE",
    "ROOT_FOLDER_TOKEN",
    "SERVER_STATE_NODE_ID",
    "SERVER_STATE_RUNNING",
    "coerce_value",
    "resolve_data_type",
    "resolve_node_id",
    "ProtocolSession",
    "SessionFactory",
    "OpcUaSession",
    "classify_failure",
    "data_value_to_cached",
    "BrowseEntry",
    "CachedValue",
    "SessionEvent",
    "SessionEventKind",
    "is_good_quality",
]
