"""Constants and token tables for the OPC UA client layer.

Timeouts are in seconds (float); publishing and sampling intervals are in milliseconds.

Well-known Nodes:
    ROOT_FOLDER_TOKEN: Browse token accepted in place of the root folder node id.
    SERVER_STATE_NODE_ID: Server_ServerStatus_State, read by the liveness probe.

Data Types:
    DATA_TYPES: Data type hints accepted by write.
    DEFAULT_DATA_TYPE: Hint used when none or an unknown one is given.

Subscriptions:
    MONITORED_ITEM_QUEUE_SIZE: Bounded discard-oldest queue size per monitored item.
"""

import logging
from typing import Any

_LOGGER = logging.getLogger(__name__)

# =============================================================================
# Well-known Nodes
# =============================================================================

ROOT_FOLDER_TOKEN = "RootFolder"

# Standard namespace-0 nodes addressable by name.
WELL_KNOWN_NODE_IDS: dict[str, str] = {
    ROOT_FOLDER_TOKEN: "i=84",
    "ObjectsFolder": "i=85",
    "TypesFolder": "i=86",
    "ViewsFolder": "i=87",
    "Server": "i=2253",
}

# Server_ServerStatus_State. Always present; 0 means Running.
SERVER_STATE_NODE_ID = "i=2259"
SERVER_STATE_RUNNING = 0

# =============================================================================
# Data Types
# =============================================================================

DATA_TYPES: tuple[str, ...] = (
    "Boolean",
    "SByte",
    "Byte",
    "Int16",
    "UInt16",
    "Int32",
    "UInt32",
    "Int64",
    "UInt64",
    "Float",
    "Double",
    "String",
)

DEFAULT_DATA_TYPE = "Double"

_INTEGER_TYPES = frozenset(
    {"SByte", "Byte", "Int16", "UInt16", "Int32", "UInt32", "Int64", "UInt64"}
)
_FLOAT_TYPES = frozenset({"Float", "Double"})

# =============================================================================
# Subscriptions
# =============================================================================

MONITORED_ITEM_QUEUE_SIZE = 10

# Minimum keep-alive count and the window (ms) it must cover.
MIN_KEEPALIVE_COUNT = 10
KEEPALIVE_WINDOW_MS = 10000
LIFETIME_TO_KEEPALIVE_RATIO = 3


def resolve_node_id(node_id: str) -> str:
    """Map a well-known node token (e.g. "RootFolder") to its node id, else return it unchanged."""
    return WELL_KNOWN_NODE_IDS.get(node_id.strip(), node_id.strip())


def resolve_data_type(data_type: str | None) -> str:
    """Resolve a data type hint case-insensitively, falling back to DEFAULT_DATA_TYPE.

    Args:
        data_type (str | None): The hint supplied by the caller.

    Returns:
        str: One of DATA_TYPES.
    """
    if data_type:
        lowered = data_type.strip().lower()
        for known in DATA_TYPES:
            if known.lower() == lowered:
                return known
        _LOGGER.warning(
            f"[client:resolve_data_type] Unknown data type '{data_type}', using '{DEFAULT_DATA_TYPE}'"
        )
    return DEFAULT_DATA_TYPE


def coerce_value(value: Any, data_type: str) -> Any:
    """Convert a JSON-ish value to the Python type matching an OPC UA data type.

    Strings are accepted for every type, since tool arguments frequently arrive as text.

    Args:
        value (Any): The value to convert.
        data_type (str): One of DATA_TYPES.

    Returns:
        Any: The converted value.

    Raises:
        ValueError: If the value cannot be represented as the requested type.
    """
    if data_type == "Boolean":
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in ("true", "1", "on"):
                return True
            if lowered in ("false", "0", "off"):
                return False
            raise ValueError(f"Cannot convert '{value}' to Boolean")
        if isinstance(value, int | float):
            return bool(value)
        raise ValueError(f"Cannot convert {value!r} to Boolean")
    if data_type in _INTEGER_TYPES:
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, float) and not value.is_integer():
            raise ValueError(f"Cannot convert {value!r} to {data_type} without losing precision")
        return int(value)
    if data_type in _FLOAT_TYPES:
        return float(value)
    if data_type == "String":
        return value if isinstance(value, str) else str(value)
    raise ValueError(f"Unsupported data type: {data_type}")
