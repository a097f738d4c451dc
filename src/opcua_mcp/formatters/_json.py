"""JSON formatters for OPC UA values and manager entries."""

import base64
import dataclasses
import enum
import uuid
from datetime import datetime
from typing import Any

from opcua_mcp.client import BrowseEntry, CachedValue
from opcua_mcp.resource_manager import ConnectionStatus, RegisteredNode, Subscription


def to_json_safe(value: Any) -> Any:
    """
    Convert a decoded OPC UA value into something `json.dumps` accepts.

    Handles the types asyncua decodes variants into: datetimes (ISO 8601), bytes
    (base64), GUIDs, enums (by name), node ids and qualified names (their string form),
    localized texts (their text), structures (as dicts) and nested lists.

    Args:
        value (Any): The decoded value.

    Returns:
        Any: A JSON-serializable equivalent.

    Example:
        >>> to_json_safe([b"\\x01\\x02", 3.5])
        ['AQI=', 3.5]
    """
    if isinstance(value, enum.Enum):
        return value.name
    if value is None or isinstance(value, bool | int | float | str):
        return value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bytes | bytearray):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, list | tuple):
        return [to_json_safe(item) for item in value]
    if isinstance(value, dict):
        return {str(key): to_json_safe(item) for key, item in value.items()}
    if hasattr(value, "Text") and hasattr(value, "Locale"):
        # LocalizedText
        return value.Text
    if hasattr(value, "to_string"):
        # NodeId, ExpandedNodeId, QualifiedName
        return value.to_string()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            field.name: to_json_safe(getattr(value, field.name))
            for field in dataclasses.fields(value)
        }
    return str(value)


def format_cached_value(value: CachedValue) -> dict[str, Any]:
    """
    Format a value snapshot as the read / subscription-value response shape.

    Returns:
        dict[str, Any]: {"value", "dataType", "qualityCode", "timestamp"}.
    """
    return {
        "value": to_json_safe(value.value),
        "dataType": value.data_type,
        "qualityCode": value.quality_code,
        "timestamp": value.timestamp.isoformat(),
    }


def format_browse_entry(entry: BrowseEntry) -> dict[str, Any]:
    return {
        "nodeId": entry.node_id,
        "browseName": entry.browse_name,
        "displayName": entry.display_name,
        "nodeClass": entry.node_class,
        "isForward": entry.is_forward,
    }


def format_registered_node(node: RegisteredNode) -> dict[str, Any]:
    return {
        "registeredHandle": node.registered_handle,
        "nodeId": node.node_id,
        "registeredAt": node.registered_at.isoformat(),
    }


def format_subscription(subscription: Subscription) -> dict[str, Any]:
    """
    Format a subscription entry for listing.

    Returns:
        dict[str, Any]: Handle, target, target kind, cached-value presence and timing.
    """
    return {
        "subscriptionHandle": subscription.subscription_handle,
        "target": subscription.target,
        "isRegisteredTarget": subscription.is_registered_target,
        "hasCachedValue": subscription.has_cached_value,
        "publishingIntervalMs": subscription.timing.publishing_interval_ms,
        "keepAliveCount": subscription.timing.keepalive_count,
        "lifetimeCount": subscription.timing.lifetime_count,
    }


def format_status(status: ConnectionStatus) -> dict[str, Any]:
    return {
        "connected": status.connected,
        "endpoint": status.endpoint,
        "sessionActive": status.session_active,
        "state": status.state.value,
    }
