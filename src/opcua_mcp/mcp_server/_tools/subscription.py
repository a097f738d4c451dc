"""
Subscription MCP Tools - Monitor Node Values.

Provides MCP tools for push-based value monitoring with pull-based access:
- opcua_subscribe: Start monitoring a node or registered handle
- opcua_unsubscribe: Stop monitoring
- opcua_subscriptions_list: List active subscriptions
- opcua_subscription_value: Get the latest cached value of a subscription (no server round-trip)
"""

import logging

from mcp.server.fastmcp import Context

from opcua_mcp.formatters._json import format_cached_value, format_subscription
from opcua_mcp.mcp_server._tools.mcp_server import mcp_server
from opcua_mcp.mcp_server._tools.shared import (
    _error_response,
    _get_connection_manager,
    _validation_error,
)

_LOGGER = logging.getLogger(__name__)

DEFAULT_INTERVAL_MS = 1000
"""Default publishing interval in milliseconds when opcua_subscribe is called without one."""


@mcp_server.tool()
async def opcua_subscribe(
    context: Context,
    target: str,
    interval_ms: int = DEFAULT_INTERVAL_MS,
    is_registered: bool = False,
) -> dict:
    """
    MCP Tool: Subscribe to value changes of a node.

    The server pushes changes at most every `interval_ms` milliseconds; the latest value is
    cached and returned by opcua_subscription_value. The node is read once right away, so a
    readable node has a cached value immediately.

    AI Agent Usage:
    - Prefer this over repeated opcua_read calls for values polled frequently
    - Pass a handle from opcua_register_node with is_registered=True to monitor a registered node
    - Subscriptions end on opcua_unsubscribe, opcua_disconnect or when their registered node is released

    Args:
        context (Context): The MCP context object.
        target (str): Node id, or a registered handle if is_registered is True.
        interval_ms (int, optional): Publishing interval in milliseconds. Default 1000.
        is_registered (bool, optional): Whether target is a registered handle. Default False.

    Returns:
        dict: Structured result object with keys:
            - 'success' (bool): True if the subscription was created.
            - 'subscriptionHandle' (str): Handle for the other subscription tools.
            - 'keepAliveCount' (int), 'lifetimeCount' (int): Derived publish-cycle parameters.
            - 'hasCachedValue' (bool): True if the initial read produced a value.
            - 'error' (str, optional): Error message on failure.
            - 'isError' (bool, optional): Present and True if this is an error response.

    Example Successful Response:
        {'success': True, 'subscriptionHandle': 'sub_1c9f3a2b4d5e_1', 'target': 'ns=3;s="Speed"',
         'isRegisteredTarget': False, 'hasCachedValue': True, 'publishingIntervalMs': 500,
         'keepAliveCount': 20, 'lifetimeCount': 60}
    """
    _LOGGER.info(
        f"[mcp_server:opcua_subscribe] Invoked: target={target!r}, interval_ms={interval_ms}, "
        f"is_registered={is_registered}"
    )
    if not target:
        return _validation_error("opcua_subscribe", "target is required")
    try:
        connection_manager = _get_connection_manager("opcua_subscribe", context)
        subscription = await connection_manager.subscribe(
            target, interval_ms, is_registered=is_registered
        )
        return {"success": True, **format_subscription(subscription)}
    except Exception as e:
        return _error_response("opcua_subscribe", e)


@mcp_server.tool()
async def opcua_unsubscribe(context: Context, subscription_handle: str) -> dict:
    """
    MCP Tool: Terminate a subscription.

    Args:
        context (Context): The MCP context object.
        subscription_handle (str): Handle returned by opcua_subscribe.

    Returns:
        dict: Structured result object with keys:
            - 'success' (bool): True if the subscription was terminated.
            - 'error' (str, optional): Error message on failure.
            - 'error_type' (str, optional): 'SubscriptionNotFoundError', ...
            - 'isError' (bool, optional): Present and True if this is an error response.
    """
    _LOGGER.info(
        f"[mcp_server:opcua_unsubscribe] Invoked: subscription_handle={subscription_handle!r}"
    )
    if not subscription_handle:
        return _validation_error("opcua_unsubscribe", "subscription_handle is required")
    try:
        connection_manager = _get_connection_manager("opcua_unsubscribe", context)
        await connection_manager.unsubscribe(subscription_handle)
        return {"success": True}
    except Exception as e:
        return _error_response("opcua_unsubscribe", e)


@mcp_server.tool()
async def opcua_subscriptions_list(context: Context) -> dict:
    """
    MCP Tool: List active subscriptions.

    Args:
        context (Context): The MCP context object.

    Returns:
        dict: Structured result object with keys:
            - 'success' (bool): True on success.
            - 'subscriptions' (list[dict]): Entries with 'subscriptionHandle', 'target',
              'isRegisteredTarget', 'hasCachedValue' and timing fields.
            - 'error' (str, optional): Error message on failure.
            - 'isError' (bool, optional): Present and True if this is an error response.
    """
    try:
        connection_manager = _get_connection_manager(
            "opcua_subscriptions_list", context
        )
        subscriptions = await connection_manager.list_active_subscriptions()
        return {
            "success": True,
            "subscriptions": [format_subscription(s) for s in subscriptions],
        }
    except Exception as e:
        return _error_response("opcua_subscriptions_list", e)


@mcp_server.tool()
async def opcua_subscription_value(context: Context, subscription_handle: str) -> dict:
    """
    MCP Tool: Get the latest cached value of a subscription.

    Answers from the local cache without contacting the server.

    Args:
        context (Context): The MCP context object.
        subscription_handle (str): Handle returned by opcua_subscribe.

    Returns:
        dict: Structured result object with keys:
            - 'success' (bool): True if the subscription exists.
            - 'hasValue' (bool): False if no value has arrived yet.
            - 'value', 'dataType', 'qualityCode', 'timestamp': Present when hasValue is True.
            - 'error' (str, optional): Error message on failure.
            - 'error_type' (str, optional): 'SubscriptionNotFoundError' for unknown handles.
            - 'isError' (bool, optional): Present and True if this is an error response.
    """
    if not subscription_handle:
        return _validation_error(
            "opcua_subscription_value", "subscription_handle is required"
        )
    try:
        connection_manager = _get_connection_manager(
            "opcua_subscription_value", context
        )
        value = await connection_manager.get_latest_value(subscription_handle)
        if value is None:
            return {"success": True, "hasValue": False}
        return {"success": True, "hasValue": True, **format_cached_value(value)}
    except Exception as e:
        return _error_response("opcua_subscription_value", e)
