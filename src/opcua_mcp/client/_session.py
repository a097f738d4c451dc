"""asyncua implementation of the protocol session.

`OpcUaSession` wraps one `asyncua.Client` for one connect/teardown cycle. It splits
connect and teardown into their transport and session halves, so the connection
manager can release subscriptions and registered nodes before closing the session
and only then drop the transport.

Event delivery:
    asyncua invokes subscription handlers from its own publish loop. Handlers here never
    touch caller state; they translate notifications into `SessionEvent` objects and post
    them to `events`. A watchdog task reads the server state every `watchdog_interval`
    seconds and posts a single failure event when the read fails or the server is not
    running, then stops.

Example:
    ```python
    session = OpcUaSession(ClientOptions(request_timeout=10))
    await session.connect(resolve_connection_config("opc.tcp://plc:4840"))
    value = await session.read('ns=3;s="Motor"."Speed"')
    await session.close_session()
    await session.disconnect()
    ```
"""

import asyncio
import contextlib
import logging
from datetime import datetime, timezone
from typing import Any

from asyncua import Client, ua
from asyncua.crypto import security_policies

from opcua_mcp._exceptions import ConfigError, NotConnectedError
from opcua_mcp.config import ClientOptions, ConnectionConfig

from ._constants import (
    SERVER_STATE_NODE_ID,
    SERVER_STATE_RUNNING,
    coerce_value,
    resolve_node_id,
)
from ._types import BrowseEntry, CachedValue, SessionEvent, SessionEventKind

_LOGGER = logging.getLogger(__name__)

_SESSION_CLOSED_SIGNATURES = (
    "BadSessionClosed",
    "BadSessionIdInvalid",
    "BadSessionNotActivated",
)
_KEEPALIVE_SIGNATURES = ("BadTimeout", "BadNoSubscription")

# Service results that mean the session or channel is gone, not that the item was refused
_SERVICE_FAILURE_CODES = frozenset(
    {
        "BadSessionClosed",
        "BadSessionIdInvalid",
        "BadSessionNotActivated",
        "BadSecureChannelClosed",
        "BadSecureChannelIdInvalid",
        "BadConnectionClosed",
        "BadCommunicationError",
        "BadNotConnected",
        "BadServerNotConnected",
        "BadTimeout",
    }
)


def classify_failure(text: str) -> SessionEventKind:
    """Map the text of a failure (exception or status code name) to a failure event kind."""
    if any(signature in text for signature in _SESSION_CLOSED_SIGNATURES):
        return SessionEventKind.SESSION_CLOSED
    if any(signature in text for signature in _KEEPALIVE_SIGNATURES):
        return SessionEventKind.KEEPALIVE_FAILURE
    return SessionEventKind.CONNECTION_LOST


def data_value_to_cached(data_value: ua.DataValue) -> CachedValue:
    """Convert an asyncua DataValue to a `CachedValue`.

    The server timestamp is preferred, then the source timestamp, then the current UTC time.
    """
    variant = data_value.Value
    status = data_value.StatusCode
    timestamp = (
        data_value.ServerTimestamp
        or data_value.SourceTimestamp
        or datetime.now(timezone.utc)
    )
    return CachedValue(
        value=variant.Value if variant is not None else None,
        data_type=variant.VariantType.name if variant is not None else "Null",
        quality_code=status.name if status is not None else "Good",
        timestamp=timestamp,
    )


class _SubscriptionHandler:
    """asyncua subscription handler posting notifications to an event queue."""

    def __init__(
        self, subscription_handle: str, events: "asyncio.Queue[SessionEvent]"
    ) -> None:
        self._subscription_handle = subscription_handle
        self._events = events

    def datachange_notification(self, node: Any, val: Any, data: Any) -> None:
        value = data_value_to_cached(data.monitored_item.Value)
        self._events.put_nowait(
            SessionEvent(
                kind=SessionEventKind.VALUE_CHANGED,
                subscription_handle=self._subscription_handle,
                value=value,
            )
        )

    def status_change_notification(self, status: Any) -> None:
        code = getattr(status, "Status", status)
        if isinstance(code, ua.StatusCode) and code.is_good():
            return
        name = code.name if isinstance(code, ua.StatusCode) else str(code)
        _LOGGER.warning(
            f"[_SubscriptionHandler] Subscription '{self._subscription_handle}' status changed: {name}"
        )
        self._events.put_nowait(
            SessionEvent(
                kind=classify_failure(name),
                detail=f"Subscription status changed: {name}",
                subscription_handle=self._subscription_handle,
            )
        )


class OpcUaSession:
    """`ProtocolSession` implementation backed by `asyncua.Client`.

    Args:
        options (ClientOptions): Client tuning (timeouts, watchdog interval, certificates).
    """

    def __init__(self, options: ClientOptions | None = None) -> None:
        self._options = options or ClientOptions()
        self._client: Client | None = None
        self._transport_open = False
        self._session_open = False
        self._subscriptions: dict[str, Any] = {}
        self._watchdog_task: asyncio.Task[None] | None = None
        self.events: asyncio.Queue[SessionEvent] = asyncio.Queue()

    def _require_client(self) -> Client:
        if self._client is None or not self._session_open:
            raise NotConnectedError("OPC UA session is not open")
        return self._client

    async def _apply_security(self, client: Client, config: ConnectionConfig) -> None:
        if not config.is_secured:
            return
        if not (self._options.certificate and self._options.private_key):
            raise ConfigError(
                f"Security policy '{config.security_policy}' requires 'certificate' and "
                f"'private_key' in the 'client' configuration section"
            )
        policy_class = getattr(
            security_policies, f"SecurityPolicy{config.security_policy}"
        )
        await client.set_security(
            policy_class,
            self._options.certificate,
            self._options.private_key,
            mode=getattr(ua.MessageSecurityMode, config.security_mode),
        )

    async def connect(self, config: ConnectionConfig) -> None:
        if self._client is not None:
            raise ConfigError("A protocol session can only be connected once")

        client = Client(url=config.endpoint, timeout=self._options.request_timeout)
        client.name = self._options.application_name
        if config.username:
            client.set_user(config.username)
        if config.password:
            client.set_password(config.password)
        await self._apply_security(client, config)

        self._client = client
        _LOGGER.debug(f"[OpcUaSession] Opening transport to {config.endpoint}")
        await client.connect_socket()
        self._transport_open = True
        await client.send_hello()
        await client.open_secure_channel()

        _LOGGER.debug(f"[OpcUaSession] Creating session on {config.endpoint}")
        await client.create_session()
        self._session_open = True
        await client.activate_session(
            username=config.username,
            password=config.password,
            certificate=client.user_certificate,
        )

        self._watchdog_task = asyncio.create_task(self._watchdog())
        _LOGGER.info(f"[OpcUaSession] Session activated on {config.endpoint}")

    async def _stop_watchdog(self) -> None:
        task, self._watchdog_task = self._watchdog_task, None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def close_session(self) -> None:
        await self._stop_watchdog()
        self._subscriptions.clear()
        if self._client is None or not self._session_open:
            return
        self._session_open = False
        await self._client.close_session()
        _LOGGER.debug("[OpcUaSession] Session closed")

    async def disconnect(self) -> None:
        await self._stop_watchdog()
        client = self._client
        if client is None:
            return
        self._client = None
        self._session_open = False
        if not self._transport_open:
            return
        self._transport_open = False
        try:
            await client.close_secure_channel()
        finally:
            client.disconnect_socket()
            _LOGGER.debug("[OpcUaSession] Transport closed")

    async def read(self, node_id: str) -> CachedValue:
        client = self._require_client()
        read_value = ua.ReadValueId()
        read_value.NodeId = ua.NodeId.from_string(resolve_node_id(node_id))
        read_value.AttributeId = ua.AttributeIds.Value
        params = ua.ReadParameters()
        params.NodesToRead = [read_value]
        results = await client.uaclient.read(params)
        return data_value_to_cached(results[0])

    async def write(self, node_id: str, value: Any, data_type: str) -> str:
        client = self._require_client()
        variant = ua.Variant(
            coerce_value(value, data_type), getattr(ua.VariantType, data_type)
        )
        node = client.get_node(resolve_node_id(node_id))
        try:
            await node.write_attribute(ua.AttributeIds.Value, ua.DataValue(variant))
        except ua.UaStatusCodeError as e:
            name = str(ua.StatusCode(e.code).name)
            if name in _SERVICE_FAILURE_CODES:
                raise
            return name
        return "Good"

    async def browse(self, node_id: str) -> list[BrowseEntry]:
        client = self._require_client()
        node = client.get_node(resolve_node_id(node_id))
        references = await node.get_references(
            refs=ua.ObjectIds.HierarchicalReferences,
            direction=ua.BrowseDirection.Forward,
        )
        return [
            BrowseEntry(
                node_id=ref.NodeId.to_string(),
                browse_name=ref.BrowseName.to_string(),
                display_name=ref.DisplayName.Text or "",
                node_class=ref.NodeClass.name,
                is_forward=bool(ref.IsForward),
            )
            for ref in references
        ]

    async def register_nodes(self, node_ids: list[str]) -> list[str]:
        client = self._require_client()
        nodes = [client.get_node(resolve_node_id(node_id)) for node_id in node_ids]
        registered = await client.register_nodes(nodes)
        return [node.nodeid.to_string() for node in registered]

    async def unregister_nodes(self, registered_handles: list[str]) -> None:
        client = self._require_client()
        await client.unregister_nodes(
            [client.get_node(handle) for handle in registered_handles]
        )

    async def create_subscription(
        self,
        subscription_handle: str,
        node_id: str,
        publishing_interval_ms: float,
        keepalive_count: int,
        lifetime_count: int,
        queue_size: int,
    ) -> None:
        client = self._require_client()
        params = ua.CreateSubscriptionParameters()
        params.RequestedPublishingInterval = publishing_interval_ms
        params.RequestedLifetimeCount = lifetime_count
        params.RequestedMaxKeepAliveCount = keepalive_count
        params.MaxNotificationsPerPublish = 0
        params.PublishingEnabled = True
        params.Priority = 0

        handler = _SubscriptionHandler(subscription_handle, self.events)
        subscription = await client.create_subscription(params, handler)
        try:
            await subscription.subscribe_data_change(
                client.get_node(resolve_node_id(node_id)),
                queuesize=queue_size,
                sampling_interval=publishing_interval_ms,
            )
        except Exception:
            try:
                await subscription.delete()
            except Exception as delete_error:
                _LOGGER.warning(
                    f"[OpcUaSession] Failed to delete subscription after monitored item error: {delete_error}"
                )
            raise
        self._subscriptions[subscription_handle] = subscription

    async def delete_subscription(self, subscription_handle: str) -> None:
        self._require_client()
        subscription = self._subscriptions.pop(subscription_handle, None)
        if subscription is None:
            _LOGGER.warning(
                f"[OpcUaSession] No server subscription held for '{subscription_handle}'"
            )
            return
        await subscription.delete()

    async def _watchdog(self) -> None:
        interval = self._options.watchdog_interval
        while True:
            await asyncio.sleep(interval)
            try:
                result = await asyncio.wait_for(
                    self.read(SERVER_STATE_NODE_ID),
                    timeout=self._options.request_timeout,
                )
            except asyncio.CancelledError:
                raise
            except asyncio.TimeoutError:
                self._post_failure(
                    SessionEventKind.KEEPALIVE_FAILURE,
                    "Server state read timed out",
                )
                return
            except Exception as e:
                self._post_failure(classify_failure(str(e)), f"Server state read failed: {e}")
                return

            if not result.is_good:
                self._post_failure(
                    classify_failure(result.quality_code),
                    f"Server state read returned {result.quality_code}",
                )
                return
            if result.value != SERVER_STATE_RUNNING:
                self._post_failure(
                    SessionEventKind.SESSION_CLOSED,
                    f"Server state is {result.value}",
                )
                return

    def _post_failure(self, kind: SessionEventKind, detail: str) -> None:
        _LOGGER.warning(f"[OpcUaSession] {kind.value}: {detail}")
        self.events.put_nowait(SessionEvent(kind=kind, detail=detail))
