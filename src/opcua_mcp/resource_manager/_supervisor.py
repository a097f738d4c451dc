"""
Connection supervisor for a single OPC UA server connection.

`ConnectionManager` owns one connection's state machine, the node and subscription
registries that depend on it, and the cleanup coordinator that tears everything down.

Concurrency model:
    - Mutating operations (connect, disconnect, register/unregister, subscribe/unsubscribe,
      fault recovery) and the liveness probe in `get_status` are serialized by one
      `asyncio.Lock`, so a subscription can never be created against a registered handle
      that is being released at the same time.
    - Reads, writes and browses do not take the lock. They only need a CONNECTED state.
    - Snapshot and cached-value queries go straight to the registries, whose own short
      locks give consistent copies without waiting on network calls.
    - Session events arrive on the session's event queue and are applied by one
      dispatcher task per connection. Value changes update the cache; failure events
      move the connection to FAULTED and schedule recovery as a separate task.

Example:
    ```python
    manager = ConnectionManager.from_options(ClientOptions())
    await manager.connect(resolve_connection_config("opc.tcp://plc:4840"))
    node = await manager.register_node('ns=3;s="Motor"."Speed"')
    sub = await manager.subscribe(node.registered_handle, 500, is_registered=True)
    value = await manager.get_latest_value(sub.subscription_handle)
    await manager.disconnect()
    ```
"""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable
from typing import Any, TypeVar

from opcua_mcp._exceptions import (
    AlreadyConnectedError,
    CleanupError,
    InternalError,
    McpError,
    NodeNotAccessibleError,
    NotConnectedError,
    ReadRejectedError,
    RegisteredNodeNotFoundError,
    WriteRejectedError,
)
from opcua_mcp.client import (
    MONITORED_ITEM_QUEUE_SIZE,
    ROOT_FOLDER_TOKEN,
    SERVER_STATE_NODE_ID,
    SERVER_STATE_RUNNING,
    BrowseEntry,
    CachedValue,
    OpcUaSession,
    ProtocolSession,
    SessionEvent,
    SessionFactory,
    resolve_data_type,
)
from opcua_mcp.config import ClientOptions, ConnectionConfig

from ._cleanup import CleanupCoordinator
from ._models import (
    ConnectionState,
    ConnectionStatus,
    RegisteredNode,
    Subscription,
    SubscriptionTiming,
)
from ._registry import HandleGenerator, NodeRegistry, SubscriptionRegistry
from ._utils import classify_connection_error, is_connection_loss

_LOGGER = logging.getLogger(__name__)

R = TypeVar("R")


class ConnectionManager:
    """
    Supervisor of one OPC UA connection and its registered nodes and subscriptions.

    Args:
        session_factory (SessionFactory): Produces a fresh protocol session for each connect.
        seed_subscriptions (bool): Read the target once after subscribing so the cache
            holds a value before the first notification.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        seed_subscriptions: bool = True,
    ) -> None:
        self._session_factory = session_factory
        self._seed_subscriptions = seed_subscriptions

        self._state = ConnectionState.DISCONNECTED
        self._config: ConnectionConfig | None = None
        self._session: ProtocolSession | None = None
        self._generation = 0

        self._op_lock = asyncio.Lock()
        self._nodes = NodeRegistry()
        self._subscriptions = SubscriptionRegistry()
        self._cleanup = CleanupCoordinator(self._nodes, self._subscriptions)
        self._handles = HandleGenerator()

        self._dispatcher_task: asyncio.Task[None] | None = None
        self._recovery_task: asyncio.Task[None] | None = None

        self.last_cleanup_error: CleanupError | None = None
        self.last_fault_reason: str | None = None

    @classmethod
    def from_options(cls, options: ClientOptions) -> "ConnectionManager":
        """Create a manager whose sessions are `OpcUaSession` instances configured by `options`."""
        return cls(
            session_factory=lambda: OpcUaSession(options),
            seed_subscriptions=options.seed_subscriptions,
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def endpoint(self) -> str | None:
        return self._config.endpoint if self._config is not None else None

    @property
    def is_connected(self) -> bool:
        """Cached connection flag. Performs no probe; use `get_status` for a live check."""
        return self._state is ConnectionState.CONNECTED

    def _require_session(self) -> ProtocolSession:
        if self._state is not ConnectionState.CONNECTED:
            raise NotConnectedError()
        if self._session is None:
            _LOGGER.error("[ConnectionManager] CONNECTED without a protocol session")
            raise InternalError("Connection is CONNECTED but holds no protocol session")
        return self._session

    def _reset(self) -> None:
        self._state = ConnectionState.DISCONNECTED
        self._session = None
        self._config = None

    def _status_snapshot(self) -> ConnectionStatus:
        connected = self._state is ConnectionState.CONNECTED
        return ConnectionStatus(
            connected=connected,
            endpoint=self.endpoint,
            session_active=connected and self._session is not None,
            state=self._state,
        )

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self, config: ConnectionConfig) -> str:
        """
        Open a session to `config.endpoint`.

        Any failure tears down the partial session before the error is raised.

        Args:
            config (ConnectionConfig): Resolved connect parameters.

        Returns:
            str: The connected endpoint.

        Raises:
            AlreadyConnectedError: If the connection is not DISCONNECTED.
            ConfigError: If the session cannot apply the configuration.
            OpcUaConnectionError: If connecting fails; carries the category and raw error text.
        """
        if self._state is not ConnectionState.DISCONNECTED:
            raise AlreadyConnectedError()

        async with self._op_lock:
            if self._state is not ConnectionState.DISCONNECTED:
                raise AlreadyConnectedError()

            _LOGGER.info(
                f"[ConnectionManager] connecting with {config.redacted()}"
            )
            self._state = ConnectionState.CONNECTING
            self._config = config
            self._generation += 1
            session = self._session_factory()
            self._session = session

            try:
                await session.connect(config)
            except asyncio.CancelledError:
                await self._teardown_locked()
                raise
            except Exception as e:
                _LOGGER.error(
                    f"[ConnectionManager] connect to {config.endpoint} failed: {e!r}"
                )
                await self._teardown_locked()
                if isinstance(e, McpError):
                    raise
                raise classify_connection_error(e) from e

            self._state = ConnectionState.CONNECTED
            self.last_fault_reason = None
            self._dispatcher_task = asyncio.create_task(
                self._dispatch_events(session, self._generation)
            )
            _LOGGER.info(f"[ConnectionManager] connected to {config.endpoint}")
            return config.endpoint

    async def disconnect(self) -> None:
        """
        Tear down the connection and all dependent resources.

        Idempotent and never raises for teardown failures: step errors are recorded in
        `last_cleanup_error` and logged. Always ends DISCONNECTED.
        """
        async with self._op_lock:
            if self._state is ConnectionState.DISCONNECTED and self._session is None:
                _LOGGER.debug("[ConnectionManager] disconnect: already disconnected")
                return
            _LOGGER.info(f"[ConnectionManager] disconnecting from {self.endpoint}")
            await self._teardown_locked()

    async def get_status(self) -> ConnectionStatus:
        """
        Report the connection status, probing the server while CONNECTED.

        The probe reads the server state. A failed read, a non-good status or a server
        state other than Running faults the connection and schedules cleanup; the call
        returns at once with `connected=False` instead of waiting for cleanup.

        Returns:
            ConnectionStatus: The status after the probe.
        """
        async with self._op_lock:
            if self._state is ConnectionState.CONNECTED:
                session = self._require_session()
                try:
                    result = await session.read(SERVER_STATE_NODE_ID)
                except Exception as e:
                    self._mark_faulted(f"Liveness probe failed: {e!r}")
                else:
                    if not result.is_good or result.value != SERVER_STATE_RUNNING:
                        self._mark_faulted(
                            f"Liveness probe degraded: quality={result.quality_code}, "
                            f"server_state={result.value}"
                        )
            return self._status_snapshot()

    async def wait_until_settled(self) -> None:
        """Wait for a scheduled fault recovery, if any, to finish."""
        task = self._recovery_task
        if task is not None and not task.done():
            await asyncio.shield(task)

    # ------------------------------------------------------------------
    # Fault handling
    # ------------------------------------------------------------------

    def _mark_faulted(self, reason: str) -> None:
        if self._state is not ConnectionState.CONNECTED:
            return
        self._state = ConnectionState.FAULTED
        self.last_fault_reason = reason
        _LOGGER.warning(
            f"[ConnectionManager] connection to {self.endpoint} faulted: {reason}"
        )
        self._recovery_task = asyncio.create_task(self._recover(self._generation))

    async def _recover(self, generation: int) -> None:
        async with self._op_lock:
            if (
                self._state is not ConnectionState.FAULTED
                or generation != self._generation
            ):
                return
            await self._teardown_locked()
        _LOGGER.info("[ConnectionManager] fault recovery complete")

    async def _teardown_locked(self) -> None:
        self._generation += 1
        await self._stop_dispatcher()
        self.last_cleanup_error = await self._cleanup.teardown(
            self._session, self._reset
        )

    async def _stop_dispatcher(self) -> None:
        task, self._dispatcher_task = self._dispatcher_task, None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _dispatch_events(self, session: ProtocolSession, generation: int) -> None:
        while True:
            event: SessionEvent = await session.events.get()
            try:
                if generation != self._generation:
                    return
                if not event.kind.is_failure:
                    if event.subscription_handle is not None and event.value is not None:
                        await self._subscriptions.update_value(
                            event.subscription_handle, event.value
                        )
                    continue
                self._mark_faulted(f"{event.kind.value}: {event.detail}")
                return
            finally:
                session.events.task_done()

    async def _guarded(self, operation: Awaitable[R]) -> R:
        try:
            return await operation
        except McpError:
            raise
        except Exception as e:
            if is_connection_loss(e):
                self._mark_faulted(f"Connection lost during operation: {e!r}")
            raise

    # ------------------------------------------------------------------
    # Node access
    # ------------------------------------------------------------------

    async def read(self, node_id: str) -> CachedValue:
        """
        Read the value of a node.

        Raises:
            NotConnectedError: If not CONNECTED.
            ReadRejectedError: If the server answers with a non-good status.
        """
        session = self._require_session()
        result = await self._guarded(session.read(node_id))
        if not result.is_good:
            raise ReadRejectedError(node_id, result.quality_code)
        return result

    async def write(
        self, node_id: str, value: Any, data_type: str | None = None
    ) -> tuple[str, str]:
        """
        Write the value of a node.

        Args:
            node_id (str): The node to write.
            value (Any): The value; converted to `data_type`.
            data_type (str | None): Data type hint; unknown or absent hints mean Double.

        Returns:
            tuple[str, str]: (quality code, data type used).

        Raises:
            NotConnectedError: If not CONNECTED.
            WriteRejectedError: If the server answers with a non-good status.
            ValueError: If the value cannot be converted to the data type.
        """
        session = self._require_session()
        resolved_type = resolve_data_type(data_type)
        quality_code = await self._guarded(session.write(node_id, value, resolved_type))
        if not quality_code.startswith("Good"):
            raise WriteRejectedError(node_id, quality_code)
        return quality_code, resolved_type

    async def browse(self, node_id: str | None = None) -> list[BrowseEntry]:
        """Return the forward hierarchical references of a node (default: the root folder)."""
        session = self._require_session()
        return await self._guarded(session.browse(node_id or ROOT_FOLDER_TOKEN))

    # ------------------------------------------------------------------
    # Node registry
    # ------------------------------------------------------------------

    async def register_node(self, node_id: str) -> RegisteredNode:
        """
        Register a node for optimized access after verifying it can be read.

        Raises:
            NotConnectedError: If not CONNECTED.
            NodeNotAccessibleError: If the verification read is not good. Nothing is registered.
        """
        async with self._op_lock:
            session = self._require_session()
            verification = await self._guarded(session.read(node_id))
            if not verification.is_good:
                _LOGGER.warning(
                    f"[ConnectionManager] not registering '{node_id}': {verification.quality_code}"
                )
                raise NodeNotAccessibleError(node_id, verification.quality_code)

            handles = await self._guarded(session.register_nodes([node_id]))
            if len(handles) != 1:
                raise InternalError(
                    f"Expected one registered handle for '{node_id}', got {len(handles)}"
                )
            entry = RegisteredNode(registered_handle=handles[0], node_id=node_id)
            await self._nodes.add(entry.registered_handle, entry)
            _LOGGER.info(
                f"[ConnectionManager] registered '{node_id}' as '{entry.registered_handle}'"
            )
            return entry

    async def unregister_node(self, registered_handle: str) -> int:
        """
        Release a registered node, cancelling the subscriptions that target it first.

        Cancellation failures are logged and do not stop the release; the local entries
        of cancelled subscriptions are always removed. The local mapping is removed only
        after the server released the handle.

        Returns:
            int: Number of subscriptions cancelled.

        Raises:
            NotConnectedError: If not CONNECTED.
            RegisteredNodeNotFoundError: If the handle is unknown.
        """
        async with self._op_lock:
            session = self._require_session()
            await self._nodes.get(registered_handle)

            dependents = await self._subscriptions.targeting(registered_handle)
            for subscription in dependents:
                handle = subscription.subscription_handle
                try:
                    await session.delete_subscription(handle)
                except Exception as e:
                    _LOGGER.warning(
                        f"[ConnectionManager] cancelling subscription '{handle}' of "
                        f"'{registered_handle}' failed: {e!r}"
                    )
                finally:
                    await self._subscriptions.remove(handle)

            await self._guarded(session.unregister_nodes([registered_handle]))
            await self._nodes.remove(registered_handle)
            _LOGGER.info(
                f"[ConnectionManager] unregistered '{registered_handle}', "
                f"cancelled {len(dependents)} subscriptions"
            )
            return len(dependents)

    async def list_registered_nodes(self) -> list[RegisteredNode]:
        return (await self._nodes.snapshot()).values()

    # ------------------------------------------------------------------
    # Subscription registry
    # ------------------------------------------------------------------

    async def subscribe(
        self, target: str, interval_ms: float, is_registered: bool = False
    ) -> Subscription:
        """
        Subscribe to value changes of a node or registered handle.

        Args:
            target (str): Node id, or a registered handle when `is_registered` is True.
            interval_ms (float): Publishing and sampling interval in milliseconds.
            is_registered (bool): Whether `target` is a registered handle.

        Returns:
            Subscription: The new entry, including the seed value if one was read.

        Raises:
            ValueError: If the interval is not positive.
            NotConnectedError: If not CONNECTED, or if the seed read lost the connection.
            RegisteredNodeNotFoundError: If `is_registered` and the handle is unknown.
        """
        timing = SubscriptionTiming.derive(interval_ms)

        async with self._op_lock:
            session = self._require_session()
            if is_registered and not await self._nodes.contains(target):
                raise RegisteredNodeNotFoundError(target)

            handle = self._handles.next()
            entry = Subscription(
                subscription_handle=handle,
                target=target,
                is_registered_target=is_registered,
                timing=timing,
            )
            # Added first so notifications arriving during creation are kept
            await self._subscriptions.add(handle, entry)
            try:
                await self._guarded(
                    session.create_subscription(
                        handle,
                        target,
                        timing.publishing_interval_ms,
                        timing.keepalive_count,
                        timing.lifetime_count,
                        MONITORED_ITEM_QUEUE_SIZE,
                    )
                )
            except BaseException:
                await self._subscriptions.remove(handle)
                raise

            if self._seed_subscriptions:
                await self._seed(session, handle, target)
                # A seed read that lost the connection has already scheduled teardown
                if self._state is not ConnectionState.CONNECTED:
                    raise NotConnectedError()

            _LOGGER.info(
                f"[ConnectionManager] subscribed '{handle}' to '{target}' "
                f"(interval={timing.publishing_interval_ms}ms, keepalive={timing.keepalive_count}, "
                f"lifetime={timing.lifetime_count})"
            )
            return await self._subscriptions.get(handle)

    async def _seed(self, session: ProtocolSession, handle: str, target: str) -> None:
        try:
            seed = await self._guarded(session.read(target))
        except Exception as e:
            _LOGGER.warning(
                f"[ConnectionManager] seed read for subscription '{handle}' failed: {e!r}"
            )
            return
        if seed.is_good:
            await self._subscriptions.seed_value(handle, seed)

    async def unsubscribe(self, subscription_handle: str) -> None:
        """
        Terminate a subscription.

        Raises:
            NotConnectedError: If not CONNECTED.
            SubscriptionNotFoundError: If the handle is unknown, including a second call.
        """
        async with self._op_lock:
            session = self._require_session()
            await self._subscriptions.get(subscription_handle)
            await self._guarded(session.delete_subscription(subscription_handle))
            await self._subscriptions.remove(subscription_handle)
            _LOGGER.info(f"[ConnectionManager] unsubscribed '{subscription_handle}'")

    async def get_latest_value(self, subscription_handle: str) -> CachedValue | None:
        """
        Return the cached value of a subscription without a server round-trip.

        Returns:
            CachedValue | None: The latest value, or None if none has arrived yet.

        Raises:
            SubscriptionNotFoundError: If the handle is unknown.
        """
        return (await self._subscriptions.get(subscription_handle)).latest_value

    async def list_active_subscriptions(self) -> list[Subscription]:
        return (await self._subscriptions.snapshot()).values()
