"""
Tests for opcua_mcp.resource_manager._supervisor.ConnectionManager.

The manager runs against FakeSession, an in-memory protocol session. Event-driven
behavior is synchronized with `session.events.join()` (the dispatcher has applied every
posted event) and `manager.wait_until_settled()` (fault recovery has finished).
"""

import asyncio

import pytest
from fake_session import ENDPOINT, FakeSession, bad, good

from opcua_mcp._exceptions import (
    AlreadyConnectedError,
    ConfigError,
    ConnectionErrorKind,
    NodeNotAccessibleError,
    NotConnectedError,
    OpcUaConnectionError,
    ReadRejectedError,
    RegisteredNodeNotFoundError,
    SubscriptionNotFoundError,
    WriteRejectedError,
)
from opcua_mcp.client import BrowseEntry, OpcUaSession, SessionEventKind
from opcua_mcp.config import ClientOptions
from opcua_mcp.resource_manager import ConnectionManager, ConnectionState

SPEED = 'ns=3;s="Motor"."Speed"'
TEMPERATURE = 'ns=3;s="Oven"."Temperature"'


# =============================================================================
# Construction
# =============================================================================


def test_from_options_creates_opcua_sessions():
    manager = ConnectionManager.from_options(ClientOptions(seed_subscriptions=False))
    assert isinstance(manager._session_factory(), OpcUaSession)
    assert manager._seed_subscriptions is False
    assert manager.state is ConnectionState.DISCONNECTED
    assert manager.endpoint is None
    assert manager.is_connected is False


# =============================================================================
# connect / disconnect
# =============================================================================


@pytest.mark.asyncio
async def test_connect_success(manager, connection_config, sessions):
    endpoint = await manager.connect(connection_config)

    assert endpoint == ENDPOINT
    assert manager.state is ConnectionState.CONNECTED
    assert manager.is_connected is True
    assert manager.endpoint == ENDPOINT
    assert sessions[0].calls == [("connect", ENDPOINT)]
    await manager.disconnect()


@pytest.mark.asyncio
async def test_connect_twice_raises_already_connected(connected, connection_config, sessions):
    manager, _ = connected
    with pytest.raises(AlreadyConnectedError, match="Already connected. Disconnect first."):
        await manager.connect(connection_config)
    assert len(sessions) == 1
    assert manager.state is ConnectionState.CONNECTED


@pytest.mark.asyncio
async def test_concurrent_connect_only_one_succeeds(manager, connection_config, pending, sessions):
    session = FakeSession()
    session.connect_gate = asyncio.Event()
    pending.append(session)

    first = asyncio.create_task(manager.connect(connection_config))
    await asyncio.sleep(0)
    assert manager.state is ConnectionState.CONNECTING

    with pytest.raises(AlreadyConnectedError):
        await manager.connect(connection_config)

    session.connect_gate.set()
    assert await first == ENDPOINT
    assert len(sessions) == 1
    await manager.disconnect()


@pytest.mark.asyncio
async def test_connect_refused_is_classified_and_cleaned_up(manager, connection_config, pending, sessions):
    session = FakeSession()
    session.failures["connect"] = ConnectionRefusedError(
        "[Errno 111] Connect call failed ('10.0.0.5', 4840)"
    )
    pending.append(session)

    with pytest.raises(OpcUaConnectionError) as exc_info:
        await manager.connect(connection_config)

    assert exc_info.value.kind is ConnectionErrorKind.REFUSED
    assert "Connect call failed" in exc_info.value.raw
    assert manager.state is ConnectionState.DISCONNECTED
    assert manager.endpoint is None
    assert session.call_names() == ["connect", "close_session", "disconnect"]


@pytest.mark.asyncio
async def test_connect_timeout_is_classified(manager, connection_config, pending):
    session = FakeSession()
    session.failures["connect"] = asyncio.TimeoutError()
    pending.append(session)

    with pytest.raises(OpcUaConnectionError) as exc_info:
        await manager.connect(connection_config)
    assert exc_info.value.kind is ConnectionErrorKind.TIMEOUT


@pytest.mark.asyncio
async def test_connect_config_error_passes_through(manager, connection_config, pending):
    session = FakeSession()
    session.failures["connect"] = ConfigError("certificate required")
    pending.append(session)

    with pytest.raises(ConfigError, match="certificate required"):
        await manager.connect(connection_config)
    assert manager.state is ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_connect_after_failed_connect_uses_fresh_session(manager, connection_config, pending, sessions):
    failing = FakeSession()
    failing.failures["connect"] = RuntimeError("boom")
    pending.append(failing)

    with pytest.raises(OpcUaConnectionError) as exc_info:
        await manager.connect(connection_config)
    assert exc_info.value.kind is ConnectionErrorKind.UNKNOWN

    await manager.connect(connection_config)
    assert len(sessions) == 2
    assert manager.is_connected
    await manager.disconnect()


@pytest.mark.asyncio
async def test_disconnect_releases_everything_in_order(connected):
    manager, session = connected
    session.values[SPEED] = good(1.0)
    node = await manager.register_node(SPEED)
    sub = await manager.subscribe(node.registered_handle, 500, is_registered=True)

    await manager.disconnect()

    names = session.call_names()
    assert names[-4:] == [
        "delete_subscription",
        "unregister_nodes",
        "close_session",
        "disconnect",
    ]
    assert ("delete_subscription", sub.subscription_handle) in session.calls
    assert ("unregister_nodes", [node.registered_handle]) in session.calls
    assert manager.state is ConnectionState.DISCONNECTED
    assert await manager.list_registered_nodes() == []
    assert await manager.list_active_subscriptions() == []
    assert manager.last_cleanup_error is None


@pytest.mark.asyncio
async def test_disconnect_is_idempotent(manager, connection_config, sessions):
    await manager.disconnect()
    await manager.connect(connection_config)
    await manager.disconnect()
    await manager.disconnect()

    assert manager.state is ConnectionState.DISCONNECTED
    assert sessions[0].call_names().count("close_session") == 1


@pytest.mark.asyncio
async def test_disconnect_continues_past_step_failures(connected):
    manager, session = connected
    session.values[SPEED] = good(1.0)
    await manager.register_node(SPEED)
    session.failures["unregister_nodes"] = RuntimeError("BadInternalError")
    session.failures["close_session"] = RuntimeError("BadSessionIdInvalid")

    await manager.disconnect()

    assert session.call_names()[-1] == "disconnect"
    assert manager.state is ConnectionState.DISCONNECTED
    assert await manager.list_registered_nodes() == []
    failed_steps = [name for name, _ in manager.last_cleanup_error.errors]
    assert failed_steps == ["unregister_nodes", "close_session"]


# =============================================================================
# read / write / browse
# =============================================================================


@pytest.mark.asyncio
async def test_operations_require_connection(manager):
    with pytest.raises(NotConnectedError, match="Not connected to PLC"):
        await manager.read(SPEED)
    with pytest.raises(NotConnectedError):
        await manager.write(SPEED, 1.0)
    with pytest.raises(NotConnectedError):
        await manager.browse()
    with pytest.raises(NotConnectedError):
        await manager.register_node(SPEED)
    with pytest.raises(NotConnectedError):
        await manager.unregister_node("ns=1;i=1001")
    with pytest.raises(NotConnectedError):
        await manager.subscribe(SPEED, 1000)
    with pytest.raises(NotConnectedError):
        await manager.unsubscribe("sub_1_1")


@pytest.mark.asyncio
async def test_read_returns_good_value(connected):
    manager, session = connected
    session.values[SPEED] = good(1450.0)

    result = await manager.read(SPEED)

    assert result.value == 1450.0
    assert result.quality_code == "Good"


@pytest.mark.asyncio
async def test_read_bad_quality_raises(connected):
    manager, _ = connected
    with pytest.raises(ReadRejectedError) as exc_info:
        await manager.read(SPEED)
    assert exc_info.value.quality_code == "BadNodeIdUnknown"
    assert str(exc_info.value) == f"Read failed for '{SPEED}': BadNodeIdUnknown"
    assert manager.is_connected


@pytest.mark.asyncio
async def test_read_connection_loss_faults_connection(connected):
    manager, session = connected
    await manager.register_node("i=2259")
    session.failures["read"] = ConnectionResetError("Connection lost")

    with pytest.raises(ConnectionResetError):
        await manager.read(SPEED)
    assert manager.is_connected is False

    await manager.wait_until_settled()
    assert manager.state is ConnectionState.DISCONNECTED
    assert await manager.list_registered_nodes() == []
    assert "Connection lost" in manager.last_fault_reason


@pytest.mark.asyncio
async def test_read_other_error_does_not_fault(connected):
    manager, session = connected
    session.failures["read"] = ValueError("malformed node id")

    with pytest.raises(ValueError):
        await manager.read("not-a-node-id")
    assert manager.is_connected


@pytest.mark.asyncio
async def test_write_defaults_to_double(connected):
    manager, session = connected

    assert await manager.write(SPEED, "12.5") == ("Good", "Double")
    assert session.calls[-1] == ("write", SPEED, "12.5", "Double")


@pytest.mark.asyncio
async def test_write_resolves_type_hint(connected):
    manager, session = connected

    assert await manager.write(SPEED, 3, "int32") == ("Good", "Int32")
    assert session.calls[-1] == ("write", SPEED, 3, "Int32")


@pytest.mark.asyncio
async def test_write_bad_status_raises(connected):
    manager, session = connected
    session.write_status = "BadTypeMismatch"

    with pytest.raises(WriteRejectedError) as exc_info:
        await manager.write(SPEED, 1.0, "Float")
    assert exc_info.value.quality_code == "BadTypeMismatch"
    assert str(exc_info.value) == f"Write failed for '{SPEED}': BadTypeMismatch"


@pytest.mark.asyncio
async def test_browse_defaults_to_root_folder(connected):
    manager, session = connected
    entry = BrowseEntry(
        node_id="i=85",
        browse_name="0:Objects",
        display_name="Objects",
        node_class="Object",
    )
    session.browse_result = [entry]

    assert await manager.browse() == [entry]
    assert session.calls[-1] == ("browse", "RootFolder")

    await manager.browse("i=85")
    assert session.calls[-1] == ("browse", "i=85")


# =============================================================================
# Node registry
# =============================================================================


@pytest.mark.asyncio
async def test_register_node_verifies_then_registers(connected):
    manager, session = connected
    session.values[SPEED] = good(1.0)

    entry = await manager.register_node(SPEED)

    assert entry.node_id == SPEED
    assert entry.registered_handle == "ns=1;i=1001"
    assert session.call_names()[-2:] == ["read", "register_nodes"]
    assert await manager.list_registered_nodes() == [entry]


@pytest.mark.asyncio
async def test_register_inaccessible_node_registers_nothing(connected):
    manager, session = connected
    session.values[SPEED] = bad("BadNotReadable")

    with pytest.raises(NodeNotAccessibleError) as exc_info:
        await manager.register_node(SPEED)

    assert exc_info.value.quality_code == "BadNotReadable"
    assert "register_nodes" not in session.call_names()
    assert await manager.list_registered_nodes() == []


@pytest.mark.asyncio
async def test_unregister_unknown_handle(connected):
    manager, _ = connected
    with pytest.raises(RegisteredNodeNotFoundError, match="Registered node 'ns=1;i=9' not found"):
        await manager.unregister_node("ns=1;i=9")


@pytest.mark.asyncio
async def test_unregister_cascades_to_dependent_subscriptions(connected):
    manager, session = connected
    session.values[SPEED] = good(1.0)
    session.values[TEMPERATURE] = good(80.0)
    node = await manager.register_node(SPEED)
    dependents = [
        await manager.subscribe(node.registered_handle, interval, is_registered=True)
        for interval in (100, 500, 1000)
    ]
    unrelated = await manager.subscribe(TEMPERATURE, 1000)

    cascaded = await manager.unregister_node(node.registered_handle)

    assert cascaded == 3
    remaining = await manager.list_active_subscriptions()
    assert [s.subscription_handle for s in remaining] == [unrelated.subscription_handle]
    for sub in dependents:
        assert ("delete_subscription", sub.subscription_handle) in session.calls
        with pytest.raises(SubscriptionNotFoundError):
            await manager.get_latest_value(sub.subscription_handle)
    assert session.calls[-1] == ("unregister_nodes", [node.registered_handle])
    assert await manager.list_registered_nodes() == []


@pytest.mark.asyncio
async def test_unregister_with_failed_cancellation_still_releases(connected):
    manager, session = connected
    session.values[SPEED] = good(1.0)
    node = await manager.register_node(SPEED)
    await manager.subscribe(node.registered_handle, 500, is_registered=True)
    session.failures["delete_subscription"] = RuntimeError("BadSubscriptionIdInvalid")

    assert await manager.unregister_node(node.registered_handle) == 1
    assert await manager.list_active_subscriptions() == []
    assert await manager.list_registered_nodes() == []


@pytest.mark.asyncio
async def test_unregister_server_failure_keeps_mapping(connected):
    manager, session = connected
    session.values[SPEED] = good(1.0)
    node = await manager.register_node(SPEED)
    await manager.subscribe(node.registered_handle, 500, is_registered=True)
    session.failures["unregister_nodes"] = RuntimeError("BadInternalError")

    with pytest.raises(RuntimeError):
        await manager.unregister_node(node.registered_handle)

    assert await manager.list_registered_nodes() == [node]
    assert await manager.list_active_subscriptions() == []
    assert manager.is_connected


# =============================================================================
# Subscription registry
# =============================================================================


@pytest.mark.asyncio
async def test_subscribe_derives_timing_and_seeds_value(connected):
    manager, session = connected
    session.values[SPEED] = good(1450.0)

    sub = await manager.subscribe(SPEED, 500)

    assert sub.target == SPEED
    assert sub.is_registered_target is False
    assert sub.timing.keepalive_count == 20
    assert sub.timing.lifetime_count == 60
    assert sub.has_cached_value
    create_call = next(c for c in session.calls if c[0] == "create_subscription")
    assert create_call == ("create_subscription", sub.subscription_handle, SPEED, 500, 20, 60, 10)

    latest = await manager.get_latest_value(sub.subscription_handle)
    assert latest.value == 1450.0


@pytest.mark.asyncio
async def test_subscribe_without_readable_seed_has_no_value(connected):
    manager, _ = connected

    sub = await manager.subscribe(SPEED, 2000)

    assert sub.timing.keepalive_count == 10
    assert sub.timing.lifetime_count == 30
    assert await manager.get_latest_value(sub.subscription_handle) is None


@pytest.mark.asyncio
async def test_subscribe_seed_read_error_keeps_subscription(connected):
    manager, session = connected
    session.failures["read"] = RuntimeError("BadInternalError")

    sub = await manager.subscribe(SPEED, 1000)

    assert manager.is_connected
    assert sub.has_cached_value is False
    assert [s.subscription_handle for s in await manager.list_active_subscriptions()] == [
        sub.subscription_handle
    ]


@pytest.mark.asyncio
async def test_subscribe_seed_connection_loss_raises(connected):
    manager, session = connected
    session.failures["read"] = ConnectionResetError("reset by peer")

    with pytest.raises(NotConnectedError):
        await manager.subscribe(SPEED, 1000)

    await manager.wait_until_settled()
    assert manager.state is ConnectionState.DISCONNECTED
    assert await manager.list_active_subscriptions() == []
    assert "delete_subscription" in session.call_names()


@pytest.mark.asyncio
async def test_subscribe_seed_disabled(session_factory, connection_config, sessions):
    manager = ConnectionManager(session_factory, seed_subscriptions=False)
    await manager.connect(connection_config)
    sessions[0].values[SPEED] = good(1.0)

    sub = await manager.subscribe(SPEED, 1000)

    assert "read" not in sessions[0].call_names()
    assert sub.has_cached_value is False
    await manager.disconnect()


@pytest.mark.asyncio
async def test_subscribe_unknown_registered_handle(connected):
    manager, session = connected
    with pytest.raises(RegisteredNodeNotFoundError):
        await manager.subscribe("ns=1;i=404", 1000, is_registered=True)
    assert "create_subscription" not in session.call_names()
    assert await manager.list_active_subscriptions() == []


@pytest.mark.asyncio
async def test_subscribe_rejects_non_positive_interval(connected):
    manager, _ = connected
    with pytest.raises(ValueError):
        await manager.subscribe(SPEED, 0)


@pytest.mark.asyncio
async def test_subscribe_failure_leaves_no_entry(connected):
    manager, session = connected
    session.failures["create_subscription"] = RuntimeError("BadTooManySubscriptions")

    with pytest.raises(RuntimeError):
        await manager.subscribe(SPEED, 1000)
    assert await manager.list_active_subscriptions() == []


@pytest.mark.asyncio
async def test_handles_are_unique(connected):
    manager, _ = connected
    subs = [await manager.subscribe(SPEED, 1000) for _ in range(5)]
    assert len({s.subscription_handle for s in subs}) == 5


@pytest.mark.asyncio
async def test_value_notifications_update_cache(connected):
    manager, session = connected
    sub = await manager.subscribe(SPEED, 100)

    session.post_value(sub.subscription_handle, good(1.0))
    session.post_value(sub.subscription_handle, good(2.0))
    session.post_value("sub_unknown_1", good(99.0))
    await session.events.join()

    latest = await manager.get_latest_value(sub.subscription_handle)
    assert latest.value == 2.0
    assert manager.is_connected


@pytest.mark.asyncio
async def test_seed_does_not_overwrite_notification(connected):
    manager, _ = connected
    sub = await manager.subscribe(SPEED, 100)
    await manager._subscriptions.update_value(sub.subscription_handle, good(5.0))

    assert await manager._subscriptions.seed_value(sub.subscription_handle, good(1.0)) is False
    assert (await manager.get_latest_value(sub.subscription_handle)).value == 5.0


@pytest.mark.asyncio
async def test_unsubscribe_removes_entry(connected):
    manager, session = connected
    sub = await manager.subscribe(SPEED, 1000)

    await manager.unsubscribe(sub.subscription_handle)

    assert session.calls[-1] == ("delete_subscription", sub.subscription_handle)
    with pytest.raises(SubscriptionNotFoundError, match=f"Subscription '{sub.subscription_handle}' not found"):
        await manager.get_latest_value(sub.subscription_handle)
    with pytest.raises(SubscriptionNotFoundError):
        await manager.unsubscribe(sub.subscription_handle)


@pytest.mark.asyncio
async def test_unsubscribe_server_failure_keeps_entry(connected):
    manager, session = connected
    sub = await manager.subscribe(SPEED, 1000)
    session.failures["delete_subscription"] = RuntimeError("BadInternalError")

    with pytest.raises(RuntimeError):
        await manager.unsubscribe(sub.subscription_handle)
    assert [s.subscription_handle for s in await manager.list_active_subscriptions()] == [
        sub.subscription_handle
    ]


@pytest.mark.asyncio
async def test_get_latest_value_unknown_handle(manager):
    with pytest.raises(SubscriptionNotFoundError):
        await manager.get_latest_value("sub_0_0")


# =============================================================================
# Faults and status
# =============================================================================


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "kind,detail",
    [
        (SessionEventKind.KEEPALIVE_FAILURE, "BadTimeout"),
        (SessionEventKind.SESSION_CLOSED, "BadSessionClosed"),
        (SessionEventKind.CONNECTION_LOST, "Connection reset by peer"),
    ],
)
async def test_session_failure_tears_down(connected, kind, detail):
    manager, session = connected
    session.values[SPEED] = good(1.0)
    node = await manager.register_node(SPEED)
    await manager.subscribe(node.registered_handle, 500, is_registered=True)
    await manager.subscribe(TEMPERATURE, 1000)

    session.post_failure(kind, detail)
    await session.events.join()

    with pytest.raises(NotConnectedError):
        await manager.read(SPEED)

    await manager.wait_until_settled()
    assert manager.state is ConnectionState.DISCONNECTED
    assert await manager.list_active_subscriptions() == []
    assert await manager.list_registered_nodes() == []
    assert session.call_names()[-2:] == ["close_session", "disconnect"]
    assert manager.last_fault_reason == f"{kind.value}: {detail}"


@pytest.mark.asyncio
async def test_faulted_connection_rejects_connect_until_recovered(connected, connection_config, sessions):
    manager, session = connected
    session.close_gate = asyncio.Event()

    session.post_failure(SessionEventKind.SESSION_CLOSED, "BadSessionClosed")
    await session.events.join()
    await asyncio.sleep(0)

    assert manager.state is ConnectionState.FAULTED
    with pytest.raises(AlreadyConnectedError):
        await manager.connect(connection_config)
    with pytest.raises(NotConnectedError):
        await manager.read(SPEED)

    session.close_gate.set()
    await manager.wait_until_settled()
    assert manager.state is ConnectionState.DISCONNECTED

    await manager.connect(connection_config)
    assert len(sessions) == 2
    assert manager.is_connected


@pytest.mark.asyncio
async def test_events_from_previous_connection_are_ignored(connected, connection_config, sessions):
    manager, old_session = connected
    await manager.disconnect()
    await manager.connect(connection_config)

    old_session.post_failure(SessionEventKind.CONNECTION_LOST)
    await asyncio.sleep(0)

    assert manager.is_connected
    assert sessions[1].events.empty()


@pytest.mark.asyncio
async def test_status_when_disconnected(manager):
    status = await manager.get_status()
    assert status.connected is False
    assert status.endpoint is None
    assert status.session_active is False
    assert status.state is ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_status_probe_running(connected):
    manager, session = connected

    status = await manager.get_status()

    assert status.connected is True
    assert status.session_active is True
    assert status.endpoint == ENDPOINT
    assert session.calls[-1] == ("read", "i=2259")


@pytest.mark.asyncio
async def test_status_probe_degraded_faults_connection(connected):
    manager, session = connected
    # ServerState 2 = Shutdown
    session.values["i=2259"] = good(2, "Int32")

    status = await manager.get_status()

    assert status.connected is False
    assert status.state is ConnectionState.FAULTED
    assert "server_state=2" in manager.last_fault_reason

    await manager.wait_until_settled()
    assert manager.state is ConnectionState.DISCONNECTED
    assert (await manager.get_status()).connected is False


@pytest.mark.asyncio
async def test_status_probe_error_faults_connection(connected):
    manager, session = connected
    session.failures["read"] = ConnectionResetError("reset by peer")

    status = await manager.get_status()

    assert status.connected is False
    await manager.wait_until_settled()
    assert manager.state is ConnectionState.DISCONNECTED
