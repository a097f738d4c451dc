"""Fixtures for the resource manager tests."""

import pytest
import pytest_asyncio
from fake_session import ENDPOINT, FakeSession

from opcua_mcp.config import ConnectionConfig
from opcua_mcp.resource_manager import ConnectionManager


@pytest.fixture
def connection_config():
    return ConnectionConfig(endpoint=ENDPOINT)


@pytest.fixture
def sessions():
    """Every FakeSession handed out by the factory, in order."""
    return []


@pytest.fixture
def pending():
    """Pre-configured sessions the factory hands out before creating fresh ones."""
    return []


@pytest.fixture
def session_factory(sessions, pending):
    def factory():
        session = pending.pop(0) if pending else FakeSession()
        sessions.append(session)
        return session

    return factory


@pytest.fixture
def manager(session_factory):
    return ConnectionManager(session_factory)


@pytest_asyncio.fixture
async def connected(manager, connection_config, sessions):
    """A manager connected to a FakeSession. Yields (manager, session)."""
    await manager.connect(connection_config)
    yield manager, sessions[-1]
    await manager.disconnect()
