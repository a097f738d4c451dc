"""Shared fixtures for the MCP tool tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from opcua_mcp.config import ConfigManager
from opcua_mcp.resource_manager import ConnectionManager


class MockRequestContext:
    def __init__(self, lifespan_context):
        self.lifespan_context = lifespan_context


class MockContext:
    def __init__(self, lifespan_context):
        self.request_context = MockRequestContext(lifespan_context)


@pytest.fixture
def connection_manager():
    manager = MagicMock(spec=ConnectionManager)
    manager.last_cleanup_error = None
    manager.last_fault_reason = None
    return manager


@pytest.fixture
def config_manager():
    cm = MagicMock(spec=ConfigManager)
    cm.get_config = AsyncMock(return_value={})
    return cm


@pytest.fixture
def context(connection_manager, config_manager):
    return MockContext(
        {
            "connection_manager": connection_manager,
            "config_manager": config_manager,
        }
    )
