import sys
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from opcua_mcp.config import McpConfigurationError


def _import_main():
    with (
        patch("opcua_mcp._logging.setup_logging", MagicMock()) as setup_logging_mock,
        patch(
            "opcua_mcp._logging.setup_global_exception_logging", MagicMock()
        ) as setup_global_exception_logging_mock,
    ):
        sys.modules.pop("opcua_mcp.mcp_server.main", None)
        import opcua_mcp.mcp_server.main as mod

    setup_logging_mock.assert_called_once()
    setup_global_exception_logging_mock.assert_called_once()
    return mod


def _config_manager(config=None, error=None):
    config_manager = MagicMock()
    config_manager.get_config = AsyncMock(return_value=config, side_effect=error)
    return config_manager


def test_run_server_stdio_skips_server_section():
    mod = _import_main()

    with (
        patch.object(mod, "_LOGGER", MagicMock()) as logger_mock,
        patch.object(mod, "mcp_server", MagicMock()) as mcp_server_mock,
        patch.object(mod, "_apply_server_section") as apply_mock,
    ):
        mcp_server_mock.name = "testserver"
        mod.run_server("stdio")

        apply_mock.assert_not_called()
        mcp_server_mock.run.assert_called_once_with(transport="stdio")
        logger_mock.info.assert_any_call("MCP server 'testserver' stopped.")


def test_run_server_sse_applies_server_section():
    mod = _import_main()

    with (
        patch.object(mod, "_LOGGER", MagicMock()),
        patch.object(mod, "mcp_server", MagicMock()) as mcp_server_mock,
        patch.object(mod, "_apply_server_section") as apply_mock,
    ):
        mcp_server_mock.name = "testserver"
        mod.run_server("sse")

        apply_mock.assert_called_once()
        mcp_server_mock.run.assert_called_once_with(transport="sse")


def test_run_server_logs_stop_when_run_fails():
    mod = _import_main()

    with (
        patch.object(mod, "_LOGGER", MagicMock()) as logger_mock,
        patch.object(mod, "mcp_server", MagicMock()) as mcp_server_mock,
    ):
        mcp_server_mock.name = "testserver"
        mcp_server_mock.run.side_effect = RuntimeError("port in use")
        with pytest.raises(RuntimeError):
            mod.run_server("stdio")
        logger_mock.info.assert_any_call("MCP server 'testserver' stopped.")


def test_apply_server_section_sets_host_and_port(monkeypatch):
    mod = _import_main()
    monkeypatch.delenv("OPCUA_MCP_HOST", raising=False)
    monkeypatch.delenv("OPCUA_MCP_PORT", raising=False)

    with (
        patch.object(mod, "mcp_server", MagicMock()) as mcp_server_mock,
        patch.object(
            mod,
            "ConfigManager",
            return_value=_config_manager({"server": {"host": "0.0.0.0", "port": 9100}}),
        ),
    ):
        mod._apply_server_section()

        assert mcp_server_mock.settings.host == "0.0.0.0"
        assert mcp_server_mock.settings.port == 9100


def test_apply_server_section_environment_wins(monkeypatch):
    mod = _import_main()
    monkeypatch.setenv("OPCUA_MCP_HOST", "10.0.0.5")
    monkeypatch.delenv("OPCUA_MCP_PORT", raising=False)

    with (
        patch.object(mod, "mcp_server", MagicMock()) as mcp_server_mock,
        patch.object(
            mod,
            "ConfigManager",
            return_value=_config_manager({"server": {"host": "0.0.0.0", "port": 9100}}),
        ),
    ):
        mcp_server_mock.settings.host = "10.0.0.5"
        mod._apply_server_section()

        assert mcp_server_mock.settings.host == "10.0.0.5"
        assert mcp_server_mock.settings.port == 9100


def test_apply_server_section_config_error_is_logged():
    mod = _import_main()

    with (
        patch.object(mod, "_LOGGER", MagicMock()) as logger_mock,
        patch.object(mod, "mcp_server", MagicMock()) as mcp_server_mock,
        patch.object(
            mod,
            "ConfigManager",
            return_value=_config_manager(error=McpConfigurationError("bad file")),
        ),
    ):
        mcp_server_mock.settings.port = 8000
        mod._apply_server_section()

        logger_mock.warning.assert_called_once()
        assert mcp_server_mock.settings.port == 8000


def test_main_calls_run_server():
    mod = _import_main()

    with (
        patch("sys.argv", ["prog", "--transport", "streamable-http"]),
        patch.object(mod, "run_server") as mock_run,
    ):
        mod.main()
        mock_run.assert_called_once_with("streamable-http")


def test_main_defaults_to_stdio():
    mod = _import_main()

    with (
        patch("sys.argv", ["prog"]),
        patch.object(mod, "run_server") as mock_run,
    ):
        mod.main()
        mock_run.assert_called_once_with("stdio")


def test_main_rejects_unknown_transport():
    mod = _import_main()

    with patch("sys.argv", ["prog", "-t", "websocket"]), pytest.raises(SystemExit):
        mod.main()
