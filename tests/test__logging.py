import asyncio
import importlib
import json
import logging
import sys

import pytest
from pythonjsonlogger import json as jsonlogger


def _reloaded():
    import opcua_mcp._logging as logging_mod

    return importlib.reload(logging_mod)


@pytest.fixture(autouse=True)
def restore_hooks(monkeypatch):
    monkeypatch.setattr(sys, "excepthook", sys.excepthook)
    monkeypatch.setattr(asyncio, "new_event_loop", asyncio.new_event_loop)


@pytest.fixture
def captured_basic_config(monkeypatch):
    called = {}

    def fake_basicConfig(**kwargs):
        called.update(kwargs)

    monkeypatch.setattr(logging, "basicConfig", fake_basicConfig)
    return called


def test_setup_logging_sets_basic_config(monkeypatch, captured_basic_config):
    monkeypatch.delenv("PYTHONLOGLEVEL", raising=False)
    monkeypatch.delenv("OPCUA_MCP_LOG_FORMAT", raising=False)

    _reloaded().setup_logging()

    assert captured_basic_config["level"] == "INFO"
    assert captured_basic_config["force"] is True
    (handler,) = captured_basic_config["handlers"]
    assert handler.stream is sys.stderr
    assert not isinstance(handler.formatter, jsonlogger.JsonFormatter)


def test_setup_logging_respects_level_env(monkeypatch, captured_basic_config):
    monkeypatch.setenv("PYTHONLOGLEVEL", "DEBUG")

    _reloaded().setup_logging()

    assert captured_basic_config["level"] == "DEBUG"


def test_setup_logging_json_format(monkeypatch, captured_basic_config):
    monkeypatch.setenv("OPCUA_MCP_LOG_FORMAT", "JSON")

    _reloaded().setup_logging()

    (handler,) = captured_basic_config["handlers"]
    assert isinstance(handler.formatter, jsonlogger.JsonFormatter)
    record = logging.LogRecord(
        "opcua_mcp.test", logging.INFO, __file__, 1, "connected", None, None
    )
    payload = json.loads(handler.formatter.format(record))
    assert payload["message"] == "connected"
    assert payload["name"] == "opcua_mcp.test"
    assert payload["levelname"] == "INFO"


def test_setup_logging_quiets_asyncua(captured_basic_config):
    logging.getLogger("asyncua").setLevel(logging.NOTSET)

    _reloaded().setup_logging()

    assert logging.getLogger("asyncua").level == logging.WARNING


def test_setup_global_exception_logging_idempotent():
    logging_mod = _reloaded()

    logging_mod.setup_global_exception_logging()
    assert logging_mod._EXC_LOGGING_INSTALLED is True
    hook = sys.excepthook
    loop_factory = asyncio.new_event_loop
    logging_mod.setup_global_exception_logging()
    assert sys.excepthook is hook
    assert asyncio.new_event_loop is loop_factory


def test_setup_global_exception_logging_sets_excepthook(caplog):
    logging_mod = _reloaded()
    caplog.set_level("ERROR")
    logging_mod.setup_global_exception_logging()

    try:
        raise RuntimeError("fail-sync")
    except RuntimeError as e:
        sys.excepthook(RuntimeError, e, e.__traceback__)

    assert any("UNHANDLED EXCEPTION" in r.message for r in caplog.records)
    assert any(r.exc_info and r.exc_info[1].args == ("fail-sync",) for r in caplog.records)


def test_setup_global_exception_logging_ignores_keyboardinterrupt(caplog):
    logging_mod = _reloaded()
    caplog.set_level("ERROR")
    logging_mod.setup_global_exception_logging()

    sys.excepthook(KeyboardInterrupt, KeyboardInterrupt(), None)

    assert not caplog.records


def test_setup_global_exception_logging_new_loops(caplog):
    logging_mod = _reloaded()
    caplog.set_level("ERROR")
    logging_mod.setup_global_exception_logging()

    loop = asyncio.new_event_loop()
    try:
        loop.call_exception_handler(
            {"message": "fail-async", "exception": RuntimeError("fail-async")}
        )
    finally:
        loop.close()

    assert any("UNHANDLED ASYNC EXCEPTION: fail-async" in r.message for r in caplog.records)


@pytest.mark.asyncio
async def test_setup_global_exception_logging_running_loop():
    logging_mod = _reloaded()
    loop = asyncio.get_running_loop()
    previous = loop.get_exception_handler()

    try:
        logging_mod.setup_global_exception_logging()
        assert loop.get_exception_handler() is not None
    finally:
        loop.set_exception_handler(previous)
