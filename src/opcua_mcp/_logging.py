"""
Logging and global exception handling utilities for the OPC UA MCP server.

This module provides functions to:
- Set up root logger configuration early in process startup (`setup_logging`).
- Ensure all unhandled synchronous and asynchronous exceptions are logged (`setup_global_exception_logging`).

Call `setup_logging()` before any other imports in your main entrypoint to ensure all loggers are configured correctly.
Call `setup_global_exception_logging()` once at process startup to guarantee robust error visibility.
"""

import asyncio
import logging
import os
import sys
from types import TracebackType
from typing import Any

from pythonjsonlogger import json as jsonlogger

LOG_LEVEL_ENV_VAR = "PYTHONLOGLEVEL"
"""str: Environment variable holding the root log level (default INFO)."""

LOG_FORMAT_ENV_VAR = "OPCUA_MCP_LOG_FORMAT"
"""str: Environment variable selecting the log format: 'text' (default) or 'json'."""

_TEXT_FORMAT = "[%(asctime)s] %(levelname)s: %(message)s"
_JSON_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


def setup_logging() -> None:
    """
    Set up logging configuration for the application.

    The root logger level comes from the PYTHONLOGLEVEL environment variable. Records go to stderr,
    since stdout carries the MCP protocol when the server runs with the stdio transport.
    Setting OPCUA_MCP_LOG_FORMAT=json switches the handler to structured JSON lines.
    """
    log_format = os.getenv(LOG_FORMAT_ENV_VAR, "text").lower()
    handler = logging.StreamHandler(sys.stderr)
    if log_format == "json":
        handler.setFormatter(
            jsonlogger.JsonFormatter(
                fmt=_JSON_FORMAT,
                datefmt="%Y-%m-%dT%H:%M:%S%z",
            )
        )
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT))

    logging.basicConfig(
        level=os.getenv(LOG_LEVEL_ENV_VAR, "INFO"),
        handlers=[handler],
        force=True,  # Ensure we override any existing logging configuration
    )
    # asyncua logs every publish cycle at INFO
    logging.getLogger("asyncua").setLevel(logging.WARNING)


# Idempotency guard for global exception logging setup
_EXC_LOGGING_INSTALLED = False


def setup_global_exception_logging() -> None:
    """
    Set up global logging for all unhandled exceptions (synchronous and asynchronous) in the process.

    This function ensures that:
        - All uncaught exceptions in synchronous code are logged using the root logger.
        - All uncaught exceptions in asyncio event loops are logged, including loops created later,
          by patching `asyncio.new_event_loop`.
        - The handler is also set on the current event loop, if one exists.

    Subscription callbacks and watchdog tasks run outside any request, so an unhandled error there
    would otherwise disappear silently.
    """
    global _EXC_LOGGING_INSTALLED
    if _EXC_LOGGING_INSTALLED:
        return
    _EXC_LOGGING_INSTALLED = True

    def _log_unhandled_exception(
        exc_type: type[BaseException],
        exc_value: BaseException,
        exc_traceback: TracebackType | None,
    ) -> None:
        if issubclass(exc_type, KeyboardInterrupt):
            return
        logging.error(
            "UNHANDLED EXCEPTION", exc_info=(exc_type, exc_value, exc_traceback)
        )

    sys.excepthook = _log_unhandled_exception

    def _asyncio_exception_handler(
        loop: asyncio.AbstractEventLoop, context: dict[str, Any]
    ) -> None:
        exception = context.get("exception")
        logging.error(
            f"UNHANDLED ASYNC EXCEPTION: {context.get('message')}",
            exc_info=(
                (type(exception), exception, exception.__traceback__)
                if exception
                else None
            ),
        )

    _orig_new_event_loop = asyncio.new_event_loop

    def _patched_new_event_loop(*args: Any, **kwargs: Any) -> asyncio.AbstractEventLoop:
        loop = _orig_new_event_loop(*args, **kwargs)
        loop.set_exception_handler(_asyncio_exception_handler)
        return loop

    asyncio.new_event_loop = _patched_new_event_loop

    try:
        asyncio.get_running_loop().set_exception_handler(_asyncio_exception_handler)
    except RuntimeError:
        # No running loop; the patched factory covers loops created later
        pass
