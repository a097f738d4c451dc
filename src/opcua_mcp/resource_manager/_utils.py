"""
Classification of connection-layer errors.

Two questions are answered here for the connection manager:

- `classify_connection_error`: which coarse category a failed connect belongs to, wrapped
  as an `OpcUaConnectionError` that keeps the raw error text.
- `is_connection_loss`: whether an error raised by a read or write means the session is
  gone, so the manager should fault instead of surfacing the error alone.

Both look at the exception type first and fall back to signatures in the error text,
since asyncua reports most service failures as `UaStatusCodeError` subclasses whose
names carry the status code.
"""

import asyncio
import logging

from opcua_mcp._exceptions import ConnectionErrorKind, OpcUaConnectionError

_LOGGER = logging.getLogger(__name__)

_KEEPALIVE_SIGNATURES = (
    "badtoomanypublishrequests",
    "badsubscriptionidinvalid",
    "lifetime",
    "keepalive",
    "keep-alive",
    "badsessiontimeout",
)
_TIMEOUT_SIGNATURES = ("badtimeout", "timed out", "timeout")
_REFUSED_SIGNATURES = ("refused", "econnrefused", "badnotconnected")

_CONNECTION_LOSS_SIGNATURES = (
    "badsessionclosed",
    "badsessionidinvalid",
    "badsessionnotactivated",
    "badconnectionclosed",
    "badsecurechannelclosed",
    "badsecurechannelidinvalid",
    "badcommunicationerror",
    "badnotconnected",
    "badservernotconnected",
    "badtimeout",
    "session closed",
    "connection closed",
    "connection lost",
    "refused",
    "timed out",
)

_DIAGNOSTICS: dict[ConnectionErrorKind, str] = {
    ConnectionErrorKind.TIMEOUT: (
        "Connection timed out. Check that the endpoint is reachable and the server is running"
    ),
    ConnectionErrorKind.REFUSED: (
        "Connection refused. Check the endpoint host and port and that the OPC UA server is enabled"
    ),
    ConnectionErrorKind.KEEPALIVE_MISCONFIGURED: (
        "Server rejected the session keep-alive or lifetime settings. Check the server's "
        "subscription and session limits"
    ),
    ConnectionErrorKind.UNKNOWN: "Failed to connect to the OPC UA server",
}


def _error_text(exc: BaseException) -> str:
    text = str(exc)
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__


def classify_connection_error(exc: BaseException) -> OpcUaConnectionError:
    """
    Wrap a connect failure in an `OpcUaConnectionError` with a coarse category.

    Args:
        exc (BaseException): The error raised while connecting.

    Returns:
        OpcUaConnectionError: The classified error. `raw` holds the original error text.

    Example:
        >>> err = classify_connection_error(ConnectionRefusedError("[Errno 111] Connect call failed"))
        >>> err.kind
        <ConnectionErrorKind.REFUSED: 'refused'>
    """
    raw = _error_text(exc)
    lowered = raw.lower()

    if any(signature in lowered for signature in _KEEPALIVE_SIGNATURES):
        kind = ConnectionErrorKind.KEEPALIVE_MISCONFIGURED
    elif isinstance(exc, ConnectionRefusedError) or any(
        signature in lowered for signature in _REFUSED_SIGNATURES
    ):
        kind = ConnectionErrorKind.REFUSED
    elif isinstance(exc, TimeoutError | asyncio.TimeoutError) or any(
        signature in lowered for signature in _TIMEOUT_SIGNATURES
    ):
        kind = ConnectionErrorKind.TIMEOUT
    else:
        kind = ConnectionErrorKind.UNKNOWN

    _LOGGER.debug(f"[classify_connection_error] {kind.value}: {raw}")
    return OpcUaConnectionError(kind, _DIAGNOSTICS[kind], raw)


def is_connection_loss(exc: BaseException) -> bool:
    """
    Return True if an operation error indicates that the session or transport is gone.

    Args:
        exc (BaseException): The error raised by a read, write or browse.

    Returns:
        bool: True for transport errors and for errors whose text matches a known
            session-closed, connection-closed, refused or timed-out signature.
    """
    if isinstance(exc, ConnectionError | TimeoutError | asyncio.TimeoutError):
        return True
    lowered = _error_text(exc).lower()
    return any(signature in lowered for signature in _CONNECTION_LOSS_SIGNATURES)
