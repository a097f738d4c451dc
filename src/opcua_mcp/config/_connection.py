"""
Configuration handling for the OPC UA connection and client tuning.

This module covers two related concerns:

1. **Configuration file sections** (`connection`, `client`, `server`):
   - Validated by `validate_connection_section()`, `validate_client_section()` and
     `validate_server_section()`
   - Redacted by `redact_connection_config()`

2. **Connect-parameter resolution**:
   - `resolve_connection_config()` turns raw connect arguments (from a tool call, falling
     back to the `connection` section) into an immutable `ConnectionConfig`
   - Security policy and mode tokens are canonicalized case-insensitively. Unknown or
     absent tokens resolve to "None" with a warning instead of failing.
   - `client_options_from_config()` turns the `client` section into `ClientOptions`

Validation errors for configuration file sections raise the `McpConfigurationError` family.
Invalid connect parameters raise `ConfigError`, which is what callers of `connect` see.
"""

__all__ = [
    "ConnectionConfig",
    "ClientOptions",
    "AUTH_ANONYMOUS",
    "AUTH_USER_PASSWORD",
    "SECURITY_POLICIES",
    "SECURITY_MODES",
    "resolve_connection_config",
    "resolve_security_policy",
    "resolve_security_mode",
    "client_options_from_config",
    "validate_connection_section",
    "validate_client_section",
    "validate_server_section",
    "redact_connection_config",
]

import logging
import os
import types
from dataclasses import dataclass
from typing import Any

from opcua_mcp._exceptions import ConfigError

from .errors import (
    ClientSectionConfigurationError,
    ConnectionSectionConfigurationError,
)

_LOGGER = logging.getLogger(__name__)


AUTH_ANONYMOUS = "Anonymous"
AUTH_USER_PASSWORD = "UserPassword"

_AUTH_ALIASES: dict[str, str] = {
    "anonymous": AUTH_ANONYMOUS,
    "userpassword": AUTH_USER_PASSWORD,
    "username": AUTH_USER_PASSWORD,
    "password": AUTH_USER_PASSWORD,
}
"""Lower-cased auth_type tokens mapped to their canonical value."""

SECURITY_POLICIES: tuple[str, ...] = (
    "None",
    "Basic128Rsa15",
    "Basic256",
    "Basic256Sha256",
    "Aes128Sha256RsaOaep",
    "Aes256Sha256RsaPss",
)
"""Canonical security policy tokens."""

SECURITY_MODES: tuple[str, ...] = ("None", "Sign", "SignAndEncrypt")
"""Canonical message security mode tokens."""

DEFAULT_APPLICATION_NAME = "OPC UA MCP Client"
DEFAULT_REQUEST_TIMEOUT = 4.0
DEFAULT_WATCHDOG_INTERVAL = 5.0


@dataclass(frozen=True)
class ConnectionConfig:
    """Resolved, validated parameters for a single `connect` call.

    Attributes:
        endpoint: The opc.tcp:// endpoint URL.
        security_policy: Canonical security policy token (one of SECURITY_POLICIES).
        security_mode: Canonical security mode token (one of SECURITY_MODES).
        auth_type: AUTH_ANONYMOUS or AUTH_USER_PASSWORD.
        username: Username for password authentication.
        password: Password for password authentication. Never logged.
    """

    endpoint: str
    security_policy: str = "None"
    security_mode: str = "None"
    auth_type: str = AUTH_ANONYMOUS
    username: str | None = None
    password: str | None = None

    @property
    def is_secured(self) -> bool:
        """True if a security policy other than None is in effect."""
        return self.security_policy != "None"

    def redacted(self) -> dict[str, Any]:
        """Return the configuration as a dict with the password redacted, for logging."""
        return redact_connection_config(
            {
                "endpoint": self.endpoint,
                "security_policy": self.security_policy,
                "security_mode": self.security_mode,
                "auth_type": self.auth_type,
                "username": self.username,
                "password": self.password,
            }
        )


@dataclass(frozen=True)
class ClientOptions:
    """Tuning for the asyncua client, taken from the `client` config section."""

    application_name: str = DEFAULT_APPLICATION_NAME
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    watchdog_interval: float = DEFAULT_WATCHDOG_INTERVAL
    seed_subscriptions: bool = True
    certificate: str | None = None
    private_key: str | None = None


def _canonical_token(value: str | None, allowed: tuple[str, ...]) -> str | None:
    if not value:
        return None
    lowered = value.strip().lower()
    for token in allowed:
        if token.lower() == lowered:
            return token
    return None


def resolve_security_policy(value: str | None) -> str:
    """Resolve a security policy token to its canonical value, defaulting to "None".

    Args:
        value (str | None): The requested token, any case. May be None or empty.

    Returns:
        str: One of SECURITY_POLICIES.
    """
    token = _canonical_token(value, SECURITY_POLICIES)
    if token is None:
        if value:
            _LOGGER.warning(
                f"[config:resolve_security_policy] Unknown security policy '{value}', using 'None'"
            )
        return "None"
    return token


def resolve_security_mode(value: str | None) -> str:
    """Resolve a message security mode token to its canonical value, defaulting to "None".

    Args:
        value (str | None): The requested token, any case. May be None or empty.

    Returns:
        str: One of SECURITY_MODES.
    """
    token = _canonical_token(value, SECURITY_MODES)
    if token is None:
        if value:
            _LOGGER.warning(
                f"[config:resolve_security_mode] Unknown security mode '{value}', using 'None'"
            )
        return "None"
    return token


def _resolve_auth_type(value: str | None) -> str:
    if not value:
        return AUTH_ANONYMOUS
    return _AUTH_ALIASES.get(value.strip().lower(), AUTH_ANONYMOUS)


def resolve_connection_config(
    endpoint: str | None,
    security_policy: str | None = None,
    security_mode: str | None = None,
    auth_type: str | None = None,
    username: str | None = None,
    password: str | None = None,
    defaults: dict[str, Any] | None = None,
) -> ConnectionConfig:
    """Validate raw connect arguments and produce a `ConnectionConfig`.

    Arguments left as None fall back to the same-named key of `defaults` (the validated
    `connection` config section). A `password_env_var` in `defaults` is read from the
    environment when no password is supplied.

    Args:
        endpoint: The endpoint URL. Required after applying defaults.
        security_policy: Security policy token; unknown tokens resolve to "None".
        security_mode: Security mode token; unknown tokens resolve to "None".
        auth_type: "Anonymous" or "UserPassword" (aliases accepted); anything else is anonymous.
        username: Username for password authentication.
        password: Password for password authentication.
        defaults: Optional `connection` config section.

    Returns:
        ConnectionConfig: The resolved configuration.

    Raises:
        ConfigError: If the endpoint is missing, or password authentication is requested
            without both a username and a password.
    """
    defaults = defaults or {}

    endpoint = endpoint or defaults.get("endpoint")
    if not endpoint or not str(endpoint).strip():
        raise ConfigError("Endpoint is required")

    resolved_auth = _resolve_auth_type(auth_type or defaults.get("auth_type"))
    resolved_username = username or defaults.get("username")
    resolved_password = password or defaults.get("password")
    if not resolved_password and defaults.get("password_env_var"):
        resolved_password = os.environ.get(defaults["password_env_var"])

    if resolved_auth == AUTH_USER_PASSWORD and not (
        resolved_username and resolved_password
    ):
        raise ConfigError(
            "Username and password are required for UserPassword authentication"
        )

    policy = resolve_security_policy(
        security_policy or defaults.get("security_policy")
    )
    mode = resolve_security_mode(security_mode or defaults.get("security_mode"))
    if policy == "None" and mode != "None":
        _LOGGER.warning(
            f"[config:resolve_connection_config] Security mode '{mode}' ignored with security policy 'None'"
        )
        mode = "None"
    elif policy != "None" and mode == "None":
        _LOGGER.warning(
            f"[config:resolve_connection_config] Security policy '{policy}' requires a signing mode, using 'Sign'"
        )
        mode = "Sign"

    return ConnectionConfig(
        endpoint=str(endpoint).strip(),
        security_policy=policy,
        security_mode=mode,
        auth_type=resolved_auth,
        username=resolved_username if resolved_auth == AUTH_USER_PASSWORD else None,
        password=resolved_password if resolved_auth == AUTH_USER_PASSWORD else None,
    )


def client_options_from_config(client_section: dict[str, Any] | None) -> ClientOptions:
    """Build `ClientOptions` from a validated `client` config section.

    Args:
        client_section (dict[str, Any] | None): The section, or None for defaults.

    Returns:
        ClientOptions: Options with defaults for absent keys.
    """
    section = client_section or {}
    return ClientOptions(
        application_name=section.get("application_name", DEFAULT_APPLICATION_NAME),
        request_timeout=float(section.get("request_timeout", DEFAULT_REQUEST_TIMEOUT)),
        watchdog_interval=float(
            section.get("watchdog_interval", DEFAULT_WATCHDOG_INTERVAL)
        ),
        seed_subscriptions=bool(section.get("seed_subscriptions", True)),
        certificate=section.get("certificate"),
        private_key=section.get("private_key"),
    )


def redact_connection_config(connection_config: dict[str, Any]) -> dict[str, Any]:
    """
    Redact sensitive fields from a connection configuration dictionary.

    Creates a shallow copy and replaces a non-empty 'password' with "[REDACTED]".
    The original dictionary is not modified.

    Args:
        connection_config (dict[str, Any]): The connection configuration.

    Returns:
        dict[str, Any]: A new dictionary with sensitive fields redacted.

    Example:
        >>> redact_connection_config({"endpoint": "opc.tcp://plc:4840", "password": "s3cret"})
        {'endpoint': 'opc.tcp://plc:4840', 'password': '[REDACTED]'}
    """
    config_copy = dict(connection_config)
    if config_copy.get("password"):
        config_copy["password"] = "[REDACTED]"  # noqa: S105
    return config_copy


_ALLOWED_CONNECTION_FIELDS: dict[str, type | tuple[type, ...]] = {
    "endpoint": str,
    "security_policy": str,
    "security_mode": str,
    "auth_type": str,
    "username": (str, types.NoneType),
    "password": (str, types.NoneType),
    "password_env_var": (str, types.NoneType),
    "auto_connect": bool,
}
"""Allowed fields of the `connection` section and their expected types."""

_ALLOWED_CLIENT_FIELDS: dict[str, type | tuple[type, ...]] = {
    "application_name": str,
    "request_timeout": (int, float),
    "watchdog_interval": (int, float),
    "seed_subscriptions": bool,
    "certificate": (str, types.NoneType),
    "private_key": (str, types.NoneType),
}
"""Allowed fields of the `client` section and their expected types."""

_ALLOWED_SERVER_FIELDS: dict[str, type | tuple[type, ...]] = {
    "host": str,
    "port": int,
}
"""Allowed fields of the `server` section and their expected types."""


def _validate_field_types(
    section_name: str,
    section: Any,
    allowed_fields: dict[str, type | tuple[type, ...]],
    error_cls: type[Exception],
) -> None:
    if not isinstance(section, dict):
        raise error_cls(
            f"'{section_name}' section must be a dictionary, got {type(section).__name__}"
        )

    for field_name, field_value in section.items():
        if field_name not in allowed_fields:
            raise error_cls(f"Unknown field '{field_name}' in '{section_name}' section")

        allowed_types = allowed_fields[field_name]
        # bool is an int subclass; numeric fields must not accept it
        if isinstance(field_value, bool) and bool not in (
            allowed_types if isinstance(allowed_types, tuple) else (allowed_types,)
        ):
            raise error_cls(
                f"Field '{field_name}' in '{section_name}' section must not be a boolean"
            )
        if not isinstance(field_value, allowed_types):
            if isinstance(allowed_types, tuple):
                expected = ", ".join(t.__name__ for t in allowed_types)
            else:
                expected = allowed_types.__name__
            raise error_cls(
                f"Field '{field_name}' in '{section_name}' section must be of type {expected}, "
                f"got {type(field_value).__name__}"
            )


def validate_connection_section(section: Any) -> None:
    """Validate the `connection` configuration section.

    Args:
        section (Any): The value of the `connection` key.

    Raises:
        ConnectionSectionConfigurationError: On unknown fields, wrong types, both
            'password' and 'password_env_var' set, or unknown security tokens.
    """
    _validate_field_types(
        "connection",
        section,
        _ALLOWED_CONNECTION_FIELDS,
        ConnectionSectionConfigurationError,
    )

    if section.get("password") and section.get("password_env_var"):
        raise ConnectionSectionConfigurationError(
            "In 'connection' section, both 'password' and 'password_env_var' are set. "
            "Please use only one."
        )

    if (
        "security_policy" in section
        and _canonical_token(section["security_policy"], SECURITY_POLICIES) is None
    ):
        raise ConnectionSectionConfigurationError(
            f"Unknown security_policy '{section['security_policy']}' in 'connection' section. "
            f"Known values are: {', '.join(SECURITY_POLICIES)}"
        )
    if (
        "security_mode" in section
        and _canonical_token(section["security_mode"], SECURITY_MODES) is None
    ):
        raise ConnectionSectionConfigurationError(
            f"Unknown security_mode '{section['security_mode']}' in 'connection' section. "
            f"Known values are: {', '.join(SECURITY_MODES)}"
        )

    if section.get("auto_connect") and not section.get("endpoint"):
        raise ConnectionSectionConfigurationError(
            "'auto_connect' is set in 'connection' section but no 'endpoint' is configured"
        )


def validate_client_section(section: Any) -> None:
    """Validate the `client` configuration section.

    Raises:
        ClientSectionConfigurationError: On unknown fields, wrong types, non-positive
            timings, or only one of 'certificate'/'private_key' set.
    """
    _validate_field_types(
        "client", section, _ALLOWED_CLIENT_FIELDS, ClientSectionConfigurationError
    )

    for field_name in ("request_timeout", "watchdog_interval"):
        if field_name in section and section[field_name] <= 0:
            raise ClientSectionConfigurationError(
                f"Field '{field_name}' in 'client' section must be positive, got {section[field_name]}"
            )

    if bool(section.get("certificate")) != bool(section.get("private_key")):
        raise ClientSectionConfigurationError(
            "'certificate' and 'private_key' in 'client' section must be set together"
        )


def validate_server_section(section: Any) -> None:
    """Validate the `server` configuration section.

    Raises:
        ClientSectionConfigurationError: On unknown fields, wrong types or an out-of-range port.
    """
    _validate_field_types(
        "server", section, _ALLOWED_SERVER_FIELDS, ClientSectionConfigurationError
    )
    port = section.get("port")
    if port is not None and not 0 < port < 65536:
        raise ClientSectionConfigurationError(
            f"Field 'port' in 'server' section must be between 1 and 65535, got {port}"
        )
