"""
Async OPC UA MCP configuration management.

This module loads, validates and caches the OPC UA MCP configuration from a JSON file.
The path comes from the OPCUA_MCP_CONFIG_FILE environment variable. The file is optional:
when the variable is not set the empty configuration `{}` is used and every connect
parameter has to be supplied by the caller.

Features:
    - Coroutine-safe, cached loading of configuration using asyncio.Lock.
    - Strict validation of configuration structure and values.
    - Uses aiofiles for non-blocking, native async config file reads.
    - Credentials are redacted before anything is logged.

Configuration Schema:
---------------------
The configuration file must be a JSON object. All top-level keys are optional:

  - `client` (dict): Tuning for the OPC UA client.
      - `application_name` (str): Application name announced to the server.
      - `request_timeout` (number): Per-request timeout in seconds (default 4).
      - `watchdog_interval` (number): Seconds between liveness reads of the server state (default 5).
      - `seed_subscriptions` (bool): Read a node once when subscribing to it (default true).
      - `certificate` (str), `private_key` (str): Client certificate and key paths, required
        for any security policy other than None. Must be set together.

  - `connection` (dict): Defaults for the connect operation.
      - `endpoint` (str): The opc.tcp:// endpoint URL.
      - `security_policy` (str): None, Basic128Rsa15, Basic256, Basic256Sha256,
        Aes128Sha256RsaOaep or Aes256Sha256RsaPss (case-insensitive).
      - `security_mode` (str): None, Sign or SignAndEncrypt (case-insensitive).
      - `auth_type` (str): "Anonymous" or "UserPassword".
      - `username` (str), `password` (str) or `password_env_var` (str). `password` and
        `password_env_var` are mutually exclusive.
      - `auto_connect` (bool): Connect while the server starts up. Requires `endpoint`.

  - `server` (dict): `host` (str) and `port` (int) for the HTTP transports.

Example Valid Configuration:
---------------------------
```json
{
    "client": {"request_timeout": 10, "watchdog_interval": 5},
    "connection": {
        "endpoint": "opc.tcp://192.168.0.1:4840",
        "auth_type": "UserPassword",
        "username": "operator",
        "password_env_var": "PLC_PASSWORD",
        "auto_connect": true
    }
}
```

Environment Variables:
---------------------
- `OPCUA_MCP_CONFIG_FILE`: Path to the OPC UA MCP configuration JSON file.
"""

__all__ = [
    # Errors and core config
    "McpConfigurationError",
    "ConnectionSectionConfigurationError",
    "ClientSectionConfigurationError",
    "ConfigManager",
    "CONFIG_ENV_VAR",
    "validate_config",
    "get_config_path",
    "load_and_validate_config",
    "get_connection_defaults",
    "get_client_options",
    # Connection API
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

import asyncio
import json
import logging
import os
from typing import Any, cast

import aiofiles

from ._connection import (
    AUTH_ANONYMOUS,
    AUTH_USER_PASSWORD,
    SECURITY_MODES,
    SECURITY_POLICIES,
    ClientOptions,
    ConnectionConfig,
    client_options_from_config,
    redact_connection_config,
    resolve_connection_config,
    resolve_security_mode,
    resolve_security_policy,
    validate_client_section,
    validate_connection_section,
    validate_server_section,
)
from .errors import (
    ClientSectionConfigurationError,
    ConnectionSectionConfigurationError,
    McpConfigurationError,
)

_LOGGER = logging.getLogger(__name__)

CONFIG_ENV_VAR = "OPCUA_MCP_CONFIG_FILE"
"""
str: Name of the environment variable specifying the path to the OPC UA MCP config file.
"""

_ALLOWED_TOP_LEVEL_KEYS: set[str] = {"client", "connection", "server"}
"""Set of all allowed top-level keys in the configuration file."""


class ConfigManager:
    """
    Async configuration manager for the OPC UA MCP configuration.

    Encapsulates loading, validating and caching the configuration. One instance is
    created per server lifespan.
    """

    def __init__(self) -> None:
        self._cache: dict[str, Any] | None = None
        self._lock = asyncio.Lock()

    async def clear_config_cache(self) -> None:
        """
        Clear the cached configuration (coroutine-safe).

        The next configuration access reloads from disk.
        """
        _LOGGER.debug("Clearing OPC UA MCP configuration cache...")
        async with self._lock:
            self._cache = None

        _LOGGER.debug("Configuration cache cleared.")

    async def _set_config_cache(self, config: dict[str, Any]) -> None:
        """
        PRIVATE: Set the in-memory configuration cache (coroutine-safe, for testing/internal use only).

        The configuration is validated before caching.

        Args:
            config (dict[str, Any]): The configuration dictionary to cache.

        Raises:
            McpConfigurationError: If the provided configuration is invalid.
        """
        async with self._lock:
            self._cache = validate_config(config)

    async def get_config(self) -> dict[str, Any]:
        """
        Load and validate the configuration (coroutine-safe, cached).

        Returns:
            dict[str, Any]: The validated configuration. Empty if OPCUA_MCP_CONFIG_FILE is not set.

        Raises:
            McpConfigurationError: If the config file cannot be read, is not JSON, or fails validation.
        """
        _LOGGER.debug("Loading OPC UA MCP application configuration...")
        async with self._lock:
            if self._cache is not None:
                _LOGGER.debug("Using cached OPC UA MCP application configuration.")
                return self._cache

            config_path = get_config_path()
            if config_path is None:
                _LOGGER.info(
                    f"Environment variable {CONFIG_ENV_VAR} is not set, using empty configuration."
                )
                validated: dict[str, Any] = {}
            else:
                validated = await load_and_validate_config(config_path)
            self._cache = validated
            _log_config_summary(validated)
            return validated


async def get_connection_defaults(config_manager: ConfigManager) -> dict[str, Any]:
    """
    Return the `connection` section of the configuration, or an empty dict.

    Args:
        config_manager (ConfigManager): The ConfigManager instance to use.

    Returns:
        dict[str, Any]: The validated `connection` section.
    """
    config = await config_manager.get_config()
    return cast(dict[str, Any], config.get("connection", {}))


async def get_client_options(config_manager: ConfigManager) -> ClientOptions:
    """
    Return the `client` section of the configuration as `ClientOptions`.

    Args:
        config_manager (ConfigManager): The ConfigManager instance to use.

    Returns:
        ClientOptions: Client options with defaults for absent keys.
    """
    config = await config_manager.get_config()
    return client_options_from_config(config.get("client"))


async def _load_config_from_file(config_path: str) -> dict[str, Any]:
    """
    Load and parse the configuration from a JSON file asynchronously.

    Raises:
        McpConfigurationError: If the file is not found, cannot be read, is not valid JSON,
            or any other I/O error occurs.
    """
    try:
        async with aiofiles.open(config_path) as f:
            content = await f.read()
        return cast(dict[str, Any], json.loads(content))
    except FileNotFoundError:
        _LOGGER.error(f"Configuration file not found: {config_path}")
        raise McpConfigurationError(
            f"Configuration file not found: {config_path}"
        ) from None
    except PermissionError:
        _LOGGER.error(
            f"Permission denied when trying to read configuration file: {config_path}"
        )
        raise McpConfigurationError(
            f"Permission denied when trying to read configuration file: {config_path}"
        ) from None
    except json.JSONDecodeError as e:
        _LOGGER.error(f"Invalid JSON in configuration file {config_path}: {e}")
        raise McpConfigurationError(
            f"Invalid JSON in configuration file {config_path}: {e}"
        ) from e
    except Exception as e:
        _LOGGER.error(
            f"Unexpected error loading or parsing config file {config_path}: {e}"
        )
        raise McpConfigurationError(
            f"Unexpected error loading or parsing config file {config_path}: {e}"
        ) from e


def get_config_path() -> str | None:
    """
    Retrieve the configuration file path from the environment variable.

    Returns:
        str | None: The value of OPCUA_MCP_CONFIG_FILE, or None if it is not set.
    """
    config_path = os.environ.get(CONFIG_ENV_VAR)
    if config_path is not None:
        _LOGGER.info(f"Environment variable {CONFIG_ENV_VAR} is set to: {config_path}")
    return config_path


async def load_and_validate_config(config_path: str) -> dict[str, Any]:
    """
    Load and validate the configuration from a JSON file.

    All exceptions are logged and re-raised as McpConfigurationError.

    Args:
        config_path (str): The path to the configuration JSON file.

    Returns:
        dict[str, Any]: The loaded and validated configuration dictionary.

    Raises:
        McpConfigurationError: If the file cannot be read, is not valid JSON, or fails validation.
    """
    try:
        data = await _load_config_from_file(config_path)
        return validate_config(data)
    except (
        ConnectionSectionConfigurationError,
        ClientSectionConfigurationError,
    ) as specific_e:
        _LOGGER.error(
            f"Configuration validation failed for {config_path}: {specific_e}"
        )
        raise McpConfigurationError(
            f"Configuration validation failed: {specific_e}"
        ) from specific_e
    except McpConfigurationError:
        raise
    except Exception as e:
        _LOGGER.error(f"Error loading configuration file {config_path}: {e}")
        raise McpConfigurationError(f"Error loading configuration file: {e}") from e


def _log_config_summary(config: dict[str, Any]) -> None:
    connection = config.get("connection")
    if connection:
        _LOGGER.info(
            f"Configured connection defaults: {redact_connection_config(connection)}"
        )
    else:
        _LOGGER.info("No connection defaults configured.")
    if config.get("client"):
        _LOGGER.info(f"Client options: {config['client']}")


def validate_config(config: dict[str, Any]) -> dict[str, Any]:
    """
    Validate the OPC UA MCP application configuration dictionary.

    Validation Rules:
        - The configuration must be a JSON object.
        - Only the top-level keys 'client', 'connection' and 'server' are allowed.
        - Each present section is validated according to its schema.

    Args:
        config (dict[str, Any]): The configuration dictionary to validate.

    Returns:
        dict[str, Any]: The validated configuration dictionary.

    Raises:
        McpConfigurationError: If the configuration is not a dict or has unknown keys.
        ConnectionSectionConfigurationError: If the `connection` section is invalid.
        ClientSectionConfigurationError: If the `client` or `server` section is invalid.

    Example:
        >>> validate_config({"connection": {"endpoint": "opc.tcp://localhost:4840"}})
        {'connection': {'endpoint': 'opc.tcp://localhost:4840'}}
    """
    if not isinstance(config, dict):
        _LOGGER.error("OPC UA MCP config must be a JSON object")
        raise McpConfigurationError("OPC UA MCP config must be a JSON object")

    unknown_keys = set(config.keys()) - _ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        _LOGGER.error(f"Unknown top-level keys in OPC UA MCP config: {unknown_keys}")
        raise McpConfigurationError(
            f"Unknown top-level keys in OPC UA MCP config: {unknown_keys}"
        )

    if "client" in config:
        validate_client_section(config["client"])
    if "connection" in config:
        validate_connection_section(config["connection"])
    if "server" in config:
        validate_server_section(config["server"])

    _LOGGER.info("Configuration validation passed.")
    return config
