"""
opcua_mcp_test_client.py

Async Python client that walks the OPC UA MCP server through a full connection lifecycle using
streamable-http, SSE, or stdio transport.

Features:
- Connects to a running MCP server over HTTP or spawns a stdio server process.
- Lists all available tools on the server.
- Connects to an OPC UA endpoint, reads and browses, registers a node, subscribes to it,
  polls the cached value, then releases everything and disconnects.
- Supports passing environment variables to stdio subprocesses.

Usage examples:
    # Connect via streamable-http (default)
    $ python opcua_mcp_test_client.py --endpoint opc.tcp://192.168.0.1:4840 --node-id 'ns=3;s="Motor"."Speed"'

    # Connect via SSE
    $ python opcua_mcp_test_client.py --transport sse --url http://localhost:8000/sse --endpoint opc.tcp://plc:4840

    # Connect via stdio
    $ python opcua_mcp_test_client.py --transport stdio --stdio-cmd "uv run opcua-mcp-server --transport stdio" --env OPCUA_MCP_CONFIG_FILE=/path/to/file.json

Arguments:
    --transport   Transport type: 'streamable-http' (default), 'sse', or 'stdio'.
    --url         HTTP server URL (auto-detected: http://localhost:8000/mcp for streamable-http, http://localhost:8000/sse for SSE).
    --stdio-cmd   Command to launch stdio server (default: uv run opcua-mcp-server --transport stdio).
    --env         Environment variable for stdio, format KEY=VALUE. Can be specified multiple times.
    --endpoint    OPC UA endpoint passed to opcua_connect. Omit to use the server's configured default.
    --node-id     Node to read, register and subscribe to (default: i=2258, the server's CurrentTime).
    --interval    Publishing interval in milliseconds for the subscription (default: 500).
"""

import argparse
import asyncio
import json
import logging
import shlex
import sys
from contextlib import AsyncExitStack
from typing import Any

from mcp import ClientSession, StdioServerParameters
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client
from mcp.client.streamable_http import streamablehttp_client

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
_LOGGER = logging.getLogger(__name__)


def parse_args():
    """
    Parse command-line arguments for the MCP test client.

    Returns:
        argparse.Namespace: Parsed arguments.
    """
    parser = argparse.ArgumentParser(
        description="MCP test client for the OPC UA MCP server"
    )
    parser.add_argument(
        "--transport",
        choices=["sse", "stdio", "streamable-http"],
        default="streamable-http",
        help="Transport type (sse, stdio, or streamable-http)",
    )
    parser.add_argument(
        "--url",
        default=None,
        help="HTTP server URL (auto-detected based on transport if not specified)",
    )
    parser.add_argument(
        "--stdio-cmd",
        default="uv run opcua-mcp-server --transport stdio",
        help="Stdio server command (pass as a shell string)",
    )
    parser.add_argument(
        "--env",
        action="append",
        default=[],
        help="Environment variable for stdio transport, format KEY=VALUE. Can be specified multiple times.",
    )
    parser.add_argument("--endpoint", default=None, help="OPC UA endpoint URL")
    parser.add_argument("--node-id", default="i=2258", help="Node id to exercise")
    parser.add_argument(
        "--interval", type=int, default=500, help="Publishing interval in ms"
    )
    return parser.parse_args()


def _parse_env(items: list[str]) -> dict[str, str]:
    env_dict = {}
    for item in items:
        if "=" not in item:
            raise ValueError(f"Invalid --env entry: {item}. Must be KEY=VALUE.")
        k, v = item.split("=", 1)
        env_dict[k] = v
    return env_dict


async def _open_session(args, stack: AsyncExitStack) -> ClientSession:
    if args.transport == "stdio":
        stdio_tokens = shlex.split(args.stdio_cmd)
        if not stdio_tokens:
            raise ValueError("--stdio-cmd must not be empty")
        env_dict = _parse_env(args.env)
        params = StdioServerParameters(
            command=stdio_tokens[0],
            args=stdio_tokens[1:],
            env=env_dict if env_dict else None,
        )
        read, write = await stack.enter_async_context(stdio_client(params))
    elif args.transport == "sse":
        read, write = await stack.enter_async_context(sse_client(args.url))
    else:
        read, write, _ = await stack.enter_async_context(
            streamablehttp_client(args.url)
        )

    session = await stack.enter_async_context(ClientSession(read, write))
    await session.initialize()
    return session


async def _call(session: ClientSession, name: str, arguments: dict[str, Any]) -> dict:
    print(f"\nCalling tool: {name} {arguments}")
    try:
        result = await session.call_tool(name, arguments)
    except Exception as e:
        _LOGGER.error(f"Error calling {name}: {e}")
        print(f"Error calling {name}: {e}")
        return {}

    payload: dict = {}
    if result.structuredContent:
        payload = result.structuredContent.get("result", result.structuredContent)
    elif result.content and getattr(result.content[0], "text", None):
        payload = json.loads(result.content[0].text)
    print(f"Result for {name}: {payload}")
    return payload


async def main():
    """
    Connects to the MCP server, lists the tools, and runs one OPC UA session end to end.

    Each step prints its result. Steps that depend on a previous handle are skipped when
    that step failed; disconnect always runs.
    """
    args = parse_args()

    if args.url is None:
        if args.transport == "sse":
            args.url = "http://localhost:8000/sse"
        elif args.transport == "streamable-http":
            args.url = "http://localhost:8000/mcp"

    _LOGGER.info(f"Connecting to OPC UA MCP server via {args.transport} transport")

    async with AsyncExitStack() as stack:
        session = await _open_session(args, stack)

        tools = await session.list_tools()
        print("Available tools:", [t.name for t in tools.tools])

        connect_args = {"endpoint": args.endpoint} if args.endpoint else {}
        connected = await _call(session, "opcua_connect", connect_args)
        if not connected.get("success"):
            return

        try:
            await _call(session, "opcua_status", {})
            await _call(session, "opcua_read", {"node_id": args.node_id})
            await _call(session, "opcua_browse", {})

            registered = await _call(
                session, "opcua_register_node", {"node_id": args.node_id}
            )
            handle = registered.get("registeredHandle")
            if handle:
                subscribed = await _call(
                    session,
                    "opcua_subscribe",
                    {
                        "target": handle,
                        "interval_ms": args.interval,
                        "is_registered": True,
                    },
                )
                sub_handle = subscribed.get("subscriptionHandle")
                if sub_handle:
                    await asyncio.sleep(max(args.interval, 1000) * 2 / 1000)
                    await _call(
                        session,
                        "opcua_subscription_value",
                        {"subscription_handle": sub_handle},
                    )
                    await _call(session, "opcua_subscriptions_list", {})
                await _call(session, "opcua_registered_nodes_list", {})
                await _call(
                    session, "opcua_unregister_node", {"registered_handle": handle}
                )
        finally:
            await _call(session, "opcua_disconnect", {})


if __name__ == "__main__":
    try:
        _LOGGER.info("Starting OPC UA MCP test client")
        asyncio.run(main())
        _LOGGER.info("Test client completed successfully")
    except KeyboardInterrupt:
        _LOGGER.info("Interrupted by user")
        print("\nInterrupted by user.", file=sys.stderr)
    except Exception as e:
        _LOGGER.error(f"Fatal error in main: {e}")
        print(f"Fatal error in main: {e}", file=sys.stderr)
        raise
