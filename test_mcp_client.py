#!/usr/bin/env python3
"""
Tests for MCP client configuration and setup (no server processes started).
"""

import json

import pytest
from mcp import McpError, types

from imc_chat.config import Configuration
from imc_chat.mcp_client import (
    MCPClient,
    cleanup_mcp_clients,
    connect_mcp_clients,
    setup_mcp_clients,
)

CONNECTION = {
    "max_reconnect_attempts": 2,
    "initial_reconnect_delay": 0.01,
    "max_reconnect_delay": 0.02,
    "connection_timeout": 1.0,
    "ping_timeout": 1.0,
}


def test_connection_config_required():
    with pytest.raises(ValueError, match="connection_config must be provided"):
        MCPClient("policy", {"command": "uvx"})

    partial = {k: v for k, v in CONNECTION.items() if k != "ping_timeout"}
    with pytest.raises(ValueError, match="ping_timeout"):
        MCPClient("policy", {"command": "uvx"}, partial)


@pytest.mark.asyncio
async def test_connect_retries_then_raises():
    client = MCPClient(
        "policy",
        {"command": "definitely-not-a-real-command-xyz", "args": [], "env": {}},
        CONNECTION,
    )

    with pytest.raises(ValueError, match="not found in PATH"):
        await client.connect()
    assert client.is_connected is False


@pytest.mark.asyncio
async def test_operations_require_connection():
    client = MCPClient("policy", {"command": "uvx"}, CONNECTION)

    assert await client.ping() is False
    with pytest.raises(McpError) as exc_info:
        await client.list_tools()
    assert exc_info.value.error.code == types.INTERNAL_ERROR

    with pytest.raises(McpError, match="not connected"):
        await client.call_tool("getPolicyDetails", {"policy_id": "P-1"})


@pytest.mark.asyncio
async def test_close_is_idempotent():
    client = MCPClient("policy", {"command": "uvx"}, CONNECTION)
    await client.close()
    await client.close()
    assert client.is_connected is False


def test_setup_skips_disabled_servers(tmp_path):
    servers = tmp_path / "servers.json"
    servers.write_text(json.dumps({
        "mcpServers": {
            "policy": {"enabled": True, "command": "uvx", "args": [], "env": {}},
            "claims": {"enabled": False, "command": "uvx", "args": [], "env": {}},
            "legacy": {"command": "uvx", "args": [], "env": {}},
        }
    }))
    config = Configuration.from_dict({
        "mcp": {"enabled": True, "servers_config": str(servers), "connection": CONNECTION}
    })

    clients = setup_mcp_clients(config)

    assert [c.name for c in clients] == ["policy"]


def test_setup_with_mcp_disabled():
    assert setup_mcp_clients(Configuration.from_dict({"mcp": {"enabled": False}})) == []


@pytest.mark.asyncio
async def test_connect_mcp_clients_drops_failures():
    client = MCPClient(
        "broken",
        {"command": "definitely-not-a-real-command-xyz", "args": [], "env": {}},
        CONNECTION,
    )
    assert await connect_mcp_clients([client]) == []
    await cleanup_mcp_clients([client])
