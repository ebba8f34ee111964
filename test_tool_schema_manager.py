#!/usr/bin/env python3
"""
Tests for the MCP tool registry.
"""

import pytest
from mcp import McpError, types

from imc_chat.tool_schema_manager import ToolSchemaManager


class FakeToolClient:
    """Minimal stand-in for MCPClient."""

    def __init__(self, name, tools, fail=False):
        self.name = name
        self._tools = tools
        self._fail = fail
        self.calls = []

    async def list_tools(self):
        if self._fail:
            raise ConnectionError("server went away")
        return self._tools

    async def call_tool(self, name, arguments=None):
        self.calls.append((name, arguments))
        return types.CallToolResult(
            content=[types.TextContent(type="text", text=f"{name} ok")]
        )


def _tool(name, required=()):
    return types.Tool(
        name=name,
        description=f"{name} tool",
        inputSchema={
            "type": "object",
            "properties": {key: {"type": "string"} for key in required},
            "required": list(required),
        },
    )


@pytest.mark.asyncio
async def test_registers_tools_under_resolved_names():
    client = FakeToolClient(
        "policy",
        [_tool("policy_getPolicyVehicles", ["policy_id"]), _tool("policy_searchPolicies")],
    )
    mgr = ToolSchemaManager([client])
    await mgr.initialize()

    assert sorted(mgr.list_tool_names()) == ["get_policy_vehicles", "search_policies"]
    info = mgr.get_tool_info("get_policy_vehicles")
    assert info.raw_identifier == "policy_getPolicyVehicles"
    assert info.client is client


@pytest.mark.asyncio
async def test_failed_client_is_skipped():
    good = FakeToolClient("good", [_tool("srv_getPolicyDetails")])
    bad = FakeToolClient("bad", [], fail=True)
    mgr = ToolSchemaManager([bad, good])
    await mgr.initialize()

    assert mgr.list_tool_names() == ["get_policy_details"]


@pytest.mark.asyncio
async def test_name_collision_keeps_first_registration():
    first = FakeToolClient("first", [_tool("a_getPolicyDetails")])
    second = FakeToolClient("second", [_tool("b_getPolicyDetails")])
    mgr = ToolSchemaManager([first, second])
    await mgr.initialize()

    assert mgr.get_tool_info("get_policy_details").client is first


@pytest.mark.asyncio
async def test_openai_tools_payload_uses_resolved_names():
    mgr = ToolSchemaManager([FakeToolClient("p", [_tool("p_searchPolicies")])])
    await mgr.initialize()

    payload = mgr.get_openai_tools()
    assert payload == [
        {
            "type": "function",
            "function": {
                "name": "search_policies",
                "description": "p_searchPolicies tool",
                "parameters": {"type": "object", "properties": {}, "required": []},
            },
        }
    ]


@pytest.mark.asyncio
async def test_call_tool_routes_with_raw_name():
    client = FakeToolClient("policy", [_tool("policy_getPolicyVehicles", ["policy_id"])])
    mgr = ToolSchemaManager([client])
    await mgr.initialize()

    result = await mgr.call_tool("get_policy_vehicles", {"policy_id": "P-1"})

    assert client.calls == [("policy_getPolicyVehicles", {"policy_id": "P-1"})]
    assert result.content[0].text == "policy_getPolicyVehicles ok"


@pytest.mark.asyncio
async def test_call_unknown_tool():
    mgr = ToolSchemaManager([])
    await mgr.initialize()

    with pytest.raises(McpError) as exc_info:
        await mgr.call_tool("nope", {})
    assert exc_info.value.error.code == types.METHOD_NOT_FOUND


@pytest.mark.asyncio
async def test_call_tool_missing_required_args():
    client = FakeToolClient("policy", [_tool("policy_getPolicyVehicles", ["policy_id"])])
    mgr = ToolSchemaManager([client])
    await mgr.initialize()

    with pytest.raises(McpError) as exc_info:
        await mgr.call_tool("get_policy_vehicles", {})
    assert exc_info.value.error.code == types.INVALID_PARAMS
    assert "policy_id" in exc_info.value.error.message
    assert client.calls == []


class RecordingLogger:
    def __init__(self):
        self.bound = {}
        self.events = []

    def bind(self, **context):
        self.bound.update(context)
        return self

    def debug(self, event, **fields):
        self.events.append(("debug", event, fields))

    def error(self, event, **fields):
        self.events.append(("error", event, fields))


@pytest.mark.asyncio
async def test_call_tool_is_logged_as_operation(monkeypatch):
    recorder = RecordingLogger()
    monkeypatch.setattr("imc_chat.logging_utils.logger", recorder)
    client = FakeToolClient("policy", [_tool("policy_getPolicyVehicles", ["policy_id"])])
    mgr = ToolSchemaManager([client])
    await mgr.initialize()

    await mgr.call_tool("get_policy_vehicles", {"policy_id": "P-1"})
    with pytest.raises(McpError):
        await mgr.call_tool("nope", {})

    assert recorder.bound["operation"] == "tool_call"
    assert recorder.bound["function"] == "call_tool"
    levels = [(level, event) for level, event, _ in recorder.events]
    assert levels == [
        ("debug", "Operation started"),
        ("debug", "Operation completed successfully"),
        ("debug", "Operation started"),
        ("error", "Operation failed"),
    ]
    assert recorder.events[0][2]["args"] == ("get_policy_vehicles", {"policy_id": "P-1"})
    assert recorder.events[3][2]["error_type"] == "McpError"
