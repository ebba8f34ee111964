"""
Tool registry for connected MCP clients.

Collects the tools every connected MCP client publishes, registers each one
under its semantic name, and routes calls back to the owning client using
the tool's raw identifier.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Protocol

from mcp import McpError, types

from imc_chat.logging_utils import log_operation
from imc_chat.tools.name_resolver import ToolNameResolver

logger = logging.getLogger(__name__)


class ToolClient(Protocol):
    """The part of an MCP client the registry relies on."""

    name: str

    async def list_tools(self) -> list[types.Tool]: ...

    async def call_tool(
        self, name: str, arguments: dict[str, Any] | None = None
    ) -> types.CallToolResult: ...


@dataclass(frozen=True)
class ToolInfo:
    """A registered tool: its semantic name, raw MCP tool, and owning client."""
    resolved_name: str
    tool: types.Tool
    client: ToolClient

    @property
    def raw_identifier(self) -> str:
        return self.tool.name


class ToolSchemaManager:
    """Registers MCP tools under resolved names and dispatches calls."""

    def __init__(
        self,
        clients: list[ToolClient],
        resolver: ToolNameResolver | None = None,
    ) -> None:
        self.clients = clients
        self.resolver = resolver or ToolNameResolver()
        self._tools: dict[str, ToolInfo] = {}

    async def initialize(self) -> None:
        """List tools from all clients in parallel and register them."""
        results = await asyncio.gather(
            *(client.list_tools() for client in self.clients),
            return_exceptions=True,
        )

        for client, result in zip(self.clients, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning(f"Failed to list tools from '{client.name}': {result}")
                continue
            for tool in result:
                self._register_tool(client, tool)

        logger.info(
            f"Registered {len(self._tools)} tools from {len(self.clients)} clients"
        )

    def _register_tool(self, client: ToolClient, tool: types.Tool) -> None:
        resolved = self.resolver.resolve(tool.name)
        existing = self._tools.get(resolved)
        if existing is not None:
            logger.warning(
                f"Tool name collision: '{tool.name}' from '{client.name}' resolves "
                f"to '{resolved}', already registered by "
                f"'{existing.client.name}' ({existing.raw_identifier}); skipping"
            )
            return
        self._tools[resolved] = ToolInfo(resolved_name=resolved, tool=tool, client=client)

    def list_tool_names(self) -> list[str]:
        return list(self._tools)

    def get_tool_info(self, name: str) -> ToolInfo | None:
        return self._tools.get(name)

    def get_openai_tools(self) -> list[dict[str, Any]]:
        """Tool definitions in OpenAI function-calling format."""
        return [
            {
                "type": "function",
                "function": {
                    "name": info.resolved_name,
                    "description": info.tool.description or "",
                    "parameters": info.tool.inputSchema
                    or {"type": "object", "properties": {}},
                },
            }
            for info in self._tools.values()
        ]

    @log_operation("tool_call", log_args=True)
    async def call_tool(
        self, name: str, arguments: dict[str, Any]
    ) -> types.CallToolResult:
        """Call a registered tool by its resolved name."""
        info = self._tools.get(name)
        if info is None:
            raise McpError(
                error=types.ErrorData(
                    code=types.METHOD_NOT_FOUND,
                    message=f"Tool '{name}' is not registered",
                )
            )

        required = (info.tool.inputSchema or {}).get("required", [])
        missing = [key for key in required if key not in arguments]
        if missing:
            raise McpError(
                error=types.ErrorData(
                    code=types.INVALID_PARAMS,
                    message=(
                        f"Missing required arguments for '{name}': "
                        f"{', '.join(missing)}"
                    ),
                )
            )

        return await info.client.call_tool(info.raw_identifier, arguments)
