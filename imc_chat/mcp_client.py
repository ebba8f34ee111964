"""
MCP stdio client for the insurance policy tool servers.

Each configured server in ``servers_config.json`` gets one `MCPClient`.
The tool schema manager lists tools from every connected client and routes
calls back to the owning client under the tool's raw name.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from contextlib import AsyncExitStack
from typing import TYPE_CHECKING, Any

from mcp import ClientSession, McpError, StdioServerParameters, types
from mcp.client.stdio import stdio_client

from imc_chat.logging_utils import handle_tool_errors

if TYPE_CHECKING:                                        # pragma: no cover
    from imc_chat.config import Configuration

logger = logging.getLogger(__name__)

REQUIRED_CONNECTION_PARAMS = (
    "max_reconnect_attempts",
    "initial_reconnect_delay",
    "max_reconnect_delay",
    "connection_timeout",
    "ping_timeout",
)


class MCPClient:
    """
    MCP client for one stdio tool server.

    Connection behaviour comes from ``mcp.connection`` in config.yaml:
    - max_reconnect_attempts: attempts before `connect` gives up
    - initial_reconnect_delay: first backoff delay, doubled per attempt
    - max_reconnect_delay: cap on the backoff delay
    - connection_timeout: timeout for the MCP initialize handshake
    - ping_timeout: timeout for health checks
    """

    def __init__(
        self,
        name: str,
        config: dict[str, Any],
        connection_config: dict[str, Any] | None = None,
    ) -> None:
        self.name: str = name
        self.config: dict[str, Any] = config
        self.session: ClientSession | None = None
        self.exit_stack: AsyncExitStack = AsyncExitStack()
        self._cleanup_lock: asyncio.Lock = asyncio.Lock()
        self._reconnect_attempts: int = 0
        self._is_connected: bool = False
        self.client_version = "0.1.0"

        if not connection_config:
            raise ValueError(
                "connection_config must be provided - no default connection "
                "parameters allowed"
            )
        for param in REQUIRED_CONNECTION_PARAMS:
            if param not in connection_config:
                raise ValueError(
                    f"Required connection parameter '{param}' not found in "
                    "connection_config"
                )

        self._max_reconnect_attempts: int = connection_config[
            "max_reconnect_attempts"
        ]
        self._initial_reconnect_delay: float = connection_config[
            "initial_reconnect_delay"
        ]
        self._max_reconnect_delay: float = connection_config["max_reconnect_delay"]
        self._connection_timeout: float = connection_config["connection_timeout"]
        self._ping_timeout: float = connection_config["ping_timeout"]
        self._reconnect_delay: float = self._initial_reconnect_delay

        logger.debug(
            f"MCP client '{name}' configured with: "
            f"max_attempts={self._max_reconnect_attempts}, "
            f"initial_delay={self._initial_reconnect_delay}s, "
            f"max_delay={self._max_reconnect_delay}s, "
            f"connection_timeout={self._connection_timeout}s, "
            f"ping_timeout={self._ping_timeout}s"
        )

    def _resolve_command(self) -> str | None:
        """
        Resolve the configured command to an executable path.

        Absolute paths are returned only if they exist; anything else is
        looked up on PATH.
        """
        command = self.config.get("command")
        if not command:
            return None
        if os.path.isabs(command):
            return command if os.path.exists(command) else None
        return shutil.which(command)

    async def connect(self) -> None:
        """
        Connect with exponential backoff.

        Raises:
            Exception: the last connection error once all attempts fail
        """
        while self._reconnect_attempts < self._max_reconnect_attempts:
            try:
                await self._attempt_connection()
                self._is_connected = True
                self._reconnect_attempts = 0
                self._reconnect_delay = self._initial_reconnect_delay
                return
            except Exception as e:
                self._reconnect_attempts += 1
                self._is_connected = False

                if self._reconnect_attempts >= self._max_reconnect_attempts:
                    self._reconnect_attempts = 0
                    self._reconnect_delay = self._initial_reconnect_delay
                    logger.error(
                        f"Failed to connect to {self.name} after "
                        f"{self._max_reconnect_attempts} attempts: {e}"
                    )
                    raise

                logger.warning(
                    f"Connection attempt {self._reconnect_attempts} failed for "
                    f"{self.name}: {e}. Retrying in {self._reconnect_delay}s..."
                )
                await asyncio.sleep(self._reconnect_delay)
                self._reconnect_delay = min(
                    self._reconnect_delay * 2, self._max_reconnect_delay
                )

    async def _attempt_connection(self) -> None:
        command = self._resolve_command()
        if not command:
            raise ValueError(
                f"Command '{self.config.get('command')}' not found in PATH"
            )
        if "args" not in self.config:
            raise ValueError(
                f"Server '{self.name}' must have explicit 'args' configuration "
                "(use empty list [] if no arguments needed)"
            )
        if "env" not in self.config:
            raise ValueError(
                f"Server '{self.name}' must have explicit 'env' configuration "
                "(use empty dict {} if no environment variables needed)"
            )

        server_params = StdioServerParameters(
            command=command,
            args=self.config["args"],
            env={**os.environ, **self.config["env"]},
        )

        read_stream, write_stream = await self.exit_stack.enter_async_context(
            stdio_client(server_params)
        )
        client_info = types.Implementation(name=self.name, version=self.client_version)
        self.session = await self.exit_stack.enter_async_context(
            ClientSession(read_stream, write_stream, client_info=client_info)
        )
        await asyncio.wait_for(
            self.session.initialize(), timeout=self._connection_timeout
        )

        logger.info(f"MCP client '{self.name}' connected successfully")

    def _require_session(self) -> ClientSession:
        if not self.session:
            raise McpError(
                error=types.ErrorData(
                    code=types.INTERNAL_ERROR,
                    message=f"Client {self.name} not connected",
                )
            )
        return self.session

    async def ping(self) -> bool:
        """Check the connection with a bounded list_tools round trip."""
        if not self.session or not self._is_connected:
            return False

        try:
            await asyncio.wait_for(
                self.session.list_tools(), timeout=self._ping_timeout
            )
            return True
        except Exception as e:
            logger.warning(f"Ping failed for {self.name}: {e}")
            self._is_connected = False
            return False

    async def list_tools(self) -> list[types.Tool]:
        session = self._require_session()
        try:
            result = await session.list_tools()
            return result.tools
        except McpError as e:
            logger.error(
                f"MCP error listing tools from {self.name}: {e.error.message}"
            )
            raise
        except Exception as e:
            logger.error(f"Error listing tools from {self.name}: {e}")
            raise McpError(
                error=types.ErrorData(
                    code=types.INTERNAL_ERROR,
                    message=f"Failed to list tools: {e!s}",
                )
            ) from e

    @handle_tool_errors("mcp_call_tool")
    async def call_tool(
        self, name: str, arguments: dict[str, Any] | None = None
    ) -> types.CallToolResult:
        session = self._require_session()
        logger.info(f"Calling tool '{name}' on client '{self.name}'")
        result = await session.call_tool(name, arguments)
        logger.info(f"Tool '{name}' executed successfully")
        return result

    async def close(self) -> None:
        """Close the connection; safe to call more than once."""
        async with self._cleanup_lock:
            if not self._is_connected:
                return

            self._is_connected = False
            self.session = None
            try:
                await self.exit_stack.aclose()
            except Exception as e:
                # Exit stacks entered in another task fail to unwind cleanly
                logger.debug(f"Exit stack cleanup issue for {self.name}: {e}")
            logger.info(f"MCP client '{self.name}' disconnected")

    @property
    def is_connected(self) -> bool:
        return self._is_connected


def setup_mcp_clients(config: Configuration) -> list[MCPClient]:
    """Create clients for every enabled server; empty when MCP is disabled."""
    servers_path = config.get_mcp_servers_path()
    if servers_path is None:
        logger.info("MCP tools disabled in configuration")
        return []

    servers_config = config.load_config(servers_path)
    connection_config = config.get_mcp_connection_config()

    clients = []
    for name, server_config in servers_config.get("mcpServers", {}).items():
        if not server_config.get("enabled", False):
            logger.info(f"Skipping disabled server: {name}")
            continue
        clients.append(MCPClient(name, server_config, connection_config))
    return clients


async def connect_mcp_clients(clients: list[MCPClient]) -> list[MCPClient]:
    """Connect all clients in parallel; return the ones that connected."""
    results = await asyncio.gather(
        *(c.connect() for c in clients), return_exceptions=True
    )
    connected = []
    for client, result in zip(clients, results, strict=True):
        if isinstance(result, Exception):
            logger.warning(f"Client '{client.name}' failed to connect: {result}")
        else:
            connected.append(client)
    return connected


async def cleanup_mcp_clients(clients: list[MCPClient]) -> None:
    for client in clients:
        try:
            if client.is_connected:
                await client.close()
        except Exception as e:
            logger.warning(f"Error closing MCP client {client.name}: {e}")
