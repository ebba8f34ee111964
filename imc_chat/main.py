"""
Console entry point for the IMC chat engine.

Wires configuration, logging, MCP tool servers, the model backend and the
chat service together, then runs an interactive session on stdin/stdout.
Commands: ``/clear`` resets the session, ``/status`` prints health,
``/quit`` exits.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys
import uuid

from imc_chat.chat_service import ChatService
from imc_chat.config import Configuration
from imc_chat.llm import LLMClient, ModelBackend, StubLLMClient
from imc_chat.logging_utils import configure_logging
from imc_chat.mcp_client import (
    MCPClient,
    cleanup_mcp_clients,
    connect_mcp_clients,
    setup_mcp_clients,
)
from imc_chat.status import LlmStatusReporter, status
from imc_chat.tool_schema_manager import ToolSchemaManager
from imc_chat.tools import ToolNameResolver

logger = logging.getLogger(__name__)

QUIT_COMMANDS = {"/quit", "/exit"}


def create_backend(config: Configuration) -> ModelBackend:
    """Create the model backend selected by ``llm.active``."""
    llm_config = config.get_llm_config()
    if config.active_provider == "stub":
        return StubLLMClient(
            llm_config,
            default_reply=llm_config.get("default_reply", "Test response"),
        )
    return LLMClient(llm_config, config.llm_api_key)


async def attach_tools(
    config: Configuration, backend: ModelBackend, clients: list[MCPClient]
) -> ToolSchemaManager | None:
    """Register tools from connected clients on an HTTP backend."""
    if not clients or not isinstance(backend, LLMClient):
        return None

    resolver = ToolNameResolver(config.get_tool_naming_config())
    tool_mgr = ToolSchemaManager(clients, resolver)
    await tool_mgr.initialize()
    backend.attach_tools(tool_mgr, config.get_max_tool_hops())
    return tool_mgr


async def run_console(
    service: ChatService, shutdown_event: asyncio.Event
) -> None:
    session_id = str(uuid.uuid4())
    print("IMC chat - type /quit to exit, /clear to reset, /status for health")

    while not shutdown_event.is_set():
        try:
            line = await asyncio.to_thread(input, "you> ")
        except EOFError:
            break

        text = line.strip()
        if not text:
            continue
        if text in QUIT_COMMANDS:
            break
        if text == "/clear":
            removed = await service.clear_session(session_id)
            print(f"(cleared {removed} messages)")
            continue
        if text == "/status":
            print(await status(service))
            continue

        print("bot> ", end="", flush=True)
        async with contextlib.aclosing(
            service.send_stream(session_id, text, cancel=shutdown_event)
        ) as stream:
            async for message in stream:
                if message.type == "text":
                    print(message.content, end="", flush=True)
        print()


async def main() -> None:
    """Main entry point with graceful shutdown handling."""
    config = Configuration()
    configure_logging(config.get_logging_config().get("level", "INFO"))

    LlmStatusReporter.from_configuration(config).report()

    clients = await connect_mcp_clients(setup_mcp_clients(config))
    backend = create_backend(config)

    shutdown_event = asyncio.Event()

    def signal_handler() -> None:
        logger.info("Received shutdown signal, initiating graceful shutdown...")
        shutdown_event.set()

    if sys.platform != "win32":
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, signal_handler)

    try:
        await attach_tools(config, backend, clients)
        service = ChatService(
            ChatService.ChatServiceConfig.from_configuration(config, backend)
        )
        await run_console(service, shutdown_event)
    except Exception as e:
        logger.error(f"Application error: {e}")
        raise
    finally:
        await backend.close()
        await cleanup_mcp_clients(clients)
        logger.info("Application shutdown complete")


def run() -> None:
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(main())


if __name__ == "__main__":
    run()
