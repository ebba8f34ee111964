"""
Scripted model backend.

Used for offline runs (`llm.active: stub`) and tests.  Replies are taken
from a queue of scripted entries; each entry is either a string (the reply
text, streamed as a single chunk), a list of chunks (strings streamed in
order, exceptions raised mid-stream), or an exception instance (raised
instead of replying).  When the queue is empty the default reply is used.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import AsyncGenerator
from typing import Any

from .models import Completion, StreamChunk, TokenUsage

ScriptedReply = str | list[str | BaseException] | BaseException


class StubLLMClient:
    """Model backend returning scripted responses."""

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        replies: list[ScriptedReply] | None = None,
        *,
        default_reply: str = "Test response",
        chunk_delay: float = 0.0,
    ) -> None:
        self.config: dict[str, Any] = {"model": "stub", **(config or {})}
        self.default_reply = default_reply
        self.chunk_delay = chunk_delay
        self._replies: deque[ScriptedReply] = deque(replies or [])
        self.calls: list[list[dict[str, Any]]] = []
        self.closed = False

    def queue(self, *replies: ScriptedReply) -> None:
        self._replies.extend(replies)

    def _next_reply(self, messages: list[dict[str, Any]]) -> ScriptedReply:
        # Record a copy: callers reuse and extend their message lists
        self.calls.append([dict(m) for m in messages])
        if self._replies:
            return self._replies.popleft()
        return self.default_reply

    async def complete(
        self, messages: list[dict[str, Any]], *, use_tools: bool = True
    ) -> Completion:
        reply = self._next_reply(messages)
        if isinstance(reply, BaseException):
            raise reply
        if self.chunk_delay:
            await asyncio.sleep(self.chunk_delay)

        if isinstance(reply, str):
            text = reply
        else:
            for chunk in reply:
                if isinstance(chunk, BaseException):
                    raise chunk
            text = "".join(reply)
        return Completion(
            text=text,
            model=self.config["model"],
            usage=TokenUsage(),
            finish_reason="stop",
        )

    async def stream(
        self, messages: list[dict[str, Any]], *, use_tools: bool = True
    ) -> AsyncGenerator[StreamChunk]:
        reply = self._next_reply(messages)
        chunks = [reply] if isinstance(reply, str | BaseException) else reply

        for chunk in chunks:
            if self.chunk_delay:
                await asyncio.sleep(self.chunk_delay)
            if isinstance(chunk, BaseException):
                raise chunk
            yield StreamChunk(text=chunk)

    async def close(self) -> None:
        self.closed = True

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
