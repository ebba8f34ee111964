"""
Model backend contract consumed by the chat service.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any, Protocol

from .models import Completion, StreamChunk


class ModelBackend(Protocol):
    """
    Given an ordered message list, produce a completion either as a single
    result or as an ordered stream of chunks.  Both calls may raise.

    `use_tools=False` asks the backend not to offer any registered tools,
    which the health probe relies on.
    """

    config: dict[str, Any]

    async def complete(
        self, messages: list[dict[str, Any]], *, use_tools: bool = True
    ) -> Completion: ...

    def stream(
        self, messages: list[dict[str, Any]], *, use_tools: bool = True
    ) -> AsyncIterator[StreamChunk]: ...

    async def close(self) -> None: ...
