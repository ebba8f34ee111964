"""
Core LLM dataclasses shared by model backends.

- Completion results and streamed chunks
- Tool calling structures
- Token usage tracking
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal


class ProviderType(Enum):
    """Supported LLM providers."""
    OPENAI = "openai"
    OPENROUTER = "openrouter"
    GROQ = "groq"
    STUB = "stub"


class FinishReason(Enum):
    """OpenAI-compatible finish reasons."""
    STOP = "stop"
    LENGTH = "length"
    TOOL_CALLS = "tool_calls"
    CONTENT_FILTER = "content_filter"


@dataclass
class ToolFunction:
    """Tool function name and JSON-encoded arguments."""
    name: str = ""
    arguments: str = ""


@dataclass
class ToolCall:
    """OpenAI-compatible tool call structure, filled in from stream deltas."""
    id: str = ""
    type: Literal["function"] = "function"
    function: ToolFunction = field(default_factory=ToolFunction)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "function": {
                "name": self.function.name,
                "arguments": self.function.arguments,
            },
        }


@dataclass(frozen=True)
class TokenUsage:
    """Token usage statistics."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_api(cls, api_usage: dict[str, Any] | None) -> TokenUsage:
        if not api_usage:
            return cls()
        return cls(
            prompt_tokens=api_usage.get("prompt_tokens", 0),
            completion_tokens=api_usage.get("completion_tokens", 0),
            total_tokens=api_usage.get("total_tokens", 0),
        )

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


@dataclass(frozen=True)
class Completion:
    """Result of a blocking completion call."""
    text: str
    model: str = ""
    usage: TokenUsage = field(default_factory=TokenUsage)
    finish_reason: str | None = None


@dataclass(frozen=True)
class StreamChunk:
    """One incremental piece of assistant text."""
    text: str
    finish_reason: str | None = None
