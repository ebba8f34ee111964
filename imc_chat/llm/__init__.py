"""
Model backend integration.

This package provides:
- The backend contract consumed by the chat service
- An HTTP client for OpenAI-compatible providers (OpenAI, OpenRouter, Groq)
- A scripted stub backend for offline runs and tests
- Typed errors carrying provider context and HTTP status
"""

from __future__ import annotations

from .base import ModelBackend
from .client import LLMClient
from .exceptions import (
    AuthenticationError,
    LLMError,
    NetworkError,
    ProviderError,
    RateLimitError,
    StreamingError,
    TokenLimitError,
)
from .models import (
    Completion,
    FinishReason,
    ProviderType,
    StreamChunk,
    TokenUsage,
    ToolCall,
    ToolFunction,
)
from .stub import StubLLMClient

__all__ = [
    "AuthenticationError",
    "Completion",
    "FinishReason",
    "LLMClient",
    "LLMError",
    "ModelBackend",
    "NetworkError",
    "ProviderError",
    "ProviderType",
    "RateLimitError",
    "StreamChunk",
    "StreamingError",
    "StubLLMClient",
    "TokenLimitError",
    "TokenUsage",
    "ToolCall",
    "ToolFunction",
]
