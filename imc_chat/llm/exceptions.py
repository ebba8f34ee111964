"""
Error types raised by model backends.

Each error carries provider/model context and, when the failure came from
an HTTP response, the status code so callers can classify it without
parsing messages.
"""

from __future__ import annotations


class LLMError(Exception):
    """Base LLM error with rich context."""

    def __init__(
        self,
        message: str,
        provider: str = "unknown",
        model: str = "unknown",
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.model = model
        self.status_code = status_code
        self.response_data = response_data or {}


class RateLimitError(LLMError):
    """Rate limit error with retry information."""

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class TokenLimitError(LLMError):
    """Token limit exceeded error."""
    pass


class AuthenticationError(LLMError):
    """Credentials rejected by the provider."""
    pass


class NetworkError(LLMError):
    """Transport-level failure talking to the provider."""
    pass


class StreamingError(LLMError):
    """Streaming-specific errors."""
    pass


class ProviderError(LLMError):
    """Error reported by the provider in-band, without an HTTP status."""
    pass
