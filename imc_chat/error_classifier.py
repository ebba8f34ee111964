"""
Map backend failures to safe, user-facing chat replies.

The classifier never raises: whatever the failure, the caller gets a
category and a message it can show to the user as an ordinary reply.
"""

from __future__ import annotations

import logging
from enum import Enum

import httpx
from pydantic import BaseModel, ConfigDict

from imc_chat.errors import BackendFailure
from imc_chat.llm.exceptions import (
    AuthenticationError,
    NetworkError,
    RateLimitError,
    TokenLimitError,
)

logger = logging.getLogger(__name__)

HTTP_UNAUTHORIZED = 401
HTTP_TOO_MANY_REQUESTS = 429


class ErrorCategory(str, Enum):
    RATE_LIMITED = "rate_limited"
    TOO_LONG = "too_long"
    NETWORK_FAILURE = "network_failure"
    AUTH_FAILURE = "auth_failure"
    UNKNOWN = "unknown"


USER_MESSAGES: dict[ErrorCategory, str] = {
    ErrorCategory.RATE_LIMITED: (
        "I'm currently experiencing high demand. "
        "Please wait a moment and try again."
    ),
    ErrorCategory.TOO_LONG: (
        "Your message is too long. Please try with a shorter message."
    ),
    ErrorCategory.NETWORK_FAILURE: (
        "I'm having trouble connecting right now. "
        "Please try again in a few moments."
    ),
    ErrorCategory.AUTH_FAILURE: (
        "There's an authentication issue. Please check your API configuration."
    ),
    ErrorCategory.UNKNOWN: (
        "I'm sorry, I encountered an error processing your request. "
        "Please try again."
    ),
}


class ClassifiedError(BaseModel):
    """A failure reduced to a category and a message safe to show users."""
    model_config = ConfigDict(frozen=True)

    category: ErrorCategory
    user_message: str


class ErrorClassifier:
    """First-match classification of backend failures."""

    @staticmethod
    def classify(failure: BaseException) -> ClassifiedError:
        category = ErrorClassifier.classify_category(failure)
        return ClassifiedError(category=category, user_message=USER_MESSAGES[category])

    @staticmethod
    def classify_category(failure: BaseException) -> ErrorCategory:
        original = failure.cause if isinstance(failure, BackendFailure) else failure
        text = ErrorClassifier._failure_text(failure, original)
        status = ErrorClassifier._status_code(failure, original)

        if (
            "rate limit" in text
            or "429" in text
            or status == HTTP_TOO_MANY_REQUESTS
            or isinstance(original, RateLimitError)
        ):
            return ErrorCategory.RATE_LIMITED

        if ("token" in text and "limit" in text) or isinstance(
            original, TokenLimitError
        ):
            return ErrorCategory.TOO_LONG

        if (
            "network" in text
            or "timeout" in text
            or isinstance(
                original,
                TimeoutError | ConnectionError | httpx.TransportError | NetworkError,
            )
        ):
            return ErrorCategory.NETWORK_FAILURE

        if (
            "authentication" in text
            or "401" in text
            or status == HTTP_UNAUTHORIZED
            or isinstance(original, AuthenticationError)
        ):
            return ErrorCategory.AUTH_FAILURE

        return ErrorCategory.UNKNOWN

    @staticmethod
    def _failure_text(failure: BaseException, original: BaseException) -> str:
        parts = [str(failure)]
        if original is not failure:
            parts.append(str(original))
        return " ".join(parts).lower()

    @staticmethod
    def _status_code(failure: BaseException, original: BaseException) -> int | None:
        for candidate in (failure, original):
            status = getattr(candidate, "status_code", None)
            if isinstance(status, int):
                return status
            if isinstance(candidate, httpx.HTTPStatusError):
                return candidate.response.status_code
        return None
