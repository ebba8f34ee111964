#!/usr/bin/env python3
"""
Tests for backend failure classification.
"""

import httpx
import pytest

from imc_chat.error_classifier import USER_MESSAGES, ErrorCategory, ErrorClassifier
from imc_chat.errors import BackendFailure
from imc_chat.llm import (
    AuthenticationError,
    LLMError,
    NetworkError,
    RateLimitError,
    TokenLimitError,
)


@pytest.mark.parametrize(
    ("error", "category"),
    [
        (Exception("Rate limit reached for requests"), ErrorCategory.RATE_LIMITED),
        (Exception("HTTP 429 Too Many Requests"), ErrorCategory.RATE_LIMITED),
        (RateLimitError("slow down"), ErrorCategory.RATE_LIMITED),
        (LLMError("busy", status_code=429), ErrorCategory.RATE_LIMITED),
        (Exception("Token LIMIT exceeded"), ErrorCategory.TOO_LONG),
        (TokenLimitError("context too big"), ErrorCategory.TOO_LONG),
        (Exception("network unreachable"), ErrorCategory.NETWORK_FAILURE),
        (Exception("read Timeout"), ErrorCategory.NETWORK_FAILURE),
        (TimeoutError(), ErrorCategory.NETWORK_FAILURE),
        (ConnectionError("refused"), ErrorCategory.NETWORK_FAILURE),
        (httpx.ConnectError("boom"), ErrorCategory.NETWORK_FAILURE),
        (NetworkError("boom"), ErrorCategory.NETWORK_FAILURE),
        (Exception("Authentication failed"), ErrorCategory.AUTH_FAILURE),
        (Exception("got 401"), ErrorCategory.AUTH_FAILURE),
        (LLMError("denied", status_code=401), ErrorCategory.AUTH_FAILURE),
        (AuthenticationError("bad key"), ErrorCategory.AUTH_FAILURE),
        (Exception("boom"), ErrorCategory.UNKNOWN),
        (ValueError(""), ErrorCategory.UNKNOWN),
    ],
)
def test_classify_category(error, category):
    assert ErrorClassifier.classify_category(error) == category


def test_first_match_wins():
    # Mentions both a rate limit and authentication
    error = Exception("rate limit hit while checking authentication")
    assert ErrorClassifier.classify_category(error) == ErrorCategory.RATE_LIMITED


def test_token_without_limit_is_not_too_long():
    assert ErrorClassifier.classify_category(Exception("bad token")) == ErrorCategory.UNKNOWN


def test_backend_failure_is_unwrapped():
    failure = BackendFailure(RateLimitError("slow", status_code=429), session_id="s1")
    classified = ErrorClassifier.classify(failure)

    assert classified.category == ErrorCategory.RATE_LIMITED
    assert classified.user_message == (
        "I'm currently experiencing high demand. Please wait a moment and try again."
    )
    assert failure.status_code == 429
    assert failure.session_id == "s1"


def test_http_status_error_status_code():
    request = httpx.Request("POST", "https://example.test/chat/completions")
    response = httpx.Response(401, request=request)
    error = httpx.HTTPStatusError("failed", request=request, response=response)

    assert ErrorClassifier.classify_category(error) == ErrorCategory.AUTH_FAILURE


def test_user_messages():
    assert USER_MESSAGES[ErrorCategory.TOO_LONG] == (
        "Your message is too long. Please try with a shorter message."
    )
    assert USER_MESSAGES[ErrorCategory.NETWORK_FAILURE] == (
        "I'm having trouble connecting right now. Please try again in a few moments."
    )
    assert USER_MESSAGES[ErrorCategory.AUTH_FAILURE] == (
        "There's an authentication issue. Please check your API configuration."
    )
    assert USER_MESSAGES[ErrorCategory.UNKNOWN] == (
        "I'm sorry, I encountered an error processing your request. Please try again."
    )
    assert set(USER_MESSAGES) == set(ErrorCategory)
