"""
Error taxonomy for the chat pipeline.

- ``ValidationError``: the caller sent something unusable; raised to the
  caller before any history is touched.
- ``BackendFailure``: the model backend failed; always recovered inside the
  chat service and turned into a classified, user-safe message.
- ``CancellationError``: the caller abandoned a streaming turn; silent.
"""

from __future__ import annotations


class ChatError(Exception):
    """Base class for chat pipeline errors."""


class ValidationError(ChatError):
    """Caller input is invalid (blank message or session id)."""


class BackendFailure(ChatError):
    """A model backend call failed; `cause` holds the original exception."""

    def __init__(self, cause: BaseException, *, session_id: str | None = None):
        super().__init__(str(cause))
        self.cause = cause
        self.session_id = session_id
        # Classification looks at the original failure's HTTP status
        self.status_code = getattr(cause, "status_code", None)


class CancellationError(ChatError):
    """The caller stopped consuming a streaming turn."""
