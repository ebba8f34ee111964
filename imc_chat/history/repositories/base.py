# imc_chat/history/repositories/base.py
from __future__ import annotations

from typing import Protocol

from imc_chat.history.models import Message, Session


class HistoryRepository(Protocol):
    """
    Interface for storing per-session message history.
    """

    def get_or_create(self, session_id: str) -> Session:
        """
        Return the session for `session_id`, creating an empty one on first use.
        """
        ...

    def append(self, session_id: str, message: Message) -> Message:
        """
        Append a message and return the stored copy with its sequence assigned.
        """
        ...

    def snapshot(self, session_id: str) -> list[Message]:
        """
        Return a copy of the session's messages in order (empty if unknown).
        """
        ...

    def trim(self, session_id: str, max_messages: int) -> int:
        """
        Drop the oldest non-system messages until at most `max_messages`
        remain.  Returns the number of messages removed.
        """
        ...

    def clear(self, session_id: str) -> int:
        """
        Remove the session entirely.  Returns how many messages it held.
        """
        ...

    def size(self, session_id: str) -> int:
        """
        Return the number of messages held for a session (0 if unknown).
        """
        ...

    def session_count(self) -> int:
        """
        Return the number of live sessions.
        """
        ...

    def list_sessions(self) -> list[str]:
        """
        Return all live session ids.
        """
        ...
