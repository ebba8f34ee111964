# imc_chat/history/repositories/memory_repo.py
"""
In-memory history repository.

Sessions live for the process lifetime and are only removed by `clear`.
All methods are synchronous and never await, so under asyncio each call
runs to completion without interleaving; serializing whole turns for one
session is the chat service's job, not this repository's.
"""
from __future__ import annotations

import logging

from imc_chat.history.models import Message, Session

logger = logging.getLogger(__name__)


class InMemoryHistoryRepo:
    """Process-local map of session id -> ordered message buffer."""

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}

    def get_or_create(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            session = self._sessions.setdefault(session_id, Session(id=session_id))
            logger.debug(f"Created history for session {session_id}")
        return session

    def append(self, session_id: str, message: Message) -> Message:
        session = self.get_or_create(session_id)

        if not session.messages and message.role != "system":
            raise ValueError(
                f"First message of session '{session_id}' must be a system "
                f"message, got '{message.role}'"
            )
        if session.messages and message.role == "system":
            raise ValueError(
                f"System message can only open session '{session_id}'"
            )

        stored = message.model_copy(update={"sequence": session.next_sequence})
        session.messages.append(stored)
        session.next_sequence += 1
        return stored

    def snapshot(self, session_id: str) -> list[Message]:
        session = self._sessions.get(session_id)
        if session is None:
            return []
        return list(session.messages)

    def trim(self, session_id: str, max_messages: int) -> int:
        session = self._sessions.get(session_id)
        if session is None or len(session.messages) <= max_messages:
            return 0

        # Index 0 is the system message; drop the oldest after it.
        to_remove = len(session.messages) - max_messages
        del session.messages[1:1 + to_remove]
        logger.debug(
            f"Trimmed conversation history for session {session_id}, "
            f"removed {to_remove} old messages"
        )
        return to_remove

    def clear(self, session_id: str) -> int:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return 0
        return len(session.messages)

    def size(self, session_id: str) -> int:
        session = self._sessions.get(session_id)
        return len(session.messages) if session else 0

    def session_count(self) -> int:
        return len(self._sessions)

    def list_sessions(self) -> list[str]:
        return list(self._sessions)
