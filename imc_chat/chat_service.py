"""
Chat Service for the IMC chat engine.

This module handles the business logic for chat turns:
- Per-session history with a bounded window (system prompt always kept)
- Blocking and streaming responses from the model backend
- Per-session serialization of turns
- Turning backend failures into safe, classified replies

Tool calling lives in the model client (see `imc_chat.llm.client`), so a
turn here only ever sees final assistant text.

A turn either fully succeeds (user and assistant messages appended) or
fully fails (only the user message appended).  Backend failures never
escape: the caller gets the classified user message as an ordinary reply.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import AsyncGenerator
from contextlib import aclosing, asynccontextmanager
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from imc_chat.error_classifier import ClassifiedError, ErrorClassifier
from imc_chat.errors import BackendFailure, CancellationError, ValidationError
from imc_chat.history.models import Message, TurnContext
from imc_chat.history.repositories.memory_repo import InMemoryHistoryRepo
from imc_chat.logging_utils import ContextualLogger, operation_context

if TYPE_CHECKING:                                        # pragma: no cover
    from imc_chat.config import Configuration
    from imc_chat.history.repositories.base import HistoryRepository
    from imc_chat.llm.base import ModelBackend


logger = logging.getLogger(__name__)

FALLBACK_REPLY = (
    "I apologize, but I'm unable to generate a response at this time. "
    "Please try again."
)
DONE_MARKER = "[DONE]"


class ChatMessage(BaseModel):
    """
    One item of a streamed reply.

    ``type`` is ``"text"`` for content (including a classified error reply,
    which carries ``metadata["error_category"]``) and ``"done"`` for the
    terminating marker.
    """
    type: str
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class ChatService:
    """
    Conversation orchestrator
    1. Validates your message
    2. Records it in the session history
    3. Asks the model to respond (blocking or streamed)
    4. Records the reply and sends it back, or a safe error reply
    """

    class ChatServiceConfig(BaseModel):
        model_config = ConfigDict(arbitrary_types_allowed=True)

        llm_client: Any  # ModelBackend
        system_prompt: str = Field(min_length=1)
        repo: Any = None  # HistoryRepository; in-memory when omitted
        max_messages: int = Field(default=20, ge=2)
        health_timeout: float = Field(default=15.0, gt=0)
        health_probe: str = "Say 'OK' if you can respond"
        log_llm_replies: bool = True
        reply_truncate_length: int = Field(default=100, ge=0)

        @classmethod
        def from_configuration(
            cls,
            configuration: Configuration,
            llm_client: ModelBackend,
            repo: HistoryRepository | None = None,
        ) -> ChatService.ChatServiceConfig:
            """Build service options from the validated YAML configuration."""
            service_conf = configuration.get_chat_service_config()
            logging_conf = service_conf.get("logging", {})
            health = configuration.get_health_config()
            return cls(
                llm_client=llm_client,
                repo=repo,
                system_prompt=configuration.get_system_prompt(),
                max_messages=configuration.get_history_config()["max_messages"],
                health_timeout=health["timeout"],
                health_probe=health["probe_prompt"],
                log_llm_replies=logging_conf.get("llm_replies", True),
                reply_truncate_length=logging_conf.get(
                    "llm_reply_truncate_length", 100
                ),
            )

    def __init__(self, service_config: ChatService.ChatServiceConfig):
        self.llm_client: ModelBackend = service_config.llm_client
        self.repo: HistoryRepository = service_config.repo or InMemoryHistoryRepo()
        self.system_prompt = service_config.system_prompt
        self.max_messages = service_config.max_messages
        self.health_timeout = service_config.health_timeout
        self.health_probe = service_config.health_probe
        self.log_llm_replies = service_config.log_llm_replies
        self.reply_truncate_length = service_config.reply_truncate_length
        self.classifier = ErrorClassifier()

        # Per-session locks serialize whole turns.  Once created a lock stays
        # for the process lifetime, or until the session is cleared.
        self._session_locks: defaultdict[str, asyncio.Lock] = defaultdict(
            asyncio.Lock
        )
        # Turns holding or queued on each lock; a lock is only dropped at zero
        self._lock_users: defaultdict[str, int] = defaultdict(int)

    def _session_lock(self, session_id: str) -> asyncio.Lock:
        return self._session_locks[session_id]

    @asynccontextmanager
    async def _session_turn(self, session_id: str):
        """Hold the session lock, counting this caller until it is done."""
        self._lock_users[session_id] += 1
        try:
            async with self._session_locks[session_id]:
                yield
        finally:
            self._lock_users[session_id] -= 1
            if self._lock_users[session_id] == 0:
                del self._lock_users[session_id]

    def get_active_session_locks_count(self) -> int:
        """
        Get the current number of session locks.

        Returns:
            int: Number of locks held in the lock table
        """
        return len(self._session_locks)

    # ------------------------------------------------------------------ #
    # Turn helpers                                                       #
    # ------------------------------------------------------------------ #

    @staticmethod
    def _validate(
        session_id: str, user_text: str, caller_id: str | None
    ) -> TurnContext:
        if not isinstance(session_id, str) or not session_id.strip():
            raise ValidationError("session_id must be a non-empty string")
        if not isinstance(user_text, str) or not user_text.strip():
            raise ValidationError("Message cannot be empty")
        return TurnContext(
            session_id=session_id, user_text=user_text, caller_id=caller_id
        )

    def _begin_turn(self, turn: TurnContext) -> list[dict[str, Any]]:
        """Record the user message and return the full history for the model."""
        self.repo.get_or_create(turn.session_id)
        if self.repo.size(turn.session_id) == 0:
            self.repo.append(turn.session_id, Message.system(self.system_prompt))
        self.repo.append(turn.session_id, Message.user(turn.user_text))
        return [m.to_llm_dict() for m in self.repo.snapshot(turn.session_id)]

    def _finish_turn(self, turn: TurnContext, text: str) -> None:
        self.repo.append(turn.session_id, Message.assistant(text))
        self.repo.trim(turn.session_id, self.max_messages)
        self._log_llm_reply(turn, text)

    def _recover(self, turn: TurnContext, error: Exception) -> ClassifiedError:
        failure = BackendFailure(error, session_id=turn.session_id)
        classified = self.classifier.classify(failure)
        logger.error(
            f"Backend failure in session {turn.session_id} "
            f"(request {turn.request_id}): {type(error).__name__}: {error} "
            f"-> {classified.category.value}"
        )
        return classified

    def _log_llm_reply(self, turn: TurnContext, text: str) -> None:
        if not self.log_llm_replies:
            return
        limit = self.reply_truncate_length
        shown = text if len(text) <= limit else text[:limit] + "..."
        logger.info(f"LLM reply for session {turn.session_id}: {shown}")

    # ------------------------------------------------------------------ #
    # Public API                                                         #
    # ------------------------------------------------------------------ #

    async def send(
        self, session_id: str, user_text: str, caller_id: str | None = None
    ) -> str:
        """
        Run one blocking turn and return the reply text.

        Raises:
            ValidationError: blank message or session id (history untouched)
        """
        turn = self._validate(session_id, user_text, caller_id)

        async with self._session_turn(turn.session_id):
            messages = self._begin_turn(turn)
            try:
                async with operation_context(
                    "chat_turn",
                    context={
                        "session_id": turn.session_id,
                        "request_id": turn.request_id,
                    },
                ):
                    completion = await self.llm_client.complete(messages)
            except Exception as e:
                return self._recover(turn, e).user_message

            text = completion.text or FALLBACK_REPLY
            self._finish_turn(turn, text)
            return text

    def send_stream(
        self,
        session_id: str,
        user_text: str,
        caller_id: str | None = None,
        cancel: asyncio.Event | None = None,
    ) -> AsyncGenerator[ChatMessage]:
        """
        Start a streaming turn.

        Validation happens here, before anything is iterated.  The returned
        generator yields ``text`` messages as chunks arrive and finishes with
        a ``done`` marker.  Setting ``cancel``, closing the generator or
        cancelling the consuming task ends the turn without an assistant
        message; cancellation via ``cancel`` omits the ``done`` marker.

        The session lock is held while the generator is open, across every
        yield.  Callers must either drain it, close it (for example with
        ``contextlib.aclosing(...)``) or set ``cancel``; an abandoned
        generator keeps the session locked until it is garbage collected.

        Raises:
            ValidationError: blank message or session id (history untouched)
        """
        turn = self._validate(session_id, user_text, caller_id)
        return self._stream_turn(turn, cancel)

    async def _stream_turn(
        self, turn: TurnContext, cancel: asyncio.Event | None
    ) -> AsyncGenerator[ChatMessage]:
        turn_logger = ContextualLogger(
            {"session_id": turn.session_id, "request_id": turn.request_id}
        )

        def cancelled() -> bool:
            return cancel is not None and cancel.is_set()

        async with self._session_turn(turn.session_id):
            messages = self._begin_turn(turn)
            parts: list[str] = []

            try:
                if cancelled():
                    raise CancellationError("cancelled before the backend call")
                async with aclosing(self.llm_client.stream(messages)) as chunks:
                    async for chunk in chunks:
                        if cancelled():
                            raise CancellationError("cancelled mid-stream")
                        if not chunk.text:
                            continue
                        parts.append(chunk.text)
                        yield ChatMessage(type="text", content=chunk.text)
                    if cancelled():
                        raise CancellationError("cancelled at end of stream")
            except CancellationError as e:
                turn_logger.info("Streaming turn cancelled", reason=str(e))
                return
            except Exception as e:
                classified = self._recover(turn, e)
                yield ChatMessage(
                    type="text",
                    content=classified.user_message,
                    metadata={"error_category": classified.category.value},
                )
                yield ChatMessage(type="done", content=DONE_MARKER)
                return

            text = "".join(parts)
            if not text:
                text = FALLBACK_REPLY
                yield ChatMessage(type="text", content=text)
            self._finish_turn(turn, text)
            turn_logger.debug("Streaming turn completed", chunks=len(parts))

        yield ChatMessage(type="done", content=DONE_MARKER)

    # Aliases used by callers written against the turn-oriented names
    send_turn = send
    stream_turn = send_stream

    async def clear_session(self, session_id: str) -> int:
        """
        Remove a session's history and lock.

        Waits for an in-flight turn on the session to finish first.
        Idempotent: clearing an unknown session returns 0.
        """
        lock = self._session_locks.get(session_id)
        if lock is None:
            return self.repo.clear(session_id)

        async with self._session_turn(session_id):
            removed = self.repo.clear(session_id)
        # A turn woken by our release has not re-acquired the lock yet
        if (
            self._lock_users.get(session_id, 0) == 0
            and self._session_locks.get(session_id) is lock
        ):
            del self._session_locks[session_id]
        logger.info(f"Cleared session {session_id} ({removed} messages)")
        return removed

    def session_count(self) -> int:
        return self.repo.session_count()

    def history(self, session_id: str) -> list[Message]:
        """Snapshot (copy) of a session's messages; empty if unknown."""
        return self.repo.snapshot(session_id)

    async def is_healthy(self) -> bool:
        """
        Probe the model backend with a one-message prompt.

        Never touches session history.  Returns True only if a non-blank
        reply arrives within the configured health timeout.
        """
        probe = [Message.user(self.health_probe).to_llm_dict()]
        try:
            completion = await asyncio.wait_for(
                self.llm_client.complete(probe, use_tools=False),
                timeout=self.health_timeout,
            )
        except TimeoutError:
            logger.warning(
                f"Health probe timed out after {self.health_timeout}s"
            )
            return False
        except Exception as e:
            logger.warning(f"Health probe failed: {type(e).__name__}: {e}")
            return False

        healthy = bool(completion.text and completion.text.strip())
        logger.debug(f"Health probe result: {healthy}")
        return healthy
