# imc_chat/history/models.py
from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["system", "user", "assistant"]


class Message(BaseModel):
    """
    A single conversational turn fragment.

    Messages are frozen once created. The history repository assigns
    ``sequence`` when the message is appended, by returning a copy.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: Role
    content: str
    sequence: int | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str) -> Message:
        return cls(role="assistant", content=content)

    def to_llm_dict(self) -> dict[str, Any]:
        """OpenAI-style message dict sent to the model backend."""
        return {"role": self.role, "content": self.content}


class Session(BaseModel):
    """Per-session message buffer owned by the history repository."""
    id: str
    messages: list[Message] = Field(default_factory=list)
    next_sequence: int = 1
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class TurnContext(BaseModel):
    """Ephemeral per-call values for one pipeline invocation."""
    model_config = ConfigDict(frozen=True)

    session_id: str
    user_text: str
    caller_id: str | None = None
    request_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
