"""Per-session conversation history."""

from .models import Message, Role, Session, TurnContext
from .repositories.memory_repo import InMemoryHistoryRepo

__all__ = ["InMemoryHistoryRepo", "Message", "Role", "Session", "TurnContext"]
