"""Conversation storage collaborator interface and an in-memory implementation."""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from chatstream.types import Role, Turn, new_id, utcnow


@dataclass
class Conversation:
    """A user's conversation and its turns (oldest first)."""

    user_id: str
    title: str = "New conversation"
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    turns: list[Turn] = field(default_factory=list)


class ConversationStore(ABC):
    """
    Storage service the orchestrator consumes.

    Every operation is assumed atomic and durable; a missing (or foreign)
    conversation is reported as None rather than an exception.
    """

    @abstractmethod
    async def create_conversation(self, user_id: str, title: Optional[str] = None) -> Conversation:
        """Create an empty conversation."""

    @abstractmethod
    async def list_turns(self, user_id: str, conversation_id: str) -> Optional[list[Turn]]:
        """Turns oldest first, or None when not found."""

    @abstractmethod
    async def append_turn(
        self, user_id: str, conversation_id: str, role: Role, content: str
    ) -> Optional[Turn]:
        """Append a turn, or None when not found."""


class InMemoryConversationStore(ConversationStore):
    """Process-local store for the bundled server and tests."""

    def __init__(self):
        """Initialize conversation store."""
        self.conversations: dict[str, Conversation] = {}
        self._lock = asyncio.Lock()

    def _owned(self, user_id: str, conversation_id: str) -> Optional[Conversation]:
        conversation = self.conversations.get(conversation_id)
        if conversation is None or conversation.user_id != user_id:
            return None
        return conversation

    async def create_conversation(self, user_id: str, title: Optional[str] = None) -> Conversation:
        conversation = Conversation(user_id=user_id, title=(title or "").strip() or "New conversation")
        async with self._lock:
            self.conversations[conversation.id] = conversation
        return conversation

    async def list_turns(self, user_id: str, conversation_id: str) -> Optional[list[Turn]]:
        conversation = self._owned(user_id, conversation_id)
        if conversation is None:
            return None
        return list(conversation.turns)

    async def append_turn(
        self, user_id: str, conversation_id: str, role: Role, content: str
    ) -> Optional[Turn]:
        async with self._lock:
            conversation = self._owned(user_id, conversation_id)
            if conversation is None:
                return None
            turn = Turn(role=role, content=content)
            conversation.turns.append(turn)
            conversation.updated_at = turn.created_at
            return turn
