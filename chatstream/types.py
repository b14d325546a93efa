"""Common conversation types."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class Role(str, Enum):
    """Who a turn is attributed to."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class TurnKind(str, Enum):
    """Whether a turn is real history or a compression artifact."""

    VERBATIM = "verbatim"
    SUMMARY = "summary"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class Turn:
    """One message in a conversation."""

    role: Role
    content: str
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: Optional[datetime] = None
    kind: TurnKind = TurnKind.VERBATIM

    def __post_init__(self):
        """Coerce role strings and default updated_at."""
        if not isinstance(self.role, Role):
            self.role = Role(str(self.role).lower())
        if self.updated_at is None:
            self.updated_at = self.created_at

    @property
    def is_summary(self) -> bool:
        return self.kind == TurnKind.SUMMARY


@dataclass
class ConversationContext:
    """Bounded context assembled for a single orchestration call."""

    turns: list[Turn]
    estimated_tokens: int
    was_summarized: bool = False


@dataclass
class Suggestion:
    """A follow-up prompt offered after a response."""

    title: str
    prompt: str
    description: Optional[str] = None

    def to_dict(self) -> dict[str, str]:
        data = {"title": self.title, "prompt": self.prompt}
        if self.description is not None:
            data["description"] = self.description
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Suggestion":
        """Build from a mapping, raising ValueError on a bad shape."""
        if not isinstance(data, dict):
            raise ValueError(f"Suggestion must be an object, got {type(data).__name__}")
        title = data.get("title")
        prompt = data.get("prompt")
        if not isinstance(title, str) or not isinstance(prompt, str) or not title or not prompt:
            raise ValueError("Suggestion requires non-empty 'title' and 'prompt'")
        description = data.get("description")
        if description is not None and not isinstance(description, str):
            description = str(description)
        return cls(title=title, prompt=prompt, description=description)
