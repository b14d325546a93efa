"""Client-side conversation state driven by streamed events."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from chatstream.protocol import Done, Error, Meta, StreamEvent, Suggestions, Token
from chatstream.suggestions import MAX_SUGGESTIONS
from chatstream.types import Role, Suggestion, Turn, new_id, utcnow

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Generation cancelled"


class GenerationStatus(str, Enum):
    STREAMING = "streaming"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class Notification:
    """User-facing toast."""

    level: str  # "success" or "error"
    message: str


@dataclass
class Generation:
    """One in-flight assistant reply and the user turn that requested it."""

    user_turn: Turn
    assistant_turn: Turn
    id: str = field(default_factory=new_id)
    status: GenerationStatus = GenerationStatus.STREAMING
    model: Optional[str] = None

    @property
    def active(self) -> bool:
        return self.status == GenerationStatus.STREAMING

    @property
    def finalized(self) -> bool:
        return self.status == GenerationStatus.DONE


class ConversationReducer:
    """
    Applies stream events to the active conversation.

    Only the current generation may mutate state. A cancelled or superseded
    generation is ignored, so late events cannot touch its placeholder.
    """

    def __init__(self, turns: Optional[Iterable[Turn]] = None, conversation_id: Optional[str] = None):
        self.turns: list[Turn] = list(turns or [])
        self.conversation_id = conversation_id
        self.suggestions: list[Suggestion] = []
        self.notifications: list[Notification] = []
        self.current: Optional[Generation] = None

    def begin_send(self, text: str) -> Generation:
        """Append the user turn and an empty assistant placeholder."""
        if self.current is not None and self.current.active:
            self.cancel()

        user_turn = Turn(role=Role.USER, content=text)
        placeholder = Turn(role=Role.ASSISTANT, content="")
        self.turns.extend([user_turn, placeholder])
        self.suggestions = []
        self.current = Generation(user_turn=user_turn, assistant_turn=placeholder)
        return self.current

    def apply(self, event: StreamEvent, generation: Optional[Generation] = None) -> bool:
        """
        Apply one event to the current generation.

        Returns:
            False once the generation no longer accepts events
        """
        generation = generation or self.current
        if generation is None or generation is not self.current:
            return False
        if generation.status in (GenerationStatus.CANCELLED, GenerationStatus.FAILED):
            return False

        if isinstance(event, Suggestions):
            self.suggestions = list(event.items[:MAX_SUGGESTIONS])
            return True
        if generation.finalized:
            # Only Suggestions may follow Done
            return True

        if isinstance(event, Meta):
            generation.model = event.model
            if event.conversation_id:
                self.conversation_id = event.conversation_id
        elif isinstance(event, Token):
            turn = generation.assistant_turn
            turn.content += event.delta
            turn.updated_at = utcnow()
        elif isinstance(event, Done):
            generation.status = GenerationStatus.DONE
        elif isinstance(event, Error):
            generation.status = GenerationStatus.FAILED
            self.notifications.append(Notification("error", event.message or "Failed to get AI response"))
            logger.debug(f"Generation {generation.id} failed [{event.code}]: {event.message}")
            return False
        return True

    def cancel(self, generation: Optional[Generation] = None) -> bool:
        """Stop the generation; partial text is kept and no error is raised."""
        generation = generation or self.current
        if generation is None or not generation.active:
            return False
        generation.status = GenerationStatus.CANCELLED
        self.notifications.append(Notification("success", CANCELLED_MESSAGE))
        return True

    def fail_request(self, generation: Generation, message: str, code: str) -> None:
        """Record an error returned before the stream opened."""
        if not generation.active:
            return
        generation.status = GenerationStatus.FAILED
        if not generation.assistant_turn.content and generation.assistant_turn in self.turns:
            self.turns.remove(generation.assistant_turn)
        self.notifications.append(Notification("error", f"{message} ({code})"))
