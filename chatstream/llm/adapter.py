"""Base backend adapter interface."""

from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional


class BackendAdapter(ABC):
    """
    Base class for streaming backend adapters.

    Messages are role-tagged dicts (`{"role": "system"|"user"|"assistant",
    "content": str}`); each adapter converts them to its provider's shape.
    Adapters raise only the typed errors from `chatstream.llm.errors`.
    """

    backend: str = ""

    @abstractmethod
    def stream(
        self,
        messages: list[dict[str, str]],
        model: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> AsyncIterator[str]:
        """Stream response text fragments as they arrive."""

    async def complete(
        self,
        messages: list[dict[str, str]],
        model: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """
        Send messages and return the whole response text.

        Default implementation drains stream(); subclasses may override
        with a native non-streaming call.
        """
        parts = []
        async for fragment in self.stream(messages, model, temperature, max_tokens):
            parts.append(fragment)
        return "".join(parts)

    async def close(self) -> None:
        """Release any network resources."""


def split_system(messages: list[dict[str, str]]) -> tuple[str, list[dict[str, str]]]:
    """Separate system messages (joined) from the conversational ones."""
    system_parts = [m["content"] for m in messages if m["role"] == "system"]
    rest = [m for m in messages if m["role"] != "system"]
    return "\n\n".join(system_parts), rest
