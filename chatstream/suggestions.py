"""Follow-up prompt suggestions generated after a response completes."""

import json
import logging
import re
from typing import Awaitable, Callable, Optional

from chatstream.types import Suggestion

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 3

SUGGESTION_INSTRUCTION = (
    "Based on the assistant's response, generate exactly 3 suggested follow-up questions "
    "that would help the user explore the topic further. Return only a JSON array of "
    'objects with "title", "prompt" and "description" fields.'
)

# Used when there is no response text to build on
EMPTY_RESPONSE_SUGGESTIONS = (
    Suggestion(
        title="Explain more",
        prompt="Can you explain that in more detail?",
        description="Get a deeper explanation of the topic",
    ),
    Suggestion(
        title="Give examples",
        prompt="Can you provide some examples?",
        description="See practical examples of what was discussed",
    ),
    Suggestion(
        title="Alternative approach",
        prompt="What's another way to think about this?",
        description="Explore different perspectives",
    ),
)

# Used when the auxiliary call or its parsing fails
FALLBACK_SUGGESTIONS = (
    Suggestion(
        title="Tell me more",
        prompt="Can you tell me more about that?",
        description="Get additional information on the topic",
    ),
    Suggestion(
        title="How does this work?",
        prompt="How does that work in practice?",
        description="Understand the practical implementation",
    ),
    Suggestion(
        title="What are the implications?",
        prompt="What are the broader implications of this?",
        description="Explore the bigger picture",
    ),
)

_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)

CompletionFn = Callable[[list[dict[str, str]]], Awaitable[str]]


def parse_suggestions(text: str) -> list[Suggestion]:
    """
    Parse a JSON array of suggestion objects.

    Raises:
        ValueError: Not a JSON array of well-formed suggestions
    """
    text = text.strip()
    fenced = _FENCE.match(text)
    if fenced:
        text = fenced.group(1)
    data = json.loads(text)
    if not isinstance(data, list):
        raise ValueError("Expected a JSON array of suggestions")
    items = [Suggestion.from_dict(item) for item in data]
    if not items:
        raise ValueError("No suggestions returned")
    return items


class SuggestionGenerator:
    """Produces at most three follow-up suggestions for a response."""

    def __init__(self, complete: Optional[CompletionFn] = None):
        """
        Initialize suggestion generator.

        Args:
            complete: Async call to a lightweight model; None always uses the defaults
        """
        self.complete = complete

    async def generate(self, response_text: Optional[str]) -> list[Suggestion]:
        """Suggestions for `response_text`, never raising."""
        if not response_text or not response_text.strip():
            return list(EMPTY_RESPONSE_SUGGESTIONS)

        if self.complete is None:
            return list(FALLBACK_SUGGESTIONS)

        messages = [
            {"role": "system", "content": SUGGESTION_INSTRUCTION},
            {"role": "user", "content": f"Assistant response: {response_text}"},
        ]
        try:
            raw = await self.complete(messages)
            return parse_suggestions(raw)[:MAX_SUGGESTIONS]
        except Exception as e:
            logger.warning(f"Failed to generate suggestions: {e}")
            return list(FALLBACK_SUGGESTIONS)
