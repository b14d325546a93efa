"""Context window management for LLM conversations."""

import logging
import math
from typing import Awaitable, Callable, Optional

from chatstream.types import ConversationContext, Role, Turn, TurnKind

logger = logging.getLogger(__name__)

SUMMARY_PREFIX = "Previous conversation summary: "
SUMMARY_INSTRUCTION = (
    "Summarize the following conversation messages in 2-3 sentences, "
    "focusing on key points and decisions made."
)

TokenEstimator = Callable[[str], int]
CompletionFn = Callable[[list[dict[str, str]]], Awaitable[str]]


def approx_token_estimator(chars_per_token: int = 4) -> TokenEstimator:
    """
    Character-ratio token estimate.

    This is an approximation (~4 characters per token for English text),
    not a real tokenizer.
    """

    def estimate(text: str) -> int:
        return math.ceil(len(text) / chars_per_token)

    return estimate


class ContextManager:
    """Keeps conversation history inside a model's context window by summarizing the middle."""

    def __init__(
        self,
        complete: Optional[CompletionFn] = None,
        max_turns: int = 20,
        threshold: float = 0.8,
        min_turns_to_summarize: int = 6,
        keep_recent: int = 4,
        estimator: Optional[TokenEstimator] = None,
        fallback_chars_per_turn: int = 100,
    ):
        """
        Initialize context manager.

        Args:
            complete: Async call to a lightweight model used for summaries
            max_turns: Only the most recent N turns are considered
            threshold: Fraction of the window that triggers summarization
            min_turns_to_summarize: Summarize only with more turns than this
            keep_recent: Always keep this many recent turns verbatim
            estimator: Token estimator, defaults to the 4 chars/token approximation
            fallback_chars_per_turn: Characters per turn in the fallback summary
        """
        self.complete = complete
        self.max_turns = max_turns
        self.threshold = threshold
        self.min_turns_to_summarize = min_turns_to_summarize
        self.keep_recent = keep_recent
        self.estimator = estimator or approx_token_estimator()
        self.fallback_chars_per_turn = fallback_chars_per_turn

    def estimate_tokens(self, turns: list[Turn]) -> int:
        """Sum of per-turn estimates."""
        return sum(self.estimator(turn.content) for turn in turns)

    def recent_turns(self, turns: list[Turn]) -> list[Turn]:
        return list(turns[-self.max_turns:])

    def exceeds_threshold(self, estimated_tokens: int, window_tokens: int) -> bool:
        return estimated_tokens > self.threshold * window_tokens

    def partition(self, turns: list[Turn]) -> tuple[list[Turn], list[Turn], list[Turn]]:
        """
        Split into (leading system turns, middle, most recent turns).

        The middle is everything strictly between the other two and may be empty.
        """
        lead = 0
        while lead < len(turns) and turns[lead].role == Role.SYSTEM:
            lead += 1
        tail_start = max(lead, len(turns) - self.keep_recent)
        return turns[:lead], turns[lead:tail_start], turns[tail_start:]

    async def build(self, turns: list[Turn], window_tokens: int) -> ConversationContext:
        """
        Build bounded context for a request.

        Returns the recent turns unchanged when they fit, otherwise replaces
        the middle with one synthetic summary turn.
        """
        recent = self.recent_turns(turns)
        estimated = self.estimate_tokens(recent)

        if not self.exceeds_threshold(estimated, window_tokens) or len(recent) <= self.min_turns_to_summarize:
            return ConversationContext(turns=recent, estimated_tokens=estimated, was_summarized=False)

        leading, middle, last = self.partition(recent)
        if not middle:
            return ConversationContext(turns=recent, estimated_tokens=estimated, was_summarized=False)

        logger.info(
            f"Context estimate {estimated} exceeds {self.threshold:.0%} of {window_tokens}; "
            f"summarizing {len(middle)} turn(s)"
        )
        summary = await self.summarize(middle)
        summary_turn = Turn(role=Role.SYSTEM, content=SUMMARY_PREFIX + summary, kind=TurnKind.SUMMARY)
        reduced = [*leading, summary_turn, *last]
        return ConversationContext(
            turns=reduced,
            estimated_tokens=self.estimate_tokens(reduced),
            was_summarized=True,
        )

    async def summarize(self, turns: list[Turn]) -> str:
        """Condense turns via the auxiliary model, falling back to truncation."""
        if self.complete is not None:
            transcript = "\n".join(f"{turn.role.value}: {turn.content}" for turn in turns)
            messages = [
                {"role": "system", "content": SUMMARY_INSTRUCTION},
                {"role": "user", "content": transcript},
            ]
            try:
                summary = (await self.complete(messages)).strip()
                if summary:
                    return summary
                logger.warning("Summarization returned no text; using truncation fallback")
            except Exception as e:
                logger.warning(f"Failed to summarize messages: {e}")
        return self.fallback_summary(turns)

    def fallback_summary(self, turns: list[Turn]) -> str:
        """Space-joined prefix of every turn's content."""
        return " ".join(turn.content[: self.fallback_chars_per_turn] for turn in turns)
