"""Reframe a text-fragment stream as the ordered event protocol."""

import logging
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Optional

from chatstream.errors import ChatError, error_code
from chatstream.protocol import Done, Error, Meta, StreamEvent, Suggestions, Token
from chatstream.suggestions import MAX_SUGGESTIONS, SuggestionGenerator

logger = logging.getLogger(__name__)


class ReframerState(str, Enum):
    INIT = "init"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    CLOSED = "closed"


class StreamReframer:
    """
    State machine INIT → STREAMING → FINALIZING → CLOSED.

    Emits `Meta`, one `Token` per fragment, then `Done` followed by
    `Suggestions`. Any failure emits a single `Error` and closes; nothing
    follows an `Error`.
    """

    def __init__(
        self,
        meta: Meta,
        suggestions: Optional[SuggestionGenerator] = None,
        on_complete: Optional[Callable[[str], Awaitable[None]]] = None,
    ):
        """
        Initialize reframer.

        Args:
            meta: Event sent first
            suggestions: Generator run after Done; None skips the Suggestions event
            on_complete: Called with the full text before Done (e.g. to persist it)
        """
        self.meta = meta
        self.suggestions = suggestions
        self.on_complete = on_complete
        self.state = ReframerState.INIT
        self.full_text = ""
        self.cancelled = False

    async def run(self, fragments: AsyncIterator[str]) -> AsyncIterator[StreamEvent]:
        """Consume `fragments` in arrival order and yield protocol events."""
        if self.state != ReframerState.INIT:
            raise RuntimeError("StreamReframer can only run once")

        parts: list[str] = []
        try:
            self.state = ReframerState.STREAMING
            yield self.meta

            try:
                async for fragment in fragments:
                    if not fragment:
                        continue
                    parts.append(fragment)
                    yield Token(delta=fragment)

                self.full_text = "".join(parts)
                self.state = ReframerState.FINALIZING
                if self.on_complete is not None:
                    await self.on_complete(self.full_text)
            except Exception as e:
                self.full_text = "".join(parts)
                self.state = ReframerState.CLOSED
                yield self._error_event(e)
                return

            # The reply is complete; a disconnect from here on is not a cancellation
            self.state = ReframerState.CLOSED
            yield Done()

            if self.suggestions is not None:
                items = await self.suggestions.generate(self.full_text)
                yield Suggestions(items=items[:MAX_SUGGESTIONS])
        finally:
            if self.state != ReframerState.CLOSED:
                # Consumer went away mid-stream
                self.cancelled = True
                self.full_text = "".join(parts)
                self.state = ReframerState.CLOSED
                logger.info(f"Stream cancelled after {len(self.full_text)} chars")

    def _error_event(self, e: Exception) -> Error:
        if isinstance(e, ChatError):
            logger.error(f"Stream failed mid-response [{e.code}]: {e.message}")
            return Error(message=e.message, code=e.code)
        logger.exception("Unexpected error while streaming")
        return Error(message="Internal server error", code=error_code(e))
