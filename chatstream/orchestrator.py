"""Streaming conversation orchestration: one request, end to end."""

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional

from chatstream.config import ChatConfig
from chatstream.context import ContextManager, TokenEstimator, approx_token_estimator
from chatstream.dispatcher import BackendDispatcher, normalize_turns
from chatstream.errors import ConfigurationError, NotFound, ValidationError
from chatstream.llm.errors import RetrySupervisor
from chatstream.protocol import Meta, StreamEvent
from chatstream.reframer import StreamReframer
from chatstream.storage import ConversationStore
from chatstream.suggestions import SuggestionGenerator
from chatstream.types import ConversationContext, Role

logger = logging.getLogger(__name__)

_FRAGMENT = "fragment"
_END = "end"
_FAILED = "failed"


@dataclass
class OrchestrationRequest:
    """A validated user message bound for one model."""

    user_text: str
    model_id: str
    conversation_id: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    system_prompt_override: Optional[str] = None

    def __post_init__(self):
        """Reject empty text and clamp temperature to [0, 2]."""
        if not self.user_text or not self.user_text.strip():
            raise ValidationError("Message cannot be empty")
        if self.max_tokens is not None and self.max_tokens <= 0:
            raise ValidationError("maxTokens must be positive")
        if self.temperature is not None:
            self.temperature = min(2.0, max(0.0, float(self.temperature)))


class ConversationStream:
    """
    An opened backend stream waiting to be reframed.

    A producer task drains the backend into a bounded queue; the reframer
    consumes the queue in arrival order. Closing the event iterator cancels
    the producer, which closes the backend stream.
    """

    def __init__(
        self,
        fragments: AsyncIterator[str],
        reframer: StreamReframer,
        context: ConversationContext,
        buffer_size: int = 64,
    ):
        self.fragments = fragments
        self.reframer = reframer
        self.context = context
        self.buffer_size = buffer_size
        self._consumed = False

    async def _produce(self, queue: asyncio.Queue) -> None:
        try:
            async for fragment in self.fragments:
                await queue.put((_FRAGMENT, fragment))
        except Exception as e:
            await queue.put((_FAILED, e))
        else:
            await queue.put((_END, None))
        finally:
            await self.fragments.aclose()

    async def _drain(self, queue: asyncio.Queue) -> AsyncIterator[str]:
        while True:
            kind, value = await queue.get()
            if kind == _END:
                return
            if kind == _FAILED:
                raise value
            yield value

    async def events(self) -> AsyncIterator[StreamEvent]:
        """Protocol events for this request; may be iterated once."""
        if self._consumed:
            raise RuntimeError("ConversationStream can only be consumed once")
        self._consumed = True

        queue: asyncio.Queue = asyncio.Queue(maxsize=self.buffer_size)
        producer = asyncio.create_task(self._produce(queue))
        events = self.reframer.run(self._drain(queue))
        try:
            async for event in events:
                yield event
        finally:
            if not producer.done():
                producer.cancel()
            await events.aclose()
            await asyncio.gather(producer, return_exceptions=True)

    async def aclose(self) -> None:
        """Release the backend stream without consuming it."""
        if not self._consumed:
            self._consumed = True
            await self.fragments.aclose()


class Orchestrator:
    """
    Turns a user message into a stream of protocol events.

    Everything that can fail before output starts (model resolution,
    configuration, missing conversation, backend setup after retries) raises
    from `start()`; later failures arrive in-band as an `Error` event.
    """

    def __init__(
        self,
        config: ChatConfig,
        dispatcher: BackendDispatcher,
        store: ConversationStore,
        estimator: Optional[TokenEstimator] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize orchestrator.

        Args:
            config: Service configuration
            dispatcher: Model → backend dispatch table
            store: Conversation storage collaborator
            estimator: Token estimator override
            sleep: Sleep used between retries, injectable for tests
        """
        self.config = config
        self.dispatcher = dispatcher
        self.store = store
        self.estimator = estimator or approx_token_estimator(config.context.chars_per_token)
        self.retry = RetrySupervisor(
            max_retries=config.retry.max_retries,
            base_delay=config.retry.base_delay_seconds,
            sleep=sleep,
        )

    def auxiliary_completion(
        self, backend: str, max_tokens: int, temperature: Optional[float] = None
    ) -> Optional[Callable[[list[dict[str, str]]], Awaitable[str]]]:
        """One-shot call to the backend's lightweight model, or None if it has none."""
        model_id = self.config.auxiliary_models.get(backend)
        if not model_id:
            return None
        descriptor = self.dispatcher.registry.get(model_id)
        if descriptor is None or descriptor.backend not in self.dispatcher.adapters:
            return None

        async def complete(messages: list[dict[str, str]]) -> str:
            return await self.dispatcher.complete(model_id, messages, temperature=temperature, max_tokens=max_tokens)

        return complete

    def context_manager(self, backend: str) -> ContextManager:
        settings = self.config.context
        return ContextManager(
            complete=self.auxiliary_completion(backend, settings.summary_max_tokens),
            max_turns=settings.max_turns,
            threshold=settings.summarization_threshold,
            min_turns_to_summarize=settings.min_turns_to_summarize,
            keep_recent=settings.keep_recent,
            estimator=self.estimator,
            fallback_chars_per_turn=settings.fallback_chars_per_turn,
        )

    def suggestion_generator(self, backend: str) -> Optional[SuggestionGenerator]:
        settings = self.config.suggestions
        if not settings.enabled:
            return None
        return SuggestionGenerator(
            self.auxiliary_completion(backend, settings.max_tokens, settings.temperature)
        )

    async def start(self, user_id: str, request: OrchestrationRequest) -> ConversationStream:
        """
        Prepare context and open the backend stream.

        Raises:
            UnsupportedModel, ConfigurationError, NotFound, or a backend error
            that survived the retry policy
        """
        if not self.dispatcher.adapters:
            raise ConfigurationError("Server configuration error", details=self.config.validate_environment())
        descriptor, _ = self.dispatcher.resolve(request.model_id)

        history = []
        if request.conversation_id:
            turns = await self.store.list_turns(user_id, request.conversation_id)
            if turns is None:
                raise NotFound()
            history = turns
            if await self.store.append_turn(user_id, request.conversation_id, Role.USER, request.user_text) is None:
                raise NotFound()

        context = await self.context_manager(descriptor.backend).build(history, descriptor.context_window_tokens)
        system_prompt = request.system_prompt_override or self.config.default_system_prompt
        messages = normalize_turns(context.turns, request.user_text, system_prompt)

        temperature = request.temperature if request.temperature is not None else self.config.default_temperature
        max_tokens = request.max_tokens or self.config.default_max_tokens

        logger.info(
            f"Starting {descriptor.id} ({descriptor.backend}) for conversation {request.conversation_id or '-'}: "
            f"{len(messages)} message(s), ~{context.estimated_tokens} context tokens, "
            f"summarized={context.was_summarized}"
        )

        fragments = await self.retry.open(
            lambda: self.dispatcher.stream(descriptor.id, messages, temperature, max_tokens)
        )

        reframer = StreamReframer(
            meta=Meta(model=descriptor.id, conversation_id=request.conversation_id),
            suggestions=self.suggestion_generator(descriptor.backend),
            on_complete=self._persister(user_id, request.conversation_id),
        )
        return ConversationStream(fragments, reframer, context, buffer_size=self.config.stream_buffer_size)

    def _persister(self, user_id: str, conversation_id: Optional[str]) -> Optional[Callable[[str], Awaitable[None]]]:
        """Completion hook that writes the assistant turn exactly once."""
        if not conversation_id:
            return None

        async def persist(full_text: str) -> None:
            if not full_text:
                return
            if await self.store.append_turn(user_id, conversation_id, Role.ASSISTANT, full_text) is None:
                raise NotFound()
            logger.debug(f"Saved assistant turn ({len(full_text)} chars) to {conversation_id}")

        return persist
