"""HTTP client for the streaming chat endpoint."""

import asyncio
import logging
from typing import Any, AsyncIterator, Callable, Optional

import aiohttp

from chatstream.client.reducer import ConversationReducer, Generation
from chatstream.errors import ChatError
from chatstream.protocol import Error, SSEDecoder, StreamEvent

logger = logging.getLogger(__name__)


class RequestFailed(ChatError):
    """The server rejected a request before streaming started."""

    def __init__(self, message: str, code: str, status_code: int, details: Any = None):
        super().__init__(message, details)
        self.code = code
        self.status_code = status_code

    def __str__(self) -> str:
        return f"{self.message} ({self.code})"


class ChatClient:
    """Talks to a chatstream server over HTTP."""

    def __init__(self, base_url: str, token: str, timeout_seconds: Optional[float] = None):
        """
        Initialize client.

        Args:
            base_url: Server root, e.g. http://127.0.0.1:4830
            token: API bearer token
            timeout_seconds: Per-read timeout (None waits indefinitely)
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout_seconds = timeout_seconds
        self.session: aiohttp.ClientSession | None = None
        self._session_lock = asyncio.Lock()

    async def _ensure_session(self) -> None:
        """Ensure HTTP session is created."""
        if self.session is None:
            async with self._session_lock:
                if self.session is None:
                    timeout = aiohttp.ClientTimeout(total=None, sock_read=self.timeout_seconds)
                    self.session = aiohttp.ClientSession(
                        timeout=timeout,
                        headers={"Authorization": f"Bearer {self.token}"},
                    )

    @staticmethod
    async def _raise_for_error(response: aiohttp.ClientResponse) -> None:
        if response.status < 400:
            return
        try:
            body = await response.json(content_type=None)
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        raise RequestFailed(
            message=body.get("error") or response.reason or "Request failed",
            code=body.get("code") or "HTTP_ERROR",
            status_code=response.status,
            details=body.get("details"),
        )

    async def list_models(self) -> list[dict[str, Any]]:
        await self._ensure_session()
        async with self.session.get(f"{self.base_url}/api/models") as response:
            await self._raise_for_error(response)
            return await response.json()

    async def create_conversation(self, title: Optional[str] = None) -> str:
        """Create a conversation and return its id."""
        await self._ensure_session()
        async with self.session.post(f"{self.base_url}/api/conversations", json={"title": title}) as response:
            await self._raise_for_error(response)
            return (await response.json())["id"]

    async def stream(
        self,
        message: str,
        conversation_id: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        system_prompt_override: Optional[str] = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Send a message and yield events as they arrive.

        Raises:
            RequestFailed: The server answered with an error instead of a stream
        """
        await self._ensure_session()
        body: dict[str, Any] = {"message": message}
        if conversation_id:
            body["conversationId"] = conversation_id
        if model:
            body["model"] = model
        if temperature is not None:
            body["temperature"] = temperature
        if max_tokens is not None:
            body["maxTokens"] = max_tokens
        if system_prompt_override:
            body["systemPromptOverride"] = system_prompt_override

        async with self.session.post(f"{self.base_url}/api/agent", json=body) as response:
            await self._raise_for_error(response)
            decoder = SSEDecoder()
            async for chunk in response.content.iter_any():
                for event in decoder.feed(chunk):
                    yield event

    async def send(
        self,
        reducer: ConversationReducer,
        message: str,
        on_event: Optional[Callable[[StreamEvent], None]] = None,
        **kwargs: Any,
    ) -> Generation:
        """
        Stream a reply into `reducer`.

        Cancelling the awaiting task cancels the generation and closes the
        connection; the cancellation is re-raised.

        Args:
            reducer: Conversation state to update
            message: User message
            on_event: Called after each event the reducer accepted
            **kwargs: Forwarded to `stream()`
        """
        generation = reducer.begin_send(message)
        events = self.stream(message, conversation_id=reducer.conversation_id, **kwargs)
        try:
            async for event in events:
                accepted = reducer.apply(event, generation)
                if on_event is not None and (accepted or isinstance(event, Error)):
                    on_event(event)
                if not accepted:
                    break
        except RequestFailed as e:
            reducer.fail_request(generation, e.message, e.code)
        except aiohttp.ClientError as e:
            logger.warning(f"Connection to {self.base_url} failed: {e}")
            reducer.fail_request(generation, str(e) or "Connection failed", "NETWORK_ERROR")
        except asyncio.CancelledError:
            reducer.cancel(generation)
            raise
        finally:
            await events.aclose()

        if generation.active:
            reducer.apply(Error(message="Stream ended unexpectedly", code="STREAM_INTERRUPTED"), generation)
        return generation

    async def close(self) -> None:
        """Close HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
