"""Anthropic/Claude backend adapter."""

from typing import Any, AsyncIterator, Optional

from anthropic import (
    APIConnectionError,
    APIError,
    APIStatusError,
    AsyncAnthropic,
    AuthenticationError,
    BadRequestError,
    InternalServerError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
)

from chatstream.config import ProviderConfig
from chatstream.errors import ConfigurationError
from chatstream.llm.adapter import BackendAdapter, split_system
from chatstream.llm.errors import (
    AuthError,
    BackendError,
    ModelUnavailable,
    RateLimited,
    Transient,
    error_for_status,
)

# Anthropic requires max_tokens on every request
DEFAULT_MAX_TOKENS = 4096


def translate_error(e: APIError) -> BackendError:
    """Convert an Anthropic SDK exception into a typed backend error."""
    if isinstance(e, (AuthenticationError, PermissionDeniedError)):
        return AuthError(f"Anthropic rejected the API key: {e}")
    if isinstance(e, RateLimitError):
        return RateLimited(f"Rate limit exceeded: {e}. Please try again later.")
    if isinstance(e, (NotFoundError, BadRequestError)):
        return ModelUnavailable(f"Anthropic rejected the request: {e}")
    if isinstance(e, (APIConnectionError, InternalServerError)):
        return Transient(f"Anthropic connection error: {e}")
    if isinstance(e, APIStatusError):
        return error_for_status(e.status_code, f"Anthropic API error {e.status_code}: {e}")
    return BackendError(f"Anthropic API error: {e}")


class AnthropicAdapter(BackendAdapter):
    """Anthropic Claude adapter."""

    backend = "anthropic"

    def __init__(self, config: ProviderConfig, client: Optional[AsyncAnthropic] = None):
        """Initialize Anthropic adapter."""
        if client is None:
            if not config.api_key:
                raise ConfigurationError("ANTHROPIC_API_KEY not set")
            client = AsyncAnthropic(
                api_key=config.api_key,
                base_url=config.base_url,
                timeout=config.timeout_seconds,
            )
        self.client = client
        self.config = config

    def _request(
        self,
        messages: list[dict[str, str]],
        model: str,
        temperature: Optional[float],
        max_tokens: Optional[int],
    ) -> dict[str, Any]:
        # System turns go in the top-level `system` field
        system, rest = split_system(messages)
        request: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens or DEFAULT_MAX_TOKENS,
            "messages": [{"role": m["role"], "content": m["content"]} for m in rest],
        }
        if system:
            request["system"] = system
        if temperature is not None:
            # Anthropic accepts 0..1
            request["temperature"] = min(temperature, 1.0)
        return request

    async def stream(
        self,
        messages: list[dict[str, str]],
        model: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> AsyncIterator[str]:
        """Send messages to Claude and stream response text."""
        request = self._request(messages, model, temperature, max_tokens)
        try:
            async with self.client.messages.stream(**request) as stream:
                async for text in stream.text_stream:
                    if text:
                        yield text
        except APIError as e:
            raise translate_error(e) from e

    async def complete(
        self,
        messages: list[dict[str, str]],
        model: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Single non-streaming message."""
        request = self._request(messages, model, temperature, max_tokens)
        try:
            response = await self.client.messages.create(**request)
        except APIError as e:
            raise translate_error(e) from e
        return "".join(block.text for block in response.content if block.type == "text")

    async def close(self) -> None:
        await self.client.close()
