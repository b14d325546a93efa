"""OpenAI (and OpenAI-compatible) backend adapter."""

import logging
from typing import Any, AsyncIterator, Optional

from openai import (
    APIConnectionError,
    APIError,
    APIStatusError,
    AsyncOpenAI,
    AuthenticationError,
    BadRequestError,
    InternalServerError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
)

from chatstream.config import ProviderConfig
from chatstream.errors import ConfigurationError
from chatstream.llm.adapter import BackendAdapter
from chatstream.llm.errors import (
    AuthError,
    BackendError,
    ModelUnavailable,
    RateLimited,
    Transient,
    error_for_status,
)

logger = logging.getLogger(__name__)


def translate_error(e: APIError) -> BackendError:
    """Convert an OpenAI SDK exception into a typed backend error."""
    if isinstance(e, (AuthenticationError, PermissionDeniedError)):
        return AuthError(f"OpenAI rejected the API key: {e}")
    if isinstance(e, RateLimitError):
        return RateLimited(f"OpenAI rate limit exceeded: {e}")
    if isinstance(e, (NotFoundError, BadRequestError)):
        return ModelUnavailable(f"OpenAI rejected the request: {e}")
    if isinstance(e, (APIConnectionError, InternalServerError)):
        return Transient(f"OpenAI connection error: {e}")
    if isinstance(e, APIStatusError):
        return error_for_status(e.status_code, f"OpenAI API error {e.status_code}: {e}")
    return BackendError(f"OpenAI API error: {e}")


class OpenAIAdapter(BackendAdapter):
    """Streams chat completions from the OpenAI API."""

    backend = "openai"

    def __init__(self, config: ProviderConfig, client: Optional[AsyncOpenAI] = None):
        """Initialize OpenAI adapter."""
        if client is None:
            if not config.api_key:
                raise ConfigurationError("OPENAI_API_KEY not set")
            client = AsyncOpenAI(
                api_key=config.api_key,
                base_url=config.base_url,
                timeout=config.timeout_seconds,
            )
        self.client = client
        self.config = config

    def _payload(
        self,
        messages: list[dict[str, str]],
        model: str,
        temperature: Optional[float],
        max_tokens: Optional[int],
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model,
            "messages": [{"role": m["role"], "content": m["content"]} for m in messages],
        }
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        return payload

    async def stream(
        self,
        messages: list[dict[str, str]],
        model: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> AsyncIterator[str]:
        """Stream completion deltas from OpenAI."""
        payload = self._payload(messages, model, temperature, max_tokens)
        logger.debug(f"Starting OpenAI stream for {model} with {len(messages)} message(s)")

        try:
            completion = await self.client.chat.completions.create(stream=True, **payload)
        except APIError as e:
            raise translate_error(e) from e

        try:
            async for chunk in completion:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content or ""
                if delta:
                    yield delta
        except APIError as e:
            raise translate_error(e) from e
        finally:
            await completion.close()

    async def complete(
        self,
        messages: list[dict[str, str]],
        model: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Single non-streaming completion."""
        payload = self._payload(messages, model, temperature, max_tokens)
        try:
            response = await self.client.chat.completions.create(**payload)
        except APIError as e:
            raise translate_error(e) from e
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def close(self) -> None:
        await self.client.close()
