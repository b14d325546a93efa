"""Gemini backend adapter over the Generative Language REST API."""

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Optional

import aiohttp

from chatstream.config import ProviderConfig
from chatstream.errors import ConfigurationError
from chatstream.llm.adapter import BackendAdapter, split_system
from chatstream.llm.errors import BackendError, Transient, error_for_status

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


class GoogleAdapter(BackendAdapter):
    """Streams `streamGenerateContent` responses as server-sent events."""

    backend = "google"

    def __init__(self, config: ProviderConfig):
        """Initialize Gemini adapter."""
        if not config.api_key:
            raise ConfigurationError("GOOGLE_GENAI_API_KEY not set")
        self.config = config
        self.base_url = (config.base_url or DEFAULT_BASE_URL).rstrip("/")
        self.session: aiohttp.ClientSession | None = None
        self._session_lock = asyncio.Lock()

    async def _ensure_session(self) -> None:
        """Ensure HTTP session is created."""
        if self.session is None:
            async with self._session_lock:
                if self.session is None:
                    timeout = aiohttp.ClientTimeout(total=None, sock_read=self.config.timeout_seconds)
                    self.session = aiohttp.ClientSession(timeout=timeout)

    def build_payload(
        self,
        messages: list[dict[str, str]],
        temperature: Optional[float],
        max_tokens: Optional[int],
    ) -> dict[str, Any]:
        """Convert role-tagged messages to Gemini `contents` plus system instruction."""
        system, rest = split_system(messages)
        payload: dict[str, Any] = {
            "contents": [
                {
                    "role": "model" if m["role"] == "assistant" else "user",
                    "parts": [{"text": m["content"]}],
                }
                for m in rest
            ],
        }
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}
        generation_config: dict[str, Any] = {}
        if temperature is not None:
            generation_config["temperature"] = temperature
        if max_tokens is not None:
            generation_config["maxOutputTokens"] = max_tokens
        if generation_config:
            payload["generationConfig"] = generation_config
        return payload

    @staticmethod
    def extract_text(chunk: dict[str, Any]) -> str:
        """Concatenate text parts of the first candidate."""
        candidates = chunk.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(part.get("text", "") for part in parts if isinstance(part, dict))

    @staticmethod
    def stream_error(error: Any) -> BackendError:
        """Typed error for an `error` object sent inside the stream."""
        if not isinstance(error, dict):
            return error_for_status(500, f"Gemini stream error: {error}")
        try:
            status = int(error.get("code", 500))
        except (TypeError, ValueError):
            status = 500
        return error_for_status(status, f"Gemini stream error: {error.get('message', '')}")

    async def stream(
        self,
        messages: list[dict[str, str]],
        model: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> AsyncIterator[str]:
        """Stream text from Gemini."""
        await self._ensure_session()
        payload = self.build_payload(messages, temperature, max_tokens)
        url = f"{self.base_url}/models/{model}:streamGenerateContent?alt=sse"
        headers = {"x-goog-api-key": self.config.api_key}

        try:
            async with self.session.post(url, json=payload, headers=headers) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise error_for_status(response.status, f"Gemini API error {response.status}: {error_text}")

                async for raw_line in response.content:
                    line = raw_line.decode("utf-8", errors="replace").strip()
                    if not line.startswith("data:"):
                        continue
                    try:
                        chunk = json.loads(line[len("data:"):].strip())
                    except json.JSONDecodeError:
                        logger.debug(f"Skipping malformed Gemini chunk: {line[:200]}")
                        continue
                    if not isinstance(chunk, dict):
                        continue
                    if "error" in chunk:
                        raise self.stream_error(chunk["error"])
                    text = self.extract_text(chunk)
                    if text:
                        yield text
        except BackendError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise Transient(f"Gemini connection error: {e}") from e

    async def close(self) -> None:
        """Close the HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None
