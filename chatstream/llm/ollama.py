"""Ollama backend adapter for local models."""

import asyncio
import json
import logging
import os
from typing import Any, AsyncIterator, Optional

import aiohttp

from chatstream.config import ProviderConfig
from chatstream.llm.adapter import BackendAdapter
from chatstream.llm.errors import BackendError, ModelUnavailable, Transient, error_for_status

logger = logging.getLogger(__name__)


class OllamaAdapter(BackendAdapter):
    """Ollama adapter for local LLM models."""

    backend = "ollama"

    def __init__(self, config: ProviderConfig):
        """Initialize Ollama adapter."""
        self.config = config
        # Default Ollama URL, can be overridden in config
        self.base_url = config.base_url or os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
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
        model: str,
        temperature: Optional[float],
        max_tokens: Optional[int],
    ) -> dict[str, Any]:
        """Ollama takes system/user/assistant messages as-is."""
        payload: dict[str, Any] = {
            "model": model,
            "messages": [{"role": m["role"], "content": m["content"]} for m in messages],
            "stream": True,
        }
        options: dict[str, Any] = {}
        if temperature is not None:
            options["temperature"] = temperature
        if max_tokens is not None:
            options["num_predict"] = max_tokens
        if options:
            payload["options"] = options
        return payload

    async def stream(
        self,
        messages: list[dict[str, str]],
        model: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> AsyncIterator[str]:
        """Send messages to Ollama and stream response tokens."""
        await self._ensure_session()
        payload = self.build_payload(messages, model, temperature, max_tokens)

        try:
            async with self.session.post(f"{self.base_url}/api/chat", json=payload) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise error_for_status(response.status, f"Ollama API error {response.status}: {error_text}")

                # Newline-delimited JSON objects
                async for raw_line in response.content:
                    line = raw_line.decode("utf-8", errors="replace").strip()
                    if not line:
                        continue

                    try:
                        chunk = json.loads(line)
                    except json.JSONDecodeError:
                        logger.debug(f"Skipping malformed Ollama chunk: {line[:200]!r}")
                        continue

                    if not isinstance(chunk, dict):
                        continue
                    if "error" in chunk:
                        raise ModelUnavailable(f"Ollama error: {chunk['error']}")
                    content = (chunk.get("message") or {}).get("content", "")
                    if content:
                        yield content
                    if chunk.get("done"):
                        break
        except BackendError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise Transient(f"Ollama connection error: {e}") from e

    async def __aenter__(self):
        """Async context manager entry."""
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        """Close the HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None
