"""Route a model id to its backend adapter."""

import logging
from typing import AsyncIterator, Iterable, Mapping, Optional

from chatstream.errors import ConfigurationError, UnsupportedModel
from chatstream.config import ChatConfig
from chatstream.llm import BackendAdapter, create_backend_adapter
from chatstream.registry import ModelDescriptor, ModelRegistry
from chatstream.types import Turn

logger = logging.getLogger(__name__)


def normalize_turns(
    turns: Iterable[Turn], user_text: Optional[str] = None, system_prompt: Optional[str] = None
) -> list[dict[str, str]]:
    """
    Flatten turns into role-tagged messages.

    The system prompt (if any) comes first and the new user utterance last.
    """
    messages: list[dict[str, str]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    for turn in turns:
        messages.append({"role": turn.role.value, "content": turn.content})
    if user_text is not None:
        messages.append({"role": "user", "content": user_text})
    return messages


class BackendDispatcher:
    """
    Single dispatch table from backend id to adapter.

    Adapters are created once at startup; a backend without credentials
    simply has no entry.
    """

    def __init__(self, registry: ModelRegistry, adapters: Mapping[str, BackendAdapter]):
        """
        Initialize dispatcher.

        Args:
            registry: Model registry (single source of truth for model → backend)
            adapters: Configured adapters keyed by backend id
        """
        self.registry = registry
        self.adapters = dict(adapters)

    def available_backends(self) -> list[str]:
        return list(self.adapters)

    def available_models(self) -> list[ModelDescriptor]:
        """Streaming models whose backend is configured."""
        return [m for m in self.registry.models_for_backends(self.adapters) if m.supports_streaming]

    def resolve(self, model_id: str) -> tuple[ModelDescriptor, BackendAdapter]:
        """
        Look up the descriptor and adapter for a model.

        Raises:
            UnsupportedModel: Unknown id or a model that cannot stream
            ConfigurationError: The model's backend has no credentials
        """
        descriptor = self.registry.get(model_id)
        if descriptor is None or not descriptor.supports_streaming:
            raise UnsupportedModel(model_id, [m.id for m in self.available_models()])
        if not self.adapters:
            raise ConfigurationError("No backend credentials are configured")
        adapter = self.adapters.get(descriptor.backend)
        if adapter is None:
            raise ConfigurationError(f"Backend '{descriptor.backend}' for model '{model_id}' is not configured")
        return descriptor, adapter

    def stream(
        self,
        model_id: str,
        messages: list[dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> AsyncIterator[str]:
        """Start a backend stream for `model_id`; resolution errors raise immediately."""
        descriptor, adapter = self.resolve(model_id)
        logger.debug(f"Dispatching {model_id} to {descriptor.backend} with {len(messages)} message(s)")
        return adapter.stream(messages, model_id, temperature, max_tokens)

    async def complete(
        self,
        model_id: str,
        messages: list[dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """One-shot completion through the backend that serves `model_id`."""
        _, adapter = self.resolve(model_id)
        return await adapter.complete(messages, model_id, temperature, max_tokens)

    async def close(self) -> None:
        """Close every adapter."""
        for adapter in self.adapters.values():
            await adapter.close()


def build_dispatcher(config: ChatConfig) -> BackendDispatcher:
    """Create the registry and one adapter per configured backend."""
    registry = ModelRegistry(config.models)
    adapters: dict[str, BackendAdapter] = {}
    for backend in config.configured_backends():
        adapters[backend] = create_backend_adapter(backend, config.providers)
    if not adapters:
        logger.warning("No backend credentials configured; every chat request will fail")
    return BackendDispatcher(registry, adapters)
