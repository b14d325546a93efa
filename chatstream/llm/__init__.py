"""Backend adapters for different providers."""

from chatstream.config import ProvidersConfig
from chatstream.llm.adapter import BackendAdapter


def create_backend_adapter(backend: str, providers: ProvidersConfig) -> BackendAdapter:
    """Create the adapter for a backend id."""
    if backend == "openai":
        from chatstream.llm.openai import OpenAIAdapter
        return OpenAIAdapter(providers.openai)
    elif backend == "google":
        from chatstream.llm.google import GoogleAdapter
        return GoogleAdapter(providers.google)
    elif backend == "anthropic":
        from chatstream.llm.anthropic import AnthropicAdapter
        return AnthropicAdapter(providers.anthropic)
    elif backend == "ollama":
        from chatstream.llm.ollama import OllamaAdapter
        return OllamaAdapter(providers.ollama)
    else:
        raise ValueError(f"Unknown backend: {backend}")


__all__ = ["BackendAdapter", "create_backend_adapter"]
