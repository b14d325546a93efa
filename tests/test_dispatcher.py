"""Tests for model → backend dispatch."""

import pytest

from chatstream.config import ChatConfig, ProviderConfig, ProvidersConfig
from chatstream.dispatcher import BackendDispatcher, build_dispatcher, normalize_turns
from chatstream.errors import ConfigurationError, UnsupportedModel
from chatstream.llm import create_backend_adapter
from chatstream.llm.anthropic import AnthropicAdapter
from chatstream.llm.ollama import OllamaAdapter
from chatstream.registry import ModelDescriptor, ModelRegistry
from chatstream.types import Role, Turn
from fakes import FakeAdapter, collect


def test_normalize_turns_order():
    turns = [
        Turn(role=Role.SYSTEM, content="summary"),
        Turn(role=Role.USER, content="hi"),
        Turn(role=Role.ASSISTANT, content="hello"),
    ]
    messages = normalize_turns(turns, "next", system_prompt="Be helpful.")
    assert messages == [
        {"role": "system", "content": "Be helpful."},
        {"role": "system", "content": "summary"},
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello"},
        {"role": "user", "content": "next"},
    ]


def test_resolve_unknown_model(dispatcher):
    """Unknown ids fail before any adapter is touched."""
    with pytest.raises(UnsupportedModel) as excinfo:
        dispatcher.resolve("gpt-9")
    body = excinfo.value.to_dict()
    assert body["code"] == "UNSUPPORTED_MODEL"
    assert body["supportedModels"] == ["gpt-4o", "gpt-4o-mini", "gpt-3.5-turbo"]
    assert dispatcher.adapters["openai"].calls == []


def test_resolve_non_streaming_model():
    registry = ModelRegistry(
        [ModelDescriptor(id="batch", display_name="B", backend="openai", context_window_tokens=10, supports_streaming=False)]
    )
    dispatcher = BackendDispatcher(registry, {"openai": FakeAdapter()})
    with pytest.raises(UnsupportedModel):
        dispatcher.resolve("batch")
    assert dispatcher.available_models() == []


def test_resolve_unconfigured_backend(dispatcher):
    with pytest.raises(ConfigurationError, match="google"):
        dispatcher.resolve("gemini-1.5-pro")


def test_resolve_without_any_adapter():
    dispatcher = BackendDispatcher(ModelRegistry(), {})
    with pytest.raises(ConfigurationError):
        dispatcher.resolve("gpt-4o")


@pytest.mark.asyncio
async def test_stream_routes_to_adapter(dispatcher, fake_adapter):
    messages = [{"role": "user", "content": "hi"}]
    fragments = await collect(dispatcher.stream("gpt-4o", messages, 0.5, 100))
    assert fragments == ["Hello", ", ", "world"]
    assert fake_adapter.calls == [{"messages": messages, "model": "gpt-4o", "temperature": 0.5, "max_tokens": 100}]


@pytest.mark.asyncio
async def test_complete_and_close(dispatcher, fake_adapter):
    fake_adapter.completion = "done"
    assert await dispatcher.complete("gpt-3.5-turbo", [{"role": "user", "content": "x"}]) == "done"
    await dispatcher.close()
    assert fake_adapter.closed


def test_build_dispatcher_creates_configured_adapters():
    config = ChatConfig(
        providers=ProvidersConfig(
            anthropic=ProviderConfig(api_key="test-key"),
            ollama=ProviderConfig(base_url="http://localhost:11434"),
        )
    )
    dispatcher = build_dispatcher(config)
    assert dispatcher.available_backends() == ["anthropic", "ollama"]
    assert isinstance(dispatcher.adapters["anthropic"], AnthropicAdapter)
    assert isinstance(dispatcher.adapters["ollama"], OllamaAdapter)
    assert all(m.backend in ("anthropic", "ollama") for m in dispatcher.available_models())


def test_build_dispatcher_without_credentials():
    dispatcher = build_dispatcher(ChatConfig())
    assert dispatcher.adapters == {}


def test_create_unknown_backend():
    with pytest.raises(ValueError, match="Unknown backend"):
        create_backend_adapter("carrier-pigeon", ProvidersConfig())


def test_create_backend_without_key():
    with pytest.raises(ConfigurationError):
        create_backend_adapter("google", ProvidersConfig())
