"""Pytest configuration and fixtures."""

import pytest

from chatstream.config import ChatConfig, ProviderConfig, ProvidersConfig
from chatstream.dispatcher import BackendDispatcher
from chatstream.orchestrator import Orchestrator
from chatstream.registry import ModelRegistry
from chatstream.storage import InMemoryConversationStore
from fakes import FakeAdapter, RecordingSleep


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep real credentials in the environment out of every test."""
    for name in (
        "OPENAI_API_KEY",
        "OPENAI_BASE_URL",
        "GOOGLE_GENAI_API_KEY",
        "ANTHROPIC_API_KEY",
        "OLLAMA_BASE_URL",
        "CHATSTREAM_DEFAULT_MODEL",
        "CHATSTREAM_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config():
    """Configuration with only the OpenAI backend configured."""
    return ChatConfig(providers=ProvidersConfig(openai=ProviderConfig(api_key="sk-test")))


@pytest.fixture
def fake_adapter():
    return FakeAdapter()


@pytest.fixture
def dispatcher(config, fake_adapter):
    return BackendDispatcher(ModelRegistry(config.models), {"openai": fake_adapter})


@pytest.fixture
def store():
    return InMemoryConversationStore()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def orchestrator(config, dispatcher, store, recording_sleep):
    return Orchestrator(config, dispatcher, store, sleep=recording_sleep)
