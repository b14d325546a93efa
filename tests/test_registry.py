"""Tests for the model registry."""

import pytest

from chatstream.registry import DEFAULT_MODELS, ModelDescriptor, ModelRegistry


def test_default_catalog():
    registry = ModelRegistry()
    assert len(registry) == len(DEFAULT_MODELS)
    assert registry.get("gpt-3.5-turbo").context_window_tokens == 16385
    assert registry.get("gemini-1.5-flash").context_window_tokens == 1048576
    assert registry.backend_for("gpt-4o") == "openai"
    assert registry.backend_for("missing") is None
    assert "gpt-4o-mini" in registry
    assert not registry.is_supported("gpt-5-ultra")


def test_duplicate_ids_rejected():
    model = ModelDescriptor(id="m", display_name="M", backend="openai", context_window_tokens=10)
    with pytest.raises(ValueError, match="Duplicate model id"):
        ModelRegistry([model, model])


def test_invalid_backend_rejected():
    with pytest.raises(ValueError, match="Invalid backend"):
        ModelDescriptor(id="m", display_name="M", backend="carrier-pigeon", context_window_tokens=10)


def test_context_window_must_be_positive():
    with pytest.raises(ValueError):
        ModelDescriptor(id="m", display_name="M", backend="openai", context_window_tokens=0)


def test_models_for_backends_keeps_order():
    registry = ModelRegistry()
    ids = [m.id for m in registry.models_for_backends(["google"])]
    assert ids == ["gemini-1.5-pro", "gemini-1.5-flash"]
