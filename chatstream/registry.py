"""Static table of supported models."""

from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

BACKENDS = ("openai", "google", "anthropic", "ollama")


class ModelDescriptor(BaseModel):
    """A model the orchestrator can dispatch to."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Model id sent to the backend")
    display_name: str = Field(description="Human readable name")
    backend: str = Field(description="Backend: openai, google, anthropic, ollama")
    context_window_tokens: int = Field(gt=0, description="Maximum tokens per request")
    supports_streaming: bool = Field(default=True)
    description: Optional[str] = None

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        """Validate backend id."""
        if v not in BACKENDS:
            raise ValueError(f"Invalid backend: {v}. Must be one of {', '.join(BACKENDS)}")
        return v


DEFAULT_MODELS: list[ModelDescriptor] = [
    ModelDescriptor(
        id="gpt-4o",
        display_name="GPT-4o",
        backend="openai",
        context_window_tokens=128000,
        description="Latest GPT-4o model with multimodal capabilities",
    ),
    ModelDescriptor(
        id="gpt-4o-mini",
        display_name="GPT-4o Mini",
        backend="openai",
        context_window_tokens=128000,
        description="Fast and efficient GPT-4o Mini model",
    ),
    ModelDescriptor(
        id="gpt-3.5-turbo",
        display_name="GPT-3.5 Turbo",
        backend="openai",
        context_window_tokens=16385,
        description="Fast and cost-effective chat model",
    ),
    ModelDescriptor(
        id="gemini-1.5-pro",
        display_name="Gemini 1.5 Pro",
        backend="google",
        context_window_tokens=1048576,
        description="Google's most capable multimodal model",
    ),
    ModelDescriptor(
        id="gemini-1.5-flash",
        display_name="Gemini 1.5 Flash",
        backend="google",
        context_window_tokens=1048576,
        description="Fast and efficient Google model",
    ),
    ModelDescriptor(
        id="claude-sonnet-4-20250514",
        display_name="Claude Sonnet 4",
        backend="anthropic",
        context_window_tokens=200000,
    ),
    ModelDescriptor(
        id="claude-3-5-haiku-latest",
        display_name="Claude 3.5 Haiku",
        backend="anthropic",
        context_window_tokens=200000,
    ),
]


class ModelRegistry:
    """Read-only lookup over model descriptors."""

    def __init__(self, models: Iterable[ModelDescriptor] = DEFAULT_MODELS):
        self._models: dict[str, ModelDescriptor] = {}
        for model in models:
            if model.id in self._models:
                raise ValueError(f"Duplicate model id in registry: {model.id}")
            self._models[model.id] = model

    def get(self, model_id: str) -> Optional[ModelDescriptor]:
        return self._models.get(model_id)

    def backend_for(self, model_id: str) -> Optional[str]:
        model = self._models.get(model_id)
        return model.backend if model else None

    def is_supported(self, model_id: str) -> bool:
        return model_id in self._models

    def models(self) -> list[ModelDescriptor]:
        return list(self._models.values())

    def models_for_backends(self, backends: Iterable[str]) -> list[ModelDescriptor]:
        """Models whose backend is in `backends`, in registry order."""
        wanted = set(backends)
        return [m for m in self._models.values() if m.backend in wanted]

    def __len__(self) -> int:
        return len(self._models)

    def __contains__(self, model_id: str) -> bool:
        return model_id in self._models
