"""Configuration loading and validation."""

import json
import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from chatstream.registry import DEFAULT_MODELS, ModelDescriptor

DEFAULT_SYSTEM_PROMPT = "You are a helpful AI assistant. Provide clear, helpful responses."


class ProviderConfig(BaseModel):
    """Credentials and endpoint for one backend."""

    api_key: Optional[str] = Field(default=None, description="API key (from env if not set)")
    base_url: Optional[str] = Field(default=None, description="Base URL override")
    timeout_seconds: float = Field(default=60.0, description="Request timeout")


class ProvidersConfig(BaseModel):
    """Backend provider configuration."""

    openai: ProviderConfig = Field(default_factory=ProviderConfig)
    google: ProviderConfig = Field(default_factory=ProviderConfig)
    anthropic: ProviderConfig = Field(default_factory=ProviderConfig)
    ollama: ProviderConfig = Field(default_factory=ProviderConfig)

    def for_backend(self, backend: str) -> ProviderConfig:
        return getattr(self, backend)


class ContextConfig(BaseModel):
    """Context window management settings."""

    max_turns: int = Field(default=20, gt=0, description="Most recent turns loaded per request")
    summarization_threshold: float = Field(default=0.8, gt=0, le=1, description="Fraction of the window that triggers summarization")
    min_turns_to_summarize: int = Field(default=6, description="Summarize only with more turns than this")
    keep_recent: int = Field(default=4, gt=0, description="Recent turns always kept verbatim")
    chars_per_token: int = Field(default=4, gt=0, description="Character-to-token approximation")
    summary_max_tokens: int = Field(default=150, gt=0)
    fallback_chars_per_turn: int = Field(default=100, gt=0)


class RetryConfig(BaseModel):
    """Retry policy for backend stream setup."""

    max_retries: int = Field(default=3, ge=0)
    base_delay_seconds: float = Field(default=1.0, ge=0)


class SuggestionConfig(BaseModel):
    """Follow-up suggestion generation."""

    enabled: bool = Field(default=True)
    max_tokens: int = Field(default=200, gt=0)
    temperature: float = Field(default=0.7)


class APIConfig(BaseModel):
    """Local API configuration."""

    bind: str = Field(default="127.0.0.1:4830", description="Bind address")
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"]
    )
    user_id: str = Field(default="local", description="User id bound to the local API token")
    token_file: Optional[str] = Field(default=None, description="Token file (default: ~/.config/chatstream/api_token)")


class ChatConfig(BaseSettings):
    """Main service configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CHATSTREAM_",
        case_sensitive=False,
        extra="ignore",
    )

    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    models: list[ModelDescriptor] = Field(default_factory=lambda: list(DEFAULT_MODELS))
    auxiliary_models: dict[str, str] = Field(
        default_factory=lambda: {
            "openai": "gpt-3.5-turbo",
            "google": "gemini-1.5-flash",
            "anthropic": "claude-3-5-haiku-latest",
        },
        description="Lightweight model per backend used for summaries and suggestions",
    )
    context: ContextConfig = Field(default_factory=ContextConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    suggestions: SuggestionConfig = Field(default_factory=SuggestionConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    default_model: str = Field(default="gpt-4o-mini")
    default_system_prompt: str = Field(default=DEFAULT_SYSTEM_PROMPT)
    default_temperature: float = Field(default=0.7)
    default_max_tokens: int = Field(default=2048, gt=0)
    stream_buffer_size: int = Field(default=64, gt=0, description="Bounded channel size between backend and reframer")
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {v}")
        return level

    def configured_backends(self) -> list[str]:
        """Backends with credentials (or, for ollama, an endpoint) available."""
        backends = []
        for backend in ("openai", "google", "anthropic"):
            if self.providers.for_backend(backend).api_key:
                backends.append(backend)
        if self.providers.ollama.base_url:
            backends.append("ollama")
        return backends

    def validate_environment(self) -> list[str]:
        """Return configuration problems; empty when the service can run."""
        errors: list[str] = []
        if not self.configured_backends():
            errors.append(
                "At least one backend must be configured "
                "(OPENAI_API_KEY, GOOGLE_GENAI_API_KEY, ANTHROPIC_API_KEY or OLLAMA_BASE_URL)"
            )
        key = self.providers.openai.api_key
        if key and not self.providers.openai.base_url and not key.startswith("sk-"):
            errors.append("OPENAI_API_KEY must start with 'sk-'")
        key = self.providers.google.api_key
        if key and len(key) < 20:
            errors.append("GOOGLE_GENAI_API_KEY appears to be invalid")
        return errors

    @classmethod
    def load(cls, config_path: Optional[Path | str] = None) -> "ChatConfig":
        """Load configuration from file and environment."""
        if config_path is None:
            config_path = find_config_file()
        elif isinstance(config_path, str):
            config_path = Path(config_path)

        config_dict: dict[str, Any] = {}
        if config_path and config_path.exists():
            if config_path.suffix.lower() == ".json":
                with open(config_path, "r") as f:
                    config_dict = json.load(f) or {}
            else:
                # Default to YAML for .yaml, .yml, or no extension
                with open(config_path, "r") as f:
                    config_dict = yaml.safe_load(f) or {}

        env_overrides: dict[str, dict[str, Any]] = {}
        if api_key := os.getenv("OPENAI_API_KEY"):
            env_overrides.setdefault("openai", {})["api_key"] = api_key
        if base_url := os.getenv("OPENAI_BASE_URL"):
            env_overrides.setdefault("openai", {})["base_url"] = base_url
        if api_key := os.getenv("GOOGLE_GENAI_API_KEY"):
            env_overrides.setdefault("google", {})["api_key"] = api_key
        if api_key := os.getenv("ANTHROPIC_API_KEY"):
            env_overrides.setdefault("anthropic", {})["api_key"] = api_key
        if ollama_url := os.getenv("OLLAMA_BASE_URL"):
            env_overrides.setdefault("ollama", {})["base_url"] = ollama_url

        # Merge env overrides
        if env_overrides:
            providers = config_dict.get("providers") or {}
            for backend, value in env_overrides.items():
                if providers.get(backend):
                    providers[backend].update(value)
                else:
                    providers[backend] = value
            config_dict["providers"] = providers

        if default_model := os.getenv("CHATSTREAM_DEFAULT_MODEL"):
            config_dict["default_model"] = default_model

        return cls(**config_dict)


def find_config_file() -> Optional[Path]:
    """Find config file in resolution order. Prefers JSON over YAML if both exist."""
    candidates = [
        Path(".chatstream/config.json"),
        Path(".chatstream/config.yaml"),
        Path(".chatstream/config.yml"),
        Path.home() / ".config" / "chatstream" / "config.json",
        Path.home() / ".config" / "chatstream" / "config.yaml",
        Path.home() / ".config" / "chatstream" / "config.yml",
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None
