"""API request and response models."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AgentRequest(BaseModel):
    """Body of a streaming chat request."""

    model_config = ConfigDict(populate_by_name=True)

    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    message: str = Field(min_length=1, description="User message")
    model: Optional[str] = Field(default=None, description="Model id (default from config)")
    temperature: Optional[float] = None
    max_tokens: Optional[int] = Field(default=None, gt=0, alias="maxTokens")
    system_prompt_override: Optional[str] = Field(default=None, alias="systemPromptOverride")


class ModelInfo(BaseModel):
    """Model available to this server."""

    id: str
    name: str
    backend: str
    context_window: int = Field(serialization_alias="contextWindow")
    description: Optional[str] = None


class ConversationCreate(BaseModel):
    """Body for creating a conversation."""

    title: Optional[str] = None


class ConversationCreated(BaseModel):
    """Newly created conversation."""

    id: str
    title: str
    created_at: datetime = Field(serialization_alias="createdAt")
