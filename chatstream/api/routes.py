"""API route handlers."""

import logging
from typing import AsyncIterator

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from chatstream.api.auth import get_current_user
from chatstream.api.models import AgentRequest, ConversationCreate, ConversationCreated, ModelInfo
from chatstream.orchestrator import ConversationStream, OrchestrationRequest, Orchestrator
from chatstream.protocol import SSE_HEADERS, SSE_MEDIA_TYPE, encode_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["api"])


def get_orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator


async def _sse_body(stream: ConversationStream) -> AsyncIterator[bytes]:
    events = stream.events()
    try:
        async for event in events:
            yield encode_event(event)
    finally:
        await events.aclose()
        if stream.reframer.cancelled:
            logger.info("Client disconnected; backend stream closed")


@router.post("/agent")
async def agent(
    body: AgentRequest,
    user_id: str = Depends(get_current_user),
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> StreamingResponse:
    """Stream a reply to one user message as server-sent events."""
    request = OrchestrationRequest(
        user_text=body.message,
        model_id=body.model or orchestrator.config.default_model,
        conversation_id=body.conversation_id,
        temperature=body.temperature,
        max_tokens=body.max_tokens,
        system_prompt_override=body.system_prompt_override,
    )
    # Failures up to here are returned as JSON; afterwards they go in-band
    stream = await orchestrator.start(user_id, request)
    return StreamingResponse(_sse_body(stream), media_type=SSE_MEDIA_TYPE, headers=SSE_HEADERS)


@router.get("/models", response_model=list[ModelInfo])
async def list_models(
    user_id: str = Depends(get_current_user),
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> list[ModelInfo]:
    """List models whose backend is configured."""
    return [
        ModelInfo(
            id=m.id,
            name=m.display_name,
            backend=m.backend,
            context_window=m.context_window_tokens,
            description=m.description,
        )
        for m in orchestrator.dispatcher.available_models()
    ]


@router.post("/conversations", response_model=ConversationCreated, status_code=201)
async def create_conversation(
    body: ConversationCreate,
    user_id: str = Depends(get_current_user),
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> ConversationCreated:
    """Create an empty conversation."""
    conversation = await orchestrator.store.create_conversation(user_id, body.title)
    return ConversationCreated(id=conversation.id, title=conversation.title, created_at=conversation.created_at)
