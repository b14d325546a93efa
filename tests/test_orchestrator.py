"""Tests for end-to-end request orchestration."""

import asyncio

import pytest

from chatstream.config import DEFAULT_SYSTEM_PROMPT
from chatstream.dispatcher import BackendDispatcher
from chatstream.errors import ConfigurationError, NotFound, UnsupportedModel, ValidationError
from chatstream.llm.errors import AuthError, ModelUnavailable, Transient
from chatstream.orchestrator import OrchestrationRequest, Orchestrator
from chatstream.protocol import Done, Error, Meta, Suggestions, Token
from chatstream.registry import ModelRegistry
from chatstream.types import Role
from fakes import HANG, FakeAdapter, collect


def kinds(events):
    return [type(e).__name__ for e in events]


def test_request_rejects_blank_message():
    with pytest.raises(ValidationError):
        OrchestrationRequest(user_text="   ", model_id="gpt-4o")


def test_request_clamps_temperature():
    assert OrchestrationRequest(user_text="hi", model_id="m", temperature=3.5).temperature == 2.0
    assert OrchestrationRequest(user_text="hi", model_id="m", temperature=-1).temperature == 0.0
    assert OrchestrationRequest(user_text="hi", model_id="m").temperature is None


def test_request_rejects_non_positive_max_tokens():
    with pytest.raises(ValidationError):
        OrchestrationRequest(user_text="hi", model_id="m", max_tokens=0)


@pytest.mark.asyncio
async def test_stream_without_conversation(orchestrator, fake_adapter):
    stream = await orchestrator.start("local", OrchestrationRequest(user_text="Hi", model_id="gpt-4o"))
    events = await collect(stream.events())

    assert kinds(events) == ["Meta", "Token", "Token", "Token", "Done", "Suggestions"]
    assert events[0] == Meta(model="gpt-4o")
    assert [s.title for s in events[-1].items] == ["One", "Two", "Three"]

    call = fake_adapter.calls[0]
    assert call["messages"] == [
        {"role": "system", "content": DEFAULT_SYSTEM_PROMPT},
        {"role": "user", "content": "Hi"},
    ]
    assert call["temperature"] == 0.7
    assert call["max_tokens"] == 2048
    # Suggestions come from the auxiliary model
    assert fake_adapter.complete_calls[0]["model"] == "gpt-3.5-turbo"


@pytest.mark.asyncio
async def test_turns_persisted(orchestrator, store, fake_adapter):
    conversation = await store.create_conversation("local")
    await store.append_turn("local", conversation.id, Role.USER, "Earlier question")
    await store.append_turn("local", conversation.id, Role.ASSISTANT, "Earlier answer")

    request = OrchestrationRequest(
        user_text="Next question",
        model_id="gpt-4o-mini",
        conversation_id=conversation.id,
        system_prompt_override="Answer in French.",
        temperature=0.2,
        max_tokens=50,
    )
    stream = await orchestrator.start("local", request)

    # User turn is stored before any output
    turns = await store.list_turns("local", conversation.id)
    assert [t.content for t in turns] == ["Earlier question", "Earlier answer", "Next question"]

    events = await collect(stream.events())
    assert events[0] == Meta(model="gpt-4o-mini", conversation_id=conversation.id)

    turns = await store.list_turns("local", conversation.id)
    assert turns[-1].role == Role.ASSISTANT
    assert turns[-1].content == "Hello, world"
    assert len(turns) == 4

    messages = fake_adapter.calls[0]["messages"]
    assert messages[0] == {"role": "system", "content": "Answer in French."}
    # History is sent once, the new message last
    assert [m["content"] for m in messages[1:]] == ["Earlier question", "Earlier answer", "Next question"]
    assert fake_adapter.calls[0]["temperature"] == 0.2
    assert fake_adapter.calls[0]["max_tokens"] == 50


@pytest.mark.asyncio
async def test_unknown_conversation(orchestrator, fake_adapter):
    request = OrchestrationRequest(user_text="Hi", model_id="gpt-4o", conversation_id="missing")
    with pytest.raises(NotFound):
        await orchestrator.start("local", request)
    assert fake_adapter.calls == []


@pytest.mark.asyncio
async def test_other_users_conversation_not_found(orchestrator, store):
    conversation = await store.create_conversation("alice")
    request = OrchestrationRequest(user_text="Hi", model_id="gpt-4o", conversation_id=conversation.id)
    with pytest.raises(NotFound):
        await orchestrator.start("bob", request)
    assert await store.list_turns("alice", conversation.id) == []


@pytest.mark.asyncio
async def test_unsupported_model_before_network(orchestrator, fake_adapter):
    with pytest.raises(UnsupportedModel):
        await orchestrator.start("local", OrchestrationRequest(user_text="Hi", model_id="gpt-9"))
    assert fake_adapter.calls == []


@pytest.mark.asyncio
async def test_no_backends_configured(config, store):
    orchestrator = Orchestrator(config, BackendDispatcher(ModelRegistry(), {}), store)
    with pytest.raises(ConfigurationError):
        await orchestrator.start("local", OrchestrationRequest(user_text="Hi", model_id="gpt-4o"))


@pytest.mark.asyncio
async def test_transient_setup_failures_retried(orchestrator, fake_adapter, recording_sleep):
    fake_adapter.script = [[Transient("reset")], [Transient("reset")], ["ok"]]
    stream = await orchestrator.start("local", OrchestrationRequest(user_text="Hi", model_id="gpt-4o"))
    events = await collect(stream.events())

    assert len(fake_adapter.calls) == 3
    assert recording_sleep.delays == [1.0, 2.0]
    assert Token(delta="ok") in events


@pytest.mark.asyncio
async def test_auth_error_raised_before_stream(orchestrator, fake_adapter, recording_sleep):
    fake_adapter.script = [[AuthError("bad key")]]
    with pytest.raises(AuthError):
        await orchestrator.start("local", OrchestrationRequest(user_text="Hi", model_id="gpt-4o"))
    assert len(fake_adapter.calls) == 1
    assert recording_sleep.delays == []


@pytest.mark.asyncio
async def test_mid_stream_failure(orchestrator, store, fake_adapter):
    """Partial output ends with one Error and nothing is saved for the assistant."""
    conversation = await store.create_conversation("local")
    fake_adapter.script = [["Hel", ModelUnavailable("overloaded")]]

    request = OrchestrationRequest(user_text="Hi", model_id="gpt-4o", conversation_id=conversation.id)
    events = await collect((await orchestrator.start("local", request)).events())

    assert kinds(events) == ["Meta", "Token", "Error"]
    assert events[-1] == Error(message="overloaded", code="MODEL_UNAVAILABLE")
    turns = await store.list_turns("local", conversation.id)
    assert [t.role for t in turns] == [Role.USER]


@pytest.mark.asyncio
async def test_cancellation_closes_backend(orchestrator, store, fake_adapter):
    conversation = await store.create_conversation("local")
    fake_adapter.script = [["Hel", HANG]]

    request = OrchestrationRequest(user_text="Hi", model_id="gpt-4o", conversation_id=conversation.id)
    stream = await orchestrator.start("local", request)
    events = stream.events()
    assert isinstance(await events.__anext__(), Meta)
    assert await events.__anext__() == Token(delta="Hel")
    await events.aclose()

    assert stream.reframer.cancelled
    assert fake_adapter.streams_closed == 1
    turns = await store.list_turns("local", conversation.id)
    assert [t.role for t in turns] == [Role.USER]


@pytest.mark.asyncio
async def test_task_cancellation_propagates(orchestrator, fake_adapter):
    fake_adapter.script = [["Hel", HANG]]
    stream = await orchestrator.start("local", OrchestrationRequest(user_text="Hi", model_id="gpt-4o"))
    received = []

    async def consume():
        async for event in stream.events():
            received.append(event)

    task = asyncio.create_task(consume())
    while len(received) < 2:
        await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert stream.reframer.cancelled
    assert fake_adapter.streams_closed == 1
    assert not any(isinstance(e, (Done, Error, Suggestions)) for e in received)


@pytest.mark.asyncio
async def test_events_consumed_once(orchestrator):
    stream = await orchestrator.start("local", OrchestrationRequest(user_text="Hi", model_id="gpt-4o"))
    await collect(stream.events())
    with pytest.raises(RuntimeError):
        await collect(stream.events())


@pytest.mark.asyncio
async def test_long_history_is_summarized(orchestrator, store, fake_adapter):
    conversation = await store.create_conversation("local")
    for i in range(10):
        role = Role.USER if i % 2 == 0 else Role.ASSISTANT
        await store.append_turn("local", conversation.id, role, f"turn {i} " + "x" * 20000)
    fake_adapter.completion = "Summary of the early turns."

    request = OrchestrationRequest(user_text="Hi", model_id="gpt-3.5-turbo", conversation_id=conversation.id)
    stream = await orchestrator.start("local", request)

    assert stream.context.was_summarized
    messages = fake_adapter.calls[0]["messages"]
    assert messages[1]["content"] == "Previous conversation summary: Summary of the early turns."
    assert len(messages) == 1 + 1 + 4 + 1
    assert fake_adapter.complete_calls[0]["max_tokens"] == 150
    await stream.aclose()
