"""Tests for the stream reframer state machine."""

import asyncio

import pytest

from chatstream.llm.errors import ModelUnavailable
from chatstream.protocol import Done, Error, Meta, Suggestions, Token
from chatstream.reframer import ReframerState, StreamReframer
from chatstream.suggestions import EMPTY_RESPONSE_SUGGESTIONS, SuggestionGenerator
from fakes import collect


async def fragments(*items):
    for item in items:
        if isinstance(item, BaseException):
            raise item
        yield item


def kinds(events):
    return [type(e).__name__ for e in events]


@pytest.mark.asyncio
async def test_event_order():
    """Meta, Token*, Done, Suggestions."""
    completed = []

    async def on_complete(text):
        completed.append(text)

    reframer = StreamReframer(Meta(model="gpt-4o"), SuggestionGenerator(), on_complete)
    events = await collect(reframer.run(fragments("Hel", "", "lo")))

    assert kinds(events) == ["Meta", "Token", "Token", "Done", "Suggestions"]
    assert events[1] == Token(delta="Hel")
    assert events[2] == Token(delta="lo")
    assert completed == ["Hello"]
    assert reframer.full_text == "Hello"
    assert reframer.state == ReframerState.CLOSED
    assert not reframer.cancelled


@pytest.mark.asyncio
async def test_empty_response_gets_default_suggestions():
    reframer = StreamReframer(Meta(model="gpt-4o"), SuggestionGenerator())
    events = await collect(reframer.run(fragments()))
    assert kinds(events) == ["Meta", "Done", "Suggestions"]
    assert events[-1].items == list(EMPTY_RESPONSE_SUGGESTIONS)


@pytest.mark.asyncio
async def test_no_suggestions_without_generator():
    events = await collect(StreamReframer(Meta(model="m")).run(fragments("a")))
    assert kinds(events) == ["Meta", "Token", "Done"]


@pytest.mark.asyncio
async def test_error_mid_stream_is_terminal():
    completed = []

    async def on_complete(text):
        completed.append(text)

    reframer = StreamReframer(Meta(model="gpt-4o"), SuggestionGenerator(), on_complete)
    events = await collect(reframer.run(fragments("Hel", ModelUnavailable("model went away"))))

    assert kinds(events) == ["Meta", "Token", "Error"]
    assert events[-1] == Error(message="model went away", code="MODEL_UNAVAILABLE")
    assert completed == []
    assert reframer.full_text == "Hel"
    assert not any(isinstance(e, (Done, Suggestions)) for e in events)


@pytest.mark.asyncio
async def test_unexpected_error_is_masked():
    events = await collect(StreamReframer(Meta(model="m")).run(fragments(KeyError("secret detail"))))
    assert events[-1] == Error(message="Internal server error", code="INTERNAL_ERROR")


@pytest.mark.asyncio
async def test_completion_hook_failure_emits_error():
    async def on_complete(text):
        raise RuntimeError("store unavailable")

    events = await collect(StreamReframer(Meta(model="m"), on_complete=on_complete).run(fragments("a")))
    assert kinds(events) == ["Meta", "Token", "Error"]


@pytest.mark.asyncio
async def test_consumer_closing_marks_cancelled():
    completed = []

    async def on_complete(text):
        completed.append(text)

    async def endless():
        yield "Hel"
        await asyncio.Event().wait()

    reframer = StreamReframer(Meta(model="m"), on_complete=on_complete)
    run = reframer.run(endless())
    assert isinstance(await run.__anext__(), Meta)
    assert await run.__anext__() == Token(delta="Hel")
    await run.aclose()

    assert reframer.cancelled
    assert reframer.state == ReframerState.CLOSED
    assert reframer.full_text == "Hel"
    assert completed == []


@pytest.mark.asyncio
async def test_closing_after_done_is_not_cancelled():
    completed = []

    async def on_complete(text):
        completed.append(text)

    async def slow_completion(messages):
        await asyncio.Event().wait()

    reframer = StreamReframer(Meta(model="m"), SuggestionGenerator(slow_completion), on_complete)
    run = reframer.run(fragments("Hel", "lo"))
    received = [await run.__anext__() for _ in range(4)]
    assert kinds(received) == ["Meta", "Token", "Token", "Done"]

    # Disconnect while suggestions are being generated
    async def next_event():
        return await run.__anext__()

    pending = asyncio.create_task(next_event())
    await asyncio.sleep(0)
    pending.cancel()
    with pytest.raises(asyncio.CancelledError):
        await pending

    assert not reframer.cancelled
    assert reframer.state == ReframerState.CLOSED
    assert completed == ["Hello"]


@pytest.mark.asyncio
async def test_closing_at_done_is_not_cancelled():
    reframer = StreamReframer(Meta(model="m"))
    run = reframer.run(fragments("a"))
    assert kinds([await run.__anext__() for _ in range(3)]) == ["Meta", "Token", "Done"]
    await run.aclose()
    assert not reframer.cancelled


@pytest.mark.asyncio
async def test_run_only_once():
    reframer = StreamReframer(Meta(model="m"))
    await collect(reframer.run(fragments("a")))
    with pytest.raises(RuntimeError):
        await collect(reframer.run(fragments("a")))
