"""Event protocol carried over a single server-sent-events stream.

Each event is framed as::

    event: <name>
    data: <json payload>
    <blank line>

Receivers buffer raw bytes until a blank-line terminated block is complete,
so payloads split across reads (including multi-byte characters) decode
correctly.
"""

import codecs
import json
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from chatstream.types import Suggestion

META = "meta"
TOKEN = "token"
DONE = "done"
SUGGESTIONS = "suggestions"
ERROR = "error"

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}
SSE_MEDIA_TYPE = "text/event-stream; charset=utf-8"


@dataclass
class Meta:
    model: str
    conversation_id: Optional[str] = None
    name = META

    def payload(self) -> dict[str, Any]:
        data: dict[str, Any] = {"model": self.model}
        if self.conversation_id is not None:
            data["conversationId"] = self.conversation_id
        return data


@dataclass
class Token:
    delta: str
    name = TOKEN

    def payload(self) -> dict[str, Any]:
        return {"delta": self.delta}


@dataclass
class Done:
    name = DONE

    def payload(self) -> dict[str, Any]:
        return {"done": True}


@dataclass
class Suggestions:
    items: list[Suggestion] = field(default_factory=list)
    name = SUGGESTIONS

    def payload(self) -> list[dict[str, str]]:
        return [item.to_dict() for item in self.items]


@dataclass
class Error:
    message: str
    code: str = "INTERNAL_ERROR"
    name = ERROR

    def payload(self) -> dict[str, Any]:
        return {"message": self.message, "code": self.code}


StreamEvent = Union[Meta, Token, Done, Suggestions, Error]


def encode_event(event: StreamEvent) -> bytes:
    """Frame one event for the wire."""
    data = json.dumps(event.payload(), ensure_ascii=False)
    return f"event: {event.name}\ndata: {data}\n\n".encode("utf-8")


class ProtocolError(ValueError):
    """A framed block could not be turned into an event."""


def parse_block(block: str) -> tuple[str, str]:
    """Extract the event name and the (joined) data lines from one block."""
    event = "message"
    data_lines = []
    for line in block.split("\n"):
        line = line.rstrip("\r")
        if line.startswith("event:"):
            event = line[len("event:"):].strip()
        elif line.startswith("data:"):
            chunk = line[len("data:"):]
            if chunk.startswith(" "):
                chunk = chunk[1:]
            data_lines.append(chunk)
    return event, "\n".join(data_lines)


def decode_event(name: str, data: str) -> StreamEvent:
    """Build a typed event from a block's name and JSON payload."""
    try:
        payload = json.loads(data) if data else {}
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Invalid JSON in '{name}' event: {e}") from e

    if name == META:
        return Meta(model=payload.get("model", ""), conversation_id=payload.get("conversationId"))
    if name == TOKEN:
        return Token(delta=payload.get("delta") or "")
    if name == DONE:
        return Done()
    if name == SUGGESTIONS:
        if not isinstance(payload, list):
            raise ProtocolError("'suggestions' payload must be a list")
        items = []
        for item in payload:
            try:
                items.append(Suggestion.from_dict(item))
            except ValueError:
                continue
        return Suggestions(items=items)
    if name == ERROR:
        return Error(message=payload.get("message", "Unknown error"), code=payload.get("code", "INTERNAL_ERROR"))
    raise ProtocolError(f"Unknown event: {name}")


class SSEDecoder:
    """Incremental decoder: feed raw reads, get complete events back."""

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")()
        self._buffer = ""

    def feed(self, chunk: Union[bytes, str]) -> list[StreamEvent]:
        """Add a read to the buffer and return every event it completed."""
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        # Normalize after joining so a CRLF split across reads is still seen
        self._buffer = (self._buffer + chunk).replace("\r\n", "\n")

        events: list[StreamEvent] = []
        while "\n\n" in self._buffer:
            block, self._buffer = self._buffer.split("\n\n", 1)
            if not block.strip():
                continue
            name, data = parse_block(block)
            events.append(decode_event(name, data))
        return events

    @property
    def pending(self) -> str:
        """Buffered text not yet terminated by a blank line."""
        return self._buffer
