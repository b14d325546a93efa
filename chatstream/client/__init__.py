"""Client side: reducer, fuzzy search and HTTP streaming."""

from chatstream.client.http import ChatClient, RequestFailed
from chatstream.client.reducer import (
    CANCELLED_MESSAGE,
    ConversationReducer,
    Generation,
    GenerationStatus,
    Notification,
)
from chatstream.client.search import FuzzyResult, Match, fuzzy_match, merge_ranges, search_turns

__all__ = [
    "CANCELLED_MESSAGE",
    "ChatClient",
    "ConversationReducer",
    "FuzzyResult",
    "Generation",
    "GenerationStatus",
    "Match",
    "Notification",
    "RequestFailed",
    "fuzzy_match",
    "merge_ranges",
    "search_turns",
]
