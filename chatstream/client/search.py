"""Fuzzy subsequence search over a conversation's turns."""

from dataclasses import dataclass
from typing import Iterable, Optional

from chatstream.types import Role, Turn

MAX_RESULTS = 25
SNIPPET_BEFORE = 40
SNIPPET_AFTER = 140
ELLIPSIS = "…"

Range = tuple[int, int]


@dataclass(frozen=True)
class Match:
    """A scored hit inside one message."""

    message_id: str
    role: Role
    score: int
    ranges: tuple[Range, ...]
    snippet: str


@dataclass(frozen=True)
class FuzzyResult:
    score: int
    ranges: tuple[Range, ...]
    snippet: str


def merge_ranges(ranges: Iterable[Range]) -> list[Range]:
    """Coalesce inclusive ranges that overlap or touch."""
    merged: list[list[int]] = []
    for start, end in sorted(ranges):
        if merged and start <= merged[-1][1] + 1:
            merged[-1][1] = max(merged[-1][1], end)
        else:
            merged.append([start, end])
    return [(start, end) for start, end in merged]


def fuzzy_match(content: str, query: str) -> Optional[FuzzyResult]:
    """
    Case-insensitive greedy subsequence match of `query` in `content`.

    Scoring: +1 per matched character, +4 when it directly follows the
    previous match, +2 at position 0 or after whitespace.

    Returns:
        None when the query is blank or any character is missing
    """
    text = content.lower()
    q = query.lower().strip()
    if not q:
        return None

    positions: list[int] = []
    score = 0
    cursor = 0
    for ch in q:
        found = text.find(ch, cursor)
        if found == -1:
            return None
        if positions and found == positions[-1] + 1:
            score += 4
        score += 1
        if found == 0 or text[found - 1].isspace():
            score += 2
        positions.append(found)
        cursor = found + 1

    ranges = merge_ranges((p, p) for p in positions)
    first = ranges[0][0]
    start = max(0, first - SNIPPET_BEFORE)
    end = min(len(content), first + SNIPPET_AFTER)
    snippet = content[start:end].strip()
    if start > 0:
        snippet = ELLIPSIS + snippet
    if end < len(content):
        snippet = snippet + ELLIPSIS
    return FuzzyResult(score=score, ranges=tuple(ranges), snippet=snippet)


def search_turns(
    turns: Iterable[Turn], query: str, limit: int = MAX_RESULTS
) -> tuple[list[Match], dict[str, tuple[Range, ...]]]:
    """
    Rank the turns matching `query`.

    Returns:
        (matches sorted by score descending and capped at `limit`,
        highlight ranges keyed by message id for every match)
    """
    matches: list[Match] = []
    ranges_by_id: dict[str, tuple[Range, ...]] = {}
    for turn in turns:
        result = fuzzy_match(turn.content, query)
        if result is None:
            continue
        matches.append(
            Match(
                message_id=turn.id,
                role=turn.role,
                score=result.score,
                ranges=result.ranges,
                snippet=result.snippet,
            )
        )
        ranges_by_id[turn.id] = result.ranges

    matches.sort(key=lambda m: m.score, reverse=True)
    return matches[:limit], ranges_by_id
