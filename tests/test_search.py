"""Tests for fuzzy conversation search."""

from chatstream.client.search import fuzzy_match, merge_ranges, search_turns
from chatstream.types import Role, Turn


def test_subsequence_match():
    result = fuzzy_match("The quick brown fox", "qf")
    assert result.ranges == ((4, 4), (16, 16))
    # Two characters, both at a word start, not adjacent
    assert result.score == 6
    assert result.snippet == "The quick brown fox"


def test_adjacent_characters_merge_and_score():
    result = fuzzy_match("Hello world", "hel")
    assert result.ranges == ((0, 2),)
    # h: 1 + 2 (start), e: 4 + 1, l: 4 + 1
    assert result.score == 13


def test_case_insensitive_and_trimmed():
    assert fuzzy_match("PYTHON", "  py ") is not None


def test_no_match():
    assert fuzzy_match("abc", "abd") is None
    assert fuzzy_match("abc", "   ") is None
    assert fuzzy_match("abc", "") is None


def test_match_is_pure():
    assert fuzzy_match("The quick brown fox", "qbf") == fuzzy_match("The quick brown fox", "qbf")


def test_merge_ranges():
    assert merge_ranges([(2, 4), (5, 7), (10, 12)]) == [(2, 7), (10, 12)]
    assert merge_ranges([(3, 3), (1, 1), (2, 2)]) == [(1, 3)]
    assert merge_ranges([]) == []


def test_snippet_ellipses():
    content = "a" * 100 + "Z" + "b" * 200
    result = fuzzy_match(content, "z")
    assert result.snippet.startswith("…")
    assert result.snippet.endswith("…")
    assert result.snippet[1:-1] == content[60:240]


def test_search_turns_ranks_and_caps():
    turns = [Turn(role=Role.USER, content="zebra across") for _ in range(30)]
    turns.append(Turn(role=Role.ASSISTANT, content="nothing here"))
    best = Turn(role=Role.ASSISTANT, content="cross")
    turns.insert(3, best)

    matches, ranges = search_turns(turns, "cross")
    assert len(matches) == 25
    assert matches[0].message_id == best.id
    assert matches[0].score > matches[1].score
    assert best.id in ranges
    assert len(ranges) == 31
    assert all(m.message_id != turns[-1].id for m in matches)
