# tests/test_text_analysis.py
"""Tests for tokenization, tag derivation and title selection."""
import pytest

from notegraph.services.text_analysis import (
    DEFAULT_TITLE,
    extract_tags,
    normalize_token,
    pick_title,
    tokenize,
    tokens_from_title,
)


@pytest.mark.parametrize(
    "token,expected",
    [
        ("libraries", "library"),
        ("graphs", "graph"),
        ("tests", "test"),
        ("class", "class"),
        ("status", "status"),
        ("analysis", "analysis"),
        ("bus", "bus"),
        ("data", "data"),
    ],
)
def test_normalize_token(token, expected):
    assert normalize_token(token) == expected


class TestTokenize:
    """Tests for token counting."""

    def test_case_punctuation_and_plurals(self):
        assert tokenize("The graphs, and THE Graph!") == {"graph": 2}

    def test_stopwords_and_single_characters_dropped(self):
        assert tokenize("a b it is x should ensure") == {}

    def test_hashtags_kept(self):
        assert tokenize("#python rocks") == {"#python": 1, "rock": 1}

    def test_empty(self):
        assert tokenize("") == {}


class TestExtractTags:
    """Tests for tag derivation."""

    def test_hashtags_win_in_order(self):
        text = "Frequent frequent frequent #Beta text #alpha #beta"
        assert extract_tags(text) == ["beta", "alpha"]

    def test_most_frequent_words(self):
        text = "graph graph graph search search ranking"
        assert extract_tags(text) == ["graph", "search", "ranking"]

    def test_ties_alphabetical_and_limit(self):
        text = "delta gamma beta alpha epsilon zeta"
        assert extract_tags(text, limit=3) == ["alpha", "beta", "delta"]

    def test_generic_and_short_words_skipped(self):
        assert extract_tags("system system project graph go") == ["graph"]


class TestTitles:
    """Tests for title helpers."""

    def test_provided_title_wins(self):
        assert pick_title("First line\nSecond", "  Given  ") == "Given"

    def test_first_non_empty_line(self):
        assert pick_title("\n\n  First line  \nSecond") == "First line"

    def test_default(self):
        assert pick_title("") == DEFAULT_TITLE
        assert pick_title("   ", "   ") == DEFAULT_TITLE

    def test_tokens_from_title_keep_plurals(self):
        assert tokens_from_title("Graphs & the Trees") == ["graphs", "trees"]
