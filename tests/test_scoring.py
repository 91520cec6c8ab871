# tests/test_scoring.py
"""Tests for relatedness scoring and classification."""
import math

import pytest

from notegraph.exceptions import EdgeError, ErrorCode
from notegraph.models.schema import Classification, Note
from notegraph.services.scoring import (
    ScoringEngine,
    embedding_cosine,
    tag_jaccard,
    title_similarity,
    token_cosine,
)
from notegraph.services.text_analysis import tokenize
from tests.fakes import unit


def make_note(title, body, tags=(), embedding=None):
    return Note(
        title=title,
        body=body,
        tags=list(tags),
        token_counts=tokenize(f"{title}\n{body}"),
        embedding=embedding,
    )


class TestComponents:
    """Tests for the individual score components."""

    def test_token_cosine_identical(self):
        counts = {"graph": 2, "rank": 1}
        assert token_cosine(counts, counts) == pytest.approx(1.0)

    def test_token_cosine_disjoint(self):
        assert token_cosine({"graph": 1}, {"bread": 1}) == 0.0
        assert token_cosine({}, {}) == 0.0

    def test_token_cosine_downweights_generic_terms(self):
        """A shared generic term contributes less than a shared specific one."""
        generic = token_cosine({"flow": 1, "alpha": 1}, {"flow": 1, "beta": 1})
        specific = token_cosine({"graph": 1, "alpha": 1}, {"graph": 1, "beta": 1})
        assert generic < specific

    def test_embedding_cosine(self):
        assert embedding_cosine([1.0, 0.0], [0.8, 0.6]) == pytest.approx(0.8)
        assert embedding_cosine(None, [1.0, 0.0]) == 0.0
        assert embedding_cosine([0.0, 0.0], [1.0, 0.0]) == 0.0

    def test_embedding_cosine_dimension_mismatch(self):
        """Vectors from different embedding spaces are unrelated."""
        assert embedding_cosine([1.0, 0.0], [1.0, 0.0, 0.0]) == 0.0

    def test_tag_jaccard(self):
        overlap, shared = tag_jaccard(["a", "b", "c"], ["b", "c", "d"])
        assert overlap == pytest.approx(2 / 4)
        assert shared == ["b", "c"]
        assert tag_jaccard([], []) == (0.0, [])

    def test_title_similarity(self):
        assert title_similarity("Graph theory notes", "Graph theory") == pytest.approx(
            2 / math.sqrt(6)
        )
        assert title_similarity("Sourdough", "Quantum physics") == 0.0
        assert title_similarity("", "Anything") == 0.0

    def test_title_similarity_symmetric_with_repeats(self):
        a, b = "Rank rank graph", "Rank graph graph"
        assert title_similarity(a, b) == title_similarity(b, a)


class TestScoringEngine:
    """Tests for the weighted score."""

    def test_score_is_symmetric(self, scoring):
        a = make_note(
            "Consensus protocols", "Raft and Paxos elect leaders.", ["distributed", "raft"],
            unit(0.9, 0.3, 0.1),
        )
        b = make_note(
            "Leader election", "Raft elects a leader with randomized timeouts.",
            ["raft", "consensus"], unit(0.7, 0.6, 0.2),
        )
        score_ab, components_ab = scoring.score(a, b)
        score_ba, components_ba = scoring.score(b, a)
        assert score_ab == score_ba
        assert components_ab == components_ba

    def test_self_pair_fails(self, scoring):
        note = make_note("Alone", "Only me.")
        with pytest.raises(EdgeError) as exc_info:
            scoring.score(note, note)
        assert exc_info.value.code == ErrorCode.EDGE_SELF_REFERENCE

    def test_shared_tags_and_close_embeddings_accepted(self, scoring):
        """Three shared tags plus cosine 0.8 clears the accept threshold."""
        tags = ["graphs", "ranking", "search"]
        a = make_note("PageRank intuition", "Random surfer model.", tags, unit(1.0, 0.0))
        b = make_note("Link analysis", "Hubs and authorities.", tags, unit(0.8, 0.6))

        score, components = scoring.score(a, b)

        assert components.embedding_similarity == pytest.approx(0.8 ** 1.25)
        assert components.tag_overlap == 1.0
        assert components.penalty == 1.0
        assert score >= 0.5
        assert scoring.classify(score) is Classification.ACCEPT

    def test_unrelated_notes_discarded(self, scoring):
        """No tag or title overlap and cosine 0.1 stays under the suggestion threshold."""
        a = make_note(
            "Quantum entanglement", "Bell inequalities violated experimentally.",
            ["physics"], unit(1.0, 0.0),
        )
        b = make_note(
            "Sourdough baking", "Levain needs regular feeding.",
            ["cooking"], unit(0.1, math.sqrt(1 - 0.01)),
        )

        score, components = scoring.score(a, b)

        assert components.tag_overlap == 0.0
        assert components.title_similarity == 0.0
        assert components.penalty == pytest.approx(0.9)
        assert score < 0.25
        assert scoring.classify(score) is Classification.DISCARD

    def test_penalty_only_without_any_overlap(self, scoring):
        a = make_note("Graph storage", "Adjacency lists.", ["storage"])
        b = make_note("Graph layout", "Force directed drawing.", ["drawing"])
        _, components = scoring.score(a, b)
        # Title word "graph" is shared, so no penalty
        assert components.penalty == 1.0

    def test_missing_embedding_loses_its_weight(self, scoring):
        a = make_note("Alpha", "Same words here.", ["x"], unit(1.0))
        b = make_note("Alpha", "Same words here.", ["x"])
        score, components = scoring.score(a, b)
        assert components.embedding_similarity == 0.0
        assert score == pytest.approx(0.25 + 0.15 + 0.05)

    def test_negative_cosine_clipped(self, scoring):
        a = make_note("One", "First.", ["t"], unit(1.0))
        b = make_note("Two", "Second.", ["t"], unit(-1.0))
        _, components = scoring.score(a, b)
        assert components.embedding_similarity == 0.0


class TestClassification:
    """Tests for threshold classification."""

    @pytest.mark.parametrize(
        "score,expected",
        [
            (1.0, Classification.ACCEPT),
            (0.5, Classification.ACCEPT),
            (0.4999, Classification.SUGGEST),
            (0.25, Classification.SUGGEST),
            (0.2499, Classification.DISCARD),
            (0.0, Classification.DISCARD),
        ],
    )
    def test_thresholds(self, scoring, score, expected):
        assert scoring.classify(score) is expected

    def test_custom_thresholds(self, settings):
        engine = ScoringEngine(
            settings.model_copy(update={"auto_accept_threshold": 0.8})
        )
        assert engine.classify(0.6) is Classification.SUGGEST
