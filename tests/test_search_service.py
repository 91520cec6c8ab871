# tests/test_search_service.py
"""Tests for semantic and metadata search."""
import datetime

import pytest

from notegraph.exceptions import (
    EmbeddingError,
    ErrorCode,
    NoteNotFoundError,
    SearchError,
    ValidationError,
)
from notegraph.models.schema import NoteMetadata
from notegraph.services.embedding_service import EmbeddingService
from notegraph.services.search_service import MetadataQuery, SearchService
from tests.fakes import unit


def day(n):
    return datetime.datetime(2024, 1, n, 12, 0, tzinfo=datetime.timezone.utc)


class TestSemanticSearch:
    """Tests for embedding similarity search."""

    @pytest.fixture
    def corpus(self, add_note, fake_embedder):
        fake_embedder.pin("consensus", unit(1.0))
        return {
            "close": add_note("Raft", tags=["raft"], embedding=unit(1.0)),
            "near": add_note("Paxos", tags=["paxos"], embedding=unit(0.8, 0.6)),
            "far": add_note("Bread", tags=["baking"], embedding=unit(0.0, 1.0)),
            "none": add_note("No vector", tags=["raft"]),
        }

    def test_ranked_by_similarity(self, search_service, corpus):
        result = search_service.semantic_search("consensus")

        assert result.total == 3
        assert [m.note.id for m in result.matches] == [
            corpus["close"].id,
            corpus["near"].id,
            corpus["far"].id,
        ]
        assert result.matches[0].score == pytest.approx(1.0)
        assert result.matches[1].score == pytest.approx(0.8, abs=1e-6)

    def test_pagination(self, search_service, corpus):
        result = search_service.semantic_search("consensus", limit=1, offset=1)
        assert result.total == 3
        assert [m.note.id for m in result.matches] == [corpus["near"].id]

    def test_min_score(self, search_service, corpus):
        result = search_service.semantic_search("consensus", min_score=0.5)
        assert result.total == 2

    def test_tag_filter(self, search_service, corpus):
        result = search_service.semantic_search("consensus", tags=["#Raft"])
        assert [m.note.id for m in result.matches] == [corpus["close"].id]

    @pytest.mark.parametrize("query", ["", "   "])
    def test_empty_query(self, search_service, query):
        with pytest.raises(SearchError) as exc_info:
            search_service.semantic_search(query)
        assert exc_info.value.code == ErrorCode.SEARCH_INVALID_QUERY

    def test_embeddings_disabled(self, store):
        service = SearchService(store, EmbeddingService(None))
        with pytest.raises(SearchError) as exc_info:
            service.semantic_search("anything")
        assert exc_info.value.code == ErrorCode.SEARCH_NO_QUERY_VECTOR

    def test_provider_failure(self, search_service, fake_embedder):
        fake_embedder.fail = True
        with pytest.raises(EmbeddingError):
            search_service.semantic_search("anything")


class TestMetadataLookups:
    """Tests for id, short-id and title lookups."""

    def test_by_id_and_prefix(self, search_service, add_note):
        note = add_note("Target")
        for ref in (note.id, note.short_id):
            result = search_service.metadata_search(MetadataQuery(id=ref))
            assert [m.note.id for m in result.matches] == [note.id]
            assert result.matches[0].score == 1.0

    def test_missing_id(self, search_service):
        with pytest.raises(NoteNotFoundError):
            search_service.metadata_search(MetadataQuery(id="not-a-note"))

    def test_term_that_looks_like_short_id(self, search_service, add_note):
        note = add_note("Target")
        result = search_service.metadata_search(MetadataQuery(term=note.short_id))
        assert [m.note.id for m in result.matches] == [note.id]

    def test_exact_title(self, search_service, add_note):
        add_note("Graph theory notes")
        note = add_note("Graph theory")
        result = search_service.metadata_search(MetadataQuery(title="Graph theory"))
        assert [m.note.id for m in result.matches] == [note.id]


class TestMetadataSearch:
    """Tests for term, filter and sort behavior."""

    @pytest.fixture
    def corpus(self, add_note):
        return {
            "theory": add_note(
                "Graph theory", tags=["math"], updated_at=day(1),
                metadata=NoteMetadata(origin="import", created_by="Agent"),
            ),
            "storage": add_note("Graph storage", tags=["graph", "db"], updated_at=day(2)),
            "bread": add_note(
                "Sourdough", "Baking on graph paper.", tags=["baking"], updated_at=day(3)
            ),
        }

    def test_keyword_scores(self, search_service, corpus):
        result = search_service.metadata_search(MetadataQuery(term="Graph"))

        assert [m.note.id for m in result.matches] == [
            corpus["storage"].id,
            corpus["theory"].id,
            corpus["bread"].id,
        ]
        assert [m.score for m in result.matches] == pytest.approx([1.0, 4 / 6, 1 / 6])

    def test_unknown_title_falls_back_to_keyword(self, search_service, corpus):
        result = search_service.metadata_search(MetadataQuery(title="sourdough"))
        assert [m.note.id for m in result.matches] == [corpus["bread"].id]

    def test_scan_matches_keyword_scoring(self, search_service, corpus):
        result = search_service.metadata_search(
            MetadataQuery(term="graph", tags_any=["graph", "math"])
        )
        assert [m.note.id for m in result.matches] == [
            corpus["storage"].id,
            corpus["theory"].id,
        ]
        assert [m.score for m in result.matches] == pytest.approx([1.0, 4 / 6])

    def test_tags_all(self, search_service, corpus):
        result = search_service.metadata_search(MetadataQuery(tags_all=["graph", "#DB"]))
        assert [m.note.id for m in result.matches] == [corpus["storage"].id]

    def test_date_window(self, search_service, corpus):
        result = search_service.metadata_search(
            MetadataQuery(since="2024-01-02", until="2024-01-03T12:00:00Z")
        )
        assert [m.note.id for m in result.matches] == [corpus["storage"].id]

    def test_invalid_date(self, search_service, corpus):
        with pytest.raises(ValidationError) as exc_info:
            search_service.metadata_search(MetadataQuery(since="last tuesday"))
        assert exc_info.value.code == ErrorCode.INVALID_DATE

    def test_provenance_filters(self, search_service, corpus):
        by_origin = search_service.metadata_search(MetadataQuery(origin="Import"))
        by_author = search_service.metadata_search(MetadataQuery(created_by="agent"))
        assert [m.note.id for m in by_origin.matches] == [corpus["theory"].id]
        assert [m.note.id for m in by_author.matches] == [corpus["theory"].id]

    def test_recency_scores_without_term(self, search_service, corpus):
        result = search_service.metadata_search(MetadataQuery(tags_any=["math", "db", "baking"]))
        assert [m.note.id for m in result.matches] == [
            corpus["bread"].id,
            corpus["storage"].id,
            corpus["theory"].id,
        ]
        assert [m.score for m in result.matches] == pytest.approx([1.0, 2 / 3, 1 / 3])

    def test_sort_recent(self, search_service, corpus):
        result = search_service.metadata_search(MetadataQuery(term="graph", sort="recent"))
        assert result.matches[0].note.id == corpus["bread"].id

    def test_sort_degree(self, search_service, edge_service, corpus, add_note):
        other = add_note("Other", updated_at=day(4))
        edge_service.create_manual(corpus["theory"].id, corpus["storage"].id, score=0.9)
        edge_service.create_manual(corpus["theory"].id, other.id, score=0.9)

        result = search_service.metadata_search(MetadataQuery(sort="degree"))

        assert result.matches[0].note.id == corpus["theory"].id
        assert result.matches[-1].note.id == corpus["bread"].id

    def test_limit(self, search_service, corpus):
        result = search_service.metadata_search(MetadataQuery(term="graph", limit=1))
        assert result.total == 1

    def test_chunks_excluded_by_default(self, search_service, add_note):
        add_note("Graph chunk", is_chunk=True, parent_document_id="doc", chunk_order=0)
        assert search_service.metadata_search(MetadataQuery(term="graph")).matches == []
        included = search_service.metadata_search(
            MetadataQuery(term="graph", include_chunks=True)
        )
        assert included.total == 1
