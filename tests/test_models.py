# tests/test_models.py
"""Tests for the data models and exceptions of notegraph."""
import datetime

import pytest
from pydantic import ValidationError

from notegraph.exceptions import BulkOperationError, ErrorCode, NoteNotFoundError
from notegraph.models.schema import (
    Classification,
    Edge,
    EdgeEvent,
    EdgeStatus,
    EdgeType,
    ManualEdgeMetadata,
    Note,
    ScoreComponents,
    SequentialEdgeMetadata,
    edge_identifier,
    edge_ref_code,
    generate_id,
    is_short_id,
    normalize_edge_pair,
    normalize_tag,
    short_id,
)

A = "1234abcd-0000-4000-8000-000000000000"
B = "9876fedc-0000-4000-8000-000000000000"


class TestIdentifiers:
    """Tests for id helpers."""

    def test_generate_id_is_unique_uuid(self):
        ids = {generate_id() for _ in range(100)}
        assert len(ids) == 100
        assert all(len(i) == 36 and i.count("-") == 4 for i in ids)

    def test_short_id(self):
        assert short_id(A) == "1234abcd"

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("1234ab", True),
            ("1234abcd", True),
            ("12345", False),
            ("1234abcd9", False),
            ("xyzxyz", False),
            ("1234ABCD", False),
        ],
    )
    def test_is_short_id(self, value, expected):
        assert is_short_id(value) is expected

    def test_edge_pair_is_order_independent(self):
        assert normalize_edge_pair(B, A) == (A, B)
        assert edge_identifier(A, B) == edge_identifier(B, A)
        assert len(edge_identifier(A, B)) == 32
        assert edge_ref_code(B, A) == "12349876"

    @pytest.mark.parametrize("raw", ["Python", "#python", "  #Python  ", "PYTHON"])
    def test_normalize_tag(self, raw):
        assert normalize_tag(raw) == "python"


class TestNote:
    """Tests for the Note model."""

    def test_defaults(self):
        note = Note(title="  Title  ")
        assert note.title == "Title"
        assert note.tags == []
        assert note.embedding is None
        assert not note.has_embedding
        assert not note.is_chunk
        assert note.metadata.origin == "capture"
        assert note.created_at.tzinfo is not None
        assert note.short_id == note.id[:8]

    def test_tags_normalized(self):
        note = Note(title="T", tags=["#B", "a", "b", "  ", "#"])
        assert note.tags == ["a", "b"]

    def test_empty_title_rejected(self):
        with pytest.raises(ValidationError):
            Note(title="   ")

    def test_unknown_fields_rejected(self):
        with pytest.raises(ValidationError):
            Note(title="T", content="old field name")


class TestEdge:
    """Tests for the Edge model."""

    def make(self, **overrides):
        values = dict(
            id=edge_identifier(A, B),
            source_id=A,
            target_id=B,
            score=0.7,
            status=EdgeStatus.ACCEPTED,
        )
        values.update(overrides)
        return Edge(**values)

    def test_defaults_and_helpers(self):
        edge = self.make()
        assert edge.edge_type == EdgeType.SEMANTIC
        assert edge.metadata.kind == "semantic"
        assert edge.ref == "12349876"
        assert edge.other(A) == B
        assert edge.other(B) == A

    def test_endpoints_must_be_canonical(self):
        with pytest.raises(ValidationError):
            self.make(source_id=B, target_id=A)

    def test_score_bounds(self):
        with pytest.raises(ValidationError):
            self.make(score=1.5)

    def test_metadata_must_match_type(self):
        with pytest.raises(ValidationError):
            self.make(edge_type=EdgeType.MANUAL)
        edge = self.make(edge_type=EdgeType.MANUAL, metadata=ManualEdgeMetadata(note="why"))
        assert edge.metadata.note == "why"

    def test_metadata_parsed_by_kind(self):
        edge = self.make(
            edge_type=EdgeType.SEQUENTIAL,
            metadata={"kind": "sequential", "prev_chunk_index": 0, "next_chunk_index": 1},
        )
        assert isinstance(edge.metadata, SequentialEdgeMetadata)
        assert edge.metadata.relationship == "document-flow"

    def test_frozen(self):
        edge = self.make()
        with pytest.raises(ValidationError):
            edge.score = 0.1


class TestScoreTypes:
    """Tests for score components and classification."""

    def test_components_bounded_and_frozen(self):
        components = ScoreComponents(
            token_similarity=0.1,
            embedding_similarity=0.2,
            tag_overlap=0.3,
            title_similarity=0.4,
            penalty=1.0,
        )
        with pytest.raises(ValidationError):
            components.penalty = 0.5
        with pytest.raises(ValidationError):
            ScoreComponents(
                token_similarity=1.1,
                embedding_similarity=0.0,
                tag_overlap=0.0,
                title_similarity=0.0,
                penalty=1.0,
            )

    def test_classification_to_status(self):
        assert Classification.ACCEPT.to_status() == EdgeStatus.ACCEPTED
        assert Classification.SUGGEST.to_status() == EdgeStatus.SUGGESTED
        assert Classification.DISCARD.to_status() is None

    def test_event_is_undone(self):
        event = EdgeEvent(id=1, source_id=A, target_id=B, next_status="accepted")
        assert not event.is_undone
        now = datetime.datetime.now(datetime.timezone.utc)
        undone = event.model_copy(update={"undone_at": now})
        assert undone.is_undone


class TestExceptions:
    """Tests for the exception hierarchy."""

    def test_not_found_details(self):
        error = NoteNotFoundError("abc")
        assert error.code == ErrorCode.NOTE_NOT_FOUND
        assert error.to_dict()["details"] == {"note_id": "abc"}
        assert str(error).startswith("[NOTE_NOT_FOUND]")

    def test_bulk_error_counts(self):
        error = BulkOperationError(
            "partial",
            operation="sweep",
            total_count=5,
            success_count=3,
            failed_ids=["a", "b"],
            errors={"a": "boom", "b": "bang"},
        )
        assert error.failed_count == 2
        assert error.details["failed_count"] == 2
        assert error.errors["a"] == "boom"

    def test_bulk_error_rejects_inconsistent_counts(self):
        with pytest.raises(ValueError):
            BulkOperationError("bad", operation="sweep", total_count=1, success_count=2)
