# tests/test_storage.py
"""Tests for the record store and its repositories."""
import pytest

from notegraph.exceptions import ErrorCode, NoteNotFoundError, StorageError, ValidationError
from notegraph.models.schema import (
    Edge,
    EdgeStatus,
    EventPayload,
    EventStatus,
    Note,
    NoteMetadata,
    edge_identifier,
    normalize_edge_pair,
)


def make_edge(a, b, score=0.6, status=EdgeStatus.SUGGESTED):
    source, target = normalize_edge_pair(a, b)
    return Edge(
        id=edge_identifier(source, target),
        source_id=source,
        target_id=target,
        score=score,
        status=status,
    )


class TestNoteRepository:
    """Tests for note persistence."""

    def test_round_trip(self, store):
        note = Note(
            title="Stored",
            body="Body text",
            tags=["beta", "alpha"],
            token_counts={"stored": 1, "body": 1, "text": 1},
            embedding=[0.5, 0.25, -0.125],
            metadata=NoteMetadata(origin="import", created_by="agent", source_file="a.md"),
        )
        store.notes.create(note)

        loaded = store.notes.get(note.id)

        assert loaded.title == "Stored"
        assert loaded.tags == ["alpha", "beta"]
        assert loaded.token_counts == note.token_counts
        assert loaded.embedding == pytest.approx([0.5, 0.25, -0.125])
        assert loaded.metadata == note.metadata
        assert loaded.created_at.tzinfo is not None

    def test_duplicate_id_fails(self, store, add_note):
        note = add_note("Original")
        with pytest.raises(StorageError) as exc_info:
            store.notes.create(Note(id=note.id, title="Copy"))
        assert exc_info.value.code == ErrorCode.STORAGE_WRITE_FAILED

    def test_update_patch(self, store, add_note):
        note = add_note("Before", tags=["old"])

        updated = store.notes.update(note.id, title="After", tags=["New", "#other"])

        assert updated.title == "After"
        assert updated.tags == ["new", "other"]
        assert updated.updated_at >= note.updated_at
        assert store.notes.tag_counts() == {"new": 1, "other": 1}

    def test_update_rejects_unknown_fields(self, store, add_note):
        note = add_note("Note")
        with pytest.raises(ValidationError):
            store.notes.update(note.id, is_chunk=True)

    def test_update_and_delete_missing(self, store):
        with pytest.raises(NoteNotFoundError):
            store.notes.update("missing", title="x")
        with pytest.raises(NoteNotFoundError):
            store.notes.delete("missing")

    def test_delete_cascades_edges(self, store, add_note):
        a, b, c = add_note("A"), add_note("B"), add_note("C")
        store.edges.upsert(make_edge(a.id, b.id))
        store.edges.upsert(make_edge(a.id, c.id))
        store.edges.upsert(make_edge(b.id, c.id))

        assert store.notes.delete(a.id) == 2
        assert [(e.source_id, e.target_id) for e in store.edges.list_by_status()] == [
            normalize_edge_pair(b.id, c.id)
        ]

    def test_resolve_prefix(self, store, add_note):
        first = add_note("First", id="abc12301-0000-4000-8000-000000000000")
        add_note("Second", id="abc12302-0000-4000-8000-000000000000")

        assert store.notes.resolve_prefix("abc12301").id == first.id
        assert store.notes.resolve_prefix("abc123") is None
        assert store.notes.resolve_prefix("fff999") is None

    def test_keyword_search_escapes_wildcards(self, store, add_note):
        add_note("Progress", "100 percent done")
        add_note("Report", "100% done")
        hits = store.notes.keyword_search("100%")
        assert [note.title for note, _ in hits] == ["Report"]

    def test_tag_projection(self, store, add_note):
        a = add_note("A", tags=["x", "y"])
        add_note("Chunk", tags=["x"], is_chunk=True, parent_document_id=a.id, chunk_order=0)

        assert store.notes.list_tag_sets(include_chunks=False) == {a.id: ["x", "y"]}
        assert len(store.notes.ids_with_tag("#X")) == 2

    def test_rename_tag_merges(self, store, add_note):
        a = add_note("A", tags=["old", "new"])
        b = add_note("B", tags=["old"])

        affected = store.notes.rename_tag("old", "new")

        assert sorted(affected) == sorted([a.id, b.id])
        assert store.notes.get(a.id).tags == ["new"]
        assert store.notes.tag_counts() == {"new": 2}


class TestEdgeRepository:
    """Tests for edge persistence and the event log."""

    def test_upsert_last_write_wins(self, store, add_note):
        a, b = add_note("A"), add_note("B")
        first = store.edges.upsert(make_edge(a.id, b.id, score=0.3))

        second = store.edges.upsert(
            make_edge(b.id, a.id, score=0.8, status=EdgeStatus.ACCEPTED)
        )

        assert len(store.edges.list_by_status()) == 1
        assert second.score == pytest.approx(0.8)
        assert second.status == EdgeStatus.ACCEPTED
        assert second.created_at == first.created_at
        assert store.edges.get(first.id) == second

    def test_get_between_either_order(self, store, add_note):
        a, b = add_note("A"), add_note("B")
        store.edges.upsert(make_edge(a.id, b.id))
        assert store.edges.get_between(b.id, a.id) == store.edges.get_between(a.id, b.id)
        assert store.edges.delete_between(b.id, a.id)
        assert not store.edges.delete_between(a.id, b.id)

    def test_degree_and_status_counts(self, store, add_note):
        a, b, c = add_note("A"), add_note("B"), add_note("C")
        store.edges.upsert(make_edge(a.id, b.id, status=EdgeStatus.ACCEPTED))
        store.edges.upsert(make_edge(a.id, c.id, status=EdgeStatus.ACCEPTED))
        store.edges.upsert(make_edge(b.id, c.id))

        assert store.edges.degree_counts() == {a.id: 2, b.id: 1, c.id: 1}
        assert store.edges.degree_counts(status=None) == {a.id: 2, b.id: 2, c.id: 2}
        assert store.edges.status_counts() == {"accepted": 2, "suggested": 1}
        assert len(store.edges.list_for_note(a.id)) == 2
        assert len(store.edges.list_for_note(b.id, EdgeStatus.SUGGESTED)) == 1

    def test_event_log(self, store, add_note):
        a, b = add_note("A"), add_note("B")
        first = store.edges.append_event(
            b.id, a.id, None, EventStatus.SUGGESTED, EventPayload(score=0.3, reason="auto-link")
        )
        second = store.edges.append_event(
            a.id, b.id, EventStatus.SUGGESTED, EventStatus.ACCEPTED, EventPayload(reason="accept")
        )

        assert (first.source_id, first.target_id) == normalize_edge_pair(a.id, b.id)
        assert store.edges.last_event_for_pair(b.id, a.id).id == second.id
        assert [e.id for e in store.edges.list_events()] == [second.id, first.id]
        assert store.edges.list_events(a.id, b.id, limit=1)[0].id == second.id

        store.edges.mark_undone(second.id)
        latest = store.edges.last_event_for_pair(a.id, b.id)
        assert latest.is_undone
        assert latest.payload.reason == "accept"


class TestBatches:
    """Tests for grouped writes."""

    def test_batch_commits_once(self, store, add_note):
        with store.batch():
            add_note("One")
            add_note("Two")
            assert store.sessions.in_batch
        assert store.notes.count() == 2
        assert not store.sessions.in_batch

    def test_exception_rolls_back(self, store, add_note):
        with pytest.raises(RuntimeError):
            with store.batch():
                add_note("One")
                raise RuntimeError("abort")
        assert store.notes.count() == 0

    def test_database_error_rolls_back(self, store, add_note):
        add_note("Before")
        with pytest.raises(StorageError) as exc_info:
            with store.batch():
                note = add_note("Inside")
                store.notes.create(Note(id=note.id, title="Clash"))
        assert exc_info.value.code == ErrorCode.STORAGE_BATCH_FAILED
        assert [n.title for n in store.notes.list_all()] == ["Before"]

    def test_nested_batches_join(self, store, add_note):
        with pytest.raises(RuntimeError):
            with store.batch():
                add_note("Outer")
                with store.batch():
                    add_note("Inner")
                raise RuntimeError("abort")
        assert store.notes.count() == 0


class TestAfterCommit:
    """Tests for callbacks deferred until a batch commits."""

    def test_runs_immediately_outside_batch(self, store):
        calls = []
        store.after_commit(lambda: calls.append("now"))
        assert calls == ["now"]

    def test_runs_after_commit_in_order(self, store, add_note):
        calls = []
        with store.batch():
            add_note("One")
            store.after_commit(lambda: calls.append(store.notes.count()))
            store.after_commit(lambda: calls.append("second"))
            assert calls == []
        assert calls == [1, "second"]

    def test_dropped_on_rollback(self, store, add_note):
        calls = []
        with pytest.raises(RuntimeError):
            with store.batch():
                add_note("One")
                store.after_commit(lambda: calls.append("never"))
                raise RuntimeError("abort")
        assert calls == []

        store.after_commit(lambda: calls.append("later"))
        assert calls == ["later"]

    def test_nested_batch_defers_to_outer(self, store):
        calls = []
        with store.batch():
            with store.batch():
                store.after_commit(lambda: calls.append("inner"))
            assert calls == []
        assert calls == ["inner"]
