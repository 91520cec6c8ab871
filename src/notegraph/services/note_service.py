"""Service layer for note capture, editing and tags."""

import functools
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from notegraph.exceptions import (
    EmbeddingError,
    ErrorCode,
    NoteNotFoundError,
    NoteValidationError,
    TagError,
)
from notegraph.models.schema import Note, NoteMetadata, is_short_id, normalize_tag
from notegraph.observability import traced
from notegraph.services.embedding_service import EmbeddingService, embedding_text
from notegraph.services.events import (
    EventPublisher,
    NoteCreated,
    NoteDeleted,
    NoteUpdated,
    NullPublisher,
    TagRenamed,
)
from notegraph.services.linking_service import LinkingResult, LinkingService
from notegraph.services.text_analysis import extract_tags, pick_title, tokenize
from notegraph.storage.record_store import RecordStore

logger = logging.getLogger(__name__)


@dataclass
class NoteCreationResult:
    note: Note
    linking: LinkingResult = field(default_factory=LinkingResult)


@dataclass
class NoteUpdateResult:
    note: Note
    changed_fields: Tuple[str, ...] = ()
    linking: LinkingResult = field(default_factory=LinkingResult)


class NoteService:
    """Creates, edits and deletes notes, keeping their edges current.

    Args:
        store: Record store.
        linking: Auto-linker run after create and update.
        embeddings: Embedding service. Notes get no vector when None.
        publisher: Receives one notification per mutation.
    """

    def __init__(
        self,
        store: RecordStore,
        linking: LinkingService,
        embeddings: Optional[EmbeddingService] = None,
        publisher: Optional[EventPublisher] = None,
    ) -> None:
        self.store = store
        self.linking = linking
        self.embeddings = embeddings or EmbeddingService(None)
        self.publisher = publisher or NullPublisher()

    # =========================================================================
    # Helpers
    # =========================================================================

    def _embed(self, title: str, body: str) -> Optional[List[float]]:
        """Compute a note vector. Failures degrade to no vector."""
        try:
            return self.embeddings.embed(embedding_text(title, body))
        except EmbeddingError as e:
            logger.warning(f"Failed to embed note {title!r}; storing without vector: {e}")
            return None

    def _emit(self, event: Any) -> None:
        self.store.after_commit(functools.partial(self.publisher.publish, event))

    @staticmethod
    def _clean_body(body: Optional[str]) -> str:
        cleaned = (body or "").strip()
        if not cleaned:
            raise NoteValidationError(
                "Note body cannot be empty",
                field="body",
                code=ErrorCode.NOTE_BODY_REQUIRED,
            )
        return cleaned

    # =========================================================================
    # CRUD
    # =========================================================================

    @traced("create_note")
    def create_note(
        self,
        body: str,
        title: Optional[str] = None,
        tags: Optional[List[str]] = None,
        metadata: Optional[NoteMetadata] = None,
        auto_link: bool = True,
    ) -> NoteCreationResult:
        """Capture a new note and link it against the corpus.

        Args:
            body: Note text (required).
            title: Title; derived from the first line of the body if omitted.
            tags: Tags; derived from hashtags or frequent words if omitted.
            metadata: Provenance; defaults to a user capture.
            auto_link: Whether to score the note against existing notes.

        Raises:
            NoteValidationError: If the body is empty.
            BulkOperationError: If some auto-link pairs failed. The note
                itself is stored.
        """
        body = self._clean_body(body)
        title = pick_title(body, title)
        text = f"{title}\n{body}"
        token_counts = tokenize(text)
        if not tags:
            tags = extract_tags(text, token_counts)

        note = Note(
            title=title,
            body=body,
            tags=tags,
            token_counts=token_counts,
            embedding=self._embed(title, body),
            metadata=metadata or NoteMetadata(),
        )
        self.store.notes.create(note)
        logger.info(f"Created note {note.short_id} ({note.title!r})")
        self._emit(
            NoteCreated(
                id=note.id, short_id=note.short_id, title=note.title, tags=tuple(note.tags)
            )
        )

        linking = LinkingResult()
        if auto_link:
            linking = self.linking.link_note(note)
        return NoteCreationResult(note=note, linking=linking)

    def get_note(self, ref: str) -> Note:
        """Get a note by full ID or unique short-ID prefix.

        Raises:
            NoteNotFoundError: If nothing (or more than one note) matches.
        """
        ref = ref.strip()
        note = self.store.notes.get(ref)
        if note is None and is_short_id(ref.lower()):
            note = self.store.notes.resolve_prefix(ref.lower())
        if note is None:
            raise NoteNotFoundError(ref)
        return note

    def list_notes(self, include_chunks: bool = False) -> List[Note]:
        return self.store.notes.list_all(include_chunks=include_chunks)

    @traced("update_note")
    def update_note(
        self,
        note_id: str,
        title: Optional[str] = None,
        body: Optional[str] = None,
        tags: Optional[List[str]] = None,
        auto_link: bool = True,
    ) -> NoteUpdateResult:
        """Edit a note and rescore its edges.

        Tokens are always recomputed; the embedding only when the title
        or body changed.

        Raises:
            NoteNotFoundError: If the note does not exist.
            NoteValidationError: If the new title or body is empty.
        """
        existing = self.get_note(note_id)

        new_title = existing.title
        if title is not None:
            if not title.strip():
                raise NoteValidationError(
                    "Note title cannot be empty", field="title", value=title
                )
            new_title = title.strip()
        new_body = self._clean_body(body) if body is not None else existing.body
        new_tags = (
            sorted({normalize_tag(t) for t in tags if normalize_tag(t)})
            if tags is not None
            else existing.tags
        )

        changed = tuple(
            name
            for name, old, new in (
                ("title", existing.title, new_title),
                ("body", existing.body, new_body),
                ("tags", existing.tags, new_tags),
            )
            if old != new
        )
        if not changed:
            return NoteUpdateResult(note=existing)

        patch: Dict[str, Any] = {
            "title": new_title,
            "body": new_body,
            "tags": new_tags,
            "token_counts": tokenize(f"{new_title}\n{new_body}"),
        }
        if "title" in changed or "body" in changed:
            patch["embedding"] = self._embed(new_title, new_body)

        note = self.store.notes.update(existing.id, **patch)
        logger.info(f"Updated note {note.short_id}: {', '.join(changed)}")
        self._emit(
            NoteUpdated(id=note.id, changed_fields=changed, tags=tuple(note.tags))
        )

        linking = LinkingResult()
        if auto_link:
            linking = self.linking.link_note(note, rescore=True)
        return NoteUpdateResult(note=note, changed_fields=changed, linking=linking)

    @traced("delete_note")
    def delete_note(self, note_id: str) -> int:
        """Delete a note and its edges. Returns the number of edges removed."""
        note = self.get_note(note_id)
        edges_deleted = self.store.notes.delete(note.id)
        self._emit(NoteDeleted(id=note.id, edges_deleted=edges_deleted))
        return edges_deleted

    # =========================================================================
    # Tags
    # =========================================================================

    def list_tags(self) -> Dict[str, int]:
        """Tag counts, most used first."""
        counts = self.store.notes.tag_counts()
        return dict(sorted(counts.items(), key=lambda item: (-item[1], item[0])))

    @traced("rename_tag")
    def rename_tag(self, old: str, new: str) -> List[str]:
        """Rename a tag on every note carrying it.

        Returns:
            IDs of the affected notes.

        Raises:
            TagError: If either name is blank or both are the same.
        """
        old_name, new_name = normalize_tag(old or ""), normalize_tag(new or "")
        if not old_name or not new_name:
            raise TagError("Both old and new tag names are required", tag_name=old)
        if old_name == new_name:
            raise TagError("Old and new tag names must be different", tag_name=old)

        affected = self.store.notes.rename_tag(old_name, new_name)
        logger.info(f"Renamed tag {old_name!r} -> {new_name!r} on {len(affected)} notes")
        self._emit(
            TagRenamed(old=old_name, new=new_name, notes_affected=list(affected))
        )
        return affected

    def stats(self, top_tags: int = 10) -> Dict[str, Any]:
        """Corpus statistics computed with store-side aggregates."""
        total = self.store.notes.count(include_chunks=True)
        documents = self.store.notes.count(include_chunks=False)
        edge_counts = self.store.edges.status_counts()
        return {
            "notes": documents,
            "chunks": total - documents,
            "edges": {
                "accepted": edge_counts.get("accepted", 0),
                "suggested": edge_counts.get("suggested", 0),
            },
            "top_tags": list(self.list_tags().items())[:top_tags],
        }
