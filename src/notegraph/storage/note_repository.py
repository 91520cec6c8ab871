"""Repository for note storage and retrieval."""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

import numpy as np
from sqlalchemy import case, delete, func, or_, select, text
from sqlalchemy.orm import Session

from notegraph.exceptions import NoteNotFoundError, ValidationError
from notegraph.models.db_models import DBEdge, DBNote, DBTag, note_tags
from notegraph.models.schema import (
    Note,
    NoteMetadata,
    ensure_timezone_aware,
    normalize_tag,
    utc_now,
)
from notegraph.storage.base import SessionManager
from notegraph.utils import escape_like_pattern

logger = logging.getLogger(__name__)

# Fields that update() accepts as a partial patch
_PATCHABLE_FIELDS = frozenset(
    {"title", "body", "tags", "token_counts", "embedding", "metadata", "updated_at"}
)


class NoteRepository:
    """Repository for notes, their tags and embeddings.

    Args:
        sessions: Session manager shared with the edge repository.
    """

    def __init__(self, sessions: SessionManager) -> None:
        self.sessions = sessions

    # ------------------------------------------------------------------
    # Conversion helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _encode_embedding(embedding: Optional[List[float]]) -> Optional[bytes]:
        if not embedding:
            return None
        return np.asarray(embedding, dtype=np.float32).tobytes()

    @staticmethod
    def _decode_embedding(blob: Optional[bytes]) -> Optional[List[float]]:
        if not blob:
            return None
        return np.frombuffer(blob, dtype=np.float32).astype(float).tolist()

    @classmethod
    def _db_note_to_model(cls, db_note: DBNote) -> Note:
        """Convert a DBNote (with tags loaded) to a domain Note."""
        return Note(
            id=db_note.id,
            title=db_note.title,
            body=db_note.body or "",
            tags=[t.name for t in (db_note.tags or [])],
            token_counts=dict(db_note.token_counts or {}),
            embedding=cls._decode_embedding(db_note.embedding),
            created_at=ensure_timezone_aware(db_note.created_at),
            updated_at=ensure_timezone_aware(db_note.updated_at),
            is_chunk=bool(db_note.is_chunk),
            parent_document_id=db_note.parent_document_id,
            chunk_order=db_note.chunk_order,
            metadata=NoteMetadata(
                origin=db_note.origin or "capture",
                created_by=db_note.created_by or "user",
                source_file=db_note.source_file,
            ),
        )

    def _get_or_create_tag(self, session: Session, tag_name: str) -> DBTag:
        """Atomically get or create a tag.

        Uses INSERT OR IGNORE followed by SELECT so concurrent writers
        creating the same tag do not raise integrity errors.
        """
        session.execute(
            text("INSERT OR IGNORE INTO tags (name) VALUES (:name)"), {"name": tag_name}
        )
        return session.scalar(select(DBTag).where(DBTag.name == tag_name))

    def _set_tags(self, session: Session, db_note: DBNote, tags: Iterable[str]) -> None:
        db_note.tags = [self._get_or_create_tag(session, t) for t in sorted(set(tags))]

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create(self, note: Note) -> Note:
        """Insert a new note."""
        with self.sessions.scope() as session:
            db_note = DBNote(
                id=note.id,
                title=note.title,
                body=note.body,
                token_counts=note.token_counts,
                embedding=self._encode_embedding(note.embedding),
                created_at=note.created_at,
                updated_at=note.updated_at,
                is_chunk=note.is_chunk,
                parent_document_id=note.parent_document_id,
                chunk_order=note.chunk_order,
                origin=note.metadata.origin,
                created_by=note.metadata.created_by,
                source_file=note.metadata.source_file,
            )
            self._set_tags(session, db_note, note.tags)
            session.add(db_note)
        logger.debug(f"Stored note {note.id} ({note.title!r})")
        return note

    def get(self, id: str) -> Optional[Note]:
        """Get a note by its full ID."""
        with self.sessions.scope() as session:
            db_note = session.get(DBNote, id)
            return self._db_note_to_model(db_note) if db_note else None

    def resolve_prefix(self, prefix: str) -> Optional[Note]:
        """Return the note whose ID starts with ``prefix``, if exactly one does."""
        pattern = f"{escape_like_pattern(prefix.strip().lower())}%"
        with self.sessions.scope() as session:
            matches = session.scalars(
                select(DBNote).where(DBNote.id.like(pattern, escape="\\")).limit(2)
            ).all()
            if len(matches) != 1:
                return None
            return self._db_note_to_model(matches[0])

    def get_by_title(self, title: str) -> Optional[Note]:
        """Get the most recently updated note with exactly this title."""
        with self.sessions.scope() as session:
            db_note = session.scalars(
                select(DBNote)
                .where(DBNote.title == title)
                .order_by(DBNote.updated_at.desc())
                .limit(1)
            ).first()
            return self._db_note_to_model(db_note) if db_note else None

    def list_all(self, include_chunks: bool = True) -> List[Note]:
        """List every note, oldest first."""
        with self.sessions.scope() as session:
            query = select(DBNote).order_by(DBNote.created_at, DBNote.id)
            if not include_chunks:
                query = query.where(DBNote.is_chunk.is_(False))
            return [self._db_note_to_model(db) for db in session.scalars(query).all()]

    def count(self, include_chunks: bool = True) -> int:
        with self.sessions.scope() as session:
            query = select(func.count(DBNote.id))
            if not include_chunks:
                query = query.where(DBNote.is_chunk.is_(False))
            return session.scalar(query) or 0

    def update(self, note_id: str, **patch: Any) -> Note:
        """Apply a partial field patch and return the updated note.

        Args:
            note_id: ID of the note to update.
            **patch: Any of title, body, tags, token_counts, embedding,
                metadata, updated_at. ``updated_at`` defaults to now.

        Raises:
            NoteNotFoundError: If the note does not exist.
            ValidationError: If the patch names an unknown field.
        """
        unknown = set(patch) - _PATCHABLE_FIELDS
        if unknown:
            raise ValidationError(
                f"Cannot patch note fields: {sorted(unknown)}", field="patch"
            )

        with self.sessions.scope() as session:
            db_note = session.get(DBNote, note_id)
            if db_note is None:
                raise NoteNotFoundError(note_id)

            if "title" in patch:
                db_note.title = patch["title"]
            if "body" in patch:
                db_note.body = patch["body"]
            if "token_counts" in patch:
                db_note.token_counts = dict(patch["token_counts"])
            if "embedding" in patch:
                db_note.embedding = self._encode_embedding(patch["embedding"])
            if "tags" in patch:
                tags = {normalize_tag(t) for t in patch["tags"] if normalize_tag(t)}
                self._set_tags(session, db_note, tags)
            if "metadata" in patch:
                meta: NoteMetadata = patch["metadata"]
                db_note.origin = meta.origin
                db_note.created_by = meta.created_by
                db_note.source_file = meta.source_file
            db_note.updated_at = patch.get("updated_at") or utc_now()

            session.flush()
            return self._db_note_to_model(db_note)

    def delete(self, id: str) -> int:
        """Delete a note and every edge touching it.

        Returns:
            Number of edges removed by the cascade.

        Raises:
            NoteNotFoundError: If the note does not exist.
        """
        with self.sessions.scope() as session:
            db_note = session.get(DBNote, id)
            if db_note is None:
                raise NoteNotFoundError(id)
            result = session.execute(
                delete(DBEdge).where(or_(DBEdge.source_id == id, DBEdge.target_id == id))
            )
            edges_deleted = result.rowcount or 0
            session.delete(db_note)
        logger.info(f"Deleted note {id} and {edges_deleted} incident edges")
        return edges_deleted

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    def list_tag_sets(self, include_chunks: bool = True) -> Dict[str, List[str]]:
        """Tags-only projection: note ID -> sorted tags, without loading bodies."""
        with self.sessions.scope() as session:
            query = (
                select(note_tags.c.note_id, DBTag.name)
                .join(DBTag, DBTag.id == note_tags.c.tag_id)
                .join(DBNote, DBNote.id == note_tags.c.note_id)
            )
            if not include_chunks:
                query = query.where(DBNote.is_chunk.is_(False))
            tag_sets: Dict[str, List[str]] = {}
            for note_id, name in session.execute(query).all():
                tag_sets.setdefault(note_id, []).append(name)
        return {nid: sorted(names) for nid, names in tag_sets.items()}

    def ids_with_tag(self, tag: str) -> List[str]:
        """IDs of every note carrying ``tag``."""
        with self.sessions.scope() as session:
            return list(
                session.scalars(
                    select(note_tags.c.note_id)
                    .join(DBTag, DBTag.id == note_tags.c.tag_id)
                    .where(DBTag.name == normalize_tag(tag))
                ).all()
            )

    def tag_counts(self) -> Dict[str, int]:
        """All tags in use with their note counts."""
        with self.sessions.scope() as session:
            rows = session.execute(
                select(DBTag.name, func.count(note_tags.c.note_id))
                .join(note_tags, DBTag.id == note_tags.c.tag_id)
                .group_by(DBTag.name)
            ).all()
            return {name: count for name, count in rows}

    def rename_tag(self, old: str, new: str) -> List[str]:
        """Replace tag ``old`` with ``new`` on every note carrying it.

        Returns:
            IDs of the affected notes.
        """
        old_name, new_name = normalize_tag(old), normalize_tag(new)
        with self.sessions.scope() as session:
            old_tag = session.scalar(select(DBTag).where(DBTag.name == old_name))
            if old_tag is None:
                return []
            new_tag = self._get_or_create_tag(session, new_name)
            affected: List[str] = []
            for db_note in list(old_tag.notes):
                tags = [t for t in db_note.tags if t.id != old_tag.id]
                if new_tag not in tags:
                    tags.append(new_tag)
                db_note.tags = tags
                affected.append(db_note.id)
        return affected

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def keyword_search(
        self, term: str, limit: int = 20, include_chunks: bool = False
    ) -> List[Tuple[Note, float]]:
        """Fast keyword lookup scored in SQL.

        A title hit counts 3, a tag hit 2 and a body hit 1; the sum is
        normalized by 6. Ties break on most recently updated.
        """
        normalized = term.strip().lower()
        if not normalized:
            return []
        pattern = f"%{escape_like_pattern(normalized)}%"

        tag_hit = (
            select(note_tags.c.note_id)
            .join(DBTag, DBTag.id == note_tags.c.tag_id)
            .where(note_tags.c.note_id == DBNote.id)
            .where(DBTag.name.like(pattern, escape="\\"))
            .exists()
        )
        raw_score = (
            case((func.lower(DBNote.title).like(pattern, escape="\\"), 3), else_=0)
            + case((tag_hit, 2), else_=0)
            + case((func.lower(DBNote.body).like(pattern, escape="\\"), 1), else_=0)
        )

        query = select(DBNote, raw_score.label("raw_score")).where(raw_score > 0)
        if not include_chunks:
            query = query.where(DBNote.is_chunk.is_(False))
        query = query.order_by(raw_score.desc(), DBNote.updated_at.desc()).limit(limit)

        with self.sessions.scope() as session:
            rows = session.execute(query).all()
            return [
                (self._db_note_to_model(db_note), min(1.0, raw / 6.0))
                for db_note, raw in rows
            ]
