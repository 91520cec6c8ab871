"""Service for semantic and metadata search over the note corpus."""

import logging
from dataclasses import dataclass, field
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from notegraph.exceptions import ErrorCode, NoteNotFoundError, SearchError
from notegraph.models.schema import EdgeStatus, Note, is_short_id, normalize_tag
from notegraph.observability import traced
from notegraph.services.embedding_service import EmbeddingService
from notegraph.services.graph import build_graph
from notegraph.services.scoring import embedding_cosine
from notegraph.storage.record_store import RecordStore
from notegraph.utils import parse_iso_date

logger = logging.getLogger(__name__)


@dataclass
class SearchMatch:
    """A note with its relevance score in [0, 1]."""

    note: Note
    score: float


@dataclass
class SemanticSearchResult:
    """One page of semantic matches.

    Attributes:
        matches: Matches on this page, most similar first.
        total: Number of matches before pagination.
    """

    matches: List[SearchMatch] = field(default_factory=list)
    total: int = 0


@dataclass
class MetadataSearchResult:
    matches: List[SearchMatch] = field(default_factory=list)
    total: int = 0


class MetadataQuery(BaseModel):
    """Parameters of a metadata search.

    ``id`` and ``title`` are lookups that short-circuit everything else;
    ``term`` is free text matched against title, tags and body.
    """

    id: Optional[str] = None
    title: Optional[str] = None
    term: Optional[str] = None
    tags_all: List[str] = Field(default_factory=list)
    tags_any: List[str] = Field(default_factory=list)
    since: Optional[str] = Field(default=None, description="ISO 8601, inclusive")
    until: Optional[str] = Field(default=None, description="ISO 8601, exclusive")
    origin: Optional[str] = None
    created_by: Optional[str] = None
    sort: Literal["score", "recent", "degree"] = "score"
    limit: int = Field(default=20, ge=1)
    include_chunks: bool = False

    @property
    def has_filters(self) -> bool:
        """Whether anything beyond a plain term requires a full scan."""
        return bool(
            self.tags_all
            or self.tags_any
            or self.since
            or self.until
            or self.origin
            or self.created_by
            or self.sort != "score"
        )


def _recency_key(note: Note) -> float:
    return note.updated_at.timestamp()


def _term_score(note: Note, term: str) -> float:
    """Title hit 3, tag hit 2, body hit 1, normalized by 6."""
    raw = 0
    if term in note.title.lower():
        raw += 3
    if any(term in tag.lower() for tag in note.tags):
        raw += 2
    if term in note.body.lower():
        raw += 1
    return min(1.0, raw / 6.0)


class SearchService:
    """Answers direct queries against the corpus.

    Args:
        store: Record store.
        embeddings: Embedding service used to embed semantic queries.
    """

    def __init__(
        self, store: RecordStore, embeddings: Optional[EmbeddingService] = None
    ) -> None:
        self.store = store
        self.embeddings = embeddings or EmbeddingService(None)

    # =========================================================================
    # Semantic Search
    # =========================================================================

    @traced("semantic_search")
    def semantic_search(
        self,
        query: str,
        limit: int = 20,
        offset: int = 0,
        min_score: float = 0.0,
        tags: Optional[List[str]] = None,
    ) -> SemanticSearchResult:
        """Rank every embedded note by cosine similarity to ``query``.

        Args:
            query: Natural language query.
            limit: Page size.
            offset: Number of matches to skip.
            min_score: Drop matches below this similarity.
            tags: Keep only notes carrying all of these tags.

        Raises:
            SearchError: If the query is empty or no query vector could be
                produced (embeddings disabled or provider failure).
        """
        if not query or not query.strip():
            raise SearchError(
                "Search query cannot be empty",
                query=query,
                code=ErrorCode.SEARCH_INVALID_QUERY,
            )

        query_vector = self.embeddings.embed(query.strip())
        if not query_vector:
            raise SearchError(
                "Failed to embed the query; check the embedding provider setting",
                query=query,
                code=ErrorCode.SEARCH_NO_QUERY_VECTOR,
            )

        required = {normalize_tag(t) for t in tags or [] if normalize_tag(t)}
        matches: List[SearchMatch] = []
        for note in self.store.notes.list_all(include_chunks=True):
            if not note.has_embedding:
                continue
            similarity = embedding_cosine(query_vector, note.embedding)
            if similarity < min_score:
                continue
            if required and not required.issubset(note.tags):
                continue
            matches.append(SearchMatch(note=note, score=similarity))

        matches.sort(key=lambda m: m.score, reverse=True)
        logger.debug(f"Semantic search for {query[:50]!r}: {len(matches)} matches")
        return SemanticSearchResult(
            matches=matches[offset : offset + limit], total=len(matches)
        )

    # =========================================================================
    # Metadata Search
    # =========================================================================

    def _lookup(self, query: MetadataQuery) -> Optional[Note]:
        if query.id:
            ref = query.id.strip()
            note = self.store.notes.get(ref)
            if note is None and is_short_id(ref.lower()):
                note = self.store.notes.resolve_prefix(ref.lower())
            if note is None:
                raise NoteNotFoundError(ref)
            return note
        if query.term and is_short_id(query.term.strip().lower()):
            note = self.store.notes.resolve_prefix(query.term.strip().lower())
            if note is not None:
                return note
        if query.title:
            return self.store.notes.get_by_title(query.title)
        return None

    def _matches_filters(self, note: Note, query: MetadataQuery, since, until) -> bool:
        if query.tags_all and not all(normalize_tag(t) in note.tags for t in query.tags_all):
            return False
        if query.tags_any and not any(normalize_tag(t) in note.tags for t in query.tags_any):
            return False
        if since and note.updated_at < since:
            return False
        if until and note.updated_at >= until:
            return False
        if query.origin and note.metadata.origin != query.origin.strip().lower():
            return False
        if (
            query.created_by
            and note.metadata.created_by.lower() != query.created_by.strip().lower()
        ):
            return False
        return True

    @traced("metadata_search")
    def metadata_search(self, query: MetadataQuery) -> MetadataSearchResult:
        """Find notes by id, title, term, tags, dates and provenance.

        Lookups resolve in order: id (or unique short prefix), a term that
        looks like a short id, exact title. Without filters a term goes
        through the keyword index; otherwise every note is scanned.

        Raises:
            NoteNotFoundError: If ``query.id`` matches nothing.
            ValidationError: If ``since`` or ``until`` is not ISO 8601.
        """
        found = self._lookup(query)
        if found is not None:
            return MetadataSearchResult(matches=[SearchMatch(note=found, score=1.0)], total=1)

        term = (query.title or query.term or "").strip().lower()

        if term and not query.has_filters:
            hits = self.store.notes.keyword_search(
                term, limit=query.limit, include_chunks=query.include_chunks
            )
            matches = [SearchMatch(note=note, score=score) for note, score in hits]
            return MetadataSearchResult(matches=matches, total=len(matches))

        since = parse_iso_date(query.since, "since")
        until = parse_iso_date(query.until, "until")
        notes = [
            note
            for note in self.store.notes.list_all(include_chunks=query.include_chunks)
            if self._matches_filters(note, query, since, until)
        ]

        if term:
            scored = [SearchMatch(note=n, score=_term_score(n, term)) for n in notes]
            scored = [m for m in scored if m.score > 0]
        else:
            notes.sort(key=_recency_key, reverse=True)
            total = max(1, len(notes))
            scored = [
                SearchMatch(note=n, score=max(0.2, 1 - i / total))
                for i, n in enumerate(notes)
            ]

        if query.sort == "recent":
            scored.sort(key=lambda m: _recency_key(m.note), reverse=True)
        elif query.sort == "degree":
            graph = build_graph(
                self.store.notes.list_all(include_chunks=True),
                self.store.edges.list_by_status(EdgeStatus.ACCEPTED),
            )

            def degree(note: Note) -> int:
                return graph.degree(note.id) if note.id in graph else 0

            scored.sort(key=lambda m: (degree(m.note), _recency_key(m.note)), reverse=True)
        else:
            scored.sort(key=lambda m: (m.score, _recency_key(m.note)), reverse=True)

        matches = scored[: query.limit]
        return MetadataSearchResult(matches=matches, total=len(matches))
