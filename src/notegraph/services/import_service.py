"""Import of long documents as a root note plus linked chunk notes."""

import functools
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from notegraph.exceptions import (
    BulkOperationError,
    EmbeddingError,
    ErrorCode,
    NoteValidationError,
)
from notegraph.models.schema import (
    EdgeType,
    Note,
    NoteMetadata,
    ParentChildEdgeMetadata,
    SequentialEdgeMetadata,
    generate_id,
    short_id,
)
from notegraph.observability import traced
from notegraph.services.document_segmenter import (
    DocumentSegment,
    DocumentSegmenter,
    HeadingSegmenter,
    extract_document_title,
)
from notegraph.services.edge_service import EdgeService
from notegraph.services.embedding_service import EmbeddingService, embedding_text
from notegraph.services.events import EventPublisher, NoteCreated, NullPublisher
from notegraph.services.linking_service import LinkingService
from notegraph.services.text_analysis import extract_tags, tokenize
from notegraph.storage.record_store import RecordStore

logger = logging.getLogger(__name__)

PARENT_CHILD_SCORE = 1.0
SEQUENTIAL_SCORE = 0.95
_PREVIEW_CHARS = 500
_GENERIC_SEGMENT_TITLE = re.compile(r"^Chunk \d+$", re.IGNORECASE)


@dataclass
class ImportResult:
    document_title: str
    root: Optional[Note]
    chunks: List[Note] = field(default_factory=list)
    parent_child_edges: int = 0
    sequential_edges: int = 0
    semantic_accepted: int = 0
    semantic_suggested: int = 0


def compose_chunk_title(doc_title: str, index: int, total: int, raw_title: str) -> str:
    """``"Doc [2/7] Section"``, or ``"Doc [2/7]"`` for generic segment names."""
    position = f"[{index + 1}/{total}]"
    if not raw_title or _GENERIC_SEGMENT_TITLE.match(raw_title):
        return f"{doc_title} {position}"
    return f"{doc_title} {position} {raw_title}"


def _root_body(
    doc_title: str, segments: List[DocumentSegment], chunk_ids: List[str]
) -> str:
    first = segments[0].body
    preview = first[:_PREVIEW_CHARS] + ("..." if len(first) > _PREVIEW_CHARS else "")
    structure = "\n".join(
        f"{i + 1}. [{short_id(cid)}] {seg.title}"
        for i, (seg, cid) in enumerate(zip(segments, chunk_ids))
    )
    return (
        f"# {doc_title}\n\n"
        f"Imported document with {len(segments)} chunks.\n\n"
        f"## Structure:\n{structure}\n\n"
        f"## First chunk preview:\n{preview}\n"
    )


class ImportService:
    """Splits a document into chunk notes and links them.

    All writes of one import share a single store batch: either the whole
    document lands or none of it does.

    Args:
        store: Record store.
        edges: Lifecycle manager for structural edges.
        linking: Auto-linker for semantic edges.
        embeddings: Embedding service for root and chunk vectors.
        segmenter: Document splitter; headings-based by default.
        publisher: Receives a NoteCreated per stored note.
    """

    def __init__(
        self,
        store: RecordStore,
        edges: EdgeService,
        linking: LinkingService,
        embeddings: Optional[EmbeddingService] = None,
        segmenter: Optional[DocumentSegmenter] = None,
        publisher: Optional[EventPublisher] = None,
    ) -> None:
        self.store = store
        self.edges = edges
        self.linking = linking
        self.embeddings = embeddings or EmbeddingService(None)
        self.segmenter = segmenter or HeadingSegmenter()
        self.publisher = publisher or NullPublisher()

    def _embed_all(self, texts: List[str]) -> List[Optional[List[float]]]:
        try:
            return self.embeddings.embed_many(texts)
        except EmbeddingError as e:
            logger.warning(f"Embedding failed during import; storing without vectors: {e}")
            return [None] * len(texts)

    @traced("import_document")
    def import_document(
        self,
        text: str,
        title: Optional[str] = None,
        tags: Optional[List[str]] = None,
        source_file: Optional[str] = None,
        create_parent: bool = True,
        link_sequential: bool = True,
        auto_link: bool = True,
    ) -> ImportResult:
        """Import a document.

        Args:
            text: Full document text.
            title: Document title; detected from the text if omitted.
            tags: Tags applied to every created note; derived per note if omitted.
            source_file: Original file path, kept as provenance.
            create_parent: Create a root note that indexes the chunks.
            link_sequential: Link consecutive chunks.
            auto_link: Link root and chunks against notes that existed
                before the import.

        Raises:
            NoteValidationError: If the document is empty.
            StorageError: If the batch fails; nothing is persisted.
            BulkOperationError: If some semantic links failed. The document
                itself is stored.
        """
        if not text or not text.strip():
            raise NoteValidationError(
                "Document text cannot be empty",
                field="text",
                code=ErrorCode.NOTE_BODY_REQUIRED,
            )
        doc_title = (title or "").strip() or extract_document_title(text)
        segments = self.segmenter.segment(text)
        if not segments:
            raise NoteValidationError(
                "Document produced no chunks; content may be empty",
                field="text",
                code=ErrorCode.NOTE_BODY_REQUIRED,
            )

        total = len(segments)
        document_id = generate_id()
        chunk_ids = [generate_id() for _ in segments]
        chunk_titles = [
            compose_chunk_title(doc_title, i, total, seg.title)
            for i, seg in enumerate(segments)
        ]
        provenance = NoteMetadata(origin="import", created_by="user", source_file=source_file)

        root: Optional[Note] = None
        texts: List[str] = []
        if create_parent:
            root_body = _root_body(doc_title, segments, chunk_ids)
            texts.append(embedding_text(doc_title, root_body))
        texts.extend(
            embedding_text(t, seg.body) for t, seg in zip(chunk_titles, segments)
        )
        vectors = self._embed_all(texts)

        if create_parent:
            root_tokens = tokenize(root_body)
            root = Note(
                id=document_id,
                title=doc_title,
                body=root_body,
                tags=tags or extract_tags(f"{doc_title}\n{root_body}", root_tokens),
                token_counts=root_tokens,
                embedding=vectors.pop(0),
                metadata=provenance,
            )

        chunks: List[Note] = []
        for seg, cid, chunk_title, vector in zip(segments, chunk_ids, chunk_titles, vectors):
            combined = f"{seg.title}\n{seg.body}"
            token_counts = tokenize(combined)
            chunks.append(
                Note(
                    id=cid,
                    title=chunk_title,
                    body=seg.body,
                    tags=tags or extract_tags(combined, token_counts),
                    token_counts=token_counts,
                    embedding=vector,
                    is_chunk=True,
                    parent_document_id=document_id,
                    chunk_order=seg.index,
                    metadata=provenance,
                )
            )

        result = ImportResult(document_title=doc_title, root=root, chunks=chunks)
        created = ([root] if root is not None else []) + chunks
        link_errors: Dict[str, str] = {}
        pairs_attempted = pairs_linked = 0

        with self.store.batch():
            existing = self.store.notes.list_all(include_chunks=True)
            for note in created:
                self.store.notes.create(note)
                self.store.after_commit(
                    functools.partial(
                        self.publisher.publish,
                        NoteCreated(
                            id=note.id,
                            short_id=note.short_id,
                            title=note.title,
                            tags=tuple(note.tags),
                        ),
                    )
                )

            if root is not None:
                for chunk in chunks:
                    self.edges.create_structural(
                        root.id,
                        chunk.id,
                        EdgeType.PARENT_CHILD,
                        PARENT_CHILD_SCORE,
                        ParentChildEdgeMetadata(parent_id=root.id, child_id=chunk.id),
                    )
                    result.parent_child_edges += 1

            if link_sequential:
                for i in range(len(chunks) - 1):
                    self.edges.create_structural(
                        chunks[i].id,
                        chunks[i + 1].id,
                        EdgeType.SEQUENTIAL,
                        SEQUENTIAL_SCORE,
                        SequentialEdgeMetadata(prev_chunk_index=i, next_chunk_index=i + 1),
                    )
                    result.sequential_edges += 1

            if auto_link and existing:
                for note in created:
                    try:
                        linked = self.linking.link_note(note, candidates=existing)
                    except BulkOperationError as e:
                        pairs_attempted += e.total_count
                        pairs_linked += e.success_count
                        for other_id, message in e.errors.items():
                            link_errors[f"{note.id}:{other_id}"] = message
                        continue
                    pairs_attempted += linked.attempted
                    pairs_linked += linked.attempted
                    result.semantic_accepted += linked.accepted
                    result.semantic_suggested += linked.suggested

        logger.info(
            f"Imported {doc_title!r}: {len(chunks)} chunks, "
            f"{result.parent_child_edges} parent-child, {result.sequential_edges} sequential, "
            f"{result.semantic_accepted} accepted semantic links"
        )

        if link_errors:
            raise BulkOperationError(
                f"Imported {doc_title!r} but {len(link_errors)} semantic links failed",
                operation="import-link",
                total_count=pairs_attempted,
                success_count=pairs_linked,
                failed_ids=list(link_errors),
                errors=link_errors,
            )
        return result
