"""Edge lifecycle: create, accept, reject, delete, undo and explain.

Every mutation appends exactly one event to the edge log and publishes
exactly one notification. Undo reverts the newest event for a pair,
marks it undone and publishes a notification, without logging a new
event, so a second undo with no intervening mutation fails.
"""

import functools
import logging
import re
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple, Type

from notegraph.exceptions import (
    BulkOperationError,
    EdgeError,
    ErrorCode,
    EventError,
    NotegraphError,
    NoteNotFoundError,
    ValidationError,
)
from notegraph.models.schema import (
    Classification,
    Edge,
    EdgeEvent,
    EdgeMetadata,
    EdgeStatus,
    EdgeType,
    EventPayload,
    EventStatus,
    ManualEdgeMetadata,
    Note,
    ScoreComponents,
    SemanticEdgeMetadata,
    edge_identifier,
    edge_ref_code,
    normalize_edge_pair,
    utc_now,
)
from notegraph.observability import traced
from notegraph.services.events import (
    EdgeAccepted,
    EdgeCreated,
    EdgeDeleted,
    EdgeNotification,
    EdgeRejected,
    EdgeRestored,
    EdgeUpdated,
    EventPublisher,
    NullPublisher,
)
from notegraph.services.graph import PathResult, build_graph, find_path
from notegraph.services.scoring import ScoringEngine
from notegraph.storage.record_store import RecordStore

logger = logging.getLogger(__name__)

_EDGE_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")
_INDEX_RANGE = re.compile(r"^(\d+)-(\d+)$")

# Fixed pool of pair locks; unrelated pairs may share a stripe
LOCK_STRIPES = 64


@dataclass(frozen=True)
class EdgeExplanation:
    """Fresh scoring of an existing edge, for auditing."""

    edge: Edge
    score: float
    components: ScoreComponents
    classification: Classification
    auto_accept_threshold: float
    suggestion_threshold: float


def parse_index_ranges(ranges: str) -> List[int]:
    """Parse ``"1-10,15"`` into sorted 1-based indexes."""
    indexes = set()
    for part in ranges.split(","):
        part = part.strip()
        if not part:
            continue
        match = _INDEX_RANGE.match(part)
        if match:
            start, end = int(match.group(1)), int(match.group(2))
            if start > end:
                start, end = end, start
            indexes.update(range(start, end + 1))
        elif part.isdigit():
            indexes.add(int(part))
        else:
            raise ValidationError(
                f"Invalid index range {part!r}", field="indexes", value=ranges
            )
    return sorted(i for i in indexes if i > 0)


class EdgeService:
    """Manages edge state transitions and the undoable event log.

    Mutations on the same pair are serialized by an in-process lock.
    Across processes the store's unique pair key makes the last write win.

    Args:
        store: Record store holding notes, edges and events.
        scoring: Scoring engine. Created from config if None.
        publisher: Receives one notification per mutation.
    """

    def __init__(
        self,
        store: RecordStore,
        scoring: Optional[ScoringEngine] = None,
        publisher: Optional[EventPublisher] = None,
    ) -> None:
        self.store = store
        self.scoring = scoring or ScoringEngine()
        self.publisher = publisher or NullPublisher()
        self._locks = [threading.Lock() for _ in range(LOCK_STRIPES)]

    # =========================================================================
    # Helpers
    # =========================================================================

    @contextmanager
    def _pair_lock(self, a: str, b: str) -> Iterator[None]:
        with self._lock_for(a, b):
            yield

    def _lock_for(self, a: str, b: str) -> threading.Lock:
        """Lock stripe guarding the unordered pair."""
        return self._locks[hash(normalize_edge_pair(a, b)) % LOCK_STRIPES]

    def _require_note(self, note_id: str) -> Note:
        note = self.store.notes.get(note_id)
        if note is None:
            raise NoteNotFoundError(note_id)
        return note

    def _require_edge(self, a: str, b: str) -> Edge:
        edge = self.store.edges.get_between(a, b)
        if edge is None:
            source_id, target_id = normalize_edge_pair(a, b)
            raise EdgeError(
                f"No edge between {source_id} and {target_id}",
                source_id=source_id,
                target_id=target_id,
                code=ErrorCode.EDGE_NOT_FOUND,
            )
        return edge

    @staticmethod
    def _check_distinct(a: str, b: str) -> None:
        if a == b:
            raise EdgeError(
                "Cannot link a note to itself",
                source_id=a,
                target_id=b,
                code=ErrorCode.EDGE_SELF_REFERENCE,
            )

    def _record(
        self,
        source_id: str,
        target_id: str,
        previous: Optional[Edge],
        next_status: EventStatus,
        score: Optional[float],
        reason: str,
    ) -> EdgeEvent:
        return self.store.edges.append_event(
            source_id,
            target_id,
            prev_status=EventStatus(previous.status.value) if previous else None,
            next_status=next_status,
            payload=EventPayload(previous=previous, score=score, reason=reason),
            edge_id=edge_identifier(source_id, target_id),
        )

    def _emit(self, event: EdgeNotification) -> None:
        """Publish once the surrounding batch commits, if there is one."""
        self.store.after_commit(functools.partial(self.publisher.publish, event))

    def _notify(
        self,
        kind: Type[EdgeNotification],
        source_id: str,
        target_id: str,
        status: str,
        score: Optional[float],
    ) -> None:
        self._emit(
            kind(
                id=edge_identifier(source_id, target_id),
                ref=edge_ref_code(source_id, target_id),
                source_id=source_id,
                target_id=target_id,
                status=status,
                score=score,
            )
        )

    def _write(
        self,
        source_id: str,
        target_id: str,
        score: float,
        status: EdgeStatus,
        edge_type: EdgeType,
        metadata: EdgeMetadata,
        components: Optional[ScoreComponents],
        previous: Optional[Edge],
    ) -> Edge:
        now = utc_now()
        edge = Edge(
            id=edge_identifier(source_id, target_id),
            source_id=source_id,
            target_id=target_id,
            score=score,
            semantic_score=components.embedding_similarity if components else None,
            tag_score=components.tag_overlap if components else None,
            shared_tags=components.shared_tags if components else [],
            status=status,
            edge_type=edge_type,
            metadata=metadata,
            created_at=previous.created_at if previous else now,
            updated_at=now,
        )
        return self.store.edges.upsert(edge)

    # =========================================================================
    # Single-edge operations
    # =========================================================================

    @traced("create_manual_edge")
    def create_manual(
        self,
        a: str,
        b: str,
        score: Optional[float] = None,
        note: Optional[str] = None,
    ) -> Edge:
        """Create (or overwrite) an accepted manual edge.

        Args:
            a: One endpoint note ID.
            b: The other endpoint note ID.
            score: Explicit score in [0, 1]. Computed when omitted.
            note: Free-text annotation stored in the edge metadata.

        Raises:
            EdgeError: If ``a == b``.
            NoteNotFoundError: If either note does not exist.
            ValidationError: If ``score`` is outside [0, 1].
        """
        self._check_distinct(a, b)
        if score is not None and not 0.0 <= score <= 1.0:
            raise ValidationError(
                "Edge score must be within [0, 1]", field="score", value=score
            )
        note_a, note_b = self._require_note(a), self._require_note(b)
        computed, components = self.scoring.score(note_a, note_b)
        source_id, target_id = normalize_edge_pair(a, b)

        with self._pair_lock(source_id, target_id):
            previous = self.store.edges.get_between(source_id, target_id)
            edge = self._write(
                source_id,
                target_id,
                score=computed if score is None else score,
                status=EdgeStatus.ACCEPTED,
                edge_type=EdgeType.MANUAL,
                metadata=ManualEdgeMetadata(note=note),
                components=components,
                previous=previous,
            )
            self._record(
                source_id, target_id, previous, EventStatus.ACCEPTED, edge.score, "manual"
            )
        logger.info(f"Created manual edge {edge.ref} (score={edge.score:.3f})")
        self._emit(EdgeCreated.from_edge(edge))
        return edge

    @traced("accept_edge")
    def accept(self, a: str, b: str) -> Edge:
        """Promote a suggested edge to accepted.

        Raises:
            EdgeError: If there is no edge, or it is already accepted.
        """
        with self._pair_lock(a, b):
            edge = self._require_edge(a, b)
            if edge.status == EdgeStatus.ACCEPTED:
                raise EdgeError(
                    f"Edge {edge.ref} is already accepted",
                    source_id=edge.source_id,
                    target_id=edge.target_id,
                    status=edge.status.value,
                    code=ErrorCode.EDGE_ALREADY_ACCEPTED,
                )
            accepted = self.store.edges.upsert(
                edge.model_copy(
                    update={"status": EdgeStatus.ACCEPTED, "updated_at": utc_now()}
                )
            )
            self._record(
                edge.source_id,
                edge.target_id,
                edge,
                EventStatus.ACCEPTED,
                edge.score,
                "accept",
            )
        self._emit(EdgeAccepted.from_edge(accepted))
        return accepted

    @traced("reject_edge")
    def reject(self, a: str, b: str) -> Edge:
        """Remove a suggested edge, recording it as rejected.

        Returns:
            The edge as it was before removal.

        Raises:
            EdgeError: If there is no edge, or it is not suggested.
        """
        with self._pair_lock(a, b):
            edge = self._require_edge(a, b)
            if edge.status != EdgeStatus.SUGGESTED:
                raise EdgeError(
                    f"Edge {edge.ref} is {edge.status.value}, not suggested",
                    source_id=edge.source_id,
                    target_id=edge.target_id,
                    status=edge.status.value,
                    code=ErrorCode.EDGE_NOT_SUGGESTED,
                )
            self.store.edges.delete_between(edge.source_id, edge.target_id)
            self._record(
                edge.source_id,
                edge.target_id,
                edge,
                EventStatus.REJECTED,
                edge.score,
                "reject",
            )
        self._emit(
            EdgeRejected.from_edge(edge, status=EventStatus.REJECTED.value)
        )
        return edge

    @traced("delete_edge")
    def delete(self, a: str, b: str, reason: str = "delete") -> Edge:
        """Hard-remove an edge of any status.

        Returns:
            The edge as it was before removal.

        Raises:
            EdgeError: If there is no edge between the notes.
        """
        with self._pair_lock(a, b):
            edge = self._require_edge(a, b)
            self.store.edges.delete_between(edge.source_id, edge.target_id)
            self._record(
                edge.source_id,
                edge.target_id,
                edge,
                EventStatus.DELETED,
                edge.score,
                reason,
            )
        self._emit(
            EdgeDeleted.from_edge(edge, status=EventStatus.DELETED.value)
        )
        return edge

    @traced("undo_edge")
    def undo(self, a: str, b: str) -> Optional[Edge]:
        """Revert the most recent event for a pair.

        An edge created from nothing is deleted. A rejection, deletion or
        acceptance restores the edge exactly as it was before.

        Returns:
            The restored edge, or None when the undo removed the edge.

        Raises:
            EventError: If the pair has no event, or its newest event has
                already been undone.
        """
        source_id, target_id = normalize_edge_pair(a, b)
        with self._pair_lock(source_id, target_id):
            event = self.store.edges.last_event_for_pair(source_id, target_id)
            if event is None or event.is_undone:
                raise EventError(
                    f"Nothing to undo for {edge_ref_code(source_id, target_id)}",
                    source_id=source_id,
                    target_id=target_id,
                )

            previous = event.payload.previous
            if previous is None:
                current = self.store.edges.get_between(source_id, target_id)
                self.store.edges.delete_between(source_id, target_id)
                restored = None
            else:
                restored = self.store.edges.upsert(
                    previous.model_copy(update={"updated_at": utc_now()})
                )
            self.store.edges.mark_undone(event.id)

        logger.info(
            f"Undid {event.next_status.value} event {event.id} "
            f"on {edge_ref_code(source_id, target_id)}"
        )
        if restored is None:
            self._notify(
                EdgeDeleted,
                source_id,
                target_id,
                EventStatus.DELETED.value,
                current.score if current else None,
            )
        else:
            self._emit(EdgeRestored.from_edge(restored))
        return restored

    def explain(self, a: str, b: str) -> EdgeExplanation:
        """Recompute the score breakdown for an existing edge."""
        edge = self._require_edge(a, b)
        note_a = self._require_note(edge.source_id)
        note_b = self._require_note(edge.target_id)
        score, components = self.scoring.score(note_a, note_b)
        settings = self.scoring.settings
        return EdgeExplanation(
            edge=edge,
            score=score,
            components=components,
            classification=self.scoring.classify(score),
            auto_accept_threshold=settings.auto_accept_threshold,
            suggestion_threshold=settings.suggestion_threshold,
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def list_edges(
        self,
        status: Optional[EdgeStatus] = None,
        note_id: Optional[str] = None,
        min_score: Optional[float] = None,
        max_score: Optional[float] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Edge]:
        """Edges ordered by score descending, optionally filtered."""
        if note_id is not None:
            edges = self.store.edges.list_for_note(note_id, status)
        else:
            edges = self.store.edges.list_by_status(status)
        if min_score is not None:
            edges = [e for e in edges if e.score >= min_score]
        if max_score is not None:
            edges = [e for e in edges if e.score <= max_score]
        end = offset + limit if limit is not None else None
        return edges[offset:end]

    def get_edge(self, ref_or_id: str) -> Edge:
        """Resolve an edge by its full id or its short reference code.

        Raises:
            EdgeError: If nothing matches, or a reference code is ambiguous.
        """
        value = ref_or_id.strip()
        if _EDGE_ID_PATTERN.match(value.lower()):
            edge = self.store.edges.get(value.lower())
            if edge is not None:
                return edge
        ref = value.upper()
        matches = [e for e in self.store.edges.list_by_status() if e.ref == ref]
        if len(matches) == 1:
            return matches[0]
        if len(matches) > 1:
            raise EdgeError(
                f"Reference {ref} matches {len(matches)} edges; use the full id",
                code=ErrorCode.EDGE_INVALID,
            )
        raise EdgeError(f"No edge matches {value!r}", code=ErrorCode.EDGE_NOT_FOUND)

    def history(
        self, a: Optional[str] = None, b: Optional[str] = None, limit: int = 50
    ) -> List[EdgeEvent]:
        """Newest-first events, for one pair or for the whole graph."""
        return self.store.edges.list_events(a, b, limit=limit)

    @traced("find_path")
    def find_path(self, a: str, b: str) -> PathResult:
        """Fewest-hop route between two notes over accepted edges.

        Raises:
            NoteNotFoundError: If either note does not exist.
        """
        self._require_note(a)
        self._require_note(b)
        graph = build_graph(
            self.store.notes.list_all(include_chunks=True),
            self.store.edges.list_by_status(EdgeStatus.ACCEPTED),
        )
        path = find_path(graph, a, b)
        if path.found:
            logger.debug(f"Path {a} -> {b}: {path.hop_count} hops")
        else:
            logger.debug(f"No accepted path between {a} and {b}")
        return path

    # =========================================================================
    # Bulk operations
    # =========================================================================

    def _apply_each(self, operation: str, edges: List[Edge], action) -> List[Edge]:
        """Apply ``action`` to every edge, then report failures together."""
        done: List[Edge] = []
        errors: Dict[str, str] = {}
        for edge in edges:
            try:
                done.append(action(edge.source_id, edge.target_id))
            except NotegraphError as e:
                logger.warning(f"{operation} failed for edge {edge.ref}: {e}")
                errors[edge.id] = str(e)
        if errors:
            raise BulkOperationError(
                f"{operation} failed for {len(errors)} of {len(edges)} edges",
                operation=operation,
                total_count=len(edges),
                success_count=len(done),
                failed_ids=list(errors),
                errors=errors,
            )
        logger.info(f"{operation}: {len(done)} edges")
        return done

    @traced("promote_edges")
    def promote(self, min_score: Optional[float] = None) -> List[Edge]:
        """Accept every suggestion scoring at least ``min_score``.

        Defaults to the auto-accept threshold. Each edge goes through
        ``accept``, so each is logged and individually undoable.

        Raises:
            BulkOperationError: After all edges were attempted, if any failed.
        """
        if min_score is None:
            min_score = self.scoring.settings.auto_accept_threshold
        targets = [
            e
            for e in self.store.edges.list_by_status(EdgeStatus.SUGGESTED)
            if e.score >= min_score
        ]
        return self._apply_each("promote", targets, self.accept)

    @traced("sweep_edges")
    def sweep(
        self,
        min_score: Optional[float] = None,
        max_score: Optional[float] = None,
        indexes: Optional[str] = None,
    ) -> List[Edge]:
        """Reject suggestions by score range and/or queue position.

        Args:
            min_score: Reject only suggestions scoring at least this.
            max_score: Reject only suggestions scoring at most this.
            indexes: 1-based positions in the score-ordered suggestion
                queue, e.g. ``"1-10,15"``.

        Raises:
            ValidationError: If no filter is given.
            BulkOperationError: After all edges were attempted, if any failed.
        """
        if min_score is None and max_score is None and not indexes:
            raise ValidationError(
                "sweep needs a score range or index ranges", field="sweep"
            )
        queue = self.store.edges.list_by_status(EdgeStatus.SUGGESTED)
        if indexes:
            positions = set(parse_index_ranges(indexes))
            queue = [e for i, e in enumerate(queue, start=1) if i in positions]
        targets = [
            e
            for e in queue
            if (min_score is None or e.score >= min_score)
            and (max_score is None or e.score <= max_score)
        ]
        return self._apply_each("sweep", targets, self.reject)

    # =========================================================================
    # Writers used by linking and import
    # =========================================================================

    def upsert_scored(
        self,
        a: str,
        b: str,
        score: float,
        status: EdgeStatus,
        components: ScoreComponents,
        reason: str = "auto-link",
    ) -> Tuple[Edge, bool]:
        """Write a semantic edge unless nothing would change.

        Returns:
            ``(edge, changed)``. When the stored edge already has this
            status and score, no event or notification is produced.
        """
        self._check_distinct(a, b)
        source_id, target_id = normalize_edge_pair(a, b)
        with self._pair_lock(source_id, target_id):
            previous = self.store.edges.get_between(source_id, target_id)
            if (
                previous is not None
                and previous.status == status
                and abs(previous.score - score) < 1e-9
            ):
                return previous, False
            edge = self._write(
                source_id,
                target_id,
                score=score,
                status=status,
                edge_type=EdgeType.SEMANTIC,
                metadata=SemanticEdgeMetadata(components=components),
                components=components,
                previous=previous,
            )
            self._record(
                source_id, target_id, previous, EventStatus(status.value), score, reason
            )
        if previous is None:
            self._emit(EdgeCreated.from_edge(edge))
        elif status == EdgeStatus.ACCEPTED and previous.status != EdgeStatus.ACCEPTED:
            self._emit(EdgeAccepted.from_edge(edge))
        else:
            self._emit(EdgeUpdated.from_edge(edge))
        return edge, True

    def create_structural(
        self,
        a: str,
        b: str,
        edge_type: EdgeType,
        score: float,
        metadata: EdgeMetadata,
    ) -> Edge:
        """Create an accepted document-structure edge with a fixed score."""
        self._check_distinct(a, b)
        if edge_type not in (EdgeType.PARENT_CHILD, EdgeType.SEQUENTIAL):
            raise EdgeError(
                f"{edge_type.value} is not a structural edge type",
                source_id=a,
                target_id=b,
            )
        source_id, target_id = normalize_edge_pair(a, b)
        with self._pair_lock(source_id, target_id):
            previous = self.store.edges.get_between(source_id, target_id)
            edge = self._write(
                source_id,
                target_id,
                score=score,
                status=EdgeStatus.ACCEPTED,
                edge_type=edge_type,
                metadata=metadata,
                components=None,
                previous=previous,
            )
            self._record(
                source_id, target_id, previous, EventStatus.ACCEPTED, score, "import"
            )
        self._emit(EdgeCreated.from_edge(edge))
        return edge
