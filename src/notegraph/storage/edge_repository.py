"""Repository for edges and the append-only edge event log."""
import logging
from typing import Dict, List, Optional

from sqlalchemy import delete, func, or_, select, text, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from notegraph.models.db_models import DBEdge, DBEdgeEvent
from notegraph.models.schema import (
    Edge,
    EdgeEvent,
    EdgeStatus,
    EdgeType,
    EventPayload,
    EventStatus,
    ensure_timezone_aware,
    normalize_edge_pair,
    utc_now,
)
from notegraph.storage.base import SessionManager

logger = logging.getLogger(__name__)


class EdgeRepository:
    """Repository for undirected edges and their event history.

    Edges are keyed by their canonical (source_id, target_id) pair, so
    writes are insert-or-replace rather than insert-again.

    Args:
        sessions: Session manager shared with the note repository.
    """

    def __init__(self, sessions: SessionManager) -> None:
        self.sessions = sessions

    @staticmethod
    def _db_edge_to_model(db_edge: DBEdge) -> Edge:
        return Edge(
            id=db_edge.id,
            source_id=db_edge.source_id,
            target_id=db_edge.target_id,
            score=db_edge.score,
            semantic_score=db_edge.semantic_score,
            tag_score=db_edge.tag_score,
            shared_tags=list(db_edge.shared_tags or []),
            status=EdgeStatus(db_edge.status),
            edge_type=EdgeType(db_edge.edge_type),
            metadata=db_edge.edge_metadata or {"kind": db_edge.edge_type},
            created_at=ensure_timezone_aware(db_edge.created_at),
            updated_at=ensure_timezone_aware(db_edge.updated_at),
        )

    @staticmethod
    def _db_event_to_model(db_event: DBEdgeEvent) -> EdgeEvent:
        return EdgeEvent(
            id=db_event.id,
            edge_id=db_event.edge_id,
            source_id=db_event.source_id,
            target_id=db_event.target_id,
            prev_status=(
                EventStatus(db_event.prev_status) if db_event.prev_status else None
            ),
            next_status=EventStatus(db_event.next_status),
            payload=EventPayload.model_validate(db_event.payload or {}),
            created_at=ensure_timezone_aware(db_event.created_at),
            undone_at=(
                ensure_timezone_aware(db_event.undone_at) if db_event.undone_at else None
            ),
        )

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    def get(self, edge_id: str) -> Optional[Edge]:
        with self.sessions.scope() as session:
            db_edge = session.get(DBEdge, edge_id)
            return self._db_edge_to_model(db_edge) if db_edge else None

    def get_between(self, a: str, b: str) -> Optional[Edge]:
        """Get the edge for an unordered pair, if any."""
        source_id, target_id = normalize_edge_pair(a, b)
        with self.sessions.scope() as session:
            db_edge = session.scalar(
                select(DBEdge).where(
                    (DBEdge.source_id == source_id) & (DBEdge.target_id == target_id)
                )
            )
            return self._db_edge_to_model(db_edge) if db_edge else None

    def list_by_status(self, status: Optional[EdgeStatus] = None) -> List[Edge]:
        """List edges, strongest first, optionally restricted to one status."""
        with self.sessions.scope() as session:
            query = select(DBEdge).order_by(DBEdge.score.desc(), DBEdge.id)
            if status is not None:
                query = query.where(DBEdge.status == EdgeStatus(status).value)
            return [self._db_edge_to_model(e) for e in session.scalars(query).all()]

    def list_for_note(
        self, note_id: str, status: Optional[EdgeStatus] = None
    ) -> List[Edge]:
        """All edges touching ``note_id``."""
        with self.sessions.scope() as session:
            query = select(DBEdge).where(
                or_(DBEdge.source_id == note_id, DBEdge.target_id == note_id)
            )
            if status is not None:
                query = query.where(DBEdge.status == EdgeStatus(status).value)
            query = query.order_by(DBEdge.score.desc(), DBEdge.id)
            return [self._db_edge_to_model(e) for e in session.scalars(query).all()]

    def upsert(self, edge: Edge) -> Edge:
        """Insert the edge or replace the one already stored for its pair.

        The original ``created_at`` survives a replace.
        """
        values = {
            "id": edge.id,
            "source_id": edge.source_id,
            "target_id": edge.target_id,
            "score": edge.score,
            "semantic_score": edge.semantic_score,
            "tag_score": edge.tag_score,
            "shared_tags": list(edge.shared_tags),
            "status": edge.status.value,
            "edge_type": edge.edge_type.value,
            "metadata": edge.metadata.model_dump(mode="json"),
            "created_at": edge.created_at,
            "updated_at": edge.updated_at,
        }
        stmt = sqlite_insert(DBEdge.__table__).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["source_id", "target_id"],
            set_={
                key: stmt.excluded[key]
                for key in values
                if key not in ("id", "source_id", "target_id", "created_at")
            },
        )
        with self.sessions.scope() as session:
            session.execute(stmt)
            stored = session.scalar(
                select(DBEdge)
                .where(DBEdge.source_id == edge.source_id)
                .where(DBEdge.target_id == edge.target_id)
                .execution_options(populate_existing=True)
            )
            return self._db_edge_to_model(stored)

    def delete_between(self, a: str, b: str) -> bool:
        """Delete the edge for an unordered pair. Returns whether one existed."""
        source_id, target_id = normalize_edge_pair(a, b)
        with self.sessions.scope() as session:
            result = session.execute(
                delete(DBEdge).where(
                    (DBEdge.source_id == source_id) & (DBEdge.target_id == target_id)
                )
            )
            return (result.rowcount or 0) > 0

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def degree_counts(
        self, status: Optional[EdgeStatus] = EdgeStatus.ACCEPTED
    ) -> Dict[str, int]:
        """Edge count per note, computed in SQL."""
        status_clause = "WHERE status = :status" if status is not None else ""
        query = text(
            f"""
            WITH endpoints AS (
                SELECT source_id AS note_id FROM edges {status_clause}
                UNION ALL
                SELECT target_id AS note_id FROM edges {status_clause}
            )
            SELECT note_id, COUNT(*) AS degree
            FROM endpoints
            GROUP BY note_id
            """
        )
        params = {"status": EdgeStatus(status).value} if status is not None else {}
        with self.sessions.scope() as session:
            return {row[0]: row[1] for row in session.execute(query, params).all()}

    def status_counts(self) -> Dict[str, int]:
        with self.sessions.scope() as session:
            rows = session.execute(
                select(DBEdge.status, func.count(DBEdge.id)).group_by(DBEdge.status)
            ).all()
            return {status: count for status, count in rows}

    # ------------------------------------------------------------------
    # Event log
    # ------------------------------------------------------------------

    def append_event(
        self,
        source_id: str,
        target_id: str,
        prev_status: Optional[EventStatus],
        next_status: EventStatus,
        payload: EventPayload,
        edge_id: Optional[str] = None,
    ) -> EdgeEvent:
        """Append one event to the log."""
        source_id, target_id = normalize_edge_pair(source_id, target_id)
        with self.sessions.scope() as session:
            db_event = DBEdgeEvent(
                edge_id=edge_id,
                source_id=source_id,
                target_id=target_id,
                prev_status=EventStatus(prev_status).value if prev_status else None,
                next_status=EventStatus(next_status).value,
                payload=payload.model_dump(mode="json"),
                created_at=utc_now(),
            )
            session.add(db_event)
            session.flush()
            return self._db_event_to_model(db_event)

    def last_event_for_pair(self, a: str, b: str) -> Optional[EdgeEvent]:
        """Newest event recorded for the pair, undone or not."""
        source_id, target_id = normalize_edge_pair(a, b)
        with self.sessions.scope() as session:
            db_event = session.scalar(
                select(DBEdgeEvent)
                .where(DBEdgeEvent.source_id == source_id)
                .where(DBEdgeEvent.target_id == target_id)
                .order_by(DBEdgeEvent.id.desc())
                .limit(1)
            )
            return self._db_event_to_model(db_event) if db_event else None

    def mark_undone(self, event_id: int) -> None:
        with self.sessions.scope() as session:
            session.execute(
                update(DBEdgeEvent)
                .where(DBEdgeEvent.id == event_id)
                .values(undone_at=utc_now())
            )

    def list_events(
        self, a: Optional[str] = None, b: Optional[str] = None, limit: int = 50
    ) -> List[EdgeEvent]:
        """Most recent events, optionally for a single pair."""
        query = select(DBEdgeEvent).order_by(DBEdgeEvent.id.desc()).limit(limit)
        if a is not None and b is not None:
            source_id, target_id = normalize_edge_pair(a, b)
            query = query.where(DBEdgeEvent.source_id == source_id).where(
                DBEdgeEvent.target_id == target_id
            )
        with self.sessions.scope() as session:
            return [self._db_event_to_model(e) for e in session.scalars(query).all()]
