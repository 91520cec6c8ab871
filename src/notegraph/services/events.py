"""Notifications published after successful mutations.

Each service takes an ``EventPublisher``; a transport layer can relay
the events without re-querying the store. Tests substitute a recording
publisher.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Tuple, runtime_checkable

from notegraph.models.schema import Edge


@runtime_checkable
class EventPublisher(Protocol):
    """Receives one event per successful mutating operation."""

    def publish(self, event: object) -> None:
        ...


class NullPublisher:
    """Publisher that drops every event."""

    def publish(self, event: object) -> None:
        pass


@dataclass(frozen=True)
class NoteCreated:
    id: str
    short_id: str
    title: str
    tags: Tuple[str, ...] = ()


@dataclass(frozen=True)
class NoteUpdated:
    id: str
    changed_fields: Tuple[str, ...] = ()
    tags: Tuple[str, ...] = ()


@dataclass(frozen=True)
class NoteDeleted:
    id: str
    edges_deleted: int = 0


@dataclass(frozen=True)
class EdgeNotification:
    """Identity and new state of an edge.

    Attributes:
        id: Deterministic edge id.
        ref: Short reference code derived from both endpoints.
        status: New status ("accepted", "suggested", "rejected" or "deleted").
        score: Edge score after the change, if the edge still exists.
    """

    id: str
    ref: str
    source_id: str
    target_id: str
    status: str
    score: Optional[float] = None

    @classmethod
    def from_edge(
        cls, edge: Edge, status: Optional[str] = None
    ) -> "EdgeNotification":
        return cls(
            id=edge.id,
            ref=edge.ref,
            source_id=edge.source_id,
            target_id=edge.target_id,
            status=status or edge.status.value,
            score=edge.score,
        )


@dataclass(frozen=True)
class EdgeCreated(EdgeNotification):
    pass


@dataclass(frozen=True)
class EdgeAccepted(EdgeNotification):
    pass


@dataclass(frozen=True)
class EdgeRejected(EdgeNotification):
    pass


@dataclass(frozen=True)
class EdgeDeleted(EdgeNotification):
    pass


@dataclass(frozen=True)
class EdgeUpdated(EdgeNotification):
    """Score or status of an existing edge changed through rescoring."""


@dataclass(frozen=True)
class EdgeRestored(EdgeNotification):
    """An undo put an edge back (or changed it back)."""


@dataclass(frozen=True)
class TagRenamed:
    old: str
    new: str
    notes_affected: List[str] = field(default_factory=list)
