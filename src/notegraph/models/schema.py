"""Data models for notegraph."""

import datetime
import hashlib
import re
import uuid
from datetime import timezone
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field, field_validator, model_validator

# Short ids are the leading hex digits of a UUID
SHORT_ID_PATTERN = re.compile(r"^[0-9a-f]{6,8}$")


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: Optional[datetime.datetime]) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC.

    SQLite drops tzinfo on the way back out, so every datetime read from
    the store passes through here.
    """
    if dt_value is None:
        return utc_now()
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


def generate_id() -> str:
    """Generate a random note ID (UUID4, canonical hyphenated form)."""
    return str(uuid.uuid4())


def short_id(note_id: str) -> str:
    """Return the human-facing short form of an id (first segment, max 8 chars)."""
    return note_id.split("-", 1)[0][:8]


def is_short_id(value: str) -> bool:
    """Whether ``value`` looks like a short id prefix (6-8 lowercase hex chars)."""
    return bool(SHORT_ID_PATTERN.match(value.strip()))


def normalize_edge_pair(a: str, b: str) -> Tuple[str, str]:
    """Canonical (source, target) ordering for an undirected edge."""
    return (a, b) if a < b else (b, a)


def edge_identifier(a: str, b: str) -> str:
    """Deterministic edge id derived from the canonical pair."""
    source, target = normalize_edge_pair(a, b)
    return hashlib.sha256(f"{source}::{target}".encode("utf-8")).hexdigest()[:32]


def edge_ref_code(a: str, b: str) -> str:
    """Short reference code for an edge, e.g. ``7FA2C91B``."""
    source, target = normalize_edge_pair(a, b)
    return (short_id(source)[:4] + short_id(target)[:4]).upper()


def normalize_tag(tag: str) -> str:
    """Lowercase a tag and strip whitespace and a leading '#'."""
    return tag.strip().lstrip("#").strip().lower()


class EdgeStatus(str, Enum):
    """Persisted lifecycle status of an edge."""

    ACCEPTED = "accepted"
    SUGGESTED = "suggested"


class EventStatus(str, Enum):
    """Status recorded on an edge event (includes terminal states)."""

    ACCEPTED = "accepted"
    SUGGESTED = "suggested"
    REJECTED = "rejected"  # Suggested edge removed by a reviewer
    DELETED = "deleted"  # Hard removal, any status


class EdgeType(str, Enum):
    """Origin of an edge."""

    SEMANTIC = "semantic"
    MANUAL = "manual"
    PARENT_CHILD = "parent-child"
    SEQUENTIAL = "sequential"


class Classification(str, Enum):
    """Outcome of classifying a score against the thresholds."""

    ACCEPT = "accept"
    SUGGEST = "suggest"
    DISCARD = "discard"

    def to_status(self) -> Optional[EdgeStatus]:
        """Edge status for this outcome, or None when no edge should exist."""
        if self is Classification.ACCEPT:
            return EdgeStatus.ACCEPTED
        if self is Classification.SUGGEST:
            return EdgeStatus.SUGGESTED
        return None


class NoteMetadata(BaseModel):
    """Provenance of a note."""

    origin: str = Field(default="capture", description="How the note entered the corpus")
    created_by: str = Field(default="user", description="Author or agent name")
    source_file: Optional[str] = Field(default=None, description="Imported file path")

    model_config = {"extra": "forbid"}


class Note(BaseModel):
    """An atomic text record."""

    id: str = Field(default_factory=generate_id, description="Unique ID of the note")
    title: str = Field(..., description="Title of the note")
    body: str = Field(default="", description="Body text of the note")
    tags: List[str] = Field(default_factory=list, description="Sorted, unique tags")
    token_counts: Dict[str, int] = Field(
        default_factory=dict, description="Normalized token frequencies"
    )
    embedding: Optional[List[float]] = Field(
        default=None, description="Dense vector, absent when embeddings are disabled"
    )
    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)
    is_chunk: bool = Field(default=False, description="Whether this is a document chunk")
    parent_document_id: Optional[str] = Field(default=None)
    chunk_order: Optional[int] = Field(default=None)
    metadata: NoteMetadata = Field(default_factory=NoteMetadata)

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Validate that the title is not empty."""
        if not v.strip():
            raise ValueError("Title cannot be empty")
        return v.strip()

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: List[str]) -> List[str]:
        """Normalize, deduplicate and sort tags."""
        return sorted({normalize_tag(t) for t in v if normalize_tag(t)})

    @property
    def short_id(self) -> str:
        return short_id(self.id)

    @property
    def has_embedding(self) -> bool:
        return bool(self.embedding)


class ScoreComponents(BaseModel):
    """Breakdown of a relatedness score between two notes."""

    token_similarity: float = Field(ge=0.0, le=1.0)
    embedding_similarity: float = Field(ge=0.0, le=1.0)
    tag_overlap: float = Field(ge=0.0, le=1.0)
    title_similarity: float = Field(ge=0.0, le=1.0)
    penalty: float = Field(gt=0.0, le=1.0)
    shared_tags: List[str] = Field(default_factory=list)

    model_config = {"frozen": True}


class SemanticEdgeMetadata(BaseModel):
    kind: Literal["semantic"] = "semantic"
    components: Optional[ScoreComponents] = None

    model_config = {"extra": "forbid"}


class ManualEdgeMetadata(BaseModel):
    kind: Literal["manual"] = "manual"
    note: Optional[str] = None

    model_config = {"extra": "forbid"}


class ParentChildEdgeMetadata(BaseModel):
    kind: Literal["parent-child"] = "parent-child"
    relationship: str = "document-structure"
    parent_id: str
    child_id: str

    model_config = {"extra": "forbid"}


class SequentialEdgeMetadata(BaseModel):
    kind: Literal["sequential"] = "sequential"
    relationship: str = "document-flow"
    prev_chunk_index: int
    next_chunk_index: int

    model_config = {"extra": "forbid"}


EdgeMetadata = Annotated[
    Union[
        SemanticEdgeMetadata,
        ManualEdgeMetadata,
        ParentChildEdgeMetadata,
        SequentialEdgeMetadata,
    ],
    Field(discriminator="kind"),
]


class Edge(BaseModel):
    """An undirected, scored relationship between two notes."""

    id: str = Field(..., description="Deterministic hash of the canonical pair")
    source_id: str
    target_id: str
    score: float = Field(..., ge=0.0, le=1.0)
    semantic_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    tag_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    shared_tags: List[str] = Field(default_factory=list)
    status: EdgeStatus
    edge_type: EdgeType = EdgeType.SEMANTIC
    metadata: EdgeMetadata = Field(default_factory=SemanticEdgeMetadata)
    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = {"extra": "forbid", "frozen": True}

    @model_validator(mode="after")
    def _check_identity(self) -> "Edge":
        if not self.source_id < self.target_id:
            raise ValueError(
                f"Edge endpoints must be canonical (source < target): "
                f"{self.source_id!r}, {self.target_id!r}"
            )
        if self.metadata.kind != self.edge_type.value:
            raise ValueError(
                f"Metadata kind {self.metadata.kind!r} does not match "
                f"edge type {self.edge_type.value!r}"
            )
        return self

    @property
    def ref(self) -> str:
        return edge_ref_code(self.source_id, self.target_id)

    def other(self, note_id: str) -> str:
        """The endpoint opposite ``note_id``."""
        return self.target_id if note_id == self.source_id else self.source_id


class EventPayload(BaseModel):
    """What an edge event needs in order to be reverted."""

    previous: Optional[Edge] = Field(
        default=None, description="Edge state before the event; None if it did not exist"
    )
    score: Optional[float] = None
    reason: Optional[str] = Field(default=None, description="e.g. manual, auto-link, sweep")

    model_config = {"extra": "forbid"}


class EdgeEvent(BaseModel):
    """An append-only record of one edge mutation."""

    id: int
    edge_id: Optional[str] = None
    source_id: str
    target_id: str
    prev_status: Optional[EventStatus] = None
    next_status: EventStatus
    payload: EventPayload = Field(default_factory=EventPayload)
    created_at: datetime.datetime = Field(default_factory=utc_now)
    undone_at: Optional[datetime.datetime] = None

    model_config = {"frozen": True}

    @property
    def is_undone(self) -> bool:
        return self.undone_at is not None
