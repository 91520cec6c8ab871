"""SQLAlchemy database models for notegraph."""
import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from notegraph.config import config

# Create base class for SQLAlchemy models
Base = declarative_base()


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


# Association table for tags and notes
note_tags = Table(
    "note_tags",
    Base.metadata,
    Column(
        "note_id",
        String(64),
        ForeignKey("notes.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "tag_id",
        Integer,
        ForeignKey("tags.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


class DBNote(Base):
    """Database model for a note."""

    __tablename__ = "notes"
    id = Column(String(64), primary_key=True, index=True)
    title = Column(String(512), nullable=False, index=True)
    body = Column(Text, nullable=False, default="")
    token_counts = Column(JSON, nullable=False, default=dict)
    # float32 vector serialized with numpy's tobytes()
    embedding = Column(LargeBinary, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(
        DateTime(timezone=True), default=_utcnow, nullable=False, index=True
    )
    is_chunk = Column(Boolean, default=False, nullable=False, index=True)
    parent_document_id = Column(String(64), nullable=True, index=True)
    chunk_order = Column(Integer, nullable=True)
    origin = Column(String(64), default="capture", nullable=False, index=True)
    created_by = Column(String(255), default="user", nullable=False)
    source_file = Column(String(1024), nullable=True)

    tags = relationship(
        "DBTag", secondary=note_tags, back_populates="notes", lazy="selectin"
    )

    def __repr__(self) -> str:
        """Return string representation of note."""
        return f"<Note(id='{self.id}', title='{self.title}')>"


class DBTag(Base):
    """Database model for a tag."""

    __tablename__ = "tags"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), unique=True, nullable=False)

    notes = relationship("DBNote", secondary=note_tags, back_populates="tags")

    def __repr__(self) -> str:
        """Return string representation of tag."""
        return f"<Tag(id={self.id}, name='{self.name}')>"


class DBEdge(Base):
    """Database model for an undirected edge between two notes."""

    __tablename__ = "edges"
    id = Column(String(64), primary_key=True)
    source_id = Column(
        String(64), ForeignKey("notes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    target_id = Column(
        String(64), ForeignKey("notes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    score = Column(Float, nullable=False)
    semantic_score = Column(Float, nullable=True)
    tag_score = Column(Float, nullable=True)
    shared_tags = Column(JSON, nullable=False, default=list)
    status = Column(String(16), nullable=False, index=True)
    edge_type = Column(String(32), nullable=False, default="semantic")
    edge_metadata = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    # At most one edge per unordered pair, stored canonically
    __table_args__ = (
        UniqueConstraint("source_id", "target_id", name="unique_edge_pair"),
        CheckConstraint("source_id < target_id", name="canonical_edge_pair"),
    )

    def __repr__(self) -> str:
        """Return string representation of edge."""
        return (
            f"<Edge(id='{self.id}', source='{self.source_id}', "
            f"target='{self.target_id}', status='{self.status}')>"
        )


class DBEdgeEvent(Base):
    """Append-only log of edge mutations."""

    __tablename__ = "edge_events"
    id = Column(Integer, primary_key=True, autoincrement=True)
    # No foreign keys: events outlive the notes and edges they describe
    edge_id = Column(String(64), nullable=True)
    source_id = Column(String(64), nullable=False)
    target_id = Column(String(64), nullable=False)
    prev_status = Column(String(16), nullable=True)
    next_status = Column(String(16), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    undone_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_edge_events_pair", "source_id", "target_id", "id"),
        {"sqlite_autoincrement": True},
    )

    def __repr__(self) -> str:
        return (
            f"<EdgeEvent(id={self.id}, pair='{self.source_id}:{self.target_id}', "
            f"{self.prev_status}->{self.next_status})>"
        )


def init_db(in_memory: Optional[bool] = None, db_url: Optional[str] = None) -> Engine:
    """Create an engine and all tables.

    File databases use WAL journaling with a small QueuePool. In-memory
    databases use a StaticPool so every session shares the one connection
    that holds the data.
    """
    if in_memory is None:
        in_memory = config.in_memory_db
    url = db_url or ("sqlite://" if in_memory else config.get_db_url())

    if in_memory:
        engine = create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=5,
            max_overflow=10,
            pool_timeout=30,
            pool_pre_ping=True,
            connect_args={"check_same_thread": False},
        )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        if not in_memory:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    return engine


def get_session_factory(engine: Engine):
    """Get a session factory for the database."""
    return sessionmaker(bind=engine, expire_on_commit=False)
