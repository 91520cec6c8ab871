"""Storage layer for notegraph."""

from notegraph.storage.base import SessionManager
from notegraph.storage.edge_repository import EdgeRepository
from notegraph.storage.note_repository import NoteRepository
from notegraph.storage.record_store import RecordStore

__all__ = [
    "SessionManager",
    "NoteRepository",
    "EdgeRepository",
    "RecordStore",
]
